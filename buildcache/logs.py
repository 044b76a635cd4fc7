"""Logging setup for the command line."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "buildcache"


def setup_logging(verbose: bool = False, console: Console | None = None) -> logging.Logger:
    """Route `buildcache.*` records (and warnings) to a rich handler on stderr."""
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_time=verbose,
        show_path=False,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False

    logging.captureWarnings(True)
    for target in (logger, logging.getLogger("py.warnings")):
        for previous in [h for h in target.handlers if isinstance(h, RichHandler)]:
            target.removeHandler(previous)
        target.addHandler(handler)
    return logger
