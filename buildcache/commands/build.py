"""Build command - drive a build session over a reactor description."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Mapping, Sequence

from rich.console import Console
from rich.table import Table

from ..errors import BuildCacheError
from ..models import Module
from ..reactor import REACTOR_FILE_NAME, ReactorGraph, load_reactor
from ..session import BuildSession
from ..settings import CacheConfig, load_config


def load_build(
    root: Path,
    reactor_file: Path | None = None,
    properties: Mapping[str, str] | None = None,
) -> tuple[list[Module], CacheConfig]:
    """Modules (from the reactor description) and cache configuration of a build."""
    reactor_file = reactor_file or root / REACTOR_FILE_NAME
    if not reactor_file.exists():
        raise FileNotFoundError(f"Reactor description not found: {reactor_file}")
    return load_reactor(reactor_file), load_config(root, properties)


def run_build(
    root: Path,
    reactor_file: Path | None = None,
    properties: Mapping[str, str] | None = None,
    goals: Sequence[str] = ("install",),
    dry_run: bool = False,
    output_json: bool = False,
) -> int:
    """Walk the build plan, report run / skip per execution and record state.

    Executions themselves are the host tool's business: every execution that
    is not skipped is assumed to have run successfully.

    Returns:
        Exit code (0 = success, 1 = reactor not loadable)
    """
    err = Console(stderr=True)
    try:
        modules, config = load_build(root, reactor_file, properties)
    except (OSError, ValueError) as ex:
        err.print(f"Error: {ex}", style="bold red")
        return 1

    session = BuildSession(root, modules, config, goals)
    try:
        session.start(dry_run=dry_run)
    except BuildCacheError as ex:
        err.print(f"Error: {ex}", style="bold red")
        return 1

    graph = ReactorGraph.from_modules(modules)
    rows: list[dict[str, str]] = []
    for module_id in graph.topological_sort():
        module = graph.get(module_id)
        for execution in module.executions:
            run = session.should_run(module_id, execution)
            rows.append({"module": module_id, "execution": execution.name, "action": "run" if run else "skip"})
            if run and not dry_run:
                session.record_execution(module_id, execution)
        if not dry_run:
            session.module_succeeded(module_id)
    if not dry_run:
        session.finish()

    if output_json:
        print(json.dumps(rows, indent=2))
        return 0

    table = Table(title="Build plan" + (" (dry run)" if dry_run else ""))
    table.add_column("module", style="cyan", no_wrap=True)
    table.add_column("execution")
    table.add_column("action")
    for row in rows:
        style = "green" if row["action"] == "skip" else "yellow"
        table.add_row(row["module"], row["execution"], f"[{style}]{row['action']}[/{style}]")
    Console().print(table)
    skipped = sum(1 for r in rows if r["action"] == "skip")
    err.print(f"{skipped} of {len(rows)} execution(s) skipped")
    return 0
