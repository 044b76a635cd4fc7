"""Archive commands - create and inspect the build cache archive."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Mapping

from rich.console import Console
from rich.table import Table

from ..archive import ArchiveStore
from ..engine import InvalidationEngine
from ..errors import BuildCacheError
from .build import load_build


def run_archive_create(
    root: Path,
    reactor_file: Path | None = None,
    properties: Mapping[str, str] | None = None,
    output: Path | None = None,
) -> int:
    """Archive the outputs of every module that is currently valid.

    Returns:
        Exit code (0 = archive written, 1 = nothing to archive or error)
    """
    err = Console(stderr=True)
    try:
        modules, config = load_build(root, reactor_file, properties)
    except (OSError, ValueError) as ex:
        err.print(f"Error: {ex}", style="bold red")
        return 1

    archive_path = output or config.archive_file
    if archive_path is None:
        err.print("Error: no archive file, pass --output or set archive_file", style="bold red")
        return 1

    engine = InvalidationEngine(root.resolve(), config)
    try:
        evaluations = engine.evaluate(modules)
    except BuildCacheError as ex:
        err.print(f"Error: {ex}", style="bold red")
        return 1

    valid = [e.module for e in evaluations.values() if e.valid]
    skipped = [e.module_id for e in evaluations.values() if not e.valid]
    for module_id in skipped:
        err.print(f"[{module_id}] not valid, not archived", style="yellow", markup=False)
    if not valid:
        err.print("Nothing to archive", style="bold red")
        return 1

    store = ArchiveStore(archive_path, root, config.build_files_excludes)
    try:
        index = store.save(valid)
    except OSError as ex:
        err.print(f"Error: unable to write {archive_path}: {ex}", style="bold red")
        return 1
    err.print(f"Archived {len(index.modules)} module(s), {index.file_count()} file(s) to {archive_path}")
    return 0


def run_archive_list(archive_path: Path, root: Path | None = None, output_json: bool = False) -> int:
    """List the content of an archive.

    Returns:
        Exit code (0 = success, 1 = archive missing)
    """
    err = Console(stderr=True)
    store = ArchiveStore(archive_path, root or archive_path.parent)
    if not store.exists():
        err.print(f"Archive not found: {archive_path}", style="bold red")
        return 1
    index = store.index()

    if output_json:
        print(json.dumps(index.to_dict(), indent=2, sort_keys=True))
        return 0

    table = Table(title=f"Archive {archive_path.name}")
    table.add_column("module", style="cyan", no_wrap=True)
    table.add_column("kind", style="magenta")
    table.add_column("path")
    table.add_column("size", justify="right")
    table.add_column("portable")
    for module_id, members in sorted(index.modules.items()):
        for member in members:
            table.add_row(
                module_id,
                member.kind,
                member.path,
                str(member.size),
                "yes" if member.portable else "[yellow]no[/yellow]",
            )
    Console().print(table)
    return 0
