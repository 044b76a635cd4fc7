"""Status command - show the fast-forward verdict of every module."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping, Sequence

from rich.console import Console
from rich.table import Table

from ..engine import ModuleEvaluation
from ..errors import BuildCacheError
from ..session import BuildSession
from .build import load_build

STATUS_STYLES = {
    "valid": "green",
    "rebuilt": "green",
    "dirty": "yellow",
    "unknown": "dim",
}


def _evaluation_dict(evaluation: ModuleEvaluation) -> dict[str, Any]:
    return {
        "module": evaluation.module_id,
        "status": evaluation.status.value,
        "reason": evaluation.reason.value if evaluation.reason else None,
        "detail": evaluation.detail,
        "executions": [
            {"execution": s.execution.name, "status": s.state.value, "diffs": [d.as_string() for d in s.diffs()]}
            for s in evaluation.executions
        ],
        "file_changes": [c.as_string() for c in evaluation.file_changes],
    }


def run_status(
    root: Path,
    reactor_file: Path | None = None,
    properties: Mapping[str, str] | None = None,
    goals: Sequence[str] = (),
    output_json: bool = False,
    explain: bool = False,
) -> int:
    """Evaluate every module without building or writing anything.

    Args:
        root: Build root directory
        reactor_file: Reactor description (defaults to <root>/reactor.yaml)
        properties: `cache.*` property overrides
        goals: Goals of the prospective build (`clean` ignores all state)
        output_json: Output results as JSON
        explain: Print the verdict lines of every module

    Returns:
        Exit code (0 = every module can be fast-forwarded, 1 = some must be built)
    """
    err = Console(stderr=True)
    try:
        modules, config = load_build(root, reactor_file, properties)
    except (OSError, ValueError) as ex:
        err.print(f"Error: {ex}", style="bold red")
        return 2

    session = BuildSession(root, modules, config, goals)
    try:
        evaluations = session.start(dry_run=True)
    except BuildCacheError as ex:
        err.print(f"Error: {ex}", style="bold red")
        return 2
    all_valid = all(e.fast_forward for e in evaluations.values())

    if output_json:
        print(json.dumps([_evaluation_dict(e) for e in evaluations.values()], indent=2))
        return 0 if all_valid else 1

    table = Table(title="Build cache status")
    table.add_column("module", style="cyan", no_wrap=True)
    table.add_column("status")
    table.add_column("reason", style="magenta")
    table.add_column("detail", style="dim")
    for evaluation in evaluations.values():
        style = STATUS_STYLES.get(evaluation.status.value, "")
        table.add_row(
            evaluation.module_id,
            f"[{style}]{evaluation.status.value}[/{style}]" if style else evaluation.status.value,
            evaluation.reason.value if evaluation.reason else "",
            evaluation.detail,
        )
    console = Console()
    console.print(table)

    if explain:
        for line in session.status_lines():
            console.print(line, markup=False, highlight=False)

    return 0 if all_valid else 1
