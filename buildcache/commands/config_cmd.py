"""Configuration commands - execution matching and configuration diffs."""

from __future__ import annotations

import json
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Sequence

from rich.console import Console

from ..config import ConfigNode, diffs, fingerprint, from_mapping, parse_xml
from ..execution import ExecutionEntry, ExecutionMatcher


def load_config_tree(path: Path) -> ConfigNode:
    """Read a configuration tree from an XML or YAML file."""
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in (".yaml", ".yml"):
        import yaml

        try:
            return from_mapping(yaml.safe_load(text) or {})
        except yaml.YAMLError as ex:
            raise ValueError(f"invalid configuration {path}: {ex}") from ex
    return parse_xml(text)


def run_match(
    reference: str,
    includes: Sequence[str] | None = None,
    excludes: Sequence[str] | None = None,
    output_json: bool = False,
) -> int:
    """Tell whether an execution participates in caching.

    Returns:
        Exit code (0 = included, 1 = excluded, 2 = invalid reference)
    """
    err = Console(stderr=True)
    try:
        execution = ExecutionEntry.parse(reference)
    except ValueError as ex:
        err.print(f"Error: {ex}", style="bold red")
        return 2

    included = ExecutionMatcher(includes, excludes).match(execution)
    if output_json:
        print(json.dumps({"execution": execution.name, "included": included}))
    else:
        Console().print(
            f"{execution.name}: " + ("[green]included[/green]" if included else "[yellow]excluded[/yellow]")
        )
    return 0 if included else 1


def run_diff_config(orig: Path, actual: Path, output_json: bool = False) -> int:
    """Compare two configuration files structurally.

    Returns:
        Exit code (0 = equal, 1 = different, 2 = unreadable input)
    """
    err = Console(stderr=True)
    try:
        orig_tree = load_config_tree(orig)
        actual_tree = load_config_tree(actual)
    except (OSError, ValueError, ET.ParseError) as ex:
        err.print(f"Error: {ex}", style="bold red")
        return 2

    found = list(diffs(orig_tree, actual_tree))
    if output_json:
        data = {
            "equal": not found,
            "fingerprints": {"orig": fingerprint(orig_tree), "actual": fingerprint(actual_tree)},
            "diffs": [
                {"kind": d.kind, "path": d.path, "location": d.location, "orig": d.orig, "actual": d.actual}
                for d in found
            ],
        }
        print(json.dumps(data, indent=2))
        return 0 if not found else 1

    console = Console()
    if not found:
        console.print("[green]Configurations are equal[/green]")
        return 0
    for d in found:
        console.print(d.as_string(), markup=False, highlight=False)
    err.print(f"{len(found)} difference(s)")
    return 1
