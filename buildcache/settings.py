"""
Cache configuration.

Configuration is read from `buildcache.toml` at the build root, or from the
`[tool.buildcache]` table of `pyproject.toml`, and then overridden by
`cache.*` properties (the equivalent of `-Dcache.enabled=false` on the host
tool's command line):

    enabled = true
    enable_checksums = true
    archive_file = "build-cache.tar"
    executions_excludes = ["*:maven-deploy-plugin:*"]

    [[module]]
    glob = "/examples/*"
    enabled = false
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore

from .patterns import wildcard_match

CONFIG_FILE_NAME = "buildcache.toml"
PROPERTY_PREFIX = "cache."


def _coerce_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _string_list(value: Any) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    raise ValueError(f"expected a list of strings, got {value!r}")


def _boolean(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    # an empty property value means "set"
    return text in ("", "true", "yes", "1", "on")


@dataclass(frozen=True)
class ModuleConfig:
    """Per-module configuration, selected by path, glob or regex."""

    path: str | None = None
    glob: str | None = None
    regex: str | None = None
    enabled: bool = True
    executions_includes: list[str] = field(default_factory=list)
    executions_excludes: list[str] = field(default_factory=list)
    project_files_excludes: list[str] = field(default_factory=list)

    def matches(self, module_path: str) -> bool:
        """Test the module path (relative to the build root, POSIX style)."""
        return (
            module_path == self.path
            or (self.glob is not None and wildcard_match("/" + module_path, self.glob))
            or (self.regex is not None and re.fullmatch(self.regex, module_path) is not None)
        )


@dataclass(frozen=True)
class CacheConfig:
    """Reactor-wide cache configuration."""

    enabled: bool = True
    record: bool = True
    enable_checksums: bool = True
    include_all_checksums: bool = False
    archive_file: Path | None = None
    load_archive: bool = False
    create_archive: bool = False
    executions_includes: list[str] = field(default_factory=list)
    executions_excludes: list[str] = field(default_factory=list)
    project_files_excludes: list[str] = field(default_factory=list)
    build_files_excludes: list[str] = field(default_factory=list)
    parallelism: int | None = None
    modules: list[ModuleConfig] = field(default_factory=list)

    @property
    def workers(self) -> int:
        return max(1, self.parallelism or os.cpu_count() or 1)

    def for_module(self, module_path: str) -> ModuleConfig:
        """Effective configuration of one module.

        The first matching [[module]] entry wins. Reactor-wide file excludes
        always apply; reactor-wide execution lists apply when the module entry
        does not set its own.
        """
        selected = next((m for m in self.modules if m.matches(module_path)), None)
        if selected is None:
            selected = ModuleConfig(path=module_path)
        return replace(
            selected,
            enabled=self.enabled and selected.enabled,
            executions_includes=selected.executions_includes or list(self.executions_includes),
            executions_excludes=selected.executions_excludes or list(self.executions_excludes),
            project_files_excludes=list(selected.project_files_excludes) + list(self.project_files_excludes),
        )


def _module_config(raw: dict[str, Any]) -> ModuleConfig:
    selectors = [raw.get(k) for k in ("path", "glob", "regex")]
    if not any(isinstance(s, str) and s.strip() for s in selectors):
        raise ValueError("module configuration requires one of path, glob or regex")
    enabled = _boolean(raw.get("enabled"))
    return ModuleConfig(
        path=raw.get("path"),
        glob=raw.get("glob"),
        regex=raw.get("regex"),
        enabled=True if enabled is None else enabled,
        executions_includes=_string_list(raw.get("executions_includes")) or [],
        executions_excludes=_string_list(raw.get("executions_excludes")) or [],
        project_files_excludes=_string_list(raw.get("project_files_excludes")) or [],
    )


def parse_config(
    data: Mapping[str, Any],
    properties: Mapping[str, str] | None = None,
    root: Path | None = None,
) -> CacheConfig:
    """
    Build a CacheConfig from a TOML table and property overrides.

    Properties are looked up as `cache.<key>` and win over the table.
    Relative archive paths resolve against `root`.
    """
    props = {k[len(PROPERTY_PREFIX):]: v for k, v in (properties or {}).items() if k.startswith(PROPERTY_PREFIX)}

    def pick(key: str) -> Any:
        if key in props:
            return props[key]
        return data.get(key)

    def flag(key: str, default: bool) -> bool:
        value = _boolean(pick(key))
        return default if value is None else value

    archive = pick("archive_file")
    archive_file = None
    if isinstance(archive, str) and archive.strip():
        archive_file = Path(archive.strip())
        if root is not None and not archive_file.is_absolute():
            archive_file = root / archive_file

    parallelism = pick("parallelism")
    if parallelism is not None:
        parallelism = int(parallelism)
        if parallelism <= 0:
            raise ValueError("parallelism must be a positive integer")

    modules = [_module_config(m) for m in data.get("module", []) if isinstance(m, dict)]

    return CacheConfig(
        enabled=flag("enabled", True),
        record=flag("record", True),
        enable_checksums=flag("enable_checksums", True),
        include_all_checksums=flag("include_all_checksums", False),
        archive_file=archive_file,
        load_archive=flag("load_archive", False),
        create_archive=flag("create_archive", False),
        executions_includes=_string_list(pick("executions_includes")) or [],
        executions_excludes=_string_list(pick("executions_excludes")) or [],
        project_files_excludes=_string_list(pick("project_files_excludes")) or [],
        build_files_excludes=_string_list(pick("build_files_excludes")) or [],
        parallelism=parallelism,
        modules=modules,
    )


def load_config(root: Path, properties: Mapping[str, str] | None = None) -> CacheConfig:
    """Load the configuration of the build rooted at `root`."""
    data: dict[str, Any] = {}
    config_file = root / CONFIG_FILE_NAME
    pyproject = root / "pyproject.toml"
    if config_file.exists():
        data = tomllib.loads(config_file.read_text(encoding="utf-8"))
    elif pyproject.exists():
        tool = _coerce_dict(tomllib.loads(pyproject.read_text(encoding="utf-8")).get("tool"))
        data = _coerce_dict(tool.get("buildcache"))
    return parse_config(data, properties, root)
