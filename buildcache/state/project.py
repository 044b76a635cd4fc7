"""
Persisted per-module build state.

A state is written after a real (not fast-forwarded) build of a module and
read at the start of the next build. It is never modified in place: each
real build supersedes it with a freshly written document.

The document is JSON with sorted keys, so that an unchanged state is written
byte for byte identically.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Iterable, Mapping

from ..errors import StateUnreadableError
from ..execution import ExecutionEntry, find_matching
from ..models import ArtifactEntry, Module, SourceSet
from .files import ProjectFiles

STATE_VERSION = 1
ROOT_PLACEHOLDER = "#{root.dir}"


def atomic_write(path: Path, data: bytes) -> None:
    """Write to a temporary file next to `path`, then replace it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(temp_name, path)
    except BaseException:
        if os.path.exists(temp_name):
            os.unlink(temp_name)
        raise


def _to_placeholder(value: str, root: Path | None) -> str:
    if root is None:
        return value
    return value.replace(str(root), ROOT_PLACEHOLDER)


def _from_placeholder(value: str, root: Path | None) -> str:
    if root is None:
        return value
    return value.replace(ROOT_PLACEHOLDER, str(root))


@dataclass
class ProjectState:
    """Recorded state of one module."""

    properties: dict[str, str] = field(default_factory=dict)
    artifact: ArtifactEntry | None = None
    attached_artifacts: list[ArtifactEntry] = field(default_factory=list)
    main_sources: SourceSet = field(default_factory=SourceSet)
    test_sources: SourceSet = field(default_factory=SourceSet)
    project_files: ProjectFiles = field(default_factory=ProjectFiles)
    executions: list[ExecutionEntry] = field(default_factory=list)

    def artifacts(self) -> list[ArtifactEntry]:
        primary = [self.artifact] if self.artifact is not None else []
        return primary + list(self.attached_artifacts)

    def find_execution(self, execution: ExecutionEntry) -> ExecutionEntry | None:
        """Recorded execution with the same identity, if any."""
        return find_matching(execution, self.executions)

    def to_dict(self, root: Path | None = None) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization.

        Occurrences of `root` in property values are replaced by a placeholder.
        """
        d: dict[str, Any] = {
            "version": STATE_VERSION,
            "properties": {k: _to_placeholder(v, root) for k, v in sorted(self.properties.items())},
            "attached_artifacts": [a.to_dict() for a in self.attached_artifacts],
            "main_sources": self.main_sources.to_dict(),
            "test_sources": self.test_sources.to_dict(),
            "project_files": self.project_files.to_dict(),
            "executions": [e.to_dict() for e in self.executions],
        }
        if self.artifact is not None:
            d["artifact"] = self.artifact.to_dict()
        return d

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], root: Path | None = None) -> "ProjectState":
        """Create from dictionary, expanding the root placeholder."""
        version = data.get("version")
        if version != STATE_VERSION:
            raise ValueError(f"unsupported state version: {version!r}")
        properties = data.get("properties") or {}
        if not isinstance(properties, Mapping):
            raise ValueError("properties must be a mapping")
        artifact = data.get("artifact")
        return cls(
            properties={str(k): _from_placeholder(str(v), root) for k, v in properties.items() if k},
            artifact=ArtifactEntry.from_dict(artifact) if artifact else None,
            attached_artifacts=[ArtifactEntry.from_dict(a) for a in data.get("attached_artifacts", [])],
            main_sources=SourceSet.from_dict(data.get("main_sources")),
            test_sources=SourceSet.from_dict(data.get("test_sources")),
            project_files=ProjectFiles.from_dict(data.get("project_files")),
            executions=[ExecutionEntry.from_dict(e) for e in data.get("executions", [])],
        )

    def dumps(self, root: Path | None = None) -> bytes:
        return (json.dumps(self.to_dict(root), indent=2, sort_keys=True) + "\n").encode("utf-8")

    @classmethod
    def loads(cls, content: bytes | str, root: Path | None = None, source: Any = "<memory>") -> "ProjectState":
        try:
            data = json.loads(content)
            if not isinstance(data, dict):
                raise ValueError("state document must be an object")
            return cls.from_dict(data, root)
        except (ValueError, KeyError, TypeError, AttributeError) as ex:
            raise StateUnreadableError(source, str(ex)) from ex

    def save(self, path: Path, root: Path | None = None) -> None:
        atomic_write(path, self.dumps(root))

    @classmethod
    def load(cls, path: Path, root: Path | None = None) -> "ProjectState | None":
        """Load a state file; None if it does not exist.

        Raises StateUnreadableError if the file exists but cannot be decoded.
        """
        if not path.exists():
            return None
        try:
            content = path.read_bytes()
        except OSError as ex:
            raise StateUnreadableError(path, str(ex)) from ex
        return cls.loads(content, root, path)

    def apply(self, module: Module) -> Module:
        """Module snapshot with the recorded properties, artifacts and roots.

        Used when a module is fast-forwarded, so downstream consumers see
        what the skipped build would have produced.
        """
        properties = dict(module.properties)
        properties.update(self.properties)
        return replace(
            module,
            properties=properties,
            artifact=self.artifact if self.artifact is not None else module.artifact,
            attached_artifacts=list(self.attached_artifacts) or list(module.attached_artifacts),
            source_roots=_merge_roots(module.source_roots, self.main_sources.roots),
            test_source_roots=_merge_roots(module.test_source_roots, self.test_sources.roots),
        )


def _merge_roots(current: Iterable[str], recorded: Iterable[str]) -> list[str]:
    roots = list(current)
    roots.extend(r for r in recorded if r not in roots)
    return roots


def merge(
    previous: ProjectState | None,
    module: Module,
    new_executions: Iterable[ExecutionEntry],
    main_sources: SourceSet,
    test_sources: SourceSet,
    project_files: ProjectFiles,
) -> ProjectState:
    """
    Build the state that supersedes `previous` after a real build.

    Recorded executions that were not re-executed are kept, followed by the
    newly recorded ones in execution order. Properties are merged, the new
    values winning.
    """
    new_executions = list(new_executions)
    kept: list[ExecutionEntry] = []
    properties: dict[str, str] = {}
    if previous is not None:
        kept = [e for e in previous.executions if not any(e.same_identity(n) for n in new_executions)]
        properties.update(previous.properties)
    properties.update(module.properties)
    return ProjectState(
        properties=properties,
        artifact=module.artifact,
        attached_artifacts=list(module.attached_artifacts),
        main_sources=main_sources,
        test_sources=test_sources,
        project_files=project_files,
        executions=kept + new_executions,
    )
