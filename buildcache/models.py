"""Data models for modules, their files and produced artifacts."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from .execution import ExecutionEntry

STATE_FILE_NAME = "state.json"


@dataclass(frozen=True)
class FileEntry:
    """A recorded file: module-relative POSIX path, mtime (ms) and checksum."""

    path: str
    last_modified: int
    checksum: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"path": self.path, "last_modified": self.last_modified}
        if self.checksum is not None:
            d["checksum"] = self.checksum
        return d

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FileEntry":
        return cls(
            path=str(data["path"]),
            last_modified=int(data.get("last_modified", 0)),
            checksum=data.get("checksum"),
        )


@dataclass
class SourceSet:
    """Source roots of one kind (main or test) and the files found under them."""

    roots: list[str] = field(default_factory=list)
    files: list[FileEntry] = field(default_factory=list)

    def by_path(self) -> dict[str, FileEntry]:
        return {f.path: f for f in self.files}

    def to_dict(self) -> dict[str, Any]:
        return {
            "roots": list(self.roots),
            "files": [f.to_dict() for f in sorted(self.files, key=lambda f: f.path)],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "SourceSet":
        data = data or {}
        return cls(
            roots=[str(r) for r in data.get("roots", []) if r],
            files=[FileEntry.from_dict(f) for f in data.get("files", [])],
        )


@dataclass(frozen=True)
class ArtifactEntry:
    """A produced artifact; `file` is relative to the module directory."""

    file: str
    type: str = "jar"
    extension: str = "jar"
    classifier: str | None = None
    language: str | None = None
    includes_dependencies: bool = False
    added_to_classpath: bool = False

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "file": self.file,
            "type": self.type,
            "extension": self.extension,
            "includesDependencies": self.includes_dependencies,
            "addedToClasspath": self.added_to_classpath,
        }
        if self.classifier:
            d["classifier"] = self.classifier
        if self.language:
            d["language"] = self.language
        return d

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ArtifactEntry":
        if not data.get("file"):
            raise ValueError("artifact entry without a file")
        return cls(
            file=str(data["file"]),
            type=str(data.get("type", "jar")),
            extension=str(data.get("extension", data.get("type", "jar"))),
            classifier=data.get("classifier") or None,
            language=data.get("language") or None,
            includes_dependencies=bool(data.get("includesDependencies", False)),
            added_to_classpath=bool(data.get("addedToClasspath", False)),
        )


@dataclass
class Module:
    """Snapshot of a reactor module as supplied by the host build tool.

    `executions` is the current build plan for the module, in execution order.
    """

    group_id: str
    artifact_id: str
    directory: Path
    version: str = ""
    build_directory: str = "target"
    source_roots: list[str] = field(default_factory=list)
    test_source_roots: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    submodules: list[str] = field(default_factory=list)
    properties: dict[str, str] = field(default_factory=dict)
    artifact: ArtifactEntry | None = None
    attached_artifacts: list[ArtifactEntry] = field(default_factory=list)
    executions: list[ExecutionEntry] = field(default_factory=list)

    @property
    def id(self) -> str:
        return f"{self.group_id}:{self.artifact_id}"

    @property
    def build_dir(self) -> Path:
        return self.directory / self.build_directory

    @property
    def state_file(self) -> Path:
        return self.build_dir / STATE_FILE_NAME

    def artifacts(self) -> list[ArtifactEntry]:
        """Primary artifact (if any) followed by attached artifacts."""
        primary = [self.artifact] if self.artifact is not None else []
        return primary + list(self.attached_artifacts)
