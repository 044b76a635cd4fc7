"""
File facts used to decide whether a module's recorded state is stale.

Two views are kept per module:

- source sets: per-file descriptors (path, mtime, checksum) for the main and
  test source roots
- project files: a summary (count, newest mtime, aggregate checksum) of every
  file in the module directory, minus its build directory, nested modules
  and excluded paths
"""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Iterator, Literal, Mapping

from ..models import FileEntry, Module, SourceSet
from ..patterns import path_included

_CHUNK = 64 * 1024

ChangeKind = Literal["added", "removed", "modified", "roots"]


def compute_checksum(path: Path) -> str:
    """Compute the sha256 of a file, reading it in chunks."""
    hasher = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def last_modified(path: Path) -> int:
    """Modification time in milliseconds."""
    return path.stat().st_mtime_ns // 1_000_000


def file_entry(base_dir: Path, path: Path, checksums: bool) -> FileEntry:
    return FileEntry(
        path=path.relative_to(base_dir).as_posix(),
        last_modified=last_modified(path),
        checksum=compute_checksum(path) if checksums else None,
    )


def _walk_files(start: Path, prune: set[Path]) -> Iterator[Path]:
    for dirpath, dirnames, filenames in os.walk(start, followlinks=True):
        current = Path(dirpath)
        dirnames[:] = sorted(d for d in dirnames if current / d not in prune)
        for name in sorted(filenames):
            yield current / name


def scan_source_set(
    module_dir: Path,
    roots: Iterable[str],
    excludes: Iterable[str] | None = None,
    checksums: bool = True,
) -> SourceSet:
    """Describe every file under the given source roots.

    Missing roots are kept in the set (with no files) so that a root
    appearing later is detected as a change.
    """
    excludes = list(excludes or [])
    root_list = list(roots)
    files: dict[str, FileEntry] = {}
    for root in root_list:
        root_dir = module_dir / root
        if not root_dir.is_dir():
            continue
        for path in _walk_files(root_dir, set()):
            rel = path.relative_to(module_dir).as_posix()
            if rel in files or not path_included(rel, None, excludes):
                continue
            files[rel] = file_entry(module_dir, path, checksums)
    return SourceSet(roots=root_list, files=sorted(files.values(), key=lambda f: f.path))


def scan_sources(module: Module, excludes: Iterable[str] | None, checksums: bool) -> tuple[SourceSet, SourceSet]:
    """Main and test source sets of a module."""
    excludes = list(excludes or [])
    return (
        scan_source_set(module.directory, module.source_roots, excludes, checksums),
        scan_source_set(module.directory, module.test_source_roots, excludes, checksums),
    )


@dataclass(frozen=True)
class FileChange:
    """A difference between recorded and current file facts."""

    kind: ChangeKind
    path: str
    detail: str = ""

    def as_string(self) -> str:
        suffix = f" ({self.detail})" if self.detail else ""
        return f"{self.kind}: {self.path}{suffix}"


def _entry_changed(recorded: FileEntry, current: FileEntry, checksums: bool) -> str | None:
    if checksums and recorded.checksum is not None and current.checksum is not None:
        if recorded.checksum != current.checksum:
            return "checksum"
        return None
    if recorded.last_modified != current.last_modified:
        return "last-modified"
    return None


def diff_source_sets(recorded: SourceSet, current: SourceSet, checksums: bool) -> list[FileChange]:
    """Compare a recorded source set with a fresh scan.

    Checksums are compared when enabled and present on both sides, otherwise
    modification times are.
    """
    if list(recorded.roots) != list(current.roots):
        return [FileChange("roots", ",".join(current.roots), f"was {','.join(recorded.roots)}")]
    changes: list[FileChange] = []
    current_files = current.by_path()
    recorded_files = recorded.by_path()
    for path, entry in recorded_files.items():
        now = current_files.get(path)
        if now is None:
            changes.append(FileChange("removed", path))
            continue
        reason = _entry_changed(entry, now, checksums)
        if reason:
            changes.append(FileChange("modified", path, reason))
    for path in current_files:
        if path not in recorded_files:
            changes.append(FileChange("added", path))
    return changes


@dataclass
class ProjectFiles:
    """Summary of the files of a module directory."""

    count: int = 0
    last_modified: int = 0
    checksum: str | None = None
    all_checksums: dict[str, str] = field(default_factory=dict)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ProjectFiles):
            return NotImplemented
        if self.count != other.count:
            return False
        if self.last_modified == other.last_modified:
            return True
        return self.checksum is not None and self.checksum == other.checksum

    def diff(self, current: "ProjectFiles") -> list[FileChange]:
        """Explain why `current` differs from this recorded summary."""
        changes: list[FileChange] = []
        if self.all_checksums and current.all_checksums:
            for path, checksum in self.all_checksums.items():
                now = current.all_checksums.get(path)
                if now is None:
                    changes.append(FileChange("removed", path))
                elif now != checksum:
                    changes.append(FileChange("modified", path, "checksum"))
            for path in current.all_checksums:
                if path not in self.all_checksums:
                    changes.append(FileChange("added", path))
            if changes:
                return changes
        if self.count != current.count:
            changes.append(FileChange("modified", ".", f"file count {self.count} -> {current.count}"))
        elif self.checksum != current.checksum:
            changes.append(FileChange("modified", ".", "checksum"))
        elif self.last_modified != current.last_modified:
            changes.append(FileChange("modified", ".", "last-modified"))
        return changes

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"count": self.count, "last_modified": self.last_modified}
        if self.checksum is not None:
            d["checksum"] = self.checksum
        if self.all_checksums:
            d["files"] = dict(sorted(self.all_checksums.items()))
        return d

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "ProjectFiles":
        data = data or {}
        files = data.get("files") or {}
        if not isinstance(files, Mapping):
            raise ValueError("project files checksums must be a mapping")
        return cls(
            count=int(data.get("count", 0)),
            last_modified=int(data.get("last_modified", 0)),
            checksum=data.get("checksum"),
            all_checksums={str(k): str(v) for k, v in files.items() if k and v},
        )


def scan_project_files(
    module: Module,
    excludes: Iterable[str] | None = None,
    checksums: bool = True,
    include_all_checksums: bool = False,
) -> ProjectFiles:
    """Summarize the files of a module directory.

    The build directory and nested module directories are skipped. The
    aggregate checksum covers file paths and contents in sorted path order.
    """
    excludes = list(excludes or [])
    module_dir = module.directory
    prune = {module.build_dir} | {module_dir / m for m in module.submodules}
    hasher = hashlib.sha256() if checksums else None
    newest = 0
    count = 0
    all_checksums: dict[str, str] = {}
    for path in _walk_files(module_dir, prune):
        rel = path.relative_to(module_dir).as_posix()
        if not path_included(rel, None, excludes):
            continue
        count += 1
        newest = max(newest, last_modified(path))
        if hasher is not None or include_all_checksums:
            checksum = compute_checksum(path)
            if hasher is not None:
                hasher.update(rel.encode("utf-8"))
                hasher.update(checksum.encode("ascii"))
            if include_all_checksums:
                all_checksums[rel] = checksum
    return ProjectFiles(
        count=count,
        last_modified=newest,
        checksum=hasher.hexdigest() if hasher is not None else None,
        all_checksums=all_checksums,
    )
