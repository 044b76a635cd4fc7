"""
Single-file archive of cached build outputs.

The archive is an uncompressed tar file. Its first member, `index.json`,
lists for every archived module the files it holds:

    {
      "version": 1,
      "modules": {
        "com.acme:core": [
          {"name": "core/target/state.json", "path": "core/target/state.json",
           "kind": "state", "portable": true, "size": 812, "checksum": "..."}
        ]
      }
    }

Files under the build root are stored under their root-relative POSIX path.
Files outside of it are stored as `external/<n>` and keep their absolute
path; such archives only restore on the machine that produced them.
"""

from __future__ import annotations

import hashlib
import io
import json
import logging
import os
import shutil
import tarfile
import tempfile
import threading
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping

from .errors import ArchiveIncompleteError, NonPortablePathWarning, StateUnreadableError
from .models import Module
from .patterns import path_included
from .state.files import compute_checksum
from .state.project import ProjectState

logger = logging.getLogger(__name__)

INDEX_NAME = "index.json"
ARCHIVE_VERSION = 1
EXTERNAL_PREFIX = "external/"

KIND_STATE = "state"
KIND_ARTIFACT = "artifact"
KIND_SOURCE = "source"
KIND_BUILD = "build"


@dataclass(frozen=True)
class ArchiveMember:
    """One archived file."""

    name: str  # tar member name
    path: str  # root-relative POSIX path, or absolute path when not portable
    kind: str
    portable: bool = True
    size: int = 0
    checksum: str | None = None

    def target(self, root: Path) -> Path:
        """Where the file is written back on restore."""
        return root / self.path if self.portable else Path(self.path)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "name": self.name,
            "path": self.path,
            "kind": self.kind,
            "portable": self.portable,
            "size": self.size,
        }
        if self.checksum:
            d["checksum"] = self.checksum
        return d

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ArchiveMember":
        return cls(
            name=str(data["name"]),
            path=str(data["path"]),
            kind=str(data.get("kind", KIND_BUILD)),
            portable=bool(data.get("portable", True)),
            size=int(data.get("size", 0)),
            checksum=data.get("checksum"),
        )


@dataclass
class ArchiveIndex:
    """Content listing of an archive, by module id."""

    version: int = ARCHIVE_VERSION
    modules: dict[str, list[ArchiveMember]] = field(default_factory=dict)

    def members(self, module_id: str) -> list[ArchiveMember]:
        return list(self.modules.get(module_id, []))

    def file_count(self) -> int:
        return sum(len(m) for m in self.modules.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "modules": {mid: [m.to_dict() for m in members] for mid, members in sorted(self.modules.items())},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ArchiveIndex":
        version = data.get("version")
        if version != ARCHIVE_VERSION:
            raise ValueError(f"unsupported archive version: {version!r}")
        modules = data.get("modules") or {}
        if not isinstance(modules, Mapping):
            raise ValueError("archive modules must be a mapping")
        return cls(
            version=version,
            modules={str(mid): [ArchiveMember.from_dict(m) for m in members] for mid, members in modules.items()},
        )


def _walk(start: Path) -> Iterator[Path]:
    for dirpath, dirnames, filenames in os.walk(start):
        dirnames.sort()
        for name in sorted(filenames):
            yield Path(dirpath) / name


class ArchiveStore:
    """Saves and restores module outputs to and from one archive file.

    Writers are serialized; a save replaces the archive atomically so an
    interrupted save leaves the previous archive in place. Restores open their
    own read-only handle and may run concurrently.
    """

    def __init__(self, path: Path, root: Path, build_files_excludes: Iterable[str] | None = None):
        self.path = path
        self.root = root.resolve()
        self.build_files_excludes = list(build_files_excludes or [])
        self._lock = threading.Lock()
        self._index: ArchiveIndex | None = None

    def exists(self) -> bool:
        return self.path.is_file()

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def index(self) -> ArchiveIndex:
        """The archive index; empty if there is no readable archive."""
        with self._lock:
            if self._index is None:
                self._index = self._read_index()
            return self._index

    def _read_index(self) -> ArchiveIndex:
        if not self.exists():
            return ArchiveIndex()
        try:
            with tarfile.open(self.path, "r:") as tar:
                data = self._read_member(tar, INDEX_NAME)
            return ArchiveIndex.from_dict(json.loads(data))
        except (OSError, tarfile.TarError, KeyError, ValueError) as ex:
            logger.warning("Unable to read archive index of %s: %s", self.path, ex)
            return ArchiveIndex()

    @staticmethod
    def _read_member(tar: tarfile.TarFile, name: str) -> bytes:
        extracted = tar.extractfile(name)
        if extracted is None:
            raise KeyError(name)
        with extracted:
            return extracted.read()

    def load_state(self, module: Module) -> ProjectState | None:
        """The archived state document of a module, if any.

        Raises StateUnreadableError if it is archived but cannot be decoded.
        """
        state_member = next((m for m in self.index().members(module.id) if m.kind == KIND_STATE), None)
        if state_member is None:
            return None
        source = f"{self.path}!{state_member.name}"
        try:
            with tarfile.open(self.path, "r:") as tar:
                content = self._read_member(tar, state_member.name)
        except (OSError, tarfile.TarError, KeyError) as ex:
            raise StateUnreadableError(source, str(ex)) from ex
        logger.debug("[%s] - state loaded from archive", module.id)
        return ProjectState.loads(content, self.root, source)

    def check(self, module: Module, state: ProjectState | None = None) -> list[ArchiveMember]:
        """The archived members of a module.

        Every file of the recorded state must be archived.
        Raises ArchiveIncompleteError.
        """
        members = self.index().members(module.id)
        if not members:
            raise ArchiveIncompleteError(module.id, module.id, "not archived")
        archived = {m.path for m in members}
        for required in self._required_files(module, state):
            path = self._member_path(required)[0]
            if path not in archived:
                raise ArchiveIncompleteError(module.id, path)
        return members

    def restore(self, module: Module, state: ProjectState | None = None, dry_run: bool = False) -> int:
        """Write the archived files of a module back to their locations.

        Existing files are never overwritten; the archive only fills in what
        is missing. When `state` is given, the archive must hold that very
        state: an archive of another build is not used, and is an error only
        if a recorded file is missing locally. All members are read and
        verified before anything is written. If writing fails, files already
        written are removed. With `dry_run` nothing is written.
        Raises ArchiveIncompleteError.
        Returns the number of files written (or that would be written).
        """
        members = self.check(module, state)

        if state is not None and not self._same_state(module, state):
            missing = [f for f in self._required_files(module, state) if not f.is_file()]
            if missing:
                raise ArchiveIncompleteError(module.id, self._member_path(missing[0])[0], "out of date")
            logger.info("[%s] - archive is out of date, local files kept", module.id)
            return 0

        pending = [m for m in members if not m.target(self.root).exists()]
        if not pending:
            logger.debug("[%s] - all archived files are in place", module.id)
            return 0
        with tempfile.TemporaryDirectory(prefix="buildcache-restore-") as staging:
            staged = self._stage(module, pending, Path(staging))
            if dry_run:
                logger.debug("[%s] - %d file(s) can be restored from archive", module.id, len(staged))
                return len(staged)
            self._write(module, staged)
        logger.info("[%s] - restored %d file(s) from archive", module.id, len(staged))
        return len(staged)

    def _same_state(self, module: Module, state: ProjectState) -> bool:
        try:
            archived = self.load_state(module)
        except StateUnreadableError as ex:
            raise ArchiveIncompleteError(module.id, str(ex.path), "unreadable") from ex
        return archived is not None and archived.to_dict(self.root) == state.to_dict(self.root)

    def _required_files(self, module: Module, state: ProjectState | None) -> list[Path]:
        if state is None:
            return []
        files = [module.directory / a.file for a in state.artifacts()]
        files += [module.directory / f.path for f in state.main_sources.files + state.test_sources.files]
        return files

    def _stage(self, module: Module, members: list[ArchiveMember], staging: Path) -> list[tuple[ArchiveMember, Path]]:
        staged: list[tuple[ArchiveMember, Path]] = []
        try:
            with tarfile.open(self.path, "r:") as tar:
                for n, member in enumerate(members):
                    try:
                        content = self._read_member(tar, member.name)
                    except KeyError:
                        raise ArchiveIncompleteError(module.id, member.name) from None
                    if member.checksum and hashlib.sha256(content).hexdigest() != member.checksum:
                        raise ArchiveIncompleteError(module.id, member.name, "corrupt")
                    temp = staging / f"{n}.bin"
                    temp.write_bytes(content)
                    staged.append((member, temp))
        except (OSError, tarfile.TarError) as ex:
            raise ArchiveIncompleteError(module.id, str(self.path), f"unreadable ({ex})") from ex
        return staged

    def _write(self, module: Module, staged: list[tuple[ArchiveMember, Path]]) -> None:
        written: list[Path] = []
        target = None
        try:
            for member, temp in staged:
                target = member.target(self.root)
                target.parent.mkdir(parents=True, exist_ok=True)
                try:
                    dst = target.open("xb")
                except FileExistsError:
                    logger.debug("[%s] - %s appeared during restore, kept", module.id, target)
                    continue
                written.append(target)
                with dst, temp.open("rb") as src:
                    shutil.copyfileobj(src, dst)
        except OSError as ex:
            for path in reversed(written):
                try:
                    path.unlink()
                except OSError as cleanup_error:
                    logger.error("[%s] - unable to remove %s: %s", module.id, path, cleanup_error)
            raise ArchiveIncompleteError(module.id, str(target), f"not writable ({ex})") from ex

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def _member_path(self, path: Path) -> tuple[str, bool]:
        try:
            return path.resolve().relative_to(self.root).as_posix(), True
        except ValueError:
            return str(path.resolve()), False

    def collect(self, module: Module) -> list[tuple[Path, str]]:
        """Files to archive for a module, as (path, kind), without duplicates.

        Covers the state document, recorded artifacts and source files, and
        the build directory minus excluded files and the archive itself.
        """
        try:
            state = ProjectState.load(module.state_file, self.root)
        except StateUnreadableError as ex:
            logger.warning("[%s] - not archived: %s", module.id, ex)
            return []
        if state is None:
            logger.debug("[%s] - not archived: no state", module.id)
            return []

        candidates: list[tuple[Path, str]] = [(module.state_file, KIND_STATE)]
        candidates += [(module.directory / a.file, KIND_ARTIFACT) for a in state.artifacts()]
        candidates += [
            (module.directory / f.path, KIND_SOURCE) for f in state.main_sources.files + state.test_sources.files
        ]
        if module.build_dir.is_dir():
            for path in _walk(module.build_dir):
                rel = path.relative_to(module.build_dir).as_posix()
                if path_included(rel, None, self.build_files_excludes):
                    candidates.append((path, KIND_BUILD))

        archive = self.path.resolve()
        seen: set[Path] = set()
        result: list[tuple[Path, str]] = []
        for path, kind in candidates:
            resolved = path.resolve()
            if resolved in seen or resolved == archive:
                continue
            seen.add(resolved)
            if not path.is_file():
                logger.warning("[%s] - not archived, file not found: %s", module.id, path)
                continue
            result.append((path, kind))
        return result

    def save(self, modules: Iterable[Module]) -> ArchiveIndex:
        """Replace the archive with the files of the given modules."""
        with self._lock:
            index = ArchiveIndex()
            payload: list[tuple[ArchiveMember, Path]] = []
            external = 0
            for module in modules:
                members: list[ArchiveMember] = []
                for path, kind in self.collect(module):
                    member_path, portable = self._member_path(path)
                    if portable:
                        name = member_path
                    else:
                        name = f"{EXTERNAL_PREFIX}{external}"
                        external += 1
                        warnings.warn(
                            f"[{module.id}] - {member_path} is outside of {self.root}, archive is not portable",
                            NonPortablePathWarning,
                            stacklevel=2,
                        )
                    member = ArchiveMember(
                        name=name,
                        path=member_path,
                        kind=kind,
                        portable=portable,
                        size=path.stat().st_size,
                        checksum=compute_checksum(path),
                    )
                    members.append(member)
                    payload.append((member, path))
                if members:
                    index.modules[module.id] = members
                    logger.info("[%s] - Found %d build file(s)", module.id, len(members))

            self._write_archive(index, payload)
            self._index = index
            logger.info("Archive %s written, %d module(s), %d file(s)", self.path, len(index.modules), index.file_count())
            return index

    def _write_archive(self, index: ArchiveIndex, payload: list[tuple[ArchiveMember, Path]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "wb") as f, tarfile.open(fileobj=f, mode="w:", format=tarfile.PAX_FORMAT) as tar:
                data = (json.dumps(index.to_dict(), indent=2, sort_keys=True) + "\n").encode("utf-8")
                info = tarfile.TarInfo(INDEX_NAME)
                info.size = len(data)
                tar.addfile(info, io.BytesIO(data))
                for member, path in payload:
                    info = tar.gettarinfo(str(path), arcname=member.name)
                    info.uid = info.gid = 0
                    info.uname = info.gname = ""
                    with path.open("rb") as content:
                        tar.addfile(info, content)
            os.replace(temp_name, self.path)
        except BaseException:
            if os.path.exists(temp_name):
                os.unlink(temp_name)
            raise
