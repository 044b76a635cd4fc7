from __future__ import annotations

import shutil
import tarfile
from pathlib import Path

import pytest

from buildcache.archive import ArchiveStore
from buildcache.engine import DirtyReason, InvalidationEngine, ModuleStatus
from buildcache.errors import ArchiveIncompleteError, NonPortablePathWarning
from buildcache.models import ArtifactEntry
from buildcache.settings import CacheConfig

from conftest import write


def _wipe_build_dirs(modules) -> None:
    for module in modules:
        shutil.rmtree(module.build_dir, ignore_errors=True)


def test_save_lists_state_artifacts_and_sources(build_root, modules, run_build) -> None:
    run_build(build_root, modules)
    write(build_root / "core/target/classes/Core.class", "bytecode")
    store = ArchiveStore(build_root / "cache.tar", build_root)

    index = store.save(modules)

    core = {m.path: m.kind for m in index.members("com.acme:core")}
    assert core == {
        "core/target/state.json": "state",
        "core/target/core-1.0.jar": "artifact",
        "core/src/main/java/Core.java": "source",
        "core/src/test/java/CoreTest.java": "source",
        "core/target/classes/Core.class": "build",
    }
    assert all(m.portable for m in index.members("com.acme:core"))

    with tarfile.open(build_root / "cache.tar") as tar:
        names = tar.getnames()
    assert names[0] == "index.json"
    assert "core/target/core-1.0.jar" in names

    reopened = ArchiveStore(build_root / "cache.tar", build_root).index()
    assert reopened.to_dict() == index.to_dict()


def test_build_files_excludes_and_archive_itself(build_root, modules, run_build) -> None:
    run_build(build_root, modules)
    write(build_root / "api/target/classes/Api.class", "bytecode")
    write(build_root / "api/target/tmp/scratch.txt", "scratch")
    store = ArchiveStore(build_root / "api/target/cache.tar", build_root, ["tmp/**"])

    store.save(modules)
    store.save(modules)

    paths = [m.path for m in store.index().members("com.acme:api")]
    assert "api/target/classes/Api.class" in paths
    assert "api/target/tmp/scratch.txt" not in paths
    assert "api/target/cache.tar" not in paths


def test_modules_without_state_are_not_archived(build_root, modules) -> None:
    store = ArchiveStore(build_root / "cache.tar", build_root)
    index = store.save(modules)
    assert index.modules == {}


def test_fresh_checkout_is_fast_forwarded_from_archive(build_root, modules, run_build) -> None:
    archive = build_root / "cache.tar"
    run_build(build_root, modules, CacheConfig(archive_file=archive, create_archive=True))
    jar = (build_root / "core/target/core-1.0.jar").read_bytes()
    _wipe_build_dirs(modules)

    ran = run_build(build_root, modules, CacheConfig(archive_file=archive, load_archive=True))

    assert ran == []
    assert (build_root / "core/target/core-1.0.jar").read_bytes() == jar
    assert all(m.state_file.is_file() for m in modules)


def test_missing_entry_demotes_module_without_partial_restore(build_root, modules, run_build) -> None:
    run_build(build_root, modules)
    (build_root / "api/target/api-1.0.jar").unlink()
    store = ArchiveStore(build_root / "cache.tar", build_root)
    store.save(modules)
    _wipe_build_dirs(modules)

    with pytest.raises(ArchiveIncompleteError, match="api-1.0.jar"):
        store.restore(modules[0], store.load_state(modules[0]))
    assert not modules[0].state_file.exists()

    evaluations = InvalidationEngine(build_root, CacheConfig(), archive=store).evaluate(modules)
    assert evaluations["com.acme:api"].reason == DirtyReason.ARCHIVE_INCOMPLETE
    assert evaluations["com.acme:core"].reason == DirtyReason.UPSTREAM_DIRTY
    assert not modules[0].build_dir.exists()


def test_module_missing_from_archive(build_root, modules, run_build) -> None:
    run_build(build_root, modules)
    store = ArchiveStore(build_root / "cache.tar", build_root)
    store.save(modules[:1])

    with pytest.raises(ArchiveIncompleteError, match="not archived"):
        store.restore(modules[1])
    assert store.load_state(modules[1]) is None


def test_corrupt_member_is_detected(build_root, modules, run_build) -> None:
    run_build(build_root, modules)
    store = ArchiveStore(build_root / "cache.tar", build_root)
    index = store.save(modules[:1])

    # same size, different content
    data = bytearray((build_root / "cache.tar").read_bytes())
    payload = b"jar of api\n"
    offset = data.find(payload)
    assert offset > 0
    data[offset:offset + len(payload)] = b"JAR OF API\n"
    (build_root / "cache.tar").write_bytes(bytes(data))
    _wipe_build_dirs(modules)

    fresh = ArchiveStore(build_root / "cache.tar", build_root)
    assert fresh.index().to_dict() == index.to_dict()
    with pytest.raises(ArchiveIncompleteError, match="corrupt"):
        fresh.restore(modules[0])
    assert not modules[0].build_dir.exists()


def test_interrupted_save_keeps_previous_archive(build_root, modules, run_build, monkeypatch) -> None:
    run_build(build_root, modules)
    path = build_root / "cache.tar"
    store = ArchiveStore(path, build_root)
    store.save(modules)
    before = path.read_bytes()

    def boom(self, tarinfo, fileobj=None):
        raise OSError("disk full")

    monkeypatch.setattr(tarfile.TarFile, "addfile", boom)
    with pytest.raises(OSError, match="disk full"):
        store.save(modules)

    assert path.read_bytes() == before
    assert sorted(p.name for p in build_root.iterdir() if p.name.endswith(".tmp")) == []


def test_paths_outside_root_are_not_portable(build_root, modules, run_build) -> None:
    api = modules[0]
    api.artifact = ArtifactEntry(file="../../outside/api-1.0.jar")
    run_build(build_root, modules)
    outside = (build_root.parent / "outside" / "api-1.0.jar").resolve()
    assert outside.is_file()

    store = ArchiveStore(build_root / "cache.tar", build_root)
    with pytest.warns(NonPortablePathWarning, match="not portable"):
        index = store.save(modules)

    member = next(m for m in index.members(api.id) if m.kind == "artifact")
    assert not member.portable
    assert member.name == "external/0"
    assert member.path == str(outside)

    outside.unlink()
    _wipe_build_dirs(modules)
    evaluations = InvalidationEngine(build_root, CacheConfig(), archive=store).evaluate(modules)
    assert evaluations[api.id].status == ModuleStatus.VALID
    assert outside.read_text() == "jar of api\n"


def test_out_of_date_archive_keeps_local_edits(build_root, modules, run_build) -> None:
    archive = build_root / "cache.tar"
    run_build(build_root, modules, CacheConfig(archive_file=archive, create_archive=True))
    source = write(build_root / "api/src/main/java/Api.java", "class Api { int edited; }\n")
    assert run_build(build_root, modules) != []
    state = modules[0].state_file.read_bytes()

    ran = run_build(build_root, modules, CacheConfig(archive_file=archive, load_archive=True))

    assert ran == []
    assert source.read_text() == "class Api { int edited; }\n"
    assert modules[0].state_file.read_bytes() == state


def test_out_of_date_archive_cannot_fill_missing_outputs(build_root, modules, run_build) -> None:
    archive = build_root / "cache.tar"
    run_build(build_root, modules, CacheConfig(archive_file=archive, create_archive=True))
    source = write(build_root / "api/src/main/java/Api.java", "class Api { int edited; }\n")
    run_build(build_root, modules)
    (build_root / "api/target/api-1.0.jar").unlink()

    store = ArchiveStore(archive, build_root)
    evaluations = InvalidationEngine(build_root, CacheConfig(), archive=store).evaluate(modules)
    assert evaluations["com.acme:api"].reason == DirtyReason.ARCHIVE_INCOMPLETE
    assert evaluations["com.acme:api"].detail == "api/target/api-1.0.jar"
    assert not (build_root / "api/target/api-1.0.jar").exists()
    assert source.read_text() == "class Api { int edited; }\n"


def test_restore_only_fills_in_missing_files(build_root, modules, run_build) -> None:
    archive = build_root / "cache.tar"
    write(build_root / "api/target/classes/Api.class", "bytecode")
    run_build(build_root, modules, CacheConfig(archive_file=archive, create_archive=True))
    local = write(build_root / "api/target/classes/Api.class", "local bytecode")
    (build_root / "api/target/api-1.0.jar").unlink()

    ran = run_build(build_root, modules, CacheConfig(archive_file=archive, load_archive=True))

    assert ran == []
    assert (build_root / "api/target/api-1.0.jar").read_text() == "jar of api\n"
    assert local.read_text() == "local bytecode"


def test_dry_run_evaluation_restores_nothing(build_root, modules, run_build) -> None:
    archive = build_root / "cache.tar"
    run_build(build_root, modules, CacheConfig(archive_file=archive, create_archive=True))
    _wipe_build_dirs(modules)

    store = ArchiveStore(archive, build_root)
    evaluations = InvalidationEngine(build_root, CacheConfig(), archive=store, dry_run=True).evaluate(modules)

    assert {e.status for e in evaluations.values()} == {ModuleStatus.VALID}
    assert not any(m.build_dir.exists() for m in modules)
