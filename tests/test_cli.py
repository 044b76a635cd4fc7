"""
Tests for the command implementations behind the CLI.
"""

from __future__ import annotations

import json
import shutil
from pathlib import Path

import pytest

from buildcache.commands.archive_cmd import run_archive_create, run_archive_list
from buildcache.commands.build import run_build
from buildcache.commands.config_cmd import run_diff_config, run_match
from buildcache.commands.status import run_status

from conftest import write

JAR_EXECUTION = "org.apache.maven.plugins:maven-jar-plugin:3.2.0:jar@default-jar"


def _json(capsys: pytest.CaptureFixture[str]):
    return json.loads(capsys.readouterr().out)


def test_status_before_and_after_build(build_root: Path, reactor_file: Path, capsys) -> None:
    assert run_status(build_root, output_json=True) == 1
    before = _json(capsys)
    assert [m["module"] for m in before] == ["com.acme:api", "com.acme:core"]
    assert {m["reason"] for m in before} == {"state_unavailable"}

    assert run_build(build_root, output_json=True) == 0
    rows = _json(capsys)
    assert {r["action"] for r in rows} == {"run"}
    assert len(rows) == 4

    assert run_status(build_root, output_json=True) == 0
    after = _json(capsys)
    assert {m["status"] for m in after} == {"valid"}
    assert {e["status"] for m in after for e in m["executions"]} == {"cached"}

    assert run_build(build_root, output_json=True) == 0
    assert {r["action"] for r in _json(capsys)} == {"skip"}


def test_dry_run_records_nothing(build_root: Path, reactor_file: Path, capsys) -> None:
    assert run_build(build_root, dry_run=True) == 0
    assert not (build_root / "api/target/state.json").exists()
    assert "Build plan (dry run)" in capsys.readouterr().out


def test_status_reports_configuration_change(build_root: Path, reactor_file: Path, capsys) -> None:
    run_build(build_root)
    reactor_file.write_text(reactor_file.read_text().replace("{release: \"11\"}", "{release: \"17\"}"))
    capsys.readouterr()

    assert run_status(build_root, output_json=True) == 1
    api, core = _json(capsys)
    assert api["reason"] == "executions_changed"
    assert api["executions"][0]["status"] == "diff"
    assert api["executions"][0]["diffs"] == ["/configuration{0}/release: '11' -> '17'"]
    assert core["reason"] == "upstream_dirty"


def test_status_table_and_explain(build_root: Path, reactor_file: Path, capsys) -> None:
    run_build(build_root)
    capsys.readouterr()
    assert run_status(build_root, explain=True) == 0
    out = capsys.readouterr().out
    assert "com.acme:core" in out
    assert "All executions are cached! (fast-forward)" in out


def test_properties_disable_the_cache(build_root: Path, reactor_file: Path, capsys) -> None:
    run_build(build_root)
    capsys.readouterr()
    assert run_status(build_root, properties={"cache.enabled": "false"}, output_json=True) == 1
    assert {m["reason"] for m in _json(capsys)} == {"cache_disabled"}


def test_clean_goal_status(build_root: Path, reactor_file: Path, capsys) -> None:
    run_build(build_root)
    capsys.readouterr()
    assert run_status(build_root, goals=["clean", "install"], output_json=True) == 1
    assert {m["reason"] for m in _json(capsys)} == {"clean_requested"}


def test_missing_reactor_and_cycles(build_root: Path, capsys) -> None:
    assert run_status(build_root) == 2
    assert "Reactor description not found" in capsys.readouterr().err

    write(
        build_root / "reactor.yaml",
        "modules:\n"
        "  - {group: g, artifact: a, depends_on: ['g:b']}\n"
        "  - {group: g, artifact: b, depends_on: ['g:a']}\n",
    )
    assert run_status(build_root) == 2
    assert "Cyclic module dependencies: g:a -> g:b" in capsys.readouterr().err
    assert run_build(build_root) == 1


def test_match(capsys) -> None:
    assert run_match(JAR_EXECUTION, output_json=True) == 0
    assert _json(capsys) == {"execution": JAR_EXECUTION, "included": True}

    assert run_match(JAR_EXECUTION, ["*"], ["*:maven-jar-plugin:*"]) == 1
    assert "excluded" in capsys.readouterr().out

    assert run_match("not-a-reference") == 2


def test_diff_config(tmp_path: Path, capsys) -> None:
    orig = write(tmp_path / "orig.xml", "<configuration><release>11</release><debug>true</debug></configuration>")
    same = write(tmp_path / "same.yaml", "release: '11'\ndebug: true\n")
    changed = write(tmp_path / "changed.xml", "<configuration><release>17</release></configuration>")

    assert run_diff_config(orig, same) == 0
    assert "equal" in capsys.readouterr().out

    assert run_diff_config(orig, changed, output_json=True) == 1
    result = _json(capsys)
    assert not result["equal"]
    assert [(d["kind"], d["location"]) for d in result["diffs"]] == [
        ("value", "/configuration{0}/release"),
        ("removed", "/configuration{1}/debug"),
    ]

    broken = write(tmp_path / "broken.xml", "<configuration>")
    assert run_diff_config(orig, broken) == 2


def test_archive_create_and_list(build_root: Path, reactor_file: Path, capsys) -> None:
    archive = build_root / "out" / "cache.tar"
    assert run_archive_create(build_root, output=archive) == 1
    assert "Nothing to archive" in capsys.readouterr().err

    run_build(build_root)
    capsys.readouterr()
    assert run_archive_create(build_root, output=archive) == 0
    assert archive.is_file()
    capsys.readouterr()

    assert run_archive_list(archive, build_root, output_json=True) == 0
    index = _json(capsys)
    assert sorted(index["modules"]) == ["com.acme:api", "com.acme:core"]
    paths = [m["path"] for m in index["modules"]["com.acme:core"]]
    assert "core/target/state.json" in paths
    assert "core/src/main/java/Core.java" in paths

    assert run_archive_list(build_root / "missing.tar") == 1


def test_archive_create_uses_configured_file(build_root: Path, reactor_file: Path, capsys) -> None:
    write(build_root / "buildcache.toml", 'archive_file = "cache.tar"\n')
    run_build(build_root)
    assert run_archive_create(build_root) == 0
    assert (build_root / "cache.tar").is_file()


def test_status_and_dry_run_do_not_restore_from_archive(build_root: Path, reactor_file: Path, capsys) -> None:
    for name in ("api", "core"):
        write(build_root / name / "target" / f"{name}-1.0.jar", f"jar of {name}\n")
    create = {"cache.archive_file": "cache.tar", "cache.create_archive": "true"}
    assert run_build(build_root, properties=create) == 0
    assert (build_root / "cache.tar").is_file()
    shutil.rmtree(build_root / "api" / "target")
    capsys.readouterr()
    load = {"cache.archive_file": "cache.tar", "cache.load_archive": "true"}

    assert run_status(build_root, properties=load, output_json=True) == 0
    assert {m["status"] for m in _json(capsys)} == {"valid"}
    assert not (build_root / "api" / "target").exists()

    assert run_build(build_root, properties=load, dry_run=True) == 0
    assert not (build_root / "api" / "target").exists()

    assert run_build(build_root, properties=load) == 0
    assert (build_root / "api" / "target" / "state.json").is_file()
    assert (build_root / "api" / "target" / "api-1.0.jar").read_text() == "jar of api\n"
