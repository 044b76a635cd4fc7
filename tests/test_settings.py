from __future__ import annotations

from pathlib import Path

import pytest

from buildcache.settings import CacheConfig, ModuleConfig, load_config, parse_config

CONFIG_TOML = """\
enable_checksums = false
archive_file = "cache/build-cache.tar"
executions_excludes = ["*:maven-deploy-plugin:*"]
project_files_excludes = ["*.iml"]

[[module]]
glob = "/examples/*"
enabled = false

[[module]]
path = "core"
executions_includes = ["*:maven-compiler-plugin:*"]
project_files_excludes = ["docs/"]
"""


def test_defaults() -> None:
    config = CacheConfig()
    assert config.enabled
    assert config.enable_checksums
    assert config.archive_file is None
    assert config.workers >= 1


def test_load_from_buildcache_toml(tmp_path: Path) -> None:
    (tmp_path / "buildcache.toml").write_text(CONFIG_TOML)
    config = load_config(tmp_path)

    assert not config.enable_checksums
    assert config.archive_file == tmp_path / "cache" / "build-cache.tar"
    assert config.executions_excludes == ["*:maven-deploy-plugin:*"]
    assert len(config.modules) == 2


def test_load_from_pyproject_tool_table(tmp_path: Path) -> None:
    (tmp_path / "pyproject.toml").write_text('[tool.buildcache]\nenabled = false\nparallelism = 3\n')
    config = load_config(tmp_path)
    assert not config.enabled
    assert config.workers == 3


def test_missing_configuration_uses_defaults(tmp_path: Path) -> None:
    assert load_config(tmp_path) == CacheConfig()


def test_properties_override_file(tmp_path: Path) -> None:
    (tmp_path / "buildcache.toml").write_text(CONFIG_TOML)
    config = load_config(
        tmp_path,
        {
            "cache.enable_checksums": "true",
            "cache.executions_excludes": "*:a:*, *:b:*",
            "cache.load_archive": "",
            "other.property": "ignored",
        },
    )
    assert config.enable_checksums
    assert config.executions_excludes == ["*:a:*", "*:b:*"]
    assert config.load_archive


def test_module_selection() -> None:
    config = parse_config(
        {
            "executions_excludes": ["*:deploy:*"],
            "project_files_excludes": ["*.iml"],
            "module": [
                {"glob": "/examples/*", "enabled": False},
                {"path": "core", "executions_includes": ["*:compiler:*"], "project_files_excludes": ["docs/"]},
                {"regex": "tools/.*", "executions_excludes": ["*"]},
            ],
        }
    )

    examples = config.for_module("examples/hello")
    assert not examples.enabled

    core = config.for_module("core")
    assert core.enabled
    assert core.executions_includes == ["*:compiler:*"]
    assert core.executions_excludes == ["*:deploy:*"]
    assert core.project_files_excludes == ["docs/", "*.iml"]

    tools = config.for_module("tools/lint")
    assert tools.executions_excludes == ["*"]

    other = config.for_module("api")
    assert other == ModuleConfig(
        path="api",
        executions_excludes=["*:deploy:*"],
        project_files_excludes=["*.iml"],
    )


def test_global_disable_wins_over_module() -> None:
    config = parse_config({"module": [{"path": "core", "enabled": True}]}, {"cache.enabled": "false"})
    assert not config.for_module("core").enabled


@pytest.mark.parametrize(
    "data, message",
    [
        ({"module": [{"enabled": False}]}, "path, glob or regex"),
        ({"parallelism": 0}, "parallelism"),
        ({"executions_includes": 3}, "list of strings"),
    ],
)
def test_invalid_configuration(data: dict, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        parse_config(data)
