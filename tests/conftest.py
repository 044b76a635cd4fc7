"""Pytest configuration and fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from buildcache.config import from_mapping
from buildcache.execution import ExecutionEntry
from buildcache.models import ArtifactEntry, Module
from buildcache.reactor import ReactorGraph
from buildcache.session import BuildSession
from buildcache.settings import CacheConfig

COMPILER = "org.apache.maven.plugins:maven-compiler-plugin:3.8.1"
JAR = "org.apache.maven.plugins:maven-jar-plugin:3.2.0"
CLEAN = "org.apache.maven.plugins:maven-clean-plugin:3.1.0"

REACTOR_YAML = """\
modules:
  - group: com.acme
    artifact: api
    version: "1.0"
    directory: api
    sources: [src/main/java]
    artifact_file: target/api-1.0.jar
    executions:
      - plugin: org.apache.maven.plugins:maven-compiler-plugin:3.8.1
        goal: compile
        configuration: {release: "11"}
      - plugin: org.apache.maven.plugins:maven-jar-plugin:3.2.0
        goal: jar
  - group: com.acme
    artifact: core
    version: "1.0"
    directory: core
    sources: [src/main/java]
    test_sources: [src/test/java]
    depends_on: [com.acme:api]
    artifact_file: target/core-1.0.jar
    executions:
      - plugin: org.apache.maven.plugins:maven-compiler-plugin:3.8.1
        goal: compile
        configuration: "<configuration><release>11</release></configuration>"
      - plugin: org.apache.maven.plugins:maven-jar-plugin:3.2.0
        goal: jar
"""


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def compile_execution(release: str = "11") -> ExecutionEntry:
    return ExecutionEntry(
        *COMPILER.split(":"), "compile", "default-compile", from_mapping({"release": release}), "compile"
    )


def jar_execution() -> ExecutionEntry:
    return ExecutionEntry(*JAR.split(":"), "jar", "default-jar", from_mapping({}), "package")


def clean_execution() -> ExecutionEntry:
    return ExecutionEntry(*CLEAN.split(":"), "clean", "default-clean", from_mapping({}), "clean")


def make_module(root: Path, name: str, depends_on: list[str] | None = None, release: str = "11") -> Module:
    directory = root / name
    write(directory / "pom.xml", f"<project><artifactId>{name}</artifactId></project>\n")
    write(directory / "src/main/java" / f"{name.title()}.java", f"class {name.title()} {{}}\n")
    write(directory / "src/test/java" / f"{name.title()}Test.java", f"class {name.title()}Test {{}}\n")
    return Module(
        group_id="com.acme",
        artifact_id=name,
        directory=directory,
        version="1.0",
        source_roots=["src/main/java"],
        test_source_roots=["src/test/java"],
        dependencies=[f"com.acme:{d}" for d in depends_on or []],
        properties={"project.build.sourceEncoding": "UTF-8"},
        artifact=ArtifactEntry(file=f"target/{name}-1.0.jar"),
        executions=[clean_execution(), compile_execution(release), jar_execution()],
    )


@pytest.fixture
def build_root(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    return root.resolve()


@pytest.fixture
def modules(build_root: Path) -> list[Module]:
    """Three module reactor: api <- core <- app."""
    return [
        make_module(build_root, "api"),
        make_module(build_root, "core", ["api"]),
        make_module(build_root, "app", ["core"]),
    ]


@pytest.fixture
def run_build() -> Callable[..., list[str]]:
    """Simulate the host tool: run what the session does not skip.

    Returns the names of the executions that ran.
    """

    def _run(
        root: Path,
        modules: list[Module],
        config: CacheConfig | None = None,
        goals: tuple[str, ...] = ("install",),
    ) -> list[str]:
        session = BuildSession(root, modules, config or CacheConfig(parallelism=2), goals)
        session.start()
        ran: list[str] = []
        graph = ReactorGraph.from_modules(modules)
        for module_id in graph.topological_sort():
            module = graph.get(module_id)
            for execution in module.executions:
                if execution.is_clean and "clean" not in goals:
                    continue
                if not session.should_run(module_id, execution):
                    continue
                ran.append(f"{module.artifact_id}:{execution.goal}")
                if execution.goal == "jar" and module.artifact is not None:
                    write(module.directory / module.artifact.file, f"jar of {module.artifact_id}\n")
                session.record_execution(module_id, execution)
            session.module_succeeded(module_id)
        session.finish()
        return ran

    return _run


@pytest.fixture
def reactor_file(build_root: Path) -> Path:
    for name in ("api", "core"):
        write(build_root / name / "pom.xml", f"<project><artifactId>{name}</artifactId></project>\n")
        write(build_root / name / "src/main/java" / f"{name.title()}.java", f"class {name.title()} {{}}\n")
    return write(build_root / "reactor.yaml", REACTOR_YAML)
