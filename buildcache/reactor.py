"""Reactor (module dependency graph) construction and analysis."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from .config.tree import empty_config, from_mapping, parse_xml
from .errors import CyclicDependencyError
from .execution import ExecutionEntry
from .models import ArtifactEntry, Module

REACTOR_FILE_NAME = "reactor.yaml"


@dataclass
class ReactorGraph:
    """Graph of module dependencies with cycle detection and layering."""

    nodes: dict[str, Module] = field(default_factory=dict)  # id -> Module
    order: list[str] = field(default_factory=list)  # declaration order
    edges: dict[str, set[str]] = field(
        default_factory=lambda: defaultdict(set)
    )  # module -> dependencies
    reverse_edges: dict[str, set[str]] = field(
        default_factory=lambda: defaultdict(set)
    )  # module -> dependents

    @classmethod
    def from_modules(cls, modules: Iterable[Module]) -> "ReactorGraph":
        """Build graph from modules; dependencies outside the reactor are ignored."""
        graph = cls()
        modules = list(modules)
        for module in modules:
            if module.id in graph.nodes:
                raise ValueError(f"duplicate module in reactor: {module.id}")
            graph.nodes[module.id] = module
            graph.order.append(module.id)

        for module in modules:
            for dep in module.dependencies:
                if dep not in graph.nodes or dep == module.id:
                    continue
                graph.edges[module.id].add(dep)
                graph.reverse_edges[dep].add(module.id)

        return graph

    def get(self, module_id: str) -> Module:
        return self.nodes[module_id]

    def get_dependencies(self, module_id: str) -> set[str]:
        """Direct upstream modules."""
        return self.edges.get(module_id, set())

    def get_dependents(self, module_id: str) -> set[str]:
        """Direct downstream modules."""
        return self.reverse_edges.get(module_id, set())

    def downstream(self, module_id: str) -> set[str]:
        """All modules reachable through dependents, excluding the start."""
        visited: set[str] = set()
        stack = list(self.get_dependents(module_id))
        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)
            stack.extend(self.get_dependents(current) - visited)
        return visited

    def _sorted(self, ids: Iterable[str]) -> list[str]:
        rank = {m: i for i, m in enumerate(self.order)}
        return sorted(ids, key=lambda m: rank[m])

    def layers(self) -> list[list[str]]:
        """Group modules into topological layers (dependencies first).

        Modules of one layer do not depend on each other. Uses Kahn's
        algorithm; raises CyclicDependencyError if any module is left over.
        """
        cycles = self.find_cycles()
        if cycles:
            raise CyclicDependencyError(cycles)

        in_degree = {node: len(self.get_dependencies(node)) for node in self.nodes}
        current = self._sorted(n for n, d in in_degree.items() if d == 0)
        result: list[list[str]] = []
        while current:
            result.append(current)
            following: set[str] = set()
            for node in current:
                for dependent in self.get_dependents(node):
                    in_degree[dependent] -= 1
                    if in_degree[dependent] == 0:
                        following.add(dependent)
            current = self._sorted(following)
        return result

    def topological_sort(self) -> list[str]:
        """Return modules in dependency order (deps first)."""
        return [m for layer in self.layers() for m in layer]

    def find_cycles(self) -> list[list[str]]:
        """Find all cycles using Tarjan's strongly connected components.

        Only returns SCCs with more than one node (self edges are dropped
        when the graph is built).
        """
        index_counter = [0]
        stack: list[str] = []
        lowlinks: dict[str, int] = {}
        index: dict[str, int] = {}
        on_stack: dict[str, bool] = {}
        sccs: list[list[str]] = []

        def strongconnect(node: str) -> None:
            index[node] = index_counter[0]
            lowlinks[node] = index_counter[0]
            index_counter[0] += 1
            stack.append(node)
            on_stack[node] = True

            for dep in self._sorted(self.get_dependencies(node)):
                if dep not in index:
                    strongconnect(dep)
                    lowlinks[node] = min(lowlinks[node], lowlinks[dep])
                elif on_stack.get(dep, False):
                    lowlinks[node] = min(lowlinks[node], index[dep])

            if lowlinks[node] == index[node]:
                scc = []
                while True:
                    w = stack.pop()
                    on_stack[w] = False
                    scc.append(w)
                    if w == node:
                        break
                if len(scc) > 1:
                    sccs.append(self._sorted(scc))

        for node in self.order:
            if node not in index:
                strongconnect(node)

        return sccs


# -----------------------------------------------------------------------------
# Reactor description files
# -----------------------------------------------------------------------------


def _execution(raw: dict[str, Any], default_version: str) -> ExecutionEntry:
    plugin = str(raw.get("plugin", "")).strip()
    parts = plugin.split(":")
    if len(parts) == 2:
        parts.append(default_version)
    if len(parts) != 3 or not all(parts):
        raise ValueError(f"execution plugin must be group:artifact[:version], got {plugin!r}")
    goal = str(raw.get("goal", "")).strip()
    if not goal:
        raise ValueError(f"execution of {plugin} has no goal")
    execution_id = str(raw.get("id") or f"default-{goal}")

    configuration = raw.get("configuration")
    if configuration is None:
        config = empty_config()
    elif isinstance(configuration, str):
        config = parse_xml(configuration)
    else:
        config = from_mapping(configuration)
    return ExecutionEntry(parts[0], parts[1], parts[2], goal, execution_id, config, raw.get("phase"))


def _artifact(raw: Any) -> ArtifactEntry | None:
    if raw is None:
        return None
    if isinstance(raw, str):
        extension = raw.rsplit(".", 1)[-1] if "." in raw else ""
        return ArtifactEntry(file=raw, type=extension or "jar", extension=extension or "jar")
    return ArtifactEntry.from_dict(raw)


def module_from_dict(raw: dict[str, Any], root: Path) -> Module:
    """Create a Module from a reactor description entry."""
    group_id = str(raw.get("group", "")).strip()
    artifact_id = str(raw.get("artifact", "")).strip()
    if not group_id or not artifact_id:
        raise ValueError("module entries require group and artifact")
    version = str(raw.get("version", ""))
    directory = root / str(raw.get("directory", artifact_id))
    return Module(
        group_id=group_id,
        artifact_id=artifact_id,
        directory=directory,
        version=version,
        build_directory=str(raw.get("build_directory", "target")),
        source_roots=[str(s) for s in raw.get("sources", [])],
        test_source_roots=[str(s) for s in raw.get("test_sources", [])],
        dependencies=[str(d) for d in raw.get("depends_on", [])],
        submodules=[str(s) for s in raw.get("modules", [])],
        properties={str(k): str(v) for k, v in (raw.get("properties") or {}).items()},
        artifact=_artifact(raw.get("artifact_file")),
        attached_artifacts=[a for a in (_artifact(x) for x in raw.get("attached_artifacts", [])) if a],
        executions=[_execution(e, version) for e in raw.get("executions", [])],
    )


def load_reactor(path: Path) -> list[Module]:
    """
    Load modules from a YAML reactor description.

    Module directories are relative to the file's directory:

        modules:
          - group: com.acme
            artifact: core
            directory: core
            sources: [src/main/java]
            depends_on: [com.acme:api]
            executions:
              - plugin: org.apache.maven.plugins:maven-compiler-plugin:3.8.1
                goal: compile
                configuration: {release: 11}
    """
    import yaml

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as ex:
        raise ValueError(f"invalid reactor description {path}: {ex}") from ex
    if not isinstance(data, dict):
        raise ValueError(f"reactor description must be a mapping: {path}")
    root = path.parent.resolve()
    return [module_from_dict(m, root) for m in data.get("modules", []) if isinstance(m, dict)]
