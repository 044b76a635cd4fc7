"""
Fast-forward decisions.

For every module, in dependency order, the engine checks that

1. a recorded state exists and can be read
2. the recorded source files and project files are unchanged
3. every upstream module is itself valid
4. every execution of the current build plan is either excluded from caching
   or has a recorded counterpart with an equal configuration

A module passing all checks is VALID and all its cached executions can be
skipped. Anything else makes it DIRTY, and every module depending on it
DIRTY as well. Modules of one topological layer are evaluated in parallel.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

from .config.fingerprint import ConfigComparison, ConfigDiff, compare, diffs
from .errors import ArchiveIncompleteError, StateUnreadableError
from .execution import ExecutionEntry, ExecutionMatcher
from .models import Module, SourceSet
from .reactor import ReactorGraph
from .settings import CacheConfig, ModuleConfig
from .state.files import FileChange, ProjectFiles, diff_source_sets, scan_project_files, scan_sources
from .state.project import ProjectState

if TYPE_CHECKING:
    from .archive import ArchiveStore

logger = logging.getLogger(__name__)


class ModuleStatus(str, Enum):
    """Lifecycle of a module within one build."""

    UNKNOWN = "unknown"
    VALID = "valid"  # fast-forwarded from recorded state
    DIRTY = "dirty"  # must be built
    REBUILT = "rebuilt"  # built for real, new state captured


class DirtyReason(str, Enum):
    """Why a module could not be fast-forwarded."""

    CACHE_DISABLED = "cache_disabled"
    CLEAN_REQUESTED = "clean_requested"
    STATE_UNAVAILABLE = "state_unavailable"
    STATE_UNREADABLE = "state_unreadable"
    FILES_CHANGED = "files_changed"
    EXECUTIONS_CHANGED = "executions_changed"
    UPSTREAM_DIRTY = "upstream_dirty"
    ARCHIVE_INCOMPLETE = "archive_incomplete"


class ExecutionState(str, Enum):
    NEW = "new"  # no recorded execution with this identity
    CACHED = "cached"  # recorded with an equal configuration
    DIFF = "diff"  # recorded with a different configuration
    EXCLUDED = "excluded"  # not eligible for caching, always runs


@dataclass
class ExecutionStatus:
    """Classification of one execution of the current build plan."""

    execution: ExecutionEntry
    state: ExecutionState
    recorded: ExecutionEntry | None = None
    comparison: ConfigComparison | None = None

    @property
    def is_cached(self) -> bool:
        return self.state == ExecutionState.CACHED

    def diffs(self) -> list[ConfigDiff]:
        if self.state != ExecutionState.DIFF or self.recorded is None:
            return []
        return list(diffs(self.recorded.config, self.execution.config))

    def __str__(self) -> str:
        return f"[{self.state.value.upper()}] {self.execution.name}"


@dataclass
class ModuleEvaluation:
    """Outcome of the validity check of one module."""

    module: Module
    status: ModuleStatus = ModuleStatus.UNKNOWN
    reason: DirtyReason | None = None
    detail: str = ""
    state: ProjectState | None = None
    main_sources: SourceSet | None = None
    test_sources: SourceSet | None = None
    project_files: ProjectFiles | None = None
    file_changes: list[FileChange] = field(default_factory=list)
    executions: list[ExecutionStatus] = field(default_factory=list)

    @property
    def module_id(self) -> str:
        return self.module.id

    @property
    def valid(self) -> bool:
        """Valid for downstream modules: fast-forwarded or rebuilt."""
        return self.status in (ModuleStatus.VALID, ModuleStatus.REBUILT)

    @property
    def fast_forward(self) -> bool:
        return self.status == ModuleStatus.VALID

    def mark_valid(self) -> None:
        self.status = ModuleStatus.VALID
        self.reason = None
        self.detail = ""

    def mark_dirty(self, reason: DirtyReason, detail: str = "") -> None:
        self.status = ModuleStatus.DIRTY
        self.reason = reason
        self.detail = detail

    def mark_rebuilt(self) -> None:
        self.status = ModuleStatus.REBUILT
        self.reason = None
        self.detail = ""

    def execution_status(self, execution: ExecutionEntry) -> ExecutionStatus | None:
        for status in self.executions:
            if status.execution.same_identity(execution):
                return status
        return None

    def summary(self) -> list[str]:
        """Human readable verdict lines."""
        if self.status == ModuleStatus.VALID:
            return ["All executions are cached! (fast-forward)"]
        if self.status == ModuleStatus.REBUILT:
            return ["Module rebuilt, state recorded."]
        if self.reason == DirtyReason.CACHE_DISABLED:
            return ["Cache is disabled."]
        if self.reason == DirtyReason.CLEAN_REQUESTED:
            return ["Clean requested, state is ignored."]
        if self.reason == DirtyReason.UPSTREAM_DIRTY:
            return [f"Downstream state(s) not available, state is ignored. ({self.detail})"]
        if self.reason == DirtyReason.FILES_CHANGED:
            return ["File changes detected, state is ignored."] + [
                f"  +- {c.as_string()}" for c in self.file_changes
            ]
        if self.reason == DirtyReason.EXECUTIONS_CHANGED:
            lines: list[str] = []
            for status in self.executions:
                lines.append(str(status))
                lines.extend(f"           +- {d.as_string()}" for d in status.diffs())
            return lines
        if self.reason in (DirtyReason.STATE_UNAVAILABLE, DirtyReason.STATE_UNREADABLE):
            return [f"State not available. {self.detail}".strip()]
        return [f"State is ignored: {self.reason.value if self.reason else 'unknown'} {self.detail}".strip()]


def module_path(module: Module, root: Path) -> str:
    """Module directory relative to the build root, as matched by [[module]] entries."""
    try:
        rel = module.directory.resolve().relative_to(root.resolve())
    except ValueError:
        return module.directory.as_posix()
    text = rel.as_posix()
    return "" if text == "." else text


class InvalidationEngine:
    """Evaluates module validity and propagates invalidation downstream."""

    def __init__(
        self,
        root: Path,
        config: CacheConfig | None = None,
        archive: "ArchiveStore | None" = None,
        clean: bool = False,
        dry_run: bool = False,
    ):
        self.root = root
        self.config = config or CacheConfig()
        self.archive = archive
        self.clean = clean
        # archived files are verified but not written
        self.dry_run = dry_run

    def module_config(self, module: Module) -> ModuleConfig:
        return self.config.for_module(module_path(module, self.root))

    def evaluate(self, modules: Iterable[Module]) -> dict[str, ModuleEvaluation]:
        """Evaluate every module, dependencies first.

        Raises CyclicDependencyError before any module is evaluated.
        """
        graph = ReactorGraph.from_modules(modules)
        layers = graph.layers()
        evaluations: dict[str, ModuleEvaluation] = {}
        with ThreadPoolExecutor(max_workers=self.config.workers) as pool:
            for layer in layers:
                results = list(pool.map(self.evaluate_module, [graph.get(m) for m in layer]))
                for evaluation in results:
                    self._propagate(evaluation, graph, evaluations)
                restorable = [e for e in results if e.fast_forward]
                if self.archive is not None and restorable:
                    list(pool.map(self._restore, restorable))
                for evaluation in results:
                    evaluations[evaluation.module_id] = evaluation
                    self._log_verdict(evaluation)
        return evaluations

    def _propagate(
        self,
        evaluation: ModuleEvaluation,
        graph: ReactorGraph,
        evaluations: dict[str, ModuleEvaluation],
    ) -> None:
        upstream = sorted(graph.get_dependencies(evaluation.module_id))
        invalid = [dep for dep in upstream if not evaluations[dep].valid]
        if invalid and evaluation.status != ModuleStatus.DIRTY:
            evaluation.mark_dirty(DirtyReason.UPSTREAM_DIRTY, ", ".join(invalid))

    def _restore(self, evaluation: ModuleEvaluation) -> None:
        assert self.archive is not None and evaluation.state is not None
        try:
            self.archive.restore(evaluation.module, evaluation.state, dry_run=self.dry_run)
        except ArchiveIncompleteError as ex:
            logger.warning("%s", ex)
            evaluation.mark_dirty(DirtyReason.ARCHIVE_INCOMPLETE, ex.entry)

    def _load_state(self, module: Module) -> ProjectState | None:
        state = ProjectState.load(module.state_file, self.root)
        if state is None and self.archive is not None:
            state = self.archive.load_state(module)
        return state

    def evaluate_module(self, module: Module) -> ModuleEvaluation:
        """Check one module against its recorded state, ignoring upstream."""
        evaluation = ModuleEvaluation(module)
        module_config = self.module_config(module)
        prefix = f"[{module.id}]"

        if not module_config.enabled:
            evaluation.mark_dirty(DirtyReason.CACHE_DISABLED)
            return evaluation
        if self.clean:
            evaluation.mark_dirty(DirtyReason.CLEAN_REQUESTED)
            return evaluation

        logger.debug("%s - loading state", prefix)
        try:
            state = self._load_state(module)
        except StateUnreadableError as ex:
            logger.warning("%s - %s", prefix, ex)
            evaluation.mark_dirty(DirtyReason.STATE_UNREADABLE, ex.reason)
            return evaluation
        if state is None:
            logger.debug("%s - state file not found", prefix)
            evaluation.mark_dirty(DirtyReason.STATE_UNAVAILABLE)
            return evaluation
        evaluation.state = state

        checksums = self.config.enable_checksums
        try:
            main, test = scan_sources(module, module_config.project_files_excludes, checksums)
            project_files = scan_project_files(
                module,
                module_config.project_files_excludes,
                checksums,
                self.config.include_all_checksums,
            )
        except OSError as ex:
            logger.warning("%s - unable to check files: %s", prefix, ex)
            evaluation.mark_dirty(DirtyReason.FILES_CHANGED, str(ex))
            return evaluation
        evaluation.main_sources = main
        evaluation.test_sources = test
        evaluation.project_files = project_files

        changes = diff_source_sets(state.main_sources, main, checksums)
        changes += diff_source_sets(state.test_sources, test, checksums)
        if state.project_files != project_files:
            changes += state.project_files.diff(project_files) or [FileChange("modified", ".")]
        if changes:
            evaluation.file_changes = changes
            logger.debug("%s - files changed - state is invalid", prefix)
            evaluation.mark_dirty(DirtyReason.FILES_CHANGED, changes[0].as_string())
            return evaluation

        evaluation.executions = self.classify_executions(module, state, module_config)
        for status in evaluation.executions:
            logger.debug("%s - %s", prefix, status)
        pending = [s for s in evaluation.executions if s.state in (ExecutionState.NEW, ExecutionState.DIFF)]
        if pending:
            first = pending[0]
            detail = str(first)
            if first.comparison is not None and first.comparison.location:
                detail += f" at {first.comparison.location}"
            evaluation.mark_dirty(DirtyReason.EXECUTIONS_CHANGED, detail)
            return evaluation

        evaluation.mark_valid()
        return evaluation

    def classify_executions(
        self,
        module: Module,
        state: ProjectState,
        module_config: ModuleConfig | None = None,
    ) -> list[ExecutionStatus]:
        """Classify the current build plan against the recorded executions.

        Order of the recorded executions does not matter; matching is by
        identity only.
        """
        module_config = module_config or self.module_config(module)
        matcher = ExecutionMatcher(module_config.executions_includes, module_config.executions_excludes)
        statuses: list[ExecutionStatus] = []
        for execution in module.executions:
            if execution.is_clean:
                continue
            if not matcher.match(execution):
                statuses.append(ExecutionStatus(execution, ExecutionState.EXCLUDED))
                continue
            recorded = state.find_execution(execution)
            if recorded is None:
                statuses.append(ExecutionStatus(execution, ExecutionState.NEW))
                continue
            comparison = compare(recorded.config, execution.config)
            if comparison.equal:
                statuses.append(ExecutionStatus(execution, ExecutionState.CACHED, recorded, comparison))
            else:
                logger.debug(
                    "[%s] - %s: configuration differs at %s", module.id, execution.name, comparison.location
                )
                statuses.append(ExecutionStatus(execution, ExecutionState.DIFF, recorded, comparison))
        return statuses

    def _log_verdict(self, evaluation: ModuleEvaluation) -> None:
        if evaluation.fast_forward:
            logger.info("[%s] - fast-forward", evaluation.module_id)
        else:
            reason = evaluation.reason.value if evaluation.reason else "unknown"
            logger.info("[%s] - %s %s", evaluation.module_id, reason, evaluation.detail)
