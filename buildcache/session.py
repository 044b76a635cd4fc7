"""
Host build tool boundary.

A BuildSession is driven by the host tool across one build:

    session = BuildSession(root, modules, config, goals=["install"])
    session.start()
    for module in modules:                    # host's own ordering
        for execution in module.executions:
            if session.should_run(module.id, execution):
                run(execution)                # host side
                session.record_execution(module.id, execution)
        session.module_succeeded(module.id)
    session.finish()
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from pathlib import Path
from typing import Iterable

from .archive import ArchiveIndex, ArchiveStore
from .engine import DirtyReason, InvalidationEngine, ModuleEvaluation, module_path
from .errors import StateUnreadableError
from .execution import ExecutionEntry, ExecutionMatcher
from .models import Module
from .settings import CacheConfig, ModuleConfig
from .state.files import scan_project_files, scan_sources
from .state.project import ProjectState, merge

logger = logging.getLogger(__name__)

CLEAN_GOALS = ("clean", "clean:clean")


class BuildSession:
    """Cache decisions and state recording for one build."""

    def __init__(
        self,
        root: Path,
        modules: Iterable[Module],
        config: CacheConfig | None = None,
        goals: Iterable[str] = (),
        archive: ArchiveStore | None = None,
    ):
        self.root = root.resolve()
        self.modules: dict[str, Module] = {m.id: m for m in modules}
        self.config = config or CacheConfig()
        self.goals = list(goals)
        self.clean = any(g in CLEAN_GOALS or g.endswith(":clean") for g in self.goals)
        if archive is None and self.config.archive_file is not None:
            archive = ArchiveStore(self.config.archive_file, self.root, self.config.build_files_excludes)
        self.archive = archive
        self.evaluations: dict[str, ModuleEvaluation] = {}
        self._recorded: dict[str, list[ExecutionEntry]] = defaultdict(list)
        self._lock = threading.Lock()

    def _engine(self, dry_run: bool = False) -> InvalidationEngine:
        archive = None
        if self.archive is not None and self.config.load_archive:
            if self.archive.exists():
                archive = self.archive
            else:
                logger.info("Archive %s not found, nothing to load", self.archive.path)
        return InvalidationEngine(self.root, self.config, archive, self.clean, dry_run)

    def _module_config(self, module: Module) -> ModuleConfig:
        return self.config.for_module(module_path(module, self.root))

    def start(self, dry_run: bool = False) -> dict[str, ModuleEvaluation]:
        """Evaluate every module. Raises CyclicDependencyError.

        With `dry_run`, archived files are verified but nothing is restored.
        """
        if not self.config.enabled:
            logger.info("Build cache is disabled")
        else:
            logger.info("Build cache is enabled, %d module(s)", len(self.modules))
        self.evaluations = self._engine(dry_run).evaluate(self.modules.values())
        for module_id, evaluation in self.evaluations.items():
            for line in evaluation.summary():
                logger.info("[%s] %s", module_id, line)
        return self.evaluations

    def evaluation(self, module_id: str) -> ModuleEvaluation:
        try:
            return self.evaluations[module_id]
        except KeyError:
            raise KeyError(f"unknown module {module_id!r}, was start() called?") from None

    def module(self, module_id: str) -> Module:
        """Module snapshot; fast-forwarded modules carry their recorded outputs."""
        evaluation = self.evaluation(module_id)
        if evaluation.fast_forward and evaluation.state is not None:
            return evaluation.state.apply(evaluation.module)
        return evaluation.module

    def should_run(self, module_id: str, execution: ExecutionEntry) -> bool:
        """False only for cached executions of a fast-forwarded module."""
        evaluation = self.evaluations.get(module_id)
        if evaluation is None or not evaluation.fast_forward:
            return True
        status = evaluation.execution_status(execution)
        if status is not None and status.is_cached and status.execution == execution:
            logger.debug("[%s] - skipping %s", module_id, execution.name)
            return False
        return True

    def record_execution(self, module_id: str, execution: ExecutionEntry) -> None:
        """Remember an execution that ran for real."""
        if execution.is_clean:
            return
        evaluation = self.evaluation(module_id)
        if evaluation.fast_forward or evaluation.reason == DirtyReason.CACHE_DISABLED:
            return
        module_config = self._module_config(evaluation.module)
        matcher = ExecutionMatcher(module_config.executions_includes, module_config.executions_excludes)
        if not matcher.match(execution):
            logger.debug("[%s] - %s is excluded, not recorded", module_id, execution.name)
            return
        with self._lock:
            self._recorded[module_id].append(execution)

    def recorded(self, module_id: str) -> list[ExecutionEntry]:
        with self._lock:
            return list(self._recorded.get(module_id, []))

    def module_succeeded(self, module_id: str, module: Module | None = None) -> ProjectState | None:
        """Write the state of a successfully built module.

        `module` is the host's snapshot after the build, with the produced
        artifacts; it defaults to the snapshot given at construction.
        Returns the written state, or None if nothing was written.
        """
        evaluation = self.evaluation(module_id)
        if not self.config.record or evaluation.reason == DirtyReason.CACHE_DISABLED:
            return None
        module = module or evaluation.module

        if evaluation.fast_forward and evaluation.state is not None:
            state = evaluation.state
        else:
            state = self._build_state(evaluation, module)
            if state is None:
                return None

        try:
            state.save(module.state_file, self.root)
        except OSError as ex:
            logger.error("[%s] - unable to write state %s: %s", module_id, module.state_file, ex)
            return None
        if not evaluation.fast_forward:
            evaluation.module = module
            evaluation.state = state
            evaluation.mark_rebuilt()
            logger.info("[%s] - state recorded, %d execution(s)", module_id, len(state.executions))
        return state

    def _build_state(self, evaluation: ModuleEvaluation, module: Module) -> ProjectState | None:
        module_config = self._module_config(module)
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
            logger.error("[%s] - unable to scan files, state not recorded: %s", module.id, ex)
            return None

        previous = None if self.clean else evaluation.state
        if previous is None and not self.clean:
            try:
                previous = ProjectState.load(module.state_file, self.root)
            except StateUnreadableError as ex:
                logger.debug("[%s] - previous state ignored: %s", module.id, ex)
        return merge(previous, module, self.recorded(module.id), main, test, project_files)

    def finish(self) -> ArchiveIndex | None:
        """Create the archive of all valid modules, if configured."""
        if self.archive is None or not self.config.create_archive:
            return None
        modules = [e.module for e in self.evaluations.values() if e.valid]
        try:
            return self.archive.save(modules)
        except OSError as ex:
            logger.error("Unable to write archive %s: %s", self.archive.path, ex)
            return None

    def status_lines(self) -> list[str]:
        """Verdict lines of all modules, prefixed with their ids."""
        lines: list[str] = []
        for module_id, evaluation in self.evaluations.items():
            lines.extend(f"[{module_id}] {line}" for line in evaluation.summary())
        return lines
