"""
Error taxonomy for the build cache.

The cache is an optimization layer: every condition below except
CyclicDependencyError degrades a module to DIRTY instead of failing the
build. ConfigMismatch is not an exception, see config.fingerprint.compare().
"""

from __future__ import annotations


class BuildCacheError(Exception):
    """Base class for build cache errors."""


class StateUnreadableError(BuildCacheError):
    """A persisted project state exists but cannot be decoded."""

    def __init__(self, path, reason: str):
        super().__init__(f"Unreadable state file {path}: {reason}")
        self.path = path
        self.reason = reason


class ArchiveIncompleteError(BuildCacheError):
    """An archive entry needed to restore a module is missing or unreadable."""

    def __init__(self, module_id: str, entry: str, reason: str = "missing"):
        super().__init__(f"[{module_id}] - archive entry {entry!r} is {reason}")
        self.module_id = module_id
        self.entry = entry
        self.reason = reason


class CyclicDependencyError(BuildCacheError):
    """The module graph contains a cycle; propagation order is undefined."""

    def __init__(self, cycles: list[list[str]]):
        rendered = "; ".join(" -> ".join(cycle) for cycle in cycles)
        super().__init__(f"Cyclic module dependencies: {rendered}")
        self.cycles = cycles


class NonPortablePathWarning(UserWarning):
    """A recorded path lies outside the build root."""
