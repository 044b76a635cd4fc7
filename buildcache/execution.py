"""
Unit-of-work records and cache eligibility.

An execution is keyed by group, artifact, version, goal and execution id,
and rendered as the canonical reference

    group:artifact:version:goal@executionId

which is what include / exclude globs are matched against.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from .config.fingerprint import compare, fingerprint
from .config.tree import ConfigNode, empty_config
from .patterns import matches_any

CLEAN_PHASES = frozenset({"pre-clean", "clean", "post-clean"})


class ExecutionEntry:
    """A recorded (or planned) unit of work with its effective configuration.

    Equality covers identity and configuration fingerprint; identity alone is
    tested with same_identity().
    """

    __slots__ = ("group_id", "artifact_id", "version", "goal", "execution_id", "config", "phase")

    def __init__(
        self,
        group_id: str,
        artifact_id: str,
        version: str,
        goal: str,
        execution_id: str,
        config: ConfigNode | None = None,
        phase: str | None = None,
    ):
        self.group_id = group_id
        self.artifact_id = artifact_id
        self.version = version
        self.goal = goal
        self.execution_id = execution_id
        self.config = config if config is not None else empty_config()
        self.phase = phase

    @property
    def identity(self) -> tuple[str, str, str, str, str]:
        return (self.group_id, self.artifact_id, self.version, self.goal, self.execution_id)

    @property
    def name(self) -> str:
        """Canonical reference string."""
        return f"{self.group_id}:{self.artifact_id}:{self.version}:{self.goal}@{self.execution_id}"

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.config)

    @property
    def is_clean(self) -> bool:
        return self.phase in CLEAN_PHASES

    def same_identity(self, other: "ExecutionEntry") -> bool:
        """Identical except for the configuration."""
        return self.identity == other.identity

    def config_equals(self, other: "ExecutionEntry") -> bool:
        return compare(self.config, other.config).equal

    def match(self, includes: Sequence[str] | None, excludes: Sequence[str] | None) -> bool:
        return ExecutionMatcher(includes, excludes).match(self)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ExecutionEntry):
            return NotImplemented
        return self.identity == other.identity and self.fingerprint == other.fingerprint

    def __hash__(self) -> int:
        return hash((self.identity, self.fingerprint))

    def __repr__(self) -> str:
        return f"ExecutionEntry({self.name!r})"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        d: dict[str, Any] = {
            "groupId": self.group_id,
            "artifactId": self.artifact_id,
            "version": self.version,
            "goal": self.goal,
            "id": self.execution_id,
            "configuration": self.config.to_dict(),
        }
        if self.phase:
            d["phase"] = self.phase
        return d

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExecutionEntry":
        """Create from dictionary."""
        missing = [k for k in ("groupId", "artifactId", "version", "goal", "id") if k not in data]
        if missing:
            raise ValueError(f"execution entry is missing {', '.join(missing)}")
        config_data = data.get("configuration")
        config = ConfigNode.from_dict(config_data) if config_data else None
        return cls(
            str(data["groupId"]),
            str(data["artifactId"]),
            str(data["version"]),
            str(data["goal"]),
            str(data["id"]),
            config,
            data.get("phase"),
        )

    @classmethod
    def parse(cls, reference: str, config: ConfigNode | None = None) -> "ExecutionEntry":
        """Create from a canonical reference string."""
        coords, sep, execution_id = reference.partition("@")
        parts = coords.split(":")
        if not sep or len(parts) != 4 or not execution_id:
            raise ValueError(f"invalid execution reference: {reference!r}")
        return cls(*parts, execution_id, config)


class ExecutionMatcher:
    """Decides which executions participate in caching.

    Excludes are tested first and always win. No includes (None or empty)
    means everything that is not excluded is included.
    """

    def __init__(self, includes: Iterable[str] | None = None, excludes: Iterable[str] | None = None):
        self.includes = list(includes or [])
        self.excludes = list(excludes or [])

    def match(self, entry: ExecutionEntry) -> bool:
        return self.match_name(entry.name)

    def match_name(self, reference: str) -> bool:
        if matches_any(reference, self.excludes):
            return False
        if not self.includes:
            return True
        return matches_any(reference, self.includes)


def match(
    entry: ExecutionEntry,
    includes: Sequence[str] | None,
    excludes: Sequence[str] | None,
) -> bool:
    return ExecutionMatcher(includes, excludes).match(entry)


def find_matching(entry: ExecutionEntry, recorded: Iterable[ExecutionEntry]) -> ExecutionEntry | None:
    """Find a recorded entry with the same identity, ignoring order."""
    for candidate in recorded:
        if candidate.same_identity(entry):
            return candidate
    return None
