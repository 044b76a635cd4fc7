"""
Glob matching used by the cache filters.

Two flavours are provided:

- wildcard_match(): a glob over a whole string, where `*` matches any run of
  characters (including none) and every other character is literal. Used for
  canonical execution references such as
  `com.acme:my-plugin:1.0:do-something@default-do-something`.
- path_matches(): a glob over a `/`-separated path, where `*` stays within a
  segment and `**` spans any number of segments. Used for file excludes.
"""

from __future__ import annotations

import re
from functools import lru_cache
from pathlib import PurePath
from typing import Iterable

WILDCARD = "*"
DOUBLE_WILDCARD = "**"


@lru_cache(maxsize=512)
def compile_glob(pattern: str) -> re.Pattern[str]:
    """Compile a glob into an anchored regular expression.

    Literal runs are escaped, each `*` becomes "any run of characters".
    """
    body = ".*".join(re.escape(part) for part in pattern.split(WILDCARD))
    return re.compile(body, re.DOTALL)


def wildcard_match(value: str, pattern: str) -> bool:
    """Test whether the glob `pattern` consumes the entire `value`."""
    if pattern == "":
        return value == ""
    return compile_glob(pattern).fullmatch(value) is not None


def matches_any(value: str, patterns: Iterable[str] | None) -> bool:
    """Test if any pattern matches; None or empty matches nothing."""
    if not patterns:
        return False
    return any(wildcard_match(value, p) for p in patterns)


def _segments(path: str | PurePath) -> list[str]:
    text = path.as_posix() if isinstance(path, PurePath) else str(path).replace("\\", "/")
    return [s for s in text.split("/") if s and s != "."]


def path_matches(path: str | PurePath, pattern: str) -> bool:
    """Test a relative path against a path glob.

    `**` matches zero or more whole segments, `*` matches within one segment.
    A pattern ending with `/` matches everything below that directory.
    """
    if pattern.endswith("/"):
        pattern += DOUBLE_WILDCARD
    return _match_segments(_segments(path), 0, _segments(pattern), 0)


def _match_segments(segments: list[str], offset: int, patterns: list[str], p_offset: int) -> bool:
    while p_offset < len(patterns):
        pattern = patterns[p_offset]
        if pattern == DOUBLE_WILDCARD:
            if p_offset == len(patterns) - 1:
                return True
            for start in range(offset, len(segments) + 1):
                if _match_segments(segments, start, patterns, p_offset + 1):
                    return True
            return False
        if offset >= len(segments) or not wildcard_match(segments[offset], pattern):
            return False
        offset += 1
        p_offset += 1
    return offset == len(segments)


def path_included(
    path: str | PurePath,
    includes: Iterable[str] | None = None,
    excludes: Iterable[str] | None = None,
) -> bool:
    """Test a path against include and exclude path globs.

    Empty or None includes match everything; excludes always win.
    """
    excludes = list(excludes or [])
    if any(path_matches(path, p) for p in excludes):
        return False
    includes = list(includes or [])
    if not includes:
        return True
    return any(path_matches(path, p) for p in includes)
