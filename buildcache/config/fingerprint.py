"""
Structural fingerprinting and comparison of configuration trees.

Comparison is exact: values are compared byte for byte, with no whitespace
or numeric normalization. Any configuration change invalidates the cached
unit of work.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from itertools import zip_longest
from typing import Iterator, Literal

from .tree import ConfigNode

DiffKind = Literal["added", "removed", "renamed", "value", "attribute"]

# characters with a meaning in fingerprints; escaped when they occur in data
_RESERVED = re.compile(r"([\\/{}#=;\[\]])")


def _escape(text: str) -> str:
    return _RESERVED.sub(r"\\\1", text)


def _escaped_path(node: ConfigNode) -> str:
    parent = node.parent
    if parent is None:
        return "/"
    prefix = "" if parent.parent is None else _escaped_path(parent)
    return f"{prefix}/{_escape(parent.name)}{{{node.index}}}"


def _escaped_key(node: ConfigNode) -> str:
    path = _escaped_path(node)
    name = _escape(node.name)
    return "/" + name if path == "/" else f"{path}/{name}"


def fingerprint(node: ConfigNode) -> str:
    """Identity string of a node and its subtree.

    A leaf yields `key=value`; a node with children appends the child
    fingerprints in document order. Attributes are included in key order.
    Names and values are escaped, and a missing value has no `=` at all, so
    two trees have the same fingerprint only if they are structurally equal.
    """
    attrs = "".join(f"#{_escape(k)}={_escape(v)}" for k, v in sorted(node.attributes.items()))
    head = f"{_escaped_key(node)}{attrs}"
    if node.value is not None:
        head = f"{head}={_escape(node.value)}"
    if not node.has_children:
        return head
    inner = ";".join(fingerprint(child) for child in node.children)
    return f"{head}[{inner}]"


@dataclass(frozen=True)
class ConfigDiff:
    """One difference between a recorded and a current configuration.

    `path` is the position of the offending node, `name` its tag in the
    recorded tree (or the current one when the node was added).
    """

    kind: DiffKind
    path: str
    name: str
    orig: str | None
    actual: str | None
    attribute: str | None = None

    @property
    def location(self) -> str:
        """Path with the tag, and the attribute name for attribute diffs."""
        location = "/" + self.name if self.path == "/" else f"{self.path}/{self.name}"
        if self.attribute is not None:
            location += f"#{self.attribute}"
        return location

    def as_string(self) -> str:
        if self.kind == "added":
            return f"{self.location}: added {self.actual!r}"
        if self.kind == "removed":
            return f"{self.location}: removed {self.orig!r}"
        return f"{self.location}: {self.orig!r} -> {self.actual!r}"


@dataclass(frozen=True)
class ConfigComparison:
    """Outcome of compare(); `path` is the first mismatching position."""

    equal: bool
    diff: ConfigDiff | None = None

    @property
    def path(self) -> str | None:
        return self.diff.path if self.diff else None

    @property
    def location(self) -> str | None:
        return self.diff.location if self.diff else None

    def __bool__(self) -> bool:
        return self.equal


def _attribute_diffs(orig: ConfigNode, actual: ConfigNode) -> Iterator[ConfigDiff]:
    orig_attrs = orig.attributes
    actual_attrs = actual.attributes
    for key, value in orig_attrs.items():
        other = actual_attrs.get(key)
        if other != value:
            yield ConfigDiff("attribute", orig.path, orig.name, value, other, key)
    for key, value in actual_attrs.items():
        if key not in orig_attrs:
            yield ConfigDiff("attribute", orig.path, orig.name, None, value, key)


def diffs(orig: ConfigNode, actual: ConfigNode) -> Iterator[ConfigDiff]:
    """Yield every difference between two trees, in document order.

    Nodes are paired by position among their siblings; a missing partner is
    reported as added or removed and its subtree is not descended.
    """
    stack: list[tuple[ConfigNode | None, ConfigNode | None]] = [(orig, actual)]
    while stack:
        o, a = stack.pop()
        if a is None:
            if o is not None:
                yield ConfigDiff("removed", o.path, o.name, o.name, None)
            continue
        if o is None:
            yield ConfigDiff("added", a.path, a.name, None, a.name)
            continue
        if o.name != a.name:
            yield ConfigDiff("renamed", o.path, o.name, o.name, a.name)
            continue
        if o.value != a.value:
            yield ConfigDiff("value", o.path, o.name, o.value, a.value)
        yield from _attribute_diffs(o, a)
        pairs = list(zip_longest(o.children, a.children))
        stack.extend(reversed(pairs))


def compare(orig: ConfigNode, actual: ConfigNode) -> ConfigComparison:
    """Compare a recorded tree with a current one, stopping at the first diff."""
    first = next(diffs(orig, actual), None)
    if first is None:
        return ConfigComparison(True)
    return ConfigComparison(False, first)


def equal(orig: ConfigNode, actual: ConfigNode) -> bool:
    return compare(orig, actual).equal
