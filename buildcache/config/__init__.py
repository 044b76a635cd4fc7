"""Configuration trees and their structural comparison."""

from .fingerprint import ConfigComparison, ConfigDiff, compare, diffs, fingerprint
from .tree import ConfigNode, ElementAdapter, MappingAdapter, from_mapping, parse_xml

__all__ = [
    "ConfigComparison",
    "ConfigDiff",
    "ConfigNode",
    "ElementAdapter",
    "MappingAdapter",
    "compare",
    "diffs",
    "fingerprint",
    "from_mapping",
    "parse_xml",
]
