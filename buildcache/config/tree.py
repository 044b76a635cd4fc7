"""
Read-only configuration trees.

A unit of work's effective configuration is normalized into a tree of
ConfigNode objects, independent of the markup it came from. Any backend that
can answer {name, value, attributes, children} is accepted through the
ConfigSource protocol; adapters are provided for ElementTree elements,
plain mappings (YAML / JSON data) and the persisted dict form.

Paths anchor a node to its position in its parent rather than to its own
tag:

    <a><b><c>d</c><e>f</e></b></a>

    c.index == 0, c.path == "/a{0}/b{0}"
    e.index == 1, e.path == "/a{0}/b{1}"
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Any, Iterator, Mapping, Protocol, Sequence


class ConfigSource(Protocol):
    """Minimal capability a configuration backend must expose."""

    @property
    def name(self) -> str: ...

    @property
    def value(self) -> str | None: ...

    @property
    def attributes(self) -> Mapping[str, str]: ...

    def children(self) -> Sequence["ConfigSource"]: ...


class ConfigNode:
    """A node of a configuration tree.

    Nodes are immutable once built; `index` is the ordinal position among all
    siblings, regardless of their tag names.
    """

    __slots__ = ("_name", "_value", "_attributes", "_children", "_parent", "_index")

    def __init__(
        self,
        name: str,
        value: str | None = None,
        attributes: Mapping[str, str] | None = None,
        children: Sequence["ConfigNode"] | None = None,
    ):
        if not name:
            raise ValueError("config node name is required")
        self._name = name
        self._value = value
        self._attributes = dict(attributes or {})
        self._parent: ConfigNode | None = None
        self._index = 0
        kids = list(children or [])
        for i, child in enumerate(kids):
            if child._parent is not None:
                raise ValueError(f"node {child._name!r} already has a parent")
            child._parent = self
            child._index = i
        self._children = tuple(kids)

    @property
    def name(self) -> str:
        return self._name

    @property
    def value(self) -> str | None:
        return self._value

    @property
    def attributes(self) -> Mapping[str, str]:
        return dict(self._attributes)

    @property
    def children(self) -> tuple["ConfigNode", ...]:
        return self._children

    @property
    def parent(self) -> "ConfigNode | None":
        return self._parent

    @property
    def index(self) -> int:
        return self._index

    @property
    def has_children(self) -> bool:
        return bool(self._children)

    @property
    def path(self) -> str:
        """Position-anchored path: parent's tag plus this node's ordinal."""
        parent = self._parent
        if parent is None:
            return "/"
        prefix = "" if parent._parent is None else parent.path
        return f"{prefix}/{parent._name}{{{self._index}}}"

    @property
    def key(self) -> str:
        """The node's path extended with its own tag name."""
        path = self.path
        if path == "/":
            return "/" + self._name
        return f"{path}/{self._name}"

    def walk(self) -> Iterator["ConfigNode"]:
        """Depth-first traversal in document order, self included."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node._children))

    def find(self, *names: str) -> "ConfigNode | None":
        """Follow a chain of child tag names, returning the first match."""
        node: ConfigNode | None = self
        for name in names:
            if node is None:
                return None
            node = next((c for c in node._children if c._name == name), None)
        return node

    def __repr__(self) -> str:
        return f"ConfigNode({self._name!r}, path={self.path!r}, value={self._value!r})"

    # ------------------------------------------------------------------
    # Conversions
    # ------------------------------------------------------------------

    @classmethod
    def from_source(cls, source: ConfigSource) -> "ConfigNode":
        """Materialize a tree from any ConfigSource implementation."""
        return cls(
            source.name,
            source.value,
            source.attributes,
            [cls.from_source(child) for child in source.children()],
        )

    def to_dict(self) -> dict[str, Any]:
        """Persisted form; empty fields are omitted."""
        d: dict[str, Any] = {"name": self._name}
        if self._value is not None:
            d["value"] = self._value
        if self._attributes:
            d["attributes"] = dict(sorted(self._attributes.items()))
        if self._children:
            d["children"] = [child.to_dict() for child in self._children]
        return d

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConfigNode":
        """Create from the persisted form."""
        name = data.get("name")
        if not isinstance(name, str) or not name:
            raise ValueError("config node without a name")
        value = data.get("value")
        attributes = data.get("attributes") or {}
        if not isinstance(attributes, Mapping):
            raise ValueError(f"invalid attributes for config node {name!r}")
        children = data.get("children") or []
        if not isinstance(children, list):
            raise ValueError(f"invalid children for config node {name!r}")
        return cls(
            name,
            None if value is None else str(value),
            {str(k): str(v) for k, v in attributes.items()},
            [cls.from_dict(child) for child in children],
        )

    def to_element(self) -> ET.Element:
        """Render as an ElementTree element."""
        elt = ET.Element(self._name, dict(sorted(self._attributes.items())))
        if self._value is not None:
            elt.text = self._value
        for child in self._children:
            elt.append(child.to_element())
        return elt

    def to_xml(self) -> str:
        return ET.tostring(self.to_element(), encoding="unicode")


class ElementAdapter:
    """ConfigSource over an ElementTree element.

    Whitespace-only text of elements with children is treated as formatting;
    leaf text is kept exactly as written.
    """

    def __init__(self, element: ET.Element):
        self._element = element

    @property
    def name(self) -> str:
        return self._element.tag

    @property
    def value(self) -> str | None:
        text = self._element.text
        if len(self._element):
            return text.strip() or None if text else None
        return text

    @property
    def attributes(self) -> Mapping[str, str]:
        return dict(self._element.attrib)

    def children(self) -> list["ElementAdapter"]:
        return [ElementAdapter(child) for child in self._element]


def _scalar(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _item_name(name: str) -> str:
    if len(name) > 1 and name.endswith("s"):
        return name[:-1]
    return "item"


class MappingAdapter:
    """ConfigSource over plain data (as loaded from YAML or JSON).

    - mapping keys become child nodes, in insertion order
    - keys starting with `@` become attributes, `#text` becomes the value
    - a list becomes repeated children named after the singular of the key
      (`includes` -> `include`), or `item` when there is no plural
    """

    def __init__(self, name: str, data: Any):
        self._name = name
        self._data = data

    @property
    def name(self) -> str:
        return self._name

    @property
    def value(self) -> str | None:
        data = self._data
        if isinstance(data, Mapping):
            return _scalar(data.get("#text"))
        if isinstance(data, list):
            return None
        return _scalar(data)

    @property
    def attributes(self) -> Mapping[str, str]:
        if not isinstance(self._data, Mapping):
            return {}
        return {
            str(k)[1:]: _scalar(v) or ""
            for k, v in self._data.items()
            if str(k).startswith("@")
        }

    def children(self) -> list["MappingAdapter"]:
        data = self._data
        if isinstance(data, Mapping):
            return [
                MappingAdapter(str(k), v)
                for k, v in data.items()
                if not str(k).startswith("@") and k != "#text"
            ]
        if isinstance(data, list):
            item = _item_name(self._name)
            return [MappingAdapter(item, v) for v in data]
        return []


def parse_xml(text: str) -> ConfigNode:
    """Parse an XML document into a ConfigNode tree."""
    return ConfigNode.from_source(ElementAdapter(ET.fromstring(text)))


def from_mapping(data: Any, name: str = "configuration") -> ConfigNode:
    """Build a ConfigNode tree rooted at `name` from plain data."""
    return ConfigNode.from_source(MappingAdapter(name, data))


def empty_config(name: str = "configuration") -> ConfigNode:
    return ConfigNode(name)
