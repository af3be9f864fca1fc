from __future__ import annotations

from collections import Counter
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping, Optional, Union

from lxml import etree

if TYPE_CHECKING:
    from lxml.etree import _Element

_PLAIN = object()

NestedValue = Union[str, "dict[str, Any]"]


def _own_text(element: _Element) -> Optional[str]:
    """Direct text of ``element``, including text after comments and entities."""
    parts = [element.text]
    for child in element:
        if not isinstance(child.tag, str):
            parts.append(child.tail)
    if all(part is None for part in parts):
        return None
    return "".join(part for part in parts if part)


class Node:
    """A read-only element of a normalized feed document.

    Children whose namespace is empty or the node's default namespace are
    "plain" and can be looked up by their local name. Namespaced children
    stay reachable through ``children(namespace_uri)``.
    """

    __slots__ = ("_tag", "_namespace", "_text", "_attrib", "_nsmap", "_children")

    def __init__(
        self,
        tag: str,
        namespace: Optional[str] = None,
        text: Optional[str] = None,
        attrib: Optional[Mapping[str, str]] = None,
        nsmap: Optional[Mapping[Optional[str], str]] = None,
        children: Optional[list[Node]] = None,
    ):
        self._tag = tag
        self._namespace = namespace
        self._text = text
        self._attrib = dict(attrib or {})
        self._nsmap = dict(nsmap or {})
        self._children = list(children or [])

    @classmethod
    def from_element(cls, element: _Element) -> Node:
        qname = etree.QName(element)
        node = cls(
            qname.localname,
            qname.namespace,
            _own_text(element),
            element.attrib,
            element.nsmap,
        )
        for child in element:
            # Skip comments, processing instructions and entities
            if isinstance(child.tag, str):
                node._children.append(cls.from_element(child))
        return node

    @property
    def tag(self) -> str:
        return self._tag

    @property
    def namespace(self) -> Optional[str]:
        return self._namespace

    @property
    def text(self) -> Optional[str]:
        return self._text

    @property
    def attrib(self) -> Mapping[str, str]:
        return MappingProxyType(self._attrib)

    @property
    def nsmap(self) -> Mapping[Optional[str], str]:
        """Namespace prefixes in scope at this node, inherited ones included."""
        return MappingProxyType(self._nsmap)

    def _is_plain(self, child: Node) -> bool:
        return child._namespace is None or child._namespace == self._nsmap.get(None)

    def children(self, namespace: Any = _PLAIN) -> tuple[Node, ...]:
        """Plain children by default, or the children in ``namespace``."""
        if namespace is _PLAIN:
            return tuple(c for c in self._children if self._is_plain(c))
        return tuple(c for c in self._children if c._namespace == namespace)

    def find(self, tag: str) -> Optional[Node]:
        for child in self._children:
            if child._tag == tag and self._is_plain(child):
                return child
        return None

    def findall(self, tag: str) -> list[Node]:
        return [c for c in self._children if c._tag == tag and self._is_plain(c)]

    def findtext(self, tag: str, default: Optional[str] = None) -> Optional[str]:
        child = self.find(tag)
        if child is None:
            return default
        return child._text or ""

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._attrib.get(key, default)

    @property
    def timestamp(self) -> Optional[int]:
        """Unix time derived during normalization, if any."""
        value = self.findtext("timestamp")
        return int(value) if value else None

    def to_dict(self) -> NestedValue:
        """Convert to text (leaf) or a dict of tag -> child / list of children."""
        children = self.children()
        if not children:
            return self._text or ""
        counts = Counter(child._tag for child in children)
        result: dict[str, Any] = {}
        for child in children:
            if counts[child._tag] == 1:
                result[child._tag] = child.to_dict()
            else:
                result.setdefault(child._tag, []).append(child.to_dict())
        return result

    def _set_child(self, node: Node) -> None:
        """Replace the first plain child named like ``node`` or append it."""
        for i, child in enumerate(self._children):
            if child._tag == node._tag and self._is_plain(child):
                self._children[i] = node
                return
        self._children.append(node)

    def __str__(self) -> str:
        return self._text or ""

    def __int__(self) -> int:
        return int(str(self).strip())

    def __repr__(self) -> str:
        return f"<Node {self._tag!r} children={len(self._children)}>"
