"""Accessibility tree snapshots reported by the device.

A snapshot is stored as an arena: a flat list of nodes addressed by index,
with children referenced by index. Caching layers on the device can report
the same node under two parents or even a cycle; consumers guard traversals
with a visited set sized to the arena instead of relying on node identity.

Two payload shapes are accepted by :meth:`UiTree.from_dict`:

- nested: ``{"package": ..., "root": {"text": ..., "children": [{...}]}}``
- flat: ``{"package": ..., "root": 0, "nodes": [{..., "children": [1, 2]}]}``
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from redhelper.utils import coerce_str


class UiTreeError(ValueError):
    """Raised when a UI tree payload cannot be interpreted."""


@dataclass(frozen=True, slots=True)
class Rect:
    left: int
    top: int
    right: int
    bottom: int

    @property
    def width(self) -> int:
        return max(0, self.right - self.left)

    @property
    def height(self) -> int:
        return max(0, self.bottom - self.top)

    def center(self) -> tuple[int, int]:
        return (self.left + self.right) // 2, (self.top + self.bottom) // 2

    def to_dict(self) -> dict[str, int]:
        return {"left": self.left, "top": self.top, "right": self.right, "bottom": self.bottom}


EMPTY_RECT = Rect(0, 0, 0, 0)


@dataclass(frozen=True, slots=True)
class UiNode:
    index: int
    text: str = ""
    content_desc: str = ""
    view_id: str = ""
    visible: bool = True
    bounds: Rect = EMPTY_RECT
    children: tuple[int, ...] = ()


@dataclass
class UiTree:
    nodes: list[UiNode]
    root: int | None = 0
    package_name: str | None = None
    _by_view_id: dict[str, list[int]] = field(init=False, repr=False)
    _text_keys: list[tuple[str, str]] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.root is not None and not 0 <= self.root < len(self.nodes):
            raise UiTreeError(f"Root index {self.root} is outside the tree ({len(self.nodes)} nodes)")
        self._by_view_id = {}
        for node in self.nodes:
            if node.view_id:
                self._by_view_id.setdefault(node.view_id, []).append(node.index)
        self._text_keys = [(node.text.lower(), node.content_desc.lower()) for node in self.nodes]

    def __len__(self) -> int:
        return len(self.nodes)

    def node(self, index: int) -> UiNode:
        return self.nodes[index]

    def children(self, index: int) -> Iterator[int]:
        """Yield valid child indices of ``index``; dangling references are skipped."""
        size = len(self.nodes)
        for child in self.nodes[index].children:
            if 0 <= child < size:
                yield child

    def find_by_text(self, value: str) -> list[UiNode]:
        """Indexed text lookup: case-insensitive substring match on text or content description."""
        needle = (value or "").lower()
        if not needle:
            return []
        return [
            self.nodes[index]
            for index, (text, desc) in enumerate(self._text_keys)
            if needle in text or needle in desc
        ]

    def find_by_view_id(self, view_id: str) -> list[UiNode]:
        """Indexed lookup by fully-qualified view id (``package:id/name``)."""
        return [self.nodes[index] for index in self._by_view_id.get(view_id, [])]

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> UiTree:
        if not isinstance(payload, Mapping):
            raise UiTreeError("UI tree payload must be an object")
        package_name = coerce_str(payload.get("package")) or None
        raw_nodes = payload.get("nodes")
        if raw_nodes is not None:
            return cls._from_flat(raw_nodes, payload.get("root", 0), package_name)
        raw_root = payload.get("root")
        if raw_root is None:
            return cls(nodes=[], root=None, package_name=package_name)
        if not isinstance(raw_root, Mapping):
            raise UiTreeError("Nested UI tree root must be an object")
        return cls._from_nested(raw_root, package_name)

    @classmethod
    def _from_flat(cls, raw_nodes: Any, raw_root: Any, package_name: str | None) -> UiTree:
        if not isinstance(raw_nodes, list):
            raise UiTreeError("'nodes' must be a list")
        nodes: list[UiNode] = []
        for index, raw in enumerate(raw_nodes):
            if not isinstance(raw, Mapping):
                raise UiTreeError(f"Node {index} must be an object")
            raw_children = raw.get("children") or []
            if not isinstance(raw_children, list):
                raise UiTreeError(f"Node {index} 'children' must be a list")
            children = tuple(child for child in raw_children if isinstance(child, int))
            nodes.append(_build_node(index, raw, children))
        if not nodes:
            return cls(nodes=[], root=None, package_name=package_name)
        if not isinstance(raw_root, int):
            raise UiTreeError("'root' must be a node index")
        return cls(nodes=nodes, root=raw_root, package_name=package_name)

    @classmethod
    def _from_nested(cls, raw_root: Mapping[str, Any], package_name: str | None) -> UiTree:
        # Pre-order numbering; child indices are patched in once known.
        raws: list[Mapping[str, Any]] = []
        child_lists: list[list[int]] = []
        stack: list[tuple[Mapping[str, Any], int | None]] = [(raw_root, None)]
        while stack:
            raw, parent = stack.pop()
            if not isinstance(raw, Mapping):
                raise UiTreeError("Every nested node must be an object")
            index = len(raws)
            raws.append(raw)
            child_lists.append([])
            if parent is not None:
                child_lists[parent].append(index)
            raw_children = raw.get("children") or []
            if not isinstance(raw_children, list):
                raise UiTreeError("'children' must be a list")
            for child in reversed(raw_children):
                stack.append((child, index))
        nodes = [_build_node(index, raw, tuple(child_lists[index])) for index, raw in enumerate(raws)]
        return cls(nodes=nodes, root=0, package_name=package_name)


def _build_node(index: int, raw: Mapping[str, Any], children: tuple[int, ...]) -> UiNode:
    return UiNode(
        index=index,
        text=coerce_str(raw.get("text")),
        content_desc=coerce_str(raw.get("content_desc") or raw.get("contentDescription")),
        view_id=coerce_str(raw.get("view_id") or raw.get("viewIdResourceName")),
        visible=bool(raw.get("visible", True)),
        bounds=_parse_bounds(raw.get("bounds")),
        children=children,
    )


def _parse_bounds(value: Any) -> Rect:
    if isinstance(value, Mapping):
        try:
            return Rect(int(value["left"]), int(value["top"]), int(value["right"]), int(value["bottom"]))
        except (KeyError, TypeError, ValueError, OverflowError) as exc:
            raise UiTreeError(f"Invalid bounds: {value!r}") from exc
    if isinstance(value, (list, tuple)) and len(value) == 4:
        try:
            return Rect(*(int(part) for part in value))
        except (TypeError, ValueError, OverflowError) as exc:
            raise UiTreeError(f"Invalid bounds: {value!r}") from exc
    if value is None:
        return EMPTY_RECT
    raise UiTreeError(f"Invalid bounds: {value!r}")
