"""Resolve LLM-issued element selectors against the live UI tree."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from redhelper.utils import coerce_str

from .ui_tree import UiNode, UiTree

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Selector:
    by: str
    value: str

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> Selector | None:
        if not isinstance(payload, Mapping):
            return None
        by = coerce_str(payload.get("by")).lower()
        value = coerce_str(payload.get("value"))
        if not by or not value:
            return None
        return cls(by=by, value=value)

    def to_dict(self) -> dict[str, str]:
        return {"by": self.by, "value": self.value}


def locate(tree: UiTree | None, selector: Selector, logger: logging.Logger | None = None) -> UiNode | None:
    """Find the best visible node for ``selector``, or None.

    ``text`` tries the tree's indexed lookup first and falls back to a
    breadth-first equality scan; ``id`` uses the indexed id lookup;
    ``content_desc`` scans breadth-first against content descriptions only.
    """
    log = logger or LOGGER
    if tree is None or tree.root is None:
        return None

    if selector.by == "text":
        node = _first_visible(tree.find_by_text(selector.value))
        if node is None:
            log.debug("[locator] Indexed text lookup missed '%s'; scanning tree", selector.value)
            node = _breadth_first(tree, tree.root, _matches_text_or_desc(selector.value))
        return node
    if selector.by == "id":
        return _first_visible(tree.find_by_view_id(selector.value))
    if selector.by == "content_desc":
        return _breadth_first(tree, tree.root, _matches_desc(selector.value))

    log.debug("[locator] Unsupported selector kind '%s'", selector.by)
    return None


def _first_visible(nodes: list[UiNode]) -> UiNode | None:
    for node in nodes:
        if node.visible:
            return node
    return None


def _matches_text_or_desc(value: str) -> Callable[[UiNode], bool]:
    needle = value.casefold()
    return lambda node: node.text.casefold() == needle or node.content_desc.casefold() == needle


def _matches_desc(value: str) -> Callable[[UiNode], bool]:
    needle = value.casefold()
    return lambda node: node.content_desc.casefold() == needle


def _breadth_first(tree: UiTree, root: int, predicate: Callable[[UiNode], bool]) -> UiNode | None:
    visited = bytearray(len(tree))
    queue = deque([root])
    while queue:
        index = queue.popleft()
        if visited[index]:
            continue
        visited[index] = 1
        node = tree.node(index)
        if not node.visible:
            continue
        if predicate(node):
            return node
        queue.extend(child for child in tree.children(index) if not visited[child])
    return None
