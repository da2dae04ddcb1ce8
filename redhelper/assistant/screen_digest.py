"""Screen snapshot digests and change detection.

The screen context is a plain-text rendering of the visible accessibility
tree: one line per visible node carrying text or a content description,
indented two spaces per depth level. It is sent to the LLM as-is and is also
the basis of a :class:`ScreenDigest`, a bounded hash used to decide whether
the screen has meaningfully changed since the previous observation.
"""

from __future__ import annotations

import zlib
from dataclasses import dataclass

from .strings import localized
from .ui_tree import UiTree

DIGEST_TEXT_LIMIT = 2000


@dataclass(frozen=True)
class ScreenDigest:
    normalized_text: str
    hash: int


def build_screen_context(tree: UiTree | None, language_tag: str | None = None) -> str:
    """Render the visible content of ``tree`` as indented text lines."""
    if tree is None or tree.root is None:
        return localized(language_tag, "screen_context_unavailable")

    text_label = localized(language_tag, "screen_context_text")
    desc_label = localized(language_tag, "screen_context_description")
    package = tree.package_name or localized(language_tag, "screen_context_unknown")
    lines = [f"{localized(language_tag, 'screen_context_app')}{package}"]

    visited = bytearray(len(tree))
    stack: list[tuple[int, int]] = [(tree.root, 0)]
    while stack:
        index, depth = stack.pop()
        if visited[index]:
            continue
        visited[index] = 1
        node = tree.node(index)
        if node.visible and (node.text or node.content_desc):
            parts = []
            if node.text:
                parts.append(f'{text_label}"{node.text}"')
            if node.content_desc:
                parts.append(f'{desc_label}"{node.content_desc}"')
            lines.append("  " * depth + " ".join(parts))
        # Invisible containers can still expose visible descendants.
        children = [child for child in tree.children(index) if not visited[child]]
        for child in reversed(children):
            stack.append((child, depth + 1))
    return "\n".join(lines) + "\n"


def digest_text(context: str) -> ScreenDigest:
    """Hash the first ``DIGEST_TEXT_LIMIT`` characters of a rendered screen context."""
    normalized = context[:DIGEST_TEXT_LIMIT]
    return ScreenDigest(normalized_text=normalized, hash=zlib.crc32(normalized.encode("utf-8")))


def digest(tree: UiTree | None, language_tag: str | None = None) -> ScreenDigest:
    """Build the digest of a UI tree snapshot."""
    return digest_text(build_screen_context(tree, language_tag))


def has_changed(previous: ScreenDigest | None, current: ScreenDigest) -> bool:
    """Return True when ``current`` differs from the immediately preceding digest."""
    if previous is None:
        return True
    return previous.hash != current.hash
