"""Proactive follow-up after the screen changes.

After the assistant answers, the device opens a short follow-up window. If the
user acts on the screen during that window (the UI tree changes), the watcher
emits exactly one synthetic ``FOLLOW_UP`` utterance carrying the new screen
context so the assistant can comment on the new screen.

Policy:
- At most one follow-up per active window
- The last digest is forgotten whenever a window has closed
- Consecutive observations with the same hash never re-trigger
- Emitting a follow-up cancels the window
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from .screen_digest import ScreenDigest, build_screen_context, digest_text, has_changed
from .ui_tree import UiTree

LOGGER = logging.getLogger(__name__)

FOLLOW_UP_TOKEN = "FOLLOW_UP"


class FollowUpWindow:
    """Time-boxed permission to re-engage the user. Thread-safe."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._deadline: float | None = None

    def open(self, duration_seconds: float) -> None:
        with self._lock:
            self._deadline = self._clock() + max(0.0, duration_seconds)

    def cancel(self) -> None:
        with self._lock:
            self._deadline = None

    def is_active(self) -> bool:
        with self._lock:
            if self._deadline is None:
                return False
            if self._clock() >= self._deadline:
                self._deadline = None
                return False
            return True


class FollowUpWatcher:
    """Turns UI tree observations into at most one follow-up per window."""

    def __init__(
        self,
        window: FollowUpWindow,
        on_follow_up: Callable[[str], None],
        *,
        language_getter: Callable[[], str | None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.window = window
        self._on_follow_up = on_follow_up
        self._language_getter = language_getter
        self.logger = logger or LOGGER

        self._lock = threading.Lock()
        self._last_digest: ScreenDigest | None = None
        self._sent_in_window = False
        self._was_active = False

    @property
    def last_digest(self) -> ScreenDigest | None:
        with self._lock:
            return self._last_digest

    def observe(self, tree: UiTree | None) -> bool:
        """Process one UI tree observation; return True when a follow-up was emitted."""
        with self._lock:
            if not self.window.is_active():
                if self._was_active:
                    self._sent_in_window = False
                    self._last_digest = None
                self._was_active = False
                return False
            self._was_active = True

            if tree is None or tree.root is None:
                return False
            language = self._language_getter() if self._language_getter else None
            context = build_screen_context(tree, language)
            current = digest_text(context)
            if not has_changed(self._last_digest, current):
                return False
            self._last_digest = current
            if self._sent_in_window:
                return False

            try:
                self._on_follow_up(context)
            except Exception as exc:
                self.logger.error("[follow-up] Failed to submit follow-up: %s", exc, exc_info=True)
                return False
            self._sent_in_window = True
        self.logger.debug("[follow-up] Screen changed inside follow-up window (hash=%s)", current.hash)
        self.window.cancel()
        return True
