"""Device action events and their dispatch."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import IntEnum
from typing import Protocol

from .element_locator import Selector, locate
from .llm import DeviceAction
from .ui_tree import UiTree

LOGGER = logging.getLogger(__name__)

SCROLL_DIRECTIONS = {"up", "down", "left", "right"}


class GlobalAction(IntEnum):
    BACK = 1
    HOME = 2


@dataclass(frozen=True)
class ClickElementEvent:
    selector: Selector


@dataclass(frozen=True)
class GlobalActionEvent:
    action: GlobalAction


@dataclass(frozen=True)
class HighlightElementEvent:
    selector: Selector


@dataclass(frozen=True)
class ScrollEvent:
    direction: str


ActionEvent = ClickElementEvent | GlobalActionEvent | HighlightElementEvent | ScrollEvent


class ActionSink(Protocol):
    async def post(self, event: ActionEvent) -> None: ...


def action_to_event(action: DeviceAction) -> ActionEvent:
    """Translate an LLM action into a device event; raise ValueError when it cannot be."""
    if action.type == "back":
        return GlobalActionEvent(GlobalAction.BACK)
    if action.type == "home":
        return GlobalActionEvent(GlobalAction.HOME)
    if action.selector is None:
        raise ValueError(f"Action '{action.type}' requires a selector")
    if action.type == "click":
        return ClickElementEvent(action.selector)
    if action.type == "highlight":
        return HighlightElementEvent(action.selector)
    if action.type == "scroll":
        return ScrollEvent((action.direction or "").strip().lower())
    raise ValueError(f"Unsupported action type '{action.type}'")


async def dispatch_actions(
    actions: Iterable[DeviceAction],
    sink: ActionSink,
    logger: logging.Logger | None = None,
) -> int:
    """Post each action in order; failures are logged and the batch continues.

    Returns the number of events that were posted.
    """
    log = logger or LOGGER
    posted = 0
    for action in actions:
        try:
            event = action_to_event(action)
            log.debug("[actions] Posting %s", event)
            await sink.post(event)
        except Exception:
            log.exception("[actions] Failed to process action %s", action)
            continue
        posted += 1
    return posted


class MqttActionSink:
    """Resolve selectors against the latest UI tree and publish device commands over MQTT."""

    def __init__(
        self,
        mqtt,
        topic: str,
        tree_getter: Callable[[], UiTree | None],
        *,
        highlight_ms: int = 5000,
        logger: logging.Logger | None = None,
    ) -> None:
        self._mqtt = mqtt
        self._topic = topic
        self._tree_getter = tree_getter
        self._highlight_ms = highlight_ms
        self._logger = logger or LOGGER

    async def post(self, event: ActionEvent) -> None:
        payload = self._build_payload(event)
        if payload is None:
            return
        self._mqtt.publish(self._topic, json.dumps(payload, ensure_ascii=False))

    def _build_payload(self, event: ActionEvent) -> dict | None:
        if isinstance(event, GlobalActionEvent):
            return {"action": "global", "code": int(event.action), "name": event.action.name.lower()}
        if isinstance(event, ScrollEvent):
            if event.direction not in SCROLL_DIRECTIONS:
                raise ValueError(f"Unknown scroll direction '{event.direction}'")
            return {"action": "scroll", "direction": event.direction}
        if isinstance(event, (ClickElementEvent, HighlightElementEvent)):
            node = locate(self._tree_getter(), event.selector, logger=self._logger)
            kind = "click" if isinstance(event, ClickElementEvent) else "highlight"
            if node is None:
                self._logger.info("[actions] Could not find element to %s with selector %s", kind, event.selector)
                return None
            payload = {
                "action": kind,
                "selector": event.selector.to_dict(),
                "bounds": node.bounds.to_dict(),
                "center": list(node.bounds.center()),
            }
            if kind == "highlight":
                payload["duration_ms"] = self._highlight_ms
            return payload
        raise ValueError(f"Unsupported action event {event!r}")
