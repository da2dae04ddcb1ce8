from __future__ import annotations

import json
from unittest.mock import AsyncMock, Mock

import pytest

from redhelper.assistant import actions
from redhelper.assistant.element_locator import Selector
from redhelper.assistant.llm import DeviceAction

pytestmark = pytest.mark.anyio


@pytest.fixture
def sink_tree(make_tree):
    return make_tree(
        [
            ("", "", True, [1, 2]),
            ("Messages", "", True, []),
            ("", "Search", True, []),
        ]
    )


@pytest.fixture
def mqtt_sink(fake_mqtt, sink_tree):
    return actions.MqttActionSink(fake_mqtt, "redhelper/test-device/actions", lambda: sink_tree, highlight_ms=3000)


def _published(fake_mqtt) -> list[dict]:
    return [json.loads(call.args[1]) for call in fake_mqtt.publish.call_args_list]


def test_action_to_event_globals() -> None:
    assert actions.action_to_event(DeviceAction("back")) == actions.GlobalActionEvent(actions.GlobalAction.BACK)
    assert actions.action_to_event(DeviceAction("home")) == actions.GlobalActionEvent(actions.GlobalAction.HOME)


def test_action_to_event_selectors() -> None:
    selector = Selector("text", "OK")
    assert actions.action_to_event(DeviceAction("click", selector)) == actions.ClickElementEvent(selector)
    assert actions.action_to_event(DeviceAction("highlight", selector)) == actions.HighlightElementEvent(selector)
    assert actions.action_to_event(DeviceAction("scroll", Selector("direction", " Down "))) == actions.ScrollEvent(
        "down"
    )


def test_action_to_event_requires_selector() -> None:
    with pytest.raises(ValueError, match="requires a selector"):
        actions.action_to_event(DeviceAction("click"))


def test_action_to_event_unknown_type() -> None:
    with pytest.raises(ValueError, match="Unsupported"):
        actions.action_to_event(DeviceAction("swipe", Selector("text", "x")))


async def test_dispatch_preserves_order(action_sink) -> None:
    batch = [
        DeviceAction("click", Selector("text", "Messages")),
        DeviceAction("back"),
        DeviceAction("highlight", Selector("id", "app:id/send")),
    ]

    posted = await actions.dispatch_actions(batch, action_sink)

    assert posted == 3
    assert [type(event) for event in action_sink.events] == [
        actions.ClickElementEvent,
        actions.GlobalActionEvent,
        actions.HighlightElementEvent,
    ]


async def test_dispatch_continues_after_failure(mock_logger) -> None:
    sink = Mock()
    sink.post = AsyncMock(side_effect=[RuntimeError("device gone"), None])

    posted = await actions.dispatch_actions(
        [DeviceAction("click"), DeviceAction("home"), DeviceAction("back")], sink, logger=mock_logger
    )

    # The selector-less click never reaches the sink; the home post fails; back succeeds.
    assert posted == 1
    assert sink.post.await_count == 2
    assert mock_logger.exception.call_count == 2


async def test_mqtt_sink_global_action(mqtt_sink, fake_mqtt) -> None:
    await mqtt_sink.post(actions.GlobalActionEvent(actions.GlobalAction.HOME))
    assert _published(fake_mqtt) == [{"action": "global", "code": 2, "name": "home"}]
    assert fake_mqtt.publish.call_args.args[0] == "redhelper/test-device/actions"


async def test_mqtt_sink_click_resolves_bounds(mqtt_sink, fake_mqtt) -> None:
    await mqtt_sink.post(actions.ClickElementEvent(Selector("text", "messages")))

    (payload,) = _published(fake_mqtt)
    assert payload["action"] == "click"
    assert payload["selector"] == {"by": "text", "value": "messages"}
    assert payload["bounds"] == {"left": 10, "top": 10, "right": 110, "bottom": 60}
    assert payload["center"] == [60, 35]


async def test_mqtt_sink_highlight_carries_duration(mqtt_sink, fake_mqtt) -> None:
    await mqtt_sink.post(actions.HighlightElementEvent(Selector("content_desc", "search")))

    (payload,) = _published(fake_mqtt)
    assert payload["action"] == "highlight"
    assert payload["duration_ms"] == 3000
    assert payload["center"] == [70, 45]


async def test_mqtt_sink_missing_element_publishes_nothing(mqtt_sink, fake_mqtt) -> None:
    await mqtt_sink.post(actions.ClickElementEvent(Selector("text", "Delete everything")))
    fake_mqtt.publish.assert_not_called()


async def test_mqtt_sink_without_tree(fake_mqtt) -> None:
    sink = actions.MqttActionSink(fake_mqtt, "t", lambda: None)
    await sink.post(actions.HighlightElementEvent(Selector("text", "OK")))
    fake_mqtt.publish.assert_not_called()


async def test_mqtt_sink_scroll(mqtt_sink, fake_mqtt) -> None:
    await mqtt_sink.post(actions.ScrollEvent("up"))
    assert _published(fake_mqtt) == [{"action": "scroll", "direction": "up"}]


async def test_mqtt_sink_rejects_unknown_direction(mqtt_sink, fake_mqtt) -> None:
    with pytest.raises(ValueError, match="scroll direction"):
        await mqtt_sink.post(actions.ScrollEvent("sideways"))
    fake_mqtt.publish.assert_not_called()
