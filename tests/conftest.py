"""Shared test fixtures and configuration for the RedHelper test suite.

This module provides reusable fixtures for common test scenarios including:
- MQTT client mocking
- Recording fakes for speech, listening, LLM and action sink collaborators
- UI tree factories
- Ready-wired dialog engines
"""

from __future__ import annotations

import logging
from typing import Any
from unittest.mock import AsyncMock, Mock

import paho.mqtt.client as mqtt
import pytest

from redhelper.assistant.config import MqttConfig, SettingsDefaults
from redhelper.assistant.device_status import DeviceStatus
from redhelper.assistant.dialog import DialogEngine
from redhelper.assistant.follow_up import FollowUpWindow
from redhelper.assistant.llm import AssistReply
from redhelper.assistant.settings_store import SettingsStore
from redhelper.assistant.speech import QueueMode
from redhelper.assistant.ui_tree import UiTree

# ============================================================================
# Pytest Configuration
# ============================================================================


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


# ============================================================================
# Logging Fixtures
# ============================================================================


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing."""
    return Mock(spec=logging.Logger)


# ============================================================================
# MQTT Fixtures
# ============================================================================


@pytest.fixture
def mqtt_config():
    """Create a basic MQTT configuration for testing."""
    return MqttConfig(
        host="localhost",
        port=1883,
        username=None,
        password=None,
        tls_enabled=False,
        cert=None,
        key=None,
        ca_cert=None,
        topic_base="redhelper/test-device",
    )


@pytest.fixture
def mock_mqtt_client():
    """Create a mock paho MQTT client."""
    client = Mock(spec=mqtt.Client)
    message_info = Mock(spec=mqtt.MQTTMessageInfo)
    message_info.rc = mqtt.MQTT_ERR_SUCCESS
    message_info.mid = 1
    client.publish = Mock(return_value=message_info)
    client.subscribe = Mock(return_value=(mqtt.MQTT_ERR_SUCCESS, 1))
    client.is_connected = Mock(return_value=True)
    return client


@pytest.fixture
def fake_mqtt():
    """A stand-in for AssistantMqtt that records publishes."""
    link = Mock()
    link.publish = Mock()
    return link


# ============================================================================
# Dialog Collaborator Fakes
# ============================================================================


class RecordingSpeech:
    """SpeechOutput fake that records every utterance with its queue mode."""

    def __init__(self) -> None:
        self.spoken: list[tuple[str, QueueMode]] = []
        self.language: str | None = None
        self.rate: float | None = None

    async def speak(self, text: str, mode: QueueMode = QueueMode.FLUSH) -> None:
        self.spoken.append((text, mode))

    def set_language(self, language_tag: str) -> None:
        self.language = language_tag

    def set_speech_rate(self, rate: float) -> None:
        self.rate = rate

    @property
    def texts(self) -> list[str]:
        return [text for text, _mode in self.spoken]

    @property
    def last(self) -> str | None:
        return self.spoken[-1][0] if self.spoken else None


class RecordingListener:
    def __init__(self) -> None:
        self.sessions: list[int] = []

    def start_session(self, timeout_seconds: int) -> None:
        self.sessions.append(timeout_seconds)


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[Any] = []

    async def post(self, event: Any) -> None:
        self.events.append(event)


STATUS = DeviceStatus(
    is_airplane_mode_on=False,
    internet_connection_status="WIFI",
    ringer_mode="NORMAL",
    battery_level=80,
    installed_apps="Phone, Messages",
    is_keyguard_locked=False,
)


@pytest.fixture
def speech():
    return RecordingSpeech()


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def action_sink():
    return RecordingSink()


@pytest.fixture
def assist_client():
    """AsyncMock assist client answering with a plain reply."""
    client = AsyncMock()
    client.assist = AsyncMock(return_value=AssistReply(reply_text="Tap the green button."))
    return client


@pytest.fixture
def status_provider():
    provider = Mock()
    provider.gather = Mock(return_value=STATUS)
    return provider


@pytest.fixture
def locale_notifier():
    notifier = Mock()
    notifier.notify_locale_changed = Mock()
    return notifier


@pytest.fixture
def make_settings():
    """Factory for in-memory settings stores (no persistence)."""

    def _create(user_name: str | None = None, language: str = "ru-RU", speech_rate: float = 1.0) -> SettingsStore:
        return SettingsStore(SettingsDefaults(user_name=user_name, language=language, speech_rate=speech_rate))

    return _create


@pytest.fixture
def settings(make_settings):
    return make_settings(language="en-US")


@pytest.fixture
def follow_up_window():
    return FollowUpWindow()


@pytest.fixture
def make_engine(speech, listener, assist_client, status_provider, action_sink, locale_notifier, follow_up_window):
    """Factory for dialog engines wired to the recording fakes."""

    def _create(settings: SettingsStore, **overrides: Any) -> DialogEngine:
        kwargs: dict[str, Any] = {
            "speech": speech,
            "listener": listener,
            "settings": settings,
            "assist": assist_client,
            "status_provider": status_provider,
            "action_sink": action_sink,
            "locale_notifier": locale_notifier,
            "follow_up_window": follow_up_window,
        }
        kwargs.update(overrides)
        return DialogEngine(**kwargs)

    return _create


@pytest.fixture
def engine(make_engine, settings):
    return make_engine(settings)


# ============================================================================
# UI Tree Factories
# ============================================================================


@pytest.fixture
def make_tree():
    """Build a flat UI tree from ``(text, desc, visible, children)`` tuples.

    Usage:
        tree = make_tree([("", "", True, [1]), ("OK", "", True, [])])
    """

    def _create(specs: list[tuple], package: str = "com.example.app") -> UiTree:
        nodes = []
        for index, spec in enumerate(specs):
            text, desc, visible, children = spec[:4]
            view_id = spec[4] if len(spec) > 4 else ""
            nodes.append(
                {
                    "text": text,
                    "content_desc": desc,
                    "visible": visible,
                    "children": list(children),
                    "view_id": view_id,
                    "bounds": [index * 10, index * 10, index * 10 + 100, index * 10 + 50],
                }
            )
        return UiTree.from_dict({"package": package, "root": 0, "nodes": nodes})

    return _create
