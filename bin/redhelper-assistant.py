#!/usr/bin/env python3
"""RedHelper voice assistant daemon."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import threading

from redhelper.assistant.actions import MqttActionSink
from redhelper.assistant.commands import ALTERNATE_DELIMITER
from redhelper.assistant.config import AssistantConfig
from redhelper.assistant.device_status import DeviceStatusProvider
from redhelper.assistant.dialog import DialogEngine
from redhelper.assistant.follow_up import FOLLOW_UP_TOKEN, FollowUpWatcher, FollowUpWindow
from redhelper.assistant.llm import AssistClient, build_assist_client
from redhelper.assistant.mqtt import AssistantMqtt
from redhelper.assistant.screen_digest import build_screen_context
from redhelper.assistant.settings_store import MqttLocaleNotifier, SettingsStore
from redhelper.assistant.speech import MqttListener, MqttSpeaker, WyomingSpeaker
from redhelper.assistant.ui_tree import UiTree, UiTreeError
from redhelper.config_persist import SettingsPersister
from redhelper.utils import coerce_str, parse_float

LOGGER = logging.getLogger("redhelper-assistant")


def parse_transcript(payload: str) -> str:
    """Accept plain text or ``{"text": ..., "alternates": [...]}`` and join alternates."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        return payload.strip()
    if isinstance(data, str):
        return data.strip()
    if not isinstance(data, dict):
        return ""
    alternates = data.get("alternates")
    if isinstance(alternates, list):
        parts = [coerce_str(item) for item in alternates]
        parts = [part for part in parts if part]
        if parts:
            return f" {ALTERNATE_DELIMITER} ".join(parts)
    return coerce_str(data.get("text"))


class RedHelperAssistant:
    def __init__(self, config: AssistantConfig) -> None:
        self.config = config
        self.mqtt = AssistantMqtt(config.mqtt, logger=LOGGER)
        self.persister = SettingsPersister(config.config_file, logger=LOGGER)
        self.settings = SettingsStore(config.settings, persister=self.persister, logger=LOGGER)
        self.status_provider = DeviceStatusProvider(logger=LOGGER)
        self.assist: AssistClient = build_assist_client(
            config.assist,
            log_messages=config.log_llm_messages,
            logger=LOGGER,
        )
        self.mqtt_speaker: MqttSpeaker | None = None
        if config.speech.backend == "wyoming":
            self.speech = WyomingSpeaker(
                config.speech.tts_endpoint,
                language=self.settings.language(),
                rate=self.settings.speech_rate(),
                voice_name=config.speech.tts_voice,
                voices=config.speech.tts_voices,
                audio_player=config.speech.audio_player,
                timeout=config.speech.completion_timeout or None,
                logger=LOGGER,
            )
        else:
            self.mqtt_speaker = MqttSpeaker(
                self.mqtt,
                config.speak_topic,
                language=self.settings.language(),
                rate=self.settings.speech_rate(),
                completion_timeout=config.speech.completion_timeout,
                logger=LOGGER,
            )
            self.speech = self.mqtt_speaker
        self.follow_up_window = FollowUpWindow()
        self._tree_lock = threading.Lock()
        self._latest_tree: UiTree | None = None
        self.action_sink = MqttActionSink(
            self.mqtt,
            config.action_topic,
            self._current_tree,
            highlight_ms=config.dialog.highlight_ms,
            logger=LOGGER,
        )
        self.engine = DialogEngine(
            speech=self.speech,
            listener=MqttListener(self.mqtt, config.listen_topic, self.settings.language, logger=LOGGER),
            settings=self.settings,
            assist=self.assist,
            status_provider=self.status_provider,
            action_sink=self.action_sink,
            locale_notifier=MqttLocaleNotifier(self.mqtt, config.locale_topic, logger=LOGGER),
            follow_up_window=self.follow_up_window,
            languages=config.dialog.languages,
            listen_timeout_seconds=config.dialog.listen_timeout_seconds,
            follow_up_seconds=config.dialog.follow_up_seconds,
            logger=LOGGER,
        )
        self.watcher = FollowUpWatcher(
            self.follow_up_window,
            self._submit_follow_up,
            language_getter=self.settings.language,
            logger=LOGGER,
        )
        self._loop: asyncio.AbstractEventLoop | None = None
        self._shutdown = asyncio.Event()

    async def run(self) -> None:
        self._loop = asyncio.get_running_loop()
        if self.mqtt.connect():
            self._subscribe_topics()
        engine_task = asyncio.create_task(self.engine.run())
        LOGGER.info(
            "RedHelper assistant ready (language=%s, assist=%s, speech=%s)",
            self.settings.language(),
            self.config.assist.provider,
            self.config.speech.backend,
        )
        try:
            await self._shutdown.wait()
        finally:
            engine_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await engine_task

    async def shutdown(self) -> None:
        self._shutdown.set()
        self.persister.stop()
        await self.assist.close()
        self.mqtt.disconnect()

    def _subscribe_topics(self) -> None:
        try:
            self.mqtt.subscribe(self.config.transcript_topic, self._handle_transcript_message)
            self.mqtt.subscribe(self.config.ui_tree_topic, self._handle_ui_tree_message)
            self.mqtt.subscribe(self.config.device_status_topic, self._handle_device_status_message)
            self.mqtt.subscribe(self.config.follow_up_topic, self._handle_follow_up_message)
            self.mqtt.subscribe(self.config.first_run_topic, self._handle_first_run_message)
            if self.mqtt_speaker is not None:
                self.mqtt.subscribe(self.config.speak_done_topic, self.mqtt_speaker.handle_done)
        except RuntimeError:
            LOGGER.warning("MQTT client not ready for device subscriptions")

    def _current_tree(self) -> UiTree | None:
        with self._tree_lock:
            return self._latest_tree

    # MQTT callbacks run on the paho network thread; anything touching the
    # engine is handed to the event loop.

    def _handle_transcript_message(self, payload: str) -> None:
        if not self._loop:
            return
        text = parse_transcript(payload)
        if not text:
            LOGGER.debug("Ignoring empty transcript")
            return
        context = build_screen_context(self._current_tree(), self.settings.language())
        self._loop.call_soon_threadsafe(self.engine.submit, text, context)

    def _handle_ui_tree_message(self, payload: str) -> None:
        try:
            tree = UiTree.from_dict(json.loads(payload))
        except (json.JSONDecodeError, UiTreeError) as exc:
            LOGGER.warning("Rejected UI tree snapshot: %s", exc)
            return
        with self._tree_lock:
            self._latest_tree = tree
        self.watcher.observe(tree)

    def _handle_device_status_message(self, payload: str) -> None:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            LOGGER.debug("Ignoring malformed device status: %s", payload)
            return
        if isinstance(data, dict):
            self.status_provider.update(data)

    def _handle_follow_up_message(self, payload: str) -> None:
        value = payload.strip().lower()
        if value in {"0", "off", "cancel", "false"}:
            self.follow_up_window.cancel()
            return
        seconds = parse_float(value or None, self.config.dialog.follow_up_seconds)
        self.follow_up_window.open(seconds)
        LOGGER.debug("Follow-up window opened for %.1fs", seconds)

    def _handle_first_run_message(self, _payload: str) -> None:
        if not self._loop:
            return
        asyncio.run_coroutine_threadsafe(self.engine.start_first_run_setup(), self._loop)

    def _submit_follow_up(self, context: str) -> None:
        if not self._loop:
            return
        self._loop.call_soon_threadsafe(self.engine.submit, FOLLOW_UP_TOKEN, context)


async def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    config = AssistantConfig.from_env()
    assistant = RedHelperAssistant(config)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _handle_signal(signum: int) -> None:
        LOGGER.info("Received signal %s, shutting down", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    run_task = asyncio.create_task(assistant.run())
    await stop_event.wait()
    await assistant.shutdown()
    run_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await run_task


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
