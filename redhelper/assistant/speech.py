"""Speech capture and output endpoints used by the dialog engine."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import threading
import uuid
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Protocol

from redhelper.utils import coerce_str

from .audio import AplaySink
from .config import WyomingEndpoint
from .wyoming import play_tts_stream

LOGGER = logging.getLogger(__name__)


class QueueMode(Enum):
    FLUSH = "flush"
    APPEND = "append"


class SpeechOutput(Protocol):
    async def speak(self, text: str, mode: QueueMode = QueueMode.FLUSH) -> None: ...

    def set_language(self, language_tag: str) -> None: ...

    def set_speech_rate(self, rate: float) -> None: ...


class Listener(Protocol):
    def start_session(self, timeout_seconds: int) -> None: ...


def _resolve(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


class MqttSpeaker:
    """Ask the device to speak over MQTT and wait for its completion message.

    Each request carries an id; the device echoes it on the ``done`` topic
    once playback finishes. ``completion_timeout`` bounds the wait (zero
    means fire-and-forget).
    """

    def __init__(
        self,
        mqtt,
        topic: str,
        *,
        language: str,
        rate: float = 1.0,
        completion_timeout: float = 20.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._mqtt = mqtt
        self._topic = topic
        self._language = language
        self._rate = rate
        self._completion_timeout = completion_timeout
        self._logger = logger or LOGGER
        self._lock = threading.Lock()
        self._pending: dict[str, tuple[asyncio.AbstractEventLoop, asyncio.Future]] = {}

    def set_language(self, language_tag: str) -> None:
        self._language = language_tag

    def set_speech_rate(self, rate: float) -> None:
        self._rate = rate

    async def speak(self, text: str, mode: QueueMode = QueueMode.FLUSH) -> None:
        text = text.strip()
        if not text:
            return
        utterance_id = uuid.uuid4().hex
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        with self._lock:
            flushed = list(self._pending.values()) if mode is QueueMode.FLUSH else []
            if flushed:
                self._pending.clear()
            self._pending[utterance_id] = (loop, future)
        for pending_loop, pending in flushed:
            pending_loop.call_soon_threadsafe(_resolve, pending)

        self._mqtt.publish(
            self._topic,
            json.dumps(
                {
                    "id": utterance_id,
                    "text": text,
                    "mode": mode.value,
                    "language": self._language,
                    "rate": self._rate,
                },
                ensure_ascii=False,
            ),
        )
        try:
            if self._completion_timeout > 0:
                await asyncio.wait_for(future, timeout=self._completion_timeout)
        except asyncio.TimeoutError:
            self._logger.debug("[speech] No completion for utterance %s after %.1fs", utterance_id, self._completion_timeout)
        finally:
            with self._lock:
                self._pending.pop(utterance_id, None)

    def handle_done(self, payload: str) -> None:
        """Resolve a pending utterance; safe to call from the MQTT thread."""
        utterance_id = payload.strip()
        with contextlib.suppress(ValueError):
            data = json.loads(payload)
            if isinstance(data, dict):
                utterance_id = coerce_str(data.get("id"))
        with self._lock:
            entry = self._pending.pop(utterance_id, None)
        if entry is None:
            return
        loop, future = entry
        loop.call_soon_threadsafe(_resolve, future)


class WyomingSpeaker:
    """Synthesize locally through Wyoming/Piper and play through ``aplay``.

    FLUSH aborts whatever is playing and drops queued utterances; APPEND
    waits its turn behind the current one.
    """

    def __init__(
        self,
        endpoint: WyomingEndpoint,
        *,
        language: str,
        rate: float = 1.0,
        voice_name: str | None = None,
        voices: Mapping[str, str] | None = None,
        audio_player: str = "aplay",
        timeout: float | None = None,
        sink: AplaySink | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._language = language
        self._rate = rate
        self._voices = dict(voices or {})
        # The default voice speaks the startup language only.
        if voice_name and language not in self._voices:
            self._voices[language] = voice_name
        self._timeout = timeout
        self._logger = logger or LOGGER
        self._sink = sink or AplaySink(audio_player, logger=self._logger)
        self._lock = asyncio.Lock()
        self._generation = 0
        self._current: asyncio.Task | None = None

    def set_language(self, language_tag: str) -> None:
        self._language = language_tag

    def set_speech_rate(self, rate: float) -> None:
        self._rate = rate

    async def speak(self, text: str, mode: QueueMode = QueueMode.FLUSH) -> None:
        text = text.strip()
        if not text:
            return
        if mode is QueueMode.FLUSH:
            self._generation += 1
            await self._interrupt()
        generation = self._generation
        async with self._lock:
            if generation != self._generation:
                return
            task = asyncio.create_task(
                play_tts_stream(
                    text,
                    endpoint=self._endpoint,
                    sink=self._sink,
                    voice_name=self._voices.get(self._language),
                    language=self._language,
                    rate=self._rate,
                    timeout=self._timeout,
                    logger=self._logger,
                )
            )
            self._current = task
            try:
                await asyncio.wait({task})
            except asyncio.CancelledError:
                task.cancel()
                raise
            finally:
                if self._current is task:
                    self._current = None
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.warning("[speech] Wyoming TTS failed: %s", exc)

    async def _interrupt(self) -> None:
        current = self._current
        if current is None or current.done():
            return
        current.cancel()
        await self._sink.abort()
        await asyncio.wait({current})


class MqttListener:
    """Ask the device to open a speech-recognition session."""

    def __init__(
        self,
        mqtt,
        topic: str,
        language_getter: Callable[[], str],
        logger: logging.Logger | None = None,
    ) -> None:
        self._mqtt = mqtt
        self._topic = topic
        self._language_getter = language_getter
        self._logger = logger or LOGGER

    def start_session(self, timeout_seconds: int) -> None:
        self._logger.debug("[speech] Requesting listening session (%ss)", timeout_seconds)
        self._mqtt.publish(
            self._topic,
            json.dumps({"timeout_seconds": timeout_seconds, "language": self._language_getter()}),
        )
