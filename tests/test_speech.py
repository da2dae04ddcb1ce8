"""Tests for speech output and listening endpoints."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from redhelper.assistant.config import WyomingEndpoint
from redhelper.assistant.speech import MqttListener, MqttSpeaker, QueueMode, WyomingSpeaker

pytestmark = pytest.mark.anyio

SAY_TOPIC = "redhelper/test-device/speech/say"


async def _until(predicate) -> None:
    for _ in range(100):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


def _requests(fake_mqtt) -> list[dict]:
    return [json.loads(call.args[1]) for call in fake_mqtt.publish.call_args_list]


class TestMqttSpeaker:
    """Test MQTT speech requests and completion tracking."""

    async def test_publishes_request(self, fake_mqtt):
        speaker = MqttSpeaker(fake_mqtt, SAY_TOPIC, language="ru-RU", rate=1.1, completion_timeout=0)

        await speaker.speak("  Привет  ", QueueMode.APPEND)

        (request,) = _requests(fake_mqtt)
        assert fake_mqtt.publish.call_args.args[0] == SAY_TOPIC
        assert request["text"] == "Привет"
        assert request["mode"] == "append"
        assert request["language"] == "ru-RU"
        assert request["rate"] == 1.1
        assert request["id"]

    async def test_settings_changes_apply_to_next_request(self, fake_mqtt):
        speaker = MqttSpeaker(fake_mqtt, SAY_TOPIC, language="ru-RU", completion_timeout=0)
        speaker.set_language("en-US")
        speaker.set_speech_rate(0.8)

        await speaker.speak("Hello")

        request = _requests(fake_mqtt)[0]
        assert request["language"] == "en-US"
        assert request["rate"] == 0.8
        assert request["mode"] == "flush"

    async def test_blank_text_is_not_sent(self, fake_mqtt):
        speaker = MqttSpeaker(fake_mqtt, SAY_TOPIC, language="en-US")
        await speaker.speak("   ")
        fake_mqtt.publish.assert_not_called()

    async def test_waits_for_done_json(self, fake_mqtt):
        speaker = MqttSpeaker(fake_mqtt, SAY_TOPIC, language="en-US", completion_timeout=5)

        task = asyncio.create_task(speaker.speak("Hello"))
        await _until(lambda: fake_mqtt.publish.called)
        assert not task.done()

        speaker.handle_done(json.dumps({"id": _requests(fake_mqtt)[0]["id"]}))
        await asyncio.wait_for(task, timeout=1)

    async def test_waits_for_done_raw_id(self, fake_mqtt):
        speaker = MqttSpeaker(fake_mqtt, SAY_TOPIC, language="en-US", completion_timeout=5)

        task = asyncio.create_task(speaker.speak("Hello"))
        await _until(lambda: fake_mqtt.publish.called)
        speaker.handle_done(_requests(fake_mqtt)[0]["id"] + "\n")

        await asyncio.wait_for(task, timeout=1)

    async def test_unknown_done_is_ignored(self, fake_mqtt):
        speaker = MqttSpeaker(fake_mqtt, SAY_TOPIC, language="en-US", completion_timeout=5)
        speaker.handle_done('{"id": "nope"}')
        speaker.handle_done("not json")

    async def test_completion_timeout(self, fake_mqtt, mock_logger):
        speaker = MqttSpeaker(fake_mqtt, SAY_TOPIC, language="en-US", completion_timeout=0.01, logger=mock_logger)

        await speaker.speak("Hello")

        mock_logger.debug.assert_called_once()

    async def test_flush_releases_pending_utterances(self, fake_mqtt):
        speaker = MqttSpeaker(fake_mqtt, SAY_TOPIC, language="en-US", completion_timeout=5)

        first = asyncio.create_task(speaker.speak("First"))
        await _until(lambda: fake_mqtt.publish.call_count == 1)
        second = asyncio.create_task(speaker.speak("Second", QueueMode.FLUSH))
        await _until(lambda: fake_mqtt.publish.call_count == 2)

        await asyncio.wait_for(first, timeout=1)
        assert not second.done()

        speaker.handle_done(_requests(fake_mqtt)[1]["id"])
        await asyncio.wait_for(second, timeout=1)


class TestWyomingSpeaker:
    """Test local playback queueing."""

    @pytest.fixture
    def sink(self):
        sink = AsyncMock()
        sink.abort = AsyncMock()
        return sink

    @pytest.fixture
    def speaker(self, sink, mock_logger):
        return WyomingSpeaker(
            WyomingEndpoint(host="localhost", port=10200),
            language="en-US",
            rate=1.0,
            voice_name="amy",
            sink=sink,
            logger=mock_logger,
        )

    async def test_passes_settings_to_stream(self, speaker, sink):
        with patch("redhelper.assistant.speech.play_tts_stream", new_callable=AsyncMock) as play:
            speaker.set_language("ru-RU")
            speaker.set_speech_rate(1.3)
            await speaker.speak("Привет")

        play.assert_awaited_once()
        assert play.await_args.args == ("Привет",)
        kwargs = play.await_args.kwargs
        assert kwargs["language"] == "ru-RU"
        assert kwargs["rate"] == 1.3
        assert kwargs["voice_name"] is None
        assert kwargs["sink"] is sink

    async def test_default_voice_keeps_startup_language(self, speaker):
        with patch("redhelper.assistant.speech.play_tts_stream", new_callable=AsyncMock) as play:
            await speaker.speak("Hello")

        assert play.await_args.kwargs["voice_name"] == "amy"
        assert play.await_args.kwargs["language"] == "en-US"

    async def test_language_change_selects_mapped_voice(self, sink, mock_logger):
        speaker = WyomingSpeaker(
            WyomingEndpoint(host="localhost", port=10200),
            language="en-US",
            voice_name="amy",
            voices={"ru-RU": "irina"},
            sink=sink,
            logger=mock_logger,
        )
        with patch("redhelper.assistant.speech.play_tts_stream", new_callable=AsyncMock) as play:
            speaker.set_language("ru-RU")
            await speaker.speak("Привет")
            speaker.set_language("en-US")
            await speaker.speak("Hello")

        assert [call.kwargs["voice_name"] for call in play.await_args_list] == ["irina", "amy"]

    def test_audio_player_reaches_sink(self, mock_logger):
        speaker = WyomingSpeaker(
            WyomingEndpoint(host="localhost", port=10200),
            language="en-US",
            audio_player="/usr/local/bin/aplay",
            logger=mock_logger,
        )
        assert speaker._sink.binary == "/usr/local/bin/aplay"

    async def test_flush_interrupts_current_playback(self, speaker, sink):
        started: list[str] = []
        gate = asyncio.Event()

        async def fake_play(text, **_kwargs):
            started.append(text)
            if text == "long answer":
                await gate.wait()

        with patch("redhelper.assistant.speech.play_tts_stream", side_effect=fake_play):
            first = asyncio.create_task(speaker.speak("long answer"))
            await _until(lambda: started == ["long answer"])

            await speaker.speak("new prompt", QueueMode.FLUSH)
            await asyncio.wait_for(first, timeout=1)

        assert started == ["long answer", "new prompt"]
        sink.abort.assert_awaited_once()

    async def test_append_waits_for_current(self, speaker, sink):
        started: list[str] = []
        gate = asyncio.Event()

        async def fake_play(text, **_kwargs):
            started.append(text)
            if text == "first":
                await gate.wait()

        with patch("redhelper.assistant.speech.play_tts_stream", side_effect=fake_play):
            first = asyncio.create_task(speaker.speak("first"))
            await _until(lambda: started == ["first"])
            second = asyncio.create_task(speaker.speak("second", QueueMode.APPEND))
            for _ in range(5):
                await asyncio.sleep(0)
            assert started == ["first"]

            gate.set()
            await asyncio.wait_for(asyncio.gather(first, second), timeout=1)

        assert started == ["first", "second"]
        sink.abort.assert_not_awaited()

    async def test_failure_is_logged(self, speaker, mock_logger):
        with patch("redhelper.assistant.speech.play_tts_stream", side_effect=ConnectionRefusedError("piper down")):
            await speaker.speak("Hello")

        mock_logger.warning.assert_called_once()

    async def test_blank_text_is_ignored(self, speaker):
        with patch("redhelper.assistant.speech.play_tts_stream", new_callable=AsyncMock) as play:
            await speaker.speak("  ")
        play.assert_not_awaited()


class TestMqttListener:
    """Test listening session requests."""

    def test_start_session(self, fake_mqtt):
        language = {"tag": "ru-RU"}
        listener = MqttListener(fake_mqtt, "redhelper/test-device/speech/listen", lambda: language["tag"])

        listener.start_session(15)
        language["tag"] = "en-US"
        listener.start_session(10)

        payloads = [json.loads(call.args[1]) for call in fake_mqtt.publish.call_args_list]
        assert payloads == [
            {"timeout_seconds": 15, "language": "ru-RU"},
            {"timeout_seconds": 10, "language": "en-US"},
        ]
