"""Helpers for streaming Wyoming (Piper) text-to-speech."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator

from wyoming.audio import AudioChunk, AudioStart, AudioStop
from wyoming.client import AsyncTcpClient
from wyoming.tts import Synthesize, SynthesizeVoice

from redhelper.utils import await_with_timeout

from .audio import AplaySink
from .config import WyomingEndpoint

LoggerLike = logging.Logger | None


async def play_tts_stream(
    text: str,
    *,
    endpoint: WyomingEndpoint,
    sink: AplaySink,
    voice_name: str | None = None,
    language: str | None = None,
    rate: float = 1.0,
    timeout: float | None = None,
    logger: LoggerLike = None,
) -> None:
    """Synthesize speech via Wyoming TTS and stream it directly to the provided sink."""

    started = False
    try:
        async with contextlib.aclosing(
            _tts_event_stream(text, endpoint=endpoint, voice_name=voice_name, language=language, timeout=timeout)
        ) as events:
            async for event in events:
                if AudioStart.is_type(event.type):
                    audio_start = AudioStart.from_event(event)
                    # Speech rate scales the playback sample rate.
                    playback_rate = max(1, int(audio_start.rate * rate))
                    await sink.start(playback_rate, audio_start.width, audio_start.channels)
                    started = True
                elif AudioChunk.is_type(event.type):
                    chunk = AudioChunk.from_event(event)
                    await sink.write(chunk.audio)
                elif AudioStop.is_type(event.type):
                    break
    finally:
        if started:
            await sink.stop()
    if logger:
        logger.debug("[speech] Finished TTS stream (%d chars)", len(text))


async def _tts_event_stream(
    text: str,
    *,
    endpoint: WyomingEndpoint,
    voice_name: str | None = None,
    language: str | None = None,
    timeout: float | None = None,
) -> AsyncIterator[object]:
    client = AsyncTcpClient(endpoint.host, endpoint.port)
    await await_with_timeout(client.connect(), timeout)
    # Wyoming drops the language whenever a voice name is given.
    if voice_name:
        voice = SynthesizeVoice(name=voice_name)
    elif language:
        voice = SynthesizeVoice(language=language)
    else:
        voice = None
    try:
        await await_with_timeout(client.write_event(Synthesize(text=text, voice=voice).event()), timeout)
        while True:
            event = await await_with_timeout(client.read_event(), timeout)
            if event is None:
                break
            yield event
            if AudioStop.is_type(event.type):
                break
    finally:
        await client.disconnect()
