"""Local PCM playback for synthesized speech."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from asyncio.subprocess import Process


class AplaySink:
    """Play PCM audio by piping it into ``aplay`` (ALSA)."""

    def __init__(self, binary: str = "aplay", logger: logging.Logger | None = None) -> None:
        self.binary = binary
        self._proc: Process | None = None
        self._logger = logger or logging.getLogger(__name__)

    @property
    def active(self) -> bool:
        return self._proc is not None

    async def start(self, rate: int, width: int, channels: int) -> None:
        await self.stop()
        cmd = build_aplay_command(self.binary, rate, width, channels)
        self._logger.debug("Starting playback: %s", " ".join(cmd))
        self._proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )

    async def write(self, chunk: bytes) -> None:
        if not self._proc or not self._proc.stdin:
            raise RuntimeError("Playback is not active")
        try:
            self._proc.stdin.write(chunk)
            await self._proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            stderr = await self._drain_stderr()
            await self.stop()
            detail = f" ({stderr})" if stderr else ""
            raise RuntimeError(f"Playback process exited unexpectedly{detail}") from exc

    async def stop(self) -> None:
        if not self._proc:
            return
        self._logger.debug("Stopping playback")
        proc = self._proc
        self._proc = None
        if proc.stdin:
            proc.stdin.close()
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                await proc.stdin.wait_closed()
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(proc.wait(), timeout=2)

    async def abort(self) -> None:
        """Kill playback immediately, dropping buffered audio."""
        proc = self._proc
        self._proc = None
        if not proc:
            return
        self._logger.debug("Aborting playback")
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(proc.wait(), timeout=2)

    async def _drain_stderr(self) -> str:
        if not self._proc or not self._proc.stderr:
            return ""
        try:
            data = await asyncio.wait_for(self._proc.stderr.read(), timeout=0.05)
        except (TimeoutError, RuntimeError):
            return ""
        return data.decode("utf-8", errors="ignore").strip()


def _alsa_format(width: int) -> str:
    return {
        1: "U8",
        2: "S16_LE",
        3: "S24_LE",
        4: "S32_LE",
    }.get(width, "S16_LE")


def build_aplay_command(binary: str, rate: int, width: int, channels: int) -> list[str]:
    return [
        binary,
        "-q",
        "-t",
        "raw",
        "-r",
        str(rate),
        "-f",
        _alsa_format(width),
        "-c",
        str(channels),
        "-",
    ]
