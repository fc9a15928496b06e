"""Raw PCM capture and playback through the ALSA command-line tools."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import shlex
from asyncio.subprocess import DEVNULL, PIPE, Process

from .config import MicConfig

LOGGER = logging.getLogger("hark-assistant.audio")

PROCESS_EXIT_TIMEOUT = 2.0

# aplay -f names for packed little-endian PCM by sample width in bytes
ALSA_SAMPLE_FORMATS = {1: "U8", 2: "S16_LE", 3: "S24_3LE", 4: "S32_LE"}


class _PcmProcess:
    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._proc: Process | None = None
        self._logger = logger or LOGGER

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def _reap(self, *, terminate: bool) -> None:
        proc, self._proc = self._proc, None
        if proc is None or proc.returncode is not None:
            return
        if terminate:
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=PROCESS_EXIT_TIMEOUT)
        except asyncio.TimeoutError:
            self._logger.warning("[audio] Process %s did not exit; killing it", proc.pid)
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()


class MicrophoneStream(_PcmProcess):
    """Fixed-size PCM chunks from the configured capture command (``arecord`` by default)."""

    def __init__(self, mic: MicConfig, logger: logging.Logger | None = None) -> None:
        super().__init__(logger)
        self.mic = mic

    async def start(self) -> None:
        if self._proc is not None:
            return
        self._logger.debug("[audio] Opening microphone: %s", shlex.join(self.mic.command))
        self._proc = await asyncio.create_subprocess_exec(*self.mic.command, stdout=PIPE, stderr=DEVNULL)

    async def read_chunk(self) -> bytes:
        proc = self._proc
        if proc is None or proc.stdout is None:
            raise RuntimeError("Microphone is not open")
        try:
            return await proc.stdout.readexactly(self.mic.bytes_per_chunk)
        except asyncio.IncompleteReadError as exc:
            raise RuntimeError(
                f"Microphone closed after {len(exc.partial)} of {self.mic.bytes_per_chunk} bytes"
            ) from exc

    async def stop(self) -> None:
        if self._proc is None:
            return
        self._logger.debug("[audio] Closing microphone")
        await self._reap(terminate=True)


class PcmPlayer(_PcmProcess):
    """Pipe synthesized speech into ``aplay``; one process per utterance."""

    def __init__(self, binary: str = "aplay", logger: logging.Logger | None = None) -> None:
        super().__init__(logger)
        self.binary = binary

    def command_for(self, rate: int, width: int, channels: int) -> list[str]:
        sample_format = ALSA_SAMPLE_FORMATS.get(width)
        if sample_format is None:
            raise ValueError(f"Unsupported sample width: {width}")
        return [self.binary, "-q", "-t", "raw", "-f", sample_format, "-c", str(channels), "-r", str(rate), "-"]

    async def start(self, rate: int, width: int, channels: int) -> None:
        await self.stop()
        argv = self.command_for(rate, width, channels)
        self._logger.debug("[audio] Starting playback: %s", shlex.join(argv))
        self._proc = await asyncio.create_subprocess_exec(*argv, stdin=PIPE, stdout=DEVNULL, stderr=DEVNULL)

    async def write(self, chunk: bytes) -> None:
        proc = self._proc
        if proc is None or proc.stdin is None:
            raise RuntimeError("Player is not running")
        try:
            proc.stdin.write(chunk)
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            await self.stop()
            raise RuntimeError("Player exited during playback") from exc

    async def stop(self) -> None:
        proc = self._proc
        if proc is None:
            return
        if proc.stdin is not None and not proc.stdin.is_closing():
            proc.stdin.close()
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                await proc.stdin.wait_closed()
        # let aplay drain what it already has instead of cutting speech short
        await self._reap(terminate=False)
