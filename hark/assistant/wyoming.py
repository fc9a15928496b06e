"""
Speech collaborators for the voice session, backed by Wyoming services

``WyomingSpeech`` is the whole surface the voice host sees:

- ``speech_to_text(audio)``: one recorded phrase in, one transcript out
  (Whisper over Wyoming). Unreachable services and empty results both come
  back as ``None`` so the caller can apologise instead of failing.
- ``speak(text)``: synthesize with Piper and stream the PCM into the player as
  it arrives. An optional audio guard is held for the whole synthesis so wake
  detection ignores the assistant's own voice.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from typing import TYPE_CHECKING, Any, TypeVar

from wyoming.asr import Transcribe, Transcript
from wyoming.audio import AudioChunk, AudioStart, AudioStop
from wyoming.client import AsyncTcpClient
from wyoming.event import Eventable
from wyoming.tts import Synthesize, SynthesizeVoice

from .config import MicConfig, WyomingEndpoint

if TYPE_CHECKING:
    from .audio import PcmPlayer
    from .config import AssistantConfig

LOGGER = logging.getLogger("hark-assistant.speech")

AudioGuard = Callable[[], AbstractAsyncContextManager[Any]]
T = TypeVar("T")


class WyomingSpeech:
    def __init__(
        self,
        *,
        stt: WyomingEndpoint,
        tts: WyomingEndpoint,
        mic: MicConfig,
        player: PcmPlayer,
        language: str | None = None,
        voice: str | None = None,
        timeout: float | None = None,
        audio_guard: AudioGuard | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.stt = stt
        self.tts = tts
        self.mic = mic
        self.player = player
        self.language = language
        self.voice = voice
        self.timeout = timeout
        self._audio_guard = audio_guard
        self._logger = logger or LOGGER

    @classmethod
    def from_config(
        cls,
        config: AssistantConfig,
        player: PcmPlayer,
        *,
        audio_guard: AudioGuard | None = None,
        logger: logging.Logger | None = None,
    ) -> WyomingSpeech:
        return cls(
            stt=config.stt_endpoint,
            tts=config.tts_endpoint,
            mic=config.mic,
            player=player,
            language=config.language,
            voice=config.tts_voice,
            audio_guard=audio_guard,
            logger=logger,
        )

    async def speech_to_text(self, audio: bytes) -> str | None:
        """Transcribe one phrase; ``None`` when there is nothing usable to say back to."""
        if not audio:
            return None
        try:
            async with self._connection(self.stt) as client:
                await self._write(client, Transcribe(name=self.stt.model, language=self.language))
                await self._write(client, self._audio_start())
                for chunk in self._audio_chunks(audio):
                    await self._write(client, chunk)
                await self._write(client, AudioStop())
                text = await self._read_transcript(client)
        except (OSError, asyncio.TimeoutError) as exc:
            self._logger.warning("[speech] Speech-to-text failed: %s", exc)
            return None
        return (text or "").strip() or None

    async def speak(self, text: str) -> None:
        if not text.strip():
            return
        guard = self._audio_guard() if self._audio_guard else contextlib.nullcontext()
        async with guard:
            async with self._connection(self.tts) as client:
                voice = SynthesizeVoice(name=self.voice) if self.voice else None
                await self._write(client, Synthesize(text=text, voice=voice))
                await self._play(client)

    async def _play(self, client: AsyncTcpClient) -> None:
        playing = False
        try:
            async for event in self._events(client):
                if AudioStop.is_type(event.type):
                    break
                if AudioStart.is_type(event.type):
                    start = AudioStart.from_event(event)
                    await self.player.start(start.rate, start.width, start.channels)
                    playing = True
                elif playing and AudioChunk.is_type(event.type):
                    await self.player.write(AudioChunk.from_event(event).audio)
        finally:
            if playing:
                await self.player.stop()

    async def _read_transcript(self, client: AsyncTcpClient) -> str | None:
        async for event in self._events(client):
            if Transcript.is_type(event.type):
                return Transcript.from_event(event).text
        self._logger.debug("[speech] STT service closed the connection without a transcript")
        return None

    def _audio_start(self) -> AudioStart:
        return AudioStart(rate=self.mic.rate, width=self.mic.width, channels=self.mic.channels)

    def _audio_chunks(self, audio: bytes) -> list[AudioChunk]:
        step = self.mic.bytes_per_chunk
        return [
            AudioChunk(rate=self.mic.rate, width=self.mic.width, channels=self.mic.channels, audio=audio[i : i + step])
            for i in range(0, len(audio), step)
        ]

    @contextlib.asynccontextmanager
    async def _connection(self, endpoint: WyomingEndpoint) -> AsyncIterator[AsyncTcpClient]:
        client = AsyncTcpClient(endpoint.host, endpoint.port)
        await self._bounded(client.connect())
        try:
            yield client
        finally:
            await client.disconnect()

    async def _events(self, client: AsyncTcpClient) -> AsyncIterator[Any]:
        while (event := await self._bounded(client.read_event())) is not None:
            yield event

    async def _write(self, client: AsyncTcpClient, message: Eventable) -> None:
        await self._bounded(client.write_event(message.event()))

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        if self.timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=self.timeout)
