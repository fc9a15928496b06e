"""
Wake word detection against a Wyoming openWakeWord endpoint

Microphone chunks are fanned out to one openWakeWord stream per configured
model. While the assistant is speaking the detector holds off entirely, and
any change to the detection context (sensitivity, self-audio) reopens the
streams so the new trigger level takes effect immediately.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import sys
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from wyoming.audio import AudioChunk, AudioStart, AudioStop
from wyoming.client import AsyncTcpClient
from wyoming.wake import Detect, Detection, NotDetected

if TYPE_CHECKING:
    from .audio import MicrophoneStream
    from .config import AssistantConfig, WyomingEndpoint

LOGGER = logging.getLogger("hark-assistant.wake")

SENSITIVITY_TRIGGER_LEVELS = {"low": 5, "high": 2}
SELF_AUDIO_POLL_SECONDS = 0.5
RETRY_DELAY_SECONDS = 1.0


class WakeContextChanged(Exception):
    """Raised inside a detection session when its trigger context is stale."""


def compute_rms(chunk: bytes, sample_width: int) -> int:
    """Root mean square of little-endian signed PCM; a trailing partial frame is ignored."""
    frames = len(chunk) // sample_width if sample_width > 0 else 0
    if frames == 0:
        return 0
    data = chunk[: frames * sample_width]
    if sample_width == 2 and sys.byteorder == "little":
        samples = memoryview(data).cast("h")
        total = math.fsum(value * value for value in samples)
    else:
        total = math.fsum(
            int.from_bytes(data[i : i + sample_width], "little", signed=True) ** 2
            for i in range(0, len(data), sample_width)
        )
    return int(math.sqrt(total / frames))


class _ModelStream:
    """One openWakeWord connection listening for a single model."""

    def __init__(self, endpoint: WyomingEndpoint, model: str, logger: logging.Logger) -> None:
        self.model = model
        self.client = AsyncTcpClient(endpoint.host, endpoint.port)
        self._logger = logger
        self._listener: asyncio.Task[str | None] | None = None
        self._polled = False
        self._connected = False

    @property
    def listening(self) -> bool:
        return self._listener is not None and not self._listener.done()

    async def open(self, context: dict[str, int] | None, start: AudioStart) -> None:
        await self.client.connect()
        self._connected = True
        await self.client.write_event(Detect(names=[self.model], context=context).event())
        await self.client.write_event(start.event())
        self._listener = asyncio.create_task(self._listen())

    def poll(self) -> str | None:
        """The detected name once the listener has finished, reported a single time."""
        task = self._listener
        if task is None or not task.done() or self._polled:
            return None
        self._polled = True
        if task.cancelled():
            return None
        if (exc := task.exception()) is not None:
            self._logger.warning("[wake] Stream for %s failed: %s", self.model, exc)
            return None
        return task.result()

    async def close(self, stop: AudioStop) -> None:
        if self._listener is not None:
            self._listener.cancel()
            await asyncio.gather(self._listener, return_exceptions=True)
        if not self._connected:
            return
        with contextlib.suppress(OSError):
            await self.client.write_event(stop.event())
        with contextlib.suppress(OSError):
            await self.client.disconnect()

    async def _listen(self) -> str | None:
        while (event := await self.client.read_event()) is not None:
            if Detection.is_type(event.type):
                return Detection.from_event(event).name or self.model
            if NotDetected.is_type(event.type):
                self._logger.debug("[wake] openWakeWord reported no detection for %s", self.model)
                return None
        return None


class WakeDetector:
    def __init__(
        self,
        config: AssistantConfig,
        mic: MicrophoneStream,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.mic = mic
        self._logger = logger or LOGGER
        self._speaking = 0
        self._wake_context_version = 0

    def self_audio_is_active(self) -> bool:
        return self._speaking > 0

    @contextlib.asynccontextmanager
    async def local_audio_block(self) -> AsyncIterator[None]:
        """Hold while the assistant's own audio is playing."""
        self._speaking += 1
        self._wake_context_version += 1
        try:
            yield
        finally:
            self._speaking -= 1
            self._wake_context_version += 1

    def context_for_detect(self) -> dict[str, int] | None:
        levels = [SENSITIVITY_TRIGGER_LEVELS.get(self.config.wake_sensitivity)]
        if self.self_audio_is_active():
            levels.append(self.config.self_audio_trigger_level)
        chosen = [level for level in levels if level is not None]
        if not chosen:
            return None
        return {"trigger_level": max(chosen)}

    async def wait_for_wake_word(self, shutdown: asyncio.Event) -> str | None:
        """Block until a wake word fires; ``None`` once shutdown is set."""
        while not shutdown.is_set():
            if self.self_audio_is_active():
                await asyncio.sleep(SELF_AUDIO_POLL_SECONDS)
                continue
            try:
                detected = await self.run_wake_detector_session()
            except WakeContextChanged:
                self._logger.debug("[wake] Detection context changed; reopening streams")
                continue
            except OSError as exc:
                self._logger.warning("[wake] openWakeWord unavailable: %s", exc)
                await asyncio.sleep(RETRY_DELAY_SECONDS)
                continue
            if detected:
                self._logger.info("[wake] Detected %s", detected)
                return detected
        return None

    async def run_wake_detector_session(self) -> str | None:
        models = list(self.config.wake_models)
        if not models:
            self._logger.warning("[wake] No wake models configured")
            await asyncio.sleep(RETRY_DELAY_SECONDS)
            return None

        version = self._wake_context_version
        mic = self.config.mic
        # openWakeWord only honours the first name in a Detect, so each model gets its own stream
        streams = [_ModelStream(self.config.wake_endpoint, model, self._logger) for model in models]
        timestamp = 0
        try:
            context = self.context_for_detect()
            start = AudioStart(rate=mic.rate, width=mic.width, channels=mic.channels, timestamp=0)
            for stream in streams:
                await stream.open(context, start)
            while True:
                for stream in streams:
                    if detected := stream.poll():
                        return detected
                live = [stream for stream in streams if stream.listening]
                if not live:
                    return None
                if version != self._wake_context_version:
                    raise WakeContextChanged
                audio = await self.mic.read_chunk()
                chunk = AudioChunk(
                    rate=mic.rate, width=mic.width, channels=mic.channels, audio=audio, timestamp=timestamp
                ).event()
                for stream in live:
                    await stream.client.write_event(chunk)
                timestamp += mic.chunk_ms
        finally:
            stop = AudioStop(timestamp=timestamp)
            for stream in streams:
                await stream.close(stop)
