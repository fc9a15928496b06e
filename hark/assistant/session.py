"""Session hosts that drive an OrchestrationEngine from chat or voice input."""

from __future__ import annotations

import asyncio
import io
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from PIL import Image, ImageOps, UnidentifiedImageError

from .messages import AttachedImage
from .orchestrator import EngineState, OrchestrationEngine, TurnOutcome
from .wake_detector import compute_rms

if TYPE_CHECKING:
    from .audio import MicrophoneStream
    from .config import AssistantConfig
    from .mqtt import AssistantMqtt
    from .wake_detector import WakeDetector
    from .wyoming import WyomingSpeech

LOGGER = logging.getLogger("hark-assistant.session")

NO_SPEECH_RESPONSE = "Sorry, I didn't catch that."
JPEG_QUALITY = 80

EngineFactory = Callable[[], OrchestrationEngine]
SpeakCallback = Callable[[str], Awaitable[None]]
ResponseCallback = Callable[[TurnOutcome], None]


def prepare_image(data: bytes, *, quality: int = JPEG_QUALITY) -> AttachedImage:
    """Re-encode an arbitrary input image as an upright RGB JPEG."""
    try:
        with Image.open(io.BytesIO(data)) as source:
            image = ImageOps.exif_transpose(source)
            if image.mode != "RGB":
                image = image.convert("RGB")
            buffer = io.BytesIO()
            image.save(buffer, format="JPEG", quality=quality)
    except UnidentifiedImageError as exc:
        raise ValueError("Unsupported image data") from exc
    return AttachedImage(buffer.getvalue(), "image/jpeg")


@dataclass
class AssistRunTracker:
    pipeline: str
    trigger: str
    start: float = field(default_factory=time.monotonic)
    stage_start: float = field(default_factory=time.monotonic)
    current_stage: str | None = None
    stage_durations: dict[str, int] = field(default_factory=dict)

    def begin_stage(self, stage: str) -> None:
        now = time.monotonic()
        if self.current_stage:
            self.stage_durations[self.current_stage] = int((now - self.stage_start) * 1000)
        self.current_stage = stage
        self.stage_start = now

    def finalize(self, status: str) -> dict[str, object]:
        now = time.monotonic()
        if self.current_stage:
            self.stage_durations[self.current_stage] = int((now - self.stage_start) * 1000)
        return {
            "pipeline": self.pipeline,
            "trigger": self.trigger,
            "status": status,
            "total_ms": int((now - self.start) * 1000),
            "stages": self.stage_durations,
        }


class SessionHost:
    """Run engine turns in the background and deliver each result exactly once.

    Only one turn runs at a time; submissions made while a turn is in flight are
    dropped. Closing the host does not cancel the in-flight request, it only
    discards whatever that request eventually produces.
    """

    pipeline = "chat"

    def __init__(
        self,
        engine_factory: EngineFactory,
        *,
        speak: SpeakCallback | None = None,
        on_response: ResponseCallback | None = None,
        publisher: AssistantMqtt | None = None,
        topic_base: str | None = None,
        log_transcripts: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        self._engine_factory = engine_factory
        self._speak = speak
        self.on_response = on_response
        self.publisher = publisher
        self.log_transcripts = log_transcripts
        self.logger = logger or LOGGER
        self._task: asyncio.Task[TurnOutcome | None] | None = None
        self._closed = False
        self._tracker: AssistRunTracker | None = None

        base_topic = (topic_base or "").rstrip("/")
        self._topics_enabled = bool(base_topic)
        self._stage_topic = f"{base_topic}/assistant/stage"
        self._response_topic = f"{base_topic}/assistant/response"
        self._metrics_topic = f"{base_topic}/assistant/metrics"
        self._in_progress_topic = f"{base_topic}/assistant/in_progress"
        self._engine_state_topic = f"{base_topic}/assistant/engine_state"

        self.engine = self._create_engine()

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def closed(self) -> bool:
        return self._closed

    def new_conversation(self) -> None:
        """Replace the engine, starting over with an empty history."""
        if self.busy:
            raise RuntimeError("Cannot start a new conversation while a turn is running")
        self.engine = self._create_engine()

    def submit_text(self, text: str) -> asyncio.Task[TurnOutcome | None] | None:
        return self._submit(lambda engine: engine.process_user_input(text), text)

    def submit_image(self, prompt: str, image: AttachedImage) -> asyncio.Task[TurnOutcome | None] | None:
        return self._submit(lambda engine: engine.process_image_input(prompt, image), f"{prompt} (with image)")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.busy:
            self.logger.debug("[session] Closed with a turn in flight; its result will be discarded")

    async def wait_idle(self) -> None:
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait({task})

    def _create_engine(self) -> OrchestrationEngine:
        engine = self._engine_factory()
        engine.on_state_change = self._on_engine_state
        return engine

    def _submit(
        self,
        run: Callable[[OrchestrationEngine], Awaitable[TurnOutcome]],
        label: str,
    ) -> asyncio.Task[TurnOutcome | None] | None:
        if self._closed:
            self.logger.debug("[session] Ignoring input after close")
            return None
        if self.busy or self.engine.busy:
            self.logger.info("[session] Turn already in progress; ignoring new input")
            return None
        if self.log_transcripts:
            self.logger.info("[session] User: %s", label)
        self._record_user_input(label)
        self._task = asyncio.create_task(self._run_turn(self.engine, run, label))
        return self._task

    async def _run_turn(
        self,
        engine: OrchestrationEngine,
        run: Callable[[OrchestrationEngine], Awaitable[TurnOutcome]],
        label: str,
    ) -> TurnOutcome | None:
        tracker = self._tracker or self._start_tracker(label)
        tracker.begin_stage("thinking")
        self._set_stage("thinking")
        outcome = await run(engine)
        if self._closed:
            self.logger.debug("[session] Discarding result for '%s' after close", label)
            self._finalize_run("discarded")
            return None
        await self._deliver(outcome, tracker)
        self._finalize_run("error" if outcome.is_error else "success")
        return outcome

    async def _deliver(self, outcome: TurnOutcome, tracker: AssistRunTracker) -> None:
        if self.log_transcripts:
            self.logger.info("[session] Assistant: %s", outcome.text)
        self._publish(
            self._response_topic,
            json.dumps(
                {
                    "text": outcome.text,
                    "state": outcome.state.value,
                    "tools": outcome.tool_calls,
                    "pipeline": tracker.pipeline,
                }
            ),
        )
        self._record_response(outcome)
        if self.on_response:
            try:
                self.on_response(outcome)
            except Exception:
                self.logger.exception("[session] Response callback failed")
        if self._speak:
            tracker.begin_stage("speaking")
            self._set_stage("speaking")
            await self._speak_safely(outcome.text)

    async def _speak_safely(self, text: str) -> None:
        if not self._speak:
            return
        try:
            await self._speak(text)
        except Exception as exc:
            self.logger.warning("[session] Failed to speak response: %s", exc)

    def _record_user_input(self, label: str) -> None:
        pass

    def _record_response(self, outcome: TurnOutcome) -> None:
        pass

    def _start_tracker(self, trigger: str) -> AssistRunTracker:
        self._tracker = AssistRunTracker(self.pipeline, trigger)
        return self._tracker

    def _finalize_run(self, status: str) -> None:
        tracker = self._tracker
        self._tracker = None
        if not tracker:
            return
        metrics = tracker.finalize(status)
        self.logger.debug("[session] Run finished: %s", metrics)
        self._publish(self._metrics_topic, json.dumps(metrics))
        self._set_stage("idle")

    def _set_stage(self, stage: str) -> None:
        self._publish(self._in_progress_topic, "OFF" if stage == "idle" else "ON", retain=True)
        self._publish(self._stage_topic, stage, retain=True)

    def _on_engine_state(self, state: EngineState) -> None:
        self.logger.debug("[session] Engine state -> %s", state.value)
        self._publish(self._engine_state_topic, state.value, retain=True)

    def _publish(self, topic: str, payload: str, retain: bool = False) -> None:
        if not self.publisher or not self._topics_enabled:
            return
        if not self.publisher.publish(topic, payload, retain=retain):
            self.logger.debug("[session] Telemetry publish to %s skipped", topic)


class ChatSession(SessionHost):
    """Foreground text surface: one engine for the whole session plus a readable transcript."""

    pipeline = "chat"

    def __init__(self, engine_factory: EngineFactory, **kwargs) -> None:
        self.transcript: list[tuple[str, str]] = []
        super().__init__(engine_factory, **kwargs)

    async def ask(self, text: str) -> TurnOutcome | None:
        task = self.submit_text(text)
        if task is None:
            return None
        return await task

    async def ask_with_image(self, prompt: str, image: AttachedImage) -> TurnOutcome | None:
        task = self.submit_image(prompt, image)
        if task is None:
            return None
        return await task

    def _record_user_input(self, label: str) -> None:
        self.transcript.append(("user", label))

    def _record_response(self, outcome: TurnOutcome) -> None:
        self.transcript.append(("assistant", outcome.text))


class VoiceSession(SessionHost):
    """Background voice surface: wake word, phrase capture, STT, engine turn, TTS.

    Every activation starts a fresh conversation. The microphone is released
    while the response is transcribed and spoken, and wake detection stays
    suppressed until playback finishes.
    """

    pipeline = "voice"

    def __init__(
        self,
        engine_factory: EngineFactory,
        *,
        config: AssistantConfig,
        mic: MicrophoneStream,
        wake_detector: WakeDetector,
        speech: WyomingSpeech,
        publisher: AssistantMqtt | None = None,
        on_response: ResponseCallback | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.mic = mic
        self.wake_detector = wake_detector
        self.speech = speech
        super().__init__(
            engine_factory,
            speak=speech.speak,
            on_response=on_response,
            publisher=publisher,
            topic_base=config.mqtt.topic_base,
            log_transcripts=config.log_transcripts,
            logger=logger,
        )

    async def run(self, shutdown: asyncio.Event) -> None:
        self.logger.info("[session] Voice session listening for %s", ", ".join(self.config.wake_models))
        try:
            while not shutdown.is_set() and not self.closed:
                await self.mic.start()
                wake_word = await self.wake_detector.wait_for_wake_word(shutdown)
                if not wake_word:
                    continue
                try:
                    await self.handle_activation(wake_word)
                except Exception:
                    self.logger.exception("[session] Voice activation for %s failed", wake_word)
                    self._finalize_run("error")
        finally:
            await self.mic.stop()

    async def handle_activation(self, wake_word: str) -> TurnOutcome | None:
        if self.busy:
            self.logger.info("[session] Wake word %s ignored; a turn is still running", wake_word)
            return None
        self.logger.debug("[session] Wake word detected: %s", wake_word)
        self.new_conversation()
        tracker = self._start_tracker(wake_word)
        tracker.begin_stage("listening")
        self._set_stage("listening")
        audio_bytes = await self.record_phrase()
        await self.mic.stop()
        if not audio_bytes:
            self.logger.info("[session] No speech captured for wake word %s", wake_word)
            self._finalize_run("no_audio")
            return None
        tracker.begin_stage("transcribing")
        self._set_stage("thinking")
        transcript = await self.speech.speech_to_text(audio_bytes)
        if not transcript:
            tracker.begin_stage("speaking")
            self._set_stage("speaking")
            await self._speak_safely(NO_SPEECH_RESPONSE)
            self._finalize_run("no_transcript")
            return None
        task = self.submit_text(transcript)
        if task is None:
            self._finalize_run("dropped")
            return None
        return await task

    async def record_phrase(self) -> bytes | None:
        """Record until trailing silence or the phrase time limit."""
        chunk_ms = self.config.mic.chunk_ms
        phrase = self.config.phrase
        min_chunks = int(max(1, (phrase.min_seconds * 1000) / chunk_ms))
        max_chunks = int(max(1, (phrase.max_seconds * 1000) / chunk_ms))
        silence_chunks = int(max(1, phrase.silence_ms / chunk_ms))
        buffer = bytearray()
        silence_run = 0
        chunks = 0
        while chunks < max_chunks:
            chunk = await self.mic.read_chunk()
            buffer.extend(chunk)
            rms = compute_rms(chunk, self.config.mic.width)
            if rms < phrase.rms_floor and chunks >= min_chunks:
                silence_run += 1
                if silence_run >= silence_chunks:
                    break
            else:
                silence_run = 0
            chunks += 1
        return bytes(buffer) if buffer else None
