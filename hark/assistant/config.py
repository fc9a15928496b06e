"""
Configuration for the Hark assistant, read from environment variables

Each section is a frozen dataclass with its own ``from_env`` so it can be
built and tested alone; ``AssistantConfig.from_env`` assembles the whole
tree. Unset or malformed values fall back to the defaults below.
"""

from __future__ import annotations

import os
import shlex
import socket
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from hark.utils import parse_bool, parse_float, parse_int, split_csv, strip_or_none

DEFAULT_WAKE_MODEL = "hey_jarvis"
DEFAULT_GEMINI_MODEL = "gemini-1.5-flash"
DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MAX_TOOL_DEPTH = 5
DEFAULT_MIC_COMMAND = "arecord -q -t raw -f S16_LE -c 1 -r 16000 -"

WakeSensitivity = Literal["low", "normal", "high"]
Env = Mapping[str, str]


@dataclass(frozen=True)
class WyomingEndpoint:
    host: str
    port: int
    model: str | None = None

    @classmethod
    def from_env(cls, source: Env, service: str, default_port: int, *, model_var: str | None = None) -> WyomingEndpoint:
        """``WYOMING_<SERVICE>_HOST`` / ``_PORT``, defaulting to the local host."""
        return cls(
            host=source.get(f"WYOMING_{service}_HOST") or "127.0.0.1",
            port=parse_int(source.get(f"WYOMING_{service}_PORT"), default_port),
            model=strip_or_none(source.get(model_var)) if model_var else None,
        )


@dataclass(frozen=True)
class MicConfig:
    command: list[str]
    rate: int
    width: int
    channels: int
    chunk_ms: int

    @property
    def bytes_per_chunk(self) -> int:
        frames = self.rate * self.chunk_ms // 1000
        return frames * self.width * self.channels

    @classmethod
    def from_env(cls, source: Env) -> MicConfig:
        return cls(
            command=shlex.split(source.get("HARK_ASSISTANT_MIC_CMD") or DEFAULT_MIC_COMMAND),
            rate=parse_int(source.get("HARK_ASSISTANT_MIC_RATE"), 16000),
            width=parse_int(source.get("HARK_ASSISTANT_MIC_WIDTH"), 2),
            channels=parse_int(source.get("HARK_ASSISTANT_MIC_CHANNELS"), 1),
            chunk_ms=parse_int(source.get("HARK_ASSISTANT_MIC_CHUNK_MS"), 30),
        )


@dataclass(frozen=True)
class PhraseConfig:
    min_seconds: float
    max_seconds: float
    silence_ms: int
    rms_floor: int

    @classmethod
    def from_env(cls, source: Env) -> PhraseConfig:
        return cls(
            min_seconds=parse_float(source.get("HARK_ASSISTANT_MIN_PHRASE_SECONDS"), 1.5),
            max_seconds=parse_float(source.get("HARK_ASSISTANT_MAX_PHRASE_SECONDS"), 8.0),
            silence_ms=parse_int(source.get("HARK_ASSISTANT_SILENCE_MS"), 1200),
            rms_floor=parse_int(source.get("HARK_ASSISTANT_RMS_THRESHOLD"), 120),
        )


@dataclass(frozen=True)
class GeminiConfig:
    api_key: str | None
    model: str
    base_url: str
    timeout: int
    system_prompt: str | None = None
    temperature: float | None = None

    @property
    def has_credentials(self) -> bool:
        return bool((self.api_key or "").strip())

    @classmethod
    def from_env(cls, source: Env) -> GeminiConfig:
        temperature = strip_or_none(source.get("HARK_ASSISTANT_TEMPERATURE"))
        return cls(
            api_key=strip_or_none(source.get("GEMINI_API_KEY")),
            model=strip_or_none(source.get("GEMINI_MODEL")) or DEFAULT_GEMINI_MODEL,
            base_url=(source.get("GEMINI_BASE_URL") or DEFAULT_GEMINI_BASE_URL).rstrip("/"),
            timeout=parse_int(source.get("GEMINI_TIMEOUT_SECONDS"), 45),
            system_prompt=_system_prompt(source),
            temperature=parse_float(temperature, 0.3) if temperature else None,
        )


@dataclass(frozen=True)
class EngineConfig:
    max_tool_depth: int
    tool_keywords: tuple[str, ...] | None = None

    @classmethod
    def from_env(cls, source: Env) -> EngineConfig:
        keywords = tuple(word.lower() for word in split_csv(source.get("HARK_ASSISTANT_TOOL_KEYWORDS")))
        depth = parse_int(source.get("HARK_ASSISTANT_MAX_TOOL_DEPTH"), DEFAULT_MAX_TOOL_DEPTH)
        return cls(max_tool_depth=max(1, depth), tool_keywords=keywords or None)


@dataclass(frozen=True)
class MqttConfig:
    host: str | None
    port: int
    username: str | None
    password: str | None
    tls_enabled: bool
    cert: str | None
    key: str | None
    ca_cert: str | None
    topic_base: str

    @classmethod
    def from_env(cls, source: Env, hostname: str) -> MqttConfig:
        def _first(*names: str) -> str | None:
            return next((value for name in names if (value := strip_or_none(source.get(name)))), None)

        return cls(
            host=_first("MQTT_HOST"),
            port=parse_int(source.get("MQTT_PORT"), 1883),
            username=_first("MQTT_USER", "MQTT_USERNAME"),
            password=_first("MQTT_PASS", "MQTT_PASSWORD"),
            tls_enabled=parse_bool(source.get("MQTT_TLS_ENABLED"), False),
            cert=_first("MQTT_CERT"),
            key=_first("MQTT_KEY"),
            ca_cert=_first("MQTT_CA_CERT"),
            topic_base=(source.get("HARK_TOPIC_BASE") or f"hark/{hostname}").rstrip("/"),
        )


@dataclass(frozen=True)
class DeviceConfig:
    contacts_file: Path | None
    apps: tuple[str, ...]

    @classmethod
    def from_env(cls, source: Env) -> DeviceConfig:
        contacts = strip_or_none(source.get("HARK_ASSISTANT_CONTACTS_FILE"))
        contacts_file = Path(contacts) if contacts else None
        return cls(
            contacts_file=contacts_file if contacts_file and contacts_file.exists() else None,
            apps=tuple(split_csv(source.get("HARK_ASSISTANT_APPS"))),
        )


@dataclass(frozen=True)
class AssistantConfig:
    hostname: str
    language: str | None
    wake_models: list[str]
    wake_sensitivity: WakeSensitivity
    self_audio_trigger_level: int
    mic: MicConfig
    phrase: PhraseConfig
    wake_endpoint: WyomingEndpoint
    stt_endpoint: WyomingEndpoint
    tts_endpoint: WyomingEndpoint
    tts_voice: str | None
    gemini: GeminiConfig
    engine: EngineConfig
    mqtt: MqttConfig
    device: DeviceConfig
    log_transcripts: bool

    @staticmethod
    def from_env(env: Env | None = None) -> AssistantConfig:
        source = os.environ if env is None else env
        hostname = source.get("HARK_HOSTNAME") or socket.gethostname()
        return AssistantConfig(
            hostname=hostname,
            language=strip_or_none(source.get("HARK_ASSISTANT_LANGUAGE")),
            wake_models=split_csv(source.get("HARK_ASSISTANT_WAKE_WORDS")) or [DEFAULT_WAKE_MODEL],
            wake_sensitivity=_normalize_choice(
                source.get("HARK_ASSISTANT_WAKE_SENSITIVITY"), {"low", "normal", "high"}, "normal"
            ),
            # 2 is the most eager openWakeWord trigger; self-audio may only make it stricter
            self_audio_trigger_level=max(2, parse_int(source.get("HARK_ASSISTANT_SELF_AUDIO_TRIGGER_LEVEL"), 7)),
            mic=MicConfig.from_env(source),
            phrase=PhraseConfig.from_env(source),
            wake_endpoint=WyomingEndpoint.from_env(source, "OPENWAKEWORD", 10400),
            stt_endpoint=WyomingEndpoint.from_env(source, "WHISPER", 10300, model_var="HARK_ASSISTANT_STT_MODEL"),
            tts_endpoint=WyomingEndpoint.from_env(source, "PIPER", 10200),
            tts_voice=strip_or_none(source.get("HARK_ASSISTANT_TTS_VOICE")),
            gemini=GeminiConfig.from_env(source),
            engine=EngineConfig.from_env(source),
            mqtt=MqttConfig.from_env(source, hostname),
            device=DeviceConfig.from_env(source),
            log_transcripts=parse_bool(source.get("HARK_ASSISTANT_LOG_TRANSCRIPTS"), True),
        )


def _system_prompt(source: Env) -> str | None:
    """Inline prompt wins; otherwise read ``HARK_ASSISTANT_SYSTEM_PROMPT_FILE`` if it exists."""
    inline = strip_or_none(source.get("HARK_ASSISTANT_SYSTEM_PROMPT"))
    if inline:
        return inline
    path = strip_or_none(source.get("HARK_ASSISTANT_SYSTEM_PROMPT_FILE"))
    if path and Path(path).is_file():
        return strip_or_none(Path(path).read_text(encoding="utf-8"))
    return None


def _normalize_choice(value: str | None, allowed: set[str], default: str) -> str:
    choice = (value or "").strip().lower()
    return choice if choice in allowed else default
