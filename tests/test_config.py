"""Tests for hark.assistant.config — environment parsing."""

from __future__ import annotations

from hark.assistant.config import (
    DEFAULT_GEMINI_BASE_URL,
    DEFAULT_GEMINI_MODEL,
    DEFAULT_MAX_TOOL_DEPTH,
    DEFAULT_WAKE_MODEL,
    AssistantConfig,
    GeminiConfig,
    MicConfig,
    _normalize_choice,
)

_BASE_ENV: dict[str, str] = {"HARK_HOSTNAME": "kitchen-display"}


def _from_env(overrides: dict[str, str] | None = None) -> AssistantConfig:
    env = dict(_BASE_ENV)
    if overrides:
        env.update(overrides)
    return AssistantConfig.from_env(env)


class TestDefaults:
    def test_identity(self):
        config = _from_env()
        assert config.hostname == "kitchen-display"
        assert config.mqtt.topic_base == "hark/kitchen-display"

    def test_gemini_defaults(self):
        gemini = _from_env().gemini
        assert gemini.api_key is None
        assert not gemini.has_credentials
        assert gemini.model == DEFAULT_GEMINI_MODEL
        assert gemini.base_url == DEFAULT_GEMINI_BASE_URL
        assert gemini.timeout == 45
        assert gemini.system_prompt is None
        assert gemini.temperature is None

    def test_engine_defaults(self):
        engine = _from_env().engine
        assert engine.max_tool_depth == DEFAULT_MAX_TOOL_DEPTH
        assert engine.tool_keywords is None

    def test_audio_defaults(self):
        config = _from_env()
        assert config.wake_models == [DEFAULT_WAKE_MODEL]
        assert config.wake_sensitivity == "normal"
        assert config.mic.command[0] == "arecord"
        assert config.wake_endpoint.port == 10400
        assert config.stt_endpoint.port == 10300
        assert config.tts_endpoint.port == 10200
        assert config.log_transcripts is True

    def test_mqtt_disabled_without_host(self):
        assert _from_env().mqtt.host is None


class TestOverrides:
    def test_gemini(self):
        gemini = _from_env(
            {
                "GEMINI_API_KEY": " abc123 ",
                "GEMINI_MODEL": "gemini-2.0-flash",
                "GEMINI_BASE_URL": "https://proxy.local/v1beta/",
                "GEMINI_TIMEOUT_SECONDS": "10",
                "HARK_ASSISTANT_SYSTEM_PROMPT": "Keep answers short.",
                "HARK_ASSISTANT_TEMPERATURE": "0.7",
            }
        ).gemini
        assert gemini.api_key == "abc123"
        assert gemini.has_credentials
        assert gemini.model == "gemini-2.0-flash"
        assert gemini.base_url == "https://proxy.local/v1beta"
        assert gemini.timeout == 10
        assert gemini.system_prompt == "Keep answers short."
        assert gemini.temperature == 0.7

    def test_system_prompt_file(self, tmp_path):
        prompt = tmp_path / "prompt.txt"
        prompt.write_text("  You are Hark.  \n")
        config = _from_env({"HARK_ASSISTANT_SYSTEM_PROMPT_FILE": str(prompt)})
        assert config.gemini.system_prompt == "You are Hark."

    def test_engine(self):
        engine = _from_env(
            {"HARK_ASSISTANT_MAX_TOOL_DEPTH": "2", "HARK_ASSISTANT_TOOL_KEYWORDS": "Remind, note"}
        ).engine
        assert engine.max_tool_depth == 2
        assert engine.tool_keywords == ("remind", "note")

    def test_tool_depth_has_floor(self):
        assert _from_env({"HARK_ASSISTANT_MAX_TOOL_DEPTH": "0"}).engine.max_tool_depth == 1

    def test_invalid_numbers_fall_back(self):
        config = _from_env({"GEMINI_TIMEOUT_SECONDS": "soon", "MQTT_PORT": "x"})
        assert config.gemini.timeout == 45
        assert config.mqtt.port == 1883

    def test_mqtt(self):
        mqtt = _from_env(
            {
                "MQTT_HOST": "broker.local",
                "MQTT_PORT": "8883",
                "MQTT_USER": "hark",
                "MQTT_PASS": "secret",
                "MQTT_TLS_ENABLED": "true",
                "HARK_TOPIC_BASE": "home/kitchen/",
            }
        ).mqtt
        assert mqtt.host == "broker.local"
        assert mqtt.port == 8883
        assert mqtt.username == "hark"
        assert mqtt.password == "secret"
        assert mqtt.tls_enabled
        assert mqtt.topic_base == "home/kitchen"

    def test_device(self, tmp_path):
        contacts = tmp_path / "contacts.json"
        contacts.write_text("{}")
        device = _from_env(
            {"HARK_ASSISTANT_CONTACTS_FILE": str(contacts), "HARK_ASSISTANT_APPS": "Maps, Spotify,,"}
        ).device
        assert device.contacts_file == contacts
        assert device.apps == ("Maps", "Spotify")

    def test_missing_contacts_file_is_ignored(self, tmp_path):
        device = _from_env({"HARK_ASSISTANT_CONTACTS_FILE": str(tmp_path / "missing.json")}).device
        assert device.contacts_file is None

    def test_wake(self):
        config = _from_env(
            {
                "HARK_ASSISTANT_WAKE_WORDS": "hey_jarvis, alexa",
                "HARK_ASSISTANT_WAKE_SENSITIVITY": "HIGH",
                "HARK_ASSISTANT_SELF_AUDIO_TRIGGER_LEVEL": "1",
            }
        )
        assert config.wake_models == ["hey_jarvis", "alexa"]
        assert config.wake_sensitivity == "high"
        assert config.self_audio_trigger_level == 2

    def test_log_transcripts(self):
        assert _from_env({"HARK_ASSISTANT_LOG_TRANSCRIPTS": "off"}).log_transcripts is False


def test_mic_bytes_per_chunk():
    mic = MicConfig(command=["arecord"], rate=16000, width=2, channels=1, chunk_ms=30)
    assert mic.bytes_per_chunk == 960


def test_gemini_blank_key_has_no_credentials():
    config = GeminiConfig(api_key="   ", model="m", base_url="u", timeout=1)
    assert not config.has_credentials


def test_normalize_choice():
    assert _normalize_choice(None, {"a"}, "a") == "a"
    assert _normalize_choice(" B ", {"a", "b"}, "a") == "b"
    assert _normalize_choice("c", {"a", "b"}, "a") == "a"
