"""Shared test fixtures and configuration for the Hark test suite.

This module provides reusable fixtures for common test scenarios including:
- Gemini configuration and a scripted model gateway
- MQTT client mocking
- A recording command executor for tool dispatch
- Async test utilities
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any
from unittest.mock import Mock

import paho.mqtt.client as mqtt
import pytest
from hark.assistant.config import GeminiConfig, MqttConfig
from hark.assistant.llm import ModelResponse
from hark.assistant.messages import AttachedImage, Message
from hark.assistant.tools import ToolRegistry

# ============================================================================
# Pytest Configuration
# ============================================================================


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


# ============================================================================
# Logging Fixtures
# ============================================================================


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing."""
    return Mock(spec=logging.Logger)


# ============================================================================
# Gemini Fixtures
# ============================================================================


@pytest.fixture
def gemini_config():
    """Gemini configuration with a fake API key."""
    return GeminiConfig(
        api_key="test-key",
        model="gemini-1.5-flash",
        base_url="https://gemini.test/v1beta",
        timeout=5,
    )


@pytest.fixture
def gemini_config_no_key():
    """Gemini configuration without credentials."""
    return GeminiConfig(
        api_key=None,
        model="gemini-1.5-flash",
        base_url="https://gemini.test/v1beta",
        timeout=5,
    )


class ScriptedGateway:
    """Model gateway double that replays queued responses and records each request."""

    def __init__(self, responses: Iterable[ModelResponse] = ()) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[list[Message], bool]] = []
        self.image_calls: list[tuple[str, AttachedImage]] = []

    def queue(self, *responses: ModelResponse) -> None:
        self.responses.extend(responses)

    async def send(self, history: Iterable[Message], tools_enabled: bool) -> ModelResponse:
        self.calls.append((list(history), tools_enabled))
        return self._next()

    async def send_with_image(self, prompt: str, image: AttachedImage) -> ModelResponse:
        self.image_calls.append((prompt, image))
        return self._next()

    def _next(self) -> ModelResponse:
        if not self.responses:
            raise AssertionError("ScriptedGateway ran out of responses")
        return self.responses.pop(0)


@pytest.fixture
def scripted_gateway():
    """Factory for a gateway that returns the given responses in order.

    Usage:
        gateway = scripted_gateway(TextReply("hi"))
    """

    def _create(*responses: ModelResponse) -> ScriptedGateway:
        return ScriptedGateway(responses)

    return _create


# ============================================================================
# Tool Fixtures
# ============================================================================


class RecordingExecutor:
    def __init__(self, results: dict[str, str] | None = None) -> None:
        self.results = results or {}
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def execute(self, tool_name: str, arguments: dict[str, Any]) -> str:
        self.calls.append((tool_name, dict(arguments)))
        return self.results.get(tool_name, f"{tool_name} done")


@pytest.fixture
def recording_executor():
    """Executor that records each call and answers '<tool> done'."""
    return RecordingExecutor()


@pytest.fixture
def tool_registry(recording_executor):
    """Registry with the default declarations backed by the recording executor."""
    return ToolRegistry(recording_executor)


# ============================================================================
# MQTT Fixtures
# ============================================================================


@pytest.fixture
def mqtt_config():
    """Create a basic MQTT configuration for testing."""
    return MqttConfig(
        host="localhost",
        port=1883,
        topic_base="hark/test-device",
        username=None,
        password=None,
        tls_enabled=False,
        ca_cert=None,
        cert=None,
        key=None,
    )


@pytest.fixture
def mock_mqtt_client():
    """Create a mock paho MQTT client."""
    client = Mock(spec=mqtt.Client)
    client.connect = Mock()
    client.disconnect = Mock()

    message_info = Mock(spec=mqtt.MQTTMessageInfo)
    message_info.rc = mqtt.MQTT_ERR_SUCCESS
    message_info.mid = 1
    client.publish = Mock(return_value=message_info)

    client.loop_start = Mock()
    client.loop_stop = Mock()
    client.is_connected = Mock(return_value=True)
    return client


@pytest.fixture
def mock_assistant_mqtt():
    """AssistantMqtt stand-in that accepts every publish."""
    publisher = Mock()
    publisher.is_connected = Mock(return_value=True)
    publisher.publish = Mock(return_value=True)
    publisher.publish_json = Mock(return_value=True)
    return publisher
