"""Gemini generateContent gateway: history serialization, transport and reply parsing."""

from __future__ import annotations

import base64
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from .config import GeminiConfig
from .messages import AttachedImage, FunctionCallPayload, Message, Role, ToolResultPayload
from .tools import ToolRegistry

LOGGER = logging.getLogger("hark-assistant.gateway")


class ErrorKind(str, Enum):
    CREDENTIALS = "credentials"
    TRANSPORT = "transport"
    PROTOCOL = "protocol"


@dataclass(frozen=True)
class TextReply:
    text: str


@dataclass(frozen=True)
class FunctionCall:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ModelError:
    message: str
    retryable: bool = False
    kind: ErrorKind = ErrorKind.PROTOCOL


ModelResponse = TextReply | FunctionCall | ModelError


class GatewayError(RuntimeError):
    """Base failure raised while talking to the model; converted to ModelError."""

    kind = ErrorKind.PROTOCOL
    retryable = False

    def to_response(self) -> ModelError:
        return ModelError(message=str(self), retryable=self.retryable, kind=self.kind)


class CredentialError(GatewayError):
    kind = ErrorKind.CREDENTIALS


class TransportError(GatewayError):
    kind = ErrorKind.TRANSPORT
    retryable = True


class ProtocolError(GatewayError):
    kind = ErrorKind.PROTOCOL

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


def serialize_message(message: Message) -> dict[str, Any]:
    """Map one turn onto the role/parts shape generateContent expects."""
    content = message.content
    if isinstance(content, FunctionCallPayload):
        return {
            "role": Role.MODEL.value,
            "parts": [{"functionCall": {"name": content.name, "args": dict(content.arguments)}}],
        }
    if isinstance(content, ToolResultPayload):
        return {
            "role": Role.TOOL_RESULT.value,
            "parts": [
                {
                    "functionResponse": {
                        "name": content.name,
                        "response": {"result": content.result},
                    }
                }
            ],
        }
    return {"role": message.role.value, "parts": [{"text": content}]}


def serialize_history(history: Iterable[Message]) -> list[dict[str, Any]]:
    return [serialize_message(message) for message in history]


def _image_part(image: AttachedImage) -> dict[str, Any]:
    return {
        "inlineData": {
            "mimeType": image.mime_type,
            "data": base64.b64encode(image.data).decode("ascii"),
        }
    }


def parse_generate_response(payload: Any, *, tools_enabled: bool) -> TextReply | FunctionCall:
    """Turn a generateContent body into a reply variant or raise ProtocolError."""
    if not isinstance(payload, dict):
        raise ProtocolError("Unexpected response body from API.")
    candidates = payload.get("candidates") or []
    if not isinstance(candidates, list) or not candidates:
        prompt_feedback = payload.get("promptFeedback")
        if isinstance(prompt_feedback, dict) and prompt_feedback.get("blockReason"):
            raise ProtocolError(f"Prompt blocked by API: {prompt_feedback['blockReason']}")
        raise ProtocolError("No candidates received from API.")

    candidate = candidates[0] if isinstance(candidates[0], dict) else {}
    content = candidate.get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
        raise ProtocolError("API response is missing content parts.")

    first = parts[0]
    function_call = first.get("functionCall")
    if isinstance(function_call, dict):
        name = function_call.get("name")
        if not isinstance(name, str) or not name:
            raise ProtocolError("API returned a function call without a name.")
        if not tools_enabled:
            raise ProtocolError(f"Model requested function '{name}' while tools were disabled.")
        args = function_call.get("args")
        return FunctionCall(name=name, arguments=dict(args) if isinstance(args, dict) else {})

    text = first.get("text")
    if not isinstance(text, str):
        raise ProtocolError("API response is missing text.")
    return TextReply(text=text.strip())


class GeminiGateway:
    """Send conversation history to Gemini and classify the reply."""

    def __init__(
        self,
        config: GeminiConfig,
        registry: ToolRegistry | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self._logger = logger or LOGGER
        self._client = httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"),
            headers={"Content-Type": "application/json"},
            timeout=config.timeout,
            transport=transport,
        )
        self._closed = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.aclose()

    async def send(self, history: Iterable[Message], tools_enabled: bool) -> ModelResponse:
        messages = list(history)
        if not messages:
            return ModelError("history is empty", retryable=False, kind=ErrorKind.PROTOCOL)
        offer_tools = tools_enabled and self.registry is not None
        payload = self._build_payload(serialize_history(messages), tools_enabled=offer_tools)
        return await self._generate(payload, tools_enabled=offer_tools)

    async def send_with_image(self, prompt: str, image: AttachedImage) -> ModelResponse:
        contents = [
            {
                "role": Role.USER.value,
                "parts": [{"text": prompt}, _image_part(image)],
            }
        ]
        payload = self._build_payload(contents, tools_enabled=False)
        return await self._generate(payload, tools_enabled=False)

    def _build_payload(self, contents: list[dict[str, Any]], *, tools_enabled: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {"contents": contents}
        if tools_enabled and self.registry is not None:
            tools = self.registry.function_declarations_payload()
            if tools:
                payload["tools"] = tools
        if self.config.system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": self.config.system_prompt}]}
        if self.config.temperature is not None:
            payload["generationConfig"] = {"temperature": self.config.temperature}
        return payload

    async def _generate(self, payload: dict[str, Any], *, tools_enabled: bool) -> ModelResponse:
        try:
            body = await self._call_api(payload)
            return parse_generate_response(body, tools_enabled=tools_enabled)
        except GatewayError as exc:
            self._logger.warning("[gateway] Request failed (%s): %s", exc.kind.value, exc)
            return exc.to_response()

    async def _call_api(self, payload: dict[str, Any]) -> Any:
        if not self.config.has_credentials:
            raise CredentialError("credentials missing")
        model = (self.config.model or "").strip()
        if not model:
            raise CredentialError("model name missing")

        if self._logger.isEnabledFor(logging.DEBUG):
            self._logger.debug("[gateway] Request body: %s", _redact_inline_data(payload))
        try:
            response = await self._client.post(
                f"/models/{model}:generateContent",
                json=payload,
                headers={"x-goog-api-key": self.config.api_key or ""},
            )
        except httpx.TransportError as exc:
            raise TransportError(f"Network error: {exc}") from exc

        if not response.is_success:
            detail = response.text.strip() or "No error details"
            retryable = response.status_code == 429 or response.status_code >= 500
            raise ProtocolError(f"API Error {response.status_code}: {detail}", retryable=retryable)

        try:
            body = response.json()
        except ValueError as exc:
            # JSONDecodeError and UnicodeDecodeError are both ValueErrors
            raise ProtocolError("API returned malformed JSON.") from exc
        self._logger.debug("[gateway] Response body: %s", body)
        return body


def _redact_inline_data(payload: dict[str, Any]) -> str:
    contents = []
    for content in payload.get("contents", []):
        parts = []
        for part in content.get("parts", []):
            if "inlineData" in part:
                parts.append({"inlineData": {"mimeType": part["inlineData"].get("mimeType"), "data": "<elided>"}})
            else:
                parts.append(part)
        contents.append({**content, "parts": parts})
    return json.dumps({**payload, "contents": contents})
