"""
Conversation orchestration: the request / dispatch / continuation loop

One OrchestrationEngine owns the ConversationHistory of a session and turns a
user utterance into exactly one terminal message:

- TextReply: recorded in history and surfaced.
- ModelError: surfaced as "Error: ..." without touching history.
- FunctionCall for a registered tool: the call and its result are appended,
  then the full history is sent again with tools enabled. Further calls repeat
  this cycle up to max_tool_depth times.
- FunctionCall for an unknown tool: dropped. The latest user message is sent on
  its own with tools disabled so the phantom call never reaches history.

Every gateway or executor failure is converted into a terminal message; the
engine never raises out of a turn except when a caller starts a second turn
while one is still running.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from .config import DEFAULT_MAX_TOOL_DEPTH
from .llm import FunctionCall, ModelError, ModelResponse, TextReply
from .messages import AttachedImage, ConversationHistory, Message
from .tool_gate import KeywordToolGate, ToolGate
from .tools import ToolRegistry

LOGGER = logging.getLogger("hark-assistant.engine")

BLANK_INPUT_RESPONSE = "I didn't catch that. Could you say it again?"
CONFUSED_RESPONSE = "I got confused. Could you please ask again?"
DEFAULT_IMAGE_PROMPT = "What is in this image?"


class EngineState(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL_REPLY = "awaiting_model_reply"
    DISPATCHING = "dispatching"
    FALLBACK_RETRY = "fallback_retry"
    TEXT_TERMINAL = "text_terminal"
    ERROR_TERMINAL = "error_terminal"


class ModelGateway(Protocol):
    async def send(self, history: Iterable[Message], tools_enabled: bool) -> ModelResponse: ...

    async def send_with_image(self, prompt: str, image: AttachedImage) -> ModelResponse: ...


@dataclass
class TurnOutcome:
    text: str
    state: EngineState
    tool_calls: list[str] = field(default_factory=list)
    gateway_calls: int = 0

    @property
    def is_error(self) -> bool:
        return self.state is EngineState.ERROR_TERMINAL


@dataclass
class _TurnContext:
    tool_calls: list[str] = field(default_factory=list)
    gateway_calls: int = 0
    depth: int = 0


class OrchestrationEngine:
    """Drive one conversation through the model gateway and tool registry."""

    def __init__(
        self,
        gateway: ModelGateway,
        tools: ToolRegistry,
        *,
        gate: ToolGate | None = None,
        max_tool_depth: int = DEFAULT_MAX_TOOL_DEPTH,
        logger: logging.Logger | None = None,
        on_state_change: Callable[[EngineState], None] | None = None,
    ) -> None:
        self.gateway = gateway
        self.tools = tools
        self.gate = gate or KeywordToolGate()
        self.max_tool_depth = max(1, max_tool_depth)
        self.logger = logger or LOGGER
        self.on_state_change = on_state_change
        self._history = ConversationHistory()
        self._state = EngineState.IDLE
        self._busy = False

    @property
    def history(self) -> ConversationHistory:
        return self._history

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._busy

    async def process_user_input(self, text: str) -> TurnOutcome:
        self._begin_turn()
        turn = _TurnContext()
        try:
            cleaned = (text or "").strip()
            if not cleaned:
                self.logger.debug("[engine] Ignoring blank input")
                return self._finish(turn, BLANK_INPUT_RESPONSE, EngineState.TEXT_TERMINAL)
            self._history.append(Message.user(cleaned))
            tools_enabled = self.gate.should_enable_tools(cleaned)
            self.logger.debug("[engine] Tools %s for this turn", "enabled" if tools_enabled else "disabled")
            response = await self._request(self._history, tools_enabled, turn)
            return await self._resolve(response, turn)
        except Exception as exc:
            self.logger.exception("[engine] Turn failed unexpectedly")
            return self._finish(turn, f"Error: {exc}", EngineState.ERROR_TERMINAL)
        finally:
            self._busy = False

    async def process_image_input(self, prompt: str, image: AttachedImage) -> TurnOutcome:
        self._begin_turn()
        turn = _TurnContext()
        try:
            cleaned = (prompt or "").strip() or DEFAULT_IMAGE_PROMPT
            self._history.append(Message.user(cleaned, image=image))
            self._set_state(EngineState.AWAITING_MODEL_REPLY)
            turn.gateway_calls += 1
            response = await self.gateway.send_with_image(cleaned, image)
            if isinstance(response, FunctionCall):
                self.logger.warning("[engine] Ignoring function call '%s' on image request", response.name)
                return self._finish(turn, "Error: unexpected function call for an image request", EngineState.ERROR_TERMINAL)
            return await self._resolve(response, turn)
        except Exception as exc:
            self.logger.exception("[engine] Image turn failed unexpectedly")
            return self._finish(turn, f"Error: {exc}", EngineState.ERROR_TERMINAL)
        finally:
            self._busy = False

    async def _resolve(self, response: ModelResponse, turn: _TurnContext) -> TurnOutcome:
        while True:
            if isinstance(response, TextReply):
                self._history.append(Message.model_text(response.text))
                return self._finish(turn, response.text, EngineState.TEXT_TERMINAL)

            if isinstance(response, ModelError):
                self.logger.info(
                    "[engine] Model error (%s, retryable=%s): %s",
                    response.kind.value,
                    response.retryable,
                    response.message,
                )
                return self._finish(turn, f"Error: {response.message}", EngineState.ERROR_TERMINAL)

            if not isinstance(response, FunctionCall):
                raise TypeError(f"Unsupported model response: {response!r}")

            if response.name not in self.tools:
                self.logger.info("[engine] Model requested unknown tool '%s'; falling back", response.name)
                last_user = self._history.last_user_message()
                if last_user is None:
                    return self._finish(turn, CONFUSED_RESPONSE, EngineState.TEXT_TERMINAL)
                response = await self._request([last_user], False, turn, state=EngineState.FALLBACK_RETRY)
                continue

            if turn.depth >= self.max_tool_depth:
                self.logger.warning(
                    "[engine] Tool depth %s reached; not running '%s', asking for a final answer",
                    self.max_tool_depth,
                    response.name,
                )
                response = await self._request(self._history, False, turn)
                continue

            turn.depth += 1
            await self._dispatch(response, turn)
            response = await self._request(self._history, True, turn)

    async def _dispatch(self, call: FunctionCall, turn: _TurnContext) -> None:
        self._set_state(EngineState.DISPATCHING)
        self._history.append(Message.function_call(call.name, call.arguments))
        result = await asyncio.to_thread(self.tools.dispatch, call.name, call.arguments)
        self._history.append(Message.tool_result(result.name, result.result, result.success))
        turn.tool_calls.append(call.name)
        self.logger.debug("[engine] Tool %s returned (success=%s): %s", call.name, result.success, result.result)

    async def _request(
        self,
        history: Iterable[Message],
        tools_enabled: bool,
        turn: _TurnContext,
        *,
        state: EngineState = EngineState.AWAITING_MODEL_REPLY,
    ) -> ModelResponse:
        self._set_state(state)
        turn.gateway_calls += 1
        return await self.gateway.send(list(history), tools_enabled)

    def _begin_turn(self) -> None:
        if self._busy:
            raise RuntimeError("A turn is already in progress for this conversation")
        self._busy = True

    def _finish(self, turn: _TurnContext, text: str, state: EngineState) -> TurnOutcome:
        self._set_state(state)
        return TurnOutcome(
            text=text,
            state=state,
            tool_calls=list(turn.tool_calls),
            gateway_calls=turn.gateway_calls,
        )

    def _set_state(self, state: EngineState) -> None:
        self._state = state
        if self.on_state_change:
            self.on_state_change(state)
