"""
Conversation turns and the append-only history owned by the orchestrator

A turn is a Message tagged with a Role. Model-authored function calls and tool
results carry structured payloads instead of text, so the gateway can map them
onto the remote API's functionCall/functionResponse parts without parsing.

History invariant: a function-call turn is always followed by exactly one tool
result for the same function before anything else is appended.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    USER = "user"
    MODEL = "model"
    TOOL_RESULT = "tool"


class HistoryOrderError(ValueError):
    """Raised when an append would break call/result pairing."""


@dataclass(frozen=True)
class AttachedImage:
    data: bytes = field(repr=False)
    mime_type: str = "image/jpeg"


@dataclass(frozen=True)
class FunctionCallPayload:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResultPayload:
    name: str
    result: str
    success: bool = True


@dataclass(frozen=True)
class Message:
    role: Role
    content: str | FunctionCallPayload | ToolResultPayload
    image: AttachedImage | None = None

    @classmethod
    def user(cls, text: str, image: AttachedImage | None = None) -> Message:
        return cls(Role.USER, text, image)

    @classmethod
    def model_text(cls, text: str) -> Message:
        return cls(Role.MODEL, text)

    @classmethod
    def function_call(cls, name: str, arguments: dict[str, Any] | None = None) -> Message:
        return cls(Role.MODEL, FunctionCallPayload(name, dict(arguments or {})))

    @classmethod
    def tool_result(cls, name: str, result: str, success: bool = True) -> Message:
        return cls(Role.TOOL_RESULT, ToolResultPayload(name, result, success))

    @property
    def is_function_call(self) -> bool:
        return self.role is Role.MODEL and isinstance(self.content, FunctionCallPayload)

    @property
    def is_tool_result(self) -> bool:
        return self.role is Role.TOOL_RESULT

    @property
    def text(self) -> str:
        """Plain-text view of the turn, used for logs and transcripts."""
        if isinstance(self.content, FunctionCallPayload):
            return f"{self.content.name}({self.content.arguments})"
        if isinstance(self.content, ToolResultPayload):
            return self.content.result
        return self.content


class ConversationHistory:
    """Ordered, append-only list of turns for one session."""

    def __init__(self, messages: list[Message] | None = None) -> None:
        self._messages: list[Message] = []
        for message in messages or []:
            self.append(message)

    def append(self, message: Message) -> None:
        if message.is_tool_result and not isinstance(message.content, ToolResultPayload):
            raise HistoryOrderError("Tool result turns require a ToolResultPayload")
        pending = self.pending_function_call
        if pending is not None:
            if not isinstance(message.content, ToolResultPayload):
                raise HistoryOrderError(f"Function call '{pending}' must be answered before a {message.role.value} turn")
            if message.content.name != pending:
                raise HistoryOrderError(f"Tool result for '{message.content.name}' does not answer call '{pending}'")
        elif message.is_tool_result:
            raise HistoryOrderError("Tool result appended without a pending function call")
        self._messages.append(message)

    @property
    def pending_function_call(self) -> str | None:
        if not self._messages:
            return None
        last = self._messages[-1]
        if last.role is Role.MODEL and isinstance(last.content, FunctionCallPayload):
            return last.content.name
        return None

    def last_user_message(self) -> Message | None:
        for message in reversed(self._messages):
            if message.role is Role.USER:
                return message
        return None

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(tuple(self._messages))

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]

    def __repr__(self) -> str:
        return f"ConversationHistory({len(self._messages)} messages)"
