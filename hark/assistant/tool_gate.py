"""
Heuristic gate deciding whether tool declarations are offered for a turn

The model over-triggers function calls on conversational input when tools are
always attached, so declarations are only sent when the utterance contains an
action verb. Matching is a plain substring check on the lower-cased text.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

DEFAULT_TOOL_KEYWORDS: tuple[str, ...] = (
    "open",
    "launch",
    "start",
    "call",
    "dial",
    "search",
    "find",
    "look up",
    "alarm",
    "timer",
    "wake me",
)


class ToolGate(Protocol):
    def should_enable_tools(self, text: str) -> bool: ...


class KeywordToolGate:
    """Enable tools when any keyword appears in the input."""

    def __init__(self, keywords: Iterable[str] | None = None) -> None:
        source = DEFAULT_TOOL_KEYWORDS if keywords is None else keywords
        self.keywords: tuple[str, ...] = tuple(keyword.strip().lower() for keyword in source if keyword.strip())

    def should_enable_tools(self, text: str) -> bool:
        lowered = (text or "").lower()
        if not lowered:
            return False
        return any(keyword in lowered for keyword in self.keywords)
