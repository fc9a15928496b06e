"""
Small text helpers shared by config parsing and the device actions

Environment values arrive as optional strings. Every parser here treats a
missing or blank value as "not set" and falls back to the caller's default
rather than raising, so one bad variable never stops the assistant starting.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

N = TypeVar("N", int, float)

_TRUE_WORDS = frozenset({"1", "true", "yes", "on"})
_FALSE_WORDS = frozenset({"0", "false", "no", "off"})


def strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def parse_bool(value: str | None, default: bool = False) -> bool:
    """Env-style boolean; words outside the true/false sets keep the default."""
    text = strip_or_none(value)
    if text is None:
        return default
    lowered = text.lower()
    if lowered in _TRUE_WORDS:
        return True
    if lowered in _FALSE_WORDS:
        return False
    return default


def _parse_number(value: str | None, default: N, cast: Callable[[str], N]) -> N:
    text = strip_or_none(value)
    if text is None:
        return default
    try:
        return cast(text)
    except ValueError:
        return default


def parse_int(value: str | None, default: int) -> int:
    return _parse_number(value, default, int)


def parse_float(value: str | None, default: float) -> float:
    return _parse_number(value, default, float)


def split_csv(value: str | None) -> list[str]:
    """``" a, b ,,c "`` -> ``["a", "b", "c"]``."""
    return [token for token in (part.strip() for part in (value or "").split(",")) if token]


def capitalize_first(text: str) -> str:
    """Uppercase only the first character ("mom" -> "Mom", "dr. who" -> "Dr. who")."""
    return text[:1].upper() + text[1:]
