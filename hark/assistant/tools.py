"""Tool declarations advertised to the model and dispatch to the command executor."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

LOGGER = logging.getLogger("hark-assistant.tools")


class UnknownToolError(KeyError):
    """Raised when dispatch is asked for a function that was never registered."""


class CommandExecutor(Protocol):
    def execute(self, tool_name: str, arguments: Mapping[str, Any]) -> str: ...


@dataclass(frozen=True)
class ToolParameter:
    name: str
    type: str = "STRING"
    description: str = ""
    required: bool = True


@dataclass(frozen=True)
class ToolDeclaration:
    name: str
    description: str
    parameters: tuple[ToolParameter, ...] = ()

    def to_schema(self) -> dict[str, Any]:
        properties: dict[str, dict[str, str]] = {}
        for parameter in self.parameters:
            spec = {"type": parameter.type}
            if parameter.description:
                spec["description"] = parameter.description
            properties[parameter.name] = spec
        return {
            "name": self.name,
            "description": self.description,
            "parameters": {
                "type": "OBJECT",
                "properties": properties,
                "required": [parameter.name for parameter in self.parameters if parameter.required],
            },
        }


@dataclass(frozen=True)
class ToolInvocationResult:
    name: str
    result: str
    success: bool = True


DEFAULT_TOOL_DECLARATIONS: tuple[ToolDeclaration, ...] = (
    ToolDeclaration(
        name="setAlarm",
        description="Sets an alarm.",
        parameters=(ToolParameter("command"),),
    ),
    ToolDeclaration(
        name="openApp",
        description="Opens an application.",
        parameters=(ToolParameter("appName"),),
    ),
    ToolDeclaration(
        name="callContact",
        description="Initiates a phone call.",
        parameters=(ToolParameter("contactName"),),
    ),
    ToolDeclaration(
        name="searchWeb",
        description="Performs a web search.",
        parameters=(ToolParameter("query"),),
    ),
)


class ToolRegistry:
    """Fixed mapping from function name to declaration, backed by one executor."""

    def __init__(
        self,
        executor: CommandExecutor,
        declarations: Iterable[ToolDeclaration] = DEFAULT_TOOL_DECLARATIONS,
        logger: logging.Logger | None = None,
    ) -> None:
        self._executor = executor
        self._declarations = {declaration.name: declaration for declaration in declarations}
        self._logger = logger or LOGGER

    def declarations(self) -> tuple[ToolDeclaration, ...]:
        return tuple(self._declarations.values())

    def names(self) -> frozenset[str]:
        return frozenset(self._declarations)

    def __contains__(self, name: object) -> bool:
        return name in self._declarations

    def function_declarations_payload(self) -> list[dict[str, Any]]:
        """Return the ``tools`` array expected by generateContent."""
        if not self._declarations:
            return []
        return [{"functionDeclarations": [declaration.to_schema() for declaration in self._declarations.values()]}]

    def dispatch(self, name: str, arguments: Mapping[str, Any] | None = None) -> ToolInvocationResult:
        if name not in self._declarations:
            raise UnknownToolError(name)
        args = dict(arguments or {})
        self._logger.debug("[tools] Dispatching %s with %s", name, args)
        try:
            result = self._executor.execute(name, args)
        except Exception:
            self._logger.exception("[tools] Executor raised while running %s", name)
            return ToolInvocationResult(name=name, result=f"Sorry, something went wrong while running {name}.", success=False)
        return ToolInvocationResult(name=name, result=str(result))
