"""
Steward Tool Registry

Central registry for every tool the agent can call. Each tool is
registered with its risk level, which the SafetyGuardian uses to decide
whether the call needs approval, and a timeout enforced around async
handlers.

Handlers are plain callables (sync or async) taking the tool arguments
as keyword parameters. A handler may return a ToolOutput or any value,
which is converted to text.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any

from steward.core.models import RiskLevel, ToolDefinition, ToolOutput
from steward.exceptions import (
    InvalidArgumentsError,
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolTimeoutError,
)

DEFAULT_TOOL_TIMEOUT = 30.0

ASK_USER_TOOL = "ask_user"

# Pseudo-tool handled by the agent itself; it never reaches the registry.
ASK_USER_DEFINITION = ToolDefinition(
    name=ASK_USER_TOOL,
    description=(
        "Ask the user a clarifying question when the task is ambiguous. "
        "Returns the user's answer."
    ),
    parameters={
        "type": "object",
        "properties": {
            "question": {"type": "string", "description": "The question to ask the user"},
        },
        "required": ["question"],
    },
)


class RegisteredTool:
    """A tool registered in the system with its risk level.

    Combines the definition declared to the LLM, the risk level and the
    handler that executes the tool.
    """

    def __init__(
        self,
        definition: ToolDefinition,
        risk_level: RiskLevel,
        handler: Callable[..., Any] | Callable[..., Awaitable[Any]],
        timeout: float = DEFAULT_TOOL_TIMEOUT,
    ):
        self.definition = definition
        self.risk_level = risk_level
        self.handler = handler
        self.timeout = timeout

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def description(self) -> str:
        return self.definition.description

    def _validate(self, arguments: dict[str, Any]) -> None:
        try:
            inspect.signature(self.handler).bind(**arguments)
        except TypeError as e:
            raise InvalidArgumentsError(self.name, str(e)) from e

    async def execute(self, arguments: dict[str, Any]) -> ToolOutput:
        """Run the handler.

        Raises InvalidArgumentsError when the arguments do not fit the
        handler, ToolTimeoutError when an async handler exceeds the
        timeout and ToolExecutionError for anything the handler raises.
        """
        self._validate(arguments)
        try:
            result = self.handler(**arguments)
            # Support both sync and async handlers
            if inspect.isawaitable(result):
                result = await asyncio.wait_for(result, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ToolTimeoutError(self.name, self.timeout) from e
        except ToolError:
            raise
        except Exception as e:
            raise ToolExecutionError(self.name, f"{type(e).__name__}: {e}") from e

        if isinstance(result, ToolOutput):
            return result
        return ToolOutput.text("" if result is None else str(result))


class ToolRegistry:
    """Name-to-tool mapping owned by the agent for its whole lifetime."""

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}

    def register(self, tool: RegisteredTool) -> None:
        """Register a tool.

        Raises ValueError if a tool with the same name already exists.
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        if tool.name == ASK_USER_TOOL:
            raise ValueError(f"'{ASK_USER_TOOL}' is reserved for clarification requests")
        self._tools[tool.name] = tool

    def get(self, name: str) -> RegisteredTool | None:
        return self._tools.get(name)

    def require(self, name: str) -> RegisteredTool:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def get_all(self) -> list[RegisteredTool]:
        return list(self._tools.values())

    def names(self) -> set[str]:
        return set(self._tools)

    def definitions(self) -> list[ToolDefinition]:
        """Definitions of every registered tool, in registration order."""
        return [t.definition for t in self._tools.values()]

    def risk_level(self, name: str) -> RiskLevel | None:
        tool = self._tools.get(name)
        return tool.risk_level if tool else None

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
