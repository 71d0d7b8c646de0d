"""Steward tools: the registry, the ask_user pseudo-tool and built-in tools."""

from steward.tools.registry import (
    ASK_USER_DEFINITION,
    ASK_USER_TOOL,
    DEFAULT_TOOL_TIMEOUT,
    RegisteredTool,
    ToolRegistry,
)

__all__ = [
    "ASK_USER_DEFINITION",
    "ASK_USER_TOOL",
    "DEFAULT_TOOL_TIMEOUT",
    "RegisteredTool",
    "ToolRegistry",
]
