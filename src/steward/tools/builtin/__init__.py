"""
Steward Built-in Tools

Small general-purpose tools registered by ``Agent.register_builtin_tools``
or explicitly via ``register_all_builtins``.
"""

from steward.tools.builtin.basic import DATETIME_TOOL, ECHO_TOOL
from steward.tools.builtin.calculator import CALCULATOR_TOOL
from steward.tools.builtin.file_ops import (
    FILE_LIST_TOOL,
    FILE_READ_TOOL,
    FILE_SEARCH_TOOL,
    FILE_WRITE_TOOL,
)
from steward.tools.builtin.shell import SHELL_EXEC_TOOL
from steward.tools.registry import ToolRegistry

ALL_BUILTIN_TOOLS = [
    ECHO_TOOL,
    CALCULATOR_TOOL,
    DATETIME_TOOL,
    FILE_READ_TOOL,
    FILE_WRITE_TOOL,
    FILE_LIST_TOOL,
    FILE_SEARCH_TOOL,
    SHELL_EXEC_TOOL,
]


def register_all_builtins(registry: ToolRegistry) -> None:
    """Register all built-in tools with the given registry."""
    for tool in ALL_BUILTIN_TOOLS:
        registry.register(tool)
