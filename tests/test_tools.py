"""Tests for the tool registry and the built-in tools."""

import asyncio

import pytest

from conftest import make_tool

from steward.core.models import RiskLevel, ToolDefinition, ToolOutput
from steward.exceptions import (
    InvalidArgumentsError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolTimeoutError,
)
from steward.tools.builtin import ALL_BUILTIN_TOOLS, register_all_builtins
from steward.tools.builtin.basic import ECHO_TOOL
from steward.tools.builtin.calculator import CALCULATOR_TOOL
from steward.tools.builtin.file_ops import FILE_LIST_TOOL, FILE_READ_TOOL, FILE_SEARCH_TOOL, FILE_WRITE_TOOL
from steward.tools.builtin.shell import SHELL_EXEC_TOOL
from steward.tools.registry import ASK_USER_TOOL, RegisteredTool, ToolRegistry

# ─── Registry ───────────────────────────────────────────────


class TestToolRegistry:
    def test_register_and_lookup(self):
        registry = ToolRegistry()
        registry.register(make_tool("alpha"))
        registry.register(make_tool("beta", RiskLevel.WRITE))

        assert "alpha" in registry
        assert len(registry) == 2
        assert registry.risk_level("beta") == RiskLevel.WRITE
        assert registry.risk_level("gamma") is None
        assert [d.name for d in registry.definitions()] == ["alpha", "beta"]

    def test_duplicate_rejected(self):
        registry = ToolRegistry()
        registry.register(make_tool("alpha"))
        with pytest.raises(ValueError, match="already registered"):
            registry.register(make_tool("alpha"))

    def test_ask_user_is_reserved(self):
        with pytest.raises(ValueError):
            ToolRegistry().register(make_tool(ASK_USER_TOOL))

    def test_require_unknown(self):
        with pytest.raises(ToolNotFoundError):
            ToolRegistry().require("nope")

    def test_builtins(self):
        registry = ToolRegistry()
        register_all_builtins(registry)
        assert len(registry) == len(ALL_BUILTIN_TOOLS)
        assert registry.risk_level("shell_exec") == RiskLevel.EXECUTE
        assert registry.risk_level("file_read") == RiskLevel.READ_ONLY


# ─── Execution ──────────────────────────────────────────────


class TestExecution:
    @pytest.mark.asyncio
    async def test_sync_handler_result_stringified(self):
        tool = make_tool("answer", handler=lambda: 42)
        assert await tool.execute({}) == ToolOutput.text("42")

    @pytest.mark.asyncio
    async def test_none_becomes_empty(self):
        tool = make_tool("quiet", handler=lambda: None)
        assert (await tool.execute({})).content == ""

    @pytest.mark.asyncio
    async def test_async_handler(self):
        async def handler(text: str) -> ToolOutput:
            return ToolOutput.error(text.upper())

        output = await make_tool("loud", handler=handler).execute({"text": "bad"})
        assert output.is_error
        assert output.content == "BAD"

    @pytest.mark.asyncio
    async def test_invalid_arguments(self):
        with pytest.raises(InvalidArgumentsError):
            await make_tool("strict", handler=lambda text: text).execute({"other": 1})

    @pytest.mark.asyncio
    async def test_handler_exception_wrapped(self):
        def handler():
            raise KeyError("missing")

        with pytest.raises(ToolExecutionError, match="KeyError"):
            await make_tool("broken", handler=handler).execute({})

    @pytest.mark.asyncio
    async def test_timeout(self):
        async def slow():
            await asyncio.sleep(5)

        tool = RegisteredTool(ToolDefinition(name="slow"), RiskLevel.READ_ONLY, slow, timeout=0.05)
        with pytest.raises(ToolTimeoutError):
            await tool.execute({})


# ─── Built-in tools ─────────────────────────────────────────


class TestBuiltinTools:
    @pytest.mark.asyncio
    async def test_echo(self):
        assert (await ECHO_TOOL.execute({"text": "hi"})).content == "Echo: hi"

    @pytest.mark.asyncio
    async def test_calculator(self):
        assert (await CALCULATOR_TOOL.execute({"expression": "sqrt(16) + 2 * 3"})).content == "10.0"

    @pytest.mark.asyncio
    async def test_calculator_rejects_dunder(self):
        with pytest.raises(ToolExecutionError):
            await CALCULATOR_TOOL.execute({"expression": "().__class__"})

    @pytest.mark.asyncio
    async def test_file_round_trip(self, tmp_path):
        target = tmp_path / "notes" / "a.txt"
        written = await FILE_WRITE_TOOL.execute({"path": str(target), "content": "one\ntwo"})
        assert written.content == f"Written 7 bytes to {target}"
        read = await FILE_READ_TOOL.execute({"path": str(target), "max_lines": 1})
        assert read.content == "one\n[TRUNCATED at 1 lines, total 2]"

    @pytest.mark.asyncio
    async def test_file_read_missing(self, tmp_path):
        with pytest.raises(ToolExecutionError, match="File not found"):
            await FILE_READ_TOOL.execute({"path": str(tmp_path / "nope.txt")})

    @pytest.mark.asyncio
    async def test_system_paths_blocked(self):
        with pytest.raises(ToolExecutionError, match="blocked"):
            await FILE_READ_TOOL.execute({"path": "/etc/passwd"})

    @pytest.mark.asyncio
    async def test_file_list_and_search(self, tmp_path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "app.py").write_text("import steward\n")
        (tmp_path / "README.md").write_text("hello\n")

        listing = await FILE_LIST_TOOL.execute({"path": str(tmp_path)})
        assert listing.content == "README.md\nsrc/"

        found = await FILE_SEARCH_TOOL.execute({"pattern": "*.py", "path": str(tmp_path), "content": "steward"})
        assert found.content == "src/app.py"

        none = await FILE_SEARCH_TOOL.execute({"pattern": "*.rs", "path": str(tmp_path)})
        assert none.content == "No matching files"

    @pytest.mark.asyncio
    async def test_shell_exec(self, tmp_path):
        ok = await SHELL_EXEC_TOOL.execute({"command": "echo hello", "cwd": str(tmp_path)})
        assert ok.content.strip() == "hello"
        assert not ok.is_error

        failed = await SHELL_EXEC_TOOL.execute({"command": "echo oops >&2; exit 3"})
        assert failed.is_error
        assert failed.content.startswith("[exit 3]")
        assert "oops" in failed.content
