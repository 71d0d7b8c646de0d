"""File operation tools.

Separate tools with different risk levels:
- file_read, file_list, file_search: READ_ONLY
- file_write: WRITE (creates or overwrites files)

All paths are checked against sensitive system directories before use.
Denied-path globs are enforced earlier by the SafetyGuardian.
"""

from __future__ import annotations

import fnmatch
import os
from pathlib import Path

from steward.core.models import RiskLevel, ToolDefinition
from steward.exceptions import ToolExecutionError
from steward.tools.registry import RegisteredTool

MAX_READ_BYTES = 1_048_576
MAX_LIST_ENTRIES = 500
MAX_SEARCH_MATCHES = 100

BLOCKED_PREFIXES = ("/etc", "/var", "/usr", "/bin", "/sbin", "/boot", "/proc", "/sys")


def _resolve(tool_name: str, path: str) -> Path:
    resolved = Path(path).expanduser().resolve()
    for prefix in BLOCKED_PREFIXES:
        if str(resolved) == prefix or str(resolved).startswith(f"{prefix}/"):
            raise ToolExecutionError(tool_name, f"Access to {prefix} is blocked")
    return resolved


def _file_read(path: str, max_lines: int = 200) -> str:
    p = _resolve("file_read", path)
    if not p.exists():
        raise ToolExecutionError("file_read", f"File not found: {path}")
    if not p.is_file():
        raise ToolExecutionError("file_read", f"Not a file: {path}")
    if p.stat().st_size > MAX_READ_BYTES:
        raise ToolExecutionError("file_read", f"File too large ({p.stat().st_size} bytes). Max 1MB.")

    lines = p.read_text(encoding="utf-8", errors="replace").splitlines()
    if len(lines) > max_lines:
        content = "\n".join(lines[:max_lines])
        return f"{content}\n[TRUNCATED at {max_lines} lines, total {len(lines)}]"
    return "\n".join(lines)


def _file_write(path: str, content: str) -> str:
    p = _resolve("file_write", path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(content, encoding="utf-8")
    return f"Written {len(content.encode('utf-8'))} bytes to {path}"


def _file_list(path: str = ".") -> str:
    p = _resolve("file_list", path)
    if not p.is_dir():
        raise ToolExecutionError("file_list", f"Not a directory: {path}")
    entries = sorted(p.iterdir(), key=lambda e: e.name)
    lines = [f"{e.name}/" if e.is_dir() else e.name for e in entries[:MAX_LIST_ENTRIES]]
    if len(entries) > MAX_LIST_ENTRIES:
        lines.append(f"[{len(entries) - MAX_LIST_ENTRIES} more entries]")
    return "\n".join(lines) if lines else "(empty directory)"


def _file_search(pattern: str, path: str = ".", content: str | None = None) -> str:
    """Find files whose name matches ``pattern``, optionally containing ``content``."""
    root = _resolve("file_search", path)
    matches: list[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if not d.startswith(".")]
        for filename in filenames:
            if not fnmatch.fnmatch(filename, pattern):
                continue
            full = Path(dirpath) / filename
            if content is not None:
                try:
                    if content not in full.read_text(encoding="utf-8", errors="ignore"):
                        continue
                except OSError:
                    continue
            matches.append(str(full.relative_to(root)))
            if len(matches) >= MAX_SEARCH_MATCHES:
                return "\n".join(matches) + f"\n[Stopped at {MAX_SEARCH_MATCHES} matches]"
    return "\n".join(matches) if matches else "No matching files"


_PATH_PARAM = {"type": "string", "description": "Absolute or relative path"}

FILE_READ_TOOL = RegisteredTool(
    definition=ToolDefinition(
        name="file_read",
        description="Read the contents of a text file. System directories are blocked.",
        parameters={
            "type": "object",
            "properties": {
                "path": _PATH_PARAM,
                "max_lines": {
                    "type": "integer",
                    "description": "Maximum lines to read (default: 200)",
                    "default": 200,
                },
            },
            "required": ["path"],
        },
    ),
    risk_level=RiskLevel.READ_ONLY,
    handler=_file_read,
)

FILE_WRITE_TOOL = RegisteredTool(
    definition=ToolDefinition(
        name="file_write",
        description="Write content to a file, creating parent directories if needed.",
        parameters={
            "type": "object",
            "properties": {
                "path": _PATH_PARAM,
                "content": {"type": "string", "description": "Content to write to the file"},
            },
            "required": ["path", "content"],
        },
    ),
    risk_level=RiskLevel.WRITE,
    handler=_file_write,
)

FILE_LIST_TOOL = RegisteredTool(
    definition=ToolDefinition(
        name="file_list",
        description="List the entries of a directory. Directories end with '/'.",
        parameters={
            "type": "object",
            "properties": {"path": {**_PATH_PARAM, "default": "."}},
        },
    ),
    risk_level=RiskLevel.READ_ONLY,
    handler=_file_list,
)

FILE_SEARCH_TOOL = RegisteredTool(
    definition=ToolDefinition(
        name="file_search",
        description="Search for files by name glob under a directory, optionally filtering by content.",
        parameters={
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Filename glob, e.g. '*.py'"},
                "path": {**_PATH_PARAM, "default": "."},
                "content": {"type": "string", "description": "Only files containing this text"},
            },
            "required": ["pattern"],
        },
    ),
    risk_level=RiskLevel.READ_ONLY,
    handler=_file_search,
)
