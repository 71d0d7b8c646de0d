"""
Steward Classification Tool Filter

Substitutes the full tool set with a classification-specific subset: a
fixed core of always-visible tools plus a small per-classification extra
set. General, workflow and deep-research tasks see everything. Results
are cached per classification until a tool is registered.

Also holds the per-classification tool-routing hints appended to the
system prompt and the auto-correction of tool calls that contradict the
classification.
"""

from __future__ import annotations

import re
import shlex
from typing import Any

from pydantic import BaseModel

from steward.core.classification import ClassificationKind, TaskClassification
from steward.core.models import ToolDefinition

CORE_TOOLS = (
    "ask_user",
    "echo",
    "file_read",
    "file_write",
    "file_list",
    "file_search",
    "shell_exec",
    "web_search",
    "calculator",
    "datetime",
)

CLASSIFICATION_EXTRAS: dict[ClassificationKind, tuple[str, ...]] = {
    ClassificationKind.FILE_OPERATION: ("file_patch", "smart_edit", "file_delete", "document_read"),
    ClassificationKind.SEARCH: ("codebase_search", "document_read", "file_patch", "smart_edit"),
    ClassificationKind.GIT_OPERATION: ("git_status", "git_diff", "git_commit", "codebase_search"),
    ClassificationKind.CODE_ANALYSIS: (
        "codebase_search", "smart_edit", "file_patch", "test_runner", "lint", "git_diff",
    ),
    ClassificationKind.WEB_SEARCH: ("web_fetch", "http_api", "document_read", "knowledge_graph"),
    ClassificationKind.WEB_FETCH: ("web_fetch", "http_api", "document_read", "browser_navigate"),
    ClassificationKind.BROWSER: (
        "browser_navigate", "browser_click", "browser_type", "browser_screenshot", "web_fetch",
    ),
    ClassificationKind.MESSAGING: ("send_message", "channel_reply", "slack", "email_read"),
    ClassificationKind.CALENDAR: ("calendar", "reminders", "notes", "schedule_task"),
    ClassificationKind.SYSTEM_MONITOR: ("system_monitor", "log_analyze", "alert_manager", "prometheus"),
}

ROUTING_HINTS: dict[ClassificationKind, str] = {
    ClassificationKind.FILE_OPERATION: (
        "For file tasks use file_read, file_list and file_search to inspect; "
        "prefer file_patch or smart_edit over rewriting whole files."
    ),
    ClassificationKind.SEARCH: "For searches prefer file_search and codebase_search over shell_exec with grep.",
    ClassificationKind.GIT_OPERATION: (
        "For version control use git_status, git_diff and git_commit rather than shell_exec."
    ),
    ClassificationKind.CODE_ANALYSIS: (
        "Read the relevant code with codebase_search and file_read before editing; "
        "run test_runner or lint after changes."
    ),
    ClassificationKind.WEB_SEARCH: "Use web_search for web queries; do not run curl via shell_exec.",
    ClassificationKind.WEB_FETCH: "Use web_fetch to retrieve pages; do not run curl or wget via shell_exec.",
    ClassificationKind.BROWSER: "Use the browser_* tools for interactive pages.",
    ClassificationKind.MESSAGING: "Show the user a draft before sending any message.",
    ClassificationKind.CALENDAR: "Use calendar and reminders tools; confirm dates with datetime.",
    ClassificationKind.SYSTEM_MONITOR: "Use system_monitor for resource usage before shell commands.",
}


def routing_hint(classification: TaskClassification | None) -> str:
    if classification is None:
        return ""
    hint = ROUTING_HINTS.get(classification.kind, "")
    return f"\n\n## Tool Routing\n{hint}" if hint else ""


class ClassificationToolFilter:
    def __init__(self) -> None:
        self._cache: dict[TaskClassification, list[ToolDefinition]] = {}

    def invalidate(self) -> None:
        self._cache.clear()

    def filter(
        self,
        definitions: list[ToolDefinition],
        classification: TaskClassification | None,
    ) -> list[ToolDefinition]:
        if classification is None or not classification.filters_tools:
            return list(definitions)
        cached = self._cache.get(classification)
        if cached is not None:
            return list(cached)
        allowed = set(CORE_TOOLS) | set(CLASSIFICATION_EXTRAS.get(classification.kind, ()))
        subset = [d for d in definitions if d.name in allowed]
        self._cache[classification] = subset
        return list(subset)

    @property
    def cached_classifications(self) -> int:
        return len(self._cache)


# ─── Auto-correction ─────────────────────────────────────────

class ToolCorrection(BaseModel):
    original_tool: str
    tool_name: str
    arguments: dict[str, Any]

    def describe(self) -> str:
        return f"Auto-corrected '{self.original_tool}' to '{self.tool_name}' for this task"


_URL_RE = re.compile(r"https?://\S+")


def auto_correct_tool_call(
    classification: TaskClassification | None,
    tool_name: str,
    arguments: dict[str, Any],
    goal: str,
    available: set[str],
) -> ToolCorrection | None:
    """Rewrite a shell_exec call that contradicts the task classification.

    Returns None when no rule applies or the replacement tool is not registered.
    """
    if classification is None or tool_name != "shell_exec":
        return None
    command = arguments.get("command")
    if not isinstance(command, str):
        return None
    stripped = command.strip()
    kind = classification.kind

    replacement: tuple[str, dict[str, Any]] | None = None
    if kind == ClassificationKind.WEB_SEARCH and stripped.startswith(("curl", "wget")):
        replacement = ("web_search", {"query": goal})
    elif kind == ClassificationKind.WEB_FETCH and stripped.startswith(("curl", "wget")):
        match = _URL_RE.search(stripped)
        if match:
            replacement = ("web_fetch", {"url": match.group(0).strip("'\"")})
    elif kind == ClassificationKind.GIT_OPERATION:
        if stripped.startswith("git status"):
            replacement = ("git_status", {})
        elif stripped.startswith("git diff"):
            replacement = ("git_diff", {})
    elif kind == ClassificationKind.FILE_OPERATION and stripped.startswith("cat "):
        try:
            parts = shlex.split(stripped)
        except ValueError:
            parts = []
        if len(parts) == 2:
            replacement = ("file_read", {"path": parts[1]})

    if replacement is None or replacement[0] not in available:
        return None
    return ToolCorrection(original_tool=tool_name, tool_name=replacement[0], arguments=replacement[1])
