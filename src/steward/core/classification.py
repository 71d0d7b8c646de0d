"""
Steward Task Classification

Tags a task with a coarse classification, computed once at task start and
cached on the agent state. The classification keys expert selection,
tool-subset filtering, tool-routing hints and auto-correction.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class ClassificationKind(str, Enum):
    GENERAL = "general"
    FILE_OPERATION = "file_operation"
    GIT_OPERATION = "git_operation"
    SEARCH = "search"
    WEB_SEARCH = "web_search"
    WEB_FETCH = "web_fetch"
    CODE_ANALYSIS = "code_analysis"
    BROWSER = "browser"
    MESSAGING = "messaging"
    CALENDAR = "calendar"
    SYSTEM_MONITOR = "system_monitor"
    DEEP_RESEARCH = "deep_research"
    WORKFLOW = "workflow"


class TaskClassification(BaseModel):
    """Classification tag. ``workflow`` names the workflow for WORKFLOW kinds."""

    model_config = ConfigDict(frozen=True)

    kind: ClassificationKind
    workflow: str | None = None

    @classmethod
    def general(cls) -> TaskClassification:
        return cls(kind=ClassificationKind.GENERAL)

    @classmethod
    def of(cls, kind: ClassificationKind) -> TaskClassification:
        return cls(kind=kind)

    @classmethod
    def for_workflow(cls, name: str) -> TaskClassification:
        return cls(kind=ClassificationKind.WORKFLOW, workflow=name)

    @property
    def filters_tools(self) -> bool:
        """General, workflow and deep-research tasks see the full tool set."""
        return self.kind not in (
            ClassificationKind.GENERAL,
            ClassificationKind.WORKFLOW,
            ClassificationKind.DEEP_RESEARCH,
        )

    def __str__(self) -> str:
        if self.kind == ClassificationKind.WORKFLOW:
            return f"workflow({self.workflow})"
        return self.kind.value


# Checked in order; first match wins.
_WORKFLOW_RULES: list[tuple[tuple[str, ...], str]] = [
    (("security scan", "security audit", "vulnerability"), "security_scan"),
    (("code review",), "code_review"),
    (("generate test", "write test", "test generation"), "test_generation"),
    (("generate doc", "write docs"), "documentation"),
    (("update dependenc", "dependency update"), "dependency_update"),
    (("deploy",), "deployment"),
    (("incident response",), "incident_response"),
    (("pr review", "pull request review"), "pr_review"),
    (("dependency audit", "audit dependenc"), "dependency_audit"),
    (("changelog", "release notes"), "changelog"),
    (("compliance",), "compliance_audit"),
    (("train model", "fine-tune", "finetune"), "ml_training"),
]

_KIND_RULES: list[tuple[tuple[str, ...], ClassificationKind]] = [
    (("deep research", "research report", "literature review", "arxiv"),
     ClassificationKind.DEEP_RESEARCH),
    (("git ", "commit", "branch", "diff", "merge"), ClassificationKind.GIT_OPERATION),
    (("search the web", "web search", "google", "look up online"), ClassificationKind.WEB_SEARCH),
    (("fetch", "http://", "https://", "url", "download"), ClassificationKind.WEB_FETCH),
    (("browser", "navigate to", "click on", "web page"), ClassificationKind.BROWSER),
    (("slack", "message", "email", "inbox", "send to"), ClassificationKind.MESSAGING),
    (("calendar", "meeting", "schedule", "event"), ClassificationKind.CALENDAR),
    (("cpu", "memory usage", "disk space", "uptime", "monitor"), ClassificationKind.SYSTEM_MONITOR),
    (("analyze code", "code analysis", "refactor", "architecture", "function", "class "),
     ClassificationKind.CODE_ANALYSIS),
    (("find file", "search for", "grep", "locate"), ClassificationKind.SEARCH),
    (("file", "directory", "folder", "read ", "write ", "edit "), ClassificationKind.FILE_OPERATION),
]


def classify(task: str) -> TaskClassification | None:
    """Classify a task description.

    Returns None for empty input so the caller leaves the classification unset.
    """
    lower = task.lower().strip()
    if not lower:
        return None

    if "refactor" in lower and "file" not in lower:
        return TaskClassification.for_workflow("refactor")

    for needles, workflow in _WORKFLOW_RULES:
        if any(n in lower for n in needles):
            return TaskClassification.for_workflow(workflow)

    for needles, kind in _KIND_RULES:
        if any(n in lower for n in needles):
            return TaskClassification.of(kind)

    return TaskClassification.general()
