"""
Steward Action Requests and Approval Context

Types exchanged with the approval UI, and the derivation of rich
approval context from a raw tool call:

1. ``parse_action_details`` maps (tool name, arguments) to a concrete
   ActionDetails variant. Unknown tools fall back to ``OtherAction``
   carrying the raw arguments so the UI can display them.
2. ``build_approval_context`` derives reasoning, consequences,
   reversibility and an optional preview from the details.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from steward.core.models import RiskLevel


# ─── Action details ──────────────────────────────────────────

class FileReadAction(BaseModel):
    type: Literal["file_read"] = "file_read"
    path: str


class FileWriteAction(BaseModel):
    type: Literal["file_write"] = "file_write"
    path: str
    size_bytes: int = 0


class FileDeleteAction(BaseModel):
    type: Literal["file_delete"] = "file_delete"
    path: str


class ShellCommandAction(BaseModel):
    type: Literal["shell_command"] = "shell_command"
    command: str


class NetworkRequestAction(BaseModel):
    type: Literal["network_request"] = "network_request"
    host: str
    method: str = "GET"


class GitOperationAction(BaseModel):
    type: Literal["git_operation"] = "git_operation"
    operation: str


class BrowserAction(BaseModel):
    type: Literal["browser_action"] = "browser_action"
    action: str
    url: str | None = None
    selector: str | None = None


class ChannelReplyAction(BaseModel):
    type: Literal["channel_reply"] = "channel_reply"
    channel: str
    recipient: str
    preview: str = ""


class GuiAction(BaseModel):
    type: Literal["gui_action"] = "gui_action"
    app: str
    action: str


class ScheduledTaskAction(BaseModel):
    type: Literal["scheduled_task"] = "scheduled_task"
    trigger: str
    task: str


class WorkflowStepAction(BaseModel):
    type: Literal["workflow_step"] = "workflow_step"
    workflow: str
    step_id: str = ""


class OtherAction(BaseModel):
    type: Literal["other"] = "other"
    info: str = ""


ActionDetails = Annotated[
    Union[
        FileReadAction,
        FileWriteAction,
        FileDeleteAction,
        ShellCommandAction,
        NetworkRequestAction,
        GitOperationAction,
        BrowserAction,
        ChannelReplyAction,
        GuiAction,
        ScheduledTaskAction,
        WorkflowStepAction,
        OtherAction,
    ],
    Field(discriminator="type"),
]


# ─── Approval protocol ───────────────────────────────────────

class ReversibilityInfo(BaseModel):
    is_reversible: bool
    undo_description: str | None = None
    undo_window: str | None = None


class ApprovalContext(BaseModel):
    """What the user sees when asked to approve an action."""
    reasoning: str | None = None
    alternatives: list[str] = Field(default_factory=list)
    consequences: list[str] = Field(default_factory=list)
    reversibility: ReversibilityInfo | None = None
    preview: str | None = None
    full_draft: str | None = None


class ActionRequest(BaseModel):
    """A proposed tool execution awaiting a permission decision."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    tool_name: str
    risk_level: RiskLevel
    description: str = ""
    details: ActionDetails = Field(default_factory=OtherAction)
    arguments: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    approval_context: ApprovalContext = Field(default_factory=ApprovalContext)


class ApprovalDecision(str, Enum):
    APPROVE = "approve"
    APPROVE_ALL_SIMILAR = "approve_all_similar"
    DENY = "deny"


class PermissionOutcome(str, Enum):
    ALLOWED = "allowed"
    DENIED = "denied"
    REQUIRES_APPROVAL = "requires_approval"


class PermissionResult(BaseModel):
    """Guardian verdict. ``reason`` explains a denial or an approval requirement."""
    outcome: PermissionOutcome
    reason: str = ""

    @classmethod
    def allowed(cls) -> PermissionResult:
        return cls(outcome=PermissionOutcome.ALLOWED)

    @classmethod
    def denied(cls, reason: str) -> PermissionResult:
        return cls(outcome=PermissionOutcome.DENIED, reason=reason)

    @classmethod
    def requires_approval(cls, context: str) -> PermissionResult:
        return cls(outcome=PermissionOutcome.REQUIRES_APPROVAL, reason=context)


# ─── Parsing ─────────────────────────────────────────────────

_FILE_READ_TOOLS = {"file_read", "file_list", "file_search", "codebase_search"}
_FILE_WRITE_TOOLS = {"file_write", "file_patch", "smart_edit"}
_NETWORK_TOOLS = {"http_request", "web_fetch", "web_search", "http_api"}


def _str_arg(arguments: dict[str, Any], key: str, default: str = "") -> str:
    value = arguments.get(key)
    return value if isinstance(value, str) else default


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _raw(arguments: dict[str, Any]) -> str:
    return json.dumps(arguments, sort_keys=True, default=str)


def parse_action_details(tool_name: str, arguments: dict[str, Any]) -> ActionDetails:
    """Map a tool call to the most specific ActionDetails variant."""
    if tool_name in _FILE_READ_TOOLS:
        if path := _str_arg(arguments, "path"):
            return FileReadAction(path=path)
        return OtherAction(info=_raw(arguments))

    if tool_name in _FILE_WRITE_TOOLS:
        content = _str_arg(arguments, "content")
        return FileWriteAction(
            path=_str_arg(arguments, "path", "unknown"),
            size_bytes=len(content.encode("utf-8")),
        )

    if tool_name == "file_delete":
        return FileDeleteAction(path=_str_arg(arguments, "path", "unknown"))

    if tool_name == "shell_exec":
        return ShellCommandAction(command=_str_arg(arguments, "command", "(unknown)"))

    if tool_name in _NETWORK_TOOLS:
        url = _str_arg(arguments, "url")
        host = (urlparse(url).hostname or url) if url else _str_arg(arguments, "query", "(search)")
        return NetworkRequestAction(
            host=host,
            method=_str_arg(arguments, "method", "GET").upper(),
        )

    if tool_name == "git_commit":
        return GitOperationAction(operation=f"commit: {_truncate(_str_arg(arguments, 'message'), 80)}")
    if tool_name.startswith("git_"):
        return GitOperationAction(operation=tool_name)

    if tool_name.startswith("browser_"):
        return BrowserAction(
            action=tool_name.removeprefix("browser_"),
            url=_str_arg(arguments, "url") or None,
            selector=_str_arg(arguments, "selector") or None,
        )

    if tool_name in ("channel_reply", "send_message"):
        return ChannelReplyAction(
            channel=_str_arg(arguments, "channel", "unknown"),
            recipient=_str_arg(arguments, "recipient", _str_arg(arguments, "to", "unknown")),
            preview=_str_arg(arguments, "text", _str_arg(arguments, "message")),
        )

    if tool_name.startswith("gui_") or tool_name == "app_control":
        return GuiAction(
            app=_str_arg(arguments, "app", _str_arg(arguments, "app_name", "unknown")),
            action=_str_arg(arguments, "action", tool_name),
        )

    if tool_name == "schedule_task":
        return ScheduledTaskAction(
            trigger=_str_arg(arguments, "cron", _str_arg(arguments, "trigger", "manual")),
            task=_str_arg(arguments, "task"),
        )

    if tool_name == "workflow_run":
        return WorkflowStepAction(
            workflow=_str_arg(arguments, "workflow", _str_arg(arguments, "name", "unknown")),
            step_id=_str_arg(arguments, "step_id"),
        )

    return OtherAction(info=_raw(arguments))


def build_approval_context(
    tool_name: str, details: ActionDetails, risk_level: RiskLevel
) -> ApprovalContext:
    """Derive reasoning, consequences, reversibility and a preview."""
    ctx = ApprovalContext()

    if isinstance(details, FileWriteAction):
        ctx.reasoning = f"Writing {details.size_bytes} bytes to {details.path}"
        ctx.consequences.append(f"File '{details.path}' will be created or overwritten")
        ctx.reversibility = ReversibilityInfo(
            is_reversible=True,
            undo_description="Revert via git checkout or checkpoint restore",
        )
    elif isinstance(details, FileDeleteAction):
        ctx.reasoning = f"Deleting file {details.path}"
        ctx.consequences.append(f"File '{details.path}' will be permanently removed")
        ctx.reversibility = ReversibilityInfo(
            is_reversible=True,
            undo_description="Restore from the trash or via git checkout",
            undo_window="Until the trash is emptied",
        )
    elif isinstance(details, FileReadAction):
        ctx.reasoning = f"Reading {details.path}"
        ctx.reversibility = ReversibilityInfo(is_reversible=True, undo_description="Read-only; nothing to undo")
    elif isinstance(details, ShellCommandAction):
        ctx.reasoning = f"Executing shell command: {details.command}"
        ctx.consequences.append("Shell command will run in the agent workspace")
        if risk_level >= RiskLevel.EXECUTE:
            ctx.consequences.append("Command may modify system state or produce side effects")
    elif isinstance(details, NetworkRequestAction):
        ctx.reasoning = f"Making {details.method} request to {details.host}"
        ctx.consequences.append(f"Network request will be sent to {details.host}")
    elif isinstance(details, GitOperationAction):
        ctx.reasoning = f"Git operation: {details.operation}"
        ctx.reversibility = ReversibilityInfo(
            is_reversible=True,
            undo_description="Git operations are generally reversible via reflog",
        )
    elif isinstance(details, BrowserAction):
        target = details.url or details.selector or "current page"
        ctx.reasoning = f"Browser {details.action} on {target}"
        ctx.consequences.append("The browser session state may change")
    elif isinstance(details, ChannelReplyAction):
        ctx.reasoning = f"Sending a reply via {details.channel} to {details.recipient}"
        ctx.consequences.append(f"{details.recipient} will receive the message")
        ctx.reversibility = ReversibilityInfo(is_reversible=False, undo_description="Sent messages cannot be recalled")
    elif isinstance(details, GuiAction):
        ctx.reasoning = f"GUI action '{details.action}' in {details.app}"
        ctx.consequences.append(f"{details.app} will be controlled programmatically")
    elif isinstance(details, ScheduledTaskAction):
        ctx.reasoning = f"Scheduling '{details.task}' ({details.trigger})"
        ctx.consequences.append("The task will run later without further prompting")
        ctx.reversibility = ReversibilityInfo(is_reversible=True, undo_description="Remove the scheduled job")
    elif isinstance(details, WorkflowStepAction):
        ctx.reasoning = f"Running workflow {details.workflow}"
    else:
        ctx.reasoning = f"Executing {tool_name} tool"
        if isinstance(details, OtherAction) and details.info:
            ctx.preview = f"Arguments: {_truncate(details.info, 200)}"

    preview = _preview(tool_name, details)
    if preview is not None:
        ctx.preview = preview
    if isinstance(details, ChannelReplyAction):
        ctx.full_draft = details.preview
    return ctx


def _preview(tool_name: str, details: ActionDetails) -> str | None:
    if isinstance(details, FileWriteAction):
        if tool_name == "file_write":
            return f"Will write {details.size_bytes} bytes to {details.path}"
        if tool_name == "file_patch":
            return f"Will patch {details.path}"
        if tool_name == "smart_edit":
            return f"Will smart-edit {details.path}"
    if isinstance(details, ShellCommandAction):
        return f"$ {_truncate(details.command, 200)}"
    if isinstance(details, GitOperationAction) and tool_name == "git_commit":
        return f"git {details.operation}"
    if isinstance(details, ChannelReplyAction):
        return f"[{details.channel}] -> {details.recipient}: {_truncate(details.preview, 100)}"
    return None


def create_action_request(
    tool_name: str,
    risk_level: RiskLevel,
    arguments: dict[str, Any] | None = None,
) -> ActionRequest:
    """Build a fully populated ActionRequest for a tool call."""
    arguments = arguments or {}
    details = parse_action_details(tool_name, arguments)
    return ActionRequest(
        tool_name=tool_name,
        risk_level=risk_level,
        description=f"Execute tool: {tool_name}",
        details=details,
        arguments=arguments,
        approval_context=build_approval_context(tool_name, details, risk_level),
    )
