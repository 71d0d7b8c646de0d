"""Steward core types: messages, usage accounting, risk model and classification."""

from steward.core.cancellation import CancellationToken
from steward.core.classification import ClassificationKind, TaskClassification, classify
from steward.core.models import (
    AgentState,
    AgentStatus,
    BudgetSeverity,
    CompressionEvent,
    ContextHealthEvent,
    ContextHealthLevel,
    CostEstimate,
    Message,
    ProgressUpdate,
    RiskLevel,
    Role,
    TaskResult,
    TokenUsage,
    ToolDefinition,
    ToolOutput,
)

__all__ = [
    "AgentState",
    "AgentStatus",
    "BudgetSeverity",
    "CancellationToken",
    "ClassificationKind",
    "CompressionEvent",
    "ContextHealthEvent",
    "ContextHealthLevel",
    "CostEstimate",
    "Message",
    "ProgressUpdate",
    "RiskLevel",
    "Role",
    "TaskClassification",
    "TaskResult",
    "TokenUsage",
    "ToolDefinition",
    "ToolOutput",
    "classify",
]
