"""Steward explanations: why each decision was made, and the decision log."""

from steward.explain.decision_log import DecisionLog, DecisionOutcome, DecisionRecord, OutcomeKind
from steward.explain.explanation import (
    AlternativeAction,
    ContextFactor,
    DecisionExplanation,
    DecisionKind,
    DecisionType,
    ExplanationBuilder,
    FactorInfluence,
    ReasoningStep,
    error_recovery,
    tool_confidence,
)

__all__ = [
    "AlternativeAction",
    "ContextFactor",
    "DecisionExplanation",
    "DecisionKind",
    "DecisionLog",
    "DecisionOutcome",
    "DecisionRecord",
    "DecisionType",
    "ExplanationBuilder",
    "FactorInfluence",
    "OutcomeKind",
    "ReasoningStep",
    "error_recovery",
    "tool_confidence",
]
