"""Steward routing: expert selection, personas and classification-driven tool filtering."""

from steward.routing.moe import EXPERTS, SHARED_TOOLS, ExpertId, MoeRouter, RouteResult, ToolPrecision
from steward.routing.persona import PersonaId, PersonaResolver
from steward.routing.tool_filter import (
    CORE_TOOLS,
    ClassificationToolFilter,
    ToolCorrection,
    auto_correct_tool_call,
    routing_hint,
)

__all__ = [
    "CORE_TOOLS",
    "EXPERTS",
    "SHARED_TOOLS",
    "ClassificationToolFilter",
    "ExpertId",
    "MoeRouter",
    "PersonaId",
    "PersonaResolver",
    "RouteResult",
    "ToolCorrection",
    "ToolPrecision",
    "auto_correct_tool_call",
    "routing_hint",
]
