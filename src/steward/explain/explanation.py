"""
Steward Decision Explanations

Structured records of why the agent made a decision: the decision type,
a numbered reasoning chain, alternatives that were considered, context
factors and a confidence in [0, 1].

Tool-selection confidence starts from the tool's risk level and is
adjusted for prior use of the tool in this session, iteration pressure
and the active persona.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from steward.core.models import RiskLevel

BASE_CONFIDENCE: dict[RiskLevel, float] = {
    RiskLevel.READ_ONLY: 0.90,
    RiskLevel.WRITE: 0.75,
    RiskLevel.EXECUTE: 0.65,
    RiskLevel.NETWORK: 0.70,
    RiskLevel.DESTRUCTIVE: 0.45,
}

PRIOR_USE_ADJUSTMENT = 0.05
LONG_RUN_ITERATIONS = 10
LONG_RUN_PENALTY = 0.10
NEAR_LIMIT_RATIO = 0.8
NEAR_LIMIT_PENALTY = 0.05

REPLAN_STRATEGY = "Returning error to LLM for re-planning"


class DecisionKind(str, Enum):
    TOOL_SELECTION = "tool_selection"
    PARAMETER_CHOICE = "parameter_choice"
    TASK_DECOMPOSITION = "task_decomposition"
    ERROR_RECOVERY = "error_recovery"


class DecisionType(BaseModel):
    """Tagged decision type. Only the fields of ``kind`` are populated."""
    kind: DecisionKind
    selected_tool: str | None = None
    parameter: str | None = None
    sub_tasks: list[str] = Field(default_factory=list)
    error: str | None = None
    strategy: str | None = None

    @classmethod
    def tool_selection(cls, tool: str) -> DecisionType:
        return cls(kind=DecisionKind.TOOL_SELECTION, selected_tool=tool)

    @classmethod
    def parameter_choice(cls, tool: str, parameter: str) -> DecisionType:
        return cls(kind=DecisionKind.PARAMETER_CHOICE, selected_tool=tool, parameter=parameter)

    @classmethod
    def task_decomposition(cls, sub_tasks: list[str]) -> DecisionType:
        return cls(kind=DecisionKind.TASK_DECOMPOSITION, sub_tasks=sub_tasks)

    @classmethod
    def error_recovery(cls, error: str, strategy: str = REPLAN_STRATEGY) -> DecisionType:
        return cls(kind=DecisionKind.ERROR_RECOVERY, error=error, strategy=strategy)

    def describe(self) -> str:
        if self.kind == DecisionKind.TOOL_SELECTION:
            return f"Tool selection: {self.selected_tool}"
        if self.kind == DecisionKind.PARAMETER_CHOICE:
            return f"Parameter choice: {self.selected_tool}.{self.parameter}"
        if self.kind == DecisionKind.TASK_DECOMPOSITION:
            return f"Task decomposition: {', '.join(self.sub_tasks)}"
        return f"Error recovery: {self.error} ({self.strategy})"


class FactorInfluence(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class ReasoningStep(BaseModel):
    step_number: int
    description: str
    evidence: str | None = None


class AlternativeAction(BaseModel):
    tool_name: str
    reason_not_selected: str
    estimated_risk: RiskLevel


class ContextFactor(BaseModel):
    factor: str
    influence: FactorInfluence = FactorInfluence.NEUTRAL


class DecisionExplanation(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    decision_type: DecisionType
    reasoning_chain: list[ReasoningStep] = Field(default_factory=list)
    alternatives_considered: list[AlternativeAction] = Field(default_factory=list)
    context_factors: list[ContextFactor] = Field(default_factory=list)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    persona_hint: str | None = None

    @property
    def is_error_recovery(self) -> bool:
        return self.decision_type.kind == DecisionKind.ERROR_RECOVERY

    def summary(self) -> str:
        """First reasoning step, or the decision type when there is none."""
        if self.reasoning_chain:
            return self.reasoning_chain[0].description
        return self.decision_type.describe()

    def render(self) -> str:
        """Multi-line rendering used by the ``/why`` surface."""
        lines = [
            f"Decision: {self.decision_type.describe()}",
            f"Confidence: {self.confidence * 100:.0f}%",
        ]
        if self.persona_hint:
            lines.append(f"Persona: {self.persona_hint}")
        if self.reasoning_chain:
            lines.append("Reasoning:")
            lines.extend(f"  {s.step_number}. {s.description}" for s in self.reasoning_chain)
        if self.alternatives_considered:
            lines.append("Alternatives considered:")
            lines.extend(
                f"  - {a.tool_name} ({a.estimated_risk}): {a.reason_not_selected}"
                for a in self.alternatives_considered
            )
        if self.context_factors:
            lines.append("Context:")
            marks = {FactorInfluence.POSITIVE: "+", FactorInfluence.NEGATIVE: "-", FactorInfluence.NEUTRAL: "~"}
            lines.extend(f"  {marks[f.influence]} {f.factor}" for f in self.context_factors)
        return "\n".join(lines)


class ExplanationBuilder:
    """Incrementally assembles a DecisionExplanation."""

    def __init__(self, decision_type: DecisionType):
        self._explanation = DecisionExplanation(decision_type=decision_type)

    def add_reasoning_step(self, description: str, evidence: str | None = None) -> ExplanationBuilder:
        chain = self._explanation.reasoning_chain
        chain.append(ReasoningStep(step_number=len(chain) + 1, description=description, evidence=evidence))
        return self

    def add_alternative(self, tool_name: str, reason: str, risk: RiskLevel) -> ExplanationBuilder:
        self._explanation.alternatives_considered.append(
            AlternativeAction(tool_name=tool_name, reason_not_selected=reason, estimated_risk=risk)
        )
        return self

    def add_context_factor(
        self, factor: str, influence: FactorInfluence = FactorInfluence.NEUTRAL
    ) -> ExplanationBuilder:
        self._explanation.context_factors.append(ContextFactor(factor=factor, influence=influence))
        return self

    def set_confidence(self, confidence: float) -> ExplanationBuilder:
        self._explanation.confidence = min(max(confidence, 0.0), 1.0)
        return self

    def set_persona(self, persona: str | None) -> ExplanationBuilder:
        self._explanation.persona_hint = persona
        return self

    def build(self) -> DecisionExplanation:
        return self._explanation


def tool_confidence(
    risk_level: RiskLevel,
    *,
    prior_use: bool | None = None,
    iteration: int = 0,
    max_iterations: int = 0,
    persona_modifier: float = 0.0,
) -> float:
    """Confidence for selecting a tool.

    ``prior_use`` is True when the tool already succeeded in this session,
    False when its last execution failed and None when it is unused.
    """
    confidence = BASE_CONFIDENCE[risk_level]
    if prior_use is True:
        confidence += PRIOR_USE_ADJUSTMENT
    elif prior_use is False:
        confidence -= PRIOR_USE_ADJUSTMENT
    if iteration > LONG_RUN_ITERATIONS:
        confidence -= LONG_RUN_PENALTY
    if max_iterations and iteration / max_iterations > NEAR_LIMIT_RATIO:
        confidence -= NEAR_LIMIT_PENALTY
    confidence += persona_modifier
    return min(max(confidence, 0.0), 1.0)


def error_recovery(error: str, reasoning: str | None = None, persona: str | None = None) -> DecisionExplanation:
    """Explanation for a denial or violation that is handed back to the LLM."""
    builder = ExplanationBuilder(DecisionType.error_recovery(error))
    if reasoning:
        builder.add_reasoning_step(reasoning)
    return builder.set_confidence(1.0).set_persona(persona).build()
