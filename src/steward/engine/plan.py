"""
Steward Plan Mode

Plan-first execution: a single LLM call turns the task into an
ExecutionPlan, the user reviews and edits it, and the agent then walks
the approved steps in order.

Generation is single-shot. The model is asked for a JSON array of steps;
on parse failure the whole task becomes a one-step plan.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from steward.core.models import RiskLevel, ToolDefinition
from steward.logging import get_logger

logger = get_logger("steward.plan")


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class PlanStatus(str, Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class PlanStep(BaseModel):
    index: int
    description: str
    tool: str | None = None
    args: dict[str, Any] | None = None
    risk_level: RiskLevel | None = None
    requires_approval: bool = False
    status: StepStatus = StepStatus.PENDING
    result: str | None = None
    error: str | None = None


class ExecutionPlan(BaseModel):
    goal: str
    summary: str = ""
    steps: list[PlanStep] = Field(default_factory=list)
    status: PlanStatus = PlanStatus.DRAFT
    current_step: int | None = None

    def reindex(self) -> None:
        for i, step in enumerate(self.steps):
            step.index = i

    def progress_summary(self) -> str:
        done = sum(1 for s in self.steps if s.status == StepStatus.COMPLETED)
        failed = sum(1 for s in self.steps if s.status == StepStatus.FAILED)
        text = f"{done}/{len(self.steps)} steps completed"
        if failed:
            text += f", {failed} failed"
        return text

    def render(self) -> str:
        lines = [f"Plan: {self.goal}"]
        if self.summary:
            lines.append(self.summary)
        for step in self.steps:
            tool = f" [{step.tool}]" if step.tool else ""
            lines.append(f"  {step.index + 1}. {step.description}{tool} ({step.status.value})")
        return "\n".join(lines)


# ─── Review decisions ──────────────────────────────────────

class PlanDecisionKind(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    EDIT_STEP = "edit_step"
    REMOVE_STEP = "remove_step"
    ADD_STEP = "add_step"
    REORDER_STEPS = "reorder_steps"
    ASK_QUESTION = "ask_question"


class PlanDecision(BaseModel):
    """Review outcome. Only the fields of ``kind`` are populated."""
    kind: PlanDecisionKind
    index: int | None = None
    text: str | None = None
    order: list[int] = Field(default_factory=list)

    @classmethod
    def approve(cls) -> PlanDecision:
        return cls(kind=PlanDecisionKind.APPROVE)

    @classmethod
    def reject(cls) -> PlanDecision:
        return cls(kind=PlanDecisionKind.REJECT)

    @classmethod
    def edit_step(cls, index: int, text: str) -> PlanDecision:
        return cls(kind=PlanDecisionKind.EDIT_STEP, index=index, text=text)

    @classmethod
    def remove_step(cls, index: int) -> PlanDecision:
        return cls(kind=PlanDecisionKind.REMOVE_STEP, index=index)

    @classmethod
    def add_step(cls, index: int, text: str) -> PlanDecision:
        return cls(kind=PlanDecisionKind.ADD_STEP, index=index, text=text)

    @classmethod
    def reorder_steps(cls, order: list[int]) -> PlanDecision:
        return cls(kind=PlanDecisionKind.REORDER_STEPS, order=order)

    @classmethod
    def ask_question(cls, question: str) -> PlanDecision:
        return cls(kind=PlanDecisionKind.ASK_QUESTION, text=question)

    @property
    def is_final(self) -> bool:
        return self.kind in (PlanDecisionKind.APPROVE, PlanDecisionKind.REJECT)


def apply_decision(plan: ExecutionPlan, decision: PlanDecision) -> None:
    """Apply an editing decision in place. Out-of-range indices are ignored."""
    steps = plan.steps
    if decision.kind == PlanDecisionKind.APPROVE:
        plan.status = PlanStatus.APPROVED
    elif decision.kind == PlanDecisionKind.REJECT:
        plan.status = PlanStatus.REJECTED
    elif decision.kind == PlanDecisionKind.EDIT_STEP:
        if decision.index is not None and 0 <= decision.index < len(steps):
            steps[decision.index].description = decision.text or ""
    elif decision.kind == PlanDecisionKind.REMOVE_STEP:
        if decision.index is not None and 0 <= decision.index < len(steps):
            del steps[decision.index]
    elif decision.kind == PlanDecisionKind.ADD_STEP:
        position = min(max(decision.index or 0, 0), len(steps))
        steps.insert(position, PlanStep(index=position, description=decision.text or ""))
    elif decision.kind == PlanDecisionKind.REORDER_STEPS:
        if sorted(decision.order) == list(range(len(steps))):
            plan.steps = [steps[i] for i in decision.order]
        else:
            logger.warning(f"Ignoring invalid step order {decision.order}")
    plan.reindex()


# ─── Generation ────────────────────────────────────────────

def build_plan_prompt(goal: str, tools: list[ToolDefinition], max_steps: int) -> str:
    tool_lines = "\n".join(f"  - {t.name}: {t.description}" for t in tools) or "  None"
    return f"""You are the planning engine for Steward, an autonomous assistant.

Break this task into a short, ordered plan of concrete steps.

TASK: {goal}

AVAILABLE TOOLS:
{tool_lines}

RULES:
1. Use at most {max_steps} steps; fewer is better.
2. When a step maps to exactly one tool call, name the tool and give its arguments.
3. Steps without a tool are reasoning steps handled by the assistant.

Respond with a JSON object:
{{
  "summary": "One sentence describing the approach",
  "steps": [
    {{"description": "Read the config file", "tool": "file_read", "args": {{"path": "config.toml"}}}},
    {{"description": "Summarize the settings", "tool": null, "args": null}}
  ]
}}

Return ONLY the JSON object, no other text."""


def parse_plan(text: str, goal: str, max_steps: int) -> ExecutionPlan:
    """Parse the model's plan response, truncating to ``max_steps``."""
    text = text.strip()
    start = text.find("{")
    end = text.rfind("}") + 1

    data: Any = None
    if start != -1 and end > 0:
        try:
            data = json.loads(text[start:end])
        except json.JSONDecodeError:
            data = None
    if data is None:
        # A bare JSON array of steps is also accepted
        list_start, list_end = text.find("["), text.rfind("]") + 1
        if list_start != -1 and list_end > 0:
            try:
                data = {"steps": json.loads(text[list_start:list_end])}
            except json.JSONDecodeError:
                data = None

    if not isinstance(data, dict) or not isinstance(data.get("steps"), list):
        logger.warning("Plan response was not valid JSON; using a single-step plan")
        return ExecutionPlan(
            goal=goal,
            summary="Execute the task as a single step (plan parse failed)",
            steps=[PlanStep(index=0, description=goal)],
        )

    steps: list[PlanStep] = []
    for item in data["steps"]:
        if isinstance(item, str):
            item = {"description": item}
        if not isinstance(item, dict):
            continue
        args = item.get("args")
        steps.append(
            PlanStep(
                index=len(steps),
                description=str(item.get("description", "Unnamed step")),
                tool=item.get("tool") or None,
                args=args if isinstance(args, dict) else None,
            )
        )

    if len(steps) > max_steps:
        logger.info(f"Truncating plan from {len(steps)} to {max_steps} steps")
        steps = steps[:max_steps]

    return ExecutionPlan(goal=goal, summary=str(data.get("summary", "")), steps=steps)
