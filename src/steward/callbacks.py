"""
Steward Agent Callbacks

The surface through which the agent talks to its host (a CLI, a UI, a
test). Every hook is async and optional: the base class implements each
one as a no-op. Approval defaults to Deny. Clarification defaults to an
empty answer and plan review to Approve.

Subclass AgentCallback and override only what you need.
"""

from __future__ import annotations

from typing import Any

from steward.core.models import (
    AgentStatus,
    BudgetSeverity,
    CompressionEvent,
    ContextHealthEvent,
    CostEstimate,
    ProgressUpdate,
    TokenUsage,
    ToolOutput,
)
from steward.engine.plan import ExecutionPlan, PlanDecision, PlanStep
from steward.explain.explanation import DecisionExplanation
from steward.safety.action_details import ActionRequest, ApprovalDecision


class AgentCallback:
    """No-op base for agent event sinks."""

    async def on_assistant_message(self, message: str) -> None:
        pass

    async def on_token(self, token: str) -> None:
        pass

    async def on_approval_requested(self, action: ActionRequest) -> ApprovalDecision:
        return ApprovalDecision.DENY

    async def on_tool_start(self, tool_name: str, arguments: dict[str, Any]) -> None:
        pass

    async def on_tool_result(self, tool_name: str, output: ToolOutput, duration_ms: int) -> None:
        pass

    async def on_status_change(self, status: AgentStatus) -> None:
        pass

    async def on_usage_update(self, usage: TokenUsage, cost: CostEstimate) -> None:
        pass

    async def on_decision_explanation(self, explanation: DecisionExplanation) -> None:
        pass

    async def on_budget_warning(self, message: str, severity: BudgetSeverity) -> None:
        pass

    async def on_progress(self, progress: ProgressUpdate) -> None:
        pass

    async def on_clarification_request(self, question: str) -> str:
        return ""

    async def on_iteration_start(self, iteration: int, max_iterations: int) -> None:
        pass

    async def on_cost_prediction(self, estimated_tokens: int, estimated_cost: float) -> None:
        pass

    async def on_context_health(self, event: ContextHealthEvent) -> None:
        pass

    async def on_context_compressed(self, event: CompressionEvent) -> None:
        pass

    async def on_channel_digest(self, digest: str) -> None:
        pass

    async def on_channel_alert(self, channel: str, message: str) -> None:
        pass

    async def on_reminder(self, message: str) -> None:
        pass

    # ─── Plan mode ─────────────────────────────────────────

    async def on_plan_generating(self, goal: str) -> None:
        pass

    async def on_plan_review(self, plan: ExecutionPlan) -> PlanDecision:
        return PlanDecision.approve()

    async def on_plan_step_start(self, index: int, step: PlanStep) -> None:
        pass

    async def on_plan_step_complete(self, index: int, step: PlanStep) -> None:
        pass


class RecordingCallback(AgentCallback):
    """Records every event it receives. Used by tests and for replay.

    ``approval_decision`` is returned for every approval request,
    ``clarification_answer`` for every clarification and the queued
    ``plan_decisions`` (then Approve) for plan reviews.
    """

    def __init__(
        self,
        approval_decision: ApprovalDecision = ApprovalDecision.APPROVE,
        clarification_answer: str = "",
        plan_decisions: list[PlanDecision] | None = None,
    ):
        self.approval_decision = approval_decision
        self.clarification_answer = clarification_answer
        self.plan_decisions = list(plan_decisions or [])

        self.messages: list[str] = []
        self.tokens: list[str] = []
        self.approvals: list[ActionRequest] = []
        self.tool_calls: list[tuple[str, dict[str, Any]]] = []
        self.tool_results: list[tuple[str, ToolOutput]] = []
        self.status_changes: list[AgentStatus] = []
        self.usage_updates: list[TokenUsage] = []
        self.explanations: list[DecisionExplanation] = []
        self.budget_warnings: list[tuple[str, BudgetSeverity]] = []
        self.progress: list[ProgressUpdate] = []
        self.clarifications: list[str] = []
        self.iterations: list[int] = []
        self.cost_predictions: list[tuple[int, float]] = []
        self.context_health_events: list[ContextHealthEvent] = []
        self.compressions: list[CompressionEvent] = []
        self.plans: list[ExecutionPlan] = []
        self.plan_steps_started: list[int] = []
        self.plan_steps_completed: list[PlanStep] = []
        # Ordered trace of hook names, for ordering assertions
        self.events: list[str] = []

    async def on_assistant_message(self, message: str) -> None:
        self.events.append("assistant_message")
        self.messages.append(message)

    async def on_token(self, token: str) -> None:
        self.tokens.append(token)

    async def on_approval_requested(self, action: ActionRequest) -> ApprovalDecision:
        self.events.append("approval_requested")
        self.approvals.append(action)
        return self.approval_decision

    async def on_tool_start(self, tool_name: str, arguments: dict[str, Any]) -> None:
        self.events.append("tool_start")
        self.tool_calls.append((tool_name, arguments))

    async def on_tool_result(self, tool_name: str, output: ToolOutput, duration_ms: int) -> None:
        self.events.append("tool_result")
        self.tool_results.append((tool_name, output))

    async def on_status_change(self, status: AgentStatus) -> None:
        self.events.append("status_change")
        self.status_changes.append(status)

    async def on_usage_update(self, usage: TokenUsage, cost: CostEstimate) -> None:
        self.events.append("usage_update")
        self.usage_updates.append(usage)

    async def on_decision_explanation(self, explanation: DecisionExplanation) -> None:
        self.events.append("decision_explanation")
        self.explanations.append(explanation)

    async def on_budget_warning(self, message: str, severity: BudgetSeverity) -> None:
        self.events.append("budget_warning")
        self.budget_warnings.append((message, severity))

    async def on_progress(self, progress: ProgressUpdate) -> None:
        self.progress.append(progress)

    async def on_clarification_request(self, question: str) -> str:
        self.events.append("clarification_request")
        self.clarifications.append(question)
        return self.clarification_answer

    async def on_iteration_start(self, iteration: int, max_iterations: int) -> None:
        self.events.append("iteration_start")
        self.iterations.append(iteration)

    async def on_cost_prediction(self, estimated_tokens: int, estimated_cost: float) -> None:
        self.events.append("cost_prediction")
        self.cost_predictions.append((estimated_tokens, estimated_cost))

    async def on_context_health(self, event: ContextHealthEvent) -> None:
        self.events.append("context_health")
        self.context_health_events.append(event)

    async def on_context_compressed(self, event: CompressionEvent) -> None:
        self.events.append("context_compressed")
        self.compressions.append(event)

    async def on_plan_generating(self, goal: str) -> None:
        self.events.append("plan_generating")

    async def on_plan_review(self, plan: ExecutionPlan) -> PlanDecision:
        self.events.append("plan_review")
        self.plans.append(plan.model_copy(deep=True))
        if self.plan_decisions:
            return self.plan_decisions.pop(0)
        return PlanDecision.approve()

    async def on_plan_step_start(self, index: int, step: PlanStep) -> None:
        self.events.append("plan_step_start")
        self.plan_steps_started.append(index)

    async def on_plan_step_complete(self, index: int, step: PlanStep) -> None:
        self.events.append("plan_step_complete")
        self.plan_steps_completed.append(step.model_copy())
