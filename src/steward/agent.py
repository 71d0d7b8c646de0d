"""
Steward Agent Orchestrator

The Think → Act → Observe loop. ``Agent.process_task`` is the single
entry point: it prepares the prompt for the task (persona, expert
routing, tool-routing hint, repository context, learned rules), then
iterates until the LLM answers with plain text.

Each iteration:
1. Checks cancellation and the iteration bound
2. Emits context-health events as the conversation approaches the window
3. Checks the budget and predicts the cost of the next call
4. Verifies provider consent
5. Thinks (streaming or batch, with retry on transient errors)
6. Dispatches the assistant message: text ends the task, tool calls are
   explained, safety-checked, executed and observed

Tool failures never abort the loop; they are handed back to the LLM as
error results so it can re-plan. Agent and LLM errors set the state to
Error and propagate to the caller.

Usage:
    from steward import Agent, AgentConfig
    from steward.providers import create_provider

    agent = Agent(create_provider("claude"), AgentConfig())
    agent.register_builtin_tools()
    result = await agent.process_task("Summarize README.md")
"""

from __future__ import annotations

import json
import time
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from steward.callbacks import AgentCallback
from steward.config import AgentConfig
from steward.core.cancellation import CancellationToken
from steward.core.classification import TaskClassification, classify
from steward.core.models import (
    EXTENDED_CONTENT_TYPES,
    AgentState,
    AgentStatus,
    BudgetSeverity,
    ContextHealthEvent,
    ContextHealthLevel,
    CostEstimate,
    Message,
    MultiPartContent,
    ProgressUpdate,
    RiskLevel,
    TaskResult,
    TextContent,
    ThinkingContent,
    TokenUsage,
    ToolCallContent,
    ToolDefinition,
    ToolOutput,
    ToolResultContent,
    summarize_content,
)
from steward.engine.brain import Brain
from steward.engine.budget import BudgetCheckStatus, TokenBudgetManager, ToolTokenMeter
from steward.engine.hydration import ContextHydrator
from steward.engine.plan import (
    ExecutionPlan,
    PlanDecisionKind,
    PlanStatus,
    StepStatus,
    apply_decision,
    build_plan_prompt,
    parse_plan,
)
from steward.engine.scheduler import HeartbeatScheduler, SchedulerState
from steward.engine.verification import format_feedback, run_verification, should_verify
from steward.exceptions import (
    AgentError,
    BudgetExceededError,
    LlmError,
    MaxIterationsReachedError,
    PermissionDeniedError,
    TaskCancelledError,
    ToolError,
)
from steward.explain.decision_log import DecisionLog, DecisionOutcome, DecisionRecord, OutcomeKind
from steward.explain.explanation import (
    DecisionExplanation,
    DecisionType,
    ExplanationBuilder,
    FactorInfluence,
    error_recovery,
    tool_confidence,
)
from steward.logging import get_logger
from steward.memory.knowledge import KnowledgeDistiller
from steward.memory.long_term import Fact, LongTermMemory
from steward.memory.summarizer import ContextSummarizer
from steward.memory.system import ContextBreakdown, MemorySystem
from steward.observability.metrics import measure_task_duration, record_task_complete, record_tool_call
from steward.observability.tracing import get_tracer
from steward.providers import provider_from_config
from steward.providers.base import LlmProvider
from steward.routing.moe import MoeRouter, RouteResult, strip_irrelevant_sections
from steward.routing.persona import PersonaResolver
from steward.routing.tool_filter import ClassificationToolFilter, auto_correct_tool_call, routing_hint
from steward.safety.action_details import (
    ApprovalDecision,
    PermissionOutcome,
    create_action_request,
)
from steward.safety.consent import ConsentManager
from steward.safety.contracts import ContractEnforcer, SafetyContract
from steward.safety.guardian import SafetyGuardian
from steward.safety.redact import redact
from steward.storage.store import SCHEDULER_STATE_KEY, StateStore
from steward.tools.builtin import register_all_builtins
from steward.tools.registry import ASK_USER_DEFINITION, ASK_USER_TOOL, RegisteredTool, ToolRegistry

logger = get_logger("steward.agent")

CONTEXT_WARNING_RATIO = 0.70
CONTEXT_CRITICAL_RATIO = 0.90
_HEALTH_RANK = {
    ContextHealthLevel.HEALTHY: 0,
    ContextHealthLevel.WARNING: 1,
    ContextHealthLevel.CRITICAL: 2,
}

FACT_MIN_CHARS = 10
FACT_MAX_CHARS = 5000
FACT_SUMMARY_CHARS = 200

DENIED_BY_USER = "User denied this action"
USER_REJECTED_REASON = "User rejected the action"

Classifier = Callable[[str], "TaskClassification | None"]


class Agent:
    """Autonomous agent orchestrator.

    Owns the state, memory, safety guardian, tool registry, budget
    manager and decision log. The provider and the callback are shared
    with the streaming producer task.
    """

    def __init__(
        self,
        provider: LlmProvider,
        config: AgentConfig | None = None,
        callback: AgentCallback | None = None,
        *,
        contract: SafetyContract | None = None,
        store: StateStore | None = None,
        classifier: Classifier = classify,
    ):
        self.config = config or AgentConfig()
        self.provider = provider
        self.callback = callback or AgentCallback()
        self.classifier = classifier

        cfg = self.config
        if store is None and cfg.storage.db_path:
            store = StateStore(cfg.storage.db_path)
        self.store = store

        long_term = LongTermMemory(
            max_facts=cfg.memory.max_facts,
            max_corrections=cfg.memory.max_corrections,
            store=store,
        )
        if store is not None:
            long_term.load()
        self.memory = MemorySystem(cfg.memory, long_term)
        self.summarizer = ContextSummarizer(provider)
        self.brain = Brain(provider, cfg.system_prompt, cfg.llm.temperature, cfg.llm.max_tokens)
        self.safety = SafetyGuardian(cfg.safety, contract)
        self.tools = ToolRegistry()
        self.state = AgentState(max_iterations=cfg.safety.max_iterations)
        self.budget = TokenBudgetManager(cfg.budget)
        self.tool_meter = ToolTokenMeter()
        self.decisions = DecisionLog(store)
        self.knowledge = KnowledgeDistiller(cfg.knowledge)
        self.router = MoeRouter(cfg.moe)
        self.personas = PersonaResolver(cfg.persona)
        self.tool_filter = ClassificationToolFilter()
        self.hydrator = ContextHydrator(cfg.hydration)
        self.scheduler = HeartbeatScheduler(cfg.scheduler)
        self.consent: ConsentManager | None = None
        if cfg.consent.enabled:
            self.consent = ConsentManager(cfg.consent, store)
            self.consent.load()

        self.cancel_token = CancellationToken()
        self.plan_mode = cfg.plan.enabled
        self.current_plan: ExecutionPlan | None = None

        self._classification_cache: dict[str, TaskClassification | None] = {}
        self._route: RouteResult | None = None
        self._tool_outcomes: dict[str, bool] = {}
        self._failure_tool: str | None = None
        self._failure_count = 0
        self._health_level = ContextHealthLevel.HEALTHY
        self._reported_status: AgentStatus | None = None

    @classmethod
    def from_config(
        cls,
        config: AgentConfig,
        callback: AgentCallback | None = None,
        **kwargs: Any,
    ) -> Agent:
        """Build an agent whose provider comes from the ``llm`` config group."""
        return cls(provider_from_config(config.llm), config, callback, **kwargs)

    # ─── Tools ─────────────────────────────────────────────

    def register_tool(self, tool: RegisteredTool) -> None:
        self.tools.register(tool)
        self.tool_filter.invalidate()

    def register_builtin_tools(self) -> None:
        register_all_builtins(self.tools)
        self.tool_filter.invalidate()

    def tool_definitions(self) -> list[ToolDefinition]:
        """Definitions sent to the LLM, filtered by the current classification."""
        definitions = [*self.tools.definitions(), ASK_USER_DEFINITION]
        return self.tool_filter.filter(definitions, self.state.task_classification)

    def set_contract(self, contract: SafetyContract | None) -> None:
        self.safety.contracts = ContractEnforcer(contract)

    def set_plan_mode(self, enabled: bool) -> None:
        self.plan_mode = enabled

    # ─── Cancellation ──────────────────────────────────────

    def cancel(self) -> None:
        self.cancel_token.cancel()

    def reset_cancellation(self) -> None:
        """Required after a cancellation before the agent can run another task."""
        self.cancel_token.reset()

    # ─── Entry point ───────────────────────────────────────

    async def process_task(self, task: str) -> TaskResult:
        """Run a task to completion.

        Raises TaskCancelledError, MaxIterationsReachedError,
        BudgetExceededError, ConsentRequiredError or an LlmError once
        retries are exhausted.
        """
        with measure_task_duration() as outcome:
            with get_tracer().start_as_current_span("steward.task") as span:
                try:
                    if self.plan_mode:
                        result = await self._run_plan(task)
                    else:
                        result = await self._run_loop(task)
                except (AgentError, LlmError) as e:
                    self.state.set_error()
                    await self._set_status(AgentStatus.ERROR)
                    record_task_complete(success=False, iterations=self.state.iteration)
                    span.set_attribute("steward.error", str(e))
                    logger.warning(
                        f"Task failed: {e}",
                        extra={"task_id": self.state.task_id, "iteration": self.state.iteration},
                    )
                    raise
                span.set_attribute("steward.task_id", result.task_id)
                span.set_attribute("steward.iterations", result.iterations)
                outcome["success"] = result.success
        record_task_complete(success=result.success, iterations=result.iterations)
        return result

    async def _begin_task(self, task: str) -> str:
        if self.cancel_token.is_cancelled:
            raise TaskCancelledError()

        task_id = self.state.start_task(task)
        self.budget.reset_task()
        self.tool_meter.reset()
        self._failure_tool, self._failure_count = None, 0
        self.memory.set_goal(task)
        logger.info(f"Starting task: {task[:100]}", extra={"task_id": task_id})

        classification = self._classify(task)
        self.state.task_classification = classification
        self._prepare_prompt(task, classification)
        # Warm the per-classification definition cache
        self.tool_definitions()

        self.memory.add_message(Message.user(task))
        self._reported_status = None
        await self._set_status(AgentStatus.THINKING)
        return task_id

    def _classify(self, task: str) -> TaskClassification | None:
        if task not in self._classification_cache:
            self._classification_cache[task] = self.classifier(task) if task.strip() else None
        return self._classification_cache[task]

    def _prepare_prompt(self, task: str, classification: TaskClassification | None) -> None:
        self.knowledge.distill(self.memory.long_term)
        self.brain.set_knowledge_addendum(self.knowledge.rules_for_prompt())

        prompt = self.config.system_prompt
        self._route = None
        if self.router.enabled and task.strip():
            self._route = self.router.route(task, classification)
            prompt = strip_irrelevant_sections(prompt, self._route.prompt_exclusions())

        addenda = []
        if self.config.persona.enabled:
            addenda.append(self.personas.prompt_addendum(classification))
        if self._route is not None:
            addenda.append(self._route.system_prompt_addendum)
            self._explain_route(self._route)
        prompt += "".join(f"\n\n{a}" for a in addenda if a)
        prompt += routing_hint(classification)
        if self.config.hydration.enabled:
            prompt += self.hydrator.hydrate(task)
        self.brain.system_prompt = prompt

    def _explain_route(self, route: RouteResult) -> None:
        experts = [e.value for e, _ in route.selected_experts]
        explanation = (
            ExplanationBuilder(DecisionType.task_decomposition(experts))
            .add_reasoning_step(f"Routed to expert '{route.primary_expert.value}'", route.routing_reasoning)
            .set_confidence(route.confidence)
            .build()
        )
        self.decisions.add_explanation(explanation)
        self.decisions.record(DecisionRecord(
            iteration=0,
            action=f"Route: {', '.join(experts)}",
            reasoning=route.routing_reasoning,
            outcome=DecisionOutcome.of(OutcomeKind.AUTO_APPROVED),
            expert=route.primary_expert.value,
            confidence=route.confidence,
        ))

    # ─── Iteration loop ────────────────────────────────────

    async def _run_loop(self, task: str) -> TaskResult:
        task_id = await self._begin_task(task)
        while True:
            final = await self._iterate()
            if final is not None:
                break
        return await self._finish(task_id, final, success=True)

    async def _finish(self, task_id: str, response: str, success: bool) -> TaskResult:
        self.state.complete()
        await self._set_status(AgentStatus.COMPLETE)
        logger.info(
            f"Task completed in {self.state.iteration} iterations, "
            f"{self.brain.total_usage.total} tokens, ${self.brain.total_cost.total:.4f}",
            extra={"task_id": task_id},
        )
        return TaskResult(
            task_id=task_id,
            success=success,
            response=response,
            iterations=self.state.iteration,
            total_usage=self.brain.total_usage.model_copy(),
            total_cost=self.brain.total_cost.model_copy(),
        )

    async def _iterate(self) -> str | None:
        """Run one iteration. Returns the final response when the task is done."""
        if self.cancel_token.is_cancelled:
            raise TaskCancelledError()
        if self.state.iteration >= self.state.max_iterations:
            logger.warning(
                "Maximum iterations reached",
                extra={"task_id": self.state.task_id, "iteration": self.state.iteration},
            )
            raise MaxIterationsReachedError(self.state.max_iterations)
        self.state.increment_iteration()
        iteration = self.state.iteration
        await self.callback.on_iteration_start(iteration, self.state.max_iterations)
        logger.debug("Agent loop iteration", extra={"task_id": self.state.task_id, "iteration": iteration})

        with get_tracer().start_as_current_span("steward.iteration") as span:
            span.set_attribute("steward.iteration", iteration)
            await self._set_status(AgentStatus.THINKING)

            conversation = self.memory.context_messages()
            tools = self.tool_definitions()
            await self._check_context_health(conversation, tools)
            estimated_tokens, predicted_cost = await self._check_budget(conversation, tools)
            if self.consent is not None:
                self.consent.ensure_provider(self.provider.name)
            if predicted_cost > self.config.budget.cost_prediction_threshold:
                await self.callback.on_cost_prediction(estimated_tokens, predicted_cost)

            response = await self.brain.think_with_retry(
                conversation,
                tools,
                self._route.precision_hints() if self._route else None,
                streaming=self.config.llm.use_streaming,
                on_token=self.callback.on_token,
                cancel_token=self.cancel_token,
            )
            self.budget.record_usage(response.usage, _cost_of(response.usage, self.provider))
            await self.callback.on_usage_update(self.brain.total_usage, self.brain.total_cost)

            self.state.status = AgentStatus.DECIDING
            return await self._dispatch(response.message)

    async def _dispatch(self, message: Message) -> str | None:
        content = message.content

        if isinstance(content, TextContent):
            await self.callback.on_assistant_message(content.text)
            self.memory.add_message(message)
            return content.text

        if isinstance(content, ToolCallContent):
            self.memory.add_message(message)
            await self._handle_tool_call(content)
            await self._compress()
            return None

        if isinstance(content, MultiPartContent):
            self.memory.add_message(message)
            texts: list[str] = []
            has_tool_call = False
            for part in content.parts:
                if isinstance(part, TextContent):
                    await self.callback.on_assistant_message(part.text)
                    texts.append(part.text)
                elif isinstance(part, ToolCallContent):
                    has_tool_call = True
                    await self._handle_tool_call(part)
            if not has_tool_call:
                return "\n".join(texts)
            await self._compress()
            return None

        if isinstance(content, ThinkingContent):
            self.memory.add_message(message)
            return None

        if isinstance(content, ToolResultContent):
            logger.warning("Received unexpected tool result from the LLM", extra={"task_id": self.state.task_id})
            return ""

        if isinstance(content, EXTENDED_CONTENT_TYPES):
            summary = summarize_content(content)
            await self.callback.on_assistant_message(summary)
            self.memory.add_message(message)
            return summary

        logger.warning(f"Unhandled content type: {type(content).__name__}")
        return ""

    # ─── Pre-call checks ───────────────────────────────────

    async def _check_context_health(self, conversation: list[Message], tools: list[ToolDefinition]) -> None:
        window = self.provider.context_window()
        used = self.brain.estimate_tokens(conversation, tools)
        ratio = used / max(window, 1)
        if ratio >= CONTEXT_CRITICAL_RATIO:
            level = ContextHealthLevel.CRITICAL
            hint = "Context is nearly full. Run /compact or start a new session."
        elif ratio >= CONTEXT_WARNING_RATIO:
            level = ContextHealthLevel.WARNING
            hint = "Context usage is high. Consider /compact."
        else:
            level, hint = ContextHealthLevel.HEALTHY, ""

        # Each threshold is reported once; dropping back to healthy re-arms both
        if level == ContextHealthLevel.HEALTHY:
            self._health_level = level
            return
        if _HEALTH_RANK[level] <= _HEALTH_RANK[self._health_level]:
            return
        self._health_level = level
        await self.callback.on_context_health(ContextHealthEvent(
            level=level,
            usage_percent=int(ratio * 100),
            tokens_used=used,
            context_window=window,
            hint=hint,
        ))

    async def _check_budget(
        self, conversation: list[Message], tools: list[ToolDefinition]
    ) -> tuple[int, float]:
        estimated = self.brain.estimate_tokens(conversation, tools)
        check = self.budget.check_budget(estimated, self.provider.cost_rates())
        if check.status != BudgetCheckStatus.OK:
            message = check.message + self.tool_meter.describe_top(3)
            if check.status == BudgetCheckStatus.EXCEEDED:
                await self.callback.on_budget_warning(message, BudgetSeverity.EXCEEDED)
                if self.budget.should_halt_on_exceed:
                    logger.warning(f"Budget exceeded, halting: {message}", extra={"task_id": self.state.task_id})
                    raise BudgetExceededError(message)
                logger.warning(f"Budget exceeded (soft): {message}", extra={"task_id": self.state.task_id})
            else:
                await self.callback.on_budget_warning(message, BudgetSeverity.WARNING)
        return estimated, check.predicted_cost

    # ─── Tool calls ────────────────────────────────────────

    async def _handle_tool_call(self, call: ToolCallContent) -> None:
        name, arguments = call.name, call.arguments

        explanation = self._explain_tool_selection(name, arguments)
        await self._emit_explanation(explanation)
        risk = self._risk_of(name)
        record_id = self.decisions.record(DecisionRecord(
            iteration=self.state.iteration,
            action=f"Tool: {name}",
            reasoning=explanation.summary(),
            risk_level=str(risk),
            alternatives=[a.tool_name for a in explanation.alternatives_considered],
            persona=explanation.persona_hint,
            expert=self._route.primary_expert.value if self._route else None,
            confidence=explanation.confidence,
        ))

        correction = auto_correct_tool_call(
            self.state.task_classification,
            name,
            arguments,
            self.state.current_goal or "",
            self.tools.names(),
        )
        if correction is not None:
            name, arguments = correction.tool_name, correction.arguments
            logger.info(correction.describe(), extra={"tool_name": name, "task_id": self.state.task_id})
            await self.callback.on_progress(ProgressUpdate(stage="auto_correct", message=correction.describe()))

        try:
            output = await self._execute_tool(name, arguments, record_id)
            payload, is_error = output.content, output.is_error
        except ToolError as e:
            payload, is_error = f"Tool error: {e}", True

        self.memory.add_message(Message.tool_result(call.id, payload, is_error))
        self.tool_meter.charge(name, len(payload) // 4)
        self._track_outcome(name, not is_error)
        record = self.decisions.get(record_id)
        if record is not None and record.outcome.kind not in (OutcomeKind.USER_DENIED, OutcomeKind.SAFETY_DENIED):
            kind = OutcomeKind.FAILED if is_error else OutcomeKind.SUCCEEDED
            self.decisions.update_outcome(record_id, DecisionOutcome.of(kind, payload[:200] if is_error else None))

        if not is_error and should_verify(self.config.verification, name):
            await self._verify()

    async def _verify(self) -> None:
        result = await run_verification(self.config.verification)
        if result.passed:
            return
        feedback = format_feedback(result, self.config.verification.max_feedback_chars)
        # Synthetic call/result pair so tool-call pairing stays intact for every provider
        call_id = f"verify_{uuid.uuid4().hex[:12]}"
        self.memory.add_message(Message.tool_call(call_id, "verification", {"commands": self.config.verification.commands}))
        self.memory.add_message(Message.tool_result(call_id, feedback, is_error=True))

    def _track_outcome(self, name: str, success: bool) -> None:
        self._tool_outcomes[name] = success
        if success:
            self._failure_tool, self._failure_count = None, 0
        elif self._failure_tool == name:
            self._failure_count += 1
        else:
            self._failure_tool, self._failure_count = name, 1
        if self._failure_count >= 3:
            logger.warning(
                f"Tool '{name}' failed {self._failure_count} times in a row",
                extra={"tool_name": name, "task_id": self.state.task_id},
            )

    @property
    def consecutive_failures(self) -> tuple[str | None, int]:
        """The tool currently failing repeatedly and its streak length."""
        return self._failure_tool, self._failure_count

    async def _execute_tool(
        self, name: str, arguments: dict[str, Any], record_id: int | None = None
    ) -> ToolOutput:
        """Execute a tool through the safety pipeline.

        Raises ToolError for unknown tools, denials, contract violations
        and execution failures.
        """
        if name == ASK_USER_TOOL:
            return await self._ask_user(arguments)

        tool = self.tools.require(name)
        action = create_action_request(name, tool.risk_level, arguments)
        persona = self._persona_label()
        permission = self.safety.check_permission(action)

        if permission.outcome == PermissionOutcome.DENIED:
            await self._emit_explanation(error_recovery(
                f"Permission denied for tool '{name}'", f"Denied: {permission.reason}", persona
            ))
            self._set_outcome(record_id, OutcomeKind.SAFETY_DENIED, permission.reason)
            record_tool_call(tool_name=name, allowed=False, risk_level=str(tool.risk_level))
            raise PermissionDeniedError(name, permission.reason)

        if permission.outcome == PermissionOutcome.REQUIRES_APPROVAL:
            await self._set_status(AgentStatus.WAITING_FOR_APPROVAL)
            decision = await self.callback.on_approval_requested(action)
            self.safety.log_approval_decision(action, decision, self.state.task_id)
            if decision == ApprovalDecision.DENY:
                self._record_denial(name, arguments)
                await self._emit_explanation(error_recovery(
                    f"User denied approval for tool '{name}'",
                    "User rejected the action in approval dialog",
                    persona,
                ))
                self._set_outcome(record_id, OutcomeKind.USER_DENIED)
                record_tool_call(tool_name=name, allowed=False, risk_level=str(tool.risk_level))
                raise PermissionDeniedError(name, USER_REJECTED_REASON)
            if decision == ApprovalDecision.APPROVE_ALL_SIMILAR:
                self.safety.add_session_allowlist(name, tool.risk_level)
            self._set_outcome(record_id, OutcomeKind.USER_APPROVED)
        else:
            self._set_outcome(record_id, OutcomeKind.AUTO_APPROVED)

        contract = self.safety.check_contract(action)
        if not contract.satisfied:
            await self._emit_explanation(error_recovery(
                f"Safety contract violation: {contract.describe()}",
                "Safety contract blocked the action",
                persona,
            ))
            self._set_outcome(record_id, OutcomeKind.SAFETY_DENIED, contract.describe())
            record_tool_call(tool_name=name, allowed=False, risk_level=str(tool.risk_level))
            raise PermissionDeniedError(name, f"Safety contract violation: {contract.describe()}")

        await self._set_status(AgentStatus.EXECUTING)
        await self.callback.on_tool_start(name, arguments)
        record_tool_call(tool_name=name, allowed=True, risk_level=str(tool.risk_level))

        start = time.monotonic()
        with get_tracer().start_as_current_span("steward.tool_call") as span:
            span.set_attribute("steward.tool_name", name)
            span.set_attribute("steward.risk_level", str(tool.risk_level))
            try:
                output = await tool.execute(arguments)
            except ToolError as e:
                duration_ms = int((time.monotonic() - start) * 1000)
                self.safety.log_execution(action, False, duration_ms, self.state.task_id)
                await self.callback.on_tool_result(name, ToolOutput.error(str(e)), duration_ms)
                logger.warning(
                    f"Tool failed: {e}",
                    extra={"tool_name": name, "duration_ms": duration_ms, "task_id": self.state.task_id},
                )
                raise
        duration_ms = int((time.monotonic() - start) * 1000)

        self.safety.log_execution(action, not output.is_error, duration_ms, self.state.task_id)
        await self.callback.on_tool_result(name, output, duration_ms)
        logger.info(
            "Tool executed",
            extra={
                "tool_name": name,
                "risk_level": str(tool.risk_level),
                "duration_ms": duration_ms,
                "task_id": self.state.task_id,
            },
        )
        if not output.is_error:
            self._record_fact(name, output.content)
        return output

    async def _ask_user(self, arguments: dict[str, Any]) -> ToolOutput:
        question = str(arguments.get("question", ""))
        await self._set_status(AgentStatus.WAITING_FOR_CLARIFICATION)
        answer = await self.callback.on_clarification_request(question)
        return ToolOutput.text(answer)

    def _record_fact(self, name: str, content: str) -> None:
        if not FACT_MIN_CHARS <= len(content) <= FACT_MAX_CHARS:
            return
        summary = redact(content)
        if len(summary) > FACT_SUMMARY_CHARS:
            summary = summary[:FACT_SUMMARY_CHARS] + "..."
        self.memory.long_term.add_fact(Fact(
            content=f"Tool '{name}' result: {summary}",
            source=f"tool:{name}",
            tags=["tool_result", name],
        ))

    def _record_denial(self, name: str, arguments: dict[str, Any]) -> None:
        attempted = json.dumps(arguments, default=str)[:200]
        self.memory.long_term.add_correction(
            original=f"Attempted tool '{name}' with args: {attempted}",
            corrected=DENIED_BY_USER,
            context=f"Tool '{name}' denied by user; goal: {self.state.current_goal or ''}",
        )

    def _set_outcome(self, record_id: int | None, kind: OutcomeKind, detail: str | None = None) -> None:
        if record_id is not None:
            self.decisions.update_outcome(record_id, DecisionOutcome.of(kind, detail))

    # ─── Explanations ──────────────────────────────────────

    def _risk_of(self, name: str) -> RiskLevel:
        if name == ASK_USER_TOOL:
            return RiskLevel.READ_ONLY
        return self.tools.risk_level(name) or RiskLevel.EXECUTE

    def _persona_label(self) -> str | None:
        if not self.config.persona.enabled:
            return None
        return self.personas.profile(self.state.task_classification).label

    def _explain_tool_selection(self, name: str, arguments: dict[str, Any]) -> DecisionExplanation:
        risk = self._risk_of(name)
        builder = ExplanationBuilder(DecisionType.tool_selection(name))
        builder.add_reasoning_step(f"Selected tool '{name}' (risk: {risk})")
        if arguments:
            builder.add_reasoning_step(
                f"Parameters: {', '.join(arguments)}", json.dumps(arguments, default=str)
            )

        if self.state.current_goal:
            builder.add_context_factor(f"Current goal: {self.state.current_goal}", FactorInfluence.POSITIVE)
        builder.add_context_factor(f"Approval mode: {self.safety.approval_mode.value}")
        iteration, max_iterations = self.state.iteration, self.state.max_iterations
        near_limit = max_iterations > 0 and iteration / max_iterations > 0.8
        builder.add_context_factor(
            f"Iteration {iteration}/{max_iterations}",
            FactorInfluence.NEGATIVE if near_limit else FactorInfluence.NEUTRAL,
        )

        for tool in self.tools.get_all():
            if tool.name != name and tool.risk_level <= risk:
                builder.add_alternative(tool.name, "Not selected by LLM for this step", tool.risk_level)

        classification = self.state.task_classification
        modifier = self.personas.confidence_modifier(classification) if self.config.persona.enabled else 0.0
        builder.set_confidence(tool_confidence(
            risk,
            prior_use=self._tool_outcomes.get(name),
            iteration=iteration,
            max_iterations=max_iterations,
            persona_modifier=modifier,
        ))
        builder.set_persona(self._persona_label())
        return builder.build()

    async def _emit_explanation(self, explanation: DecisionExplanation) -> None:
        self.decisions.add_explanation(explanation)
        await self.callback.on_decision_explanation(explanation)

    def explain_last(self) -> str:
        """Rendering of the most recent explanation (``/why``)."""
        return self.decisions.explain_last()

    def format_decisions(self, n: int = 10) -> str:
        """The ``n`` most recent decision records (``/decisions``)."""
        return self.decisions.format_recent(n)

    # ─── Memory ────────────────────────────────────────────

    async def _compress(self) -> None:
        event = await self.memory.check_and_compress(self.summarizer)
        if event is not None:
            await self.callback.on_context_compressed(event)

    def compact(self) -> tuple[int, int]:
        """Compress short-term memory now, without an LLM round-trip (``/compact``)."""
        before, after = self.memory.compact()
        self._health_level = ContextHealthLevel.HEALTHY
        logger.info(f"Compacted context from {before} to {after} messages")
        return before, after

    def context_breakdown(self) -> ContextBreakdown:
        return self.memory.context_breakdown(self.provider.context_window(), len(self.knowledge.rules))

    def top_tool_consumers(self, n: int = 3) -> list[tuple[str, float]]:
        return self.tool_meter.top_consumers(n)

    # ─── Status ────────────────────────────────────────────

    async def _set_status(self, status: AgentStatus) -> None:
        self.state.status = status
        if status != self._reported_status:
            self._reported_status = status
            await self.callback.on_status_change(status)

    # ─── Plan mode ─────────────────────────────────────────

    async def _run_plan(self, task: str) -> TaskResult:
        task_id = await self._begin_task(task)
        await self._set_status(AgentStatus.PLANNING)
        await self.callback.on_plan_generating(task)

        plan = await self._generate_plan(task)
        self.current_plan = plan
        await self._review_plan(plan)
        if plan.status != PlanStatus.APPROVED:
            plan.status = PlanStatus.REJECTED
            message = "Plan rejected by user."
            await self.callback.on_assistant_message(message)
            return await self._finish(task_id, message, success=False)

        response = await self._execute_plan(plan)
        return await self._finish(task_id, response, success=plan.status == PlanStatus.COMPLETED)

    async def _generate_plan(self, task: str) -> ExecutionPlan:
        prompt = build_plan_prompt(task, self.tool_definitions(), self.config.plan.max_steps)
        response = await self.brain.think_with_retry(
            [Message.user(prompt)], streaming=False, cancel_token=self.cancel_token
        )
        self.budget.record_usage(response.usage, _cost_of(response.usage, self.provider))
        plan = parse_plan(response.message.text or "", task, self.config.plan.max_steps)
        for step in plan.steps:
            if step.tool:
                step.risk_level = self.tools.risk_level(step.tool)
                step.requires_approval = step.risk_level is not None and step.risk_level > RiskLevel.READ_ONLY
        self.decisions.add_explanation(
            ExplanationBuilder(DecisionType.task_decomposition([s.description for s in plan.steps]))
            .add_reasoning_step(plan.summary or f"Planned {len(plan.steps)} steps")
            .set_confidence(0.8)
            .build()
        )
        logger.info(f"Generated plan with {len(plan.steps)} steps", extra={"task_id": self.state.task_id})
        return plan

    async def _review_plan(self, plan: ExecutionPlan) -> None:
        for _ in range(self.config.plan.max_review_rounds):
            decision = await self.callback.on_plan_review(plan)
            if decision.kind == PlanDecisionKind.ASK_QUESTION:
                answer = await self._answer_plan_question(plan, decision.text or "")
                await self.callback.on_assistant_message(answer)
                continue
            apply_decision(plan, decision)
            if decision.is_final:
                return
        logger.warning("Plan review did not converge; treating the plan as rejected")

    async def _answer_plan_question(self, plan: ExecutionPlan, question: str) -> str:
        prompt = f"{plan.render()}\n\nQuestion about this plan: {question}\nAnswer briefly."
        response = await self.brain.think_with_retry(
            [Message.user(prompt)], streaming=False, cancel_token=self.cancel_token
        )
        self.budget.record_usage(response.usage, _cost_of(response.usage, self.provider))
        return response.message.text or ""

    async def _execute_plan(self, plan: ExecutionPlan) -> str:
        plan.status = PlanStatus.EXECUTING
        last_result = ""
        for step in plan.steps:
            if step.status != StepStatus.PENDING:
                continue
            if self.cancel_token.is_cancelled:
                raise TaskCancelledError()
            plan.current_step = step.index
            step.status = StepStatus.IN_PROGRESS
            await self.callback.on_plan_step_start(step.index, step)
            try:
                if step.tool:
                    step.result = await self._run_tool_step(step.tool, step.args or {})
                else:
                    self.memory.add_message(Message.user(f"Plan step {step.index + 1}: {step.description}"))
                    step.result = await self._iterate() or ""
                step.status = StepStatus.COMPLETED
                last_result = step.result or last_result
            except ToolError as e:
                step.status = StepStatus.FAILED
                step.error = str(e)
            await self.callback.on_plan_step_complete(step.index, step)
            if step.status == StepStatus.FAILED:
                plan.status = PlanStatus.FAILED
                return f"Plan stopped at step {step.index + 1}: {step.error}"
        plan.status = PlanStatus.COMPLETED
        return last_result or plan.progress_summary()

    async def _run_tool_step(self, name: str, arguments: dict[str, Any]) -> str:
        call_id = f"plan_{uuid.uuid4().hex[:12]}"
        self.memory.add_message(Message.tool_call(call_id, name, arguments))
        try:
            output = await self._execute_tool(name, arguments)
        except ToolError as e:
            self.memory.add_message(Message.tool_result(call_id, f"Tool error: {e}", is_error=True))
            raise
        self.memory.add_message(Message.tool_result(call_id, output.content, output.is_error))
        if output.is_error:
            raise ToolError(name, output.content)
        return output.content

    # ─── Scheduler ─────────────────────────────────────────

    def save_scheduler_state(self) -> bool:
        """Persist scheduler jobs. Returns False when no store is attached."""
        if self.store is None:
            return False
        self.store.save_json(SCHEDULER_STATE_KEY, self.scheduler.to_state().model_dump(mode="json"))
        return True

    def load_scheduler_state(self) -> bool:
        if self.store is None:
            return False
        data = self.store.load_json(SCHEDULER_STATE_KEY)
        if data is None:
            return False
        self.scheduler.load_state(SchedulerState.model_validate(data))
        return True

    async def run_due_jobs(self, now: datetime | None = None) -> list[TaskResult]:
        """Run every due heartbeat job as a task and mark it executed."""
        results = []
        for job in self.scheduler.due_jobs(now):
            logger.info(f"Running scheduled job '{job.name}'", extra={"event_type": "heartbeat"})
            results.append(await self.process_task(job.task))
            self.scheduler.mark_executed(job.name, now)
        if results:
            self.save_scheduler_state()
        return results


def _cost_of(usage: TokenUsage, provider: LlmProvider) -> CostEstimate:
    return CostEstimate.from_usage(usage, provider.cost_rates())
