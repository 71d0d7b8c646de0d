"""
Tests for the Steward agent loop.

Verifies:
- Text answers, tool round-trips and multi-part responses
- Iteration bound, cancellation and budget halts
- Approval modes, denials and the corrections they leave behind
- Safety contracts and error-recovery explanations
- Tool-call/result pairing, fact recording and ask_user
- Context-health transitions, auto-correction and verification feedback
"""

import pytest

from conftest import make_agent, make_tool

from steward.agent import Agent
from steward.callbacks import RecordingCallback
from steward.config import AgentConfig, ApprovalMode
from steward.core.classification import ClassificationKind, TaskClassification
from steward.core.models import (
    AgentStatus,
    BudgetSeverity,
    ContextHealthLevel,
    MultiPartContent,
    RiskLevel,
    ToolCallContent,
    ToolResultContent,
)
from steward.exceptions import BudgetExceededError, MaxIterationsReachedError, TaskCancelledError
from steward.explain.decision_log import OutcomeKind
from steward.providers.mock import MockLlmProvider
from steward.safety.action_details import ApprovalDecision
from steward.safety.contracts import Invariant, Predicate, SafetyContract

# ─── Helpers ────────────────────────────────────────────────


def _echo():
    return make_tool("echo", handler=lambda text="": f"Echo: {text}")


def _tool_messages(agent: Agent):
    """(call ids in order, result call ids in order) from short-term memory."""
    calls, results = [], []
    for message in agent.memory.short_term.to_messages():
        content = message.content
        parts = content.parts if isinstance(content, MultiPartContent) else [content]
        for part in parts:
            if isinstance(part, ToolCallContent):
                calls.append(part.id)
            elif isinstance(part, ToolResultContent):
                results.append(part.call_id)
    return calls, results


def _tool_results(agent: Agent) -> list[ToolResultContent]:
    return [
        m.content for m in agent.memory.short_term.to_messages()
        if isinstance(m.content, ToolResultContent)
    ]


# ─── End-to-end scenarios ───────────────────────────────────


class TestTextAnswer:
    @pytest.mark.asyncio
    async def test_single_text_answer(self, provider, callback):
        provider.queue_response(MockLlmProvider.text_response("Hello! I can help you."))
        agent = make_agent(provider, callback)

        result = await agent.process_task("Say hello")

        assert result.success
        assert result.iterations == 1
        assert result.response == "Hello! I can help you."
        assert callback.tool_calls == []
        assert callback.status_changes == [AgentStatus.THINKING, AgentStatus.COMPLETE]
        assert callback.messages == ["Hello! I can help you."]

    @pytest.mark.asyncio
    async def test_empty_task(self, provider, callback):
        provider.queue_response(MockLlmProvider.text_response(""))
        agent = make_agent(provider, callback)

        result = await agent.process_task("")

        assert result.success
        assert result.response == ""
        assert result.iterations == 1
        assert callback.tool_calls == []

    @pytest.mark.asyncio
    async def test_streaming_tokens_join_to_response(self, provider, callback):
        provider.queue_response(MockLlmProvider.text_response("Streaming works  end to end."))
        agent = make_agent(provider, callback, streaming=True)

        result = await agent.process_task("Stream something")

        assert "".join(callback.tokens) == "Streaming works  end to end."
        assert result.response == "Streaming works  end to end."

    @pytest.mark.asyncio
    async def test_user_message_and_answer_recorded(self, provider):
        provider.queue_response(MockLlmProvider.text_response("Done."))
        agent = make_agent(provider)

        await agent.process_task("Do the thing")

        messages = agent.memory.short_term.to_messages()
        assert messages[0].text == "Do the thing"
        assert messages[-1].text == "Done."


class TestToolRoundTrip:
    @pytest.mark.asyncio
    async def test_echo_round_trip(self, provider, callback):
        provider.queue_response(MockLlmProvider.tool_call_response("echo", {"text": "test"}))
        provider.queue_response(MockLlmProvider.text_response("I executed the echo tool successfully."))
        agent = make_agent(provider, callback)
        agent.register_tool(_echo())

        result = await agent.process_task("Test echo tool")

        assert result.iterations == 2
        assert result.response == "I executed the echo tool successfully."
        assert callback.tool_calls == [("echo", {"text": "test"})]
        assert len(callback.tool_results) == 1
        assert callback.tool_results[0][1].content == "Echo: test"
        # 100/30 for the tool call, 100/50 for the answer
        assert result.total_usage.input_tokens == 200
        assert result.total_usage.output_tokens == 80

    @pytest.mark.asyncio
    async def test_status_sequence(self, provider, callback):
        provider.queue_response(MockLlmProvider.tool_call_response("echo", {"text": "x"}))
        provider.queue_response(MockLlmProvider.text_response("ok"))
        agent = make_agent(provider, callback)
        agent.register_tool(_echo())

        await agent.process_task("Echo x")

        assert callback.status_changes == [
            AgentStatus.THINKING,
            AgentStatus.EXECUTING,
            AgentStatus.THINKING,
            AgentStatus.COMPLETE,
        ]

    @pytest.mark.asyncio
    async def test_every_call_has_exactly_one_result(self, provider):
        for text in ("a", "b", "c"):
            provider.queue_response(MockLlmProvider.tool_call_response("echo", {"text": text}))
        provider.queue_response(MockLlmProvider.tool_call_response("missing_tool", {}))
        provider.queue_response(MockLlmProvider.text_response("done"))
        agent = make_agent(provider)
        agent.register_tool(_echo())

        await agent.process_task("Echo three times")

        calls, results = _tool_messages(agent)
        assert len(calls) == 4
        assert calls == results

    @pytest.mark.asyncio
    async def test_unknown_tool_is_reported_to_llm(self, provider):
        provider.queue_response(MockLlmProvider.tool_call_response("no_such_tool", {}))
        provider.queue_response(MockLlmProvider.text_response("Recovered."))
        agent = make_agent(provider)

        result = await agent.process_task("Use a tool that does not exist")

        assert result.success
        [tool_result] = _tool_results(agent)
        assert tool_result.is_error
        assert tool_result.output.startswith("Tool error:")
        assert "no_such_tool" in tool_result.output

    @pytest.mark.asyncio
    async def test_failing_tool_does_not_abort_task(self, provider):
        def explode(text=""):
            raise RuntimeError("disk on fire")

        provider.queue_response(MockLlmProvider.tool_call_response("boom", {"text": "x"}))
        provider.queue_response(MockLlmProvider.text_response("Handled the failure."))
        agent = make_agent(provider)
        agent.register_tool(make_tool("boom", handler=explode))

        result = await agent.process_task("Try the boom tool")

        assert result.response == "Handled the failure."
        [tool_result] = _tool_results(agent)
        assert tool_result.is_error
        assert "disk on fire" in tool_result.output
        assert agent.consecutive_failures == ("boom", 1)

    @pytest.mark.asyncio
    async def test_multipart_text_and_tool_call(self, provider, callback):
        provider.queue_response(MockLlmProvider.multipart_response("Let me check.", "echo", {"text": "hi"}))
        provider.queue_response(MockLlmProvider.text_response("Checked."))
        agent = make_agent(provider, callback)
        agent.register_tool(_echo())

        result = await agent.process_task("Check with echo")

        assert callback.messages == ["Let me check.", "Checked."]
        assert callback.tool_calls == [("echo", {"text": "hi"})]
        assert result.iterations == 2

    @pytest.mark.asyncio
    async def test_decision_record_outcome(self, provider):
        provider.queue_response(MockLlmProvider.tool_call_response("echo", {"text": "x"}))
        provider.queue_response(MockLlmProvider.text_response("ok"))
        agent = make_agent(provider)
        agent.register_tool(_echo())

        await agent.process_task("Echo x")

        [record] = agent.decisions.for_iteration(1)
        assert record.action == "Tool: echo"
        assert record.outcome.kind == OutcomeKind.SUCCEEDED
        assert "echo" in agent.explain_last()


class TestIterationBound:
    @pytest.mark.asyncio
    async def test_max_iterations_reached(self, provider):
        for _ in range(10):
            provider.queue_response(MockLlmProvider.tool_call_response("echo", {"text": "again"}))
        agent = make_agent(provider, safety__max_iterations=3)
        agent.register_tool(_echo())

        with pytest.raises(MaxIterationsReachedError):
            await agent.process_task("Infinite loop test")

        assert provider.call_count == 3
        assert agent.state.iteration == 3
        assert agent.state.status == AgentStatus.ERROR

    @pytest.mark.asyncio
    async def test_error_status_reported(self, provider, callback):
        for _ in range(3):
            provider.queue_response(MockLlmProvider.tool_call_response("echo", {"text": "again"}))
        agent = make_agent(provider, callback, safety__max_iterations=2)
        agent.register_tool(_echo())

        with pytest.raises(MaxIterationsReachedError):
            await agent.process_task("Loop")

        assert callback.status_changes[-1] == AgentStatus.ERROR
        assert callback.iterations == [1, 2]


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_before_start(self, provider):
        provider.queue_response(MockLlmProvider.tool_call_response("echo", {"text": "x"}))
        agent = make_agent(provider)
        agent.register_tool(_echo())

        agent.cancel()
        with pytest.raises(TaskCancelledError):
            await agent.process_task("Never runs")

        assert provider.call_count == 0
        assert len(agent.memory.short_term) == 0

    @pytest.mark.asyncio
    async def test_reset_allows_next_task(self, provider):
        provider.queue_response(MockLlmProvider.text_response("Back again."))
        agent = make_agent(provider)

        agent.cancel()
        with pytest.raises(TaskCancelledError):
            await agent.process_task("First")
        agent.reset_cancellation()
        result = await agent.process_task("Second")

        assert result.response == "Back again."


class TestApproval:
    @pytest.mark.asyncio
    async def test_denied_action_records_correction(self, provider):
        callback = RecordingCallback(approval_decision=ApprovalDecision.DENY)
        provider.queue_response(
            MockLlmProvider.tool_call_response("file_write", {"path": "test.rs", "content": "bad code"})
        )
        provider.queue_response(MockLlmProvider.text_response("Understood, I will not write the file."))
        agent = make_agent(provider, callback, mode=ApprovalMode.PARANOID)
        agent.register_builtin_tools()

        result = await agent.process_task("Write something")

        assert result.success
        assert result.response == "Understood, I will not write the file."
        assert callback.tool_calls == []
        correction = agent.memory.long_term.corrections[-1]
        assert "file_write" in correction.original
        assert "denied" in correction.context
        [tool_result] = _tool_results(agent)
        assert tool_result.is_error
        assert "User rejected the action" in tool_result.output

    @pytest.mark.asyncio
    async def test_paranoid_asks_before_every_tool(self, provider, callback, write_tool):
        provider.queue_response(MockLlmProvider.tool_call_response("write_test", {"text": "a"}))
        provider.queue_response(MockLlmProvider.text_response("Written."))
        agent = make_agent(provider, callback, mode=ApprovalMode.PARANOID)
        agent.register_tool(write_tool)

        await agent.process_task("Write a")

        assert callback.events.index("approval_requested") < callback.events.index("tool_start")
        assert callback.status_changes[:3] == [
            AgentStatus.THINKING,
            AgentStatus.WAITING_FOR_APPROVAL,
            AgentStatus.EXECUTING,
        ]

    @pytest.mark.asyncio
    async def test_safe_mode_auto_approves_read_only(self, provider, callback, echo_tool):
        provider.queue_response(MockLlmProvider.tool_call_response("echo_test", {"text": "a"}))
        provider.queue_response(MockLlmProvider.text_response("Read."))
        agent = make_agent(provider, callback, mode=ApprovalMode.SAFE)
        agent.register_tool(echo_tool)

        await agent.process_task("Read a")

        assert callback.approvals == []
        assert callback.tool_calls == [("echo_test", {"text": "a"})]

    @pytest.mark.asyncio
    async def test_approve_all_similar_skips_later_prompts(self, provider, write_tool):
        callback = RecordingCallback(approval_decision=ApprovalDecision.APPROVE_ALL_SIMILAR)
        provider.queue_response(MockLlmProvider.tool_call_response("write_test", {"text": "a"}))
        provider.queue_response(MockLlmProvider.tool_call_response("write_test", {"text": "b"}))
        provider.queue_response(MockLlmProvider.text_response("Both written."))
        agent = make_agent(provider, callback, mode=ApprovalMode.SAFE)
        agent.register_tool(write_tool)

        await agent.process_task("Write a and b")

        assert len(callback.approvals) == 1
        assert len(callback.tool_calls) == 2

    @pytest.mark.asyncio
    async def test_no_callback_denies_gated_actions(self, provider):
        wiped = []
        config = AgentConfig()
        config.safety.approval_mode = ApprovalMode.PARANOID
        config.llm.use_streaming = False
        provider.queue_response(MockLlmProvider.tool_call_response("wipe", {"text": "x"}))
        provider.queue_response(MockLlmProvider.text_response("Nothing was wiped."))
        agent = Agent(provider, config, classifier=lambda task: None)
        agent.register_tool(make_tool("wipe", RiskLevel.DESTRUCTIVE, handler=lambda text="": wiped.append(text)))

        result = await agent.process_task("Wipe x")

        assert wiped == []
        assert result.response == "Nothing was wiped."
        [tool_result] = _tool_results(agent)
        assert tool_result.is_error
        assert "User rejected the action" in tool_result.output

    @pytest.mark.asyncio
    async def test_denied_path_never_reaches_approval(self, provider, callback):
        provider.queue_response(MockLlmProvider.tool_call_response("file_read", {"path": ".env"}))
        provider.queue_response(MockLlmProvider.text_response("That file is off limits."))
        agent = make_agent(provider, callback, mode=ApprovalMode.PARANOID)
        agent.register_builtin_tools()

        await agent.process_task("Read the env file")

        assert callback.approvals == []
        assert callback.tool_calls == []
        [tool_result] = _tool_results(agent)
        assert "Permission denied" in tool_result.output
        assert any(e.is_error_recovery for e in callback.explanations)


class TestContracts:
    @pytest.mark.asyncio
    async def test_contract_violation(self, provider, callback):
        contract = SafetyContract(
            name="lockdown",
            invariants=[Invariant(description="No tools at all", predicate=Predicate.always_false())],
        )
        provider.queue_response(MockLlmProvider.tool_call_response("echo", {"text": "x"}))
        provider.queue_response(MockLlmProvider.text_response("I cannot run tools right now."))
        agent = make_agent(provider, callback)
        agent.set_contract(contract)
        agent.register_tool(_echo())

        result = await agent.process_task("Echo x")

        assert result.response == "I cannot run tools right now."
        assert callback.tool_calls == []
        [tool_result] = _tool_results(agent)
        assert tool_result.is_error
        assert "Safety contract violation" in tool_result.output
        assert any(e.is_error_recovery for e in callback.explanations)


class TestBudget:
    @pytest.mark.asyncio
    async def test_halt_on_exceed(self, provider, callback):
        provider.queue_response(MockLlmProvider.text_response("never sent"))
        agent = make_agent(
            provider, callback, budget__session_token_limit=10, budget__halt_on_exceed=True
        )

        with pytest.raises(BudgetExceededError):
            await agent.process_task("Anything")

        assert provider.call_count == 0
        assert callback.budget_warnings[0][1] == BudgetSeverity.EXCEEDED

    @pytest.mark.asyncio
    async def test_soft_exceed_continues(self, provider, callback):
        provider.queue_response(MockLlmProvider.text_response("still answered"))
        agent = make_agent(provider, callback, budget__session_token_limit=10)

        result = await agent.process_task("Anything")

        assert result.response == "still answered"
        assert callback.budget_warnings[0][1] == BudgetSeverity.EXCEEDED


class TestMemoryEffects:
    @pytest.mark.asyncio
    async def test_tool_result_recorded_as_fact(self, provider):
        provider.queue_response(MockLlmProvider.tool_call_response("echo", {"text": "the build is green"}))
        provider.queue_response(MockLlmProvider.text_response("ok"))
        agent = make_agent(provider)
        agent.register_tool(_echo())

        await agent.process_task("Check the build")

        [fact] = agent.memory.long_term.facts
        assert fact.content == "Tool 'echo' result: Echo: the build is green"
        assert fact.source == "tool:echo"
        assert fact.tags == ["tool_result", "echo"]

    @pytest.mark.asyncio
    async def test_short_results_are_not_facts(self, provider):
        provider.queue_response(MockLlmProvider.tool_call_response("echo", {"text": ""}))
        provider.queue_response(MockLlmProvider.text_response("ok"))
        agent = make_agent(provider)
        agent.register_tool(_echo())

        await agent.process_task("Echo nothing")

        assert agent.memory.long_term.facts == []

    @pytest.mark.asyncio
    async def test_ask_user(self, provider):
        callback = RecordingCallback(clarification_answer="blue")
        provider.queue_response(MockLlmProvider.tool_call_response("ask_user", {"question": "Which colour?"}))
        provider.queue_response(MockLlmProvider.text_response("Blue it is."))
        agent = make_agent(provider, callback)

        result = await agent.process_task("Paint it")

        assert callback.clarifications == ["Which colour?"]
        assert AgentStatus.WAITING_FOR_CLARIFICATION in callback.status_changes
        [tool_result] = _tool_results(agent)
        assert tool_result.output == "blue"
        assert result.response == "Blue it is."


class TestContextHealth:
    @pytest.mark.asyncio
    async def test_events_fire_once_per_transition(self, callback, monkeypatch):
        provider = MockLlmProvider(context_window=1000)
        agent = make_agent(provider, callback)
        used = {"tokens": 750}
        monkeypatch.setattr(agent.brain, "estimate_tokens", lambda conv, tools=None: used["tokens"])

        await agent._check_context_health([], [])
        await agent._check_context_health([], [])
        used["tokens"] = 950
        await agent._check_context_health([], [])
        await agent._check_context_health([], [])
        used["tokens"] = 100
        await agent._check_context_health([], [])

        levels = [e.level for e in callback.context_health_events]
        assert levels == [ContextHealthLevel.WARNING, ContextHealthLevel.CRITICAL]
        assert callback.context_health_events[0].usage_percent == 75

    @pytest.mark.asyncio
    async def test_falling_back_to_warning_is_silent(self, callback, monkeypatch):
        provider = MockLlmProvider(context_window=1000)
        agent = make_agent(provider, callback)
        used = {"tokens": 950}
        monkeypatch.setattr(agent.brain, "estimate_tokens", lambda conv, tools=None: used["tokens"])

        for tokens in (950, 750, 950, 750):
            used["tokens"] = tokens
            await agent._check_context_health([], [])
        assert [e.level for e in callback.context_health_events] == [ContextHealthLevel.CRITICAL]

        used["tokens"] = 100
        await agent._check_context_health([], [])
        used["tokens"] = 750
        await agent._check_context_health([], [])
        assert [e.level for e in callback.context_health_events] == [
            ContextHealthLevel.CRITICAL,
            ContextHealthLevel.WARNING,
        ]


class TestAutoCorrection:
    @pytest.mark.asyncio
    async def test_cat_becomes_file_read(self, provider, callback):
        seen = []

        def fake_read(path):
            seen.append(path)
            return f"contents of {path}"

        config = AgentConfig()
        config.safety.approval_mode = ApprovalMode.YOLO
        config.llm.use_streaming = False
        agent = Agent(
            provider,
            config,
            callback,
            classifier=lambda task: TaskClassification.of(ClassificationKind.FILE_OPERATION),
        )
        agent.register_tool(make_tool("file_read", handler=fake_read))
        agent.register_tool(make_tool("shell_exec", RiskLevel.EXECUTE, handler=lambda command: "shell ran"))
        provider.queue_response(MockLlmProvider.tool_call_response("shell_exec", {"command": "cat README.md"}))
        provider.queue_response(MockLlmProvider.text_response("Read it."))

        await agent.process_task("Show me the readme file")

        assert seen == ["README.md"]
        assert callback.tool_calls == [("file_read", {"path": "README.md"})]
        assert callback.progress[0].stage == "auto_correct"


class TestVerification:
    @pytest.mark.asyncio
    async def test_failed_check_is_fed_back(self, provider, tmp_path):
        provider.queue_response(
            MockLlmProvider.tool_call_response("file_write", {"path": "a.py", "content": "x ="})
        )
        provider.queue_response(MockLlmProvider.text_response("Fixed later."))
        agent = make_agent(
            provider,
            verification__run_on_file_write=True,
            verification__commands=["echo 'SyntaxError' && exit 1"],
            verification__workdir=str(tmp_path),
        )
        agent.register_tool(make_tool("file_write", RiskLevel.WRITE, handler=lambda path, content: "written"))

        await agent.process_task("Write a.py")

        calls, results = _tool_messages(agent)
        assert calls == results
        feedback = _tool_results(agent)[-1]
        assert feedback.is_error
        assert "Verification Failed" in feedback.output
        assert "SyntaxError" in feedback.output
