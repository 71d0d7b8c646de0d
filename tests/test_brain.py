"""
Tests for the Brain: prompt assembly, tool-sequence repair, streaming
assembly, retry with backoff and usage accounting.
"""

import pytest

from steward.core.cancellation import CancellationToken
from steward.core.models import Message, Role, TokenUsage, ToolDefinition
from steward.engine import brain as brain_module
from steward.engine.brain import Brain, backoff_seconds, sanitize_tool_sequence
from steward.exceptions import (
    ContextOverflowError,
    LlmConnectionError,
    RateLimitedError,
    ResponseParseError,
    StreamingError,
    TaskCancelledError,
    is_retryable,
)
from steward.providers.mock import MockLlmProvider

# ─── Helpers ────────────────────────────────────────────────


def _brain(provider: MockLlmProvider) -> Brain:
    return Brain(provider, "You are a test assistant.")


@pytest.fixture
def no_backoff(monkeypatch):
    monkeypatch.setattr(brain_module, "backoff_seconds", lambda attempt, error: 0.0)


# ─── Sanitizer ──────────────────────────────────────────────


class TestSanitizeToolSequence:
    def test_drops_orphan_results(self):
        messages = [Message.user("hi"), Message.tool_result("ghost", "boo")]
        cleaned = sanitize_tool_sequence(messages)
        assert cleaned == [Message.user("hi")]

    def test_moves_wedged_system_message(self):
        messages = [
            Message.tool_call("c1", "echo", {}),
            Message.system("note"),
            Message.tool_result("c1", "ok"),
        ]
        cleaned = sanitize_tool_sequence(messages)
        assert [m.role for m in cleaned] == [Role.SYSTEM, Role.ASSISTANT, Role.TOOL]

    def test_inserts_synthetic_result(self):
        messages = [Message.tool_call("c1", "echo", {}), Message.user("next")]
        cleaned = sanitize_tool_sequence(messages)
        assert cleaned[1].tool_results[0].call_id == "c1"
        assert cleaned[1].tool_results[0].is_error
        assert cleaned[2].text == "next"

    def test_valid_sequence_untouched(self):
        messages = [
            Message.user("go"),
            Message.tool_call("c1", "echo", {}),
            Message.tool_result("c1", "ok"),
            Message.assistant("done"),
        ]
        assert sanitize_tool_sequence(messages) == messages


# ─── Prompt and budget ──────────────────────────────────────


class TestPrompt:
    def test_system_prompt_and_addendum_first(self, provider):
        brain = _brain(provider)
        brain.set_knowledge_addendum("\n\n## Rules\n- be terse")
        messages = brain.build_messages([Message.user("hi")])
        assert messages[0].role == Role.SYSTEM
        assert messages[0].text.endswith("- be terse")
        assert messages[1].text == "hi"

    @pytest.mark.asyncio
    async def test_context_overflow_before_call(self):
        provider = MockLlmProvider(context_window=50)
        brain = _brain(provider)
        with pytest.raises(ContextOverflowError):
            await brain.think([Message.user("x" * 2000)])
        assert provider.call_count == 0

    @pytest.mark.asyncio
    async def test_tools_sent_with_request(self, provider):
        provider.queue_response(MockLlmProvider.text_response("ok"))
        brain = _brain(provider)
        await brain.think([Message.user("hi")], [ToolDefinition(name="echo")])
        assert [t.name for t in provider.requests[0].tools] == ["echo"]


# ─── Streaming ──────────────────────────────────────────────


class TestStreaming:
    @pytest.mark.asyncio
    async def test_text_is_concatenation_of_tokens(self, provider):
        provider.queue_response(MockLlmProvider.text_response("one two  three\nfour"))
        tokens = []

        async def sink(token):
            tokens.append(token)

        response = await _brain(provider).think_streaming([Message.user("count")], on_token=sink)

        assert "".join(tokens) == "one two  three\nfour"
        assert response.message.text == "one two  three\nfour"
        assert response.usage == TokenUsage(input_tokens=100, output_tokens=50)

    @pytest.mark.asyncio
    async def test_tool_call_assembled(self, provider):
        provider.queue_response(MockLlmProvider.tool_call_response("echo", {"text": "streamed"}))

        response = await _brain(provider).think_streaming([Message.user("go")])

        [call] = response.message.tool_calls
        assert call.name == "echo"
        assert call.arguments == {"text": "streamed"}

    @pytest.mark.asyncio
    async def test_text_then_tool_call_order(self, provider):
        provider.queue_response(MockLlmProvider.multipart_response("Checking.", "echo", {"text": "a"}))

        response = await _brain(provider).think_streaming([Message.user("go")])

        assert response.message.text == "Checking."
        assert [c.name for c in response.message.tool_calls] == ["echo"]

    @pytest.mark.asyncio
    async def test_provider_exception_propagates(self, provider):
        provider.queue_response(ResponseParseError("mock", "bad payload"))
        with pytest.raises(ResponseParseError):
            await _brain(provider).think_streaming([Message.user("go")])


# ─── Retry ──────────────────────────────────────────────────


class TestRetry:
    def test_retryable_classification(self):
        assert is_retryable(RateLimitedError("p"))
        assert is_retryable(LlmConnectionError("p", "reset"))
        assert is_retryable(StreamingError("p", "HTTP 503 from upstream"))
        assert not is_retryable(StreamingError("p", "invalid request"))
        assert not is_retryable(ResponseParseError("p", "bad json"))

    def test_backoff_is_capped_and_honours_retry_after(self):
        assert backoff_seconds(0, LlmConnectionError("p", "x")) == 1
        assert backoff_seconds(10, LlmConnectionError("p", "x")) == 32
        assert backoff_seconds(0, RateLimitedError("p", retry_after=7)) == 7

    @pytest.mark.asyncio
    async def test_recovers_after_transient_error(self, provider, no_backoff):
        provider.queue_response(RateLimitedError("mock"))
        provider.queue_response(MockLlmProvider.text_response("recovered"))

        response = await _brain(provider).think_with_retry([Message.user("go")], streaming=False)

        assert response.message.text == "recovered"
        assert provider.call_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, provider, no_backoff):
        for _ in range(5):
            provider.queue_response(LlmConnectionError("mock", "down"))

        with pytest.raises(LlmConnectionError):
            await _brain(provider).think_with_retry([Message.user("go")], streaming=False, max_retries=2)
        assert provider.call_count == 3

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self, provider):
        provider.queue_response(ResponseParseError("mock", "nonsense"))
        with pytest.raises(ResponseParseError):
            await _brain(provider).think_with_retry([Message.user("go")], streaming=False)
        assert provider.call_count == 1

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self, provider):
        provider.queue_response(RateLimitedError("mock", retry_after=30))
        token = CancellationToken()
        token.cancel()
        with pytest.raises(TaskCancelledError):
            await _brain(provider).think_with_retry(
                [Message.user("go")], streaming=False, cancel_token=token
            )


# ─── Accounting ─────────────────────────────────────────────


class TestAccounting:
    @pytest.mark.asyncio
    async def test_totals_are_sum_of_calls(self, provider):
        provider.queue_response(MockLlmProvider.text_response("a"))
        provider.queue_response(MockLlmProvider.tool_call_response("echo"))
        brain = _brain(provider)

        await brain.think([Message.user("1")])
        await brain.think_streaming([Message.user("2")])

        assert brain.total_usage == TokenUsage(input_tokens=200, output_tokens=80)
        assert brain.total_cost.total == 0.0
