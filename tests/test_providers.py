"""
Tests for the provider layer: pricing, circuit breaker, rate limiter,
tool-schema compaction and the SDK message converters.
"""

import asyncio
from types import SimpleNamespace

import pytest

from steward.config import RateLimitConfig
from steward.core.models import (
    Message,
    MultiPartContent,
    Role,
    TextContent,
    ThinkingContent,
    TokenUsage,
    ToolCallContent,
    ToolDefinition,
)
from steward.exceptions import LlmConnectionError, ProviderUnavailableError, ResponseParseError
from steward.providers import create_provider
from steward.providers.base import (
    CompletionRequest,
    DoneEvent,
    TokenEvent,
    ToolCallDeltaEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
    assemble_message,
    compact_tool,
    parse_arguments,
    prepare_tools,
)
from steward.providers.circuit_breaker import CircuitBreakerProvider, CircuitState
from steward.providers.claude import ClaudeProvider, to_anthropic_messages
from steward.providers.mock import MockLlmProvider
from steward.providers.openai import to_openai_messages
from steward.providers.pricing import calculate_cost, context_window, cost_rates
from steward.providers.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _request(*messages: Message) -> CompletionRequest:
    return CompletionRequest(messages=list(messages) or [Message.user("hi")])


# ─── Pricing ────────────────────────────────────────────────


class TestPricing:
    def test_known_model(self):
        assert cost_rates("gpt-4o-mini") == pytest.approx((0.15e-6, 0.60e-6))
        assert calculate_cost("claude-sonnet-4-5", 1_000_000, 1_000_000) == pytest.approx(18.0)

    def test_dated_snapshot_uses_base_price(self):
        assert cost_rates("gpt-4o-2024-08-06") == cost_rates("gpt-4o")

    def test_unknown_model_defaults(self):
        assert cost_rates("mystery") == pytest.approx((3e-6, 15e-6))
        assert context_window("mystery") == 128_000
        assert context_window("gpt-4.1-mini") == 1_000_000


# ─── Circuit breaker ────────────────────────────────────────


class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_opens_after_threshold_and_fails_fast(self):
        inner = MockLlmProvider()
        for _ in range(2):
            inner.queue_response(LlmConnectionError("mock", "down"))
        breaker = CircuitBreakerProvider(inner, failure_threshold=2, clock=FakeClock())

        for _ in range(2):
            with pytest.raises(LlmConnectionError):
                await breaker.complete(_request())

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(ProviderUnavailableError):
            await breaker.complete(_request())
        assert inner.call_count == 2

    @pytest.mark.asyncio
    async def test_half_open_probe_closes_on_success(self):
        clock = FakeClock()
        inner = MockLlmProvider()
        inner.queue_response(LlmConnectionError("mock", "down"))
        inner.queue_response(MockLlmProvider.text_response("back"))
        breaker = CircuitBreakerProvider(inner, failure_threshold=1, recovery_timeout=30, clock=clock)

        with pytest.raises(LlmConnectionError):
            await breaker.complete(_request())
        clock.now += 30
        assert breaker.state == CircuitState.HALF_OPEN

        response = await breaker.complete(_request())

        assert response.message.text == "back"
        assert breaker.state == CircuitState.CLOSED

    def test_delegates_metadata(self):
        inner = MockLlmProvider(context_window=4096)
        breaker = CircuitBreakerProvider(inner)
        assert breaker.context_window() == 4096
        assert breaker.name == inner.name
        assert breaker.wrapped_provider is inner

    @pytest.mark.asyncio
    async def test_reset(self):
        inner = MockLlmProvider()
        inner.queue_response(LlmConnectionError("mock", "down"))
        breaker = CircuitBreakerProvider(inner, failure_threshold=1, clock=FakeClock())
        with pytest.raises(LlmConnectionError):
            await breaker.complete(_request())
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED


# ─── Rate limiter ───────────────────────────────────────────


class TestRateLimiter:
    def test_disabled_without_limits(self):
        assert not RateLimiter(RateLimitConfig()).enabled

    @pytest.mark.asyncio
    async def test_requests_per_minute(self):
        clock = FakeClock()
        limiter = RateLimiter(RateLimitConfig(rpm=2), clock=clock)
        await limiter.acquire(10)
        await limiter.acquire(10)
        assert limiter.wait_time(10) == pytest.approx(60.0)
        clock.now += 60
        assert limiter.wait_time(10) == 0.0

    @pytest.mark.asyncio
    async def test_input_tokens_per_minute(self):
        clock = FakeClock()
        limiter = RateLimiter(RateLimitConfig(itpm=100), clock=clock)
        await limiter.acquire(80)
        clock.now += 15
        assert limiter.wait_time(10) == 0.0
        assert limiter.wait_time(30) == pytest.approx(45.0)

    def test_output_tokens_per_minute(self):
        clock = FakeClock()
        limiter = RateLimiter(RateLimitConfig(otpm=50), clock=clock)
        limiter.record_output(50)
        assert limiter.wait_time(1) == pytest.approx(60.0)

    @pytest.mark.asyncio
    async def test_provider_records_usage(self):
        limiter = RateLimiter(RateLimitConfig(otpm=1000), clock=FakeClock())
        provider = MockLlmProvider()
        provider.set_rate_limiter(limiter)
        provider.queue_response(MockLlmProvider.text_response("x"))
        await provider.complete(_request())
        assert limiter.wait_time(1) == 0.0
        limiter.record_output(950)
        assert limiter.wait_time(1) > 0


# ─── Request helpers ────────────────────────────────────────


TOOL = ToolDefinition(
    name="file_read",
    description="Read a file from disk. Returns its contents with line numbers for easy reference later on.",
    parameters={
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path"},
            "max_lines": {"type": "integer", "description": "Cap"},
        },
        "required": ["path"],
    },
)


class TestRequestHelpers:
    def test_compact_half(self):
        half = compact_tool(TOOL, "half")
        assert half.description == "Read a file from disk"
        assert list(half.parameters["properties"]) == ["path"]

    def test_compact_quarter(self):
        quarter = compact_tool(TOOL, "quarter")
        assert len(quarter.description.split()) == 10
        assert quarter.parameters["properties"] == {"path": {"type": "string"}, "max_lines": {"type": "integer"}}
        assert quarter.parameters["required"] == ["path"]

    def test_prepare_tools_uses_hints(self):
        request = CompletionRequest(tools=[TOOL], tool_precision={"file_read": "half"})
        assert prepare_tools(request)[0].description == "Read a file from disk"
        assert request.deferred_tools == ["file_read"]
        assert prepare_tools(CompletionRequest()) == []

    def test_parse_arguments(self):
        assert parse_arguments("  ") == {}
        assert parse_arguments('{"a": 1}') == {"a": 1}
        assert parse_arguments("[1, 2]") == {"value": [1, 2]}

    def test_assemble_message(self):
        assert assemble_message([]).text == ""
        single = assemble_message([TextContent(text="a")])
        assert isinstance(single.content, TextContent)
        multi = assemble_message([TextContent(text="a"), ToolCallContent(id="c", name="t")])
        assert isinstance(multi.content, MultiPartContent)
        assert multi.role == Role.ASSISTANT

    def test_factory(self):
        assert isinstance(create_provider("mock"), MockLlmProvider)
        with pytest.raises(ValueError, match="Unknown provider"):
            create_provider("nope")


# ─── Message conversion ─────────────────────────────────────


CONVERSATION = [
    Message.system("Be brief."),
    Message.user("Read a.txt"),
    Message(role=Role.ASSISTANT, content=MultiPartContent(parts=[
        TextContent(text="Reading."),
        ToolCallContent(id="c1", name="file_read", arguments={"path": "a.txt"}),
    ])),
    Message.tool_result("c1", "hello"),
    Message.user("Thanks"),
]


class TestAnthropicConversion:
    def test_system_split_and_tool_blocks(self):
        system, messages = to_anthropic_messages(CONVERSATION)

        assert system == "Be brief."
        assert [m["role"] for m in messages] == ["user", "assistant", "user"]
        assert messages[1]["content"][1] == {
            "type": "tool_use", "id": "c1", "name": "file_read", "input": {"path": "a.txt"},
        }
        # tool result and following user text merge into one user turn
        assert messages[2]["content"][0]["type"] == "tool_result"
        assert messages[2]["content"][1] == {"type": "text", "text": "Thanks"}

    def test_unsigned_thinking_dropped(self):
        _, messages = to_anthropic_messages([
            Message.user("q"),
            Message(role=Role.ASSISTANT, content=ThinkingContent(thinking="hmm")),
        ])
        assert [m["role"] for m in messages] == ["user"]


class TestOpenAIConversion:
    def test_roles_and_tool_calls(self):
        messages = to_openai_messages(CONVERSATION)

        assert [m["role"] for m in messages] == ["system", "user", "assistant", "tool", "user"]
        assistant = messages[2]
        assert assistant["content"] == "Reading."
        assert assistant["tool_calls"][0]["function"] == {"name": "file_read", "arguments": '{"path": "a.txt"}'}
        assert messages[3] == {"role": "tool", "tool_call_id": "c1", "content": "hello"}


# ─── Claude adapter with a fake client ──────────────────────


class _FakeStream:
    def __init__(self, events):
        self._events = events

    def __aiter__(self):
        return self._gen()

    async def _gen(self):
        for event in self._events:
            yield event


class _FakeMessages:
    def __init__(self, result):
        self.result = result
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        return self.result


def _claude(result) -> tuple[ClaudeProvider, _FakeMessages]:
    messages = _FakeMessages(result)
    return ClaudeProvider(client=SimpleNamespace(messages=messages)), messages


class TestClaudeProvider:
    @pytest.mark.asyncio
    async def test_batch_response(self):
        raw = SimpleNamespace(
            content=[
                SimpleNamespace(type="text", text="Let me check.", citations=None),
                SimpleNamespace(type="tool_use", id="tu1", name="file_read", input={"path": "a"}),
            ],
            usage=SimpleNamespace(input_tokens=12, output_tokens=7),
            stop_reason="tool_use",
            model="claude-sonnet-4-5",
        )
        provider, fake = _claude(raw)
        request = CompletionRequest(messages=[Message.system("sys"), Message.user("go")], tools=[TOOL])

        response = await provider.complete(request)

        assert response.message.text == "Let me check."
        assert response.message.tool_calls[0].arguments == {"path": "a"}
        assert response.usage == TokenUsage(input_tokens=12, output_tokens=7)
        assert fake.kwargs["system"] == "sys"
        assert fake.kwargs["tools"][0]["input_schema"] == TOOL.parameters

    @pytest.mark.asyncio
    async def test_stream_events(self):
        events = [
            SimpleNamespace(type="message_start", message=SimpleNamespace(usage=SimpleNamespace(input_tokens=5))),
            SimpleNamespace(type="content_block_start", index=0, content_block=SimpleNamespace(type="text")),
            SimpleNamespace(type="content_block_delta", index=0, delta=SimpleNamespace(type="text_delta", text="Hi")),
            SimpleNamespace(type="content_block_stop", index=0),
            SimpleNamespace(
                type="content_block_start", index=1,
                content_block=SimpleNamespace(type="tool_use", id="tu1", name="echo"),
            ),
            SimpleNamespace(
                type="content_block_delta", index=1,
                delta=SimpleNamespace(type="input_json_delta", partial_json='{"text": "x"}'),
            ),
            SimpleNamespace(type="content_block_stop", index=1),
            SimpleNamespace(
                type="message_delta", usage=SimpleNamespace(output_tokens=9),
                delta=SimpleNamespace(stop_reason="tool_use"),
            ),
        ]
        provider, _ = _claude(_FakeStream(events))
        sink: asyncio.Queue = asyncio.Queue()

        await provider.complete_streaming(_request(), sink)

        received = []
        while not sink.empty():
            received.append(sink.get_nowait())
        assert received == [
            TokenEvent(text="Hi"),
            ToolCallStartEvent(id="tu1", name="echo"),
            ToolCallDeltaEvent(id="tu1", arguments_delta='{"text": "x"}'),
            ToolCallEndEvent(id="tu1"),
            DoneEvent(usage=TokenUsage(input_tokens=5, output_tokens=9), finish_reason="tool_use"),
        ]

    def test_cost_and_window_from_pricing(self):
        provider, _ = _claude(None)
        assert provider.cost_rates() == cost_rates("claude-sonnet-4-5")
        assert provider.context_window() == 200_000


class TestOpenAIResponse:
    def test_no_choices_is_parse_error(self):
        openai_module = pytest.importorskip("openai")
        from steward.providers.openai import OpenAIProvider

        provider = OpenAIProvider(client=SimpleNamespace())
        assert provider._sdk is openai_module
        with pytest.raises(ResponseParseError):
            provider._to_response(SimpleNamespace(choices=[], usage=None, model="gpt-4o"))
