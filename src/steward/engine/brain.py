"""
Steward Brain

Wraps an LLM provider with prompt construction, context-window checks,
streaming assembly, transient-error retry and cost tracking.

Streaming runs the provider in a separate producer task that pushes
StreamEvents into a bounded queue; the Brain consumes them concurrently,
forwarding tokens to the UI and assembling the final assistant message.
The producer always finishes before the consumer sees the end-of-stream
marker, so no events are lost.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any

from steward.core.cancellation import CancellationToken
from steward.core.models import (
    CitationContent,
    CodeExecutionContent,
    CostEstimate,
    Message,
    Role,
    TextContent,
    ThinkingContent,
    TokenUsage,
    ToolCallContent,
    ToolDefinition,
)
from steward.exceptions import (
    ContextOverflowError,
    LlmError,
    RateLimitedError,
    StreamingError,
    TaskCancelledError,
    is_retryable,
)
from steward.logging import get_logger
from steward.observability import get_tracer, record_llm_tokens
from steward.providers.base import (
    CitationBlockEvent,
    CodeExecutionResultEvent,
    CompletionRequest,
    CompletionResponse,
    DoneEvent,
    ErrorEvent,
    LlmProvider,
    StreamEvent,
    ThinkingCompleteEvent,
    ThinkingDeltaEvent,
    TokenEvent,
    ToolCallDeltaEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
    assemble_message,
    estimate_tool_tokens,
    parse_arguments,
    prepare_tools,
)

logger = get_logger("steward.engine.brain")

STREAM_QUEUE_SIZE = 64
MAX_RETRIES = 3
MAX_BACKOFF_SECONDS = 32

TokenSink = Callable[[str], Awaitable[None]]

_END_OF_STREAM = object()


# ─── Tool sequence sanitizer ─────────────────────────────────

def _is_tool_result_message(message: Message) -> bool:
    return bool(message.tool_results) and message.role in (Role.TOOL, Role.USER)


def sanitize_tool_sequence(messages: list[Message]) -> list[Message]:
    """Repair tool-call/tool-result pairing before a provider request.

    - Tool results whose call id never appears in an assistant tool call
      are dropped.
    - System messages wedged directly after an assistant tool-call message
      are moved ahead of it, so the call and its results stay adjacent.
    - A tool call with no result anywhere gets a synthetic error result
      inserted after the call's existing results.

    Returns a new list; the input is not modified.
    """
    call_ids: set[str] = set()
    for message in messages:
        if message.role == Role.ASSISTANT:
            call_ids.update(c.id for c in message.tool_calls)

    cleaned: list[Message] = []
    for message in messages:
        if _is_tool_result_message(message):
            orphans = [r for r in message.tool_results if r.call_id not in call_ids]
            if orphans and len(orphans) == len(message.tool_results):
                logger.warning(
                    "Removing orphaned tool_result (no matching tool_call)",
                    extra={"action": orphans[0].call_id},
                )
                continue
        cleaned.append(message)

    i = 0
    while i + 1 < len(cleaned):
        if cleaned[i].role == Role.ASSISTANT and cleaned[i].tool_calls:
            j = i + 1
            while j < len(cleaned) and cleaned[j].role == Role.SYSTEM:
                j += 1
            if j > i + 1:
                wedged = cleaned[i + 1:j]
                del cleaned[i + 1:j]
                cleaned[i:i] = wedged
                i += len(wedged)
        i += 1

    answered: set[str] = set()
    for message in cleaned:
        if _is_tool_result_message(message):
            answered.update(r.call_id for r in message.tool_results)

    repaired: list[Message] = []
    pending: list[str] = []
    for message in cleaned:
        if pending and not _is_tool_result_message(message):
            for call_id in pending:
                repaired.append(_synthetic_result(call_id))
            pending = []
        repaired.append(message)
        if message.role == Role.ASSISTANT:
            pending = [c.id for c in message.tool_calls if c.id not in answered]
    for call_id in pending:
        repaired.append(_synthetic_result(call_id))
    return repaired


def _synthetic_result(call_id: str) -> Message:
    logger.warning("Inserting synthetic result for unanswered tool_call", extra={"action": call_id})
    return Message.tool_result(call_id, "Tool error: no result was recorded for this call", is_error=True)


# ─── Brain ───────────────────────────────────────────────────

class Brain:
    """Higher-level access to an LLM provider.

    Owns the running usage and cost totals. The provider is shared with
    the streaming producer task.
    """

    def __init__(
        self,
        provider: LlmProvider,
        system_prompt: str,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ):
        self.provider = provider
        self.system_prompt = system_prompt
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.total_usage = TokenUsage()
        self.total_cost = CostEstimate()
        self._knowledge_addendum = ""

    def set_knowledge_addendum(self, addendum: str) -> None:
        """Distilled rules appended to the system prompt on every request."""
        self._knowledge_addendum = addendum

    @property
    def knowledge_addendum(self) -> str:
        return self._knowledge_addendum

    def build_messages(self, conversation: list[Message]) -> list[Message]:
        """Prepend the system prompt and sanitize tool-call ordering."""
        prompt = self.system_prompt + self._knowledge_addendum
        return sanitize_tool_sequence([Message.system(prompt), *conversation])

    def estimate_tokens(
        self,
        conversation: list[Message],
        tools: list[ToolDefinition] | None = None,
    ) -> int:
        return self.provider.estimate_tokens(self.build_messages(conversation)) + estimate_tool_tokens(tools)

    def context_usage_ratio(
        self,
        conversation: list[Message],
        tools: list[ToolDefinition] | None = None,
    ) -> float:
        return self.estimate_tokens(conversation, tools) / max(self.provider.context_window(), 1)

    def _prepare(
        self,
        conversation: list[Message],
        tools: list[ToolDefinition] | None,
        tool_precision: dict[str, str] | None,
    ) -> CompletionRequest:
        request = CompletionRequest(
            messages=self.build_messages(conversation),
            tools=tools or None,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            tool_precision=tool_precision or {},
        )
        used = self.provider.estimate_tokens(request.messages) + estimate_tool_tokens(prepare_tools(request))
        limit = self.provider.context_window()
        if used > limit:
            raise ContextOverflowError(self.provider.name, used, limit)
        logger.debug(
            "Sending completion request",
            extra={"provider": self.provider.name, "action": f"~{used} tokens"},
        )
        return request

    # ─── Batch ─────────────────────────────────────────────

    async def think(
        self,
        conversation: list[Message],
        tools: list[ToolDefinition] | None = None,
        tool_precision: dict[str, str] | None = None,
    ) -> CompletionResponse:
        """Single batch completion. Usage is added to the running totals."""
        request = self._prepare(conversation, tools, tool_precision)
        with get_tracer().start_as_current_span("steward.llm_call") as span:
            span.set_attribute("steward.model", self.provider.model_name())
            span.set_attribute("steward.streaming", False)
            response = await self.provider.complete(request)
            span.set_attribute("steward.input_tokens", response.usage.input_tokens)
            span.set_attribute("steward.output_tokens", response.usage.output_tokens)
        self.track_usage(response.usage)
        return response

    # ─── Streaming ─────────────────────────────────────────

    async def think_streaming(
        self,
        conversation: list[Message],
        tools: list[ToolDefinition] | None = None,
        tool_precision: dict[str, str] | None = None,
        on_token: TokenSink | None = None,
    ) -> CompletionResponse:
        """Streaming completion assembled into a single response.

        Text is the exact concatenation of Token events; tool calls keep the
        order of their first ToolCallStart event.
        """
        request = self._prepare(conversation, tools, tool_precision)
        queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=STREAM_QUEUE_SIZE)

        async def produce() -> None:
            try:
                await self.provider.complete_streaming(request, queue)
            finally:
                await queue.put(_END_OF_STREAM)

        with get_tracer().start_as_current_span("steward.llm_call") as span:
            span.set_attribute("steward.model", self.provider.model_name())
            span.set_attribute("steward.streaming", True)
            producer = asyncio.create_task(produce())
            try:
                assembler = _StreamAssembler()
                while True:
                    event = await queue.get()
                    if event is _END_OF_STREAM:
                        break
                    await assembler.feed(event, on_token)
                # Surfaces any exception raised by the provider
                await producer
            finally:
                if not producer.done():
                    producer.cancel()

            if assembler.error is not None:
                raise StreamingError(self.provider.name, assembler.error)
            response = assembler.build(self.provider.model_name())
            span.set_attribute("steward.input_tokens", response.usage.input_tokens)
            span.set_attribute("steward.output_tokens", response.usage.output_tokens)

        self.track_usage(response.usage)
        return response

    # ─── Retry ─────────────────────────────────────────────

    async def think_with_retry(
        self,
        conversation: list[Message],
        tools: list[ToolDefinition] | None = None,
        tool_precision: dict[str, str] | None = None,
        *,
        streaming: bool = True,
        on_token: TokenSink | None = None,
        cancel_token: CancellationToken | None = None,
        max_retries: int = MAX_RETRIES,
    ) -> CompletionResponse:
        """Think with exponential backoff on transient provider errors.

        Backoff is ``min(2**attempt, 32)`` seconds, raised to a rate limit's
        ``retry_after`` when the provider supplied one. Cancellation is
        checked during every backoff sleep.
        """
        cancel_token = cancel_token or CancellationToken()
        attempt = 0
        while True:
            try:
                if streaming:
                    return await self.think_streaming(conversation, tools, tool_precision, on_token)
                return await self.think(conversation, tools, tool_precision)
            except LlmError as e:
                if not is_retryable(e) or attempt >= max_retries:
                    raise
                wait = backoff_seconds(attempt, e)
                logger.info(
                    f"Retrying after transient error (attempt {attempt + 1}/{max_retries}): {e.reason}",
                    extra={"provider": self.provider.name, "duration_ms": int(wait * 1000)},
                )
                if await cancel_token.sleep(wait):
                    raise TaskCancelledError() from e
                attempt += 1

    # ─── Accounting ────────────────────────────────────────

    def track_usage(self, usage: TokenUsage) -> CostEstimate:
        """Add one call's usage to the totals and return its cost."""
        cost = CostEstimate.from_usage(usage, self.provider.cost_rates())
        self.total_usage.accumulate(usage)
        self.total_cost.accumulate(cost)
        record_llm_tokens(
            model=self.provider.model_name(),
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        )
        logger.info(
            f"Completion received: {usage.input_tokens} in / {usage.output_tokens} out, "
            f"session ${self.total_cost.total:.4f}",
            extra={"provider": self.provider.name},
        )
        return cost


def backoff_seconds(attempt: int, error: LlmError) -> float:
    wait = float(min(2 ** attempt, MAX_BACKOFF_SECONDS))
    if isinstance(error, RateLimitedError) and error.retry_after is not None:
        wait = max(wait, error.retry_after)
    return wait


class _StreamAssembler:
    """Accumulates stream events into an assistant message."""

    def __init__(self) -> None:
        self.text: list[str] = []
        self.call_order: list[str] = []
        self.call_names: dict[str, str] = {}
        self.call_args: dict[str, list[str]] = {}
        self.call_meta: dict[str, Any] = {}
        self.thinking: list[ThinkingContent] = []
        self.thinking_buffer: list[str] = []
        self.extras: list[Any] = []
        self.usage = TokenUsage()
        self.finish_reason: str | None = None
        self.error: str | None = None

    async def feed(self, event: StreamEvent, on_token: TokenSink | None) -> None:
        if isinstance(event, TokenEvent):
            self.text.append(event.text)
            if on_token is not None:
                await on_token(event.text)
        elif isinstance(event, ToolCallStartEvent):
            if event.id not in self.call_names:
                self.call_order.append(event.id)
                self.call_args[event.id] = []
            self.call_names[event.id] = event.name
            if event.raw_function_call is not None:
                self.call_meta[event.id] = event.raw_function_call
        elif isinstance(event, ToolCallDeltaEvent):
            self.call_args.setdefault(event.id, []).append(event.arguments_delta)
        elif isinstance(event, ToolCallEndEvent):
            pass
        elif isinstance(event, ThinkingDeltaEvent):
            self.thinking_buffer.append(event.text)
        elif isinstance(event, ThinkingCompleteEvent):
            thinking = event.thinking or "".join(self.thinking_buffer)
            self.thinking.append(ThinkingContent(thinking=thinking, signature=event.signature))
            self.thinking_buffer = []
        elif isinstance(event, CitationBlockEvent):
            self.extras.append(CitationContent(cited_text=event.cited_text, source=event.source, title=event.title))
        elif isinstance(event, CodeExecutionResultEvent):
            self.extras.append(CodeExecutionContent(code=event.code, output=event.output, return_code=event.return_code))
        elif isinstance(event, DoneEvent):
            self.usage = event.usage
            self.finish_reason = event.finish_reason
        elif isinstance(event, ErrorEvent):
            self.error = event.message

    def build(self, model: str) -> CompletionResponse:
        parts: list[Any] = list(self.thinking)
        text = "".join(self.text)
        if text or not self.call_order:
            parts.append(TextContent(text=text))
        for call_id in self.call_order:
            raw = "".join(self.call_args.get(call_id, []))
            try:
                arguments = parse_arguments(raw)
            except json.JSONDecodeError:
                logger.warning(
                    "Malformed streamed tool arguments, passing raw text",
                    extra={"tool_name": self.call_names[call_id]},
                )
                arguments = {"raw": raw}
            parts.append(ToolCallContent(id=call_id, name=self.call_names[call_id], arguments=arguments))
        parts.extend(self.extras)

        # Drop an empty text part that only accompanies thinking
        if len(parts) > 1:
            parts = [p for p in parts if not (isinstance(p, TextContent) and not p.text)] or parts

        metadata = None
        if self.call_meta:
            metadata = [
                self.call_meta.get(p.id) if isinstance(p, ToolCallContent) else None
                for p in parts
            ]
        return CompletionResponse(
            message=assemble_message(parts, metadata),
            usage=self.usage,
            finish_reason=self.finish_reason,
            model=model,
        )

