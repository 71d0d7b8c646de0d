"""
Steward Claude Provider

Wraps the Anthropic SDK (anthropic.AsyncAnthropic) behind the unified
LlmProvider interface.

Supports:
- Tool use (native)
- Streaming via raw message events
- Extended thinking blocks (signatures echoed back verbatim)
- Precision hints (deferred tools sent as compact schemas)
"""

from __future__ import annotations

import asyncio
from typing import Any

import anthropic

from steward.core.models import (
    CitationContent,
    CodeExecutionContent,
    Message,
    MultiPartContent,
    Role,
    SearchResultContent,
    TextContent,
    ThinkingContent,
    TokenUsage,
    ToolCallContent,
    ToolResultContent,
    summarize_content,
)
from steward.exceptions import (
    LlmConnectionError,
    LlmError,
    LlmTimeoutError,
    RateLimitedError,
    StreamingError,
)
from steward.providers import pricing
from steward.providers.base import (
    CompletionRequest,
    CompletionResponse,
    DoneEvent,
    LlmProvider,
    ProviderConfig,
    StreamEvent,
    ThinkingCompleteEvent,
    ThinkingDeltaEvent,
    TokenEvent,
    ToolCallDeltaEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
    assemble_message,
    prepare_tools,
)
from steward.providers.rate_limiter import RateLimiter


class ClaudeProvider(LlmProvider):
    """Anthropic Claude provider via the official SDK.

    Falls back to the ANTHROPIC_API_KEY env var if no key is provided.
    """

    DEFAULT_MODEL = "claude-sonnet-4-5"
    DEFAULT_MAX_TOKENS = 4096

    def __init__(
        self,
        config: ProviderConfig | None = None,
        client: anthropic.AsyncAnthropic | None = None,
        rate_limiter: RateLimiter | None = None,
    ):
        super().__init__(config or ProviderConfig(model=self.DEFAULT_MODEL), rate_limiter)
        if not self._config.model:
            self._config.model = self.DEFAULT_MODEL
        self._client = client or anthropic.AsyncAnthropic(
            api_key=self._config.api_key or None,
            base_url=self._config.base_url or None,
            timeout=self._config.timeout_seconds,
        )

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        return self._client

    def cost_rates(self) -> tuple[float, float]:
        return pricing.cost_rates(self._config.model)

    def context_window(self) -> int:
        return self._config.context_window or pricing.context_window(self._config.model)

    # ─── Request building ──────────────────────────────────

    def _build_kwargs(self, request: CompletionRequest) -> dict[str, Any]:
        system, messages = to_anthropic_messages(request.messages)
        kwargs: dict[str, Any] = {
            "model": request.model or self._config.model,
            "max_tokens": request.max_tokens or self.DEFAULT_MAX_TOKENS,
            "messages": messages,
            "temperature": request.temperature,
        }
        if system:
            kwargs["system"] = system
        if request.stop_sequences:
            kwargs["stop_sequences"] = request.stop_sequences
        tools = prepare_tools(request)
        if tools:
            kwargs["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.parameters}
                for t in tools
            ]
        return kwargs

    # ─── Batch ─────────────────────────────────────────────

    async def _complete_impl(self, request: CompletionRequest) -> CompletionResponse:
        kwargs = self._build_kwargs(request)
        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIError as e:
            raise self._map_error(e) from e
        return self._to_response(response)

    def _to_response(self, response: Any) -> CompletionResponse:
        parts: list[Any] = []
        for block in response.content:
            if block.type == "text":
                parts.append(TextContent(text=block.text))
                for citation in getattr(block, "citations", None) or []:
                    parts.append(CitationContent(
                        cited_text=getattr(citation, "cited_text", ""),
                        source=getattr(citation, "document_title", "") or "",
                    ))
            elif block.type == "tool_use":
                parts.append(ToolCallContent(id=block.id, name=block.name, arguments=dict(block.input or {})))
            elif block.type == "thinking":
                parts.append(ThinkingContent(thinking=block.thinking, signature=block.signature))
            elif block.type == "web_search_tool_result":
                results = [
                    {"title": getattr(r, "title", ""), "url": getattr(r, "url", "")}
                    for r in (block.content if isinstance(block.content, list) else [])
                ]
                parts.append(SearchResultContent(results=results))
            elif block.type == "code_execution_tool_result":
                content = block.content
                parts.append(CodeExecutionContent(
                    output=getattr(content, "stdout", "") or "",
                    return_code=getattr(content, "return_code", 0) or 0,
                ))

        usage = TokenUsage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        return CompletionResponse(
            message=assemble_message(parts),
            usage=usage,
            finish_reason=response.stop_reason,
            model=response.model,
        )

    # ─── Streaming ─────────────────────────────────────────

    async def _stream_impl(
        self, request: CompletionRequest, sink: asyncio.Queue[StreamEvent]
    ) -> None:
        kwargs = self._build_kwargs(request)
        usage = TokenUsage()
        finish_reason: str | None = None
        # content-block index -> (kind, id)
        blocks: dict[int, tuple[str, str]] = {}
        thinking_text: dict[int, list[str]] = {}
        signatures: dict[int, str] = {}

        try:
            stream = await self._client.messages.create(stream=True, **kwargs)
            async for event in stream:
                if event.type == "message_start":
                    usage.input_tokens = event.message.usage.input_tokens
                elif event.type == "content_block_start":
                    block = event.content_block
                    if block.type == "tool_use":
                        blocks[event.index] = ("tool_use", block.id)
                        await sink.put(ToolCallStartEvent(id=block.id, name=block.name))
                    elif block.type == "thinking":
                        blocks[event.index] = ("thinking", "")
                        thinking_text[event.index] = []
                    else:
                        blocks[event.index] = (block.type, "")
                elif event.type == "content_block_delta":
                    delta = event.delta
                    if delta.type == "text_delta":
                        await sink.put(TokenEvent(text=delta.text))
                    elif delta.type == "input_json_delta":
                        _, call_id = blocks.get(event.index, ("", ""))
                        await sink.put(ToolCallDeltaEvent(id=call_id, arguments_delta=delta.partial_json))
                    elif delta.type == "thinking_delta":
                        thinking_text.setdefault(event.index, []).append(delta.thinking)
                        await sink.put(ThinkingDeltaEvent(text=delta.thinking))
                    elif delta.type == "signature_delta":
                        signatures[event.index] = delta.signature
                elif event.type == "content_block_stop":
                    kind, call_id = blocks.get(event.index, ("", ""))
                    if kind == "tool_use":
                        await sink.put(ToolCallEndEvent(id=call_id))
                    elif kind == "thinking":
                        await sink.put(ThinkingCompleteEvent(
                            thinking="".join(thinking_text.get(event.index, [])),
                            signature=signatures.get(event.index),
                        ))
                elif event.type == "message_delta":
                    usage.output_tokens = event.usage.output_tokens
                    finish_reason = event.delta.stop_reason
        except anthropic.APIError as e:
            raise self._map_error(e, streaming=True) from e

        await sink.put(DoneEvent(usage=usage, finish_reason=finish_reason))

    # ─── Errors ────────────────────────────────────────────

    def _map_error(self, error: anthropic.APIError, streaming: bool = False) -> LlmError:
        if isinstance(error, anthropic.RateLimitError):
            retry_after = None
            header = error.response.headers.get("retry-after") if error.response else None
            if header:
                try:
                    retry_after = float(header)
                except ValueError:
                    retry_after = None
            return RateLimitedError(self.name, retry_after=retry_after)
        if isinstance(error, anthropic.APITimeoutError):
            return LlmTimeoutError(self.name, str(error))
        if isinstance(error, anthropic.APIConnectionError):
            return LlmConnectionError(self.name, str(error))
        if isinstance(error, anthropic.APIStatusError) and error.status_code in (502, 503, 529):
            return LlmConnectionError(self.name, f"{error.status_code}: {error.message}")
        if streaming:
            return StreamingError(self.name, str(error))
        return LlmError(self.name, str(error))


# ─── Message conversion ──────────────────────────────────────

def _content_blocks(content: Any) -> list[dict[str, Any]]:
    if isinstance(content, TextContent):
        return [{"type": "text", "text": content.text}] if content.text else []
    if isinstance(content, ToolCallContent):
        return [{"type": "tool_use", "id": content.id, "name": content.name, "input": content.arguments}]
    if isinstance(content, ToolResultContent):
        return [{
            "type": "tool_result",
            "tool_use_id": content.call_id,
            "content": content.output,
            "is_error": content.is_error,
        }]
    if isinstance(content, ThinkingContent):
        if content.signature:
            return [{"type": "thinking", "thinking": content.thinking, "signature": content.signature}]
        return []
    if isinstance(content, MultiPartContent):
        blocks: list[dict[str, Any]] = []
        for part in content.parts:
            blocks.extend(_content_blocks(part))
        return blocks
    summary = summarize_content(content)
    return [{"type": "text", "text": summary}] if summary else []


def to_anthropic_messages(messages: list[Message]) -> tuple[str, list[dict[str, Any]]]:
    """Split system text out and convert the rest to Anthropic message dicts.

    Consecutive messages that map to the same role are merged, since tool
    results travel as user-role content.
    """
    system_parts: list[str] = []
    converted: list[dict[str, Any]] = []
    for message in messages:
        if message.role == Role.SYSTEM:
            if message.text:
                system_parts.append(message.text)
            continue
        role = "assistant" if message.role == Role.ASSISTANT else "user"
        blocks = _content_blocks(message.content)
        if not blocks:
            continue
        if converted and converted[-1]["role"] == role:
            converted[-1]["content"].extend(blocks)
        else:
            converted.append({"role": role, "content": blocks})
    return "\n\n".join(system_parts), converted
