"""
Steward Mock Provider

Scripted provider for tests and offline development. Responses are
queued up front and returned in order; once the queue is empty a fixed
text reply is returned. Streaming replays the same responses as events.
"""

from __future__ import annotations

import asyncio
import json
import re
import uuid
from typing import Any

from steward.core.models import (
    ImageContent,
    Message,
    MultiPartContent,
    Role,
    TextContent,
    ThinkingContent,
    TokenUsage,
    ToolCallContent,
)
from steward.providers.base import (
    CompletionRequest,
    CompletionResponse,
    DoneEvent,
    LlmProvider,
    ProviderConfig,
    StreamEvent,
    ThinkingCompleteEvent,
    TokenEvent,
    ToolCallDeltaEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
)

EMPTY_QUEUE_REPLY = "I'm a mock LLM. No queued responses available."


class MockLlmProvider(LlmProvider):
    """Deterministic provider driven by a response queue."""

    def __init__(self, context_window: int = 128_000):
        super().__init__(ProviderConfig(model="mock-model", context_window=context_window))
        self._responses: list[CompletionResponse | Exception] = []
        self.call_count = 0
        self.requests: list[CompletionRequest] = []

    @classmethod
    def with_response(cls, text: str, copies: int = 20) -> MockLlmProvider:
        """A provider that answers every call with the same text."""
        provider = cls()
        for _ in range(copies):
            provider.queue_response(cls.text_response(text))
        return provider

    def queue_response(self, response: CompletionResponse | Exception) -> None:
        """Queue a response, or an exception to raise, for the next call."""
        self._responses.append(response)

    @property
    def pending(self) -> int:
        return len(self._responses)

    # ─── Response builders ─────────────────────────────────

    @staticmethod
    def text_response(text: str) -> CompletionResponse:
        return CompletionResponse(
            message=Message.assistant(text),
            usage=TokenUsage(input_tokens=100, output_tokens=50),
            finish_reason="stop",
            model="mock-model",
        )

    @staticmethod
    def tool_call_response(tool_name: str, arguments: dict[str, Any] | None = None) -> CompletionResponse:
        return CompletionResponse(
            message=Message.tool_call(f"call_{uuid.uuid4()}", tool_name, arguments or {}),
            usage=TokenUsage(input_tokens=100, output_tokens=30),
            finish_reason="tool_calls",
            model="mock-model",
        )

    @staticmethod
    def multipart_response(
        text: str, tool_name: str, arguments: dict[str, Any] | None = None
    ) -> CompletionResponse:
        parts = [
            TextContent(text=text),
            ToolCallContent(id=f"call_{uuid.uuid4()}", name=tool_name, arguments=arguments or {}),
        ]
        return CompletionResponse(
            message=Message(role=Role.ASSISTANT, content=MultiPartContent(parts=parts)),
            usage=TokenUsage(input_tokens=100, output_tokens=50),
            finish_reason="tool_calls",
            model="mock-model",
        )

    # ─── Provider contract ─────────────────────────────────

    def cost_rates(self) -> tuple[float, float]:
        return 0.0, 0.0

    def estimate_tokens(self, messages: list[Message]) -> int:
        total = 0
        for message in messages:
            if isinstance(message.content, ImageContent):
                total += 85
            else:
                total += message.char_len() // 4
        return total + 100  # message structure overhead

    async def _complete_impl(self, request: CompletionRequest) -> CompletionResponse:
        self.call_count += 1
        self.requests.append(request)
        if not self._responses:
            return self.text_response(EMPTY_QUEUE_REPLY)
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def _stream_impl(
        self, request: CompletionRequest, sink: asyncio.Queue[StreamEvent]
    ) -> None:
        response = await self._complete_impl(request)
        content = response.message.content
        parts = content.parts if isinstance(content, MultiPartContent) else [content]
        for part in parts:
            if isinstance(part, TextContent):
                # Chunks keep their trailing whitespace so the tokens re-join exactly
                for chunk in re.findall(r"\s*\S+\s*", part.text) or ([part.text] if part.text else []):
                    await sink.put(TokenEvent(text=chunk))
            elif isinstance(part, ToolCallContent):
                await sink.put(ToolCallStartEvent(id=part.id, name=part.name))
                await sink.put(ToolCallDeltaEvent(id=part.id, arguments_delta=json.dumps(part.arguments)))
                await sink.put(ToolCallEndEvent(id=part.id))
            elif isinstance(part, ThinkingContent):
                await sink.put(ThinkingCompleteEvent(thinking=part.thinking, signature=part.signature))
        await sink.put(DoneEvent(usage=response.usage, finish_reason=response.finish_reason))
