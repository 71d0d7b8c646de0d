"""
Steward OpenAI Provider

Wraps the OpenAI chat completions API (GPT-4o, o1, etc.) behind the
unified LlmProvider interface.

Requires: `pip install openai` or `pip install steward[openai]`
Set OPENAI_API_KEY environment variable.

Also compatible with OpenAI-compatible APIs (Azure, Together, Groq,
Fireworks, Ollama) via base_url override.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from steward.core.models import (
    Message,
    MultiPartContent,
    Role,
    TextContent,
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
    ResponseParseError,
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
    TokenEvent,
    ToolCallDeltaEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
    assemble_message,
    parse_arguments,
    prepare_tools,
)
from steward.providers.rate_limiter import RateLimiter


class OpenAIProvider(LlmProvider):
    """OpenAI and OpenAI-compatible provider.

    Uses the official openai Python SDK. Falls back to OPENAI_API_KEY env var.
    """

    DEFAULT_MODEL = "gpt-4o"

    def __init__(
        self,
        config: ProviderConfig | None = None,
        client: Any = None,
        rate_limiter: RateLimiter | None = None,
    ):
        super().__init__(config or ProviderConfig(model=self.DEFAULT_MODEL), rate_limiter)
        if not self._config.model:
            self._config.model = self.DEFAULT_MODEL
        self._sdk = self._import_sdk()
        self._client = client or self._create_client()

    @staticmethod
    def _import_sdk() -> Any:
        """Import openai lazily so the base install does not need it."""
        try:
            import openai
        except ImportError as e:
            raise ImportError(
                "OpenAI provider requires the 'openai' package. Install with: pip install openai"
            ) from e
        return openai

    def _create_client(self) -> Any:
        kwargs: dict[str, Any] = {"timeout": self._config.timeout_seconds}
        if self._config.api_key:
            kwargs["api_key"] = self._config.api_key
        if self._config.base_url:
            kwargs["base_url"] = self._config.base_url
        return self._sdk.AsyncOpenAI(**kwargs)

    def cost_rates(self) -> tuple[float, float]:
        return pricing.cost_rates(self._config.model)

    def context_window(self) -> int:
        return self._config.context_window or pricing.context_window(self._config.model)

    def _build_kwargs(self, request: CompletionRequest) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": request.model or self._config.model,
            "messages": to_openai_messages(request.messages),
            "temperature": request.temperature,
        }
        if request.max_tokens:
            kwargs["max_tokens"] = request.max_tokens
        if request.stop_sequences:
            kwargs["stop"] = request.stop_sequences
        tools = prepare_tools(request)
        if tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters,
                    },
                }
                for t in tools
            ]
        return kwargs

    # ─── Batch ─────────────────────────────────────────────

    async def _complete_impl(self, request: CompletionRequest) -> CompletionResponse:
        try:
            response = await self._client.chat.completions.create(**self._build_kwargs(request))
        except self._sdk.APIError as e:
            raise self._map_error(e) from e
        return self._to_response(response)

    def _to_response(self, response: Any) -> CompletionResponse:
        choice = response.choices[0] if response.choices else None
        if choice is None:
            raise ResponseParseError(self.name, "response contained no choices")

        parts: list[Any] = []
        msg = choice.message
        if msg.content:
            parts.append(TextContent(text=msg.content))
        for tc in msg.tool_calls or []:
            try:
                arguments = parse_arguments(tc.function.arguments or "")
            except json.JSONDecodeError as e:
                raise ResponseParseError(
                    self.name, f"invalid arguments for tool '{tc.function.name}': {e}"
                ) from e
            parts.append(ToolCallContent(id=tc.id, name=tc.function.name, arguments=arguments))

        usage = response.usage
        return CompletionResponse(
            message=assemble_message(parts),
            usage=TokenUsage(
                input_tokens=usage.prompt_tokens if usage else 0,
                output_tokens=usage.completion_tokens if usage else 0,
            ),
            finish_reason=choice.finish_reason,
            model=response.model or "",
        )

    # ─── Streaming ─────────────────────────────────────────

    async def _stream_impl(
        self, request: CompletionRequest, sink: asyncio.Queue[StreamEvent]
    ) -> None:
        kwargs = self._build_kwargs(request)
        kwargs["stream_options"] = {"include_usage": True}
        usage = TokenUsage()
        finish_reason: str | None = None
        # tool-call index within the response -> call id
        call_ids: dict[int, str] = {}

        try:
            stream = await self._client.chat.completions.create(stream=True, **kwargs)
            async for chunk in stream:
                if chunk.usage is not None:
                    usage = TokenUsage(
                        input_tokens=chunk.usage.prompt_tokens,
                        output_tokens=chunk.usage.completion_tokens,
                    )
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                if delta.content:
                    await sink.put(TokenEvent(text=delta.content))
                for tc in delta.tool_calls or []:
                    if tc.index not in call_ids:
                        call_ids[tc.index] = tc.id or f"call_{tc.index}"
                        name = tc.function.name if tc.function else ""
                        await sink.put(ToolCallStartEvent(id=call_ids[tc.index], name=name or ""))
                    if tc.function and tc.function.arguments:
                        await sink.put(ToolCallDeltaEvent(
                            id=call_ids[tc.index], arguments_delta=tc.function.arguments
                        ))
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        except self._sdk.APIError as e:
            raise self._map_error(e, streaming=True) from e

        for index in sorted(call_ids):
            await sink.put(ToolCallEndEvent(id=call_ids[index]))
        await sink.put(DoneEvent(usage=usage, finish_reason=finish_reason))

    # ─── Errors ────────────────────────────────────────────

    def _map_error(self, error: Exception, streaming: bool = False) -> LlmError:
        sdk = self._sdk
        if isinstance(error, sdk.RateLimitError):
            retry_after = None
            response = getattr(error, "response", None)
            header = response.headers.get("retry-after") if response is not None else None
            if header:
                try:
                    retry_after = float(header)
                except ValueError:
                    retry_after = None
            return RateLimitedError(self.name, retry_after=retry_after)
        if isinstance(error, sdk.APITimeoutError):
            return LlmTimeoutError(self.name, str(error))
        if isinstance(error, sdk.APIConnectionError):
            return LlmConnectionError(self.name, str(error))
        if isinstance(error, sdk.APIStatusError) and error.status_code in (502, 503):
            return LlmConnectionError(self.name, f"{error.status_code}: {error.message}")
        if streaming:
            return StreamingError(self.name, str(error))
        return LlmError(self.name, str(error))


# ─── Message conversion ──────────────────────────────────────

def _tool_call_dict(call: ToolCallContent) -> dict[str, Any]:
    return {
        "id": call.id,
        "type": "function",
        "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
    }


def to_openai_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Convert Steward messages to chat-completions message dicts.

    Tool results become ``tool`` role messages; an assistant multi-part
    message becomes one message carrying both text and tool_calls.
    """
    converted: list[dict[str, Any]] = []
    for message in messages:
        content = message.content
        if isinstance(content, ToolResultContent):
            converted.append({
                "role": "tool",
                "tool_call_id": content.call_id,
                "content": content.output,
            })
            continue

        if message.role == Role.ASSISTANT:
            calls = message.tool_calls
            text = message.text
            if text is None and not calls:
                text = summarize_content(content)
            entry: dict[str, Any] = {"role": "assistant", "content": text or None}
            if calls:
                entry["tool_calls"] = [_tool_call_dict(c) for c in calls]
            converted.append(entry)
            continue

        if isinstance(content, MultiPartContent):
            for result in message.tool_results:
                converted.append({
                    "role": "tool",
                    "tool_call_id": result.call_id,
                    "content": result.output,
                })
            text = message.text
            if text:
                converted.append({"role": message.role.value, "content": text})
            continue

        role = "user" if message.role == Role.TOOL else message.role.value
        converted.append({"role": role, "content": message.text or summarize_content(content)})
    return converted
