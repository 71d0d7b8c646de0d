"""
Steward LLM Provider Base

Abstract interface for LLM providers. All providers implement this
interface so the orchestrator can swap backends without changing the
iteration loop.

Key design decisions:
- Async-first (all providers are async)
- Batch and streaming completion share one request/response model
- Streaming pushes StreamEvents into a caller-owned bounded queue
- Retry lives in the Brain, not here, so cancellation can interrupt backoff
- Token estimation uses the chars/4 heuristic unless a provider knows better
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Literal, Union

from pydantic import BaseModel, Field

from steward.core.models import Message, MultiPartContent, Role, TextContent, TokenUsage, ToolDefinition
from steward.providers.rate_limiter import RateLimiter


# ─── Requests and responses ──────────────────────────────────

class CompletionRequest(BaseModel):
    """A single provider call."""
    messages: list[Message] = Field(default_factory=list)
    tools: list[ToolDefinition] | None = None
    temperature: float = 0.7
    max_tokens: int | None = None
    stop_sequences: list[str] = Field(default_factory=list)
    model: str | None = None
    # Precision hint per tool name ("full", "half", "quarter"); missing means full
    tool_precision: dict[str, str] = Field(default_factory=dict)

    @property
    def deferred_tools(self) -> list[str]:
        return [name for name, p in self.tool_precision.items() if p != "full"]


class CompletionResponse(BaseModel):
    """Unified response from any provider."""
    message: Message
    usage: TokenUsage = Field(default_factory=TokenUsage)
    finish_reason: str | None = None
    model: str = ""


class ProviderConfig(BaseModel):
    """Configuration for an LLM provider."""
    api_key: str | None = None
    model: str = ""
    base_url: str | None = None
    timeout_seconds: float = 120.0
    context_window: int | None = None


# ─── Stream events ───────────────────────────────────────────

class TokenEvent(BaseModel):
    type: Literal["token"] = "token"
    text: str


class ToolCallStartEvent(BaseModel):
    type: Literal["tool_call_start"] = "tool_call_start"
    id: str
    name: str
    raw_function_call: Any = None  # opaque provider metadata, echoed back verbatim


class ToolCallDeltaEvent(BaseModel):
    type: Literal["tool_call_delta"] = "tool_call_delta"
    id: str
    arguments_delta: str


class ToolCallEndEvent(BaseModel):
    type: Literal["tool_call_end"] = "tool_call_end"
    id: str


class ThinkingDeltaEvent(BaseModel):
    type: Literal["thinking_delta"] = "thinking_delta"
    text: str


class ThinkingCompleteEvent(BaseModel):
    type: Literal["thinking_complete"] = "thinking_complete"
    thinking: str = ""
    signature: str | None = None


class CitationBlockEvent(BaseModel):
    type: Literal["citation_block"] = "citation_block"
    cited_text: str = ""
    source: str = ""
    title: str | None = None


class CodeExecutionResultEvent(BaseModel):
    type: Literal["code_execution_result"] = "code_execution_result"
    code: str = ""
    output: str = ""
    return_code: int = 0


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"
    usage: TokenUsage = Field(default_factory=TokenUsage)
    finish_reason: str | None = None


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


StreamEvent = Union[
    TokenEvent,
    ToolCallStartEvent,
    ToolCallDeltaEvent,
    ToolCallEndEvent,
    ThinkingDeltaEvent,
    ThinkingCompleteEvent,
    CitationBlockEvent,
    CodeExecutionResultEvent,
    DoneEvent,
    ErrorEvent,
]


# ─── Token estimation ────────────────────────────────────────

def estimate_text_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters."""
    return len(text) // 4


def estimate_message_tokens(messages: list[Message]) -> int:
    return sum(m.char_len() for m in messages) // 4


def estimate_tool_tokens(tools: list[ToolDefinition] | None) -> int:
    if not tools:
        return 0
    return sum(
        len(t.name) + len(t.description) + len(json.dumps(t.parameters, default=str))
        for t in tools
    ) // 4


def compact_tool(tool: ToolDefinition, precision: str) -> ToolDefinition:
    """Reduce a tool schema for deferred (half/quarter precision) serialization.

    Half keeps the first sentence of the description and required params.
    Quarter keeps ten words of description and parameter names only.
    """
    if precision == "full":
        return tool
    props: dict[str, Any] = tool.parameters.get("properties", {}) or {}
    required: list[str] = tool.parameters.get("required", []) or []
    if precision == "half":
        description = tool.description.split(". ")[0].rstrip(".")
        kept = {k: v for k, v in props.items() if k in required}
    else:
        description = " ".join(tool.description.split()[:10])
        kept = {k: {"type": v.get("type", "string")} if isinstance(v, dict) else {} for k, v in props.items()}
    return ToolDefinition(
        name=tool.name,
        description=description,
        parameters={"type": "object", "properties": kept, "required": required},
    )


def prepare_tools(request: CompletionRequest) -> list[ToolDefinition]:
    """Apply the request's precision hints to its tool list."""
    if not request.tools:
        return []
    return [compact_tool(t, request.tool_precision.get(t.name, "full")) for t in request.tools]


# ─── Provider contract ───────────────────────────────────────

class LlmProvider(ABC):
    """Abstract base class for LLM providers.

    Subclasses implement ``_complete_impl`` and ``_stream_impl``. The base
    class applies the optional rate limiter around both.
    """

    DEFAULT_CONTEXT_WINDOW = 128_000

    def __init__(
        self,
        config: ProviderConfig | None = None,
        rate_limiter: RateLimiter | None = None,
    ):
        self._config = config or ProviderConfig()
        self._rate_limiter = rate_limiter

    @property
    def name(self) -> str:
        """Human-readable provider name."""
        return self.__class__.__name__

    def model_name(self) -> str:
        return self._config.model

    def context_window(self) -> int:
        return self._config.context_window or self.DEFAULT_CONTEXT_WINDOW

    @abstractmethod
    def cost_rates(self) -> tuple[float, float]:
        """USD per input token and per output token."""
        ...

    def estimate_tokens(self, messages: list[Message]) -> int:
        return estimate_message_tokens(messages)

    def set_rate_limiter(self, limiter: RateLimiter | None) -> None:
        self._rate_limiter = limiter

    @abstractmethod
    async def _complete_impl(self, request: CompletionRequest) -> CompletionResponse:
        """Provider-specific batch completion."""
        ...

    @abstractmethod
    async def _stream_impl(
        self, request: CompletionRequest, sink: asyncio.Queue[StreamEvent]
    ) -> None:
        """Provider-specific streaming. Must push a DoneEvent or raise."""
        ...

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Batch completion."""
        if self._rate_limiter is not None:
            await self._rate_limiter.acquire(self.estimate_tokens(request.messages))
        response = await self._complete_impl(request)
        if self._rate_limiter is not None:
            self._rate_limiter.record_output(response.usage.output_tokens)
        return response

    async def complete_streaming(
        self, request: CompletionRequest, sink: asyncio.Queue[StreamEvent]
    ) -> None:
        """Streaming completion; pushes StreamEvents into ``sink``."""
        if self._rate_limiter is not None:
            await self._rate_limiter.acquire(self.estimate_tokens(request.messages))
        await self._stream_impl(request, sink)


# ─── Message assembly ────────────────────────────────────────

def assemble_message(parts: list[Any], metadata: Any = None) -> Message:
    """Build an assistant message from ordered parts.

    A single part becomes that content directly; several become multi-part.
    Empty output becomes an empty text message.
    """
    if not parts:
        return Message(role=Role.ASSISTANT, content=TextContent(text=""), metadata=metadata)
    if len(parts) == 1:
        return Message(role=Role.ASSISTANT, content=parts[0], metadata=metadata)
    return Message(role=Role.ASSISTANT, content=MultiPartContent(parts=parts), metadata=metadata)


def parse_arguments(raw: str) -> dict[str, Any]:
    """Parse accumulated tool-call argument JSON; empty means no arguments."""
    if not raw.strip():
        return {}
    parsed = json.loads(raw)
    return parsed if isinstance(parsed, dict) else {"value": parsed}
