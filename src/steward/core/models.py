"""
Steward Core Data Models

Shared types used across the runtime: dialogue messages and their content
union, token usage and cost accounting, tool definitions, the risk model
and the agent lifecycle state. This module depends only on pydantic.
"""

from __future__ import annotations

import json
import uuid
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


# ─── Enums ───────────────────────────────────────────────────

class Role(str, Enum):
    """Author of a message in the dialogue."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class RiskLevel(str, Enum):
    """Risk classification for tools, ordered from least to most dangerous."""
    READ_ONLY = "read_only"
    WRITE = "write"
    EXECUTE = "execute"
    NETWORK = "network"
    DESTRUCTIVE = "destructive"

    @property
    def rank(self) -> int:
        return list(RiskLevel).index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank >= other.rank

    def __str__(self) -> str:
        return self.value


class AgentStatus(str, Enum):
    """Lifecycle state of the orchestrator."""
    IDLE = "idle"
    THINKING = "thinking"
    DECIDING = "deciding"
    WAITING_FOR_APPROVAL = "waiting_for_approval"
    WAITING_FOR_CLARIFICATION = "waiting_for_clarification"
    EXECUTING = "executing"
    PLANNING = "planning"
    COMPLETE = "complete"
    ERROR = "error"


# ─── Message content ─────────────────────────────────────────

class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str = ""


class ToolCallContent(BaseModel):
    type: Literal["tool_call"] = "tool_call"
    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolResultContent(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    call_id: str
    output: str = ""
    is_error: bool = False


class ThinkingContent(BaseModel):
    type: Literal["thinking"] = "thinking"
    thinking: str = ""
    signature: str | None = None


class ImageContent(BaseModel):
    type: Literal["image"] = "image"
    media_type: str = "image/png"
    data: str = ""  # base64
    url: str | None = None


class CitationContent(BaseModel):
    type: Literal["citation"] = "citation"
    cited_text: str = ""
    source: str = ""
    title: str | None = None


class CodeExecutionContent(BaseModel):
    type: Literal["code_execution"] = "code_execution"
    code: str = ""
    output: str = ""
    return_code: int = 0


class SearchResultContent(BaseModel):
    type: Literal["search_result"] = "search_result"
    query: str = ""
    results: list[dict[str, Any]] = Field(default_factory=list)


class MultiPartContent(BaseModel):
    type: Literal["multi_part"] = "multi_part"
    parts: list[Content] = Field(default_factory=list)


Content = Annotated[
    Union[
        TextContent,
        ToolCallContent,
        ToolResultContent,
        ThinkingContent,
        ImageContent,
        CitationContent,
        CodeExecutionContent,
        SearchResultContent,
        MultiPartContent,
    ],
    Field(discriminator="type"),
]

MultiPartContent.model_rebuild()

EXTENDED_CONTENT_TYPES = (ImageContent, CitationContent, CodeExecutionContent, SearchResultContent)


def summarize_content(content: BaseModel) -> str:
    """Short textual rendering of any content part, used for display and summaries."""
    if isinstance(content, TextContent):
        return content.text
    if isinstance(content, ToolCallContent):
        return f"[Tool: {content.name}]"
    if isinstance(content, ToolResultContent):
        return f"[Result: {content.output[:80]}]"
    if isinstance(content, ThinkingContent):
        return f"[Thinking: {content.thinking[:80]}]"
    if isinstance(content, ImageContent):
        return f"[Image: {content.media_type}]"
    if isinstance(content, CitationContent):
        label = content.title or content.source
        return f"[Citation: {label}] {content.cited_text}"
    if isinstance(content, CodeExecutionContent):
        return f"[Code execution (exit {content.return_code})] {content.output[:200]}"
    if isinstance(content, SearchResultContent):
        return f"[Search: {content.query}] {len(content.results)} results"
    if isinstance(content, MultiPartContent):
        return " ".join(summarize_content(p) for p in content.parts)
    return ""


# ─── Messages ────────────────────────────────────────────────

class Message(BaseModel):
    """A role-tagged unit of dialogue.

    ``metadata`` carries opaque provider data that must be echoed back
    verbatim on later requests (e.g. thought signatures).
    """
    role: Role
    content: Content
    metadata: Any = None

    @classmethod
    def system(cls, text: str) -> Message:
        return cls(role=Role.SYSTEM, content=TextContent(text=text))

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(role=Role.USER, content=TextContent(text=text))

    @classmethod
    def assistant(cls, text: str) -> Message:
        return cls(role=Role.ASSISTANT, content=TextContent(text=text))

    @classmethod
    def tool_call(cls, call_id: str, name: str, arguments: dict[str, Any]) -> Message:
        return cls(
            role=Role.ASSISTANT,
            content=ToolCallContent(id=call_id, name=name, arguments=arguments),
        )

    @classmethod
    def tool_result(cls, call_id: str, output: str, is_error: bool = False) -> Message:
        return cls(
            role=Role.TOOL,
            content=ToolResultContent(call_id=call_id, output=output, is_error=is_error),
        )

    @property
    def text(self) -> str | None:
        """Plain text of a text message, or the joined text parts of a multi-part one."""
        if isinstance(self.content, TextContent):
            return self.content.text
        if isinstance(self.content, MultiPartContent):
            texts = [p.text for p in self.content.parts if isinstance(p, TextContent)]
            return "\n".join(texts) if texts else None
        return None

    @property
    def tool_calls(self) -> list[ToolCallContent]:
        if isinstance(self.content, ToolCallContent):
            return [self.content]
        if isinstance(self.content, MultiPartContent):
            return [p for p in self.content.parts if isinstance(p, ToolCallContent)]
        return []

    @property
    def tool_results(self) -> list[ToolResultContent]:
        if isinstance(self.content, ToolResultContent):
            return [self.content]
        if isinstance(self.content, MultiPartContent):
            return [p for p in self.content.parts if isinstance(p, ToolResultContent)]
        return []

    def char_len(self) -> int:
        """Character count used by the chars/4 token heuristic."""
        return _content_len(self.content)


def _content_len(content: BaseModel) -> int:
    if isinstance(content, TextContent):
        return len(content.text)
    if isinstance(content, ToolCallContent):
        return len(content.name) + len(json.dumps(content.arguments, default=str))
    if isinstance(content, ToolResultContent):
        return len(content.output)
    if isinstance(content, ThinkingContent):
        return len(content.thinking)
    if isinstance(content, MultiPartContent):
        return sum(_content_len(p) for p in content.parts)
    return len(summarize_content(content))


# ─── Usage and cost ──────────────────────────────────────────

class TokenUsage(BaseModel):
    """Token counts for one or more LLM calls. Forms a monoid under +."""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    def accumulate(self, other: TokenUsage) -> None:
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens


class CostEstimate(BaseModel):
    """Dollar cost of token usage at a provider's rates. Forms a monoid under +."""
    input_cost: float = 0.0
    output_cost: float = 0.0

    @property
    def total(self) -> float:
        return self.input_cost + self.output_cost

    def __add__(self, other: CostEstimate) -> CostEstimate:
        return CostEstimate(
            input_cost=self.input_cost + other.input_cost,
            output_cost=self.output_cost + other.output_cost,
        )

    def accumulate(self, other: CostEstimate) -> None:
        self.input_cost += other.input_cost
        self.output_cost += other.output_cost

    @classmethod
    def from_usage(cls, usage: TokenUsage, rates: tuple[float, float]) -> CostEstimate:
        input_rate, output_rate = rates
        return cls(
            input_cost=usage.input_tokens * input_rate,
            output_cost=usage.output_tokens * output_rate,
        )


# ─── Tools ───────────────────────────────────────────────────

class ToolDefinition(BaseModel):
    """A tool as declared to the LLM."""
    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


class ToolOutput(BaseModel):
    """Textual result of a tool execution."""
    content: str = ""
    is_error: bool = False

    @classmethod
    def text(cls, content: str) -> ToolOutput:
        return cls(content=content)

    @classmethod
    def error(cls, content: str) -> ToolOutput:
        return cls(content=content, is_error=True)


# ─── Agent lifecycle ─────────────────────────────────────────

class AgentState(BaseModel):
    """Mutable per-task lifecycle state owned by the orchestrator."""
    task_id: str | None = None
    iteration: int = 0
    max_iterations: int = 25
    status: AgentStatus = AgentStatus.IDLE
    current_goal: str | None = None
    task_classification: Any = None

    def start_task(self, goal: str) -> str:
        self.task_id = uuid.uuid4().hex
        self.iteration = 0
        self.current_goal = goal
        self.status = AgentStatus.THINKING
        return self.task_id

    def complete(self) -> None:
        self.status = AgentStatus.COMPLETE

    def set_error(self) -> None:
        self.status = AgentStatus.ERROR

    def increment_iteration(self) -> bool:
        """Advance the counter. Returns False once the bound is exceeded."""
        self.iteration += 1
        return self.iteration <= self.max_iterations


class TaskResult(BaseModel):
    """Outcome of a successful process_task call."""
    task_id: str
    success: bool
    response: str = ""
    iterations: int = 0
    total_usage: TokenUsage = Field(default_factory=TokenUsage)
    total_cost: CostEstimate = Field(default_factory=CostEstimate)


# ─── Callback payloads ───────────────────────────────────────

class BudgetSeverity(str, Enum):
    WARNING = "warning"
    EXCEEDED = "exceeded"


class ContextHealthLevel(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class ContextHealthEvent(BaseModel):
    """Emitted when the conversation approaches the provider's context window."""
    level: ContextHealthLevel
    usage_percent: int
    tokens_used: int
    context_window: int
    hint: str = ""


class CompressionEvent(BaseModel):
    """Emitted whenever short-term memory is compressed."""
    messages_compressed: int
    was_llm_summarized: bool
    pinned_preserved: int


class ProgressUpdate(BaseModel):
    """Generic progress notification for long-running work."""
    stage: str
    message: str = ""
    current: int | None = None
    total: int | None = None
