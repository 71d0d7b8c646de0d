"""
Steward Custom Exceptions

Structured exception hierarchy for the Steward agent runtime.
All Steward-specific exceptions inherit from StewardError.

Exception hierarchy:
    StewardError
    +-- AgentError                    (task-level failure, ends process_task)
    |   +-- TaskCancelledError        (cooperative cancellation observed)
    |   +-- MaxIterationsReachedError (loop bound exceeded)
    |   +-- BudgetExceededError       (hard budget halt)
    |   +-- ConsentRequiredError      (strict consent policy refused)
    +-- LlmError                      (provider failure)
    |   +-- RateLimitedError          (retryable, honors retry_after)
    |   +-- ContextOverflowError      (terminal for the call)
    |   +-- StreamingError            (retryable on transient messages)
    |   +-- LlmConnectionError        (retryable)
    |   +-- LlmTimeoutError           (retryable)
    |   +-- ProviderUnavailableError  (circuit breaker open)
    |   +-- ResponseParseError        (malformed provider output)
    +-- ToolError                     (never aborts the loop)
        +-- ToolNotFoundError
        +-- InvalidArgumentsError
        +-- ToolExecutionError
        +-- PermissionDeniedError
        +-- ToolTimeoutError
"""

from __future__ import annotations


class StewardError(Exception):
    """Base exception for all Steward errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ─── Agent errors ──────────────────────────────────────────


class AgentError(StewardError):
    """Raised when a task cannot continue. Returned to the caller of process_task."""


class TaskCancelledError(AgentError):
    """Raised when the cancellation token was observed at an iteration boundary."""

    def __init__(self, message: str = "Task was cancelled", details: dict | None = None):
        super().__init__(message, details)


class MaxIterationsReachedError(AgentError):
    """Raised when the iteration loop hits its configured bound."""

    def __init__(self, max: int, details: dict | None = None):
        super().__init__(
            f"Maximum iterations reached ({max})",
            details={"max": max, **(details or {})},
        )
        self.max = max


class BudgetExceededError(AgentError):
    """Raised only when the hard limit is hit and halt_on_exceed is enabled."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(f"Budget exceeded: {message}", details)
        self.reason = message


class ConsentRequiredError(AgentError):
    """Raised in strict consent mode when a scope has not been granted."""

    def __init__(self, scope: str, details: dict | None = None):
        super().__init__(
            f"Consent required for '{scope}'",
            details={"scope": scope, **(details or {})},
        )
        self.scope = scope


# ─── LLM errors ────────────────────────────────────────────


class LlmError(StewardError):
    """Base exception for LLM provider errors."""

    def __init__(self, provider: str, message: str, details: dict | None = None):
        super().__init__(
            f"Provider '{provider}' error: {message}",
            details={"provider": provider, **(details or {})},
        )
        self.provider = provider
        self.reason = message


class RateLimitedError(LlmError):
    """Provider refused the request due to rate limits."""

    def __init__(
        self, provider: str, retry_after: float | None = None, details: dict | None = None
    ):
        msg = "rate limited"
        if retry_after is not None:
            msg += f" (retry after {retry_after}s)"
        super().__init__(provider, msg, details)
        self.retry_after = retry_after


class ContextOverflowError(LlmError):
    """The conversation does not fit the provider's context window."""

    def __init__(self, provider: str, used: int, limit: int, details: dict | None = None):
        super().__init__(
            provider,
            f"context overflow: {used} tokens used, limit {limit}",
            details={"used": used, "limit": limit, **(details or {})},
        )
        self.used = used
        self.limit = limit


class StreamingError(LlmError):
    """Wrapped failure from the streaming producer."""


class LlmConnectionError(LlmError):
    """Network-level failure talking to the provider."""


class LlmTimeoutError(LlmError):
    """Provider request timed out."""


class ProviderUnavailableError(LlmError):
    """Raised when a provider is unavailable (circuit breaker open)."""


class ResponseParseError(LlmError):
    """Provider returned output that could not be interpreted."""


# Substrings that mark a wrapped streaming failure as transient
TRANSIENT_STREAMING_MARKERS = ("rate limit", "429", "timeout", "connection", "503", "502")


def is_retryable(error: BaseException) -> bool:
    """Classify an LLM error as transient.

    Rate limits, timeouts and connection drops are always retryable.
    A wrapped StreamingError is retryable when its message mentions one of
    the known transient markers.
    """
    if isinstance(error, (RateLimitedError, LlmTimeoutError, LlmConnectionError)):
        return True
    if isinstance(error, StreamingError):
        lowered = error.reason.lower()
        return any(marker in lowered for marker in TRANSIENT_STREAMING_MARKERS)
    return False


# ─── Tool errors ───────────────────────────────────────────


class ToolError(StewardError):
    """Base exception for tool failures.

    Tool errors are surfaced into the conversation as error tool-results
    and never abort the iteration loop.
    """

    def __init__(self, tool_name: str, message: str, details: dict | None = None):
        super().__init__(message, details={"tool_name": tool_name, **(details or {})})
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    def __init__(self, name: str):
        super().__init__(name, f"Tool not found: {name}")


class InvalidArgumentsError(ToolError):
    def __init__(self, tool_name: str, reason: str):
        super().__init__(tool_name, f"Invalid arguments: {reason}")
        self.reason = reason


class ToolExecutionError(ToolError):
    def __init__(self, tool_name: str, message: str, details: dict | None = None):
        super().__init__(tool_name, f"Execution failed: {message}", details)


class PermissionDeniedError(ToolError):
    def __init__(self, tool_name: str, reason: str):
        super().__init__(tool_name, f"Permission denied: {reason}")
        self.reason = reason


class ToolTimeoutError(ToolError):
    def __init__(self, tool_name: str, timeout: float):
        super().__init__(tool_name, f"Timed out after {timeout}s", details={"timeout": timeout})
        self.timeout = timeout
