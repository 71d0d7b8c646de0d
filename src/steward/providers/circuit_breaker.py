"""
Steward Circuit Breaker

Wraps LLM provider calls with the circuit breaker pattern so a failing
provider is not hammered by the retry loop.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Provider is failing, requests are rejected immediately
- HALF_OPEN: Testing if provider has recovered

Transitions:
- CLOSED → OPEN: After N consecutive failures
- OPEN → HALF_OPEN: After M seconds cooldown
- HALF_OPEN → CLOSED: Successful test request
- HALF_OPEN → OPEN: Failed test request
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum

from steward.core.models import Message
from steward.exceptions import ProviderUnavailableError
from steward.logging import get_logger
from steward.providers.base import (
    CompletionRequest,
    CompletionResponse,
    LlmProvider,
    StreamEvent,
)

logger = get_logger("steward.providers.circuit_breaker")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreakerProvider(LlmProvider):
    """Wraps an LLM provider with circuit breaker protection.

    While open, calls fail fast with ProviderUnavailableError, which the
    retry loop treats as non-retryable.
    """

    def __init__(
        self,
        provider: LlmProvider,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock=time.monotonic,
    ):
        """Initialize circuit breaker.

        Args:
            provider: The underlying LLM provider to protect.
            failure_threshold: Number of consecutive failures before opening.
            recovery_timeout: Seconds to wait before testing recovery.
        """
        super().__init__(provider._config)
        self._provider = provider
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = 0.0
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self._provider.name

    @property
    def state(self) -> CircuitState:
        """Current circuit state."""
        if self._state == CircuitState.OPEN:
            if self._clock() - self._last_failure_time >= self._recovery_timeout:
                return CircuitState.HALF_OPEN
        return self._state

    @property
    def wrapped_provider(self) -> LlmProvider:
        return self._provider

    def model_name(self) -> str:
        return self._provider.model_name()

    def context_window(self) -> int:
        return self._provider.context_window()

    def cost_rates(self) -> tuple[float, float]:
        return self._provider.cost_rates()

    def estimate_tokens(self, messages: list[Message]) -> int:
        return self._provider.estimate_tokens(messages)

    async def _guard(self) -> None:
        async with self._lock:
            if self.state == CircuitState.OPEN:
                raise ProviderUnavailableError(
                    self._provider.name,
                    f"circuit open after {self._failure_count} failures "
                    f"(cooldown {self._recovery_timeout}s)",
                )

    async def _record(self, success: bool) -> None:
        async with self._lock:
            if success:
                self._failure_count = 0
                self._state = CircuitState.CLOSED
                return
            self._failure_count += 1
            self._last_failure_time = self._clock()
            if self._failure_count >= self._failure_threshold:
                if self._state != CircuitState.OPEN:
                    logger.warning(
                        "Circuit opened",
                        extra={"provider": self._provider.name},
                    )
                self._state = CircuitState.OPEN

    async def _complete_impl(self, request: CompletionRequest) -> CompletionResponse:
        await self._guard()
        try:
            response = await self._provider.complete(request)
        except Exception:
            await self._record(False)
            raise
        await self._record(True)
        return response

    async def _stream_impl(
        self, request: CompletionRequest, sink: asyncio.Queue[StreamEvent]
    ) -> None:
        await self._guard()
        try:
            await self._provider.complete_streaming(request, sink)
        except Exception:
            await self._record(False)
            raise
        await self._record(True)

    def reset(self) -> None:
        """Manually reset the circuit breaker to CLOSED state."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = 0.0
