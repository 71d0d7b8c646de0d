"""
Steward Provider Rate Limiter

Sliding one-minute window over requests, input tokens and output tokens.
Configured from ``llm.rate_limits{itpm, otpm, rpm}``; a zero limit
disables that dimension. ``acquire`` suspends until the next request fits.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque

from steward.config import RateLimitConfig
from steward.logging import get_logger

logger = get_logger("steward.providers.rate_limiter")

_WINDOW_SECONDS = 60.0


class RateLimiter:
    """Per-provider request/token limiter shared by batch and streaming calls."""

    def __init__(self, limits: RateLimitConfig, clock=time.monotonic):
        self._limits = limits
        self._clock = clock
        self._requests: deque[float] = deque()
        self._input: deque[tuple[float, int]] = deque()
        self._output: deque[tuple[float, int]] = deque()
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return bool(self._limits.rpm or self._limits.itpm or self._limits.otpm)

    def _prune(self, now: float) -> None:
        cutoff = now - _WINDOW_SECONDS
        while self._requests and self._requests[0] <= cutoff:
            self._requests.popleft()
        while self._input and self._input[0][0] <= cutoff:
            self._input.popleft()
        while self._output and self._output[0][0] <= cutoff:
            self._output.popleft()

    def wait_time(self, input_tokens: int) -> float:
        """Seconds until a request with ``input_tokens`` would fit. Zero if it fits now."""
        now = self._clock()
        self._prune(now)
        waits = [0.0]

        if self._limits.rpm and len(self._requests) >= self._limits.rpm:
            waits.append(self._requests[0] + _WINDOW_SECONDS - now)

        if self._limits.itpm and self._input:
            used = sum(n for _, n in self._input)
            if used + input_tokens > self._limits.itpm:
                waits.append(self._input[0][0] + _WINDOW_SECONDS - now)

        if self._limits.otpm and self._output:
            used = sum(n for _, n in self._output)
            if used >= self._limits.otpm:
                waits.append(self._output[0][0] + _WINDOW_SECONDS - now)

        return max(waits)

    async def acquire(self, input_tokens: int) -> None:
        if not self.enabled:
            return
        async with self._lock:
            while (delay := self.wait_time(input_tokens)) > 0:
                logger.info(
                    "Rate limit reached, waiting",
                    extra={"duration_ms": int(delay * 1000)},
                )
                await asyncio.sleep(delay)
            now = self._clock()
            self._requests.append(now)
            self._input.append((now, input_tokens))

    def record_output(self, output_tokens: int) -> None:
        if self.enabled and output_tokens:
            self._output.append((self._clock(), output_tokens))
