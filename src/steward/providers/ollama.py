"""
Steward Ollama Provider

Local model execution through Ollama's OpenAI-compatible endpoint.
No API key needed.

Default URL: http://localhost:11434/v1
Override with OLLAMA_BASE_URL environment variable.

Requires: `pip install openai` (Ollama uses OpenAI-compatible API)
"""

from __future__ import annotations

import asyncio
import os
from typing import Any

from steward.providers.base import (
    CompletionRequest,
    CompletionResponse,
    LlmProvider,
    ProviderConfig,
    StreamEvent,
)
from steward.providers.rate_limiter import RateLimiter


class OllamaProvider(LlmProvider):
    """Local Ollama provider delegating to OpenAIProvider.

    Model must be pulled first: `ollama pull llama3.1`
    """

    DEFAULT_MODEL = "llama3.1"
    DEFAULT_BASE_URL = "http://localhost:11434/v1"

    def __init__(
        self,
        config: ProviderConfig | None = None,
        client: Any = None,
        rate_limiter: RateLimiter | None = None,
    ):
        super().__init__(config or ProviderConfig(model=self.DEFAULT_MODEL), rate_limiter)
        if not self._config.model:
            self._config.model = self.DEFAULT_MODEL
        if not self._config.base_url:
            self._config.base_url = os.environ.get("OLLAMA_BASE_URL", self.DEFAULT_BASE_URL)
        self._delegate = self._create_delegate(client)

    def _create_delegate(self, client: Any) -> LlmProvider:
        from steward.providers.openai import OpenAIProvider

        config = ProviderConfig(
            api_key="ollama",  # ignored by Ollama, required by the SDK
            model=self._config.model,
            base_url=self._config.base_url,
            timeout_seconds=self._config.timeout_seconds,
            context_window=self._config.context_window,
        )
        return OpenAIProvider(config, client=client)

    def cost_rates(self) -> tuple[float, float]:
        return 0.0, 0.0

    def context_window(self) -> int:
        return self._config.context_window or 32_768

    async def _complete_impl(self, request: CompletionRequest) -> CompletionResponse:
        return await self._delegate._complete_impl(request)

    async def _stream_impl(
        self, request: CompletionRequest, sink: asyncio.Queue[StreamEvent]
    ) -> None:
        await self._delegate._stream_impl(request, sink)
