"""
Steward LLM Provider Abstraction

Providers wrap different LLM APIs (Anthropic, OpenAI, Ollama) behind a
common streaming/batch interface consumed by the Brain.

Usage:
    from steward.providers import create_provider

    provider = create_provider("claude")
    response = await provider.complete(CompletionRequest(messages=[...]))
"""

from steward.config import LlmConfig
from steward.providers.base import (
    CompletionRequest,
    CompletionResponse,
    LlmProvider,
    ProviderConfig,
    StreamEvent,
)
from steward.providers.circuit_breaker import CircuitBreakerProvider
from steward.providers.mock import MockLlmProvider
from steward.providers.rate_limiter import RateLimiter

__all__ = [
    "CompletionRequest",
    "CompletionResponse",
    "LlmProvider",
    "ProviderConfig",
    "StreamEvent",
    "CircuitBreakerProvider",
    "MockLlmProvider",
    "RateLimiter",
    "create_provider",
    "provider_from_config",
]


def create_provider(
    name: str = "claude",
    *,
    api_key: str | None = None,
    model: str | None = None,
    base_url: str | None = None,
    timeout_seconds: float = 120.0,
    rate_limiter: RateLimiter | None = None,
) -> LlmProvider:
    """Factory function to create an LLM provider by name.

    Args:
        name: Provider name ("claude", "openai", "ollama", "mock").
        api_key: Optional API key override.
        model: Optional model name override.

    Returns:
        Configured LlmProvider instance.
    """
    name_lower = name.lower()

    if name_lower in ("claude", "anthropic"):
        from steward.providers.claude import ClaudeProvider
        config = ProviderConfig(
            api_key=api_key,
            model=model or ClaudeProvider.DEFAULT_MODEL,
            base_url=base_url,
            timeout_seconds=timeout_seconds,
        )
        return ClaudeProvider(config, rate_limiter=rate_limiter)
    elif name_lower == "openai":
        from steward.providers.openai import OpenAIProvider
        config = ProviderConfig(
            api_key=api_key,
            model=model or OpenAIProvider.DEFAULT_MODEL,
            base_url=base_url,
            timeout_seconds=timeout_seconds,
        )
        return OpenAIProvider(config, rate_limiter=rate_limiter)
    elif name_lower == "ollama":
        from steward.providers.ollama import OllamaProvider
        config = ProviderConfig(
            model=model or OllamaProvider.DEFAULT_MODEL,
            base_url=base_url,
            timeout_seconds=timeout_seconds,
        )
        return OllamaProvider(config, rate_limiter=rate_limiter)
    elif name_lower == "mock":
        return MockLlmProvider()
    else:
        raise ValueError(
            f"Unknown provider: {name}. Supported: claude, openai, ollama, mock"
        )


def provider_from_config(config: LlmConfig) -> LlmProvider:
    """Build a provider from the ``llm`` config group, bridging its rate limits."""
    limiter = RateLimiter(config.rate_limits)
    return create_provider(
        config.provider,
        api_key=config.api_key,
        model=config.model,
        base_url=config.base_url,
        timeout_seconds=config.timeout_seconds,
        rate_limiter=limiter if limiter.enabled else None,
    )
