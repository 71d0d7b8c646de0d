"""
Steward Model Pricing

Per-token rates and context windows for known models. Prices are quoted
per million tokens and converted to per-token rates for cost accounting.
"""

from __future__ import annotations

# Pricing per 1M tokens (USD)
MODEL_PRICING: dict[str, dict[str, float]] = {
    # Anthropic
    "claude-haiku-4-5": {"input": 0.80, "output": 4.00},
    "claude-sonnet-4-5": {"input": 3.00, "output": 15.00},
    "claude-sonnet-4-20250514": {"input": 3.00, "output": 15.00},
    "claude-opus-4-1": {"input": 15.00, "output": 75.00},
    # OpenAI
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4.1": {"input": 2.00, "output": 8.00},
    "o1": {"input": 15.00, "output": 60.00},
    "o3-mini": {"input": 1.10, "output": 4.40},
}

CONTEXT_WINDOWS: dict[str, int] = {
    "claude-haiku-4-5": 200_000,
    "claude-sonnet-4-5": 200_000,
    "claude-sonnet-4-20250514": 200_000,
    "claude-opus-4-1": 200_000,
    "gpt-4o": 128_000,
    "gpt-4o-mini": 128_000,
    "gpt-4.1": 1_000_000,
    "o1": 200_000,
    "o3-mini": 200_000,
}

# Fallbacks for unknown models
_DEFAULT_PRICING = {"input": 3.00, "output": 15.00}
_DEFAULT_CONTEXT_WINDOW = 128_000


def _lookup(model: str) -> dict[str, float]:
    if model in MODEL_PRICING:
        return MODEL_PRICING[model]
    # Dated snapshots share the base model's price ("gpt-4o-2024-08-06")
    for known, pricing in MODEL_PRICING.items():
        if model.startswith(known):
            return pricing
    return _DEFAULT_PRICING


def cost_rates(model: str) -> tuple[float, float]:
    """Return (input, output) USD rates per single token."""
    pricing = _lookup(model)
    return pricing["input"] / 1_000_000, pricing["output"] / 1_000_000


def context_window(model: str) -> int:
    for known, window in CONTEXT_WINDOWS.items():
        if model.startswith(known):
            return window
    return _DEFAULT_CONTEXT_WINDOW


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Calculate cost in USD for a single LLM call."""
    input_rate, output_rate = cost_rates(model)
    return round(input_tokens * input_rate + output_tokens * output_rate, 8)
