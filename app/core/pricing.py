"""Centralized model pricing configuration.

Single source of truth for LLM token costs (USD per 1M tokens).
Used when recording usage after each chat turn and by the usage summaries.
"""

# Maps model identifiers to (input_cost, output_cost) per 1M tokens.
# Unknown models fall back to Sonnet-class pricing.
MODEL_PRICING: dict[str, tuple[float, float]] = {
    # Anthropic
    "claude-opus-4-20250514":         (15.00, 75.00),
    "claude-sonnet-4-20250514":       (3.00,  15.00),
    "claude-sonnet-4-5-20250929":     (3.00,  15.00),
    "claude-haiku-4-5-20251001":      (0.80,   4.00),
    "claude-3-5-haiku-20241022":      (0.80,   4.00),
    # OpenAI (via LiteLLM)
    "gpt-4o":              (2.50,  10.00),
    "gpt-4o-mini":         (0.15,   0.60),
}

DEFAULT_PRICING: tuple[float, float] = (3.00, 15.00)


def get_pricing(model: str) -> tuple[float, float]:
    """Return (input_per_1M, output_per_1M) for a model."""
    return MODEL_PRICING.get(model, DEFAULT_PRICING)


def calc_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Calculate USD cost for a given model and token counts."""
    input_rate, output_rate = get_pricing(model)
    return input_tokens / 1_000_000 * input_rate + output_tokens / 1_000_000 * output_rate
