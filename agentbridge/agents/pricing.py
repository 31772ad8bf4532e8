"""
Token pricing for agents that report usage without a cost.

Codex and Gemini CLI report token counts only, so their cost is estimated
from list prices in USD per million tokens. Models are matched by the
longest known prefix.
"""

# (input, output, cache_read) in USD per million tokens
MODEL_PRICING: dict[str, dict[str, float]] = {
    "gpt-5-codex": {"input": 1.25, "output": 10.0, "cache_read": 0.125},
    "gpt-5-mini": {"input": 0.25, "output": 2.0, "cache_read": 0.025},
    "gpt-5": {"input": 1.25, "output": 10.0, "cache_read": 0.125},
    "gpt-4.1": {"input": 2.0, "output": 8.0, "cache_read": 0.5},
    "o4-mini": {"input": 1.1, "output": 4.4, "cache_read": 0.275},
    "gemini-2.5-pro": {"input": 1.25, "output": 10.0, "cache_read": 0.31},
    "gemini-2.5-flash-lite": {"input": 0.1, "output": 0.4, "cache_read": 0.025},
    "gemini-2.5-flash": {"input": 0.3, "output": 2.5, "cache_read": 0.075},
    "claude-opus": {"input": 15.0, "output": 75.0, "cache_read": 1.5},
    "claude-sonnet": {"input": 3.0, "output": 15.0, "cache_read": 0.3},
    "claude-haiku": {"input": 0.8, "output": 4.0, "cache_read": 0.08},
}

DEFAULT_PRICING = {"input": 3.0, "output": 15.0, "cache_read": 0.3}


def get_model_pricing(model: str | None) -> dict[str, float]:
    """Get per-million-token prices for a model, falling back to the default."""
    if not model:
        return DEFAULT_PRICING
    name = model.lower().split("/")[-1]
    best = None
    for prefix in MODEL_PRICING:
        if name.startswith(prefix) and (best is None or len(prefix) > len(best)):
            best = prefix
    return MODEL_PRICING[best] if best else DEFAULT_PRICING


def estimate_cost(
    model: str | None,
    input_tokens: int,
    output_tokens: int,
    cache_read_tokens: int = 0,
) -> float:
    """
    Estimate the USD cost of one turn.

    Args:
        model: Model name as reported by the vendor, may be None.
        input_tokens: Uncached input tokens.
        output_tokens: Output tokens.
        cache_read_tokens: Input tokens served from the prompt cache.

    Returns:
        Estimated cost in USD.
    """
    pricing = get_model_pricing(model)
    cost = 0.0
    cost += (input_tokens / 1_000_000) * pricing["input"]
    cost += (output_tokens / 1_000_000) * pricing["output"]
    cost += (cache_read_tokens / 1_000_000) * pricing["cache_read"]
    return cost
