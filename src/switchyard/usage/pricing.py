"""Model pricing data and cost calculation.

Provider APIs do NOT return pricing information, so we maintain a manual
pricing table here. This should be updated when pricing changes.

When pricing is unknown for a model, a conservative fallback estimate is
used rather than returning None, so every attempt still lands in the ledger
with a cost.
"""

import re
from dataclasses import dataclass

from switchyard.logging import get_logger

log = get_logger("switchyard.usage.pricing")


@dataclass
class CostResult:
    """Result of a cost calculation."""

    cost_usd: float
    estimated: bool = False  # True if pricing was unknown and fallback was used
    model_id: str | None = None


# Pricing table - costs per 1 million tokens
# Source: Provider pricing pages (manually maintained)
PRICING: dict[str, dict[str, float]] = {
    # Anthropic
    "claude-3-5-sonnet-20241022": {"input": 3.00, "output": 15.00},
    "claude-3-5-sonnet": {"input": 3.00, "output": 15.00},
    "claude-3-5-haiku-20241022": {"input": 1.00, "output": 5.00},
    "claude-3-5-haiku": {"input": 1.00, "output": 5.00},
    "claude-3-opus-20240229": {"input": 15.00, "output": 75.00},
    # OpenAI
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4-turbo": {"input": 10.00, "output": 30.00},
    "gpt-3.5-turbo": {"input": 0.50, "output": 1.50},
    # Google
    "gemini-1.5-pro": {"input": 1.25, "output": 5.00},
    "gemini-1.5-flash": {"input": 0.075, "output": 0.30},
    "gemini-2.0-flash": {"input": 0.075, "output": 0.30},
    # Perplexity
    "llama-3.1-sonar-large-128k-online": {"input": 1.00, "output": 1.00},
    "llama-3.1-sonar-large-128k-chat": {"input": 1.00, "output": 1.00},
    "llama-3.1-sonar-small-128k-online": {"input": 0.20, "output": 0.20},
}

# Per-image pricing (USD per generated image)
IMAGE_PRICING: dict[str, float] = {
    "dall-e-3": 0.04,
    "dall-e-2": 0.02,
    "imagen-3.0-generate-001": 0.02,
    "imagen-3.0-generate-002": 0.02,
}

# Used when an image model is not in the table
IMAGE_FALLBACK_BY_PROVIDER: dict[str, float] = {
    "openai": 0.04,
    "google": 0.02,
}
IMAGE_FALLBACK_COST = 0.03

# Mid-range assumption for unknown text models (per 1 million tokens)
TEXT_FALLBACK_PRICING: dict[str, float] = {"input": 3.00, "output": 15.00}


def _normalize_model_id(model_id: str) -> str:
    """Normalize a model ID by removing date and ``-latest`` suffixes.

    Examples:
        "claude-3-5-sonnet-20241022" -> "claude-3-5-sonnet"
        "gemini-1.5-pro-latest" -> "gemini-1.5-pro"
    """
    normalized = re.sub(r"-latest$", "", model_id)
    normalized = re.sub(r"-\d{8}$", "", normalized)
    normalized = re.sub(r"-\d{4}-\d{2}-\d{2}$", "", normalized)
    return normalized


def get_cost(model_id: str, tokens_input: int, tokens_output: int) -> CostResult:
    """Calculate the cost of a text generation call.

    Args:
        model_id: The model identifier.
        tokens_input: Number of input tokens.
        tokens_output: Number of output tokens.

    Returns:
        CostResult with the calculated cost and estimation flag.
    """
    for candidate in (model_id, _normalize_model_id(model_id)):
        pricing = PRICING.get(candidate)
        if pricing is not None:
            cost = (tokens_input * pricing["input"] + tokens_output * pricing["output"]) / 1_000_000
            return CostResult(cost_usd=cost, estimated=False, model_id=model_id)

    fallback = TEXT_FALLBACK_PRICING
    cost = (tokens_input * fallback["input"] + tokens_output * fallback["output"]) / 1_000_000
    log.warning("unknown_pricing", model=model_id, using_fallback=True, estimated_cost=cost)
    return CostResult(cost_usd=cost, estimated=True, model_id=model_id)


def get_image_cost(provider: str, model_id: str | None, count: int = 1) -> CostResult:
    """Calculate the cost of generating ``count`` images."""
    if model_id and model_id in IMAGE_PRICING:
        return CostResult(cost_usd=IMAGE_PRICING[model_id] * count, model_id=model_id)

    per_image = IMAGE_FALLBACK_BY_PROVIDER.get(provider, IMAGE_FALLBACK_COST)
    return CostResult(cost_usd=per_image * count, estimated=True, model_id=model_id)


def has_pricing(model_id: str) -> bool:
    """Check if exact pricing is known for a model."""
    return (
        model_id in PRICING
        or _normalize_model_id(model_id) in PRICING
        or model_id in IMAGE_PRICING
    )
