"""Token, cost and risk estimation used to gate expensive pipeline runs."""

import math

from solvent.models import ResourceEstimate

# Rough hosted Llama-3 70B pricing
COST_PER_1M_TOKENS = 0.70

_BASE_TOKENS = {"low": 500, "medium": 2500, "high": 10000}
_DEFAULT_BASE_TOKENS = 1000


def _risk_level(total_tokens: int) -> str:
    if total_tokens > 15000:
        return "critical"
    if total_tokens > 8000:
        return "high"
    if total_tokens > 3000:
        return "medium"
    return "low"


def estimate(complexity: str, prompt_length: int) -> ResourceEstimate:
    """Estimate the token budget, USD cost and risk tier of a task.

    Args:
        complexity: "low", "medium" or "high". Anything else uses a 1000 token base.
        prompt_length: Prompt size in characters (about 4 characters per token).

    Returns:
        ResourceEstimate. ``reason`` is set only for high complexity; it is
        advisory and callers decide whether to ask for confirmation.
    """
    total_tokens = _BASE_TOKENS.get(complexity, _DEFAULT_BASE_TOKENS) + math.ceil(prompt_length / 4)
    return ResourceEstimate(
        estimated_tokens=total_tokens,
        estimated_cost_usd=total_tokens * COST_PER_1M_TOKENS / 1_000_000,
        risk_level=_risk_level(total_tokens),
        reason="High architectural complexity detected." if complexity == "high" else None,
    )
