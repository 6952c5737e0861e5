"""Token cost estimation."""

from __future__ import annotations

from mailtidy.config import PricingConfig
from mailtidy.models import TokenUsage


def calculate_cost(usage: TokenUsage, pricing: PricingConfig | None = None) -> float:
    """Estimated USD cost of the tokens in ``usage``."""
    pricing = pricing or PricingConfig()
    input_cost = usage.input_tokens / 1_000_000 * pricing.input_per_million
    output_cost = usage.output_tokens / 1_000_000 * pricing.output_per_million
    return input_cost + output_cost


def format_cost(cost: float) -> str:
    if cost < 0.001:
        return "<$0.001"
    return f"${cost:.3f}"
