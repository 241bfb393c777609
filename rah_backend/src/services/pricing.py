"""Pricing table and cost calculation for chat usage telemetry."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Literal, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelPricing:
    """USD price per one million tokens for a model."""

    provider: Literal["anthropic", "openai"]
    input_per_1m: float
    output_per_1m: float
    cache_write_per_1m: Optional[float] = None
    cache_read_per_1m: Optional[float] = None


MODEL_PRICING: Dict[str, ModelPricing] = {
    "claude-sonnet-4-5-20250929": ModelPricing("anthropic", 3.00, 15.00, 3.75, 0.30),
    "claude-3-5-sonnet-20241022": ModelPricing("anthropic", 3.00, 15.00, 3.75, 0.30),
    "gpt-4o-mini": ModelPricing("openai", 0.15, 0.60),
    "gpt-4o-mini-2024-07-18": ModelPricing("openai", 0.15, 0.60),
    "gpt-5o-mini": ModelPricing("openai", 0.25, 2.00),
    "gpt-5-mini": ModelPricing("openai", 0.25, 2.00),
    "gpt-5": ModelPricing("openai", 1.25, 10.00),
}


@dataclass(frozen=True)
class CostInput:
    input_tokens: int
    output_tokens: int
    model_id: str
    cache_write_tokens: int = 0
    cache_read_tokens: int = 0


@dataclass(frozen=True)
class CostResult:
    total_cost_usd: float
    input_cost_usd: float
    output_cost_usd: float
    cache_write_cost_usd: float
    cache_read_cost_usd: float
    cache_savings_usd: float
    total_tokens: int


def _per_million(tokens: int, price: float) -> float:
    return (tokens / 1_000_000) * price


def calculate_cost(cost_input: CostInput) -> CostResult:
    """Estimate the USD cost of a chat turn.

    Unknown models cost nothing but still report their token total.
    """
    total_tokens = (
        cost_input.input_tokens
        + cost_input.output_tokens
        + cost_input.cache_write_tokens
        + cost_input.cache_read_tokens
    )
    pricing = MODEL_PRICING.get(cost_input.model_id)
    if pricing is None:
        logger.warning(
            "Unknown model for pricing, using zero cost",
            extra={"model_id": cost_input.model_id},
        )
        return CostResult(0.0, 0.0, 0.0, 0.0, 0.0, 0.0, total_tokens)

    input_cost = _per_million(cost_input.input_tokens, pricing.input_per_1m)
    output_cost = _per_million(cost_input.output_tokens, pricing.output_per_1m)

    cache_write_cost = 0.0
    cache_read_cost = 0.0
    cache_savings = 0.0
    if pricing.cache_write_per_1m and cost_input.cache_write_tokens:
        cache_write_cost = _per_million(cost_input.cache_write_tokens, pricing.cache_write_per_1m)
    if pricing.cache_read_per_1m and cost_input.cache_read_tokens:
        cache_read_cost = _per_million(cost_input.cache_read_tokens, pricing.cache_read_per_1m)
        uncached = _per_million(cost_input.cache_read_tokens, pricing.input_per_1m)
        cache_savings = uncached - cache_read_cost

    total = input_cost + output_cost + cache_write_cost + cache_read_cost
    return CostResult(
        total_cost_usd=round(total, 6),
        input_cost_usd=round(input_cost, 6),
        output_cost_usd=round(output_cost, 6),
        cache_write_cost_usd=round(cache_write_cost, 6),
        cache_read_cost_usd=round(cache_read_cost, 6),
        cache_savings_usd=round(cache_savings, 6),
        total_tokens=total_tokens,
    )


def get_model_pricing(model_id: str) -> Optional[ModelPricing]:
    return MODEL_PRICING.get(model_id)


def supported_models() -> List[str]:
    return list(MODEL_PRICING.keys())


__all__ = [
    "ModelPricing",
    "MODEL_PRICING",
    "CostInput",
    "CostResult",
    "calculate_cost",
    "get_model_pricing",
    "supported_models",
]
