"""
Pricing calculations and rate management.

Handles cost computations for the completion models the product calls.
"""

from dataclasses import dataclass
from typing import Dict, Optional
from decimal import Decimal, ROUND_HALF_UP

from .token_counter import TokenUsage


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    prompt_cost_per_1k: Decimal  # Cost per 1K prompt tokens
    completion_cost_per_1k: Decimal  # Cost per 1K completion tokens


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for supported models."""
    prices: Dict[str, ModelPricing]
    fallback_model: Optional[str] = None

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a specific model.

        Args:
            model: Model identifier

        Returns:
            ModelPricing for the model

        Raises:
            ValueError: If model is not supported
        """
        if model not in self.prices:
            raise ValueError(f"Unsupported model: {model}")
        return self.prices[model]

    def resolve_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a model, using the fallback model's rates if unknown."""
        if model in self.prices or self.fallback_model is None:
            return self.get_pricing(model)
        return self.prices[self.fallback_model]


GPT_4 = "gpt-4"
GPT_4_TURBO = "gpt-4-turbo-preview"
GPT_3_5_TURBO = "gpt-3.5-turbo"

PRICING_TABLE = PricingTable(
    prices={
        GPT_4: ModelPricing(
            prompt_cost_per_1k=Decimal("0.03"),
            completion_cost_per_1k=Decimal("0.06")
        ),
        GPT_4_TURBO: ModelPricing(
            prompt_cost_per_1k=Decimal("0.01"),
            completion_cost_per_1k=Decimal("0.03")
        ),
        GPT_3_5_TURBO: ModelPricing(
            prompt_cost_per_1k=Decimal("0.001"),
            completion_cost_per_1k=Decimal("0.002")
        ),
    },
    fallback_model=GPT_3_5_TURBO,
)

COST_QUANTUM = Decimal("0.0001")


def round_cost(amount: float) -> float:
    """Round a dollar amount to 4 decimal places, half up."""
    return float(Decimal(str(amount)).quantize(COST_QUANTUM, rounding=ROUND_HALF_UP))


def calculate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Calculate total cost of a completion rounded to 4 decimal places.

    Unknown models are priced at the fallback model's rates.

    Args:
        model: Model identifier
        prompt_tokens: Prompt tokens reported by the provider
        completion_tokens: Completion tokens reported by the provider

    Returns:
        Total cost in dollars
    """
    pricing = PRICING_TABLE.resolve_pricing(model)

    # (tokens / 1000) * cost_per_1k
    prompt_cost = (Decimal(prompt_tokens) / Decimal("1000")) * pricing.prompt_cost_per_1k
    completion_cost = (Decimal(completion_tokens) / Decimal("1000")) * pricing.completion_cost_per_1k

    total_cost = prompt_cost + completion_cost
    return float(total_cost.quantize(COST_QUANTUM, rounding=ROUND_HALF_UP))


def priced_usage(model: str, prompt_tokens: int, completion_tokens: int) -> TokenUsage:
    """Build a TokenUsage with its cost filled in for the given model."""
    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        cost=calculate_cost(model, prompt_tokens, completion_tokens)
    )
