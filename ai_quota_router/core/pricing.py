"""
Pricing calculations and rate management.

Handles cost computations for the models behind each routing tier.
"""

from dataclasses import dataclass
from typing import Dict
from decimal import Decimal, ROUND_UP

from .token_counter import TokenUsage, estimate_tokens

# Costs are kept to four decimal places; per-query costs are fractions of a cent
COST_QUANTUM = Decimal("0.0001")


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    prompt_cost_per_1k: Decimal  # Cost per 1K prompt tokens
    completion_cost_per_1k: Decimal  # Cost per 1K completion tokens
    expected_completion_tokens: int = 400


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for supported models."""
    prices: Dict[str, ModelPricing]

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


# Fixed pricing table - no dynamic fetching, no defaults
PRICING_TABLE = PricingTable({
    "gpt-4o": ModelPricing(
        prompt_cost_per_1k=Decimal("0.0025"),
        completion_cost_per_1k=Decimal("0.0100"),
        expected_completion_tokens=800
    ),
    "gpt-4o-mini": ModelPricing(
        prompt_cost_per_1k=Decimal("0.00015"),
        completion_cost_per_1k=Decimal("0.0006")
    ),
    "gpt-4.1-mini": ModelPricing(
        prompt_cost_per_1k=Decimal("0.0004"),
        completion_cost_per_1k=Decimal("0.0016")
    ),
    "gpt-4.1": ModelPricing(
        prompt_cost_per_1k=Decimal("0.002"),
        completion_cost_per_1k=Decimal("0.008"),
        expected_completion_tokens=800
    ),
})


def calculate_cost(model: str, usage: TokenUsage, table: PricingTable = PRICING_TABLE) -> Decimal:
    """Calculate total cost for model usage with conservative rounding.
    
    Args:
        model: Model identifier
        usage: Token usage data
        table: Pricing table to use
        
    Returns:
        Total cost rounded UP to four decimal places
        
    Raises:
        ValueError: If model is not supported
    """
    pricing = table.get_pricing(model)
    
    prompt_cost = (Decimal(usage.prompt_tokens) / Decimal("1000")) * pricing.prompt_cost_per_1k
    completion_cost = (Decimal(usage.completion_tokens) / Decimal("1000")) * pricing.completion_cost_per_1k
    
    # Always round UP so accrued spend never undercounts
    return (prompt_cost + completion_cost).quantize(COST_QUANTUM, rounding=ROUND_UP)


def estimate_query_cost(model: str, query: str, table: PricingTable = PRICING_TABLE) -> Decimal:
    """Estimate the cost of sending a query to a model before invoking it.

    Prompt tokens are estimated from the query text; completion tokens use
    the model's expected completion length.

    Raises:
        ValueError: If model is not supported
    """
    pricing = table.get_pricing(model)
    usage = TokenUsage(
        prompt_tokens=estimate_tokens(query),
        completion_tokens=pricing.expected_completion_tokens
    )
    return calculate_cost(model, usage, table)
