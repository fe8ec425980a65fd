"""
Unit tests for pricing calculations.

Tests cost accuracy, rounding behavior, and error handling.
"""

import pytest
from decimal import Decimal

from ai_quota_router.core.pricing import calculate_cost, estimate_query_cost, PRICING_TABLE
from ai_quota_router.core.token_counter import TokenUsage, estimate_tokens


class TestTokenUsage:
    """Test TokenUsage dataclass."""
    
    def test_total_tokens_calculation(self):
        """Verify total_tokens is computed correctly."""
        usage = TokenUsage(prompt_tokens=100, completion_tokens=50)
        assert usage.total_tokens == 150
    
    def test_estimate_tokens(self):
        """Verify the rough four-characters-per-token estimate."""
        assert estimate_tokens("") == 1
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2
        assert estimate_tokens("a" * 400) == 100


class TestPricingTable:
    """Test pricing table functionality."""
    
    def test_get_supported_model(self):
        """Verify pricing retrieval for supported models."""
        pricing = PRICING_TABLE.get_pricing("gpt-4o")
        assert pricing.prompt_cost_per_1k == Decimal("0.0025")
        assert pricing.completion_cost_per_1k == Decimal("0.0100")
    
    def test_unsupported_model_raises_error(self):
        """Verify error for unknown models."""
        with pytest.raises(ValueError, match="Unsupported model: unknown-model"):
            PRICING_TABLE.get_pricing("unknown-model")


class TestCostCalculation:
    """Test cost calculation accuracy and rounding."""
    
    def test_exact_cost_advanced_model(self):
        """Verify exact cost calculation for gpt-4o."""
        usage = TokenUsage(prompt_tokens=1000, completion_tokens=500)
        # 1000/1000 * 0.0025 + 500/1000 * 0.01
        assert calculate_cost("gpt-4o", usage) == Decimal("0.0075")
    
    def test_exact_cost_cheap_model(self):
        """Verify exact cost calculation for gpt-4o-mini."""
        usage = TokenUsage(prompt_tokens=2000, completion_tokens=1000)
        assert calculate_cost("gpt-4o-mini", usage) == Decimal("0.0009")
    
    def test_cost_rounds_up(self):
        """Fractions of the smallest unit are always rounded up."""
        usage = TokenUsage(prompt_tokens=1, completion_tokens=0)
        assert calculate_cost("gpt-4o-mini", usage) == Decimal("0.0001")
    
    def test_zero_usage_costs_nothing(self):
        """Zero tokens cost zero."""
        usage = TokenUsage(prompt_tokens=0, completion_tokens=0)
        assert calculate_cost("gpt-4o", usage) == Decimal("0")
    
    def test_returns_decimal(self):
        """Costs are Decimal so accrual stays exact."""
        usage = TokenUsage(prompt_tokens=10, completion_tokens=10)
        assert isinstance(calculate_cost("gpt-4.1-mini", usage), Decimal)
    
    def test_unsupported_model(self):
        """Verify error propagates for unsupported models."""
        with pytest.raises(ValueError, match="Unsupported model"):
            calculate_cost("unknown-model", TokenUsage(1, 1))


class TestQueryCostEstimate:
    """Test pre-invocation cost estimates."""
    
    def test_estimate_uses_expected_completion(self):
        """Prompt tokens come from the text, completion from the model profile."""
        # 10 prompt tokens + 400 expected completion tokens
        assert estimate_query_cost("gpt-4o-mini", "a" * 40) == Decimal("0.0003")
    
    def test_advanced_model_costs_more(self):
        """The advanced model is priced above the cheap one for the same query."""
        query = "Explain the difference between TCP and UDP"
        assert estimate_query_cost("gpt-4o", query) > estimate_query_cost("gpt-4o-mini", query)
