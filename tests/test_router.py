"""
Tests for query classification and routing strategies.
"""
from decimal import Decimal
from unittest.mock import Mock

import pytest

from ai_quota_router.core.errors import ModelInvocationFailed, QuotaExceeded
from ai_quota_router.core.quota import ModelTier, RoutingDecision, RoutingReason
from ai_quota_router.core.router import (
    CostEstimatorStrategy,
    Estimate,
    LengthHeuristicStrategy,
    ModelCatalog,
    QueryRouter,
    RemoteClassifierStrategy,
    build_strategy,
)

ALLOW = RoutingDecision(allowed=True, reason=RoutingReason.NONE)
LONG_QUERY = "Please tell me the reasons the sky looks blue during the day and red at sunset."
COMPLEX_QUERY = "Analyze this proof step by step and tell me where the argument fails."


class FixedStrategy(LengthHeuristicStrategy):
    """Strategy that always suggests the same tier."""
    name = "fixed"

    def __init__(self, models, tier):
        super().__init__(models)
        self.tier = tier

    def estimate(self, query, prefer_advanced=False):
        return self._priced(self.tier, query)


@pytest.fixture
def models():
    return ModelCatalog()


class TestClassifierPriority:
    """Test that quota policy outranks content heuristics."""

    @pytest.mark.parametrize("forced", [ModelTier.CHEAPEST, ModelTier.BASIC])
    @pytest.mark.parametrize("query", ["hi", LONG_QUERY, COMPLEX_QUERY])
    def test_forced_model_wins(self, models, forced, query):
        """A quota-forced model is returned whatever the query looks like."""
        router = QueryRouter(FixedStrategy(models, ModelTier.ADVANCED))
        decision = RoutingDecision(
            allowed=True,
            reason=RoutingReason.MONTHLY_COST_CAP_REACHED,
            forced_model=forced
        )
        selection = router.classify(query, decision)
        assert selection.model_tier == forced
        assert selection.model == models.name_for(forced)
        assert selection.forced is True
        assert selection.reason == RoutingReason.MONTHLY_COST_CAP_REACHED

    def test_forced_model_skips_strategy(self, models):
        """The strategy is not consulted when quota forces a model."""
        strategy = Mock(models=models)
        router = QueryRouter(strategy)
        decision = RoutingDecision(True, RoutingReason.ADVANCED_QUOTA_EXHAUSTED, ModelTier.BASIC)
        router.classify(LONG_QUERY, decision)
        strategy.estimate.assert_not_called()

    def test_short_query_goes_basic(self, models):
        """Queries under the threshold are answered by BASIC."""
        router = QueryRouter(FixedStrategy(models, ModelTier.ADVANCED))
        selection = router.classify("hi", ALLOW)
        assert selection.model_tier == ModelTier.BASIC
        assert selection.forced is True
        assert selection.reason == RoutingReason.SHORT_QUERY

    def test_threshold_boundary(self, models):
        """Exactly the threshold length is not short."""
        router = QueryRouter(FixedStrategy(models, ModelTier.ADVANCED))
        assert router.classify("a" * 14, ALLOW).reason == RoutingReason.SHORT_QUERY
        assert router.classify("a" * 15, ALLOW).reason == RoutingReason.ESTIMATED

    def test_denied_decision_rejected(self, models):
        """Denied requests are never classified."""
        router = QueryRouter(FixedStrategy(models, ModelTier.BASIC))
        denied = RoutingDecision(allowed=False, reason=RoutingReason.DAILY_LIMIT_REACHED)
        with pytest.raises(ValueError):
            router.classify(LONG_QUERY, denied)

    def test_estimate_is_used_unforced(self, models):
        """Without quota pressure, the strategy's estimate stands."""
        router = QueryRouter(FixedStrategy(models, ModelTier.ADVANCED))
        selection = router.classify(
            LONG_QUERY, ALLOW, recheck=lambda adv, cost: ALLOW, prefer_advanced=True
        )
        assert selection.model_tier == ModelTier.ADVANCED
        assert selection.is_advanced is True
        assert selection.forced is False
        assert selection.reason == RoutingReason.ESTIMATED
        assert selection.estimated_cost == models.price(ModelTier.ADVANCED, LONG_QUERY)

    def test_non_advanced_request_capped_at_basic(self, models):
        """An ADVANCED estimate is capped at BASIC unless the caller asked for it."""
        calls = []

        def recheck(advanced, cost):
            calls.append((advanced, cost))
            return ALLOW

        router = QueryRouter(FixedStrategy(models, ModelTier.ADVANCED))
        selection = router.classify(LONG_QUERY, ALLOW, recheck=recheck)

        assert selection.model_tier == ModelTier.BASIC
        assert selection.is_advanced is False
        assert selection.forced is False
        assert selection.reason == RoutingReason.ESTIMATED
        assert selection.estimated_cost == models.price(ModelTier.BASIC, LONG_QUERY)
        assert calls == [(False, models.price(ModelTier.BASIC, LONG_QUERY))]

    def test_cost_strategy_complex_query_without_advanced(self, models):
        """Complex queries stay off the advanced model for ordinary requests."""
        router = QueryRouter(CostEstimatorStrategy(models))
        assert router.classify(COMPLEX_QUERY, ALLOW).model_tier == ModelTier.BASIC
        assert router.classify(
            COMPLEX_QUERY, ALLOW, prefer_advanced=True
        ).model_tier == ModelTier.ADVANCED


class TestQuotaRecheck:
    """Test that estimates are gated by quota a second time."""

    def test_advanced_estimate_downgraded(self, models):
        """An ADVANCED estimate without advanced allowance drops to BASIC."""
        calls = []

        def recheck(advanced, cost):
            calls.append((advanced, cost))
            if advanced:
                return RoutingDecision(True, RoutingReason.ADVANCED_QUOTA_EXHAUSTED, ModelTier.BASIC)
            return ALLOW

        router = QueryRouter(FixedStrategy(models, ModelTier.ADVANCED))
        selection = router.classify(LONG_QUERY, ALLOW, recheck=recheck, prefer_advanced=True)

        assert selection.model_tier == ModelTier.BASIC
        assert selection.forced is True
        assert selection.reason == RoutingReason.ADVANCED_QUOTA_EXHAUSTED
        assert selection.estimated_cost == models.price(ModelTier.BASIC, LONG_QUERY)
        assert calls[0] == (True, models.price(ModelTier.ADVANCED, LONG_QUERY))
        assert calls[1] == (False, models.price(ModelTier.BASIC, LONG_QUERY))

    def test_cost_estimate_over_cap_goes_cheapest(self, models):
        """An estimate that would reach the monthly cap is served on CHEAPEST."""
        capped = RoutingDecision(True, RoutingReason.MONTHLY_COST_CAP_REACHED, ModelTier.CHEAPEST)
        router = QueryRouter(FixedStrategy(models, ModelTier.BASIC))
        selection = router.classify(LONG_QUERY, ALLOW, recheck=lambda adv, cost: capped)
        assert selection.model_tier == ModelTier.CHEAPEST
        assert selection.reason == RoutingReason.MONTHLY_COST_CAP_REACHED

    def test_cheapest_estimate_keeps_cap_reason(self, models):
        """A cap reached on the cheapest estimate is still reported as forced."""
        capped = RoutingDecision(True, RoutingReason.MONTHLY_COST_CAP_REACHED, ModelTier.CHEAPEST)
        router = QueryRouter(FixedStrategy(models, ModelTier.CHEAPEST))
        selection = router.classify(LONG_QUERY, ALLOW, recheck=lambda adv, cost: capped)
        assert selection.model_tier == ModelTier.CHEAPEST
        assert selection.forced is True
        assert selection.reason == RoutingReason.MONTHLY_COST_CAP_REACHED
        assert selection.estimated_cost == models.price(ModelTier.CHEAPEST, LONG_QUERY)

    def test_recheck_denial_raises(self, models):
        """A denial on re-check surfaces as QuotaExceeded."""
        denied = RoutingDecision(False, RoutingReason.DAILY_LIMIT_REACHED)
        router = QueryRouter(FixedStrategy(models, ModelTier.BASIC))
        with pytest.raises(QuotaExceeded) as excinfo:
            router.classify(LONG_QUERY, ALLOW, recheck=lambda adv, cost: denied)
        assert excinfo.value.reason == RoutingReason.DAILY_LIMIT_REACHED


class TestStrategies:
    """Test the interchangeable routing strategies."""

    def test_length_strategy(self, models):
        strategy = LengthHeuristicStrategy(models, long_query_threshold=50)
        assert strategy.estimate("a" * 49).model_tier == ModelTier.BASIC
        assert strategy.estimate("a" * 50).model_tier == ModelTier.ADVANCED
        assert strategy.estimate("short", prefer_advanced=True).model_tier == ModelTier.ADVANCED

    def test_cost_strategy_tiers(self, models):
        strategy = CostEstimatorStrategy(models)
        assert strategy.estimate("What time is it now?").model_tier == ModelTier.CHEAPEST
        assert strategy.estimate(LONG_QUERY).model_tier == ModelTier.BASIC
        assert strategy.estimate(COMPLEX_QUERY).model_tier == ModelTier.ADVANCED

    def test_cost_strategy_prices_estimate(self, models):
        estimate = CostEstimatorStrategy(models).estimate(LONG_QUERY)
        assert estimate.estimated_cost == models.price(ModelTier.BASIC, LONG_QUERY)

    def test_remote_strategy_uses_classifier(self, models):
        classifier = Mock()
        classifier.classify.return_value = Estimate(ModelTier.CHEAPEST, Decimal("0.0001"))
        estimate = RemoteClassifierStrategy(models, classifier).estimate(LONG_QUERY)
        assert estimate == Estimate(ModelTier.CHEAPEST, Decimal("0.0001"))
        classifier.classify.assert_called_once_with(LONG_QUERY)

    def test_remote_strategy_failure_surfaces(self, models):
        classifier = Mock()
        classifier.classify.side_effect = RuntimeError("connection reset")
        with pytest.raises(ModelInvocationFailed, match="connection reset"):
            RemoteClassifierStrategy(models, classifier).estimate(LONG_QUERY)

    def test_build_strategy(self, models):
        assert isinstance(build_strategy("length", models), LengthHeuristicStrategy)
        assert isinstance(build_strategy("cost", models), CostEstimatorStrategy)
        assert isinstance(build_strategy("remote", models, Mock()), RemoteClassifierStrategy)

    def test_build_strategy_errors(self, models):
        with pytest.raises(ValueError, match="requires a query classifier"):
            build_strategy("remote", models)
        with pytest.raises(ValueError, match="Unknown routing strategy"):
            build_strategy("random", models)
