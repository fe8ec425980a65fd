"""
Query classification and model selection.

The router picks the cheapest adequate model for a query. Quota policy
always outranks content heuristics: a model forced by the quota evaluator
is used as-is, and any estimate produced here is checked against quota
again before it is accepted.

Routing strategies are interchangeable; the evaluator never needs to know
which one is active.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Optional, Protocol, Tuple

from .errors import ModelInvocationFailed, QuotaExceeded
from .pricing import PRICING_TABLE, PricingTable, estimate_query_cost
from .quota import ModelTier, RoutingDecision, RoutingReason
from .token_counter import estimate_tokens

logger = logging.getLogger(__name__)

# Queries shorter than this are always answered by the BASIC model
SHORT_QUERY_THRESHOLD = 15

COMPLEXITY_MARKERS = (
    "analyze", "analyse", "compare", "derive", "explain why", "prove",
    "step by step", "refactor", "debug", "optimize", "design",
)

# Re-evaluates quota for (is_advanced, estimated_cost)
QuotaRecheck = Callable[[bool, Decimal], RoutingDecision]


@dataclass(frozen=True)
class Estimate:
    """A suggested model class and its expected cost."""
    model_tier: ModelTier
    estimated_cost: Decimal


@dataclass(frozen=True)
class ModelSelection:
    """The model chosen to serve one query."""
    model_tier: ModelTier
    model: str
    forced: bool
    reason: RoutingReason
    estimated_cost: Decimal

    @property
    def is_advanced(self) -> bool:
        """Whether this selection runs on the advanced model."""
        return self.model_tier is ModelTier.ADVANCED


@dataclass(frozen=True)
class ModelCatalog:
    """Concrete provider model names behind each model tier."""
    cheapest: str = "gpt-4o-mini"
    basic: str = "gpt-4.1-mini"
    advanced: str = "gpt-4o"
    pricing: PricingTable = PRICING_TABLE

    def name_for(self, tier: ModelTier) -> str:
        """Get the provider model name for a model tier."""
        names: Dict[ModelTier, str] = {
            ModelTier.CHEAPEST: self.cheapest,
            ModelTier.BASIC: self.basic,
            ModelTier.ADVANCED: self.advanced,
        }
        return names[tier]

    def price(self, tier: ModelTier, query: str) -> Decimal:
        """Estimate the cost of answering a query on a model tier."""
        return estimate_query_cost(self.name_for(tier), query, self.pricing)


class QueryClassifier(Protocol):
    """External classification backend (e.g. a small LLM call)."""

    def classify(self, query: str) -> Estimate:
        ...


class RoutingStrategy(ABC):
    """Suggests a model tier and cost for a query that quota did not force."""
    name = "base"

    def __init__(self, models: ModelCatalog):
        self.models = models

    @abstractmethod
    def estimate(self, query: str, prefer_advanced: bool = False) -> Estimate:
        """Suggest a model tier and expected cost for a query."""

    def _priced(self, tier: ModelTier, query: str) -> Estimate:
        return Estimate(model_tier=tier, estimated_cost=self.models.price(tier, query))


class LengthHeuristicStrategy(RoutingStrategy):
    """Long queries go to the advanced model, everything else to BASIC."""
    name = "length"

    def __init__(self, models: ModelCatalog, long_query_threshold: int = 280):
        super().__init__(models)
        self.long_query_threshold = long_query_threshold

    def estimate(self, query: str, prefer_advanced: bool = False) -> Estimate:
        if prefer_advanced or len(query) >= self.long_query_threshold:
            return self._priced(ModelTier.ADVANCED, query)
        return self._priced(ModelTier.BASIC, query)


class CostEstimatorStrategy(RoutingStrategy):
    """Local complexity scoring priced against the model pricing table.

    A query is complex when it is long in tokens or contains a reasoning
    marker; complex queries go to ADVANCED, medium ones to BASIC and the
    rest to CHEAPEST.
    """
    name = "cost"

    def __init__(
        self,
        models: ModelCatalog,
        complex_token_threshold: int = 60,
        medium_token_threshold: int = 12
    ):
        super().__init__(models)
        self.complex_token_threshold = complex_token_threshold
        self.medium_token_threshold = medium_token_threshold

    def is_complex(self, query: str) -> bool:
        lowered = query.lower()
        if estimate_tokens(query) >= self.complex_token_threshold:
            return True
        return any(marker in lowered for marker in COMPLEXITY_MARKERS)

    def estimate(self, query: str, prefer_advanced: bool = False) -> Estimate:
        if prefer_advanced or self.is_complex(query):
            return self._priced(ModelTier.ADVANCED, query)
        if estimate_tokens(query) >= self.medium_token_threshold:
            return self._priced(ModelTier.BASIC, query)
        return self._priced(ModelTier.CHEAPEST, query)


class RemoteClassifierStrategy(RoutingStrategy):
    """Delegates the suggestion to an external classification backend."""
    name = "remote"

    def __init__(self, models: ModelCatalog, classifier: QueryClassifier):
        super().__init__(models)
        self.classifier = classifier

    def estimate(self, query: str, prefer_advanced: bool = False) -> Estimate:
        try:
            suggestion = self.classifier.classify(query)
        except ModelInvocationFailed:
            raise
        except Exception as e:
            raise ModelInvocationFailed(f"Query classification failed: {e}") from e
        if prefer_advanced and suggestion.model_tier is not ModelTier.ADVANCED:
            return self._priced(ModelTier.ADVANCED, query)
        return suggestion


def build_strategy(
    name: str,
    models: ModelCatalog,
    classifier: Optional[QueryClassifier] = None
) -> RoutingStrategy:
    """Create a routing strategy by configuration name.

    Raises:
        ValueError: If the name is unknown or 'remote' has no classifier
    """
    if name == LengthHeuristicStrategy.name:
        return LengthHeuristicStrategy(models)
    if name == CostEstimatorStrategy.name:
        return CostEstimatorStrategy(models)
    if name == RemoteClassifierStrategy.name:
        if classifier is None:
            raise ValueError("The 'remote' routing strategy requires a query classifier")
        return RemoteClassifierStrategy(models, classifier)
    raise ValueError(f"Unknown routing strategy: {name}")


class QueryRouter:
    """Selects the model that serves a query admitted by the quota evaluator."""

    def __init__(
        self,
        strategy: RoutingStrategy,
        short_query_threshold: int = SHORT_QUERY_THRESHOLD
    ):
        self.strategy = strategy
        self.models = strategy.models
        self.short_query_threshold = short_query_threshold

    def _select(
        self,
        tier: ModelTier,
        query: str,
        forced: bool,
        reason: RoutingReason,
        cost: Optional[Decimal] = None
    ) -> ModelSelection:
        return ModelSelection(
            model_tier=tier,
            model=self.models.name_for(tier),
            forced=forced,
            reason=reason,
            estimated_cost=self.models.price(tier, query) if cost is None else cost
        )

    def classify(
        self,
        query: str,
        decision: RoutingDecision,
        recheck: Optional[QuotaRecheck] = None,
        prefer_advanced: bool = False
    ) -> ModelSelection:
        """
        Choose a model for a query.

        Priority:
        1. Model forced by quota
        2. Short-query shortcut to BASIC
        3. Strategy estimate, re-checked against quota via `recheck`

        Only requests that asked for the advanced model can be routed to it;
        any other estimate is capped at BASIC.

        Args:
            query: The user's query text
            decision: Pre-check result from the quota evaluator
            recheck: Re-runs quota evaluation for the strategy's estimate
            prefer_advanced: Whether the caller asked for the advanced model

        Returns:
            ModelSelection for the query

        Raises:
            ValueError: If the decision denies the request
            QuotaExceeded: If the re-check denies the request
            ModelInvocationFailed: If a remote classifier fails
        """
        if not decision.allowed:
            raise ValueError("Cannot classify a request denied by quota")

        if decision.forced_model is not None:
            return self._select(decision.forced_model, query, True, decision.reason)

        if len(query.strip()) < self.short_query_threshold:
            return self._select(ModelTier.BASIC, query, True, RoutingReason.SHORT_QUERY)

        estimate = self.strategy.estimate(query, prefer_advanced)
        tier, cost = estimate.model_tier, estimate.estimated_cost
        if tier is ModelTier.ADVANCED and not prefer_advanced:
            tier = ModelTier.BASIC
            cost = self.models.price(tier, query)
        forced, reason = False, RoutingReason.ESTIMATED

        if recheck is not None:
            tier, cost, forced, reason = self._apply_quota(query, tier, cost, recheck)

        logger.debug(
            "Routed query via %s strategy to %s (forced=%s, reason=%s, cost=%s)",
            self.strategy.name, tier.name, forced, reason.value, cost
        )
        return self._select(tier, query, forced, reason, cost)

    def _apply_quota(
        self,
        query: str,
        tier: ModelTier,
        cost: Decimal,
        recheck: QuotaRecheck
    ) -> Tuple[ModelTier, Decimal, bool, RoutingReason]:
        forced, reason = False, RoutingReason.ESTIMATED
        # Each downgrade lowers the tier, so this settles within len(ModelTier) rounds
        for _ in range(len(ModelTier)):
            outcome = recheck(tier is ModelTier.ADVANCED, cost)
            if not outcome.allowed:
                raise QuotaExceeded(outcome.reason)
            target = outcome.forced_model
            if target is None:
                break
            forced, reason = True, outcome.reason
            if target.value >= tier.value:
                break
            tier = target
            cost = self.models.price(tier, query)
        return tier, cost, forced, reason
