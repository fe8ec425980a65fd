"""
Request orchestration.

Composes the tier catalog, usage store, quota evaluator, router and usage
recorder into the end-to-end decision for one query. This is the only
component callers talk to.

Flow for a served query:
1. Validate input (before any store access)
2. Resolve user, tier and current counters
3. Quota pre-check, deny immediately if over the daily cap
4. Select a model (possibly downgraded by quota)
5. Invoke the model backend
6. Record usage with the realized cost

Store and tier errors fail closed. A failed model call is never recorded.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Protocol, Tuple, Union

from .errors import InvalidRequest, ModelInvocationFailed, QuotaExceeded
from .periods import UsageCalendar
from .quota import ModelTier, RoutingDecision, RoutingReason, as_money, evaluate
from .recorder import UsageRecorder
from .router import ModelSelection, QueryClassifier, QueryRouter, build_strategy
from .tiers import TierCatalog, TierLimits
from ai_quota_router.storage.models import DailyUsage, MonthlyUsage, User
from ai_quota_router.storage.repository import UsageStore

logger = logging.getLogger(__name__)

Money = Union[Decimal, float, int, str]


@dataclass(frozen=True)
class ModelResponse:
    """Generated text and the realized cost of producing it."""
    text: str
    cost: Decimal
    model: str


class ModelBackend(Protocol):
    """Model invocation backend; must bound its own call time."""

    def invoke(self, model: str, query: str) -> ModelResponse:
        ...


@dataclass(frozen=True)
class CheckResult:
    """Outcome of a side-effect-free quota check."""
    allowed: bool
    reason: RoutingReason
    force_basic: bool = False
    force_cheapest: bool = False

    @classmethod
    def from_decision(cls, decision: RoutingDecision) -> "CheckResult":
        return cls(
            allowed=decision.allowed,
            reason=decision.reason,
            force_basic=decision.forced_model is ModelTier.BASIC,
            force_cheapest=decision.forced_model is ModelTier.CHEAPEST
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "allowed": self.allowed,
            "forceBasic": self.force_basic,
            "forceCheapest": self.force_cheapest,
            "reason": self.reason.value,
        }


@dataclass(frozen=True)
class RouteResult:
    """Model selection for a query, without recording usage."""
    allowed: bool
    reason: RoutingReason
    model: Optional[str] = None
    forced: bool = False
    selection: Optional[ModelSelection] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "allowed": self.allowed,
            "model": self.model,
            "forced": self.forced,
            "reason": self.reason.value,
        }


@dataclass(frozen=True)
class ServedResponse:
    """A query answered by a model, with the usage that was recorded."""
    text: str
    selection: ModelSelection
    cost: Decimal

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "text": self.text,
            "model": self.selection.model,
            "forced": self.selection.forced,
            "reason": self.selection.reason.value,
            "cost": str(self.cost),
        }


def _require_identity(identity: Optional[str]) -> str:
    if not isinstance(identity, str) or not identity.strip():
        raise InvalidRequest("identity is required and cannot be empty")
    return identity.strip()


def _require_query(query: Optional[str]) -> str:
    if not isinstance(query, str) or not query.strip():
        raise InvalidRequest("query is required and cannot be empty")
    return query


def _require_cost(cost: Money, name: str) -> Decimal:
    try:
        value = as_money(cost)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise InvalidRequest(f"{name} must be a number, got {cost!r}") from e
    if not value.is_finite() or value < 0:
        raise InvalidRequest(f"{name} must be >= 0, got {cost!r}")
    return value


class RequestOrchestrator:
    """End-to-end quota and routing decisions for individual queries.

    Each call is independent; requests from the same user may run
    concurrently. Checks read a snapshot of the counters, so at a limit
    boundary a few concurrent requests can be admitted before the recorded
    usage catches up. Counter updates themselves are atomic.
    """

    def __init__(
        self,
        store: UsageStore,
        router: QueryRouter,
        catalog: Optional[TierCatalog] = None,
        backend: Optional[ModelBackend] = None,
        calendar: Optional[UsageCalendar] = None
    ):
        self.store = store
        self.router = router
        self.catalog = catalog or TierCatalog()
        self.backend = backend
        self.calendar = calendar or UsageCalendar()
        self.recorder = UsageRecorder(store, self.calendar)

    @classmethod
    def from_config(
        cls,
        config,
        backend: Optional[ModelBackend] = None,
        classifier: Optional[QueryClassifier] = None
    ) -> "RequestOrchestrator":
        """Wire an orchestrator from an AppConfig.

        Args:
            config: Loaded AppConfig
            backend: Model invocation backend (required only by `handle`)
            classifier: Classification backend for the 'remote' strategy

        Raises:
            ValueError: If the configured strategy cannot be built
        """
        strategy = build_strategy(config.routing.strategy, config.model_catalog(), classifier)
        return cls(
            store=UsageStore(config.storage.db_path),
            router=QueryRouter(strategy, config.routing.short_query_threshold),
            catalog=config.tier_catalog(),
            backend=backend,
            calendar=UsageCalendar(config.storage.timezone)
        )

    def _snapshot(self, identity: str) -> Tuple[User, TierLimits, DailyUsage, MonthlyUsage]:
        user = self.store.get_or_create_user(identity)
        limits = self.catalog.limits_for(user.tier)
        daily = self.store.get_or_create_daily_usage(user.identity, self.calendar.today())
        monthly = self.store.get_or_create_monthly_usage(user.identity, self.calendar.this_month())
        return user, limits, daily, monthly

    def check_query(
        self,
        identity: str,
        is_advanced: bool = False,
        estimated_cost: Money = Decimal("0")
    ) -> CheckResult:
        """Quota pre-check for a prospective request. Records nothing.

        Raises:
            InvalidRequest: On missing identity or bad cost figure
            UnknownTier: If the user's tier is not in the catalog
            StoreUnavailable: If usage cannot be read
        """
        identity = _require_identity(identity)
        cost = _require_cost(estimated_cost, "estimated_cost")
        _, limits, daily, monthly = self._snapshot(identity)
        decision = evaluate(limits, daily, monthly, is_advanced, cost)
        return CheckResult.from_decision(decision)

    def record_usage(self, identity: str, is_advanced: bool, cost: Money) -> Dict[str, str]:
        """Commit one served request. Not idempotent: call once per request.

        Raises:
            InvalidRequest: On missing identity or bad cost figure
            StoreUnavailable: If usage cannot be written
        """
        identity = _require_identity(identity)
        value = _require_cost(cost, "cost")
        self.recorder.record(identity, is_advanced, value)
        return {"status": "RECORDED"}

    def route(self, identity: str, query: str, is_advanced: bool = False) -> RouteResult:
        """Choose a model for a query without invoking it or recording usage.

        Raises:
            InvalidRequest: On missing identity or empty query
            UnknownTier: If the user's tier is not in the catalog
            StoreUnavailable: If usage cannot be read
            ModelInvocationFailed: If a remote classifier fails
        """
        identity = _require_identity(identity)
        query = _require_query(query)
        _, limits, daily, monthly = self._snapshot(identity)

        # Cheap local pre-check priced at the BASIC model
        pre_cost = self.router.models.price(ModelTier.BASIC, query)
        decision = evaluate(limits, daily, monthly, is_advanced, pre_cost)
        if not decision.allowed:
            return RouteResult(allowed=False, reason=decision.reason)

        def recheck(advanced: bool, cost: Decimal) -> RoutingDecision:
            return evaluate(limits, daily, monthly, advanced, cost)

        try:
            selection = self.router.classify(query, decision, recheck, prefer_advanced=is_advanced)
        except QuotaExceeded as e:
            return RouteResult(allowed=False, reason=e.reason)

        return RouteResult(
            allowed=True,
            reason=selection.reason,
            model=selection.model,
            forced=selection.forced,
            selection=selection
        )

    def handle(self, identity: str, query: str, is_advanced: bool = False) -> ServedResponse:
        """Route, serve and record one query.

        Raises:
            InvalidRequest: On missing identity or empty query
            QuotaExceeded: If the request is denied; nothing is invoked or recorded
            UnknownTier: If the user's tier is not in the catalog
            StoreUnavailable: If usage cannot be read or written
            ModelInvocationFailed: If the model call fails or times out;
                usage is not recorded
        """
        routed = self.route(identity, query, is_advanced)
        if not routed.allowed:
            raise QuotaExceeded(routed.reason)
        selection = routed.selection
        identity = identity.strip()

        if self.backend is None:
            raise ModelInvocationFailed("No model backend configured", model=selection.model)

        try:
            response = self.backend.invoke(selection.model, query)
        except ModelInvocationFailed:
            logger.warning("Model %s failed for %s; usage not recorded", selection.model, identity)
            raise
        except Exception as e:
            logger.warning("Model %s failed for %s: %s", selection.model, identity, e)
            raise ModelInvocationFailed(
                f"Model invocation failed: {e}", model=selection.model
            ) from e

        cost = _require_cost(response.cost, "cost")
        self.recorder.record(identity, is_advanced, cost)
        return ServedResponse(text=response.text, selection=selection, cost=cost)
