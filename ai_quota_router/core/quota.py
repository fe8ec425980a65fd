"""
Quota evaluation.

Decides whether a prospective request is admitted, downgraded to a cheaper
model, or rejected, given a user's tier limits and a snapshot of their
counters.

Check Order (first match wins):
1. Daily query limit - Blocks the request outright
2. Daily advanced limit - Serves the request on the BASIC model
3. Monthly cost cap - Serves the request on the CHEAPEST model

Hard daily caps block; advanced and cost caps degrade to a cheaper path so
the user keeps getting answers.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from .tiers import TierLimits
from ai_quota_router.storage.models import DailyUsage, MonthlyUsage

logger = logging.getLogger(__name__)


class ModelTier(Enum):
    """Cost-ordered model classes, cheapest first."""
    CHEAPEST = 1
    BASIC = 2
    ADVANCED = 3

    @classmethod
    def parse(cls, value: Union["ModelTier", str]) -> "ModelTier":
        """Resolve a model tier from an enum member or a case-insensitive name."""
        if isinstance(value, cls):
            return value
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown model tier: {value!r}")


class RoutingReason(Enum):
    """Reason codes attached to every quota and routing decision."""
    NONE = "NONE"
    DAILY_LIMIT_REACHED = "DAILY_LIMIT_REACHED"
    ADVANCED_QUOTA_EXHAUSTED = "ADVANCED_QUOTA_EXHAUSTED"
    MONTHLY_COST_CAP_REACHED = "MONTHLY_COST_CAP_REACHED"
    SHORT_QUERY = "SHORT_QUERY"
    ESTIMATED = "ESTIMATED"


@dataclass(frozen=True)
class RoutingDecision:
    """Outcome of a quota check for one request."""
    allowed: bool
    reason: RoutingReason = RoutingReason.NONE
    forced_model: Optional[ModelTier] = None


def as_money(value: Union[Decimal, float, int, str]) -> Decimal:
    """Coerce a cost figure to Decimal without binary float artifacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def evaluate(
    limits: TierLimits,
    daily: DailyUsage,
    monthly: MonthlyUsage,
    is_advanced: bool,
    estimated_cost: Union[Decimal, float, int, str] = Decimal("0")
) -> RoutingDecision:
    """
    Evaluate a prospective request against a tier's limits.

    The counters are a snapshot that may be stale by the time usage is
    recorded, so a few concurrent requests can slip past a limit at the
    exact boundary.

    Args:
        limits: Limits of the user's tier
        daily: Today's counters for the user
        monthly: This month's accrued cost for the user
        is_advanced: Whether the request asks for the advanced model class
        estimated_cost: Expected cost of serving the request

    Returns:
        RoutingDecision: admit, downgrade or deny, with a reason code
    """
    # 1. Hard daily cap
    if daily.queries_used >= limits.daily_query_limit:
        logger.info(
            "Denied %s: %d/%d daily queries used",
            daily.identity, daily.queries_used, limits.daily_query_limit
        )
        return RoutingDecision(allowed=False, reason=RoutingReason.DAILY_LIMIT_REACHED)

    # 2. Advanced allowance
    if is_advanced and daily.advanced_used >= limits.daily_advanced_limit:
        logger.debug(
            "Downgrading %s to BASIC: %d/%d advanced queries used",
            daily.identity, daily.advanced_used, limits.daily_advanced_limit
        )
        return RoutingDecision(
            allowed=True,
            reason=RoutingReason.ADVANCED_QUOTA_EXHAUSTED,
            forced_model=ModelTier.BASIC
        )

    # 3. Monthly spend; reaching the cap exactly counts as over budget
    projected = monthly.cost_accrued + as_money(estimated_cost)
    if projected >= limits.monthly_cost_cap:
        logger.debug(
            "Downgrading %s to CHEAPEST: projected spend %s >= cap %s",
            monthly.identity, projected, limits.monthly_cost_cap
        )
        return RoutingDecision(
            allowed=True,
            reason=RoutingReason.MONTHLY_COST_CAP_REACHED,
            forced_model=ModelTier.CHEAPEST
        )

    return RoutingDecision(allowed=True, reason=RoutingReason.NONE)
