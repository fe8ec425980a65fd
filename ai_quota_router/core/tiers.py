"""
Subscription tiers and their quota limits.

The catalog is a pure lookup table built once at process start.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Mapping, Optional, Union

from .errors import UnknownTier


class Tier(Enum):
    """Closed set of subscription tiers."""
    FREE = "FREE"
    PLUS = "PLUS"
    PRO = "PRO"
    PREMIUM = "PREMIUM"

    @classmethod
    def parse(cls, value: Union["Tier", str]) -> "Tier":
        """Resolve a tier from an enum member or a case-insensitive name.

        Raises:
            UnknownTier: If the value does not name a known tier
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        raise UnknownTier(value)


@dataclass(frozen=True)
class TierLimits:
    """Quota limits for one tier."""
    daily_query_limit: int
    daily_advanced_limit: int
    monthly_cost_cap: Decimal

    def __post_init__(self):
        """Validate limits are non-negative."""
        if self.daily_query_limit < 0:
            raise ValueError("daily_query_limit must be >= 0")
        if self.daily_advanced_limit < 0:
            raise ValueError("daily_advanced_limit must be >= 0")
        if self.monthly_cost_cap < 0:
            raise ValueError("monthly_cost_cap must be >= 0")


DEFAULT_TIER_LIMITS: Dict[Tier, TierLimits] = {
    Tier.FREE: TierLimits(
        daily_query_limit=20,
        daily_advanced_limit=0,
        monthly_cost_cap=Decimal("3.00")
    ),
    Tier.PLUS: TierLimits(
        daily_query_limit=500,
        daily_advanced_limit=0,
        monthly_cost_cap=Decimal("10.00")
    ),
    Tier.PRO: TierLimits(
        daily_query_limit=1500,
        daily_advanced_limit=100,
        monthly_cost_cap=Decimal("30.00")
    ),
    Tier.PREMIUM: TierLimits(
        daily_query_limit=5000,
        daily_advanced_limit=500,
        monthly_cost_cap=Decimal("100.00")
    ),
}


class TierCatalog:
    """Immutable mapping from tier to limits."""

    def __init__(self, overrides: Optional[Mapping[Tier, TierLimits]] = None):
        limits = dict(DEFAULT_TIER_LIMITS)
        if overrides:
            limits.update(overrides)
        self._limits = limits

    def limits_for(self, tier: Union[Tier, str]) -> TierLimits:
        """Get limits for a tier.

        Args:
            tier: Tier enum member or tier name

        Returns:
            TierLimits for the tier

        Raises:
            UnknownTier: If the tier is not in the catalog
        """
        resolved = Tier.parse(tier)
        if resolved not in self._limits:
            raise UnknownTier(tier)
        return self._limits[resolved]

    def items(self):
        """Iterate (tier, limits) pairs in tier order."""
        return [(tier, self._limits[tier]) for tier in Tier if tier in self._limits]
