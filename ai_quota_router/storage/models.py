"""
Data models for storage layer.

Read-only snapshots of the rows owned by the usage store. Callers never
mutate these; all writes go through the store's atomic increments.
"""

from dataclasses import dataclass
from decimal import Decimal

from ai_quota_router.core.tiers import Tier


@dataclass(frozen=True)
class User:
    """A quota subject identified by an opaque key (email, account ID)."""
    identity: str
    tier: Tier = Tier.FREE


@dataclass(frozen=True)
class DailyUsage:
    """Counters for one user on one calendar day (ISO date string)."""
    identity: str
    day: str
    queries_used: int = 0
    advanced_used: int = 0


@dataclass(frozen=True)
class MonthlyUsage:
    """Accrued spend for one user in one calendar month (YYYY-MM)."""
    identity: str
    month: str
    cost_accrued: Decimal = Decimal("0")
