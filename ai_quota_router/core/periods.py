"""
Calendar boundaries for usage counters.

Daily and monthly counters roll over at midnight in one fixed reference
timezone, regardless of where requests come from.
"""

from datetime import datetime, timezone, tzinfo
from typing import Callable, Optional
from zoneinfo import ZoneInfo


def resolve_timezone(name: str) -> tzinfo:
    """Resolve a timezone name, treating UTC specially.

    Raises:
        ValueError: If the name is not a known timezone
    """
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (KeyError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name}") from e


class UsageCalendar:
    """Maps the current instant to day and month counter keys."""

    def __init__(self, tz_name: str = "UTC", clock: Optional[Callable[[], datetime]] = None):
        self.tz = resolve_timezone(tz_name)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._clock().astimezone(self.tz)

    def today(self) -> str:
        """Current day key (YYYY-MM-DD)."""
        return self.now().date().isoformat()

    def this_month(self) -> str:
        """Current month key (YYYY-MM)."""
        return self.now().strftime("%Y-%m")
