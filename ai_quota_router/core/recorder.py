"""
Usage recording.

Commits the effects of a served request. This is the only path that
mutates usage counters, and it only ever uses the store's atomic
increments.
"""

import logging
from decimal import Decimal
from typing import Union

from .periods import UsageCalendar
from .errors import InvalidRequest
from .quota import as_money
from ai_quota_router.storage.repository import UsageStore

logger = logging.getLogger(__name__)


class UsageRecorder:
    """Records served requests against the current day and month."""

    def __init__(self, store: UsageStore, calendar: UsageCalendar):
        self.store = store
        self.calendar = calendar

    def record(
        self,
        identity: str,
        is_advanced: bool,
        actual_cost: Union[Decimal, float, int, str]
    ) -> None:
        """Record one served request.

        Must be called exactly once per served request and never for a
        request that was denied or whose model call failed.

        Args:
            identity: User identity
            is_advanced: Whether the caller asked for the advanced model
            actual_cost: Realized cost of serving the request

        Raises:
            InvalidRequest: If the cost is negative
            StoreUnavailable: On persistence errors
        """
        cost = as_money(actual_cost)
        if cost < 0:
            raise InvalidRequest(f"Cost must be >= 0, got {cost}")

        user = self.store.get_or_create_user(identity)
        # Counters and cost commit together or not at all
        self.store.record_served(
            user.identity,
            self.calendar.today(),
            self.calendar.this_month(),
            query_delta=1,
            advanced_delta=1 if is_advanced else 0,
            cost_delta=cost
        )
        logger.info(
            "Recorded usage for %s (advanced=%s, cost=%s)", identity, is_advanced, cost
        )
