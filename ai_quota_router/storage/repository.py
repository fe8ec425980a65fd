"""
Repository pattern for usage counter persistence.

All counter mutation happens here through single-statement atomic
increments; application code never reads a counter, adds to it and writes
it back.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal, ROUND_UP
from typing import Iterator, List, Union

from .db import DEFAULT_DB_PATH, get_connection
from .models import DailyUsage, MonthlyUsage, User
from ai_quota_router.core.errors import InvalidRequest, StoreUnavailable
from ai_quota_router.core.tiers import Tier

logger = logging.getLogger(__name__)

# Monthly cost is stored as integer micro-units so SQL addition stays exact
MICROS_PER_UNIT = Decimal("1000000")


def to_micros(amount: Decimal) -> int:
    """Convert a monetary amount to integer micro-units, rounding up."""
    return int((Decimal(amount) * MICROS_PER_UNIT).to_integral_value(rounding=ROUND_UP))


def from_micros(micros: int) -> Decimal:
    """Convert integer micro-units back to a monetary amount."""
    return Decimal(micros) / MICROS_PER_UNIT


_INCREMENT_DAILY_SQL = """
    INSERT INTO daily_usage (identity, day, queries_used, advanced_used)
    VALUES (?, ?, ?, ?)
    ON CONFLICT(identity, day) DO UPDATE SET
        queries_used = queries_used + excluded.queries_used,
        advanced_used = advanced_used + excluded.advanced_used
"""

_INCREMENT_MONTHLY_SQL = """
    INSERT INTO monthly_usage (identity, month, cost_micros)
    VALUES (?, ?, ?)
    ON CONFLICT(identity, month) DO UPDATE SET
        cost_micros = cost_micros + excluded.cost_micros
"""


class UsageStore:
    """Durable store for users and their daily/monthly usage counters.

    Every public method opens its own connection, so a single instance can
    be shared across threads. Transient persistence errors surface as
    StoreUnavailable; constraint violations (such as usage for a user that
    was never created) surface as InvalidRequest.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the store with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = get_connection(self.db_path)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Cannot open usage store {self.db_path}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError as e:
            # Constraint violations are caller errors; retrying cannot help
            conn.rollback()
            raise InvalidRequest(f"Usage store rejected the write: {e}") from e
        except sqlite3.Error as e:
            conn.rollback()
            logger.error("Usage store operation failed: %s", e)
            raise StoreUnavailable(f"Usage store operation failed: {e}") from e
        finally:
            conn.close()

    def initialize_schema(self) -> None:
        """Create the users, daily_usage and monthly_usage tables if missing.

        Uniqueness constraints on the natural keys make lazy creation
        idempotent under concurrent first access.
        """
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    identity TEXT NOT NULL UNIQUE,
                    tier TEXT NOT NULL DEFAULT 'FREE',
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS daily_usage (
                    identity TEXT NOT NULL REFERENCES users(identity),
                    day TEXT NOT NULL,
                    queries_used INTEGER NOT NULL DEFAULT 0,
                    advanced_used INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (identity, day)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS monthly_usage (
                    identity TEXT NOT NULL REFERENCES users(identity),
                    month TEXT NOT NULL,
                    cost_micros INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (identity, month)
                )
            """)

    def get_or_create_user(self, identity: str) -> User:
        """Fetch a user, creating it with the default tier on first reference.

        Args:
            identity: Stable opaque identifier

        Returns:
            The stored user

        Leading and trailing whitespace is not part of an identity.

        Raises:
            InvalidRequest: If the identity is blank
            StoreUnavailable: On persistence errors
            UnknownTier: If the stored tier is not in the closed tier set
        """
        if not isinstance(identity, str) or not identity.strip():
            raise InvalidRequest("identity is required and cannot be empty")
        identity = identity.strip()
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO users (identity, tier, created_at) VALUES (?, ?, ?)",
                (identity, Tier.FREE.value, datetime.now(timezone.utc).isoformat())
            )
            row = conn.execute(
                "SELECT identity, tier FROM users WHERE identity = ?", (identity,)
            ).fetchone()
        return User(identity=row[0], tier=Tier.parse(row[1]))

    def set_user_tier(self, identity: str, tier: Union[Tier, str]) -> User:
        """Assign a tier to a user (administrative action).

        Args:
            identity: Stable opaque identifier
            tier: New tier

        Returns:
            The updated user
        """
        resolved = Tier.parse(tier)
        user = self.get_or_create_user(identity)
        with self._connect() as conn:
            conn.execute(
                "UPDATE users SET tier = ? WHERE identity = ?",
                (resolved.value, user.identity)
            )
        logger.info("Tier for %s set to %s", user.identity, resolved.value)
        return User(identity=user.identity, tier=resolved)

    def get_or_create_daily_usage(self, identity: str, day: str) -> DailyUsage:
        """Fetch the counters for (user, day), creating a zeroed row if missing.

        Args:
            identity: User identity (must already exist)
            day: ISO date string in the reference timezone

        Returns:
            Snapshot of the day's counters

        Raises:
            InvalidRequest: If the user does not exist
            StoreUnavailable: On persistence errors
        """
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO daily_usage (identity, day) VALUES (?, ?)",
                (identity, day)
            )
            row = conn.execute(
                "SELECT queries_used, advanced_used FROM daily_usage "
                "WHERE identity = ? AND day = ?",
                (identity, day)
            ).fetchone()
        return DailyUsage(
            identity=identity,
            day=day,
            queries_used=row[0],
            advanced_used=row[1]
        )

    def get_or_create_monthly_usage(self, identity: str, month: str) -> MonthlyUsage:
        """Fetch accrued cost for (user, month), creating a zeroed row if missing.

        Args:
            identity: User identity (must already exist)
            month: Month key formatted YYYY-MM

        Returns:
            Snapshot of the month's accrued cost

        Raises:
            InvalidRequest: If the user does not exist
            StoreUnavailable: On persistence errors
        """
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO monthly_usage (identity, month) VALUES (?, ?)",
                (identity, month)
            )
            row = conn.execute(
                "SELECT cost_micros FROM monthly_usage WHERE identity = ? AND month = ?",
                (identity, month)
            ).fetchone()
        return MonthlyUsage(identity=identity, month=month, cost_accrued=from_micros(row[0]))

    def increment_daily(
        self,
        identity: str,
        day: str,
        query_delta: int,
        advanced_delta: int
    ) -> None:
        """Atomically add to the day's counters.

        A single upsert statement performs the addition inside SQLite, so
        concurrent increments for the same (user, day) never lose updates.

        Raises:
            InvalidRequest: If a delta is negative
            StoreUnavailable: On persistence errors
        """
        if query_delta < 0 or advanced_delta < 0:
            raise InvalidRequest("Usage counters can only increase")
        with self._connect() as conn:
            conn.execute(_INCREMENT_DAILY_SQL, (identity, day, query_delta, advanced_delta))

    def increment_monthly_cost(self, identity: str, month: str, cost_delta: Decimal) -> None:
        """Atomically add to the month's accrued cost.

        Raises:
            InvalidRequest: If the delta is negative
            StoreUnavailable: On persistence errors
        """
        if cost_delta < 0:
            raise InvalidRequest("Monthly cost can only increase")
        with self._connect() as conn:
            conn.execute(_INCREMENT_MONTHLY_SQL, (identity, month, to_micros(cost_delta)))

    def record_served(
        self,
        identity: str,
        day: str,
        month: str,
        query_delta: int,
        advanced_delta: int,
        cost_delta: Decimal
    ) -> None:
        """Atomically add one served request to the day and month.

        Both upserts run in a single transaction, so a failure leaves
        neither the counters nor the accrued cost changed.

        Raises:
            InvalidRequest: If a delta is negative or the user does not exist
            StoreUnavailable: On persistence errors
        """
        if query_delta < 0 or advanced_delta < 0 or cost_delta < 0:
            raise InvalidRequest("Usage counters and cost can only increase")
        with self._connect() as conn:
            conn.execute(_INCREMENT_DAILY_SQL, (identity, day, query_delta, advanced_delta))
            conn.execute(_INCREMENT_MONTHLY_SQL, (identity, month, to_micros(cost_delta)))

    def get_daily_history(self, identity: str, days: int = 7) -> List[DailyUsage]:
        """Get the most recent daily usage rows for a user.

        Args:
            identity: User identity
            days: Maximum number of rows to return

        Returns:
            Daily usage snapshots ordered by day (newest first)
        """
        with self._connect() as conn:
            cursor = conn.execute(
                "SELECT day, queries_used, advanced_used FROM daily_usage "
                "WHERE identity = ? ORDER BY day DESC LIMIT ?",
                (identity, days)
            )
            rows = cursor.fetchall()
        return [
            DailyUsage(identity=identity, day=row[0], queries_used=row[1], advanced_used=row[2])
            for row in rows
        ]

