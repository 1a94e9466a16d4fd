"""
Repository pattern for data access.

Owns the SQLite schema and the daily usage ledger.
"""

import logging
import sqlite3
from datetime import date, datetime
from typing import Callable, List, Optional

from ..config.loader import QuotaConfig
from ..core.pricing import estimate_cost, to_cost
from .db import DEFAULT_DB_PATH, get_connection
from .models import UsageLedgerEntry, UsageTotals

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Raised when the usage ledger cannot be read or written."""


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the usage ledger and rate counter tables if they don't exist.

    ``cost_usd_estimate`` is kept as text so the 4-place decimal survives
    storage exactly.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS watcher_api_usage (
                date TEXT PRIMARY KEY,
                requests_total INTEGER NOT NULL DEFAULT 0,
                requests_ok INTEGER NOT NULL DEFAULT 0,
                requests_error INTEGER NOT NULL DEFAULT 0,
                cost_usd_estimate TEXT NOT NULL DEFAULT '0.0000',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS rate_window_counter (
                window_key TEXT PRIMARY KEY,
                count INTEGER NOT NULL,
                expires_at REAL NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()


def _estimate_cost_sql(requests_total: int, daily_limit: int, cost_per_request: str) -> str:
    return str(estimate_cost(requests_total, daily_limit, cost_per_request))


def _row_to_entry(row) -> UsageLedgerEntry:
    return UsageLedgerEntry(
        date=date.fromisoformat(row[0]),
        requests_total=row[1],
        requests_ok=row[2],
        requests_error=row[3],
        cost_estimate_usd=to_cost(row[4])
    )


class UsageLedger:
    """Durable per-day record of PSI requests and estimated cost.

    Independent of the rate limiter's transient counters: rows accumulate
    forever and are used for reporting and billing estimates.
    """

    def __init__(
        self,
        quota: QuotaConfig,
        db_path: str = DEFAULT_DB_PATH,
        clock: Callable[[], datetime] = datetime.now
    ):
        """Initialize the ledger.

        Args:
            quota: Daily limit and per-request price used for the cost estimate
            db_path: Path to SQLite database file
            clock: Source of the current time; decides which date is "today"
        """
        self.quota = quota
        self.db_path = db_path
        self.clock = clock

    def record_outcome(self, success: bool) -> None:
        """Count one request against today's row.

        A single upsert creates the row if needed, bumps the total and the
        ok/error counter, and recomputes the cost from the post-increment
        total. No value is read back into Python and written again, so
        concurrent callers cannot lose each other's updates.

        Args:
            success: Whether the request produced a usable result

        Raises:
            LedgerError: If the write fails
        """
        now = self.clock()
        ok, error = (1, 0) if success else (0, 1)
        daily_limit = self.quota.daily_limit
        cost = str(self.quota.cost_per_request_usd)

        try:
            conn = get_connection(self.db_path)
            try:
                conn.create_function("estimate_cost", 3, _estimate_cost_sql, deterministic=True)
                conn.execute("""
                    INSERT INTO watcher_api_usage
                        (date, requests_total, requests_ok, requests_error,
                         cost_usd_estimate, created_at, updated_at)
                    VALUES (?, 1, ?, ?, estimate_cost(1, ?, ?), ?, ?)
                    ON CONFLICT(date) DO UPDATE SET
                        requests_total = watcher_api_usage.requests_total + 1,
                        requests_ok = watcher_api_usage.requests_ok + excluded.requests_ok,
                        requests_error = watcher_api_usage.requests_error + excluded.requests_error,
                        cost_usd_estimate = estimate_cost(
                            watcher_api_usage.requests_total + 1, ?, ?
                        ),
                        updated_at = excluded.updated_at
                """, (
                    now.date().isoformat(),
                    ok,
                    error,
                    daily_limit,
                    cost,
                    now.isoformat(),
                    now.isoformat(),
                    daily_limit,
                    cost
                ))
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise LedgerError(f"Failed to record usage for {now.date()}: {e}") from e

        logger.debug("Recorded %s request for %s", "ok" if success else "error", now.date())

    def get_record(self, day: date) -> Optional[UsageLedgerEntry]:
        """Return the ledger entry for ``day``, or None if nothing was recorded."""
        rows = self._select("WHERE date = ?", (day.isoformat(),))
        return rows[0] if rows else None

    def get_today(self) -> Optional[UsageLedgerEntry]:
        return self.get_record(self.clock().date())

    def get_range(self, start_date: date, end_date: date) -> List[UsageLedgerEntry]:
        """Entries between two dates, inclusive, ascending by date."""
        if start_date > end_date:
            raise ValueError("start_date must not be after end_date")
        return self._select(
            "WHERE date BETWEEN ? AND ? ORDER BY date ASC",
            (start_date.isoformat(), end_date.isoformat())
        )

    def summarize(self, start_date: date, end_date: date) -> UsageTotals:
        """Sum the entries of a date range (e.g. the last 7 days)."""
        return UsageTotals.from_entries(self.get_range(start_date, end_date))

    def _select(self, clause: str, params: tuple) -> List[UsageLedgerEntry]:
        try:
            conn = get_connection(self.db_path)
            try:
                cursor = conn.execute(f"""
                    SELECT date, requests_total, requests_ok, requests_error,
                           cost_usd_estimate
                    FROM watcher_api_usage
                    {clause}
                """, params)
                return [_row_to_entry(row) for row in cursor.fetchall()]
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise LedgerError(f"Failed to read usage ledger: {e}") from e
