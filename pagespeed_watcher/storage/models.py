"""
Data models for storage layer.

Defines the rate-window counters and the daily usage ledger rows.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable


@dataclass(frozen=True)
class RateWindowCounter:
    """Request count for one rate window.

    Ephemeral: the counter stops being visible once ``expires_at`` passes.
    """
    window_key: str
    count: int
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now.timestamp() >= self.expires_at.timestamp()


@dataclass(frozen=True)
class UsageLedgerEntry:
    """Durable per-day aggregate of PSI requests.

    ``requests_total`` always equals ``requests_ok + requests_error`` and
    ``cost_estimate_usd`` is derived from ``requests_total``.
    """
    date: date
    requests_total: int
    requests_ok: int
    requests_error: int
    cost_estimate_usd: Decimal


@dataclass(frozen=True)
class UsageTotals:
    """Field-wise sum of several ledger entries."""
    days: int
    requests_total: int
    requests_ok: int
    requests_error: int
    cost_estimate_usd: Decimal

    @classmethod
    def from_entries(cls, entries: Iterable[UsageLedgerEntry]) -> "UsageTotals":
        entries = list(entries)
        return cls(
            days=len(entries),
            requests_total=sum(e.requests_total for e in entries),
            requests_ok=sum(e.requests_ok for e in entries),
            requests_error=sum(e.requests_error for e in entries),
            cost_estimate_usd=sum(
                (e.cost_estimate_usd for e in entries), Decimal("0.0000")
            ),
        )
