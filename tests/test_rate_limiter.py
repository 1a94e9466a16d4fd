"""
Tests for daily and per-minute admission control.
"""

from datetime import datetime
from unittest.mock import Mock

import pytest

from pagespeed_watcher.config.loader import QuotaConfig
from pagespeed_watcher.core.rate_limiter import RateLimiter, UsageStats
from pagespeed_watcher.core.windows import WindowType
from pagespeed_watcher.storage.counter_store import (
    CounterStoreError,
    InMemoryCounterStore,
    SQLiteCounterStore,
)


def make_limiter(clock, daily=100, per_minute=3, store=None):
    quota = QuotaConfig(daily_limit=daily, per_minute_limit=per_minute)
    return RateLimiter(store or InMemoryCounterStore(clock=clock), quota, clock=clock)


class TestRateLimiter:
    """Test admission decisions and usage accounting."""

    def test_fresh_limiter_allows(self, clock):
        assert make_limiter(clock).can_proceed() is True

    def test_minute_used_counts_every_call(self, clock):
        limiter = make_limiter(clock, per_minute=10)
        for expected in range(1, 8):
            limiter.record_proceeded()
            assert limiter.get_usage_stats().minute_used == expected

    def test_minute_limit_blocks(self, clock):
        limiter = make_limiter(clock, per_minute=3)
        for _ in range(2):
            limiter.record_proceeded()
        assert limiter.can_proceed() is True

        limiter.record_proceeded()
        assert limiter.can_proceed() is False

    def test_daily_limit_blocks_across_minutes(self, clock):
        limiter = make_limiter(clock, daily=3, per_minute=10)
        for _ in range(3):
            limiter.record_proceeded()
            clock.advance(minutes=1)
        assert limiter.get_usage_stats().minute_used == 0
        assert limiter.can_proceed() is False

    def test_minute_window_rollover(self, clock):
        limiter = make_limiter(clock, per_minute=2)
        limiter.record_proceeded()
        limiter.record_proceeded()
        assert limiter.can_proceed() is False

        clock.now = clock.now.replace(second=59)
        assert limiter.can_proceed() is False

        clock.advance(seconds=1)
        assert limiter.can_proceed() is True
        assert limiter.get_usage_stats().minute_used == 0
        assert limiter.get_usage_stats().daily_used == 2

    def test_daily_window_rollover(self, clock):
        limiter = make_limiter(clock, daily=2, per_minute=10)
        limiter.record_proceeded()
        limiter.record_proceeded()
        assert limiter.can_proceed() is False

        clock.now = datetime(2024, 3, 16, 0, 0, 0)
        assert limiter.can_proceed() is True
        assert limiter.get_usage_stats().daily_used == 0

    def test_counter_keys_per_window(self, clock):
        limiter = make_limiter(clock)
        assert limiter.counter_key(WindowType.DAILY, clock()) == "pagespeed_watcher:daily:2024-03-15"
        assert limiter.counter_key(WindowType.MINUTE, clock()) == "pagespeed_watcher:minute:2024-03-15-10-30"

    def test_record_sets_window_expiry(self, clock):
        store = InMemoryCounterStore(clock=clock)
        limiter = make_limiter(clock, store=store)
        limiter.record_proceeded()

        daily = store.get_counter(limiter.counter_key(WindowType.DAILY, clock()))
        minute = store.get_counter(limiter.counter_key(WindowType.MINUTE, clock()))
        assert daily.expires_at == datetime(2024, 3, 16)
        assert minute.expires_at == datetime(2024, 3, 15, 10, 31)

    def test_usage_stats(self, clock):
        limiter = make_limiter(clock, daily=100, per_minute=3)
        for _ in range(2):
            limiter.record_proceeded()

        assert limiter.get_usage_stats() == UsageStats(
            daily_used=2,
            daily_limit=100,
            daily_remaining=98,
            minute_used=2,
            minute_limit=3,
            minute_remaining=1,
        )

    def test_remaining_never_negative(self, clock):
        limiter = make_limiter(clock, daily=2, per_minute=1)
        for _ in range(4):
            limiter.record_proceeded()

        stats = limiter.get_usage_stats()
        assert stats.minute_used == 4
        assert stats.minute_remaining == 0
        assert stats.daily_remaining == 0

    def test_can_proceed_has_no_side_effects(self, clock):
        limiter = make_limiter(clock)
        for _ in range(5):
            limiter.can_proceed()
        stats = limiter.get_usage_stats()
        assert stats.daily_used == 0
        assert stats.minute_used == 0

    def test_shared_sqlite_store(self, clock, db_path):
        first = make_limiter(clock, per_minute=2, store=SQLiteCounterStore(db_path, clock=clock))
        second = make_limiter(clock, per_minute=2, store=SQLiteCounterStore(db_path, clock=clock))
        first.record_proceeded()
        second.record_proceeded()
        assert first.can_proceed() is False
        assert second.get_usage_stats().minute_used == 2


class TestRateLimiterStoreFailures:
    """Test behavior when the counter store is unavailable."""

    def failing_store(self):
        store = Mock()
        store.get.side_effect = CounterStoreError("down")
        store.increment.side_effect = CounterStoreError("down")
        return store

    def test_can_proceed_fails_closed(self, clock):
        limiter = make_limiter(clock, store=self.failing_store())
        assert limiter.can_proceed() is False

    def test_record_failure_is_swallowed(self, clock):
        store = self.failing_store()
        limiter = make_limiter(clock, store=store)
        limiter.record_proceeded()
        assert store.increment.call_count == 2

    def test_usage_stats_propagates_failure(self, clock):
        limiter = make_limiter(clock, store=self.failing_store())
        with pytest.raises(CounterStoreError):
            limiter.get_usage_stats()
