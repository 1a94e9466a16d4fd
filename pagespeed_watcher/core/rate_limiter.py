"""
Local admission control for PSI requests.

Tracks requests in two independent calendar windows, a day and a minute,
because the provider enforces both a daily quota and a short burst limit.

Checking and recording are separate steps. Two callers racing through
``can_proceed`` before either calls ``record_proceeded`` can both be
admitted, so the limits are soft: they throttle this deployment's intent
and the provider remains the final authority. A hard ceiling would need the
check folded into the increment (increment first, reject and roll back when
over the limit), which changes admitted throughput under load.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from ..config.loader import QuotaConfig
from ..storage.counter_store import CounterStore, CounterStoreError
from .windows import WindowType, window_end, window_key

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "pagespeed_watcher:"


@dataclass(frozen=True)
class UsageStats:
    """Current usage of both rate windows."""
    daily_used: int
    daily_limit: int
    daily_remaining: int
    minute_used: int
    minute_limit: int
    minute_remaining: int


class RateLimiter:
    """Daily and per-minute request limiter backed by a counter store."""

    def __init__(
        self,
        store: CounterStore,
        quota: QuotaConfig,
        clock: Callable[[], datetime] = datetime.now,
        key_prefix: str = DEFAULT_KEY_PREFIX
    ):
        """Initialize the limiter.

        Args:
            store: Shared counter store; the only state the limiter uses
            quota: Daily and per-minute limits
            clock: Source of the current time for window keys
            key_prefix: Namespace for counter keys in the store
        """
        self.store = store
        self.quota = quota
        self.clock = clock
        self.key_prefix = key_prefix

    def counter_key(self, window: WindowType, now: datetime) -> str:
        return f"{self.key_prefix}{window.value}:{window_key(window, now)}"

    def can_proceed(self) -> bool:
        """Whether both windows still have room for a request.

        Pure read. If the store cannot be read the answer is False, so an
        outage never turns into an uncontrolled quota overrun.
        """
        now = self.clock()
        try:
            daily_used = self.store.get(self.counter_key(WindowType.DAILY, now))
            minute_used = self.store.get(self.counter_key(WindowType.MINUTE, now))
        except CounterStoreError as e:
            logger.error("Counter store unavailable, refusing request: %s", e)
            return False

        if daily_used >= self.quota.daily_limit:
            logger.warning(
                "Daily API limit reached (limit=%d, used=%d)",
                self.quota.daily_limit, daily_used
            )
            return False

        if minute_used >= self.quota.per_minute_limit:
            logger.warning(
                "Rate limit exceeded (limit_per_minute=%d, used=%d)",
                self.quota.per_minute_limit, minute_used
            )
            return False

        return True

    def record_proceeded(self) -> None:
        """Count one issued request in the current day and minute windows.

        Each counter's expiry is set to its window boundary so stale windows
        evict themselves. Store failures are logged only: the request has
        already been sent and cannot be taken back.
        """
        now = self.clock()
        for window in (WindowType.DAILY, WindowType.MINUTE):
            key = self.counter_key(window, now)
            try:
                self.store.increment(key, window_end(window, now))
            except CounterStoreError as e:
                logger.error("Failed to record request in %s window: %s", window.value, e)

    def get_usage_stats(self) -> UsageStats:
        """Usage of the current windows.

        Raises:
            CounterStoreError: If the store cannot be read
        """
        now = self.clock()
        daily_used = self.store.get(self.counter_key(WindowType.DAILY, now))
        minute_used = self.store.get(self.counter_key(WindowType.MINUTE, now))

        return UsageStats(
            daily_used=daily_used,
            daily_limit=self.quota.daily_limit,
            daily_remaining=max(0, self.quota.daily_limit - daily_used),
            minute_used=minute_used,
            minute_limit=self.quota.per_minute_limit,
            minute_remaining=max(0, self.quota.per_minute_limit - minute_used),
        )
