"""
Counter stores backing the rate limiter.

A counter store holds integer counters that expire at a given instant. The
only mutation is an atomic increment that also refreshes the expiry; there is
no get-then-set path, so concurrent increments are never lost.
"""

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Dict, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import RateWindowCounter

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class CounterStoreError(Exception):
    """Raised when the counter store cannot be read or written."""


class CounterStore(ABC):
    """Key/value store of expiring counters."""

    def __init__(self, clock: Clock = datetime.now):
        self.clock = clock

    @abstractmethod
    def get_counter(self, key: str) -> Optional[RateWindowCounter]:
        """Return the live counter for ``key``, or None if absent or expired."""

    @abstractmethod
    def increment(self, key: str, expires_at: datetime) -> int:
        """Atomically add one to ``key`` and set its expiry.

        An expired counter restarts at 1.

        Returns:
            The post-increment count
        """

    @abstractmethod
    def purge_expired(self) -> int:
        """Delete expired counters and return how many were removed."""

    def get(self, key: str) -> int:
        """Current count for ``key``, 0 when absent or expired."""
        counter = self.get_counter(key)
        return counter.count if counter else 0


class InMemoryCounterStore(CounterStore):
    """Process-local counter store guarded by a lock.

    Safe for concurrent threads within one process. Counters do not survive
    a restart and are not shared between processes.
    """

    def __init__(self, clock: Clock = datetime.now):
        super().__init__(clock)
        self._lock = threading.Lock()
        self._counters: Dict[str, RateWindowCounter] = {}

    def _live(self, key: str, now: datetime) -> Optional[RateWindowCounter]:
        counter = self._counters.get(key)
        if counter is None:
            return None
        if counter.is_expired(now):
            del self._counters[key]
            return None
        return counter

    def get_counter(self, key: str) -> Optional[RateWindowCounter]:
        with self._lock:
            return self._live(key, self.clock())

    def increment(self, key: str, expires_at: datetime) -> int:
        with self._lock:
            counter = self._live(key, self.clock())
            count = (counter.count if counter else 0) + 1
            self._counters[key] = RateWindowCounter(
                window_key=key,
                count=count,
                expires_at=expires_at
            )
            return count

    def purge_expired(self) -> int:
        with self._lock:
            now = self.clock()
            expired = [
                key for key, counter in self._counters.items()
                if counter.is_expired(now)
            ]
            for key in expired:
                del self._counters[key]
            return len(expired)


class SQLiteCounterStore(CounterStore):
    """Counter store persisted in the ``rate_window_counter`` table.

    Counters are shared by every process using the same database file.
    Increments run inside ``BEGIN IMMEDIATE`` so the upsert and the read of
    the new value see the same row state. Each increment also deletes
    expired rows, so the table holds only live windows. Expiry instants are
    stored as POSIX timestamps.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, clock: Clock = datetime.now):
        super().__init__(clock)
        self.db_path = db_path

    def get_counter(self, key: str) -> Optional[RateWindowCounter]:
        now = self.clock().timestamp()
        try:
            conn = get_connection(self.db_path)
            try:
                row = conn.execute("""
                    SELECT window_key, count, expires_at
                    FROM rate_window_counter
                    WHERE window_key = ? AND expires_at > ?
                """, (key, now)).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CounterStoreError(f"Failed to read counter {key}: {e}") from e

        if row is None:
            return None
        return RateWindowCounter(
            window_key=row[0],
            count=row[1],
            expires_at=datetime.fromtimestamp(row[2])
        )

    def increment(self, key: str, expires_at: datetime) -> int:
        now = self.clock().timestamp()
        try:
            conn = get_connection(self.db_path)
            try:
                conn.execute("BEGIN IMMEDIATE")
                conn.execute(
                    "DELETE FROM rate_window_counter WHERE expires_at <= ?",
                    (now,)
                )
                conn.execute("""
                    INSERT INTO rate_window_counter (window_key, count, expires_at)
                    VALUES (?, 1, ?)
                    ON CONFLICT(window_key) DO UPDATE SET
                        count = CASE
                            WHEN rate_window_counter.expires_at <= ? THEN 1
                            ELSE rate_window_counter.count + 1
                        END,
                        expires_at = excluded.expires_at
                """, (key, expires_at.timestamp(), now))
                row = conn.execute(
                    "SELECT count FROM rate_window_counter WHERE window_key = ?",
                    (key,)
                ).fetchone()
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CounterStoreError(f"Failed to increment counter {key}: {e}") from e

        return row[0]

    def purge_expired(self) -> int:
        now = self.clock().timestamp()
        try:
            conn = get_connection(self.db_path)
            try:
                cursor = conn.execute(
                    "DELETE FROM rate_window_counter WHERE expires_at <= ?",
                    (now,)
                )
                conn.commit()
                removed = cursor.rowcount
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CounterStoreError(f"Failed to purge counters: {e}") from e

        if removed:
            logger.debug("Purged %d expired rate window counters", removed)
        return removed
