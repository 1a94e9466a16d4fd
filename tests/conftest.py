"""
Shared test fixtures.
"""

from datetime import datetime, timedelta

import pytest


class FakeClock:
    """Settable time source for window and ledger tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 15, 10, 30, 15))


@pytest.fixture
def db_path(tmp_path):
    from pagespeed_watcher.storage.repository import initialize_schema

    path = str(tmp_path / "test.db")
    initialize_schema(path)
    return path
