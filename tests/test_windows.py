"""
Unit tests for rate window keys and boundaries.
"""

from datetime import datetime

from pagespeed_watcher.core.windows import (
    WindowType,
    daily_key,
    end_of_day,
    end_of_minute,
    minute_key,
    window_end,
    window_key,
)


class TestWindowKeys:
    """Test canonical window identifiers."""

    def test_daily_key_format(self):
        assert daily_key(datetime(2024, 3, 5, 23, 59, 59)) == "2024-03-05"

    def test_minute_key_format(self):
        assert minute_key(datetime(2024, 3, 5, 7, 4, 59)) == "2024-03-05-07-04"

    def test_adjacent_minutes_have_distinct_keys(self):
        first = minute_key(datetime(2024, 3, 5, 7, 4, 59))
        second = minute_key(datetime(2024, 3, 5, 7, 5, 0))
        assert first != second

    def test_window_key_dispatch(self):
        now = datetime(2024, 3, 5, 7, 4, 30)
        assert window_key(WindowType.DAILY, now) == "2024-03-05"
        assert window_key(WindowType.MINUTE, now) == "2024-03-05-07-04"


class TestWindowBoundaries:
    """Test window end instants."""

    def test_end_of_day(self):
        assert end_of_day(datetime(2024, 3, 5, 13, 45, 10)) == datetime(2024, 3, 6)

    def test_end_of_day_rolls_over_month(self):
        assert end_of_day(datetime(2024, 2, 29, 0, 0, 0)) == datetime(2024, 3, 1)

    def test_end_of_minute(self):
        now = datetime(2024, 3, 5, 13, 45, 10, 500)
        assert end_of_minute(now) == datetime(2024, 3, 5, 13, 46)

    def test_end_of_minute_rolls_over_hour(self):
        now = datetime(2024, 3, 5, 13, 59, 59)
        assert end_of_minute(now) == datetime(2024, 3, 5, 14, 0)

    def test_window_end_dispatch(self):
        now = datetime(2024, 3, 5, 13, 45, 10)
        assert window_end(WindowType.DAILY, now) == datetime(2024, 3, 6)
        assert window_end(WindowType.MINUTE, now) == datetime(2024, 3, 5, 13, 46)
