"""
Calendar-aligned rate windows.

Derives window identifiers and window boundaries from a point in time.
Everything here is a pure function of its arguments.
"""

from datetime import datetime, timedelta
from enum import Enum


class WindowType(Enum):
    """Rate window granularity."""
    DAILY = "daily"
    MINUTE = "minute"


def daily_key(now: datetime) -> str:
    """Window identifier for the calendar day containing ``now``."""
    return now.strftime("%Y-%m-%d")


def minute_key(now: datetime) -> str:
    """Window identifier for the minute containing ``now``."""
    return now.strftime("%Y-%m-%d-%H-%M")


def end_of_day(now: datetime) -> datetime:
    """First instant of the next calendar day (exclusive boundary)."""
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start + timedelta(days=1)


def end_of_minute(now: datetime) -> datetime:
    """First instant of the next minute (exclusive boundary)."""
    start = now.replace(second=0, microsecond=0)
    return start + timedelta(minutes=1)


def window_key(window: WindowType, now: datetime) -> str:
    if window is WindowType.DAILY:
        return daily_key(now)
    return minute_key(now)


def window_end(window: WindowType, now: datetime) -> datetime:
    if window is WindowType.DAILY:
        return end_of_day(now)
    return end_of_minute(now)
