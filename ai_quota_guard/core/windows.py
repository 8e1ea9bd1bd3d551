"""
Time windows for quota accounting.

Usage counters are partitioned by encoding the window into the store key.
All key formatting and window arithmetic lives here so the rest of the
package never builds keys by hand.
"""

import calendar
from datetime import datetime, timedelta, timezone
from enum import Enum


KEY_PREFIX = "usage"


class UsageWindow(str, Enum):
    """Quota windows with their own counter buckets."""
    DAILY = "daily"
    MONTHLY = "monthly"


class TimeRange(str, Enum):
    """Look-back ranges for usage reports."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def date_key(moment: datetime) -> str:
    return as_utc(moment).strftime("%Y-%m-%d")


def month_key(moment: datetime) -> str:
    return as_utc(moment).strftime("%Y-%m")


def window_key(user_id: str, window: UsageWindow, moment: datetime) -> str:
    """Counter bucket key for a user's window containing moment.

    e.g. ``usage:daily:user-1:2024-03-15`` or ``usage:monthly:user-1:2024-03``
    """
    suffix = date_key(moment) if window == UsageWindow.DAILY else month_key(moment)
    return f"{KEY_PREFIX}:{window.value}:{user_id}:{suffix}"


def history_key(user_id: str) -> str:
    return f"{KEY_PREFIX}:history:{user_id}"


def stats_key(user_id: str) -> str:
    return f"{KEY_PREFIX}:stats:{user_id}"


def next_reset(window: UsageWindow, moment: datetime) -> datetime:
    """Start of the window following the one containing moment (UTC)."""
    moment = as_utc(moment)
    if window == UsageWindow.DAILY:
        midnight = moment.replace(hour=0, minute=0, second=0, microsecond=0)
        return midnight + timedelta(days=1)
    if moment.month == 12:
        return datetime(moment.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(moment.year, moment.month + 1, 1, tzinfo=timezone.utc)


def _one_month_before(moment: datetime) -> datetime:
    year, month = (moment.year - 1, 12) if moment.month == 1 else (moment.year, moment.month - 1)
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def range_cutoff(time_range: TimeRange, moment: datetime) -> datetime:
    """Earliest timestamp included in a report over time_range ending at moment.

    The cutoff is inclusive: a record stamped exactly at the cutoff counts.
    """
    moment = as_utc(moment)
    if time_range == TimeRange.DAY:
        return moment - timedelta(days=1)
    if time_range == TimeRange.WEEK:
        return moment - timedelta(days=7)
    return _one_month_before(moment)
