"""Calendar windows for quota counters. All boundaries are UTC."""

from datetime import datetime, timedelta, timezone
from typing import Optional


def normalize_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def day_start(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def next_day_start(now: datetime) -> datetime:
    return day_start(now) + timedelta(days=1)


def next_month_start(now: datetime) -> datetime:
    if now.month == 12:
        return datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)


def daily_window_is_stale(window_start: Optional[datetime], now: datetime) -> bool:
    """True when the daily window was anchored on a different UTC date."""
    if window_start is None:
        return True
    return not (day_start(now) <= window_start < next_day_start(now))


def monthly_window_is_stale(resets_at: Optional[datetime], now: datetime) -> bool:
    return resets_at is None or now >= resets_at
