"""Calendar helpers for streaks, daily goals and leaderboard windows.

All engine timestamps are timezone-aware. "Calendar day" always means the
day in the configured timezone (``Settings.timezone``), not UTC.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo


@lru_cache(maxsize=32)
def get_zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC (SQLite drops tzinfo on round-trip)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def local_date(dt: datetime, tz: str = "UTC") -> date:
    """Calendar day of ``dt`` in timezone ``tz``."""
    return ensure_aware(dt).astimezone(get_zone(tz)).date()


def start_of_day(day: date, tz: str = "UTC") -> datetime:
    """Midnight at the start of ``day`` in ``tz``, as an aware datetime."""
    return datetime.combine(day, time.min, tzinfo=get_zone(tz))


def get_monday(dt: datetime | date) -> date:
    """Get the Monday of the ISO week containing dt."""
    d = dt.date() if isinstance(dt, datetime) else dt
    return d - timedelta(days=d.weekday())


def get_week_start(now: datetime, tz: str = "UTC") -> datetime:
    """Monday 00:00 (local) of the ISO week containing ``now``."""
    return start_of_day(get_monday(local_date(now, tz)), tz)


def get_month_start(now: datetime, tz: str = "UTC") -> datetime:
    """First day of the month containing ``now``, 00:00 local."""
    return start_of_day(local_date(now, tz).replace(day=1), tz)


def calculate_percentile(rank: int, total: int) -> float:
    """Calculate percentile from rank and total participants.

    Rank 1 out of 100 -> 99.0 (top 1%)
    Rank 100 out of 100 -> 0.0 (bottom)
    """
    if total <= 0 or rank <= 0:
        return 0.0
    return round(100 - (rank / total * 100), 2)
