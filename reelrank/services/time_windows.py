from __future__ import annotations
from datetime import datetime, timedelta, timezone as dt_tz

from reelrank.schemas.leaderboard import Period


def utc_day_start(now: datetime) -> datetime:
    now = now.astimezone(dt_tz.utc)
    return datetime(now.year, now.month, now.day, tzinfo=dt_tz.utc)


def period_start(period: Period, now: datetime | None = None) -> datetime | None:
    """
    Lower bound (inclusive, UTC) of a leaderboard period, or None for all_time.

      - daily:    00:00 UTC of the current day
      - weekly:   00:00 UTC of the most recent Sunday (today if today is Sunday)
      - all_time: unbounded

    Examples:
        >>> from datetime import datetime, timezone
        >>> period_start(Period.WEEKLY, datetime(2025, 1, 15, 9, 30, tzinfo=timezone.utc))  # a Wednesday
        datetime.datetime(2025, 1, 12, 0, 0, tzinfo=datetime.timezone.utc)
    """
    now = now or datetime.now(dt_tz.utc)
    if period == Period.DAILY:
        return utc_day_start(now)
    if period == Period.WEEKLY:
        day = utc_day_start(now)
        # weekday(): Monday=0 .. Sunday=6
        return day - timedelta(days=(day.weekday() + 1) % 7)
    return None


def in_period(created_at: datetime, period: Period, now: datetime | None = None) -> bool:
    start = period_start(period, now)
    if start is None:
        return True
    if created_at.tzinfo is None:
        # SQLite hands back naive values; everything is stored as UTC
        created_at = created_at.replace(tzinfo=dt_tz.utc)
    return created_at >= start
