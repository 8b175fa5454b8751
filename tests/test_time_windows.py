from __future__ import annotations
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo
from reelrank.schemas.leaderboard import Period
from reelrank.services.time_windows import period_start, in_period, utc_day_start


def test_daily_starts_at_utc_midnight():
    now = datetime(2025, 1, 15, 12, 30, tzinfo=timezone.utc)
    assert period_start(Period.DAILY, now) == datetime(2025, 1, 15, tzinfo=timezone.utc)


def test_weekly_starts_on_most_recent_sunday():
    wednesday = datetime(2025, 1, 15, 12, 30, tzinfo=timezone.utc)
    assert period_start(Period.WEEKLY, wednesday) == datetime(2025, 1, 12, tzinfo=timezone.utc)

    saturday = datetime(2025, 1, 18, 23, 59, tzinfo=timezone.utc)
    assert period_start(Period.WEEKLY, saturday) == datetime(2025, 1, 12, tzinfo=timezone.utc)


def test_weekly_on_sunday_is_same_day():
    sunday = datetime(2025, 1, 12, 0, 0, 1, tzinfo=timezone.utc)
    assert period_start(Period.WEEKLY, sunday) == datetime(2025, 1, 12, tzinfo=timezone.utc)


def test_all_time_has_no_lower_bound():
    assert period_start(Period.ALL_TIME, datetime(2025, 1, 15, tzinfo=timezone.utc)) is None


def test_local_time_input_is_converted_to_utc_first():
    # 20:00 in New York on the 14th is 01:00 UTC on the 15th
    ny = datetime(2025, 1, 14, 20, 0, tzinfo=ZoneInfo("America/New_York"))
    assert utc_day_start(ny) == datetime(2025, 1, 15, tzinfo=timezone.utc)
    assert period_start(Period.DAILY, ny) == datetime(2025, 1, 15, tzinfo=timezone.utc)


def test_in_period_accepts_naive_utc_values():
    now = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
    assert in_period(datetime(2025, 1, 15, 0, 0), Period.DAILY, now)
    assert not in_period(datetime(2025, 1, 14, 23, 59), Period.DAILY, now)
    assert in_period(now - timedelta(days=3), Period.WEEKLY, now)
    assert not in_period(now - timedelta(days=4), Period.WEEKLY, now)
    assert in_period(now - timedelta(days=3650), Period.ALL_TIME, now)
