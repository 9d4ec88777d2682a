"""Tests for fieldcron.core.cron.window."""

from datetime import datetime, time, timezone

import pytest

from fieldcron.core.cron.types import CronStatus, CronTask
from fieldcron.core.cron.window import in_daily_window, is_eligible


def _task(**overrides) -> CronTask:
    data = {
        "cron_id": 1,
        "user_id": "u1",
        "center_zip": "60601",
        "driving_radius": 10,
        "cron_start_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
        "cron_end_at": datetime(2026, 12, 31, tzinfo=timezone.utc),
        "working_window_start_at": time(8, 0),
        "working_window_end_at": time(17, 0),
        "types_of_work_order": [1],
    }
    data.update(overrides)
    return CronTask(**data)


def _utc(hour: int, minute: int = 0, day: int = 15, month: int = 6) -> datetime:
    return datetime(2026, month, day, hour, minute, tzinfo=timezone.utc)


# ── Daily window ─────────────────────────────────────────────


def test_daily_window_same_day():
    assert in_daily_window(time(8, 0), time(8, 0), time(17, 0))
    assert in_daily_window(time(17, 0), time(8, 0), time(17, 0))
    assert not in_daily_window(time(7, 59), time(8, 0), time(17, 0))
    assert not in_daily_window(time(17, 1), time(8, 0), time(17, 0))


def test_daily_window_spanning_midnight():
    assert in_daily_window(time(23, 30), time(22, 0), time(6, 0))
    assert in_daily_window(time(2, 0), time(22, 0), time(6, 0))
    assert not in_daily_window(time(10, 0), time(22, 0), time(6, 0))


def test_daily_window_equal_bounds_is_whole_day():
    assert in_daily_window(time(3, 0), time(9, 0), time(9, 0))


# ── Eligibility ──────────────────────────────────────────────


def test_eligible_inside_everything():
    assert is_eligible(_task(), _utc(12))


def test_midnight_window_scenario():
    """22:00-06:00: 23:30 eligible, 10:00 not."""
    task = _task(
        working_window_start_at=time(22, 0),
        working_window_end_at=time(6, 0),
    )
    assert is_eligible(task, _utc(23, 30))
    assert not is_eligible(task, _utc(10))


@pytest.mark.parametrize(
    "now",
    [
        datetime(2025, 12, 31, 12, 0, tzinfo=timezone.utc),
        datetime(2027, 1, 1, 12, 0, tzinfo=timezone.utc),
    ],
)
def test_outside_active_range_never_eligible(now):
    """Whole-day window does not rescue a time outside [start, end]."""
    task = _task(working_window_start_at=time(0, 0), working_window_end_at=time(0, 0))
    assert not is_eligible(task, now)


def test_inactive_or_deleted_not_eligible():
    assert not is_eligible(_task(status=CronStatus.INACTIVE), _utc(12))
    assert not is_eligible(_task(deleted=True), _utc(12))


def test_naive_now_is_utc():
    assert is_eligible(_task(), datetime(2026, 6, 15, 12, 0))
    assert not is_eligible(_task(), datetime(2026, 6, 15, 20, 0))


def test_task_timezone_overrides_default():
    """17:00 UTC is 12:00 in Chicago (CDT), inside 08:00-13:00 there only."""
    task = _task(working_window_end_at=time(13, 0), timezone="America/Chicago")
    assert is_eligible(task, _utc(17))
    assert not is_eligible(_task(working_window_end_at=time(13, 0)), _utc(17))


def test_default_timezone_used_when_task_has_none():
    task = _task(working_window_end_at=time(13, 0))
    assert is_eligible(task, _utc(17), default_tz="America/Chicago")


def test_stored_offset_times_compare_as_local():
    """Times saved with a UTC offset are read back as plain local times."""
    task = _task(working_window_start_at="22:00:00Z", working_window_end_at="06:00:00Z")
    assert task.working_window_start_at == time(22, 0)
    assert task.working_window_start_at.tzinfo is None
    assert is_eligible(task, _utc(23, 30, day=1))
    assert not is_eligible(task, _utc(12, 0, day=1))
