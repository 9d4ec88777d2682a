"""Window evaluator: decides whether a cron may run at a given instant."""

from __future__ import annotations

from datetime import datetime, time
from zoneinfo import ZoneInfo

from fieldcron.core.cron.types import CronStatus, CronTask, as_utc


def in_daily_window(t: time, start: time, end: time) -> bool:
    """Inclusive time-of-day check.

    ``end < start`` means the window spans midnight; ``end == start`` means
    the whole day.
    """
    if start == end:
        return True
    if start < end:
        return start <= t <= end
    return t >= start or t <= end


def is_eligible(task: CronTask, now: datetime, default_tz: str = "UTC") -> bool:
    """True when ``task`` may run at ``now``.

    The daily working window is evaluated in ``task.timezone`` when set,
    otherwise in ``default_tz``. Naive ``now`` is taken as UTC.
    """
    if task.status != CronStatus.ACTIVE or task.deleted:
        return False

    now = as_utc(now)
    if not task.cron_start_at <= now <= task.cron_end_at:
        return False

    local = now.astimezone(ZoneInfo(task.timezone or default_tz))
    return in_daily_window(
        local.time().replace(tzinfo=None),
        task.working_window_start_at,
        task.working_window_end_at,
    )
