"""Tests for CronScheduler (APScheduler wiring)."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from apscheduler.triggers.interval import IntervalTrigger

from fieldcron.core.config.schema import SchedulerConfig
from fieldcron.core.cron.scheduler import TICK_JOB_ID, CronScheduler
from fieldcron.core.cron.types import RunState, TaskRunResult


@pytest.fixture
def dispatcher():
    d = MagicMock()
    d.tick = AsyncMock(return_value=[])
    d.run_task = AsyncMock(return_value=TaskRunResult(cron_id=1, state=RunState.COMPLETED))
    d.shutdown = AsyncMock()
    return d


def _scheduler(dispatcher, **config):
    sched = CronScheduler(dispatcher, SchedulerConfig(**config))
    sched._scheduler = MagicMock()
    sched._scheduler.running = False
    return sched


class TestStart:
    @pytest.mark.asyncio
    async def test_registers_interval_job(self, dispatcher):
        sched = _scheduler(dispatcher, interval_minutes=7)
        await sched.start()

        sched._scheduler.add_job.assert_called_once()
        kwargs = sched._scheduler.add_job.call_args.kwargs
        assert kwargs["id"] == TICK_JOB_ID
        assert isinstance(kwargs["trigger"], IntervalTrigger)
        assert kwargs["trigger"].interval.total_seconds() == 7 * 60
        sched._scheduler.start.assert_called_once()

    @pytest.mark.asyncio
    async def test_disabled_registers_nothing(self, dispatcher):
        sched = _scheduler(dispatcher, enabled=False)
        await sched.start()
        sched._scheduler.add_job.assert_not_called()
        sched._scheduler.start.assert_not_called()

    def test_job_defaults_prevent_overlap(self, dispatcher):
        sched = CronScheduler(dispatcher, SchedulerConfig())
        assert sched._scheduler._job_defaults["max_instances"] == 1
        assert sched._scheduler._job_defaults["coalesce"] is True


class TestRunAndStop:
    @pytest.mark.asyncio
    async def test_run_now_delegates(self, dispatcher):
        sched = _scheduler(dispatcher)
        result = await sched.run_now(1)
        dispatcher.run_task.assert_awaited_once_with(1)
        assert result.state == RunState.COMPLETED

    @pytest.mark.asyncio
    async def test_tick_swallows_errors(self, dispatcher):
        dispatcher.tick.side_effect = RuntimeError("boom")
        sched = _scheduler(dispatcher)
        await sched._tick()
        dispatcher.tick.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_drains_dispatcher(self, dispatcher):
        sched = _scheduler(dispatcher)
        sched._scheduler.running = True
        await sched.stop()
        sched._scheduler.shutdown.assert_called_once_with(wait=False)
        dispatcher.shutdown.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_when_never_started(self, dispatcher):
        sched = _scheduler(dispatcher)
        await sched.stop()
        sched._scheduler.shutdown.assert_not_called()
        dispatcher.shutdown.assert_awaited_once()
