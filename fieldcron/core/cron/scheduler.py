"""CronScheduler: APScheduler interval timer driving the dispatcher."""

from __future__ import annotations

from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from fieldcron.core.cron.types import TaskRunResult

if TYPE_CHECKING:
    from fieldcron.core.config.schema import SchedulerConfig
    from fieldcron.core.cron.dispatcher import CronDispatcher

TICK_JOB_ID = "fieldcron-tick"


class CronScheduler:
    """Process-wide recurring timer.

    A single interval job calls ``dispatcher.tick``. ``max_instances=1`` and
    ``coalesce=True`` keep ticks from overlapping or piling up after a stall.
    Crons themselves live in SQLite; nothing per-cron is registered here.
    """

    def __init__(self, dispatcher: CronDispatcher, config: SchedulerConfig):
        self.dispatcher = dispatcher
        self.config = config
        self._scheduler = AsyncIOScheduler(
            job_defaults={"coalesce": True, "max_instances": 1}
        )

    async def start(self) -> None:
        """Register the tick job and start the timer."""
        if not self.config.enabled:
            logger.info("CronScheduler disabled")
            return
        self._scheduler.add_job(
            self._tick,
            trigger=IntervalTrigger(minutes=self.config.interval_minutes),
            id=TICK_JOB_ID,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(
            f"CronScheduler started (every {self.config.interval_minutes} min, "
            f"{self.config.max_workers} workers)"
        )

    async def stop(self) -> None:
        """Stop the timer, then let in-flight runs finish."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        await self.dispatcher.shutdown()
        logger.info("CronScheduler stopped")

    async def run_now(self, cron_id: int) -> TaskRunResult:
        """Manual trigger for one cron, outside the timer."""
        logger.info(f"Manual run requested: cron {cron_id}")
        return await self.dispatcher.run_task(cron_id)

    async def _tick(self) -> None:
        try:
            await self.dispatcher.tick()
        except Exception as e:
            logger.error(f"Tick failed: {e}")
