"""Cron scheduling: window evaluator, candidate filter, dispatcher, APScheduler timer."""

from fieldcron.core.cron.dispatcher import CronDispatcher
from fieldcron.core.cron.scheduler import CronScheduler
from fieldcron.core.cron.types import CronTask

__all__ = ["CronDispatcher", "CronScheduler", "CronTask"]
