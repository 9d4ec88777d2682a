"""CronDispatcher: one tick: fetch → filter → submit → persist, per cron."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import TYPE_CHECKING, TypeVar

from loguru import logger

from fieldcron.core.cron.filter import filter_candidates
from fieldcron.core.cron.types import (
    CronTask,
    Integration,
    RunState,
    SubmitResult,
    TaskRunResult,
    WorkOrderQuery,
)
from fieldcron.core.cron.window import is_eligible
from fieldcron.core.errors import (
    AuthError,
    FieldCronError,
    InvalidGrant,
    NetworkError,
    NotFoundError,
    PersistenceError,
)
from fieldcron.core.locks import KeyedLocks

if TYPE_CHECKING:
    from fieldcron.core.marketplace.client import FieldNationClient
    from fieldcron.core.marketplace.tokens import IntegrationService
    from fieldcron.storage.store import SQLiteStore

T = TypeVar("T")


class _RunContext:
    """Mutable per-run state: current token, refresh spent, account lost."""

    def __init__(self, task: CronTask, integration: Integration):
        self.task = task
        self.integration = integration
        self.refreshed = False
        self.disconnected = False


class CronDispatcher:
    """Runs every active cron once per tick.

    Crons run concurrently, at most ``max_workers`` at a time. A cron never
    runs concurrently with itself: a run that finds the cron's lock held is
    skipped. Failures are contained to the cron they happen in.
    """

    def __init__(
        self,
        db: SQLiteStore,
        client: FieldNationClient,
        integrations: IntegrationService,
        max_workers: int = 4,
        default_tz: str = "UTC",
    ):
        self.db = db
        self.client = client
        self.integrations = integrations
        self.max_workers = max(1, max_workers)
        self.default_tz = default_tz
        self._locks = KeyedLocks()
        self._inflight: set[asyncio.Task] = set()

    # ── Entry points ─────────────────────────────────────────

    async def tick(self, now: datetime | None = None) -> list[TaskRunResult]:
        """Run all active crons once. A store outage aborts the whole tick."""
        now = now or datetime.now(timezone.utc)
        try:
            crons = self.db.load_active_crons()
        except PersistenceError as e:
            logger.error(f"Tick aborted, cannot load crons: {e}")
            return []
        if not crons:
            logger.debug("Tick: no active crons")
            return []

        sem = asyncio.Semaphore(self.max_workers)

        async def _bounded(cron_id: int) -> TaskRunResult:
            async with sem:
                return await self._run(cron_id, now)

        results = await asyncio.gather(*(self._track(_bounded(c.cron_id)) for c in crons))
        counts: dict[str, int] = {}
        for r in results:
            counts[r.state.value] = counts.get(r.state.value, 0) + 1
        logger.info(f"Tick finished: {len(results)} crons {counts}")
        return list(results)

    async def run_task(self, cron_id: int, now: datetime | None = None) -> TaskRunResult:
        """Run one cron now (manual trigger). Same locking as ticks."""
        return await self._track(self._run(cron_id, now or datetime.now(timezone.utc)))

    async def shutdown(self) -> None:
        """Wait for in-flight runs to finish."""
        if not self._inflight:
            return
        logger.info(f"Waiting for {len(self._inflight)} cron runs to finish")
        await asyncio.gather(*self._inflight, return_exceptions=True)

    def is_running(self, cron_id: int) -> bool:
        return self._locks.is_locked(cron_id)

    async def _track(self, coro: Awaitable[TaskRunResult]) -> TaskRunResult:
        task = asyncio.ensure_future(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await task

    # ── Per-cron run ─────────────────────────────────────────

    async def _run(self, cron_id: int, now: datetime) -> TaskRunResult:
        lock = self._locks.get(cron_id)
        if lock.locked():
            logger.info(f"Cron {cron_id} already running, skipped")
            return TaskRunResult(cron_id=cron_id, state=RunState.SKIPPED, reason="busy")

        async with lock:
            start = time.time()
            result = TaskRunResult(cron_id=cron_id, state=RunState.FETCHING)
            try:
                await self._process(cron_id, now, result)
            except Exception as e:
                logger.error(f"Cron {cron_id} failed while {result.state.value}: {e}")
                result.error = f"{result.state.value}: {e}"
                result.state = RunState.FAILED
            result.duration_ms = int((time.time() - start) * 1000)

            if result.state != RunState.SKIPPED:
                self._log_run(result)
            return result

    async def _process(self, cron_id: int, now: datetime, result: TaskRunResult) -> None:
        # Reload inside the lock so requested_wo_ids is never stale
        task = self.db.get_cron(cron_id)
        if task is None:
            result.state, result.reason = RunState.SKIPPED, "not found"
            return
        if not is_eligible(task, now, self.default_tz):
            logger.debug(f"Cron {cron_id} outside its window, skipped")
            result.state, result.reason = RunState.SKIPPED, "outside window"
            return

        integration = self.integrations.get(task.user_id)
        if integration is None or not integration.connected or not integration.access_token:
            logger.warning(f"Cron {cron_id}: user {task.user_id} has no connected account")
            result.state, result.reason = RunState.FAILED, "not connected"
            return
        ctx = _RunContext(task, integration)

        # Fetching
        query = WorkOrderQuery(
            zip=task.center_zip,
            radius=task.driving_radius,
            type_ids=task.types_of_work_order,
        )
        try:
            candidates = await self._authed(
                ctx, lambda token: self.client.list_work_orders(token, query)
            )
        except (AuthError, NetworkError, NotFoundError) as e:
            logger.warning(f"Cron {cron_id} fetch failed: {e}")
            result.state, result.error = RunState.FAILED, str(e)
            return
        result.fetched = len(candidates)

        accepted = filter_candidates(candidates, task)
        logger.debug(f"Cron {cron_id}: {len(candidates)} fetched, {len(accepted)} accepted")

        # Submitting
        result.state = RunState.SUBMITTING
        for wo in accepted:
            if ctx.disconnected:
                result.failed.append(wo.id)
                continue
            try:
                outcome = await self._authed(
                    ctx, lambda token, wo_id=wo.id: self.client.request_work_order(token, wo_id)
                )
            except FieldCronError as e:
                logger.warning(f"Cron {cron_id}: request for work order {wo.id} failed: {e}")
                result.failed.append(wo.id)
                continue
            except Exception as e:
                logger.error(f"Cron {cron_id}: unexpected error requesting work order {wo.id}: {e}")
                result.failed.append(wo.id)
                continue
            if outcome == SubmitResult.SUBMITTED:
                result.submitted.append(wo.id)
            else:
                result.already_taken.append(wo.id)

        # Completed
        if result.submitted:
            try:
                self.db.persist_run_state(task.with_requested(result.submitted))
            except PersistenceError as e:
                logger.error(
                    f"Cron {cron_id}: submitted {result.submitted} but could not persist, "
                    f"they will be retried next tick: {e}"
                )
                result.state, result.error = RunState.FAILED, str(e)
                return
        result.state = RunState.COMPLETED
        if result.submitted:
            logger.info(f"Cron {cron_id}: requested work orders {result.submitted}")

    async def _authed(self, ctx: _RunContext, call: Callable[[str], Awaitable[T]]) -> T:
        """Call with the current access token; on ``AuthError`` refresh once
        per run and retry once. Any 401 after the refresh demotes the
        integration to Not Connected.
        """
        try:
            return await call(ctx.integration.access_token)
        except AuthError:
            if ctx.refreshed:
                self._disconnect(ctx)
                raise
            ctx.refreshed = True
            logger.info(f"Cron {ctx.task.cron_id}: access token rejected, refreshing")
            try:
                ctx.integration = await self.integrations.refresh(
                    ctx.task.user_id, stale_access_token=ctx.integration.access_token
                )
            except InvalidGrant:
                ctx.disconnected = True
                raise
        try:
            return await call(ctx.integration.access_token)
        except AuthError:
            self._disconnect(ctx)
            raise

    def _disconnect(self, ctx: _RunContext) -> None:
        ctx.disconnected = True
        self.integrations.mark_disconnected(ctx.task.user_id)

    def _log_run(self, result: TaskRunResult) -> None:
        try:
            self.db.log_cron_run(result)
        except Exception as e:
            logger.warning(f"Could not log run of cron {result.cron_id}: {e}")
