"""Core routes: health and cron CRUD."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request

from fieldcron import __version__
from fieldcron.api.deps import (
    CurrentUser,
    get_cron_service,
    get_current_user,
    get_scheduler,
)
from fieldcron.core.cron.scheduler import CronScheduler
from fieldcron.core.cron.service import CronService
from fieldcron.core.cron.types import CronTask, TaskRunResult

router = APIRouter()


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "status": "ok",
        "version": __version__,
        "scheduler_running": bool(scheduler and scheduler._scheduler.running),
    }


# ── Crons ────────────────────────────────────────────────────


@router.post("/crons", status_code=201, response_model=CronTask)
async def create_cron(
    body: dict[str, Any],
    user: CurrentUser = Depends(get_current_user),
    crons: CronService = Depends(get_cron_service),
):
    """Create a cron owned by the caller."""
    return crons.create_cron(user.user_id, body)


@router.get("/crons", response_model=list[CronTask])
async def list_crons(
    user_id: str | None = Query(default=None),
    user: CurrentUser = Depends(get_current_user),
    crons: CronService = Depends(get_cron_service),
):
    """Admins see every cron (optionally one user's); others see their own."""
    if user.is_admin:
        return crons.list_crons(user_id)
    return crons.list_crons(user.user_id)


@router.get("/crons/{cron_id}", response_model=CronTask)
async def get_cron(
    cron_id: int,
    user: CurrentUser = Depends(get_current_user),
    crons: CronService = Depends(get_cron_service),
):
    return crons.get_cron(cron_id, user.user_id, user.is_admin)


@router.patch("/crons/{cron_id}", response_model=CronTask)
async def update_cron(
    cron_id: int,
    body: dict[str, Any],
    user: CurrentUser = Depends(get_current_user),
    crons: CronService = Depends(get_cron_service),
):
    """Partial update: only fields present in the body change."""
    return crons.update_cron(cron_id, body, user.user_id, user.is_admin)


@router.delete("/crons/{cron_id}")
async def delete_cron(
    cron_id: int,
    user: CurrentUser = Depends(get_current_user),
    crons: CronService = Depends(get_cron_service),
):
    crons.soft_delete_cron(cron_id, user.user_id, user.is_admin)
    return {"status": "deleted", "cron_id": cron_id}


@router.post("/crons/{cron_id}/run", response_model=TaskRunResult)
async def run_cron(
    cron_id: int,
    user: CurrentUser = Depends(get_current_user),
    crons: CronService = Depends(get_cron_service),
    scheduler: CronScheduler = Depends(get_scheduler),
):
    """Run one cron now, outside the timer."""
    crons.get_cron(cron_id, user.user_id, user.is_admin)
    return await scheduler.run_now(cron_id)


@router.get("/crons/{cron_id}/runs")
async def cron_runs(
    cron_id: int,
    limit: int = Query(default=20, ge=1, le=200),
    user: CurrentUser = Depends(get_current_user),
    crons: CronService = Depends(get_cron_service),
):
    """Recent dispatcher runs, newest first."""
    return crons.list_runs(cron_id, user.user_id, user.is_admin, limit)
