"""Admin API endpoints: server status, config, users."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from fieldcron import __version__
from fieldcron.api.deps import (
    CurrentUser,
    get_config,
    get_cron_service,
    get_db,
    require_admin,
)
from fieldcron.core.config.schema import Config
from fieldcron.core.cron.service import CronService
from fieldcron.storage.store import SQLiteStore

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/status")
async def admin_status(
    _: CurrentUser = Depends(require_admin),
    db: SQLiteStore = Depends(get_db),
):
    """Server status overview."""
    with db._get_conn() as conn:
        user_count = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
        active_crons = conn.execute(
            "SELECT COUNT(*) FROM crons WHERE status = 'active' AND deleted = 0"
        ).fetchone()[0]
        connected = conn.execute(
            "SELECT COUNT(*) FROM integrations WHERE integration_status = 'Connected'"
        ).fetchone()[0]

    return {
        "version": __version__,
        "users": user_count,
        "active_crons": active_crons,
        "connected_integrations": connected,
        "status": "running",
    }


@router.get("/config")
async def admin_config(
    _: CurrentUser = Depends(require_admin),
    config: Config = Depends(get_config),
):
    """Sanitized server configuration (secrets omitted)."""
    return {
        "marketplace_base_url": config.marketplace.base_url,
        "scheduler_enabled": config.scheduler.enabled,
        "interval_minutes": config.scheduler.interval_minutes,
        "max_workers": config.scheduler.max_workers,
        "timezone": config.scheduler.timezone,
        "auth_enabled": config.auth_enabled,
        "db_path": config.database.path,
    }


@router.get("/users")
async def admin_users(
    _: CurrentUser = Depends(require_admin),
    db: SQLiteStore = Depends(get_db),
):
    return db.list_users()


@router.delete("/users/{user_id}")
async def admin_delete_user(
    user_id: str,
    _: CurrentUser = Depends(require_admin),
    crons: CronService = Depends(get_cron_service),
):
    """Delete a user. Their crons are soft-deleted."""
    crons.delete_user(user_id)
    return {"status": "deleted", "user_id": user_id}
