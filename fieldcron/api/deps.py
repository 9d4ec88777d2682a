"""FastAPI dependency injection: pull singletons from app.state."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from fieldcron.core.config.schema import Config
from fieldcron.core.cron.scheduler import CronScheduler
from fieldcron.core.cron.service import CronService
from fieldcron.core.marketplace.tokens import IntegrationService
from fieldcron.storage.store import SQLiteStore

_bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    user_id: str
    is_admin: bool = False


def get_config(request: Request) -> Config:
    return request.app.state.config


def get_db(request: Request) -> SQLiteStore:
    return request.app.state.db


def get_cron_service(request: Request) -> CronService:
    return request.app.state.crons


def get_integrations(request: Request) -> IntegrationService:
    return request.app.state.integrations


def get_scheduler(request: Request) -> CronScheduler:
    return request.app.state.scheduler


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> CurrentUser:
    """Resolve the caller from a JWT bearer token.

    When auth is disabled (jwt_secret_key=""), the caller is the owner (or
    "default") with admin rights.
    """
    config: Config = request.app.state.config
    if not config.auth_enabled:
        return CurrentUser(user_id=config.owner_user_id or "default", is_admin=True)

    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")

    from fieldcron.api.auth import decode_token

    user_id = decode_token(
        credentials.credentials,
        config.auth.jwt_secret_key,
        config.auth.jwt_algorithm,
    )
    db: SQLiteStore = request.app.state.db
    is_admin = user_id == config.owner_user_id or db.is_admin(user_id)
    return CurrentUser(user_id=user_id, is_admin=is_admin)


async def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Raise 403 unless the caller is an admin."""
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
