"""Integration routes: connect, inspect and refresh a Field Nation account."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from fieldcron.api.deps import CurrentUser, get_current_user, get_integrations
from fieldcron.core.errors import AuthError
from fieldcron.core.marketplace.tokens import IntegrationService

router = APIRouter(prefix="/integration", tags=["integration"])


class ConnectRequest(BaseModel):
    username: str
    password: str


def _require_self_or_admin(user: CurrentUser, user_id: str) -> None:
    if not user.is_admin and user.user_id != user_id:
        raise HTTPException(status_code=403, detail="Not your integration")


@router.post("/connect")
async def connect_account(
    body: ConnectRequest,
    user: CurrentUser = Depends(get_current_user),
    integrations: IntegrationService = Depends(get_integrations),
):
    """Link the caller's Field Nation account (password grant)."""
    integration = await integrations.connect_account(user.user_id, body.username, body.password)
    return integration.public(include_tokens=user.is_admin)


@router.get("/types-of-work")
async def types_of_work(
    user: CurrentUser = Depends(get_current_user),
    integrations: IntegrationService = Depends(get_integrations),
):
    """Types of work a cron can filter on, fetched with the caller's token."""
    integration = integrations.get(user.user_id)
    if integration is None or not integration.access_token:
        raise HTTPException(status_code=409, detail="Field Nation account not connected")
    try:
        return await integrations.client.list_types_of_work(integration.access_token)
    except AuthError:
        integration = await integrations.refresh(
            user.user_id, stale_access_token=integration.access_token
        )
        return await integrations.client.list_types_of_work(integration.access_token)


@router.get("/{user_id}")
async def get_integration(
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    integrations: IntegrationService = Depends(get_integrations),
):
    _require_self_or_admin(user, user_id)
    integration = integrations.get(user_id)
    if integration is None:
        raise HTTPException(status_code=404, detail="Integration information not found")
    return integration.public(include_tokens=user.is_admin)


@router.post("/refresh/{user_id}")
async def refresh_connection(
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    integrations: IntegrationService = Depends(get_integrations),
):
    """Re-connect using the stored refresh token (same path as the dispatcher)."""
    _require_self_or_admin(user, user_id)
    integration = await integrations.refresh(user_id)
    return integration.public(include_tokens=user.is_admin)
