"""IntegrationService: the single path for connecting and refreshing tokens.

Both the HTTP API and the dispatcher go through one instance so that refresh
tokens (single use) are never spent twice concurrently for the same user.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

from loguru import logger

from fieldcron.core.cron.types import Integration, IntegrationStatus
from fieldcron.core.errors import FieldCronError, InvalidGrant, NotFoundError
from fieldcron.core.locks import KeyedLocks

if TYPE_CHECKING:
    from fieldcron.core.marketplace.client import FieldNationClient
    from fieldcron.storage.store import SQLiteStore


class IntegrationService:
    """Connect / refresh Field Nation accounts under a per-user lock."""

    def __init__(self, db: SQLiteStore, client: FieldNationClient):
        self.db = db
        self.client = client
        self._locks = KeyedLocks()

    def get(self, user_id: str) -> Integration | None:
        return self.db.get_integration(user_id)

    async def connect_account(self, user_id: str, username: str, password: str) -> Integration:
        """Password-grant connect. Marks the integration disconnected on failure."""
        async with self._locks.get(user_id):
            try:
                pair = await self.client.password_grant(username, password)
            except FieldCronError as e:
                logger.warning(f"Field Nation connect failed for {user_id}: {e}")
                self.mark_disconnected(user_id)
                raise

            current = self.db.get_integration(user_id) or Integration(user_id=user_id)
            integration = current.model_copy(
                update={
                    "fn_user_id": pair.fn_user_id,
                    "fn_username": username,
                    "access_token": pair.access_token,
                    "refresh_token": pair.refresh_token,
                    "integration_status": IntegrationStatus.CONNECTED,
                    "last_connected_at": datetime.now(timezone.utc),
                }
            )
            self.db.save_integration(integration)
            logger.info(f"Field Nation account connected: {user_id} ({username})")
            return integration

    async def refresh(self, user_id: str, stale_access_token: str | None = None) -> Integration:
        """Swap the stored refresh token for a new token pair.

        When ``stale_access_token`` is given and the stored access token has
        already changed (another caller refreshed while we waited on the
        lock), the stored record is returned without a second refresh.

        ``InvalidGrant`` demotes the integration to Not Connected and
        propagates. Network failures propagate without demotion.
        """
        async with self._locks.get(user_id):
            integration = self.db.get_integration(user_id)
            if integration is None:
                raise NotFoundError("Integration", user_id)
            if (
                stale_access_token is not None
                and integration.connected
                and integration.access_token != stale_access_token
            ):
                logger.debug(f"Token for {user_id} already refreshed, reusing")
                return integration
            if not integration.refresh_token:
                self.mark_disconnected(user_id)
                raise InvalidGrant(f"No refresh token stored for {user_id}")

            try:
                pair = await self.client.refresh_token(integration.refresh_token)
            except InvalidGrant:
                logger.warning(f"Refresh token rejected for {user_id}")
                self.mark_disconnected(user_id)
                raise

            integration = integration.model_copy(
                update={
                    "access_token": pair.access_token,
                    "refresh_token": pair.refresh_token,
                    "integration_status": IntegrationStatus.CONNECTED,
                }
            )
            self.db.save_integration(integration)
            logger.info(f"Field Nation token refreshed for {user_id}")
            return integration

    def mark_disconnected(self, user_id: str) -> None:
        self.db.set_integration_status(user_id, IntegrationStatus.NOT_CONNECTED)
