"""Tests for IntegrationService: connect and refresh under per-user locks."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from fieldcron.core.cron.types import Integration, IntegrationStatus, TokenPair
from fieldcron.core.errors import InvalidGrant, NetworkError, NotFoundError
from fieldcron.core.marketplace.tokens import IntegrationService
from fieldcron.storage.store import SQLiteStore


@pytest.fixture
def store(tmp_path):
    return SQLiteStore(str(tmp_path / "test.db"))


@pytest.fixture
def client():
    c = MagicMock()
    c.password_grant = AsyncMock(
        return_value=TokenPair(access_token="a1", refresh_token="r1", fn_user_id=77)
    )
    c.refresh_token = AsyncMock(return_value=TokenPair(access_token="a2", refresh_token="r2"))
    return c


@pytest.fixture
def service(store, client):
    return IntegrationService(store, client)


def _seed(store, access="a1", refresh="r1", status=IntegrationStatus.CONNECTED):
    store.save_integration(Integration(
        user_id="u1", access_token=access, refresh_token=refresh, integration_status=status,
    ))


class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_stores_tokens(self, service, store, client):
        integ = await service.connect_account("u1", "tech", "pw")
        client.password_grant.assert_awaited_once_with("tech", "pw")
        assert integ.connected
        saved = store.get_integration("u1")
        assert saved.access_token == "a1"
        assert saved.fn_user_id == 77
        assert saved.fn_username == "tech"
        assert saved.last_connected_at is not None

    @pytest.mark.asyncio
    async def test_failed_connect_marks_not_connected(self, service, store, client):
        _seed(store)
        client.password_grant.side_effect = InvalidGrant("bad password")
        with pytest.raises(InvalidGrant):
            await service.connect_account("u1", "tech", "wrong")
        assert store.get_integration("u1").integration_status == IntegrationStatus.NOT_CONNECTED


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_swaps_tokens(self, service, store, client):
        _seed(store)
        integ = await service.refresh("u1")
        client.refresh_token.assert_awaited_once_with("r1")
        assert (integ.access_token, integ.refresh_token) == ("a2", "r2")
        assert store.get_integration("u1").refresh_token == "r2"

    @pytest.mark.asyncio
    async def test_refresh_revives_disconnected(self, service, store):
        _seed(store, status=IntegrationStatus.NOT_CONNECTED)
        integ = await service.refresh("u1")
        assert integ.connected

    @pytest.mark.asyncio
    async def test_missing_integration(self, service):
        with pytest.raises(NotFoundError):
            await service.refresh("nobody")

    @pytest.mark.asyncio
    async def test_no_refresh_token(self, service, store, client):
        _seed(store, refresh=None)
        with pytest.raises(InvalidGrant):
            await service.refresh("u1")
        client.refresh_token.assert_not_awaited()
        assert not store.get_integration("u1").connected

    @pytest.mark.asyncio
    async def test_invalid_grant_disconnects(self, service, store, client):
        _seed(store)
        client.refresh_token.side_effect = InvalidGrant("revoked")
        with pytest.raises(InvalidGrant):
            await service.refresh("u1")
        assert not store.get_integration("u1").connected

    @pytest.mark.asyncio
    async def test_network_error_keeps_connection(self, service, store, client):
        _seed(store)
        client.refresh_token.side_effect = NetworkError("down")
        with pytest.raises(NetworkError):
            await service.refresh("u1")
        saved = store.get_integration("u1")
        assert saved.connected
        assert saved.refresh_token == "r1"

    @pytest.mark.asyncio
    async def test_stale_token_reuses_newer_pair(self, service, store, client):
        _seed(store, access="already-new")
        integ = await service.refresh("u1", stale_access_token="old")
        client.refresh_token.assert_not_awaited()
        assert integ.access_token == "already-new"

    @pytest.mark.asyncio
    async def test_concurrent_refresh_spends_token_once(self, service, store, client):
        _seed(store)

        async def _slow_refresh(token):
            await asyncio.sleep(0.01)
            return TokenPair(access_token="a2", refresh_token="r2")

        client.refresh_token.side_effect = _slow_refresh
        results = await asyncio.gather(
            service.refresh("u1", stale_access_token="a1"),
            service.refresh("u1", stale_access_token="a1"),
        )
        assert client.refresh_token.await_count == 1
        assert [r.access_token for r in results] == ["a2", "a2"]


class TestIntegrationModel:
    def test_public_hides_tokens(self):
        integ = Integration(user_id="u1", access_token="a", refresh_token="r")
        data = integ.public()
        assert "access_token" not in data
        assert "refresh_token" not in data
        assert integ.public(include_tokens=True)["access_token"] == "a"

    def test_last_connected_ago(self):
        now = datetime(2026, 6, 15, tzinfo=timezone.utc)
        assert Integration(user_id="u1").last_connected_ago(now) == ""
        one = Integration(user_id="u1", last_connected_at=now - timedelta(days=1, hours=2))
        assert one.last_connected_ago(now) == "1 day ago"
        three = Integration(user_id="u1", last_connected_at=now - timedelta(days=3))
        assert three.last_connected_ago(now) == "3 days ago"
