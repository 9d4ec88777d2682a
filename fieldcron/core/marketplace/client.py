"""Field Nation REST client for fieldcron."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx
from loguru import logger

from fieldcron.core.config.schema import MarketplaceConfig
from fieldcron.core.cron.types import SubmitResult, TokenPair, WorkOrder, WorkOrderQuery
from fieldcron.core.errors import AuthError, InvalidGrant, MarketplaceTimeout, NetworkError

# Statuses meaning "work order no longer requestable" on submit
_TAKEN_STATUSES = frozenset({404, 409, 410, 422})


class SlidingWindowLimiter:
    """Async sliding-window rate limiter shared by all calls of one client.

    ``max_calls <= 0`` disables limiting.
    """

    def __init__(self, max_calls: int, window_s: float = 60.0) -> None:
        self.max_calls = max_calls
        self.window_s = window_s
        self._calls: list[float] = []
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        if self.max_calls <= 0:
            return
        async with self._lock:
            while True:
                now = time.monotonic()
                self._calls = [t for t in self._calls if now - t < self.window_s]
                if len(self._calls) < self.max_calls:
                    self._calls.append(now)
                    return
                wait = self.window_s - (now - self._calls[0])
                logger.debug(f"Marketplace rate limit reached, waiting {wait:.1f}s")
                await asyncio.sleep(wait)


class FieldNationClient:
    """Async client for the Field Nation REST API.

    Parameters
    ----------
    base_url : str
        API root (e.g. "https://api.fieldnation.com").
    client_id, client_secret : str
        OAuth client credentials used for password and refresh grants.
    timeout_s : float
        Per-request timeout. Timeouts raise ``MarketplaceTimeout``.
    requests_per_minute : int
        Client-wide rate limit across every cron and user.
    transport : httpx.AsyncBaseTransport, optional
        Custom transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        client_id: str = "",
        client_secret: str = "",
        timeout_s: float = 30.0,
        requests_per_minute: int = 120,
        page_size: int = 50,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.page_size = page_size
        self._timeout = httpx.Timeout(timeout_s)
        self._transport = transport
        self._limiter = SlidingWindowLimiter(requests_per_minute)

    @classmethod
    def from_config(cls, config: MarketplaceConfig) -> FieldNationClient:
        return cls(
            base_url=config.base_url,
            client_id=config.client_id,
            client_secret=config.client_secret,
            timeout_s=config.timeout_s,
            requests_per_minute=config.requests_per_minute,
            page_size=config.page_size,
        )

    # ── OAuth ─────────────────────────────────────────────────

    async def password_grant(self, username: str, password: str) -> TokenPair:
        """Exchange Field Nation credentials for a token pair (account connect)."""
        return await self._token_request(
            "/authentication/api/oauth/token",
            {"grant_type": "password", "username": username, "password": password},
        )

    async def refresh_token(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new pair. Raises ``InvalidGrant``."""
        return await self._token_request(
            "/authentication/api/oauth/refresh",
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            fallback_refresh=refresh_token,
        )

    async def _token_request(
        self, path: str, form: dict[str, str], fallback_refresh: str | None = None
    ) -> TokenPair:
        data = {**form, "client_id": self.client_id, "client_secret": self.client_secret}
        resp = await self._request("POST", path, data=data, auth_error=InvalidGrant)
        if resp.status_code >= 400:
            raise InvalidGrant(f"{form['grant_type']} grant rejected ({resp.status_code})")
        body = resp.json()
        access = body.get("access_token")
        if not access:
            raise InvalidGrant("Token response carried no access_token")
        return TokenPair(
            access_token=access,
            refresh_token=body.get("refresh_token") or fallback_refresh or "",
            fn_user_id=(body.get("user") or {}).get("id"),
        )

    # ── Work orders ───────────────────────────────────────────

    async def list_work_orders(
        self, access_token: str, query: WorkOrderQuery
    ) -> list[WorkOrder]:
        """List available work orders near ``query.zip``.

        Location and type filters are applied server-side; the dispatcher
        still filters client-side.
        """
        params: dict[str, Any] = {
            "list": "workorders_available",
            "per_page": self.page_size,
            "f_location_radius": f"{query.zip},{query.radius:g}",
        }
        if query.type_ids:
            params["f_types_of_work"] = ",".join(str(t) for t in query.type_ids)
        resp = await self._request(
            "GET", "/api/rest/v2/workorders", token=access_token, params=params
        )
        if resp.status_code >= 400:
            raise NetworkError(f"Work order listing failed ({resp.status_code})")
        body = resp.json()
        rows = body.get("results", []) if isinstance(body, dict) else body
        return [WorkOrder.from_api(r) for r in rows]

    async def request_work_order(self, access_token: str, wo_id: int) -> SubmitResult:
        """Request a work order on the token owner's behalf."""
        resp = await self._request(
            "POST", f"/api/rest/v2/workorders/{wo_id}/requests", token=access_token, json={}
        )
        if resp.status_code in _TAKEN_STATUSES:
            logger.debug(f"Work order {wo_id} no longer available ({resp.status_code})")
            return SubmitResult.ALREADY_TAKEN
        if resp.status_code >= 400:
            raise NetworkError(f"Request for work order {wo_id} failed ({resp.status_code})")
        return SubmitResult.SUBMITTED

    async def list_types_of_work(self, access_token: str) -> list[dict[str, Any]]:
        """Types of work ({id, name}) a cron can filter on."""
        resp = await self._request("GET", "/api/rest/v2/types-of-work", token=access_token)
        if resp.status_code >= 400:
            raise NetworkError(f"Types of work listing failed ({resp.status_code})")
        body = resp.json()
        rows = body.get("results", []) if isinstance(body, dict) else body
        return [{"id": r["id"], "name": r.get("name", "")} for r in rows]

    # ── Transport ─────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        token: str | None = None,
        auth_error: type[AuthError] = AuthError,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one rate-limited request.

        401 raises ``auth_error``; 5xx and transport failures raise
        ``NetworkError`` (``MarketplaceTimeout`` for timeouts). Other
        statuses are returned to the caller.
        """
        await self._limiter.acquire()
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self._timeout,
                headers=headers,
                transport=self._transport,
            ) as client:
                resp = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise MarketplaceTimeout(f"{method} {path} timed out") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

        if resp.status_code == 401:
            raise auth_error(f"{method} {path} unauthorized")
        if resp.status_code >= 500:
            logger.warning(f"Field Nation {method} {path} -> {resp.status_code}: {resp.text[:200]}")
            raise NetworkError(f"{method} {path} server error ({resp.status_code})")
        return resp
