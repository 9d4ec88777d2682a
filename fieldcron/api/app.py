"""FastAPI application factory."""

from __future__ import annotations

import time
from collections import defaultdict
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from fieldcron import __version__
from fieldcron.api.admin import router as admin_router
from fieldcron.api.integration import router as integration_router
from fieldcron.api.routes import router as core_router
from fieldcron.core.config.loader import load_config
from fieldcron.core.cron.dispatcher import CronDispatcher
from fieldcron.core.cron.scheduler import CronScheduler
from fieldcron.core.cron.service import CronService
from fieldcron.core.errors import (
    AuthError,
    FieldCronError,
    NetworkError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
)
from fieldcron.core.marketplace.client import FieldNationClient
from fieldcron.core.marketplace.tokens import IntegrationService
from fieldcron.storage.store import SQLiteStore

# Domain error → HTTP status
_STATUS_BY_ERROR: list[tuple[type[FieldCronError], int]] = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (NotAuthorizedError, 403),
    (AuthError, 401),
    (NetworkError, 502),
]


# ── Rate Limiting Middleware ─────────────────────────────────


class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-memory sliding window rate limiter (IP-based)."""

    _EXEMPT = frozenset({"/health", "/docs", "/openapi.json", "/redoc"})

    def __init__(self, app: FastAPI) -> None:
        super().__init__(app)
        self._requests: dict[str, list[float]] = defaultdict(list)

    async def dispatch(self, request: Request, call_next):
        config = getattr(request.app.state, "config", None)
        if not config or not config.auth.rate_limit.enabled:
            return await call_next(request)

        if request.url.path in self._EXEMPT:
            return await call_next(request)

        rpm = config.auth.rate_limit.requests_per_minute
        ip = request.client.host if request.client else "unknown"
        now = time.time()
        window = 60.0

        self._requests[ip] = [t for t in self._requests[ip] if now - t < window]

        if len(self._requests[ip]) >= rpm:
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests"},
                headers={"Retry-After": "60"},
            )

        self._requests[ip].append(now)
        return await call_next(request)


async def _domain_error_handler(request: Request, exc: FieldCronError) -> JSONResponse:
    status = 500
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status = code
            break
    if status == 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status, content={"detail": str(exc)})


# ── App Factory ──────────────────────────────────────────────


def _ensure_owner(config, db) -> None:
    """Create the owner as an admin user at startup if configured."""
    if config.owner is None:
        return
    db.get_or_create_user(config.owner.username, name=config.owner.name, is_admin=True)
    db.set_admin(config.owner.username)
    logger.info(f"Owner user ensured: {config.owner.username}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: Config → SQLiteStore → FieldNationClient → IntegrationService
    → CronDispatcher → CronScheduler. Shutdown: stop timer, drain runs."""
    config = load_config()
    db = SQLiteStore(str(config.db_path))
    _ensure_owner(config, db)

    client = FieldNationClient.from_config(config.marketplace)
    integrations = IntegrationService(db, client)
    dispatcher = CronDispatcher(
        db,
        client,
        integrations,
        max_workers=config.scheduler.max_workers,
        default_tz=config.scheduler.timezone,
    )
    scheduler = CronScheduler(dispatcher, config.scheduler)
    await scheduler.start()

    app.state.config = config
    app.state.db = db
    app.state.integrations = integrations
    app.state.crons = CronService(db)
    app.state.scheduler = scheduler

    logger.info(f"fieldcron API started (Field Nation at {config.marketplace.base_url})")
    yield

    await scheduler.stop()
    logger.info("fieldcron API shutting down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="fieldcron API",
        description="Recurring Field Nation work-order requests",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RateLimitMiddleware)
    app.add_exception_handler(FieldCronError, _domain_error_handler)

    app.include_router(core_router)
    app.include_router(integration_router)
    app.include_router(admin_router)

    return app


app = create_app()
