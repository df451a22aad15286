"""
api/main.py -- FastAPI application entry point for authgate.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. GZipMiddleware        -- compresses responses of 1 KiB and more

Lifespan handles startup (store, token codec, rate limiter, credential
service, block-purge task) and shutdown (cancel purge task, close the store)
symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from sqlalchemy.exc import SQLAlchemyError

from api.errors import register_exception_handlers
from api.limiter import RoleRateLimiter, role_limits_from_settings
from api.models import HealthResponse, success_envelope
from api.routes.v1.auth import router as auth_router
from auth.service import CredentialService
from auth.store import CredentialStore
from auth.tokens import TokenCodec
from core.config import get_settings

settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authgate.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Evict lifted rate-limit blocks every `interval` seconds.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        evicted = app.state.rate_limiter.purge_expired_blocks()
        if evicted:
            logger.debug("Evicted %d lifted rate-limit blocks", evicted)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters: the store and codec must exist before the
    credential service that wraps them; the limiter before its purge task.
    """
    # Startup
    logger.info("authgate API starting up (environment=%s)", settings.environment)
    app.state.store = CredentialStore(settings.database_url)
    app.state.token_codec = TokenCodec.from_settings(settings)
    app.state.rate_limiter = RoleRateLimiter(
        role_limits_from_settings(settings),
        storage_uri=settings.rate_limit_storage_uri,
    )
    app.state.auth_service = CredentialService(
        app.state.store,
        app.state.token_codec,
        admin_emails=settings.admin_emails,
    )
    logger.info("Auth initialized (%d admin emails configured)", len(settings.admin_emails))
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.rate_limit_purge_interval_seconds))

    yield

    # Shutdown
    app.state.purge_task.cancel()
    app.state.store.close()
    logger.info("authgate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="authgate API",
    description="Account signup, credential login, and refresh-token sessions.",
    version=settings.app_version,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the app, so the last one registered is outermost.
# Register innermost first: GZip -> CORS -> TrustedHost.
# ---------------------------------------------------------------------------

app.add_middleware(GZipMiddleware, minimum_size=1024)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

register_exception_handlers(app)

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time before and after call_next gives the latency.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Status endpoints
#
# Defined directly in main.py (not in a router) so they are always reachable
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/", tags=["Health"])
async def root() -> dict:
    """Return application status."""
    return success_envelope(
        200,
        f"{settings.app_name} API is running successfully",
        {
            "appName": settings.app_name,
            "status": "Running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": settings.app_version,
            "env": settings.environment,
        },
    )


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> dict:
    """Return API liveness, version, and database reachability."""
    try:
        database = "ok" if request.app.state.store.ping() else "error"
    except SQLAlchemyError:
        logger.exception("Health check database ping failed")
        database = "error"
    data = HealthResponse(version=settings.app_version, components={"app": "ok", "database": database})
    return success_envelope(200, "Health Check Successful", data)
