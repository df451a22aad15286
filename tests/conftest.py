"""
tests/conftest.py -- Shared test fixtures for authgate integration tests.

This module provides:
  - make_test_store(): creates an isolated in-memory credential DB
  - make_codec(): a TokenCodec with fixed, distinct test secrets
  - _patch_lifespan(): wires test components into app.state, bypassing real startup
  - client: TestClient over the real app with default rate budgets
  - limited_client: TestClient whose user budget is 3 requests per window

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The environment must be set before any auth/core import so get_settings()
auto-generates the signing secrets in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set these before any auth/core import. DEBUG lets get_settings()
# generate secrets; 4 bcrypt rounds keeps the suite fast.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ADMIN_EMAILS", '["boss@x.com"]')

import pytest
from fastapi.testclient import TestClient

from api.limiter import DEFAULT_ROLE_LIMITS, RoleLimit, RoleRateLimiter
from api.main import app
from auth.models import Role
from auth.service import CredentialService
from auth.store import CredentialStore
from auth.tokens import TokenCodec

ACCESS_SECRET = "a" * 32
REFRESH_SECRET = "r" * 32


# ---------------------------------------------------------------------------
# Component helpers
# ---------------------------------------------------------------------------


def make_test_store(db_suffix: str | None = None) -> CredentialStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so tests don't share
                   state. A random one is generated when omitted.
    """
    suffix = db_suffix or uuid.uuid4().hex
    return CredentialStore(f"sqlite:///file:test_auth_{suffix}?mode=memory&cache=shared&uri=true")


def make_codec(access_ttl_seconds: int = 900, refresh_ttl_seconds: int = 3600) -> TokenCodec:
    return TokenCodec(ACCESS_SECRET, REFRESH_SECRET, access_ttl_seconds, refresh_ttl_seconds)


def _patch_lifespan(store: CredentialStore, limiter: RoleRateLimiter):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.token_codec = make_codec()
        app.state.rate_limiter = limiter
        app.state.auth_service = CredentialService(store, app.state.token_codec, admin_emails=["boss@x.com"])
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


def _client(limiter: RoleRateLimiter) -> Generator[TestClient, None, None]:
    store = make_test_store()
    app.router.lifespan_context = _patch_lifespan(store, limiter)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client
    store.close()


# ---------------------------------------------------------------------------
# Fixtures -- function scoped so every test gets fresh users and buckets
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    s = make_test_store()
    yield s
    s.close()


@pytest.fixture
def codec() -> TokenCodec:
    return make_codec()


@pytest.fixture
def service(store: CredentialStore, codec: TokenCodec) -> CredentialService:
    return CredentialService(store, codec, admin_emails=["boss@x.com"])


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app with the default role budgets."""
    yield from _client(RoleRateLimiter(DEFAULT_ROLE_LIMITS))


@pytest.fixture
def limited_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient whose user budget is 3 requests per minute.

    The block lasts 300s, far longer than any test, so the fourth request
    from the same key is always rejected.
    """
    limits = dict(DEFAULT_ROLE_LIMITS)
    limits[Role.USER] = RoleLimit(points=3, duration=60, block_duration=300)
    yield from _client(RoleRateLimiter(limits))
