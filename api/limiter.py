"""
api/limiter.py -- Role-aware rate limiter shared by every rate-limited route.

Each Role has its own budget: points per window, window length, and a block
duration applied once a caller exhausts the budget. Buckets are keyed by
(role, key) where key is "user-<id>" for authenticated callers and
"ip-<address>" otherwise.

Counting is delegated to the `limits` library (the engine under slowapi):
a FixedWindowRateLimiter over storage_from_string(RATE_LIMIT_STORAGE_URI).
"memory://" keeps counters in process; "redis://..." shares them across
workers with atomic increments.

Consume-and-check for one bucket runs under one of N striped locks. The same
lock guards that bucket's block-until entry, so two in-flight requests for an
exhausted key can never both be granted, and a request that trips the limit
installs the block before any other request for that key looks at it.
Requests for different buckets land on different shards most of the time and
proceed in parallel.

Only one shared instance exists per app (app.state.rate_limiter). Separate
instances would each get their own counters and limits would never trigger.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from email.utils import formatdate

from fastapi import Depends, Request, Response
from limits import RateLimitItemPerSecond
from limits.storage import storage_from_string
from limits.strategies import FixedWindowRateLimiter
from slowapi.util import get_remote_address

from auth.dependencies import get_current_principal
from auth.models import Role, TokenClaims
from core.config import Settings
from core.errors import APIError, ErrorKind
from core.result import Err, Ok, Result

logger = logging.getLogger("authgate.limiter")


@dataclass(frozen=True)
class RoleLimit:
    points: int
    duration: int  # window length, seconds
    block_duration: int = 0  # seconds; 0 = wait for the window to reset


@dataclass(frozen=True)
class RateLimitStatus:
    """Outcome of one consume() call. reset_at is a Unix timestamp."""

    limit: int
    remaining: int
    reset_at: float
    retry_after: int = 0

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": formatdate(self.reset_at, usegmt=True),
        }
        if self.retry_after:
            headers["Retry-After"] = str(self.retry_after)
        return headers


DEFAULT_ROLE_LIMITS: dict[Role, RoleLimit] = {
    Role.ADMIN: RoleLimit(points=300, duration=60, block_duration=300),
    Role.EDITOR: RoleLimit(points=150, duration=60, block_duration=300),
    Role.AUTHOR: RoleLimit(points=100, duration=60, block_duration=300),
    Role.USER: RoleLimit(points=50, duration=60, block_duration=300),
}


def role_limits_from_settings(settings: Settings) -> dict[Role, RoleLimit]:
    window = settings.rate_limit_window_seconds
    block = settings.rate_limit_block_seconds
    return {
        Role.ADMIN: RoleLimit(settings.rate_limit_admin_points, window, block),
        Role.EDITOR: RoleLimit(settings.rate_limit_editor_points, window, block),
        Role.AUTHOR: RoleLimit(settings.rate_limit_author_points, window, block),
        Role.USER: RoleLimit(settings.rate_limit_user_points, window, block),
    }


class _Shard:
    __slots__ = ("lock", "blocked")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.blocked: dict[tuple[Role, str], float] = {}


class RoleRateLimiter:
    """Per-(role, key) fixed-window limiter with block-on-exhaustion.

    Usage:
        limiter = RoleRateLimiter(DEFAULT_ROLE_LIMITS)
        result = limiter.consume(Role.USER, "ip-10.0.0.1")
        if isinstance(result, Err):
            ...  # result.error is a 429 APIError with Retry-After
    """

    def __init__(
        self,
        role_limits: Mapping[Role, RoleLimit] = DEFAULT_ROLE_LIMITS,
        storage_uri: str = "memory://",
        shards: int = 64,
        clock: Callable[[], float] = time.time,
    ) -> None:
        missing = set(Role) - set(role_limits)
        if missing:
            raise ValueError(f"No rate limit configured for roles: {sorted(r.value for r in missing)}")
        self._limits = dict(role_limits)
        self._items = {
            role: RateLimitItemPerSecond(limit.points, limit.duration, namespace="authgate")
            for role, limit in self._limits.items()
        }
        self._storage = storage_from_string(storage_uri)
        self._strategy = FixedWindowRateLimiter(self._storage)
        self._shards = [_Shard() for _ in range(shards)]
        self._clock = clock

    def limit_for(self, role: Role) -> RoleLimit:
        return self._limits[Role(role)]

    def _shard(self, bucket: tuple[Role, str]) -> _Shard:
        return self._shards[hash(bucket) % len(self._shards)]

    def consume(self, role: Role, key: str) -> Result[RateLimitStatus]:
        """Take one point from the (role, key) bucket.

        Raises ValueError for a role outside the Role enum; an unchecked role
        string must never fall through to some default budget.
        """
        role = Role(role)
        limit = self._limits[role]
        item = self._items[role]
        bucket = (role, key)
        shard = self._shard(bucket)

        with shard.lock:
            now = self._clock()
            blocked_until = shard.blocked.get(bucket)
            if blocked_until is not None:
                if blocked_until > now:
                    return self._reject(role, key, limit, blocked_until, now)
                self._lift(shard, bucket)

            if not self._strategy.hit(item, role.value, key):
                stats = self._strategy.get_window_stats(item, role.value, key)
                until = now + limit.block_duration if limit.block_duration > 0 else stats.reset_time
                if limit.block_duration > 0:
                    shard.blocked[bucket] = until
                return self._reject(role, key, limit, until, now)

            stats = self._strategy.get_window_stats(item, role.value, key)

        return Ok(RateLimitStatus(limit=limit.points, remaining=stats.remaining, reset_at=stats.reset_time))

    def _reject(self, role: Role, key: str, limit: RoleLimit, until: float, now: float) -> Err:
        retry_after = max(1, math.ceil(until - now))
        status = RateLimitStatus(limit=limit.points, remaining=0, reset_at=until, retry_after=retry_after)
        logger.warning(
            "Rate limit exceeded: role=%s key=%s limit=%d retry_after=%ds", role.value, key, limit.points, retry_after
        )
        return Err(
            APIError(
                ErrorKind.TOO_MANY_REQUESTS,
                "Too Many Requests - Please try again later",
                [],
                headers=status.headers(),
            )
        )

    def _lift(self, shard: _Shard, bucket: tuple[Role, str]) -> None:
        """Drop a block and its window counter. Caller holds shard.lock.

        Lifting a block restores the full budget, even mid-window.
        """
        role, key = bucket
        del shard.blocked[bucket]
        self._strategy.clear(self._items[role], role.value, key)

    def purge_expired_blocks(self) -> int:
        """Evict block entries that have already lifted. Returns the count evicted."""
        now = self._clock()
        evicted = 0
        for shard in self._shards:
            with shard.lock:
                stale = [bucket for bucket, until in shard.blocked.items() if until <= now]
                for bucket in stale:
                    self._lift(shard, bucket)
                evicted += len(stale)
        return evicted

    def reset(self) -> None:
        """Drop every counter and block. Test and admin use only."""
        for shard in self._shards:
            with shard.lock:
                shard.blocked.clear()
        self._storage.reset()


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def _apply(request: Request, response: Response, role: Role, key: str) -> RateLimitStatus:
    limiter: RoleRateLimiter = request.app.state.rate_limiter
    status = limiter.consume(role, key).unwrap()
    # The error responder re-applies these if the route fails later on.
    request.state.rate_limit = status
    for name, value in status.headers().items():
        response.headers[name] = value
    return status


def limit_anonymous(request: Request, response: Response) -> RateLimitStatus:
    """Rate-limit a pre-authentication route by client IP under the user budget."""
    return _apply(request, response, Role.USER, f"ip-{get_remote_address(request)}")


def limit_authenticated(
    request: Request,
    response: Response,
    principal: TokenClaims = Depends(get_current_principal),
) -> RateLimitStatus:
    """Rate-limit an authenticated route by user id under that user's role budget."""
    return _apply(request, response, principal.role, f"user-{principal.user_id}")
