"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Only one auth method exists: an access token in the Authorization header,
formatted exactly as "Bearer <token>". Verification converges on a
TokenClaims object which is also stored on request.state.principal so later
dependencies (the per-user rate limiter) can key on it.

get_current_principal() raises APIError on any failure:
  AuthorizationHeaderMissing        -- no header at all
  InvalidAuthorizationHeaderFormat  -- anything but "Bearer <token>"
  TokenExpired / TokenInvalid / InvalidTokenPayload -- from the codec
require_roles(...) wraps it and raises ForbiddenInsufficientRole.

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Depends, Request

from auth.models import Role, TokenClaims
from auth.tokens import TokenCodec
from core.errors import APIError, ErrorKind, issue
from core.result import Err, Ok, Result

logger = logging.getLogger("authgate.auth")


def parse_bearer(header: str | None) -> Result[str]:
    """Extract the token from an Authorization header value."""
    if not header:
        return Err(
            APIError(
                ErrorKind.AUTHORIZATION_HEADER_MISSING,
                "Authorization header missing",
                issue("authorization", "Authorization header is required"),
            )
        )
    parts = header.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return Err(
            APIError(
                ErrorKind.INVALID_AUTHORIZATION_HEADER_FORMAT,
                "Invalid authorization header format",
                issue("authorization", "Expected format: 'Bearer <token>'"),
            )
        )
    return Ok(parts[1])


def get_current_principal(request: Request) -> TokenClaims:
    """Require a valid access token. Raises APIError (401) otherwise.

    Use as a FastAPI dependency:
        @router.post("/protected")
        def route(principal: TokenClaims = Depends(get_current_principal)): ...
    """
    codec: TokenCodec = request.app.state.token_codec
    token = parse_bearer(request.headers.get("Authorization"))
    if isinstance(token, Err):
        logger.warning("Rejected request: %s", token.error.kind.value)
        token.unwrap()
    claims = codec.verify_access_token(token.unwrap())
    if isinstance(claims, Err):
        logger.warning("Rejected access token: %s", claims.error.kind.value)
    principal = claims.unwrap()
    request.state.principal = principal
    return principal


def require_roles(*roles: Role) -> Callable[..., TokenClaims]:
    """Build a dependency that admits only the given roles (403 otherwise)."""
    allowed = frozenset(roles)

    def dependency(principal: TokenClaims = Depends(get_current_principal)) -> TokenClaims:
        if allowed and principal.role not in allowed:
            logger.warning("Insufficient role %s for this resource", principal.role.value)
            raise APIError(
                ErrorKind.FORBIDDEN_INSUFFICIENT_ROLE,
                "Forbidden - Insufficient role",
                issue("authorization", "Insufficient role for this resource"),
            )
        return principal

    return dependency
