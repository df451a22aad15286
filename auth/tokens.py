"""
auth/tokens.py -- JWT codec, password hashing, and refresh-cookie utilities.

Security design decisions:
  JWT: python-jose with HS256. Two independent secrets -- one for access
       tokens, one for refresh tokens -- each with its own lifetime. Payload is
       {userId, role} plus registered claims the codec embeds itself (exp,
       iat, jti). jti makes every issued token unique even when the same user
       logs in twice within one second, so refresh-token rows never collide.

       Verification returns Ok(TokenClaims) or Err(APIError) with one of three
       kinds: TokenExpired (signature fine, exp elapsed), TokenInvalid (bad
       signature or malformed), InvalidTokenPayload (userId/role missing or
       role outside the Role enum). jose checks the signature before exp, so
       a token signed with the wrong secret is always TokenInvalid.

  Passwords: bcrypt, direct usage. The comparator is a pure function of
       (plaintext, hash) -- it is not a method on any user object. The
       DUMMY_HASH constant enables timing equalization in the login flow so
       response time does not reveal whether an email is registered.

Layer rule: no imports from api/. Import from core/ is allowed -- core/ is the
kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import Role, TokenClaims
from core.config import Settings, get_settings
from core.errors import APIError, ErrorKind, issue
from core.result import Err, Ok, Result

logger = logging.getLogger("authgate.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

# bcrypt only looks at the first 72 bytes; newer releases raise instead of
# truncating, so truncate explicitly. The API layer caps passwords at 128 chars.
_BCRYPT_MAX_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    pw_bytes = plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]
    return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=_settings.bcrypt_rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    pw_bytes = plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]
    try:
        return bcrypt.checkpw(pw_bytes, hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. Always call verify_password() even when the
# email is unknown.
DUMMY_HASH: str = hash_password("authgate_timing_dummy")


# ---------------------------------------------------------------------------
# JWT sign / verify
# ---------------------------------------------------------------------------


def sign_token(claims: TokenClaims, secret: str, ttl_seconds: int, now: datetime | None = None) -> str:
    """Encode a signed JWT carrying claims and an expiry ttl_seconds after now."""
    issued_at = now or datetime.now(timezone.utc)
    payload = {
        "userId": claims.user_id,
        "role": claims.role.value,
        "iat": issued_at,
        "exp": issued_at + timedelta(seconds=ttl_seconds),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(payload, secret, algorithm=_ALGORITHM)


def verify_token(token: str, secret: str) -> Result[TokenClaims]:
    """Decode and verify a JWT. Returns Ok(TokenClaims) or Err(APIError)."""
    try:
        payload = jwt.decode(token, secret, algorithms=[_ALGORITHM])
    except ExpiredSignatureError:
        return Err(APIError(ErrorKind.TOKEN_EXPIRED, "Token expired", issue("token", "The token has expired")))
    except JWTError:
        return Err(APIError(ErrorKind.TOKEN_INVALID, "Invalid token", issue("token", "The token is invalid")))

    user_id = payload.get("userId")
    role = payload.get("role")
    if not user_id or not role or role not in Role._value2member_map_:
        logger.error("Token verified but payload is missing userId/role")
        return Err(
            APIError(ErrorKind.INVALID_TOKEN_PAYLOAD, "Invalid token payload", issue("token", "Invalid token payload"))
        )
    return Ok(TokenClaims(user_id=str(user_id), role=Role(role)))


class TokenCodec:
    """Access/refresh token pair with independent secrets and lifetimes.

    Usage:
        codec = TokenCodec.from_settings(get_settings())
        token = codec.create_access_token(TokenClaims(user_id="abc", role=Role.USER))
        claims = codec.verify_access_token(token).unwrap()
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl_seconds: int = 15 * 60,
        refresh_ttl_seconds: int = 7 * 24 * 60 * 60,
    ) -> None:
        if access_secret == refresh_secret:
            raise ValueError("access and refresh secrets must differ")
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenCodec:
        return cls(
            access_secret=settings.access_token_secret,
            refresh_secret=settings.refresh_token_secret,
            access_ttl_seconds=settings.access_token_expire_seconds,
            refresh_ttl_seconds=settings.refresh_token_expire_seconds,
        )

    def create_access_token(self, claims: TokenClaims) -> str:
        return sign_token(claims, self._access_secret, self.access_ttl_seconds)

    def create_refresh_token(self, claims: TokenClaims) -> str:
        return sign_token(claims, self._refresh_secret, self.refresh_ttl_seconds)

    def verify_access_token(self, token: str) -> Result[TokenClaims]:
        return verify_token(token, self._access_secret)

    def verify_refresh_token(self, token: str) -> Result[TokenClaims]:
        return verify_token(token, self._refresh_secret)

    def refresh_expiry(self, now: datetime | None = None) -> datetime:
        """Expiry timestamp recorded alongside a freshly issued refresh token."""
        return (now or datetime.now(timezone.utc)) + timedelta(seconds=self.refresh_ttl_seconds)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_refresh_cookie(response, token: str, settings: Settings) -> None:
    """Write the refresh token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS when SECURE_COOKIES=true (forced in production).
    max_age: matches the refresh token lifetime so both expire together.
    """
    response.set_cookie(
        settings.refresh_cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.refresh_token_expire_seconds,
    )


def clear_refresh_cookie(response, settings: Settings) -> None:
    """Expire the refresh-token cookie with the same attributes it was set with."""
    response.delete_cookie(
        settings.refresh_cookie_name,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
    )
