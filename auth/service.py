"""
auth/service.py -- Credential & session orchestration: signup, login, logout.

Every operation returns Ok(value) or Err(APIError). The route layer unwraps.

Session lifecycle:
  ISSUED   -- signup/login create one RefreshTokenRecord per session.
  REVOKED  -- logout deletes the record by token value.
  EXPIRED  -- passive; the token's exp elapses. Nothing here deletes
              expired rows.

Invariants:
  - Emails are compared and stored lowercase.
  - The password hash never leaves this module inside a return value:
    callers get PublicUser, not UserRecord.
  - Login failures are indistinguishable: unknown email and wrong password
    produce the same AuthenticationError, and bcrypt runs in both cases.
  - Persistence failures become InternalServerError. If the refresh-token
    insert fails after the user insert, the account stays and the caller
    gets a 500 and must log in.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import PublicUser, RefreshTokenRecord, Role, TokenClaims, UserRecord, new_id
from auth.store import CredentialStore
from auth.tokens import DUMMY_HASH, TokenCodec, hash_password, verify_password
from core.errors import APIError, ErrorKind, issue
from core.result import Err, Ok, Result

logger = logging.getLogger("authgate.auth")

_BAD_CREDENTIALS = "Invalid email or password"


@dataclass(frozen=True)
class ClientInfo:
    """Audit metadata about the requesting client."""

    user_agent: str = ""
    ip: str = ""


@dataclass(frozen=True)
class AuthSession:
    user: PublicUser
    access_token: str
    refresh_token: str


def _conflict() -> Err:
    return Err(
        APIError(ErrorKind.CONFLICT, "Email already in use", issue("email", "A user with this email already exists"))
    )


def _bad_credentials() -> Err:
    # One message for both failure causes; details name no specific field.
    return Err(APIError(ErrorKind.AUTHENTICATION_ERROR, _BAD_CREDENTIALS, issue("credentials", _BAD_CREDENTIALS)))


def _internal(operation: str) -> Err:
    return Err(
        APIError(ErrorKind.INTERNAL_SERVER_ERROR, "Internal Server Error", issue(operation, f"{operation} failed"))
    )


class CredentialService:
    """Orchestrates signup, login and logout over a store and a token codec."""

    def __init__(self, store: CredentialStore, codec: TokenCodec, admin_emails: Iterable[str] = ()) -> None:
        self._store = store
        self._codec = codec
        self._admin_emails = frozenset(e.strip().lower() for e in admin_emails)

    def role_for(self, email: str) -> Role:
        return Role.ADMIN if email.lower() in self._admin_emails else Role.USER

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def signup(self, *, username: str, email: str, password: str, client: ClientInfo) -> Result[AuthSession]:
        """Register a new account and open its first session."""
        email = email.strip().lower()
        try:
            if self._store.email_exists(email):
                logger.warning("Signup attempt with existing email")
                return _conflict()

            user = UserRecord(
                id=new_id(),
                username=username,
                email=email,
                hashed_password=hash_password(password),
                role=self.role_for(email),
            )
            try:
                user = self._store.create_user(user)
            except IntegrityError:
                # A concurrent signup for the same email won the race.
                logger.warning("Signup lost a race on a duplicate email")
                return _conflict()
        except SQLAlchemyError:
            logger.exception("User creation failed during signup")
            return _internal("signup")

        logger.info("User %s signed up (role=%s)", user.id, user.role.value)
        return self._open_session(user, client)

    def login(self, *, email: str, password: str, client: ClientInfo) -> Result[AuthSession]:
        """Verify credentials and open an additional session."""
        email = email.strip().lower()
        try:
            user = self._store.get_by_email(email)
        except SQLAlchemyError:
            logger.exception("User lookup failed during login")
            return _internal("login")

        if user is None:
            # Equalize timing -- do NOT return before running bcrypt.
            verify_password(password, DUMMY_HASH)
            logger.warning("Login attempt with unknown email")
            return _bad_credentials()
        if not verify_password(password, user.hashed_password):
            logger.warning("Failed login for user %s", user.id)
            return _bad_credentials()

        logger.info("User %s logged in", user.id)
        return self._open_session(user, client)

    def logout(self, refresh_token: str | None) -> Result[None]:
        """Revoke the session identified by refresh_token.

        Signature/expiry verification is for the audit log only: an expired
        but still-stored token is revocable.
        """
        if not refresh_token:
            return Err(
                APIError(
                    ErrorKind.REFRESH_TOKEN_MISSING,
                    "Refresh token missing",
                    issue("refreshToken", "Refresh token is required for logout"),
                )
            )

        verified = self._codec.verify_refresh_token(refresh_token)
        if isinstance(verified, Ok):
            actor = verified.value.user_id
        else:
            actor = "unknown"
            logger.warning("Logout with unverifiable refresh token (%s)", verified.error.kind.value)

        try:
            deleted = self._store.delete_refresh_token(refresh_token)
        except SQLAlchemyError:
            logger.exception("Refresh token deletion failed during logout")
            return _internal("logout")

        if not deleted:
            logger.warning("Logout failed for user %s: no live session matched", actor)
            return Err(
                APIError(
                    ErrorKind.LOGOUT_ERROR,
                    "Failed to logout user",
                    issue("refreshToken", "Failed to delete refresh token during logout"),
                )
            )

        logger.info("User %s logged out", actor)
        return Ok(None)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _open_session(self, user: UserRecord, client: ClientInfo) -> Result[AuthSession]:
        claims = TokenClaims(user_id=user.id, role=user.role)
        access_token = self._codec.create_access_token(claims)
        refresh_token = self._codec.create_refresh_token(claims)
        record = RefreshTokenRecord(
            user_id=user.id,
            token=refresh_token,
            user_agent=client.user_agent,
            ip=client.ip,
            expires_at=self._codec.refresh_expiry().isoformat(),
        )
        try:
            self._store.create_refresh_token(record)
        except SQLAlchemyError:
            logger.exception("Refresh token persistence failed for user %s", user.id)
            return _internal("session")
        return Ok(AuthSession(user=user.public(), access_token=access_token, refresh_token=refresh_token))
