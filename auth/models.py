"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
credential service do the work.

UserRecord and PublicUser are deliberately separate types: only UserRecord
carries the password hash, and only the store produces it. Anything that
leaves the service is a PublicUser, which has no hash attribute to leak.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Closed set of roles. Used in user records, token claims and limiter config."""

    ADMIN = "admin"
    EDITOR = "editor"
    AUTHOR = "author"
    USER = "user"


def new_id() -> str:
    """Generate a fresh record id (uuid4, 32 hex chars)."""
    return uuid.uuid4().hex


@dataclass(frozen=True)
class PublicUser:
    """Outward projection of a user. Safe to serialize."""

    id: str
    username: str
    email: str
    role: Role


@dataclass
class UserRecord:
    """A stored user including the bcrypt hash. Never serialized outward."""

    id: str
    username: str
    email: str  # always lowercase
    hashed_password: str
    role: Role = Role.USER
    created_at: str | None = None
    updated_at: str | None = None

    def public(self) -> PublicUser:
        return PublicUser(id=self.id, username=self.username, email=self.email, role=self.role)


@dataclass
class RefreshTokenRecord:
    """One issued, not-yet-revoked refresh token.

    user_agent and ip are audit metadata only; they play no part in
    validation. expires_at is informational here -- expiry is enforced by the
    token itself, and expired rows are left for external housekeeping.
    """

    user_id: str
    token: str
    expires_at: str
    user_agent: str = ""
    ip: str = ""
    id: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class TokenClaims:
    """Payload of an access or refresh token. Expiry is embedded by the codec."""

    user_id: str
    role: Role
