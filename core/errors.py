"""
core/errors.py -- Error taxonomy shared by every authgate component.

Every failure that leaves the system is an APIError: a status code, a
human-readable message, a machine-readable kind, and a details payload
(usually a list of ValidationIssue). Components build APIErrors at the point
of detection and pass them upward unchanged; api/errors.py renders them.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Machine-readable discriminator carried in error.kind."""

    VALIDATION_ERROR = "ValidationError"
    REFRESH_TOKEN_MISSING = "RefreshTokenMissing"
    AUTHENTICATION_ERROR = "AuthenticationError"
    TOKEN_EXPIRED = "TokenExpired"
    TOKEN_INVALID = "TokenInvalid"
    INVALID_TOKEN_PAYLOAD = "InvalidTokenPayload"
    AUTHORIZATION_HEADER_MISSING = "AuthorizationHeaderMissing"
    INVALID_AUTHORIZATION_HEADER_FORMAT = "InvalidAuthorizationHeaderFormat"
    FORBIDDEN_INSUFFICIENT_ROLE = "ForbiddenInsufficientRole"
    NOT_FOUND = "NotFound"
    CONFLICT = "Conflict"
    TOO_MANY_REQUESTS = "TooManyRequests"
    LOGOUT_ERROR = "LogoutError"
    INTERNAL_SERVER_ERROR = "InternalServerError"


DEFAULT_STATUS: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.REFRESH_TOKEN_MISSING: 400,
    ErrorKind.AUTHENTICATION_ERROR: 401,
    ErrorKind.TOKEN_EXPIRED: 401,
    ErrorKind.TOKEN_INVALID: 401,
    ErrorKind.INVALID_TOKEN_PAYLOAD: 401,
    ErrorKind.AUTHORIZATION_HEADER_MISSING: 401,
    ErrorKind.INVALID_AUTHORIZATION_HEADER_FORMAT: 401,
    ErrorKind.FORBIDDEN_INSUFFICIENT_ROLE: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.TOO_MANY_REQUESTS: 429,
    ErrorKind.LOGOUT_ERROR: 500,
    ErrorKind.INTERNAL_SERVER_ERROR: 500,
}


@dataclass(frozen=True)
class ValidationIssue:
    """One schema violation. field is a dotted path into the validated part."""

    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


class APIError(Exception):
    """The single normalized error shape surfaced to clients.

    status_code defaults to the kind's entry in DEFAULT_STATUS. headers are
    copied onto the HTTP response by the responder (used for Retry-After and
    the X-RateLimit-* family on 429).
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        details: list[ValidationIssue] | Any = None,
        *,
        status_code: int | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details if details is not None else []
        self.status_code = status_code if status_code is not None else DEFAULT_STATUS[kind]
        self.headers = headers or {}

    def details_payload(self) -> Any:
        """Return details in JSON-ready form."""
        if isinstance(self.details, list):
            return [d.to_dict() if isinstance(d, ValidationIssue) else d for d in self.details]
        return self.details

    def __repr__(self) -> str:
        return f"APIError(kind={self.kind.value!r}, status_code={self.status_code}, message={self.message!r})"


def issue(field: str, message: str) -> list[ValidationIssue]:
    """Shorthand for the common single-issue details list."""
    return [ValidationIssue(field=field, message=message)]
