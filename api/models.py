"""
API request and response models for authgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models double as the declarative schemas of the validation pipeline
(api/validation.py). extra="forbid" makes unknown fields a validation error.

Response models serialize with camelCase aliases (statusCode, accessToken) to
match the wire contract; always dump with by_alias=True.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from api.validation import RequestSchemas
from auth.models import PublicUser, Role

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _RequestBody(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    @field_validator("email", mode="after", check_fields=False)
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.lower()


class SignupBody(_RequestBody):
    """Request body for POST /api/v1/auth/sign-up."""

    username: str = Field(min_length=3, max_length=255)
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)


class LoginBody(_RequestBody):
    """Request body for POST /api/v1/auth/login."""

    email: EmailStr
    password: str = Field(min_length=6, max_length=128)


SIGNUP_SCHEMAS = RequestSchemas(body=SignupBody)
LOGIN_SCHEMAS = RequestSchemas(body=LoginBody)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class _WireModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class UserResponse(_WireModel):
    """Public user projection. There is no password field to leak."""

    id: str
    username: str
    email: str
    role: Role

    @classmethod
    def from_public(cls, user: PublicUser) -> "UserResponse":
        return cls(id=user.id, username=user.username, email=user.email, role=user.role)


class SessionResponse(_WireModel):
    """data payload for sign-up and login. The refresh token travels in a cookie."""

    user: UserResponse
    access_token: str


class ErrorBody(_WireModel):
    kind: str
    details: Any = None


class ErrorEnvelope(_WireModel):
    """Top-level error envelope returned on every 4xx/5xx response."""

    success: bool = False
    status_code: int
    message: str
    error: ErrorBody


class SuccessEnvelope(_WireModel):
    """Top-level envelope returned on every 2xx response."""

    success: bool = True
    status_code: int
    message: str
    data: Optional[Any] = None


class HealthResponse(_WireModel):
    """data payload for GET /api/v1/health."""

    status: str = "healthy"
    version: str
    components: dict[str, str]


def success_envelope(status_code: int, message: str, data: Any = None) -> dict:
    """Render the standard success envelope as a JSON-ready dict."""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json", by_alias=True)
    return SuccessEnvelope(status_code=status_code, message=message, data=data).model_dump(mode="json", by_alias=True)
