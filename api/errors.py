"""
api/errors.py -- Error responder: every failure leaves as one envelope.

    {"success": false, "statusCode": ..., "message": ..., "error": {"kind": ..., "details": ...}}

to_api_error() normalizes any exception, checking in priority order:
  1. jose ExpiredSignatureError -> TokenExpired (401)
     (checked before JWTError because it is a subclass of it)
  2. jose JWTError              -> TokenInvalid (401)
  3. pydantic ValidationError / FastAPI RequestValidationError -> ValidationError (400)
  4. APIError                   -> itself, with the status it already carries
  5. Starlette HTTPException    -> NotFound (404) or the matching status
  6. anything else              -> InternalServerError (500)

A request that already spent a rate-limit point keeps its X-RateLimit-*
headers on the error response (see _response_headers).

Security note: for the catch-all, the raw exception goes to the log only.
The response message is generic unless DEBUG is on outside production.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from jose import ExpiredSignatureError, JWTError
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorBody, ErrorEnvelope
from api.validation import format_issues, validation_error
from core.config import get_settings
from core.errors import APIError, ErrorKind, issue

logger = logging.getLogger("authgate.api")

_HTTP_KINDS = {
    401: ErrorKind.AUTHENTICATION_ERROR,
    403: ErrorKind.FORBIDDEN_INSUFFICIENT_ROLE,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.CONFLICT,
    429: ErrorKind.TOO_MANY_REQUESTS,
}


def to_api_error(exc: Exception, request: Request | None = None, expose_internal: bool = False) -> APIError:
    """Normalize any exception into an APIError."""
    if isinstance(exc, ExpiredSignatureError):
        return APIError(ErrorKind.TOKEN_EXPIRED, "Token expired", issue("token", "The token has expired"))
    if isinstance(exc, JWTError):
        return APIError(ErrorKind.TOKEN_INVALID, "Invalid token", issue("token", "The token is invalid"))
    if isinstance(exc, RequestValidationError):
        return validation_error(format_issues(list(exc.errors()), "request"))
    if isinstance(exc, PydanticValidationError):
        return validation_error(format_issues(exc.errors(), "request"))
    if isinstance(exc, APIError):
        return exc
    if isinstance(exc, StarletteHTTPException):
        if exc.status_code == 404:
            path = request.url.path if request is not None else "requested"
            return APIError(ErrorKind.NOT_FOUND, "Not Found", issue("route", f"The route {path} does not exist"))
        kind = _HTTP_KINDS.get(exc.status_code)
        if kind is None:
            kind = ErrorKind.VALIDATION_ERROR if exc.status_code < 500 else ErrorKind.INTERNAL_SERVER_ERROR
        return APIError(kind, str(exc.detail), status_code=exc.status_code, headers=dict(exc.headers or {}))
    message = str(exc) if expose_internal and str(exc) else "Internal Server Error"
    return APIError(ErrorKind.INTERNAL_SERVER_ERROR, message)


def error_response(error: APIError, headers: dict[str, str] | None = None) -> JSONResponse:
    """Render the error envelope. headers, when given, replace error.headers."""
    envelope = ErrorEnvelope(
        status_code=error.status_code,
        message=error.message,
        error=ErrorBody(kind=error.kind.value, details=error.details_payload()),
    )
    return JSONResponse(
        status_code=error.status_code,
        content=envelope.model_dump(mode="json", by_alias=True),
        headers=(error.headers if headers is None else headers) or None,
    )


def _response_headers(request: Request, error: APIError) -> dict[str, str]:
    """Merge the X-RateLimit-* headers of a request that already spent a point.

    The limiter records its status on request.state.rate_limit before the
    handler runs; a later failure must still report the quota. Headers the
    error carries itself (a 429's Retry-After) take precedence.
    """
    status = getattr(request.state, "rate_limit", None)
    if status is None:
        return error.headers
    return {**status.headers(), **error.headers}


def _log(request: Request, error: APIError) -> None:
    log_fn = logger.error if error.status_code >= 500 else logger.warning
    log_fn(
        "%s %s -> %d %s: %s",
        request.method,
        request.url.path,
        error.status_code,
        error.kind.value,
        error.message,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the handlers that funnel every failure into error_response()."""

    async def handle_known(request: Request, exc: Exception) -> JSONResponse:
        error = to_api_error(exc, request)
        _log(request, error)
        return error_response(error, _response_headers(request, error))

    for exc_class in (APIError, JWTError, RequestValidationError, PydanticValidationError, StarletteHTTPException):
        app.add_exception_handler(exc_class, handle_known)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unexpected server errors.

        The traceback is logged; the client receives only a generic message.
        """
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        error = to_api_error(exc, request, expose_internal=get_settings().expose_internal_errors)
        return error_response(error, _response_headers(request, error))
