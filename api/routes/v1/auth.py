"""
api/routes/v1/auth.py -- Authentication session REST endpoints.

Routes:
  POST /api/v1/auth/sign-up  -- register; 201 {user, accessToken} + refresh cookie
  POST /api/v1/auth/login    -- password login; 200 {user, accessToken} + refresh cookie
  POST /api/v1/auth/logout   -- bearer + refresh cookie; 200 {} and cookie cleared

Per-request pipeline (FastAPI resolves dependencies in declaration order):
  sign-up / login: validated(schemas) -> limit_anonymous (ip-<addr>) -> service
  logout:          get_current_principal -> limit_authenticated (user-<id>) -> service

Services return Ok | Err. The handlers unwrap, so an Err becomes the APIError
the exception handlers in api/errors.py render.

Security:
  Cache-Control: no-store on every response that carries tokens.
  Login errors never say which credential was wrong.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import RateLimitStatus, limit_anonymous, limit_authenticated
from api.models import LOGIN_SCHEMAS, SIGNUP_SCHEMAS, SessionResponse, UserResponse, success_envelope
from api.validation import RequestInput, validated
from auth.dependencies import get_current_principal
from auth.models import TokenClaims
from auth.service import AuthSession, ClientInfo, CredentialService
from auth.tokens import clear_refresh_cookie, set_refresh_cookie
from core.config import Settings, get_settings

# Auth policy:
# - POST /api/v1/auth/sign-up: public, rate-limited per IP
# - POST /api/v1/auth/login:   public, rate-limited per IP
# - POST /api/v1/auth/logout:  requires bearer access token, rate-limited per user
router = APIRouter()


def _client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        user_agent=request.headers.get("user-agent", ""),
        ip=request.client.host if request.client else "",
    )


def _session_response(response: Response, session: AuthSession, settings: Settings) -> SessionResponse:
    set_refresh_cookie(response, session.refresh_token, settings)
    response.headers["Cache-Control"] = "no-store"
    return SessionResponse(user=UserResponse.from_public(session.user), access_token=session.access_token)


@router.post("/auth/sign-up", status_code=201)
def sign_up(
    request: Request,
    response: Response,
    payload: RequestInput = Depends(validated(SIGNUP_SCHEMAS)),
    _quota: RateLimitStatus = Depends(limit_anonymous),
) -> dict:
    """Create an account, open its first session, and set the refresh cookie."""
    service: CredentialService = request.app.state.auth_service
    body = payload.body
    session = service.signup(
        username=body.username,
        email=body.email,
        password=body.password,
        client=_client_info(request),
    ).unwrap()
    data = _session_response(response, session, get_settings())
    return success_envelope(201, "User signed up successfully", data)


@router.post("/auth/login")
def login(
    request: Request,
    response: Response,
    payload: RequestInput = Depends(validated(LOGIN_SCHEMAS)),
    _quota: RateLimitStatus = Depends(limit_anonymous),
) -> dict:
    """Authenticate with email and password and open an additional session."""
    service: CredentialService = request.app.state.auth_service
    body = payload.body
    session = service.login(email=body.email, password=body.password, client=_client_info(request)).unwrap()
    data = _session_response(response, session, get_settings())
    return success_envelope(200, "Login successful", data)


@router.post("/auth/logout")
def logout(
    request: Request,
    response: Response,
    _principal: TokenClaims = Depends(get_current_principal),
    _quota: RateLimitStatus = Depends(limit_authenticated),
) -> dict:
    """Revoke the session named by the refresh cookie and clear the cookie."""
    settings = get_settings()
    service: CredentialService = request.app.state.auth_service
    service.logout(request.cookies.get(settings.refresh_cookie_name)).unwrap()
    clear_refresh_cookie(response, settings)
    response.headers["Cache-Control"] = "no-store"
    return success_envelope(200, "Logged out successfully", {})
