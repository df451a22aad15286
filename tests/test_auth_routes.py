"""
tests/test_auth_routes.py -- Integration tests for the /api/v1/auth routes.

These tests exercise the full stack: FastAPI routing -> validation dependency
-> rate limiter -> bearer dependency -> CredentialService -> CredentialStore ->
envelope serialization and the exception handlers.

Coverage:
  - sign-up happy path: 201 envelope, lowercase email, refresh cookie, no password field
  - validation failure: 400 ValidationError before any business logic
  - duplicate sign-up: 409 Conflict
  - login: wrong password and unknown email give the same 401
  - logout: bearer checks, RefreshTokenMissing, double logout LogoutError, cookie cleared
  - rate limiting: X-RateLimit-* headers on success and on later failures, 429 with Retry-After
  - unknown route: 404 NotFound envelope

Fixtures used (from conftest.py):
  - client: TestClient over the real app, default budgets, fresh store per test
  - limited_client: same, but the user budget is 3 requests per window
"""

from __future__ import annotations

from fastapi.testclient import TestClient

SIGN_UP = "/api/v1/auth/sign-up"
LOGIN = "/api/v1/auth/login"
LOGOUT = "/api/v1/auth/logout"

ANA = {"username": "ana", "email": "Ana@X.com", "password": "secret1"}


def _sign_up(client: TestClient, body: dict | None = None):
    return client.post(SIGN_UP, json=body or ANA)


def _logout(client: TestClient, access_token: str | None, refresh_token: str | None):
    """POST logout with an explicit bearer and cookie; the client jar is cleared first."""
    client.cookies.clear()
    headers = {}
    if access_token is not None:
        headers["Authorization"] = f"Bearer {access_token}"
    if refresh_token is not None:
        headers["Cookie"] = f"refreshToken={refresh_token}"
    return client.post(LOGOUT, headers=headers)


class TestSignUp:
    def test_sign_up_returns_201_envelope(self, client: TestClient) -> None:
        resp = _sign_up(client)
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        body = resp.json()
        assert body["success"] is True
        assert body["statusCode"] == 201
        user = body["data"]["user"]
        assert user["email"] == "ana@x.com"
        assert user["username"] == "ana"
        assert user["role"] == "user"
        assert body["data"]["accessToken"]

    def test_sign_up_never_returns_password(self, client: TestClient) -> None:
        resp = _sign_up(client)
        assert "password" not in resp.json()["data"]["user"]
        assert "hashed" not in resp.text
        assert "secret1" not in resp.text

    def test_sign_up_sets_httponly_refresh_cookie(self, client: TestClient) -> None:
        resp = _sign_up(client)
        assert resp.cookies.get("refreshToken"), "Refresh token cookie must be set"
        set_cookie = resp.headers["set-cookie"]
        assert "HttpOnly" in set_cookie
        assert "samesite=lax" in set_cookie.lower()
        assert resp.headers["cache-control"] == "no-store"

    def test_admin_email_gets_admin_role(self, client: TestClient) -> None:
        resp = _sign_up(client, {"username": "boss", "email": "boss@x.com", "password": "secret1"})
        assert resp.json()["data"]["user"]["role"] == "admin"

    def test_duplicate_email_conflict(self, client: TestClient) -> None:
        _sign_up(client)
        resp = _sign_up(client, {**ANA, "email": "ana@x.com"})
        assert resp.status_code == 409
        assert resp.json()["error"]["kind"] == "Conflict"

    def test_invalid_body_is_validation_error(self, client: TestClient) -> None:
        resp = _sign_up(client, {"username": "an", "email": "not-an-email", "password": "123"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["error"]["kind"] == "ValidationError"
        fields = {d["field"] for d in body["error"]["details"]}
        assert fields == {"username", "email", "password"}

    def test_malformed_json_is_validation_error(self, client: TestClient) -> None:
        resp = client.post(SIGN_UP, content=b"{not json", headers={"Content-Type": "application/json"})
        assert resp.status_code == 400
        assert resp.json()["error"]["details"][0]["field"] == "body"


class TestLogin:
    def test_login_after_sign_up(self, client: TestClient) -> None:
        _sign_up(client)
        resp = client.post(LOGIN, json={"email": "ANA@x.com", "password": "secret1"})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.json()["data"]["user"]["email"] == "ana@x.com"
        assert resp.cookies.get("refreshToken")

    def test_wrong_password_and_unknown_email_look_the_same(self, client: TestClient) -> None:
        _sign_up(client)
        wrong = client.post(LOGIN, json={"email": "ana@x.com", "password": "wrongpw"})
        unknown = client.post(LOGIN, json={"email": "nobody@x.com", "password": "secret1"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["kind"] == "AuthenticationError"
        details = wrong.json()["error"]["details"]
        assert all(d["field"] != "password" for d in details), "Must not single out the password field"
        assert "wrongpw" not in wrong.text


class TestLogout:
    def test_full_session_lifecycle(self, client: TestClient) -> None:
        signed_up = _sign_up(client)
        access = signed_up.json()["data"]["accessToken"]
        refresh = signed_up.cookies["refreshToken"]

        resp = _logout(client, access, refresh)
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.json()["data"] == {}
        set_cookie = resp.headers["set-cookie"]
        assert "refreshToken=" in set_cookie
        assert "Max-Age=0" in set_cookie

        again = _logout(client, access, refresh)
        assert again.status_code == 500
        assert again.json()["error"]["kind"] == "LogoutError"

    def test_logout_without_cookie(self, client: TestClient) -> None:
        access = _sign_up(client).json()["data"]["accessToken"]
        resp = _logout(client, access, None)
        assert resp.status_code == 400
        assert resp.json()["error"]["kind"] == "RefreshTokenMissing"

    def test_logout_without_authorization_header(self, client: TestClient) -> None:
        refresh = _sign_up(client).cookies["refreshToken"]
        resp = _logout(client, None, refresh)
        assert resp.status_code == 401
        assert resp.json()["error"]["kind"] == "AuthorizationHeaderMissing"

    def test_logout_with_malformed_authorization_header(self, client: TestClient) -> None:
        signed_up = _sign_up(client)
        access = signed_up.json()["data"]["accessToken"]
        client.cookies.clear()
        for header in (access, f"Token {access}", f"Bearer  {access}", "Bearer"):
            resp = client.post(LOGOUT, headers={"Authorization": header})
            assert resp.status_code == 401, f"{header!r} should be rejected"
            assert resp.json()["error"]["kind"] == "InvalidAuthorizationHeaderFormat"

    def test_logout_with_refresh_token_as_bearer(self, client: TestClient) -> None:
        refresh = _sign_up(client).cookies["refreshToken"]
        resp = _logout(client, refresh, refresh)
        assert resp.status_code == 401
        assert resp.json()["error"]["kind"] == "TokenInvalid"


class TestRateLimiting:
    def test_success_carries_rate_limit_headers(self, limited_client: TestClient) -> None:
        resp = _sign_up(limited_client)
        assert resp.headers["X-RateLimit-Limit"] == "3"
        assert resp.headers["X-RateLimit-Remaining"] == "2"
        assert resp.headers["X-RateLimit-Reset"].endswith("GMT")

    def test_failed_login_keeps_rate_limit_headers(self, limited_client: TestClient) -> None:
        """A 401 after the point was spent still reports the quota."""
        resp = limited_client.post(LOGIN, json={"email": "nobody@x.com", "password": "secret1"})
        assert resp.status_code == 401
        assert resp.headers["X-RateLimit-Limit"] == "3"
        assert resp.headers["X-RateLimit-Remaining"] == "2"
        assert "Retry-After" not in resp.headers

    def test_duplicate_sign_up_keeps_rate_limit_headers(self, limited_client: TestClient) -> None:
        _sign_up(limited_client)
        resp = _sign_up(limited_client)
        assert resp.status_code == 409
        assert resp.headers["X-RateLimit-Remaining"] == "1", f"Missing quota headers on 409: {dict(resp.headers)}"

    def test_failed_logout_keeps_rate_limit_headers(self, client: TestClient) -> None:
        access = _sign_up(client).json()["data"]["accessToken"]
        resp = _logout(client, access, None)
        assert resp.status_code == 400
        assert resp.headers["X-RateLimit-Limit"] == "50"
        assert resp.headers["X-RateLimit-Remaining"] == "49"

    def test_validation_failure_has_no_rate_limit_headers(self, limited_client: TestClient) -> None:
        resp = limited_client.post(LOGIN, json={})
        assert resp.status_code == 400
        assert "X-RateLimit-Remaining" not in resp.headers

    def test_exhausted_budget_is_429(self, limited_client: TestClient) -> None:
        for _ in range(3):
            resp = limited_client.post(LOGIN, json={"email": "nobody@x.com", "password": "secret1"})
            assert resp.status_code == 401
        resp = limited_client.post(LOGIN, json={"email": "nobody@x.com", "password": "secret1"})
        assert resp.status_code == 429
        assert resp.json()["error"]["kind"] == "TooManyRequests"
        assert int(resp.headers["Retry-After"]) > 0
        assert resp.headers["X-RateLimit-Remaining"] == "0"

    def test_invalid_body_does_not_consume_budget(self, limited_client: TestClient) -> None:
        for _ in range(5):
            assert limited_client.post(LOGIN, json={}).status_code == 400
        assert limited_client.post(LOGIN, json={"email": "nobody@x.com", "password": "secret1"}).status_code == 401


class TestNotFound:
    def test_unknown_route_envelope(self, client: TestClient) -> None:
        resp = client.get("/api/v1/nope")
        assert resp.status_code == 404
        body = resp.json()
        assert body["success"] is False
        assert body["error"]["kind"] == "NotFound"
        assert body["error"]["details"][0]["message"] == "The route /api/v1/nope does not exist"
