"""
tests/integration/test_csrf.py — Double-submit cookie CSRF protection.

Every response sets a fresh csrf_token cookie; every POST/PUT/PATCH/DELETE
must echo that cookie in X-CSRF-Token.

Error cases:
  CSRF_TOKEN_MISSING  403 — cookie or header absent
  CSRF_TOKEN_INVALID  403 — header does not match the cookie
"""

from __future__ import annotations

from backend.polarcraft.middleware.csrf import CSRF_COOKIE, CSRF_HEADER

from .conftest import DEFAULT_PASSWORD, csrf_headers


def _login_body() -> dict:
    return {"username": "alice", "password": DEFAULT_PASSWORD}


class TestCsrfCookie:

    def test_every_response_sets_a_readable_strict_cookie(self, client):
        client.get("/api/health")
        cookie = client.get_cookie(CSRF_COOKIE)
        assert cookie is not None
        assert cookie.http_only is False
        assert cookie.same_site == "Strict"
        assert cookie.path == "/"

    def test_csrf_endpoint_returns_the_cookie_value(self, client):
        resp = client.get("/api/csrf-token")
        assert resp.status_code == 200
        assert resp.get_json()["data"]["csrfToken"] == client.get_cookie(CSRF_COOKIE).value

    def test_cookie_rotates_on_every_response(self, client):
        client.get("/api/health")
        first = client.get_cookie(CSRF_COOKIE).value
        client.get("/api/health")
        assert client.get_cookie(CSRF_COOKIE).value != first

    def test_error_responses_also_set_the_cookie(self, client):
        client.get("/api/does-not-exist")
        assert client.get_cookie(CSRF_COOKIE) is not None


class TestCsrfCheck:

    def test_safe_methods_are_never_checked(self, client):
        assert client.get("/api/health").status_code == 200
        assert client.head("/api/health").status_code == 200

    def test_post_without_cookie_returns_403_missing(self, client):
        resp = client.post("/api/auth/login", json=_login_body())
        assert resp.status_code == 403
        assert resp.get_json()["error"]["code"] == "CSRF_TOKEN_MISSING"

    def test_post_without_header_returns_403_missing(self, client):
        client.get("/api/csrf-token")
        resp = client.post("/api/auth/login", json=_login_body())
        assert resp.status_code == 403
        assert resp.get_json()["error"]["code"] == "CSRF_TOKEN_MISSING"

    def test_mismatched_header_returns_403_invalid(self, client):
        client.get("/api/csrf-token")
        resp = client.post(
            "/api/auth/login",
            json=_login_body(),
            headers={CSRF_HEADER: "forged-value"},
        )
        assert resp.status_code == 403
        assert resp.get_json()["error"]["code"] == "CSRF_TOKEN_INVALID"

    def test_matching_header_passes_the_check(self, client):
        resp = client.post("/api/auth/login", json=_login_body(), headers=csrf_headers(client))
        # Past CSRF: unknown user, so the credential check answers.
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "INVALID_CREDENTIALS"

    def test_stale_cookie_value_is_rejected(self, client):
        headers = csrf_headers(client)
        client.get("/api/health")  # rotates the cookie
        resp = client.post("/api/auth/login", json=_login_body(), headers=headers)
        assert resp.status_code == 403
        assert resp.get_json()["error"]["code"] == "CSRF_TOKEN_INVALID"

    def test_delete_is_checked(self, client):
        resp = client.delete("/api/users/sessions/anything")
        assert resp.status_code == 403
        assert resp.get_json()["error"]["code"] == "CSRF_TOKEN_MISSING"

    def test_check_can_be_disabled(self, client, app, monkeypatch):
        monkeypatch.setitem(app.config, "CSRF_ENABLED", False)
        resp = client.post("/api/auth/login", json=_login_body())
        assert resp.status_code == 401
