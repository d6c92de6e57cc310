"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session using create_app("testing"), which
    points at in-memory SQLite unless TEST_DATABASE_URL says otherwise.
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order, rate-limit counters
    are dropped and the CAPTCHA store is cleared, so tests are isolated.

CSRF is ON in the testing config, exactly as in production. Every
state-changing request therefore needs the csrf_token cookie echoed in the
X-CSRF-Token header; csrf_headers() takes care of that.

Helper functions (not fixtures):
  - csrf_headers(client, token=None) → headers for a POST/PUT/DELETE
  - post / put / delete(client, url, json=None, token=None) → response
  - register(client, ...)  → response data {user, tokens}
  - login(client, ...)     → response data {user, tokens, ...}
  - auth_headers(token)    → {"Authorization": "Bearer <token>"}
"""

from __future__ import annotations

import pytest
from sqlalchemy import text

from backend.polarcraft import create_app, shutdown_app
from backend.polarcraft.extensions import CAPTCHA_KEY, RATE_LIMITER_KEY
from backend.polarcraft.extensions import db as _db

DEFAULT_PASSWORD = "Str0ng!Pass"


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """Creates the Flask application in 'testing' mode once for the whole session."""
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()
    shutdown_app(flask_app)


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_state(app):
    """
    Resets every piece of shared state after each test: DB rows, rate-limit
    counters and outstanding CAPTCHA challenges.
    """
    yield  # run the test

    app.extensions[RATE_LIMITER_KEY].reset()
    app.extensions[CAPTCHA_KEY].clear()

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test

        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM password_reset_tokens"))
            conn.execute(text("DELETE FROM refresh_tokens"))
            conn.execute(text("DELETE FROM users"))
            conn.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (and cookie jar)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def csrf_headers(client, token: str | None = None) -> dict:
    """
    Returns headers carrying the current csrf_token cookie value.

    The cookie rotates on every response, so this must be called right
    before each state-changing request. A fresh client has no cookie yet;
    one GET fixes that.
    """
    cookie = client.get_cookie("csrf_token")
    if cookie is None:
        client.get("/api/csrf-token")
        cookie = client.get_cookie("csrf_token")

    headers = {"X-CSRF-Token": cookie.value}
    if token is not None:
        headers.update(auth_headers(token))
    return headers


def post(client, url: str, json: dict | None = None, token: str | None = None, **kwargs):
    return client.post(url, json=json if json is not None else {}, headers=csrf_headers(client, token), **kwargs)


def put(client, url: str, json: dict | None = None, token: str | None = None):
    return client.put(url, json=json if json is not None else {}, headers=csrf_headers(client, token))


def delete(client, url: str, token: str | None = None):
    return client.delete(url, headers=csrf_headers(client, token))


def register(
    client,
    username: str = "alice",
    password: str = DEFAULT_PASSWORD,
    email: str | None = None,
) -> dict:
    """
    Registers a new user and returns the response data dict.
    Returns: {"user": {...}, "tokens": {"accessToken", "refreshToken", ...}}
    """
    payload = {"username": username, "password": password}
    if email is not None:
        payload["email"] = email
    resp = post(client, "/api/auth/register", payload)
    assert resp.status_code == 201, f"register failed: {resp.get_json()}"
    return resp.get_json()["data"]


def login(
    client,
    username: str = "alice",
    password: str = DEFAULT_PASSWORD,
    remember_me: bool = False,
    user_agent: str | None = None,
) -> dict:
    """
    Logs in a user and returns the response data dict.
    Returns: {"user": {...}, "tokens": {...}, "isNewUser": False, "rememberMe": bool}
    """
    headers = csrf_headers(client)
    if user_agent is not None:
        headers["User-Agent"] = user_agent
    resp = client.post(
        "/api/auth/login",
        json={"username": username, "password": password, "rememberMe": remember_me},
        headers=headers,
    )
    assert resp.status_code == 200, f"login failed: {resp.get_json()}"
    return resp.get_json()["data"]
