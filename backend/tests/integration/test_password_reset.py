"""
tests/integration/test_password_reset.py — Password reset, password change and profile.

Endpoints covered:
  POST /auth/forgot-password   → 200 (always, same message)
  POST /auth/reset-password    → 200 / 400
  POST /users/change-password  → 200 / 401
  GET  /users/profile          → 200
  PUT  /users/profile          → 200 / 400 / 409

Reset tokens are read back through EXPOSE_RESET_TOKEN (patched on for the
test) or straight from the password_reset_tokens table.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from backend.polarcraft.extensions import db
from backend.polarcraft.models.password_reset import PasswordResetToken
from backend.polarcraft.models.refresh_token import RefreshToken
from backend.polarcraft.models.user import User
from backend.polarcraft.services.auth_service import FORGOT_PASSWORD_MESSAGE

from .conftest import DEFAULT_PASSWORD, auth_headers, login, post, put, register

NEW_PASSWORD = "N3w!Passw0rd"


@pytest.fixture
def expose_reset_token(app, monkeypatch):
    monkeypatch.setitem(app.config, "EXPOSE_RESET_TOKEN", True)


def _forgot(client, username: str):
    return post(client, "/api/auth/forgot-password", {"username": username})


def _reset(client, token: str, new_password: str = NEW_PASSWORD):
    return post(client, "/api/auth/reset-password", {"token": token, "newPassword": new_password})


# ═══════════════════════════════════════════════════════════════════════════
# POST /auth/forgot-password
# ═══════════════════════════════════════════════════════════════════════════

class TestForgotPassword:

    def test_existing_and_unknown_users_get_same_message(self, client):
        register(client, "alice")
        known = _forgot(client, "alice")
        unknown = _forgot(client, "nobody")

        assert known.status_code == 200
        assert unknown.status_code == 200
        assert known.get_json()["data"]["message"] == FORGOT_PASSWORD_MESSAGE
        assert unknown.get_json()["data"] == known.get_json()["data"]

    def test_token_is_stored_but_not_returned_by_default(self, client, app):
        register(client, "alice")
        resp = _forgot(client, "alice")
        assert "resetToken" not in resp.get_json()["data"]

        with app.app_context():
            assert db.session.query(PasswordResetToken).count() == 1

    def test_token_is_exposed_when_configured(self, client, expose_reset_token):
        register(client, "alice")
        data = _forgot(client, "alice").get_json()["data"]
        assert len(data["resetToken"]) == 64
        assert data["expiresInMinutes"] == 15

    def test_unknown_user_never_exposes_a_token(self, client, app, expose_reset_token):
        data = _forgot(client, "nobody").get_json()["data"]
        assert data == {"message": FORGOT_PASSWORD_MESSAGE}

        with app.app_context():
            assert db.session.query(PasswordResetToken).count() == 0

    def test_lookup_by_email(self, client, expose_reset_token):
        register(client, "alice", email="alice@example.com")
        data = _forgot(client, "alice@example.com").get_json()["data"]
        assert "resetToken" in data

    def test_new_request_invalidates_previous_token(self, client, expose_reset_token):
        register(client, "alice")
        first = _forgot(client, "alice").get_json()["data"]["resetToken"]
        second = _forgot(client, "alice").get_json()["data"]["resetToken"]
        assert first != second

        resp = _reset(client, first)
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_TOKEN"
        assert _reset(client, second).status_code == 200

    def test_missing_username_returns_400(self, client):
        resp = post(client, "/api/auth/forgot-password", {})
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "VALIDATION_ERROR"


# ═══════════════════════════════════════════════════════════════════════════
# POST /auth/reset-password
# ═══════════════════════════════════════════════════════════════════════════

class TestResetPassword:

    def test_full_reset_flow(self, client, expose_reset_token):
        register(client, "alice")
        token = _forgot(client, "alice").get_json()["data"]["resetToken"]

        resp = _reset(client, token)
        assert resp.status_code == 200

        old = post(client, "/api/auth/login", {"username": "alice", "password": DEFAULT_PASSWORD})
        assert old.status_code == 401
        assert old.get_json()["error"]["code"] == "INVALID_CREDENTIALS"

        login(client, "alice", NEW_PASSWORD)

    def test_token_is_single_use(self, client, expose_reset_token):
        register(client, "alice")
        token = _forgot(client, "alice").get_json()["data"]["resetToken"]

        assert _reset(client, token).status_code == 200
        again = _reset(client, token, "An0ther!Pass")
        assert again.status_code == 400
        assert again.get_json()["error"]["code"] == "INVALID_TOKEN"

    def test_reset_revokes_every_session(self, client, app, expose_reset_token):
        register(client, "alice")
        login(client, "alice")
        token = _forgot(client, "alice").get_json()["data"]["resetToken"]

        _reset(client, token)

        with app.app_context():
            live = db.session.query(RefreshToken).filter(RefreshToken.revoked_at.is_(None)).count()
            assert live == 0

    def test_expired_token_returns_400_token_expired(self, client, app, expose_reset_token):
        register(client, "alice")
        token = _forgot(client, "alice").get_json()["data"]["resetToken"]

        with app.app_context():
            record = db.session.query(PasswordResetToken).filter_by(token=token).one()
            record.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
            db.session.commit()

        resp = _reset(client, token)
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "TOKEN_EXPIRED"

    def test_unknown_token_returns_400_invalid_token(self, client):
        resp = _reset(client, "f" * 64)
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_TOKEN"

    def test_weak_new_password_keeps_token_usable(self, client, expose_reset_token):
        register(client, "alice")
        token = _forgot(client, "alice").get_json()["data"]["resetToken"]

        weak = _reset(client, token, "weak")
        assert weak.status_code == 400
        assert weak.get_json()["error"]["code"] == "WEAK_PASSWORD"

        assert _reset(client, token).status_code == 200


# ═══════════════════════════════════════════════════════════════════════════
# POST /users/change-password
# ═══════════════════════════════════════════════════════════════════════════

class TestChangePassword:

    def _change(self, client, token, current, new):
        return post(
            client,
            "/api/users/change-password",
            {"currentPassword": current, "newPassword": new},
            token=token,
        )

    def test_change_password_success(self, client, app):
        data = register(client, "alice")
        resp = self._change(client, data["tokens"]["accessToken"], DEFAULT_PASSWORD, NEW_PASSWORD)
        assert resp.status_code == 200

        with app.app_context():
            live = db.session.query(RefreshToken).filter(RefreshToken.revoked_at.is_(None)).count()
            assert live == 0

        login(client, "alice", NEW_PASSWORD)

    def test_wrong_current_password_returns_401(self, client):
        data = register(client, "alice")
        resp = self._change(client, data["tokens"]["accessToken"], "Wr0ng!Pass", NEW_PASSWORD)
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "INVALID_CREDENTIALS"

    def test_weak_new_password_returns_400(self, client):
        data = register(client, "alice")
        resp = self._change(client, data["tokens"]["accessToken"], DEFAULT_PASSWORD, "weak")
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "WEAK_PASSWORD"
        # nothing changed
        login(client, "alice")

    def test_requires_auth(self, client):
        resp = post(client, "/api/users/change-password", {
            "currentPassword": DEFAULT_PASSWORD,
            "newPassword": NEW_PASSWORD,
        })
        assert resp.status_code == 401


# ═══════════════════════════════════════════════════════════════════════════
# /users/profile
# ═══════════════════════════════════════════════════════════════════════════

class TestProfile:

    def test_get_profile(self, client):
        data = register(client, "alice")
        resp = client.get("/api/users/profile", headers=auth_headers(data["tokens"]["accessToken"]))
        assert resp.status_code == 200
        assert resp.get_json()["data"]["username"] == "alice"

    def test_update_username_and_avatar(self, client):
        data = register(client, "alice")
        resp = put(client, "/api/users/profile", {
            "username": "alice2",
            "avatar_url": "https://cdn.example.com/a.png",
        }, token=data["tokens"]["accessToken"])
        assert resp.status_code == 200
        user = resp.get_json()["data"]
        assert user["username"] == "alice2"
        assert user["avatar_url"] == "https://cdn.example.com/a.png"

    def test_update_to_taken_username_returns_409(self, client):
        register(client, "bob")
        data = register(client, "alice")
        resp = put(client, "/api/users/profile", {"username": "bob"}, token=data["tokens"]["accessToken"])
        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "USER_ALREADY_EXISTS"

    def test_changing_email_resets_verification(self, client, app):
        data = register(client, "alice", email="alice@example.com")
        with app.app_context():
            user = db.session.get(User, data["user"]["id"])
            user.email_verified = True
            db.session.commit()

        resp = put(client, "/api/users/profile", {"email": "new@example.com"},
                   token=data["tokens"]["accessToken"])
        user = resp.get_json()["data"]
        assert user["email"] == "new@example.com"
        assert user["email_verified"] is False

    def test_null_avatar_clears_it(self, client):
        data = register(client, "alice")
        token = data["tokens"]["accessToken"]
        put(client, "/api/users/profile", {"avatar_url": "https://cdn.example.com/a.png"}, token=token)
        resp = put(client, "/api/users/profile", {"avatar_url": None}, token=token)
        assert resp.get_json()["data"]["avatar_url"] is None

    def test_empty_body_returns_400(self, client):
        data = register(client, "alice")
        resp = put(client, "/api/users/profile", {}, token=data["tokens"]["accessToken"])
        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"][0]["field"] == "body"

    def test_invalid_avatar_url_returns_400(self, client):
        data = register(client, "alice")
        resp = put(client, "/api/users/profile", {"avatar_url": "not a url"},
                   token=data["tokens"]["accessToken"])
        assert resp.status_code == 400
        assert resp.get_json()["error"]["details"][0]["field"] == "avatar_url"
