"""
routes/auth.py — Authentication route handlers.

Layer rules:
  - Parse the request body and validate it with the matching schema
    (ValidationError propagates to the global handler)
  - Call exactly ONE service function
  - Commit the DB session
  - Return the standard envelope via success_response()

Cookie handling lives here because it is HTTP transport, not business logic:
the refresh_token cookie is set on login only when rememberMe is true,
re-set on refresh only when the cookie was what the client presented, and
cleared unconditionally on logout.

Endpoints (url_prefix=/api/auth):
  POST /register         → 201
  POST /login            → 200
  POST /logout           → 200
  POST /refresh          → 200
  POST /forgot-password  → 200 (always)
  POST /reset-password   → 200
  GET  /me               → 200
  GET  /captcha          → 200
  POST /verify-captcha   → 200
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, request

from backend.polarcraft.errors import AppError, ErrorCode
from backend.polarcraft.extensions import db
from backend.polarcraft.middleware.auth_middleware import require_auth
from backend.polarcraft.middleware.rate_limit import client_ip, rate_limit
from backend.polarcraft.schemas.auth_schema import (
    ForgotPasswordSchema,
    LoginSchema,
    RefreshTokenSchema,
    RegisterSchema,
    ResetPasswordSchema,
    VerifyCaptchaSchema,
)
from backend.polarcraft.services import auth_service, token_service
from backend.polarcraft.utils.responses import success_response

auth_bp = Blueprint("auth", __name__)

REFRESH_COOKIE = "refresh_token"
REFRESH_COOKIE_PATH = "/api/auth"


def _device_info() -> str | None:
    return request.headers.get("User-Agent")


def _json_body() -> dict:
    return request.get_json(silent=True) or {}


def set_refresh_cookie(response, raw_token: str) -> None:
    response.set_cookie(
        REFRESH_COOKIE,
        raw_token,
        httponly=True,
        samesite="Strict",
        secure=current_app.config.get("COOKIE_SECURE", False),
        max_age=int(token_service.refresh_expiry_delta().total_seconds()),
        path=REFRESH_COOKIE_PATH,
    )


def clear_refresh_cookie(response) -> None:
    response.delete_cookie(
        REFRESH_COOKIE,
        httponly=True,
        samesite="Strict",
        secure=current_app.config.get("COOKIE_SECURE", False),
        path=REFRESH_COOKIE_PATH,
    )


@auth_bp.route("/register", methods=["POST"])
@rate_limit("register")
def register():
    """POST /auth/register — Create account; return user and tokens."""
    data = RegisterSchema().load(_json_body())
    result = auth_service.register_user(
        username=data["username"],
        password=data["password"],
        email=data["email"],
        ip_address=client_ip(),
        device_info=_device_info(),
        session=db.session,
    )
    db.session.commit()
    return success_response(result, "Registration successful.", 201)


@auth_bp.route("/login", methods=["POST"])
@rate_limit("login")
def login():
    """POST /auth/login — Verify credentials; return user and tokens."""
    data = LoginSchema().load(_json_body())
    result = auth_service.login_user(
        username=data["username"],
        password=data["password"],
        remember_me=data["remember_me"],
        ip_address=client_ip(),
        device_info=_device_info(),
        captcha_id=data["captcha_id"],
        captcha_code=data["captcha"],
        session=db.session,
    )
    db.session.commit()

    response, status = success_response(result, "Login successful.")
    if data["remember_me"]:
        set_refresh_cookie(response, result["tokens"]["refreshToken"])
    return response, status


@auth_bp.route("/logout", methods=["POST"])
@require_auth
def logout():
    """POST /auth/logout — Revoke the current session only."""
    auth_service.logout_user(g.session_id, session=db.session)
    db.session.commit()

    current_app.logger.info("User logged out: %s", g.username)
    response, status = success_response(None, "Logged out successfully.")
    clear_refresh_cookie(response)
    return response, status


@auth_bp.route("/refresh", methods=["POST"])
@rate_limit("refresh")
def refresh():
    """POST /auth/refresh — Rotate the refresh token; body first, then cookie."""
    data = RefreshTokenSchema().load(_json_body())
    cookie_token = request.cookies.get(REFRESH_COOKIE)
    raw_token = data["refresh_token"] or cookie_token

    if not raw_token:
        raise AppError(ErrorCode.MISSING_REFRESH_TOKEN, "A refresh token is required.")

    result = auth_service.refresh_tokens(
        raw_token,
        ip_address=client_ip(),
        device_info=_device_info(),
        session=db.session,
    )
    db.session.commit()

    response, status = success_response(result, "Token refreshed.")
    if cookie_token:
        set_refresh_cookie(response, result["refreshToken"])
    return response, status


@auth_bp.route("/forgot-password", methods=["POST"])
@rate_limit("password_reset")
def forgot_password():
    """POST /auth/forgot-password — Always 200 with the same message."""
    data = ForgotPasswordSchema().load(_json_body())
    result = auth_service.forgot_password(data["username"], session=db.session)
    db.session.commit()
    return success_response(result, result["message"])


@auth_bp.route("/reset-password", methods=["POST"])
@rate_limit("password_reset")
def reset_password():
    """POST /auth/reset-password — Consume a reset token."""
    data = ResetPasswordSchema().load(_json_body())
    result = auth_service.reset_password(
        token=data["token"],
        new_password=data["new_password"],
        session=db.session,
    )
    db.session.commit()
    return success_response(result, result["message"])


@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    """GET /auth/me — Current user profile."""
    result = auth_service.get_current_user(g.user_id, session=db.session)
    return success_response(result)


@auth_bp.route("/captcha", methods=["GET"])
@rate_limit("captcha")
def captcha():
    """GET /auth/captcha — New challenge image."""
    return success_response(auth_service.generate_captcha())


@auth_bp.route("/verify-captcha", methods=["POST"])
@rate_limit("captcha")
def verify_captcha():
    """POST /auth/verify-captcha — 400 INVALID_CAPTCHA on a wrong answer."""
    data = VerifyCaptchaSchema().load(_json_body())
    result = auth_service.verify_captcha(data["id"], data["code"])
    return success_response(result, "CAPTCHA verified.")
