"""
middleware/csrf.py — Double-submit cookie CSRF protection.

Every response carries a fresh, non-HttpOnly `csrf_token` cookie. A browser
client copies the cookie value into the X-CSRF-Token header on every
state-changing request; a cross-site page can make the browser send the
cookie but cannot read it, so it cannot produce a matching header.

Safe methods (GET, HEAD, OPTIONS) are never checked.

Error codes:
  CSRF_TOKEN_MISSING (403) — cookie or header absent
  CSRF_TOKEN_INVALID (403) — both present but different
"""

from __future__ import annotations

import logging
import secrets

from flask import Flask, g, request

from backend.polarcraft.errors import AppError, ErrorCode

logger = logging.getLogger(__name__)

SAFE_METHODS: tuple[str, ...] = ("GET", "HEAD", "OPTIONS")

CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"
CSRF_MAX_AGE = 60 * 60 * 24


def generate_csrf_token() -> str:
    """
    Returns the token that will be set as the cookie on this response.
    Minted once per request, so GET /api/csrf-token can return the same
    value it sets.
    """
    token = getattr(g, "csrf_token", None)
    if token is None:
        token = secrets.token_urlsafe(32)
        g.csrf_token = token
    return token


def check_csrf() -> None:
    if request.method in SAFE_METHODS:
        return

    cookie = (request.cookies.get(CSRF_COOKIE) or "").strip()
    if not cookie:
        raise AppError(ErrorCode.CSRF_TOKEN_MISSING, "CSRF token cookie is missing.")

    header = (request.headers.get(CSRF_HEADER) or "").strip()
    if not header:
        raise AppError(ErrorCode.CSRF_TOKEN_MISSING, f"The {CSRF_HEADER} header is missing.")

    if not secrets.compare_digest(cookie, header):
        logger.warning(
            "CSRF token mismatch: ip=%s method=%s url=%s",
            request.remote_addr,
            request.method,
            request.url,
        )
        raise AppError(ErrorCode.CSRF_TOKEN_INVALID, "CSRF token is invalid.")


def configure_csrf(app: Flask) -> None:

    @app.before_request
    def _csrf_guard():
        if app.config.get("CSRF_ENABLED", True):
            check_csrf()

    @app.after_request
    def _set_csrf_cookie(resp):
        resp.set_cookie(
            CSRF_COOKIE,
            generate_csrf_token(),
            httponly=False,
            samesite="Strict",
            secure=app.config.get("COOKIE_SECURE", False),
            max_age=CSRF_MAX_AGE,
            path="/",
        )
        return resp


__all__ = ["configure_csrf", "check_csrf", "generate_csrf_token"]
