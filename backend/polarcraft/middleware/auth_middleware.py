"""
middleware/auth_middleware.py — Bearer authentication and role checks.

The @require_auth decorator:
  1. Reads the Authorization header (exactly "Bearer <token>")
  2. Verifies the access token with JWT_ACCESS_SECRET
  3. Requires type == "access" (a refresh token is never a bearer credential)
  4. Attaches user_id, username, role and session_id to flask.g

@require_role(*roles) runs after @require_auth and answers 403 when the
authenticated role is not in `roles`.

Error codes:
  UNAUTHORIZED   (401) — no usable Authorization header
  TOKEN_EXPIRED  (401) — correctly signed but past exp
  INVALID_TOKEN  (401) — bad signature, malformed, wrong type, missing sub
  FORBIDDEN      (403) — authenticated but role not allowed
"""

from __future__ import annotations

import functools
from typing import Callable

from flask import g, request

from backend.polarcraft.errors import AppError, ErrorCode
from backend.polarcraft.services.token_service import get_codec
from backend.polarcraft.utils.tokens import ACCESS, ExpiredToken, InvalidOrExpiredToken, extract_bearer


def require_auth(f: Callable) -> Callable:
    """
    Route decorator that enforces bearer authentication.

    Usage:
        @users_bp.route("/profile")
        @require_auth
        def profile():
            user_id = g.user_id
            ...
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _authenticate_request()
        return f(*args, **kwargs)

    return decorated


def require_role(*roles: str) -> Callable:
    """Must be stacked below @require_auth."""
    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            if getattr(g, "role", None) not in roles:
                raise AppError(ErrorCode.FORBIDDEN, "You do not have permission to perform this action.")
            return f(*args, **kwargs)

        return decorated

    return decorator


def _authenticate_request() -> None:
    """
    Performs the full bearer check and populates flask.g.

    Raises AppError on any failure; the global error handler renders it.
    """
    raw_token = extract_bearer(request.headers.get("Authorization"))
    if raw_token is None:
        raise AppError(
            ErrorCode.UNAUTHORIZED,
            "Authentication required. Provide a Bearer token in the Authorization header.",
        )

    try:
        payload = get_codec().verify_access(raw_token)
    except ExpiredToken:
        raise AppError(
            ErrorCode.TOKEN_EXPIRED,
            "The access token has expired. Use POST /api/auth/refresh to obtain a new one.",
        )
    except InvalidOrExpiredToken:
        raise AppError(ErrorCode.INVALID_TOKEN, "The access token is invalid.")

    if payload.get("type") != ACCESS:
        raise AppError(ErrorCode.INVALID_TOKEN, "The access token is invalid.")

    sub = payload.get("sub")
    if not sub:
        raise AppError(ErrorCode.INVALID_TOKEN, "The access token is missing the 'sub' claim.")

    g.user_id = str(sub)
    g.username = payload.get("username")
    g.role = payload.get("role")
    g.session_id = payload.get("sid")
