"""
services/auth_service.py — Authentication use cases.

Responsibilities:
  - Registration and credential verification
  - Logout and refresh (delegated to token_service)
  - Forgot / reset password with single-use reset tokens
  - CAPTCHA issue and verification (delegated to the app's CaptchaService)

Layer rules:
  - No imports from routes or schemas
  - No use of flask.request, flask.g, or HTTP status codes beyond AppError
  - current_app.config is read for the password policy, bcrypt work factor
    and reset-token settings only
  - Flushes only; the route commits

Enumeration resistance:
  - Unknown username and wrong password produce the same INVALID_CREDENTIALS
    error and message.
  - forgot_password answers with the same message whether or not the
    account exists.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from flask import current_app
from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.polarcraft.errors import AppError, ErrorCode
from backend.polarcraft.extensions import get_captcha_service
from backend.polarcraft.models.password_reset import PasswordResetToken
from backend.polarcraft.models.user import User
from backend.polarcraft.services import token_service
from backend.polarcraft.services.session_store import as_utc, utcnow
from backend.polarcraft.utils.passwords import (
    PasswordPolicy,
    hash_password,
    validate_password,
    verify_password,
)

logger = logging.getLogger(__name__)

FORGOT_PASSWORD_MESSAGE = "If that account exists, password reset instructions have been sent."
RESET_PASSWORD_MESSAGE = "Password has been reset. Please log in with your new password."
INVALID_CREDENTIALS_MESSAGE = "Invalid username or password."


# ── Shared helpers (also used by user_service) ─────────────────────────────

def serialize_user(user: User) -> dict:
    """Public profile of a user. Never includes the password hash."""
    return {
        "id": user.id,
        "username": user.username,
        "role": user.role,
        "avatar_url": user.avatar_url,
        "email": user.email,
        "email_verified": user.email_verified,
        "is_active": user.is_active,
        "created_at": _iso(user.created_at),
        "updated_at": _iso(user.updated_at),
        "last_login_at": _iso(user.last_login_at),
    }


def password_policy() -> PasswordPolicy:
    return PasswordPolicy.from_config(current_app.config)


def check_password_policy(password: str) -> None:
    """Raises WEAK_PASSWORD with every violated rule in `details`."""
    result = validate_password(password, password_policy())
    if not result.valid:
        raise AppError(
            ErrorCode.WEAK_PASSWORD,
            "; ".join(result.errors),
            details=result.errors,
        )


def hash_with_configured_rounds(password: str) -> str:
    return hash_password(password, rounds=current_app.config.get("BCRYPT_LOG_ROUNDS", 12))


def find_user_by_username(username: str, *, session: Session) -> User | None:
    return session.execute(
        select(User).where(User.username == username)
    ).scalar_one_or_none()


def find_user_by_email(email: str, *, session: Session) -> User | None:
    return session.execute(
        select(User).where(User.email == email)
    ).scalar_one_or_none()


# ── Registration / login ───────────────────────────────────────────────────

def register_user(
        username: str,
        password: str,
        email: str | None = None,
        ip_address: str | None = None,
        device_info: str | None = None,
        *,
        session: Session,
) -> dict:
    """
    Creates an account and issues its first token pair.

    Raises:
      AppError(USER_ALREADY_EXISTS, 409) — username or email already taken
      AppError(WEAK_PASSWORD, 400)       — details lists every violated rule

    Returns: {"user": {...}, "tokens": {...}}
    """
    if find_user_by_username(username, session=session) is not None:
        raise AppError(ErrorCode.USER_ALREADY_EXISTS, f"Username '{username}' is already taken.")

    if email and find_user_by_email(email, session=session) is not None:
        raise AppError(ErrorCode.USER_ALREADY_EXISTS, "That email address is already registered.")

    check_password_policy(password)

    user = User(
        username=username,
        email=email or None,
        password_hash=hash_with_configured_rounds(password),
    )
    session.add(user)
    try:
        # populate user.id; a concurrent insert of the same username lands here
        session.flush()
    except IntegrityError:
        session.rollback()
        raise AppError(ErrorCode.USER_ALREADY_EXISTS, f"Username '{username}' is already taken.")

    tokens = token_service.issue_tokens(user, ip_address, device_info, session=session)

    logger.info("User registered: %s (%s)", user.username, user.id)
    return {"user": serialize_user(user), "tokens": tokens}


def login_user(
        username: str,
        password: str,
        remember_me: bool = False,
        ip_address: str | None = None,
        device_info: str | None = None,
        captcha_id: str | None = None,
        captcha_code: str | None = None,
        *,
        session: Session,
) -> dict:
    """
    Verifies credentials and issues a new token pair.

    A CAPTCHA is optional; when the client sends a challenge id it must
    also send the right answer, checked before any credential lookup.

    Raises:
      AppError(INVALID_CAPTCHA, 400)     — challenge sent but not solved
      AppError(INVALID_CREDENTIALS, 401) — unknown user or wrong password
      AppError(USER_INACTIVE, 403)       — correct password, deactivated account

    Returns: {"user": {...}, "tokens": {...}, "isNewUser": False, "rememberMe": bool}
    """
    if captcha_id:
        verify_captcha(captcha_id, captcha_code or "")

    user = find_user_by_username(username, session=session)

    if user is None or not verify_password(password, user.password_hash):
        logger.info("Failed login attempt for username %r", username)
        raise AppError(ErrorCode.INVALID_CREDENTIALS, INVALID_CREDENTIALS_MESSAGE)

    if not user.is_active:
        raise AppError(ErrorCode.USER_INACTIVE, "This account has been deactivated.")

    user.last_login_at = utcnow()
    session.flush()

    tokens = token_service.issue_tokens(user, ip_address, device_info, session=session)

    logger.info("User logged in: %s (%s)", user.username, user.id)
    return {
        "user": serialize_user(user),
        "tokens": tokens,
        "isNewUser": False,
        "rememberMe": bool(remember_me),
    }


def logout_user(session_id: str | None, *, session: Session) -> bool:
    """
    Revokes the session the caller's access token belongs to.
    A missing session id is not an error; the route still clears cookies.
    """
    if not session_id:
        return False
    return token_service.revoke_session(session_id, session=session)


def refresh_tokens(
        raw_refresh_token: str,
        ip_address: str | None = None,
        device_info: str | None = None,
        *,
        session: Session,
) -> dict:
    tokens = token_service.refresh(raw_refresh_token, ip_address, device_info, session=session)
    return {
        "accessToken": tokens["accessToken"],
        "refreshToken": tokens["refreshToken"],
        "expiresIn": tokens["expiresIn"],
    }


def get_current_user(user_id: str, *, session: Session) -> dict:
    user = session.get(User, user_id)
    if user is None:
        raise AppError(ErrorCode.USER_NOT_FOUND, "User not found.")
    return serialize_user(user)


# ── Password reset ─────────────────────────────────────────────────────────

def forgot_password(username: str, *, session: Session) -> dict:
    """
    Issues a reset token for `username` (or email, when it contains '@').

    Always returns the same message. The token is only echoed back when
    EXPOSE_RESET_TOKEN is set, which is a development convenience in place
    of an outbound email.
    """
    user = find_user_by_username(username, session=session)
    if user is None and "@" in username:
        user = find_user_by_email(username, session=session)

    if user is None:
        logger.warning("Password reset requested for non-existent user")
        return {"message": FORGOT_PASSWORD_MESSAGE}

    _invalidate_reset_tokens(user.id, session=session)

    expiry_minutes = current_app.config.get("PASSWORD_RESET_EXPIRY_MINUTES", 15)
    reset_token = PasswordResetToken(
        user_id=user.id,
        token=secrets.token_hex(32),
        expires_at=utcnow() + timedelta(minutes=expiry_minutes),
    )
    session.add(reset_token)
    session.flush()

    logger.info("Password reset token issued for user %s (valid %d minutes)", user.id, expiry_minutes)

    result = {"message": FORGOT_PASSWORD_MESSAGE}
    if current_app.config.get("EXPOSE_RESET_TOKEN"):
        result["resetToken"] = reset_token.token
        result["expiresInMinutes"] = expiry_minutes
    return result


def reset_password(token: str, new_password: str, *, session: Session) -> dict:
    """
    Consumes a reset token and sets a new password.

    Raises:
      AppError(INVALID_TOKEN, 400) — unknown or already used token
      AppError(TOKEN_EXPIRED, 400) — token past its expiry
      AppError(WEAK_PASSWORD, 400)

    On success every session of the user is revoked.
    """
    record = session.execute(
        select(PasswordResetToken).where(
            PasswordResetToken.token == token,
            PasswordResetToken.used_at.is_(None),
        )
    ).scalar_one_or_none()

    if record is None:
        raise AppError(ErrorCode.INVALID_TOKEN, "Password reset token is invalid or has been used.", 400)

    if as_utc(record.expires_at) <= utcnow():
        raise AppError(ErrorCode.TOKEN_EXPIRED, "Password reset token has expired.", 400)

    check_password_policy(new_password)

    user = session.get(User, record.user_id)
    if user is None:
        raise AppError(ErrorCode.INVALID_TOKEN, "Password reset token is invalid or has been used.", 400)

    user.password_hash = hash_with_configured_rounds(new_password)
    record.used_at = utcnow()
    session.flush()

    _invalidate_reset_tokens(user.id, session=session)
    token_service.revoke_all(user.id, session=session)

    logger.info("Password reset completed for user %s", user.id)
    return {"message": RESET_PASSWORD_MESSAGE}


def purge_reset_tokens(*, session: Session) -> int:
    """Deletes used or expired reset tokens. Idempotent."""
    result = session.execute(
        delete(PasswordResetToken)
        .where(
            or_(
                PasswordResetToken.used_at.is_not(None),
                PasswordResetToken.expires_at < utcnow(),
            )
        )
        .execution_options(synchronize_session="fetch")
    )
    session.flush()
    logger.info("Cleaned up %d used or expired password reset tokens", result.rowcount)
    return result.rowcount


def _invalidate_reset_tokens(user_id: str, *, session: Session) -> int:
    result = session.execute(
        update(PasswordResetToken)
        .where(
            PasswordResetToken.user_id == user_id,
            PasswordResetToken.used_at.is_(None),
        )
        .values(used_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    session.flush()
    return result.rowcount


# ── CAPTCHA ────────────────────────────────────────────────────────────────

def generate_captcha() -> dict:
    return get_captcha_service().generate()


def verify_captcha(captcha_id: str, code: str) -> dict:
    if not get_captcha_service().verify(captcha_id, code):
        raise AppError(ErrorCode.INVALID_CAPTCHA, "The CAPTCHA answer is incorrect or has expired.")
    return {"valid": True}


def _iso(value) -> str | None:
    if value is None:
        return None
    return as_utc(value).isoformat()
