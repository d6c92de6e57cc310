"""
services/user_service.py — Profile and session management for the signed-in user.

Every function takes the caller's user_id (from the access token) and scopes
all reads and writes to it; there is no way to touch another user's profile
or sessions through this module.

Layer rules are the same as auth_service: no flask.request / flask.g,
flush only, AppError for every failure.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.polarcraft.errors import AppError, ErrorCode
from backend.polarcraft.models.user import User
from backend.polarcraft.services import token_service
from backend.polarcraft.services.auth_service import (
    check_password_policy,
    hash_with_configured_rounds,
    serialize_user,
)
from backend.polarcraft.utils.passwords import verify_password

logger = logging.getLogger(__name__)

_UNSET = object()


def _get_user_or_404(user_id: str, session: Session) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise AppError(ErrorCode.USER_NOT_FOUND, "User not found.")
    return user


def get_profile(user_id: str, *, session: Session) -> dict:
    return serialize_user(_get_user_or_404(user_id, session))


def update_profile(
        user_id: str,
        username=_UNSET,
        email=_UNSET,
        avatar_url=_UNSET,
        *,
        session: Session,
) -> dict:
    """
    Partially updates the profile. Only arguments that were passed change.

    Raises:
      AppError(USER_NOT_FOUND, 404)
      AppError(USER_ALREADY_EXISTS, 409) — new username/email belongs to someone else
    """
    user = _get_user_or_404(user_id, session)

    if username is not _UNSET and username != user.username:
        taken = session.execute(
            select(User.id).where(User.username == username, User.id != user_id)
        ).first()
        if taken is not None:
            raise AppError(ErrorCode.USER_ALREADY_EXISTS, f"Username '{username}' is already taken.")
        user.username = username

    if email is not _UNSET and email != user.email:
        if email:
            taken = session.execute(
                select(User.id).where(User.email == email, User.id != user_id)
            ).first()
            if taken is not None:
                raise AppError(ErrorCode.USER_ALREADY_EXISTS, "That email address is already registered.")
        user.email = email or None
        user.email_verified = False

    if avatar_url is not _UNSET:
        user.avatar_url = avatar_url or None

    try:
        session.flush()
    except IntegrityError:
        session.rollback()
        raise AppError(ErrorCode.USER_ALREADY_EXISTS, "Username or email is already taken.")

    logger.info("Profile updated for user %s", user_id)
    return serialize_user(user)


def change_password(
        user_id: str,
        current_password: str,
        new_password: str,
        *,
        session: Session,
) -> int:
    """
    Replaces the password after re-checking the current one, then revokes
    every session so all devices have to log in again.

    Raises:
      AppError(USER_NOT_FOUND, 404)
      AppError(INVALID_CREDENTIALS, 401) — current password is wrong
      AppError(WEAK_PASSWORD, 400)

    Returns the number of sessions revoked.
    """
    user = _get_user_or_404(user_id, session)

    if not verify_password(current_password, user.password_hash):
        raise AppError(ErrorCode.INVALID_CREDENTIALS, "Current password is incorrect.")

    check_password_policy(new_password)

    user.password_hash = hash_with_configured_rounds(new_password)
    session.flush()

    revoked = token_service.revoke_all(user_id, session=session)
    logger.info("Password changed for user %s; %d sessions revoked", user_id, revoked)
    return revoked


def get_sessions(
        user_id: str,
        current_session_id: str | None = None,
        *,
        session: Session,
) -> dict:
    sessions = token_service.list_sessions(user_id, current_session_id, session=session)
    return {"sessions": sessions, "total": len(sessions)}


def logout_from_session(user_id: str, session_id: str, *, session: Session) -> None:
    """
    Hard-deletes one of the caller's sessions.

    Raises:
      AppError(SESSION_NOT_FOUND, 404) — no such session owned by this user
    """
    if not token_service.delete_session(session_id, user_id, session=session):
        raise AppError(ErrorCode.SESSION_NOT_FOUND, "Session not found.")
    logger.info("User %s logged out from session %s", user_id, session_id)


def logout_from_all_sessions(user_id: str, *, session: Session) -> int:
    return token_service.revoke_all(user_id, session=session)
