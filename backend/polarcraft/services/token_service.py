"""
services/token_service.py — Token pair issuance, refresh rotation, revocation.

Session lifecycle:
    issued ──refresh──▶ revoked (and a new record issued for the same user)
       │
       ├──logout / terminate / password change──▶ revoked
       └──time passes──▶ expired (noticed lazily on the next refresh)

Rotation is unconditional: every successful refresh revokes the presented
record, so a refresh token works exactly once and each login chain has at
most one active descendant.

Layer rules:
  - No flask.request, no HTTP status handling beyond raising AppError.
  - current_app.config is read only for JWT secrets/expiries.
  - Flushes only; the route commits. The exceptions are the expired and
    deactivated branches of refresh(), which commit the revocation before
    raising.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy.orm import Session

from backend.polarcraft.errors import AppError, ErrorCode
from backend.polarcraft.models.user import User
from backend.polarcraft.services import session_store
from backend.polarcraft.utils.tokens import (
    REFRESH,
    ExpiredToken,
    InvalidOrExpiredToken,
    TokenCodec,
    token_expiry,
)

logger = logging.getLogger(__name__)


def get_codec() -> TokenCodec:
    return TokenCodec.from_config(current_app.config)


def issue_tokens(
        user,
        ip_address: str | None = None,
        device_info: str | None = None,
        *,
        session: Session,
        codec: TokenCodec | None = None,
) -> dict:
    """
    Mints an access/refresh pair for `user` and records the refresh token.

    The session id is chosen up front so it can travel inside both tokens as
    the `sid` claim; that is how /auth/logout knows which session to revoke
    from nothing but the access token.

    Returns: {"accessToken", "refreshToken", "expiresIn", "refreshTokenId"}
    """
    codec = codec or get_codec()
    session_id = str(uuid.uuid4())

    pair = codec.issue_pair({
        "sub": str(user.id),
        "username": user.username,
        "role": user.role,
        "sid": session_id,
    })

    expires_at = token_expiry(pair.refresh_token)
    if expires_at is None:
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to read refresh token expiry.")

    record = session_store.create_session(
        user_id=str(user.id),
        raw_token=pair.refresh_token,
        expires_at=expires_at,
        ip_address=ip_address,
        device_info=device_info,
        session_id=session_id,
        session=session,
    )

    logger.info("Tokens issued for user %s (session %s)", user.id, record.id)

    return {
        "accessToken": pair.access_token,
        "refreshToken": pair.refresh_token,
        "expiresIn": pair.expires_in,
        "refreshTokenId": record.id,
    }


def refresh(
        raw_refresh_token: str,
        ip_address: str | None = None,
        device_info: str | None = None,
        *,
        session: Session,
        codec: TokenCodec | None = None,
) -> dict:
    """
    Exchanges a refresh token for a brand new pair.

    A correctly signed token past its exp is not rejected up front: it goes
    through the record lookup so the expired branch can revoke the record
    and answer TOKEN_EXPIRED.

    The new pair is built from the current users row, so a role change takes
    effect on the next refresh.

    Raises:
      AppError(INVALID_TOKEN, 401)  — bad signature, wrong type, or no live
                                      record (unknown / revoked / user gone)
      AppError(TOKEN_EXPIRED, 401)  — record found but past expires_at; the
                                      record is revoked as a side effect
      AppError(USER_INACTIVE, 403)  — account deactivated; the record is
                                      revoked as a side effect
    """
    codec = codec or get_codec()

    try:
        payload = codec.verify_refresh(raw_refresh_token)
    except ExpiredToken:
        try:
            payload = codec.verify_refresh(raw_refresh_token, verify_exp=False)
        except InvalidOrExpiredToken:
            raise AppError(ErrorCode.INVALID_TOKEN, "Invalid or expired refresh token.")
    except InvalidOrExpiredToken:
        raise AppError(ErrorCode.INVALID_TOKEN, "Invalid or expired refresh token.")

    if payload.get("type") != REFRESH:
        raise AppError(ErrorCode.INVALID_TOKEN, "Token is not a refresh token.")

    record = session_store.find_active_by_token(raw_refresh_token, session=session)
    if record is None:
        raise AppError(ErrorCode.INVALID_TOKEN, "Refresh token not found or revoked.")

    if session_store.as_utc(record.expires_at) < session_store.utcnow():
        session_store.revoke(record.id, session=session)
        # The route never reaches its own commit on this path.
        session.commit()
        raise AppError(ErrorCode.TOKEN_EXPIRED, "Refresh token has expired.")

    user = session.get(User, record.user_id)
    if user is None:
        raise AppError(ErrorCode.INVALID_TOKEN, "Refresh token not found or revoked.")
    if not user.is_active:
        session_store.revoke(record.id, session=session)
        session.commit()
        logger.warning("Refresh refused for deactivated user %s", user.id)
        raise AppError(ErrorCode.USER_INACTIVE, "This account has been deactivated.")

    # Rotation: the presented token is spent whether or not the client ever
    # receives the new pair.
    session_store.revoke(record.id, session=session)

    tokens = issue_tokens(user, ip_address, device_info, session=session, codec=codec)

    logger.info("Refresh token rotated for user %s: %s -> %s",
                record.user_id, record.id, tokens["refreshTokenId"])
    return tokens


def revoke_session(session_id: str, *, session: Session) -> bool:
    return session_store.revoke(session_id, session=session)


def revoke_all(user_id: str, *, session: Session) -> int:
    return session_store.revoke_all_for_user(user_id, session=session)


def revoke_others(current_session_id: str, user_id: str, *, session: Session) -> int:
    return session_store.revoke_all_except(current_session_id, user_id, session=session)


def list_sessions(
        user_id: str,
        current_session_id: str | None = None,
        *,
        session: Session,
) -> list[dict]:
    records = session_store.list_active_for_user(user_id, session=session)
    return [
        {
            "id": record.id,
            "device_info": record.device_info,
            "ip_address": record.ip_address,
            "created_at": _iso(record.created_at),
            "expires_at": _iso(record.expires_at),
            "is_current": current_session_id is not None and record.id == current_session_id,
        }
        for record in records
    ]


def delete_session(session_id: str, user_id: str, *, session: Session) -> bool:
    return session_store.delete_for_user(session_id, user_id, session=session)


def cleanup_expired(*, session: Session) -> int:
    return session_store.purge_expired_or_revoked(session=session)


# ── Private helpers ────────────────────────────────────────────────────────

def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return session_store.as_utc(value).isoformat()


def refresh_expiry_delta(codec: TokenCodec | None = None) -> timedelta:
    """Lifetime of a refresh token; also used as the remember-me cookie max-age."""
    codec = codec or get_codec()
    return timedelta(seconds=codec.refresh_ttl)
