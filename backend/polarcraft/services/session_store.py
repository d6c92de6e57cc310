"""
services/session_store.py — Refresh-token ledger (one row per login session).

Every function takes the SQLAlchemy session as a keyword argument and only
flushes; committing is the route's job. All statements go through the ORM /
Core expression API so every value is parameter-bound.

The raw refresh token never reaches the database: callers pass it in,
hash_token() turns it into a SHA-256 digest, and only the digest is stored
or compared.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone

from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import Session

from backend.polarcraft.models.refresh_token import RefreshToken

logger = logging.getLogger(__name__)

_DEVICE_INFO_MAX = 512


def hash_token(raw_token: str) -> str:
    """SHA-256 hex digest of a raw token string."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """
    Normalises a datetime read back from the DB to aware UTC.

    PostgreSQL returns aware values for timestamptz; SQLite returns naive
    ones. Everything is written in UTC, so a naive value is UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def create_session(
        user_id: str,
        raw_token: str,
        expires_at: datetime,
        ip_address: str | None = None,
        device_info: str | None = None,
        session_id: str | None = None,
        *,
        session: Session,
) -> RefreshToken:
    record = RefreshToken(
        user_id=user_id,
        token_hash=hash_token(raw_token),
        ip_address=ip_address or None,
        device_info=(device_info or None) and device_info[:_DEVICE_INFO_MAX],
        expires_at=expires_at,
    )
    if session_id is not None:
        record.id = session_id
    session.add(record)
    session.flush()

    logger.debug("Refresh token created for user %s (session %s)", user_id, record.id)
    return record


def find_active_by_token(raw_token: str, *, session: Session) -> RefreshToken | None:
    """
    Returns the non-revoked record matching `raw_token`, or None.

    Expiry is NOT part of this predicate. The refresh flow needs to tell an
    expired session (TOKEN_EXPIRED, and revoke it) apart from an unknown or
    revoked one (INVALID_TOKEN), so it checks expires_at itself.
    """
    return session.execute(
        select(RefreshToken).where(
            RefreshToken.token_hash == hash_token(raw_token),
            RefreshToken.revoked_at.is_(None),
        )
    ).scalar_one_or_none()


def list_active_for_user(user_id: str, *, session: Session) -> list[RefreshToken]:
    """Non-revoked, unexpired sessions for `user_id`, newest first."""
    return list(
        session.execute(
            select(RefreshToken)
            .where(
                RefreshToken.user_id == user_id,
                RefreshToken.revoked_at.is_(None),
                RefreshToken.expires_at > utcnow(),
            )
            .order_by(RefreshToken.created_at.desc())
        ).scalars().all()
    )


def revoke(session_id: str, *, session: Session) -> bool:
    result = session.execute(
        update(RefreshToken)
        .where(
            RefreshToken.id == session_id,
            RefreshToken.revoked_at.is_(None),
        )
        .values(revoked_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    session.flush()
    logger.debug("Refresh token revoked: %s", session_id)
    return result.rowcount > 0


def revoke_all_for_user(user_id: str, *, session: Session) -> int:
    result = session.execute(
        update(RefreshToken)
        .where(
            RefreshToken.user_id == user_id,
            RefreshToken.revoked_at.is_(None),
        )
        .values(revoked_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    session.flush()
    logger.info("Revoked %d refresh tokens for user %s", result.rowcount, user_id)
    return result.rowcount


def revoke_all_except(keep_id: str, user_id: str, *, session: Session) -> int:
    result = session.execute(
        update(RefreshToken)
        .where(
            RefreshToken.user_id == user_id,
            RefreshToken.id != keep_id,
            RefreshToken.revoked_at.is_(None),
        )
        .values(revoked_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    session.flush()
    logger.info("Revoked %d other refresh tokens for user %s", result.rowcount, user_id)
    return result.rowcount


def delete_for_user(session_id: str, user_id: str, *, session: Session) -> bool:
    """
    Hard-deletes one session. Scoped to its owner: a user can never delete
    another user's session by guessing its id (the row simply does not match).
    """
    result = session.execute(
        delete(RefreshToken)
        .where(
            RefreshToken.id == session_id,
            RefreshToken.user_id == user_id,
        )
        .execution_options(synchronize_session="fetch")
    )
    session.flush()
    logger.debug("Refresh token deleted: %s (%d row)", session_id, result.rowcount)
    return result.rowcount > 0


def purge_expired_or_revoked(*, session: Session) -> int:
    """Maintenance sweep. Idempotent: a second run deletes nothing."""
    result = session.execute(
        delete(RefreshToken)
        .where(
            or_(
                RefreshToken.expires_at < utcnow(),
                RefreshToken.revoked_at.is_not(None),
            )
        )
        .execution_options(synchronize_session="fetch")
    )
    session.flush()
    logger.info("Cleaned up %d expired or revoked refresh tokens", result.rowcount)
    return result.rowcount
