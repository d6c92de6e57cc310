"""
models/refresh_token.py — RefreshToken table definition (one row per session).

No business logic. No imports from services or routes.

A row is an active session iff revoked_at IS NULL AND expires_at > now.
Rows are soft-revoked on logout, rotation, password change and session
termination, and physically removed by the cleanup sweep.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.polarcraft.extensions import db


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefreshToken(db.Model):
    __tablename__ = "refresh_tokens"

    # Doubles as the session id exposed by /users/sessions and carried in
    # the `sid` claim of both tokens of a pair.
    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )

    # ON DELETE CASCADE: token is destroyed when its owning user is deleted.
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # SHA-256 hex digest of the raw refresh token, never the token itself.
    # session_store.hash_token() computes it before any DB read/write, so a
    # compromised DB does not expose usable refresh tokens.
    token_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
    )

    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)

    device_info: Mapped[str | None] = mapped_column(String(512), nullable=True)

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    revoked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="refresh_tokens",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<RefreshToken id={self.id} "
            f"user_id={self.user_id} "
            f"revoked_at={self.revoked_at}>"
        )
