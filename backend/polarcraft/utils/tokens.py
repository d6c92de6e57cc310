"""
utils/tokens.py — JWT codec for access and refresh tokens.

Token design:
  - Access token:  HS256, signed with JWT_ACCESS_SECRET,  TTL JWT_ACCESS_EXPIRY
  - Refresh token: HS256, signed with JWT_REFRESH_SECRET, TTL JWT_REFRESH_EXPIRY
  - Both carry sub (user id), username, role, sid (session id) and jti; only
    the `type` claim and the signing secret differ.

The refresh token is persisted only as a SHA-256 hash (see session_store).
decode_unverified() is for reading expiry of a token we just minted. It must
never be used to decide whether a token is trusted.
"""

from __future__ import annotations

import re
import secrets
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt


ACCESS = "access"
REFRESH = "refresh"

DEFAULT_EXPIRES_IN = 900

_EXPIRY_RE = re.compile(r"^(\d+)([smhd])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 60 * 60, "d": 60 * 60 * 24}


class InvalidOrExpiredToken(Exception):
    """Signature mismatch, malformed token, bad claims, or expiry."""


class ExpiredToken(InvalidOrExpiredToken):
    """Token was well-formed and correctly signed but its exp has passed."""


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int


def parse_expiry_to_seconds(expiry: str, default: int = DEFAULT_EXPIRES_IN) -> int:
    """'15m' -> 900, '7d' -> 604800. Anything not matching ^\\d+[smhd]$ -> default."""
    match = _EXPIRY_RE.match(expiry or "")
    if not match:
        return default
    return int(match.group(1)) * _UNIT_SECONDS[match.group(2)]


def extract_bearer(header_value: str | None) -> str | None:
    """
    Returns the token from an exact 'Bearer <token>' header, else None.

    Any other shape (missing, one part, three parts, other scheme) yields
    None rather than raising; the caller decides what that means.
    """
    if not header_value:
        return None
    parts = header_value.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None
    return parts[1]


def decode_unverified(token: str) -> dict[str, Any] | None:
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return None


def token_expiry(token: str) -> datetime | None:
    decoded = decode_unverified(token)
    if not decoded or "exp" not in decoded:
        return None
    return datetime.fromtimestamp(decoded["exp"], tz=timezone.utc)


class TokenCodec:

    def __init__(
            self,
            access_secret: str,
            refresh_secret: str,
            access_expiry: str = "15m",
            refresh_expiry: str = "7d",
            algorithm: str = "HS256",
    ) -> None:
        self.access_secret = access_secret
        self.refresh_secret = refresh_secret
        self.access_expiry = access_expiry
        self.refresh_expiry = refresh_expiry
        self.algorithm = algorithm

    @classmethod
    def from_config(cls, config: Mapping) -> "TokenCodec":
        return cls(
            access_secret=config["JWT_ACCESS_SECRET"],
            refresh_secret=config["JWT_REFRESH_SECRET"],
            access_expiry=config.get("JWT_ACCESS_EXPIRY", "15m"),
            refresh_expiry=config.get("JWT_REFRESH_EXPIRY", "7d"),
            algorithm=config.get("JWT_ALGORITHM", "HS256"),
        )

    @property
    def access_ttl(self) -> int:
        return parse_expiry_to_seconds(self.access_expiry)

    @property
    def refresh_ttl(self) -> int:
        return parse_expiry_to_seconds(self.refresh_expiry, default=7 * 24 * 60 * 60)

    def issue(self, claims: Mapping[str, Any], secret: str, ttl_seconds: int) -> str:
        now = datetime.now(timezone.utc)
        payload = dict(claims)
        payload["iat"] = now
        payload["exp"] = now + timedelta(seconds=ttl_seconds)
        # Guarantees each issued token is unique even if minted in the same second.
        payload.setdefault("jti", secrets.token_hex(8))
        return jwt.encode(payload, secret, algorithm=self.algorithm)

    def verify(self, token: str, secret: str, verify_exp: bool = True) -> dict[str, Any]:
        """
        Checks signature and required claims. With verify_exp=False a token
        past its exp still decodes, but only if the signature is good.
        """
        try:
            return jwt.decode(
                token,
                secret,
                algorithms=[self.algorithm],
                options={"require": ["exp", "iat", "sub"], "verify_exp": verify_exp},
            )
        except jwt.ExpiredSignatureError as exc:
            raise ExpiredToken(str(exc)) from exc
        except jwt.InvalidTokenError as exc:
            raise InvalidOrExpiredToken(str(exc)) from exc

    def issue_pair(self, claims: Mapping[str, Any]) -> TokenPair:
        base = {k: v for k, v in claims.items() if k not in ("type", "iat", "exp", "jti")}
        access_token = self.issue({**base, "type": ACCESS}, self.access_secret, self.access_ttl)
        refresh_token = self.issue({**base, "type": REFRESH}, self.refresh_secret, self.refresh_ttl)
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.access_ttl,
        )

    def verify_access(self, token: str) -> dict[str, Any]:
        return self.verify(token, self.access_secret)

    def verify_refresh(self, token: str, verify_exp: bool = True) -> dict[str, Any]:
        return self.verify(token, self.refresh_secret, verify_exp=verify_exp)
