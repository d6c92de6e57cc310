"""
utils/passwords.py — Password policy, strength scoring and bcrypt hashing.

Everything here is a plain function over plain values (no Flask, no DB) so it
can be unit-tested directly. Services build the policy from app config with
PasswordPolicy.from_config(current_app.config).

bcrypt only looks at the first 72 bytes of its input and current releases
refuse longer inputs outright, so the policy always rejects such passwords
and verify_password treats them as a mismatch.
"""

from __future__ import annotations

import re
import secrets
from collections.abc import Mapping
from dataclasses import dataclass, field

import bcrypt


BCRYPT_MAX_BYTES = 72

SPECIAL_CHARS = '!@#$%^&*(),.?":{}|<>'
_SPECIAL_RE = re.compile(r'[!@#$%^&*(),.?":{}|<>]')
_UPPER_RE   = re.compile(r"[A-Z]")
_LOWER_RE   = re.compile(r"[a-z]")
_DIGIT_RE   = re.compile(r"\d")


@dataclass(frozen=True)
class PasswordPolicy:
    min_length: int = 8
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_number: bool = True
    require_special_char: bool = True

    @classmethod
    def from_config(cls, config: Mapping) -> "PasswordPolicy":
        return cls(
            min_length=int(config.get("PASSWORD_MIN_LENGTH", 8)),
            require_uppercase=bool(config.get("PASSWORD_REQUIRE_UPPERCASE", True)),
            require_lowercase=bool(config.get("PASSWORD_REQUIRE_LOWERCASE", True)),
            require_number=bool(config.get("PASSWORD_REQUIRE_NUMBER", True)),
            require_special_char=bool(config.get("PASSWORD_REQUIRE_SPECIAL_CHAR", True)),
        )


@dataclass(frozen=True)
class PasswordValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)
    strength: str = "weak"

    def to_dict(self) -> dict:
        return {"valid": self.valid, "errors": list(self.errors), "strength": self.strength}


def validate_password(password: str, policy: PasswordPolicy) -> PasswordValidationResult:
    """
    Checks `password` against every rule in `policy`.

    All violations are collected so the client can show the full list at
    once. Pure: the same password and policy always give the same result.
    """
    errors: list[str] = []

    if len(password) < policy.min_length:
        errors.append(f"Password must be at least {policy.min_length} characters long.")

    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        errors.append(f"Password must be at most {BCRYPT_MAX_BYTES} bytes long.")

    if policy.require_uppercase and not _UPPER_RE.search(password):
        errors.append("Password must contain at least one uppercase letter.")

    if policy.require_lowercase and not _LOWER_RE.search(password):
        errors.append("Password must contain at least one lowercase letter.")

    if policy.require_number and not _DIGIT_RE.search(password):
        errors.append("Password must contain at least one number.")

    if policy.require_special_char and not _SPECIAL_RE.search(password):
        errors.append(
            f"Password must contain at least one special character ({SPECIAL_CHARS})."
        )

    return PasswordValidationResult(
        valid=not errors,
        errors=errors,
        strength=calculate_strength(password),
    )


def calculate_strength(password: str) -> str:
    """
    Heuristic score: one point per length tier (8/12/16) and one per
    character class present. <=3 weak, <=5 medium, otherwise strong.
    """
    score = 0

    if len(password) >= 8:
        score += 1
    if len(password) >= 12:
        score += 1
    if len(password) >= 16:
        score += 1

    for pattern in (_LOWER_RE, _UPPER_RE, _DIGIT_RE, _SPECIAL_RE):
        if pattern.search(password):
            score += 1

    if score <= 3:
        return "weak"
    if score <= 5:
        return "medium"
    return "strong"


def hash_password(password: str, rounds: int = 12) -> str:
    """bcrypt hash with a fresh salt. Raw password is never stored, never logged."""
    return bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(rounds=rounds),
    ).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """
    Constant-time comparison via bcrypt.checkpw.

    Over-long passwords and malformed stored hashes are a mismatch, not an
    error: login must answer INVALID_CREDENTIALS either way.
    """
    encoded = password.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, password_hash.encode("utf-8"))
    except ValueError:
        return False


def generate_random_password(length: int = 16) -> str:
    """Random password containing at least one char of every class."""
    uppercase = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    lowercase = "abcdefghijklmnopqrstuvwxyz"
    digits    = "0123456789"
    special   = "!@#$%^&*()"
    alphabet  = uppercase + lowercase + digits + special

    length = max(length, 4)
    chars = [
        secrets.choice(uppercase),
        secrets.choice(lowercase),
        secrets.choice(digits),
        secrets.choice(special),
    ]
    chars.extend(secrets.choice(alphabet) for _ in range(length - len(chars)))

    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)
