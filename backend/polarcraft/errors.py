"""
errors.py — AppError base class and error code registry.

Every error returned by the PolarCraft auth API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

The registry is closed: each code has exactly one HTTP status in
HTTP_STATUS_BY_CODE, and AppError refuses codes that are not registered.
A handful of codes (reset-token failures) are raised with an explicit
status override because the same kind surfaces as 400 on a form post and
401 on a bearer check.

Never conflate 401 (unauthenticated) with 403 (authenticated, not allowed).
"""

from __future__ import annotations

from typing import Any


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int | None = None,
            details: Any = None,
    ) -> None:
        if code not in HTTP_STATUS_BY_CODE:
            raise ValueError(f"Unregistered error code: {code!r}")
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status if http_status is not None else HTTP_STATUS_BY_CODE[code]
        self.details     = details

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.details is not None:
            payload["details"] = self.details
        return {"success": False, "error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by kind. These are the string values sent in the API response
# and are a contract with the frontend; do not rename them.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Validation (400) ───────────────────────────────────────────────────
    VALIDATION_ERROR        = "VALIDATION_ERROR"
    WEAK_PASSWORD           = "WEAK_PASSWORD"
    MISSING_REFRESH_TOKEN   = "MISSING_REFRESH_TOKEN"
    INVALID_CAPTCHA         = "INVALID_CAPTCHA"

    # ── Authentication (401) ───────────────────────────────────────────────
    UNAUTHORIZED            = "UNAUTHORIZED"
    INVALID_CREDENTIALS     = "INVALID_CREDENTIALS"
    INVALID_TOKEN           = "INVALID_TOKEN"
    TOKEN_EXPIRED           = "TOKEN_EXPIRED"

    # ── Authorization (403) ────────────────────────────────────────────────
    FORBIDDEN               = "FORBIDDEN"
    USER_INACTIVE           = "USER_INACTIVE"
    CSRF_TOKEN_MISSING      = "CSRF_TOKEN_MISSING"
    CSRF_TOKEN_INVALID      = "CSRF_TOKEN_INVALID"

    # ── Not found (404) / method (405) ─────────────────────────────────────
    NOT_FOUND               = "NOT_FOUND"
    USER_NOT_FOUND          = "USER_NOT_FOUND"
    SESSION_NOT_FOUND       = "SESSION_NOT_FOUND"
    METHOD_NOT_ALLOWED      = "METHOD_NOT_ALLOWED"

    # ── Conflict (409) ─────────────────────────────────────────────────────
    USER_ALREADY_EXISTS     = "USER_ALREADY_EXISTS"

    # ── Throttling (429) ───────────────────────────────────────────────────
    RATE_LIMIT_EXCEEDED     = "RATE_LIMIT_EXCEEDED"

    # ── System (500) ───────────────────────────────────────────────────────
    DATABASE_ERROR          = "DATABASE_ERROR"
    INTERNAL_ERROR          = "INTERNAL_ERROR"


HTTP_STATUS_BY_CODE: dict[str, int] = {
    ErrorCode.VALIDATION_ERROR:      400,
    ErrorCode.WEAK_PASSWORD:         400,
    ErrorCode.MISSING_REFRESH_TOKEN: 400,
    ErrorCode.INVALID_CAPTCHA:       400,
    ErrorCode.UNAUTHORIZED:          401,
    ErrorCode.INVALID_CREDENTIALS:   401,
    ErrorCode.INVALID_TOKEN:         401,
    ErrorCode.TOKEN_EXPIRED:         401,
    ErrorCode.FORBIDDEN:             403,
    ErrorCode.USER_INACTIVE:         403,
    ErrorCode.CSRF_TOKEN_MISSING:    403,
    ErrorCode.CSRF_TOKEN_INVALID:    403,
    ErrorCode.NOT_FOUND:             404,
    ErrorCode.USER_NOT_FOUND:        404,
    ErrorCode.SESSION_NOT_FOUND:     404,
    ErrorCode.METHOD_NOT_ALLOWED:    405,
    ErrorCode.USER_ALREADY_EXISTS:   409,
    ErrorCode.RATE_LIMIT_EXCEEDED:   429,
    ErrorCode.DATABASE_ERROR:        500,
    ErrorCode.INTERNAL_ERROR:        500,
}
