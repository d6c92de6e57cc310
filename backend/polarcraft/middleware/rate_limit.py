"""
middleware/rate_limit.py — Fixed-window rate limiting.

Counters live in a `limits` storage (memory:// by default, redis:// for a
shared store across processes) and are incremented atomically per key by
limits.strategies.FixedWindowRateLimiter.

Guards:
  api             RATELIMIT_API      client IP         (every /api request)
  login           10/minute          IP + username
  register        5/hour             IP
  password_reset  3/hour             IP + username
  captcha         60/minute          IP, failed responses not counted
  refresh         20/minute          IP

A rejected request never reaches the view: RATE_LIMIT_EXCEEDED (429) with a
Retry-After header.
"""

from __future__ import annotations

import functools
import logging
import math
import time
from typing import Callable

from flask import Flask, current_app, g, make_response, request
from limits import parse
from limits.storage import storage_from_string
from limits.strategies import FixedWindowRateLimiter

from backend.polarcraft.errors import AppError, ErrorCode
from backend.polarcraft.extensions import RATE_LIMITER_KEY, get_rate_limiter

logger = logging.getLogger(__name__)

DEFAULT_LIMITS: dict[str, str] = {
    "api":            "100/15 minutes",
    "login":          "10/minute",
    "register":       "5/hour",
    "password_reset": "3/hour",
    "captcha":        "60/minute",
    "refresh":        "20/minute",
}

# Guards keyed on the submitted username as well as the client IP.
_USERNAME_KEYED = frozenset({"login", "password_reset"})

# Guards where only successful (status < 400) responses use up the budget.
_SKIP_FAILED = frozenset({"captcha"})


class RateLimiter:

    def __init__(
            self,
            storage_uri: str = "memory://",
            enabled: bool = True,
            limits: dict[str, str] | None = None,
    ) -> None:
        self.enabled = enabled
        self.storage_uri = storage_uri
        self._storage = storage_from_string(storage_uri)
        self._strategy = FixedWindowRateLimiter(self._storage)
        self._items = {
            name: parse(value)
            for name, value in {**DEFAULT_LIMITS, **(limits or {})}.items()
        }

    @classmethod
    def from_config(cls, config) -> "RateLimiter":
        return cls(
            storage_uri=config.get("RATELIMIT_STORAGE_URI", "memory://"),
            enabled=bool(config.get("RATELIMIT_ENABLED", True)),
            limits={"api": config.get("RATELIMIT_API", DEFAULT_LIMITS["api"])},
        )

    def limit_for(self, guard: str):
        try:
            return self._items[guard]
        except KeyError:
            raise ValueError(f"Unknown rate limit guard: {guard!r}") from None

    def hit(self, guard: str, key: str) -> bool:
        """Consumes one unit; False when the window is already exhausted."""
        return self._strategy.hit(self.limit_for(guard), guard, key)

    def test(self, guard: str, key: str) -> bool:
        """True when one more hit would still be allowed. Consumes nothing."""
        return self._strategy.test(self.limit_for(guard), guard, key)

    def retry_after(self, guard: str, key: str) -> int:
        """Whole seconds until the current window for `key` resets (at least 1)."""
        stats = self._strategy.get_window_stats(self.limit_for(guard), guard, key)
        return max(1, math.ceil(stats.reset_time - time.time()))

    def reset(self) -> None:
        self._storage.reset()

    def close(self) -> None:
        self.reset()


# ── Request keys ───────────────────────────────────────────────────────────

def client_ip() -> str:
    """request.remote_addr; ProxyFix rewrites it from X-Forwarded-For when enabled."""
    return request.remote_addr or "unknown"


def _submitted_username() -> str:
    body = request.get_json(silent=True)
    if isinstance(body, dict):
        username = body.get("username")
        if isinstance(username, str):
            return username.strip().lower()
    return ""


def key_for(guard: str) -> str:
    if guard in _USERNAME_KEYED:
        return f"{client_ip()}:{_submitted_username()}"
    return client_ip()


def _reject(limiter: RateLimiter, guard: str, key: str) -> None:
    g.rate_limit_retry_after = limiter.retry_after(guard, key)
    logger.warning(
        "Rate limit exceeded: guard=%s ip=%s method=%s path=%s",
        guard,
        client_ip(),
        request.method,
        request.path,
    )
    raise AppError(ErrorCode.RATE_LIMIT_EXCEEDED, "Too many requests. Please try again later.")


# ── Decorator / app wiring ─────────────────────────────────────────────────

def rate_limit(guard: str) -> Callable:
    """
    Route decorator applying the named guard.

    Usage:
        @auth_bp.route("/login", methods=["POST"])
        @rate_limit("login")
        def login():
            ...
    """
    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def wrapper(*args, **kwargs):
            limiter = get_rate_limiter()
            if not limiter.enabled:
                return f(*args, **kwargs)

            key = key_for(guard)

            if guard in _SKIP_FAILED:
                if not limiter.test(guard, key):
                    _reject(limiter, guard, key)
                response = make_response(f(*args, **kwargs))
                if response.status_code < 400:
                    limiter.hit(guard, key)
                return response

            if not limiter.hit(guard, key):
                _reject(limiter, guard, key)
            return f(*args, **kwargs)

        return wrapper

    return decorator


def configure_rate_limits(app: Flask) -> None:
    """Applies the `api` guard to every /api request and emits Retry-After on 429s."""

    @app.before_request
    def _api_rate_limit():
        if not request.path.startswith("/api"):
            return
        limiter = current_app.extensions.get(RATE_LIMITER_KEY)
        if limiter is None or not limiter.enabled:
            return
        key = key_for("api")
        if not limiter.hit("api", key):
            _reject(limiter, "api", key)

    @app.after_request
    def _retry_after_header(resp):
        retry_after = g.pop("rate_limit_retry_after", None)
        if retry_after is not None and resp.status_code == 429:
            resp.headers["Retry-After"] = str(retry_after)
        return resp


__all__ = ["RateLimiter", "rate_limit", "configure_rate_limits", "client_ip"]
