"""
services/captcha_service.py — In-memory image CAPTCHA challenges.

A challenge is (id, lower-cased answer, expiry). Challenges are single use:
a correct answer evicts the entry, a wrong answer leaves it in place so the
user can retry until it expires.

The store is owned by a CaptchaService instance that the app factory puts
in app.extensions; there is no module-level state. Expired entries are
evicted lazily by verify() and periodically by a sweeper thread started
with start() and stopped with close().

Clock: time.monotonic by default, so wall-clock jumps never extend or cut
short a challenge. Tests inject a fake clock.
"""

from __future__ import annotations

import base64
import logging
import secrets
import string
import threading
import time
from dataclasses import dataclass
from typing import Callable

from captcha.image import ImageCaptcha

logger = logging.getLogger(__name__)

# Characters that are easily confused with one another are never used.
CONFUSABLE_CHARS = "0o1ilI"
ALPHABET = "".join(
    c for c in string.ascii_letters + string.digits if c not in CONFUSABLE_CHARS
)

DATA_URL_PREFIX = "data:image/png;base64,"


@dataclass
class _Challenge:
    answer: str
    expires_at: float


class CaptchaService:

    def __init__(
            self,
            ttl_seconds: int = 300,
            length: int = 4,
            width: int = 160,
            height: int = 60,
            sweep_interval: float = 60,
            renderer: Callable[[str], bytes] | None = None,
            clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.length = length
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._renderer = renderer or _ImageRenderer(width=width, height=height)

        self._store: dict[str, _Challenge] = {}
        self._lock = threading.Lock()

        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

    @classmethod
    def from_config(cls, config) -> "CaptchaService":
        return cls(
            ttl_seconds=int(config.get("CAPTCHA_TTL_SECONDS", 300)),
            length=int(config.get("CAPTCHA_LENGTH", 4)),
            width=int(config.get("CAPTCHA_WIDTH", 160)),
            height=int(config.get("CAPTCHA_HEIGHT", 60)),
            sweep_interval=float(config.get("CAPTCHA_SWEEP_INTERVAL", 60)),
        )

    # ── Challenges ─────────────────────────────────────────────────────────

    def generate(self) -> dict:
        """
        Creates a challenge and returns {"id", "dataUrl"}.

        The answer itself never leaves the server; the client only gets the
        rendered PNG as a base64 data URL.
        """
        text = "".join(secrets.choice(ALPHABET) for _ in range(self.length))
        image = self._renderer(text)

        challenge_id = secrets.token_urlsafe(12)
        with self._lock:
            self._store[challenge_id] = _Challenge(
                answer=text.lower(),
                expires_at=self._clock() + self.ttl_seconds,
            )

        logger.debug("CAPTCHA generated: %s", challenge_id)
        return {
            "id": challenge_id,
            "dataUrl": DATA_URL_PREFIX + base64.b64encode(image).decode("ascii"),
        }

    def verify(self, challenge_id: str, candidate: str) -> bool:
        """
        Checks `candidate` against the stored answer, case-insensitively.

        missing -> False; expired -> evicted, False; wrong -> False (kept);
        right -> evicted, True. Check and eviction happen under one lock
        acquisition so a challenge can be redeemed at most once.
        """
        if not challenge_id or candidate is None:
            return False

        with self._lock:
            challenge = self._store.get(challenge_id)
            if challenge is None:
                logger.debug("CAPTCHA not found: %s", challenge_id)
                return False

            if challenge.expires_at < self._clock():
                del self._store[challenge_id]
                logger.debug("CAPTCHA expired: %s", challenge_id)
                return False

            if challenge.answer != candidate.lower():
                logger.debug("CAPTCHA verification failed: %s", challenge_id)
                return False

            del self._store[challenge_id]

        logger.debug("CAPTCHA verified: %s", challenge_id)
        return True

    def sweep(self) -> int:
        """Evicts every expired challenge; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [cid for cid, c in list(self._store.items()) if c.expires_at < now]
            for cid in expired:
                del self._store[cid]

        if expired:
            logger.debug("CAPTCHA sweep evicted %d challenges", len(expired))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def active_count(self) -> int:
        with self._lock:
            return len(self._store)

    # ── Lifecycle ──────────────────────────────────────────────────────────

    def start(self) -> None:
        """Starts the background sweeper. No-op when sweep_interval <= 0."""
        if self.sweep_interval <= 0 or self._sweeper is not None:
            return

        self._stop.clear()
        self._sweeper = threading.Thread(
            target=self._run_sweeper,
            name="captcha-sweeper",
            daemon=True,
        )
        self._sweeper.start()

    def close(self) -> None:
        """Stops the sweeper (if running) and drops every challenge."""
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None
        self.clear()

    def _run_sweeper(self) -> None:
        while not self._stop.wait(self.sweep_interval):
            try:
                self.sweep()
            except Exception:  # noqa: BLE001
                logger.exception("CAPTCHA sweep failed")


class _ImageRenderer:
    """Renders challenge text to PNG bytes with the `captcha` package."""

    def __init__(self, width: int, height: int) -> None:
        self._image = ImageCaptcha(width=width, height=height)

    def __call__(self, text: str) -> bytes:
        return self._image.generate(text, format="png").getvalue()
