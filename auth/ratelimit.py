"""
auth/ratelimit.py -- Fixed-window rate limiting per (purpose, identifier).

Algorithm: one counter per "ratelimit:{purpose}:{identifier}" key in the
SecretStore. The "ratelimit:" prefix keeps counters out of the managers' own
keyspace (otp:, blocked:, magic:), so a purpose named "otp" never touches the
live code stored under otp:{identifier}.

Every call increments it atomically (SecretStore.incr). The increment that
creates the key also fixes its expiry at now + window, so the window length
is bounded no matter how fast requests arrive. Calls over the limit still
increment, which keeps `remaining` at 0 until the window resets.

Purposes in use:
  otp    -- OTP issuance per phone/email          (default 3 / 60s)
  magic  -- magic-link issuance per email          (default 3 / 60s)
  login  -- verification attempts per identifier   (default 5 / 900s)

This complements slowapi (api/limiter.py), which limits per client IP. An
attacker rotating IPs still hits the identifier limit; an attacker rotating
identifiers from one IP still hits the IP limit.

Layer rule: no imports from api/. cache/ is used only through the
SecretStore protocol.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from auth.models import RateLimitResult

if TYPE_CHECKING:
    from cache.store import SecretStore
    from core.config import Settings

logger = logging.getLogger("fieldday.ratelimit")

KEY_PREFIX = "ratelimit"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RateLimiter:
    """Fixed-window counter for one purpose.

    Usage:
        limiter = RateLimiter(store, "otp", max_attempts=3, window_seconds=60)
        result = limiter.check_limit("+15551234567")
        if not result.allowed: ...
    """

    def __init__(
        self,
        store: SecretStore,
        purpose: str,
        max_attempts: int,
        window_seconds: int,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        if max_attempts < 1 or window_seconds < 1:
            raise ValueError("max_attempts and window_seconds must be positive")
        self.purpose = purpose
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._store = store
        self._now = now

    def _key(self, identifier: str) -> str:
        return f"{KEY_PREFIX}:{self.purpose}:{identifier}"

    def check_limit(self, identifier: str) -> RateLimitResult:
        """Count this request against the window and report whether it is allowed."""
        count, ttl = self._store.incr(self._key(identifier), self.window_seconds)
        allowed = count <= self.max_attempts
        if not allowed:
            logger.info("Rate limit exceeded purpose=%s count=%d", self.purpose, count)
        return RateLimitResult(
            allowed=allowed,
            remaining=max(0, self.max_attempts - count),
            reset_at=self._now() + timedelta(seconds=ttl),
        )

    def reset(self, identifier: str) -> None:
        """Clear the counter unconditionally. Administrative override only."""
        self._store.delete(self._key(identifier))
        logger.info("Rate limit reset purpose=%s", self.purpose)


def build_rate_limiters(store: SecretStore, settings: Settings) -> dict[str, RateLimiter]:
    """Return the otp / magic / login limiters configured in Settings, keyed by purpose."""
    return {
        "otp": RateLimiter(store, "otp", settings.otp_rate_limit, settings.otp_rate_window_seconds),
        "magic": RateLimiter(
            store, "magic", settings.magic_link_rate_limit, settings.magic_link_rate_window_seconds
        ),
        "login": RateLimiter(store, "login", settings.login_rate_limit, settings.login_rate_window_seconds),
    }
