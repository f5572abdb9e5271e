"""
cache/store.py -- Ephemeral secret store: string values with per-key TTL.

Holds one-time codes, magic-link records, attempt counters, block flags and
rate-limit windows. Each owner writes under its own prefix and never touches
another's keys:

  otp:{identifier}                    OTP record (auth/otp.py)
  blocked:{identifier}                OTP lockout flag (auth/otp.py)
  magic:{token}                       magic-link record (auth/magic_link.py)
  ratelimit:{purpose}:{identifier}    fixed-window counter (auth/ratelimit.py)

Callers depend on the SecretStore protocol; the concrete
backend is chosen once at startup by create_secret_store():

  REDIS_URL set   -> RedisSecretStore (cache/redis_store.py), shared by all
                     application instances.
  REDIS_URL empty -> MemorySecretStore, process-local. Single-instance
                     deployments only: state is not shared between workers.

Both backends must be observably identical: a key is absent once its TTL has
elapsed, incr() fixes the window expiry on the increment that creates the
key, and replace() is a compare-and-set that keeps the remaining TTL.

Usage:
    store = create_secret_store(settings)
    store.set("otp:+15551234567", '{"code": "482913", "attempts": 0}', ttl=300)
    store.get("otp:+15551234567")      # returns str or None
    store.purge_expired()              # memory backend only; call periodically
    store.close()
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("fieldday.store")


@runtime_checkable
class SecretStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ttl: float) -> None: ...

    def delete(self, key: str) -> None: ...

    def ttl_remaining(self, key: str) -> Optional[float]: ...

    def incr(self, key: str, window: float) -> tuple[int, float]: ...

    def replace(self, key: str, expected: str, value: str) -> bool: ...

    def close(self) -> None: ...


class MemorySecretStore:
    """In-process SecretStore backed by a dict and one coarse lock.

    Expiry is lazy: an expired entry is dropped the next time it is touched,
    and purge_expired() sweeps the rest. The clock is injectable so tests can
    move time forward without sleeping; it must be monotonic.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[str, float]] = {}
        self._closed = False

    def _live(self, key: str, now: float) -> Optional[tuple[str, float]]:
        # Caller holds self._lock.
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry[1] <= now:
            del self._entries[key]
            return None
        return entry

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key, self._clock())
        return entry[0] if entry is not None else None

    def set(self, key: str, value: str, ttl: float) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def ttl_remaining(self, key: str) -> Optional[float]:
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
        return entry[1] - now if entry is not None else None

    def incr(self, key: str, window: float) -> tuple[int, float]:
        """Increment the integer at key. The first increment starts the window."""
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None:
                count, expires_at = 1, now + window
            else:
                count, expires_at = int(entry[0]) + 1, entry[1]
            self._entries[key] = (str(count), expires_at)
        return count, expires_at - now

    def replace(self, key: str, expected: str, value: str) -> bool:
        with self._lock:
            entry = self._live(key, self._clock())
            if entry is None or entry[0] != expected:
                return False
            self._entries[key] = (value, entry[1])
        return True

    def purge_expired(self) -> int:
        """Delete all expired entries. Returns number of entries removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, (_, expires_at) in self._entries.items() if expires_at <= now]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def close(self) -> None:
        with self._lock:
            self._entries.clear()
            self._closed = True


def create_secret_store(settings: Settings) -> SecretStore:
    """Return the backend selected by configuration: Redis if REDIS_URL is set, else memory."""
    if settings.redis_url:
        from cache.redis_store import RedisSecretStore

        return RedisSecretStore.from_url(settings.redis_url)
    logger.warning("REDIS_URL not set -- using in-memory secret store (single instance only)")
    return MemorySecretStore()
