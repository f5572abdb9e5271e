"""
cache/redis_store.py -- Redis-backed SecretStore.

TTLs are stored with millisecond precision (SET PX / PTTL) so the observable
behaviour matches MemorySecretStore, which works in float seconds.

Atomicity: incr() and replace() run as Lua scripts. Redis executes a script
without interleaving other commands, so concurrent requests for the same
identifier cannot lose an update between the read and the write. A plain
MULTI of INCR + EXPIRE would re-arm the expiry on every call and let a steady
stream of requests keep the window open forever.

replace() relies on SET ... KEEPTTL (Redis >= 6.0).
"""

from __future__ import annotations

import logging
from typing import Optional

import redis
from redis.exceptions import RedisError

logger = logging.getLogger("fieldday.store")

# KEYS[1] = counter key, ARGV[1] = window in ms. Returns {count, pttl}.
_INCR_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
end
return {count, redis.call('PTTL', KEYS[1])}
"""

# KEYS[1] = key, ARGV[1] = expected value, ARGV[2] = new value. Returns 1 on swap.
_REPLACE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    redis.call('SET', KEYS[1], ARGV[2], 'KEEPTTL')
    return 1
end
return 0
"""


def _ms(seconds: float) -> int:
    return max(1, int(seconds * 1000))


class RedisSecretStore:
    """SecretStore on a synchronous redis.Redis client with decode_responses=True.

    Usage:
        store = RedisSecretStore.from_url("redis://localhost:6379/0")
        store.set("blocked:+15551234567", "1", ttl=900)
        store.close()
    """

    def __init__(self, client: redis.Redis) -> None:
        self._client = client
        self._incr = client.register_script(_INCR_SCRIPT)
        self._replace = client.register_script(_REPLACE_SCRIPT)

    @classmethod
    def from_url(cls, redis_url: str) -> RedisSecretStore:
        """Connect and ping. Raises RedisError if the server is unreachable.

        Startup must fail loudly here: silently falling back to the memory
        store in a multi-instance deployment would split rate-limit state.
        """
        client = redis.Redis.from_url(redis_url, decode_responses=True)
        try:
            client.ping()
        except RedisError as e:
            logger.error("Redis connection failed (%s): %s", type(e).__name__, e)
            raise
        logger.info("Redis secret store connected (%s)", redis_url.split("@")[-1])  # mask credentials
        return cls(client)

    def get(self, key: str) -> Optional[str]:
        return self._client.get(key)

    def set(self, key: str, value: str, ttl: float) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._client.set(key, value, px=_ms(ttl))

    def delete(self, key: str) -> None:
        self._client.delete(key)

    def ttl_remaining(self, key: str) -> Optional[float]:
        pttl = self._client.pttl(key)
        # -2: key does not exist. -1: key has no expiry, which this store never writes.
        if pttl is None or pttl < 0:
            return None
        return pttl / 1000

    def incr(self, key: str, window: float) -> tuple[int, float]:
        count, pttl = self._incr(keys=[key], args=[_ms(window)])
        return int(count), max(int(pttl), 0) / 1000

    def replace(self, key: str, expected: str, value: str) -> bool:
        return bool(self._replace(keys=[key], args=[expected, value]))

    def close(self) -> None:
        self._client.close()
