"""
api/limiter.py -- Shared slowapi rate limiter instance (per client IP).

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same counter
store. If this were instantiated in each module separately, each module would
get its own isolated counter and rate limits would never trigger.

This is the coarse per-IP guard. The per-identifier limits that the auth
flows depend on live in auth/ratelimit.py and use the shared SecretStore.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def request_limit() -> str:
    """Per-IP limit for public auth endpoints, read lazily so tests can configure it."""
    return get_settings().request_rate_limit
