"""
auth/magic_link.py -- Single-use sign-in links bound to an email address.

Store key magic:{token} holds a MagicLinkRecord JSON for magic_link_ttl_seconds
(15 min). The token is secrets.token_hex(32): 256 bits of entropy, 64 hex
chars, so guessing a live token is computationally infeasible.

Consumption is a compare-and-set (SecretStore.replace) from the unconsumed
record to the consumed one, keeping the remaining TTL. Two concurrent clicks
on the same link cannot both succeed: the loser's write fails and it reports
"Link already used". The consumed record stays until the TTL runs out so
replays keep failing with the same message rather than "not found".

Redirect targets are restricted to server-local paths (open-redirect guard,
same rule as the post-login next= handling in the web layer).
"""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING, Optional

from auth.models import AuthError, IssueResult, MagicLinkRecord, MagicLinkValidation

if TYPE_CHECKING:
    from auth.notifier import Notifier
    from auth.ratelimit import RateLimiter
    from cache.store import SecretStore

logger = logging.getLogger("fieldday.magic_link")

MSG_RATE_LIMITED = "Too many requests. Please try again later."
MSG_NOT_FOUND = "Link expired or not found"
MSG_ALREADY_USED = "Link already used"

VERIFY_PATH = "/api/v1/auth/magic/verify"


def safe_redirect(url: Optional[str]) -> str:
    """Return url if it is a relative path, else "/".

    Accepts "/dashboard" and "/a?b=c"; rejects "https://evil.example",
    "//evil.example" (protocol-relative) and "/\\evil.example" (browsers
    normalise the backslash to a second slash).
    """
    if url and url.startswith("/") and not url.startswith(("//", "/\\")):
        return url
    return "/"


class MagicLinkManager:
    """Issues and consumes magic-link tokens.

    Usage:
        links = MagicLinkManager(store, notifier, rate_limiter, app_url="https://fieldday.app")
        links.generate("a@b.com", "/dashboard")
        links.validate(token)
    """

    def __init__(
        self,
        store: SecretStore,
        notifier: Notifier,
        rate_limiter: RateLimiter,
        app_url: str = "http://localhost:3000",
        ttl_seconds: int = 15 * 60,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._limiter = rate_limiter
        self.app_url = app_url.rstrip("/")
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(token: str) -> str:
        return f"magic:{token}"

    def verification_url(self, token: str) -> str:
        return f"{self.app_url}{VERIFY_PATH}?token={token}"

    def generate(self, email: str, redirect_url: Optional[str] = None) -> IssueResult:
        if not self._limiter.check_limit(email).allowed:
            return IssueResult(success=False, error=AuthError.rate_limited, message=MSG_RATE_LIMITED)

        token = secrets.token_hex(32)
        record = MagicLinkRecord(email=email, redirect_url=safe_redirect(redirect_url))
        self._store.set(self._key(token), record.dumps(), self.ttl_seconds)

        if not self._notifier.send_magic_link(email, self.verification_url(token)):
            logger.warning("Magic link stored but delivery failed")
        return IssueResult(success=True, secret=token)

    def validate(self, token: str) -> MagicLinkValidation:
        key = self._key(token)
        raw = self._store.get(key)
        if raw is None:
            return MagicLinkValidation(valid=False, error=AuthError.not_found_or_expired, message=MSG_NOT_FOUND)

        record = MagicLinkRecord.loads(raw)
        if record.consumed:
            return MagicLinkValidation(valid=False, error=AuthError.already_consumed, message=MSG_ALREADY_USED)

        record.consumed = True
        if not self._store.replace(key, raw, record.dumps()):
            # Either a concurrent validate consumed it first, or it expired
            # between the read and the write.
            if self._store.get(key) is None:
                return MagicLinkValidation(
                    valid=False, error=AuthError.not_found_or_expired, message=MSG_NOT_FOUND
                )
            logger.info("Concurrent magic-link consumption rejected")
            return MagicLinkValidation(valid=False, error=AuthError.already_consumed, message=MSG_ALREADY_USED)

        return MagicLinkValidation(valid=True, email=record.email, redirect_url=record.redirect_url)
