"""
auth/otp.py -- Numeric one-time codes: issue, validate, lock out.

State per identifier (phone or email):

    NONE --generate--> ISSUED --validate ok--> NONE
                         |
                         +--validate wrong--> ISSUED (attempts + 1)
                         |
                         +--attempts reach max--> BLOCKED --block TTL--> NONE

Store keys:
  otp:{identifier}      OtpRecord JSON, TTL = otp_ttl_seconds (5 min)
  blocked:{identifier}  "1", TTL = otp_block_seconds (15 min)

Security design decisions:
  Codes come from secrets.randbelow (CSPRNG), uniformly in 100000-999999.
  Comparison uses hmac.compare_digest so response time does not leak how
  many leading digits matched.

  Attempt increments are compare-and-set writes (SecretStore.replace), so two
  concurrent wrong guesses cannot both be counted as the first attempt. A
  correct code is consumed the same way, so it validates exactly once even if
  submitted twice concurrently.

  Block and rate-limit messages are identical for registered and unknown
  identifiers -- nothing here consults the user directory.

Known gap: generate() and validate() for the same identifier are not
serialised against each other. A generate that lands between a validate's
read and write replaces the record, the validate's compare-and-set then fails
and it re-reads the fresh record.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from collections.abc import Callable
from typing import TYPE_CHECKING

from auth.models import AuthError, IssueResult, OtpRecord, OtpValidation

if TYPE_CHECKING:
    from auth.notifier import Notifier
    from auth.ratelimit import RateLimiter
    from cache.store import SecretStore

logger = logging.getLogger("fieldday.otp")

MSG_RATE_LIMITED = "Too many requests. Please try again later."
MSG_BLOCKED_ON_REQUEST = "Too many failed attempts. Please try again later."
MSG_BLOCKED = "Too many failed attempts"
MSG_NOT_FOUND = "OTP expired or not found"

# Written over a matched record before it is deleted; readers treat it as absent.
_CONSUMED = "__consumed__"
# Compare-and-set retries before giving up under contention.
_MAX_CAS_RETRIES = 8


def generate_code() -> str:
    """Return a uniformly random 6-digit code in 100000-999999."""
    return str(100000 + secrets.randbelow(900000))


class OtpManager:
    """Issues and validates one-time codes for phone numbers and email addresses.

    Usage:
        otp = OtpManager(store, notifier, rate_limiter)
        result = otp.generate("+15551234567")
        check = otp.validate("+15551234567", "482913")
    """

    def __init__(
        self,
        store: SecretStore,
        notifier: Notifier,
        rate_limiter: RateLimiter,
        ttl_seconds: int = 5 * 60,
        max_attempts: int = 5,
        block_seconds: int = 15 * 60,
        code_factory: Callable[[], str] = generate_code,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._limiter = rate_limiter
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts
        self.block_seconds = block_seconds
        self._code_factory = code_factory

    @staticmethod
    def _otp_key(identifier: str) -> str:
        return f"otp:{identifier}"

    @staticmethod
    def _block_key(identifier: str) -> str:
        return f"blocked:{identifier}"

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def generate(self, identifier: str) -> IssueResult:
        """Issue a fresh code for identifier, replacing any unconsumed one."""
        if not self._limiter.check_limit(identifier).allowed:
            return IssueResult(success=False, error=AuthError.rate_limited, message=MSG_RATE_LIMITED)

        if self.is_blocked(identifier):
            return IssueResult(success=False, error=AuthError.blocked, message=MSG_BLOCKED_ON_REQUEST)

        code = self._code_factory()
        # Store before delivery: a failed send must not lose a code the user
        # may still receive through a provider-side retry.
        self._store.set(self._otp_key(identifier), OtpRecord(code=code).dumps(), self.ttl_seconds)

        if not self._notifier.send_otp(identifier, code):
            logger.warning("OTP stored but delivery failed")
        return IssueResult(success=True, secret=code)

    # ------------------------------------------------------------------
    # Validate
    # ------------------------------------------------------------------

    def validate(self, identifier: str, code: str) -> OtpValidation:
        """Check code against the live record, counting failures toward a block."""
        if self.is_blocked(identifier):
            return OtpValidation(valid=False, error=AuthError.blocked, message=MSG_BLOCKED)

        key = self._otp_key(identifier)
        for _ in range(_MAX_CAS_RETRIES):
            raw = self._store.get(key)
            if raw is None or raw == _CONSUMED:
                return OtpValidation(valid=False, error=AuthError.not_found_or_expired, message=MSG_NOT_FOUND)

            record = OtpRecord.loads(raw)
            if record.attempts >= self.max_attempts:
                return self._lock_out(identifier)

            if hmac.compare_digest(record.code.encode("utf-8"), code.encode("utf-8")):
                if self._store.replace(key, raw, _CONSUMED):
                    self._store.delete(key)
                    return OtpValidation(valid=True)
                continue

            record.attempts += 1
            if not self._store.replace(key, raw, record.dumps()):
                continue
            if record.attempts >= self.max_attempts:
                return self._lock_out(identifier)
            remaining = self.max_attempts - record.attempts
            return OtpValidation(
                valid=False,
                error=AuthError.invalid_code,
                message=f"Invalid code. {remaining} attempts remaining.",
                attempts_remaining=remaining,
            )

        # Persistent contention on one identifier is itself suspicious.
        logger.warning("OTP validation gave up after %d contended writes", _MAX_CAS_RETRIES)
        return self._lock_out(identifier)

    def is_blocked(self, identifier: str) -> bool:
        return self._store.get(self._block_key(identifier)) is not None

    def clear(self, identifier: str) -> None:
        self._store.delete(self._otp_key(identifier))

    def unblock(self, identifier: str) -> None:
        """Lift a lockout early and discard any live code. Administrative override only."""
        self._store.delete(self._block_key(identifier))
        self.clear(identifier)
        logger.info("OTP block lifted by administrator")

    def _lock_out(self, identifier: str) -> OtpValidation:
        self._store.set(self._block_key(identifier), "1", self.block_seconds)
        self.clear(identifier)
        logger.warning("Identifier blocked after %d failed OTP attempts", self.max_attempts)
        return OtpValidation(valid=False, error=AuthError.blocked, message=MSG_BLOCKED, attempts_remaining=0)
