"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond (de)serialising
store records). Managers and the token service do the work; routes map these
onto API models.

Result types: every validation outcome is returned as a frozen result object
carrying an AuthError code and a user-facing message. Only infrastructure
failures (store unreachable, DB errors) propagate as exceptions.

Layer rule: no imports from api/, core/, or cache/.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Role(str, Enum):
    player = "player"
    organizer = "organizer"
    parent = "parent"
    facility = "facility"
    admin = "admin"


class ActingRole(str, Enum):
    """The subset of roles a multi-role principal can operate as per request."""

    player = "player"
    parent = "parent"
    organizer = "organizer"


class AuthError(str, Enum):
    rate_limited = "rate_limited"
    blocked = "blocked"
    not_found_or_expired = "not_found_or_expired"
    already_consumed = "already_consumed"
    invalid_code = "invalid_code"
    token_invalid = "token_invalid"
    unauthenticated = "unauthenticated"
    forbidden = "forbidden"


# ---------------------------------------------------------------------------
# Stored secrets
# ---------------------------------------------------------------------------


@dataclass
class OtpRecord:
    """Live one-time code for an identifier. Stored as JSON under otp:{identifier}."""

    code: str
    attempts: int = 0

    def dumps(self) -> str:
        return json.dumps({"code": self.code, "attempts": self.attempts}, sort_keys=True)

    @classmethod
    def loads(cls, raw: str) -> OtpRecord:
        data = json.loads(raw)
        return cls(code=str(data["code"]), attempts=int(data.get("attempts", 0)))


@dataclass
class MagicLinkRecord:
    """Magic-link state. Stored as JSON under magic:{token}.

    A consumed record stays in the store until its TTL runs out so replays
    are rejected with "already used" rather than "not found".
    """

    email: str
    redirect_url: str = "/"
    consumed: bool = False

    def dumps(self) -> str:
        return json.dumps(
            {"email": self.email, "redirect_url": self.redirect_url, "consumed": self.consumed},
            sort_keys=True,
        )

    @classmethod
    def loads(cls, raw: str) -> MagicLinkRecord:
        data = json.loads(raw)
        return cls(
            email=data["email"],
            redirect_url=data.get("redirect_url") or "/",
            consumed=bool(data.get("consumed", False)),
        )


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: datetime


@dataclass(frozen=True)
class IssueResult:
    """Outcome of OTP or magic-link issuance.

    secret is the generated code/token. It is returned so the caller can
    hand it to tests or an out-of-band channel; HTTP routes never echo it.
    """

    success: bool
    secret: str = ""
    error: AuthError | None = None
    message: str | None = None


@dataclass(frozen=True)
class OtpValidation:
    valid: bool
    error: AuthError | None = None
    message: str | None = None
    attempts_remaining: int | None = None


@dataclass(frozen=True)
class MagicLinkValidation:
    valid: bool
    email: str = ""
    redirect_url: str = "/"
    error: AuthError | None = None
    message: str | None = None


# ---------------------------------------------------------------------------
# Principals and identities
# ---------------------------------------------------------------------------


@dataclass
class User:
    """A principal as seen by the auth core.

    Only the fields needed to issue tokens are modelled here; profile data
    lives with the rest of the user domain.
    """

    id: str
    username: str
    email: str | None = None
    phone: str | None = None
    roles: list[Role] = field(default_factory=lambda: [Role.player])
    created_at: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class IdentityClaim:
    """What a verified OTP or magic link proves: control of an email or phone."""

    email: str | None = None
    phone: str | None = None
    provider: str = "email"


@dataclass(frozen=True)
class ResolvedIdentity:
    """The caller attached to a request after the access token is verified."""

    user_id: str
    roles: frozenset[Role]
    acting_role: ActingRole | None = None
    email: str | None = None
    phone: str | None = None
    token_id: str | None = None

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    def is_acting_as(self, role: ActingRole) -> bool:
        return self.acting_role == role
