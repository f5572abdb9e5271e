"""
auth/tokens.py -- Signed access/refresh token pairs and rotation.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with
       DIFFERENT secrets and carry DIFFERENT audiences and a "typ" tag, so a
       refresh token can never be presented as an access token (or the other
       way round) even if one secret leaks [M8].

  Access tokens (15 min) are stateless: nothing is stored server-side.

  Refresh tokens (7 days) carry a fresh jti on every issue and a rotation
       "family" id shared by every token descended from one sign-in. Rotation
       keeps the family and replaces the jti. The family id is the hook for a
       reuse-detection store (revoke the whole family when an already-rotated
       jti shows up again); no such store is wired in yet.

  Verification raises TokenInvalid on any failure -- bad signature, wrong
       issuer/audience/type, expiry, malformed claims -- with no detail, so
       callers cannot leak why a token was rejected.

Claims are explicit frozen dataclasses per token kind, never free-form dicts.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Optional

from jose import JWTError, jwt

from auth.models import ActingRole, Role, User

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("fieldday.tokens")

_ALGORITHM = "HS256"
_TYP_ACCESS = "access"
_TYP_REFRESH = "refresh"
_REQUIRED = {"require_exp": True, "require_iat": True, "require_iss": True, "require_aud": True, "require_sub": True}


class TokenInvalid(Exception):
    """A signed token failed verification. Deliberately carries no detail."""


# ---------------------------------------------------------------------------
# Claim types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccessClaims:
    sub: str
    roles: tuple[Role, ...]
    email: Optional[str] = None
    phone: Optional[str] = None
    act_as: Optional[ActingRole] = None
    jti: Optional[str] = None


@dataclass(frozen=True)
class RefreshClaims:
    sub: str
    roles: tuple[Role, ...]
    email: Optional[str] = None
    phone: Optional[str] = None
    act_as: Optional[ActingRole] = None
    jti: Optional[str] = None
    family: Optional[str] = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int


def _new_id() -> str:
    return uuid.uuid4().hex


def _identity_claims(claims: AccessClaims | RefreshClaims) -> dict[str, Any]:
    payload: dict[str, Any] = {"sub": claims.sub, "roles": [r.value for r in claims.roles]}
    if claims.email:
        payload["email"] = claims.email
    if claims.phone:
        payload["phone"] = claims.phone
    if claims.act_as:
        payload["act_as"] = claims.act_as.value
    return payload


def _parse_identity(payload: dict[str, Any]) -> dict[str, Any]:
    """Map a decoded payload onto claim fields. Raises ValueError/TypeError on bad shapes."""
    roles = payload.get("roles")
    if not isinstance(roles, list):
        raise TypeError("roles must be a list")
    act_as = payload.get("act_as")
    return {
        "sub": str(payload["sub"]),
        "roles": tuple(Role(r) for r in roles),
        "email": payload.get("email"),
        "phone": payload.get("phone"),
        "act_as": ActingRole(act_as) if act_as else None,
        "jti": payload.get("jti"),
    }


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class TokenService:
    """Issues, verifies and rotates access/refresh JWTs.

    Usage:
        tokens = TokenService.from_settings(settings)
        pair = tokens.issue_pair(user)
        claims = tokens.verify_access(pair.access_token)
        new_pair = tokens.rotate(tokens.verify_refresh(pair.refresh_token))
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        issuer: str = "fieldday",
        access_audience: str = "fieldday-api",
        refresh_audience: str = "fieldday-refresh",
        access_ttl: int = 15 * 60,
        refresh_ttl: int = 7 * 24 * 60 * 60,
    ) -> None:
        if access_secret == refresh_secret:
            raise ValueError("access and refresh tokens must use different secrets")
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self.issuer = issuer
        self.access_audience = access_audience
        self.refresh_audience = refresh_audience
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenService:
        return cls(
            access_secret=settings.jwt_secret,
            refresh_secret=settings.jwt_refresh_secret,
            issuer=settings.jwt_issuer,
            access_audience=settings.access_audience,
            refresh_audience=settings.refresh_audience,
            access_ttl=settings.access_token_expire_seconds,
            refresh_ttl=settings.refresh_token_expire_seconds,
        )

    # ------------------------------------------------------------------
    # Encode
    # ------------------------------------------------------------------

    def _encode(self, payload: dict[str, Any], secret: str, audience: str, ttl: int) -> str:
        now = datetime.now(timezone.utc)
        payload.update(
            {
                "iss": self.issuer,
                "aud": audience,
                "iat": now,
                "exp": now + timedelta(seconds=ttl),
            }
        )
        return jwt.encode(payload, secret, algorithm=_ALGORITHM)

    def sign_access(self, claims: AccessClaims) -> str:
        """Sign a short-lived access token. A jti is generated if the claims carry none."""
        payload = _identity_claims(claims)
        payload["jti"] = claims.jti or _new_id()
        payload["typ"] = _TYP_ACCESS
        return self._encode(payload, self._access_secret, self.access_audience, self.access_ttl)

    def sign_refresh(self, claims: RefreshClaims, family: Optional[str] = None) -> str:
        """Sign a refresh token with a fresh jti.

        family precedence: explicit argument, then claims.family, then a new
        family (a fresh sign-in starts a new lineage).
        """
        payload = _identity_claims(claims)
        payload["jti"] = _new_id()
        payload["family"] = family or claims.family or _new_id()
        payload["typ"] = _TYP_REFRESH
        return self._encode(payload, self._refresh_secret, self.refresh_audience, self.refresh_ttl)

    # ------------------------------------------------------------------
    # Decode
    # ------------------------------------------------------------------

    def _decode(self, token: str, secret: str, audience: str, typ: str) -> dict[str, Any]:
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[_ALGORITHM],
                audience=audience,
                issuer=self.issuer,
                options=_REQUIRED,
            )
        except JWTError as e:
            logger.debug("Token rejected: %s", type(e).__name__)
            raise TokenInvalid() from None
        if payload.get("typ") != typ:
            raise TokenInvalid()
        return payload

    def verify_access(self, token: str) -> AccessClaims:
        payload = self._decode(token, self._access_secret, self.access_audience, _TYP_ACCESS)
        try:
            return AccessClaims(**_parse_identity(payload))
        except (KeyError, TypeError, ValueError):
            raise TokenInvalid() from None

    def verify_refresh(self, token: str) -> RefreshClaims:
        payload = self._decode(token, self._refresh_secret, self.refresh_audience, _TYP_REFRESH)
        family = payload.get("family")
        if not isinstance(family, str) or not family:
            raise TokenInvalid()
        try:
            return RefreshClaims(**_parse_identity(payload), family=family)
        except (KeyError, TypeError, ValueError):
            raise TokenInvalid() from None

    # ------------------------------------------------------------------
    # Pairs and rotation
    # ------------------------------------------------------------------

    def issue_pair(self, user: User, act_as: Optional[ActingRole] = None) -> TokenPair:
        """Issue a fresh pair for a principal. Starts a new rotation family."""
        roles = tuple(user.roles)
        access = AccessClaims(sub=user.id, roles=roles, email=user.email, phone=user.phone, act_as=act_as)
        refresh = RefreshClaims(sub=user.id, roles=roles, email=user.email, phone=user.phone, act_as=act_as)
        return TokenPair(
            access_token=self.sign_access(access),
            refresh_token=self.sign_refresh(refresh),
            expires_in=self.access_ttl,
        )

    def rotate(self, old: RefreshClaims) -> TokenPair:
        """Replace a verified refresh token with a new pair in the same family.

        The old jti (and timestamps) are dropped; the new refresh token gets a
        fresh jti. The old token stays cryptographically valid until it
        expires -- nothing here records that it has been rotated.
        """
        base = replace(old, jti=None)
        access = AccessClaims(
            sub=base.sub, roles=base.roles, email=base.email, phone=base.phone, act_as=base.act_as
        )
        return TokenPair(
            access_token=self.sign_access(access),
            refresh_token=self.sign_refresh(base, family=old.family),
            expires_in=self.access_ttl,
        )
