"""
auth/service.py -- Framework-agnostic boundary of the auth core.

AuthService composes the managers into the flows callers actually use:

  request_otp(identifier)            -> IssueResult
  verify_otp(identifier, code)       -> SignInResult (principal + token pair)
  request_magic_link(email, redirect)-> IssueResult
  verify_magic_link(token)           -> SignInResult (+ redirect_url)
  issue_token_pair(user)             -> TokenPair
  refresh(refresh_token)             -> RefreshResult
  authenticate(raw_token, act_as)    -> AuthenticationResult
  reset_rate_limit(purpose, id)      -> bool   (administrative)

Every component is an explicit instance built by build_auth_service() from
injected dependencies. There are no module-level singletons, so tests and
multi-tenant setups can build as many independent services as they need.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from auth.dependencies import AuthenticationResult, IdentityResolver
from auth.magic_link import MagicLinkManager
from auth.models import ActingRole, AuthError, IdentityClaim, IssueResult, User
from auth.notifier import is_phone
from auth.otp import OtpManager
from auth.ratelimit import RateLimiter, build_rate_limiters
from auth.tokens import TokenInvalid, TokenPair, TokenService

if TYPE_CHECKING:
    from auth.notifier import Notifier
    from auth.store import UserDirectory
    from cache.store import SecretStore
    from core.config import Settings

logger = logging.getLogger("fieldday.auth")

MSG_ACCOUNT_DISABLED = "Account disabled"
MSG_INVALID_REFRESH = "Invalid refresh token"


@dataclass(frozen=True)
class SignInResult:
    ok: bool
    user: Optional[User] = None
    tokens: Optional[TokenPair] = None
    redirect_url: str = "/"
    error: Optional[AuthError] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class RefreshResult:
    ok: bool
    tokens: Optional[TokenPair] = None
    error: Optional[AuthError] = None
    message: Optional[str] = None


def identity_claim_for(identifier: str) -> IdentityClaim:
    """Build the directory claim for a verified OTP identifier."""
    if is_phone(identifier):
        return IdentityClaim(phone=identifier, provider="phone")
    return IdentityClaim(email=identifier, provider="email")


class AuthService:
    def __init__(
        self,
        otp: OtpManager,
        magic_links: MagicLinkManager,
        tokens: TokenService,
        users: UserDirectory,
        limiters: dict[str, RateLimiter],
        store: Optional[SecretStore] = None,
    ) -> None:
        self.otp = otp
        self.magic_links = magic_links
        self.tokens = tokens
        self.users = users
        self.limiters = limiters
        self.resolver = IdentityResolver(tokens)
        self.store = store

    # ------------------------------------------------------------------
    # OTP
    # ------------------------------------------------------------------

    def request_otp(self, identifier: str) -> IssueResult:
        return self.otp.generate(identifier)

    def verify_otp(self, identifier: str, code: str) -> SignInResult:
        check = self.otp.validate(identifier, code)
        if not check.valid:
            return SignInResult(ok=False, error=check.error, message=check.message)
        return self._sign_in(identity_claim_for(identifier))

    # ------------------------------------------------------------------
    # Magic links
    # ------------------------------------------------------------------

    def request_magic_link(self, email: str, redirect_url: Optional[str] = None) -> IssueResult:
        return self.magic_links.generate(email, redirect_url)

    def verify_magic_link(self, token: str) -> SignInResult:
        check = self.magic_links.validate(token)
        if not check.valid:
            return SignInResult(ok=False, error=check.error, message=check.message)
        result = self._sign_in(IdentityClaim(email=check.email, provider="email"))
        if not result.ok:
            return result
        return SignInResult(ok=True, user=result.user, tokens=result.tokens, redirect_url=check.redirect_url)

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def issue_token_pair(self, user: User, act_as: Optional[ActingRole] = None) -> TokenPair:
        return self.tokens.issue_pair(user, act_as=act_as)

    def refresh(self, refresh_token: str) -> RefreshResult:
        """Verify a refresh token and rotate it within its family.

        The principal must still exist and be active; roles are carried over
        from the presented token unchanged.
        """
        try:
            claims = self.tokens.verify_refresh(refresh_token)
        except TokenInvalid:
            return RefreshResult(ok=False, error=AuthError.token_invalid, message=MSG_INVALID_REFRESH)

        user = self.users.get_by_id(claims.sub)
        if user is None or not user.is_active:
            return RefreshResult(ok=False, error=AuthError.token_invalid, message=MSG_INVALID_REFRESH)
        return RefreshResult(ok=True, tokens=self.tokens.rotate(claims))

    def authenticate(self, raw_token: Optional[str], act_as: Optional[str] = None) -> AuthenticationResult:
        return self.resolver.resolve(raw_token, act_as)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def reset_rate_limit(self, purpose: str, identifier: str) -> bool:
        """Clear one counter. Returns False if purpose is not a configured limiter."""
        limiter = self.limiters.get(purpose)
        if limiter is None:
            return False
        limiter.reset(identifier)
        return True

    def close(self) -> None:
        if self.store is not None:
            self.store.close()

    def _sign_in(self, claim: IdentityClaim) -> SignInResult:
        user = self.users.find_or_create(claim)
        if not user.is_active:
            logger.info("Sign-in refused for inactive user %s", user.id)
            return SignInResult(ok=False, error=AuthError.forbidden, message=MSG_ACCOUNT_DISABLED)
        return SignInResult(ok=True, user=user, tokens=self.tokens.issue_pair(user))


def build_auth_service(
    settings: Settings,
    store: SecretStore,
    users: UserDirectory,
    notifier: Notifier,
) -> AuthService:
    """Wire every auth component from Settings and the injected collaborators."""
    limiters = build_rate_limiters(store, settings)
    otp = OtpManager(
        store,
        notifier,
        limiters["otp"],
        ttl_seconds=settings.otp_ttl_seconds,
        max_attempts=settings.otp_max_attempts,
        block_seconds=settings.otp_block_seconds,
    )
    magic_links = MagicLinkManager(
        store,
        notifier,
        limiters["magic"],
        app_url=settings.app_url,
        ttl_seconds=settings.magic_link_ttl_seconds,
    )
    return AuthService(
        otp=otp,
        magic_links=magic_links,
        tokens=TokenService.from_settings(settings),
        users=users,
        limiters=limiters,
        store=store,
    )
