"""
auth/dependencies.py -- Identity resolution and FastAPI Depends() helpers.

IdentityResolver is framework-agnostic: given the raw Authorization header,
the cookies and an optional acting-role override, it returns an
AuthenticationResult. The FastAPI helpers below adapt it to requests.

Token sources, in priority order:
  1. Authorization: Bearer <token> header -- mobile and API clients.
  2. access_token cookie                  -- browsers after magic-link sign-in.

Acting role: X-Act-As header, then the ?act_as= (or ?actAs=) query parameter,
then the act_as claim in the token. An override must name an ActingRole that the principal
actually holds as a role; anything else is Forbidden.

Status mapping:
  missing token            -> 401 unauthenticated
  invalid/expired token    -> 403 forbidden
  bad acting-role override -> 403 forbidden

get_current_identity() attaches the identity to request.state.identity for
downstream handlers. require_role() / require_acting_role() wrap it with
membership / equality predicates.

Layer rule: may import from fastapi (this module is part of the dependency
injection system) but not from api/, core/, or cache/.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request

from auth.models import ActingRole, AuthError, ResolvedIdentity, Role
from auth.tokens import TokenInvalid, TokenService

ACCESS_COOKIE = "access_token"
ACT_AS_HEADER = "X-Act-As"
ACT_AS_QUERY = "act_as"
ACT_AS_QUERY_ALIAS = "actAs"

MSG_NO_TOKEN = "No token provided"
MSG_INVALID_TOKEN = "Invalid or expired token"


@dataclass(frozen=True)
class AuthenticationResult:
    identity: Optional[ResolvedIdentity] = None
    error: Optional[AuthError] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.identity is not None


class IdentityResolver:
    """Turns a raw access token (plus optional acting-role override) into a ResolvedIdentity."""

    def __init__(self, tokens: TokenService) -> None:
        self._tokens = tokens

    @staticmethod
    def extract_token(authorization: Optional[str], cookies: Mapping[str, str]) -> Optional[str]:
        if authorization:
            scheme, _, credentials = authorization.partition(" ")
            if scheme.lower() == "bearer" and credentials.strip():
                return credentials.strip()
        return cookies.get(ACCESS_COOKIE) or None

    def resolve(self, raw_token: Optional[str], act_as: Optional[str] = None) -> AuthenticationResult:
        if not raw_token:
            return AuthenticationResult(error=AuthError.unauthenticated, message=MSG_NO_TOKEN)

        try:
            claims = self._tokens.verify_access(raw_token)
        except TokenInvalid:
            return AuthenticationResult(error=AuthError.forbidden, message=MSG_INVALID_TOKEN)

        acting_role = claims.act_as
        if act_as:
            try:
                acting_role = ActingRole(act_as)
            except ValueError:
                return AuthenticationResult(error=AuthError.forbidden, message="Unknown acting role")
            if Role(acting_role.value) not in claims.roles:
                return AuthenticationResult(
                    error=AuthError.forbidden, message=f"Not permitted to act as {acting_role.value}"
                )

        return AuthenticationResult(
            identity=ResolvedIdentity(
                user_id=claims.sub,
                roles=frozenset(claims.roles),
                acting_role=acting_role,
                email=claims.email,
                phone=claims.phone,
                token_id=claims.jti,
            )
        )


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def _raise_for(result: AuthenticationResult) -> None:
    status = 401 if result.error is AuthError.unauthenticated else 403
    raise HTTPException(
        status_code=status,
        detail={"code": result.error.value, "message": result.message},
    )


def get_current_identity(request: Request) -> ResolvedIdentity:
    """Require a valid access token. Raises HTTP 401 if absent, 403 if invalid.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: ResolvedIdentity = Depends(get_current_identity)): ...
    """
    resolver: IdentityResolver = request.app.state.auth.resolver
    token = resolver.extract_token(request.headers.get("Authorization"), request.cookies)
    act_as = (
        request.headers.get(ACT_AS_HEADER)
        or request.query_params.get(ACT_AS_QUERY)
        or request.query_params.get(ACT_AS_QUERY_ALIAS)
    )
    result = resolver.resolve(token, act_as)
    if not result.ok:
        _raise_for(result)
    request.state.identity = result.identity
    return result.identity


def require_role(role: Role) -> Callable[[Request], ResolvedIdentity]:
    """Dependency factory: the caller must hold role.

        @router.delete("/admin-only", dependencies=[Depends(require_role(Role.admin))])
    """

    def dependency(request: Request) -> ResolvedIdentity:
        identity = get_current_identity(request)
        if not identity.has_role(role):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Insufficient permissions"},
            )
        return identity

    return dependency


def require_acting_role(role: ActingRole) -> Callable[[Request], ResolvedIdentity]:
    """Dependency factory: the caller must currently be acting as role."""

    def dependency(request: Request) -> ResolvedIdentity:
        identity = get_current_identity(request)
        if not identity.is_acting_as(role):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": f"Must be acting as {role.value}"},
            )
        return identity

    return dependency
