"""
tests/test_identity_resolver.py -- Unit tests for auth/dependencies.py (IdentityResolver).

Covers:
  - Token extraction: Bearer header first, then the access_token cookie
  - Missing token -> unauthenticated; invalid token -> forbidden
  - Acting-role override: must be an ActingRole the principal holds
  - Token's own act_as claim used when no override is given
  - require_role / require_acting_role dependencies: 401, 403 and pass-through
"""

from __future__ import annotations

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from auth.dependencies import IdentityResolver, require_acting_role, require_role
from auth.models import ActingRole, AuthError, ResolvedIdentity, Role, User
from auth.tokens import TokenService


@pytest.fixture
def resolver(tokens: TokenService) -> IdentityResolver:
    return IdentityResolver(tokens)


class TestExtractToken:
    def test_bearer_header(self) -> None:
        assert IdentityResolver.extract_token("Bearer abc", {}) == "abc"

    def test_scheme_is_case_insensitive(self) -> None:
        assert IdentityResolver.extract_token("bearer abc", {}) == "abc"

    def test_header_wins_over_cookie(self) -> None:
        assert IdentityResolver.extract_token("Bearer header", {"access_token": "cookie"}) == "header"

    def test_cookie_fallback(self) -> None:
        assert IdentityResolver.extract_token(None, {"access_token": "cookie"}) == "cookie"

    def test_non_bearer_scheme_ignored(self) -> None:
        assert IdentityResolver.extract_token("Basic dXNlcjpwdw==", {}) is None

    def test_nothing(self) -> None:
        assert IdentityResolver.extract_token(None, {}) is None


class TestResolve:
    def test_missing_token(self, resolver: IdentityResolver) -> None:
        result = resolver.resolve(None)
        assert result.ok is False
        assert result.error is AuthError.unauthenticated
        assert result.message == "No token provided"

    def test_invalid_token(self, resolver: IdentityResolver) -> None:
        result = resolver.resolve("garbage")
        assert result.error is AuthError.forbidden
        assert result.message == "Invalid or expired token"

    def test_valid_token(self, resolver: IdentityResolver, tokens: TokenService, player: User) -> None:
        result = resolver.resolve(tokens.issue_pair(player).access_token)
        assert result.ok is True
        identity = result.identity
        assert identity.user_id == "u-123"
        assert identity.roles == frozenset({Role.player, Role.parent})
        assert identity.acting_role is None
        assert identity.email == "casey@example.com"
        assert identity.token_id

    def test_refresh_token_rejected(self, resolver: IdentityResolver, tokens: TokenService, player: User) -> None:
        result = resolver.resolve(tokens.issue_pair(player).refresh_token)
        assert result.error is AuthError.forbidden


class TestActingRole:
    def test_held_role_override(self, resolver: IdentityResolver, tokens: TokenService, player: User) -> None:
        result = resolver.resolve(tokens.issue_pair(player).access_token, act_as="parent")
        assert result.identity.acting_role is ActingRole.parent
        assert result.identity.is_acting_as(ActingRole.parent)

    def test_unheld_role_forbidden(self, resolver: IdentityResolver, tokens: TokenService, player: User) -> None:
        result = resolver.resolve(tokens.issue_pair(player).access_token, act_as="organizer")
        assert result.error is AuthError.forbidden
        assert result.message == "Not permitted to act as organizer"

    @pytest.mark.parametrize("act_as", ["admin", "facility", "wizard"])
    def test_non_acting_role_forbidden(
        self, resolver: IdentityResolver, tokens: TokenService, player: User, act_as: str
    ) -> None:
        result = resolver.resolve(tokens.issue_pair(player).access_token, act_as=act_as)
        assert result.error is AuthError.forbidden
        assert result.message == "Unknown acting role"

    def test_token_claim_used_without_override(
        self, resolver: IdentityResolver, tokens: TokenService, player: User
    ) -> None:
        token = tokens.issue_pair(player, act_as=ActingRole.player).access_token
        assert resolver.resolve(token).identity.acting_role is ActingRole.player

    def test_override_beats_token_claim(self, resolver: IdentityResolver, tokens: TokenService, player: User) -> None:
        token = tokens.issue_pair(player, act_as=ActingRole.player).access_token
        assert resolver.resolve(token, act_as="parent").identity.acting_role is ActingRole.parent


class TestRoleDependencies:
    """require_role / require_acting_role mounted on a throwaway app."""

    @pytest.fixture
    def client(self, auth_service):
        app = FastAPI()
        app.state.auth = auth_service

        @app.get("/parents-only")
        def parents_only(identity: ResolvedIdentity = Depends(require_acting_role(ActingRole.parent))):
            return {"user_id": identity.user_id}

        @app.get("/organizers")
        def organizers(identity: ResolvedIdentity = Depends(require_role(Role.organizer))):
            return {"user_id": identity.user_id}

        return TestClient(app)

    def test_acting_role_match(self, client, auth_service, player: User) -> None:
        token = auth_service.issue_token_pair(player).access_token
        resp = client.get("/parents-only", headers={"Authorization": f"Bearer {token}", "X-Act-As": "parent"})
        assert resp.status_code == 200
        assert resp.json() == {"user_id": "u-123"}

    def test_acting_role_mismatch(self, client, auth_service, player: User) -> None:
        token = auth_service.issue_token_pair(player).access_token
        resp = client.get("/parents-only", headers={"Authorization": f"Bearer {token}", "X-Act-As": "player"})
        assert resp.status_code == 403
        assert resp.json()["detail"]["message"] == "Must be acting as parent"

    def test_acting_role_unauthenticated(self, client) -> None:
        assert client.get("/parents-only").status_code == 401

    def test_missing_role(self, client, auth_service, player: User) -> None:
        token = auth_service.issue_token_pair(player).access_token
        resp = client.get("/organizers", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 403
        assert resp.json()["detail"]["message"] == "Insufficient permissions"
