"""
tests/conftest.py -- Shared test fixtures for FieldDay Auth.

This module provides:
  - FakeClock: a monotonic clock tests move forward instead of sleeping
  - RecordingNotifier: captures codes and links instead of delivering them
  - settings / store / otp / magic_links / tokens / users / auth_service:
    unit-level components sharing one FakeClock
  - api: ApiHarness around a TestClient with a patched lifespan wired to
    in-memory components and a pre-created admin

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
API fixture because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread.

The DEBUG env var must be set before any api/ import so get_settings() can
auto-generate signing secrets in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: Set DEBUG before any api/core import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter as ip_limiter
from api.main import app
from auth.magic_link import MagicLinkManager
from auth.models import IdentityClaim, Role, User
from auth.otp import OtpManager
from auth.ratelimit import RateLimiter
from auth.service import AuthService, build_auth_service
from auth.store import UserStore
from auth.tokens import TokenService
from cache.store import MemorySecretStore
from core.config import Settings

ACCESS_SECRET = "access-secret-for-tests-" + "a" * 16
REFRESH_SECRET = "refresh-secret-for-tests-" + "b" * 16


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable monotonic clock. advance() moves time forward by seconds."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class RecordingNotifier:
    """Notifier that records every send. Set ok=False to simulate provider failure."""

    ok: bool = True
    otps: list[tuple[str, str]] = field(default_factory=list)
    links: list[tuple[str, str]] = field(default_factory=list)

    def send_otp(self, identifier: str, code: str) -> bool:
        self.otps.append((identifier, code))
        return self.ok

    def send_magic_link(self, email: str, url: str) -> bool:
        self.links.append((email, url))
        return self.ok

    def last_code(self) -> str:
        return self.otps[-1][1]

    def last_token(self) -> str:
        return self.links[-1][1].split("token=", 1)[1]


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "jwt_secret": ACCESS_SECRET,
        "jwt_refresh_secret": REFRESH_SECRET,
        "database_url": "sqlite:///:memory:",
        "app_url": "https://fieldday.test",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> Generator[MemorySecretStore, None, None]:
    s = MemorySecretStore(clock=clock)
    yield s
    s.close()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def otp(store: MemorySecretStore, notifier: RecordingNotifier) -> OtpManager:
    return OtpManager(store, notifier, RateLimiter(store, "otp", max_attempts=3, window_seconds=60))


@pytest.fixture
def magic_links(store: MemorySecretStore, notifier: RecordingNotifier) -> MagicLinkManager:
    return MagicLinkManager(
        store,
        notifier,
        RateLimiter(store, "magic", max_attempts=3, window_seconds=60),
        app_url="https://fieldday.test",
    )


@pytest.fixture
def tokens() -> TokenService:
    return TokenService(ACCESS_SECRET, REFRESH_SECRET)


@pytest.fixture
def users() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def auth_service(
    settings: Settings, store: MemorySecretStore, users: UserStore, notifier: RecordingNotifier
) -> AuthService:
    return build_auth_service(settings, store, users, notifier)


@pytest.fixture
def player() -> User:
    return User(id="u-123", username="casey1a2b", email="casey@example.com", roles=[Role.player, Role.parent])


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, auth: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-built test components into app.state so TestClient routes see
    an isolated store and user directory rather than the configured ones.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.auth = auth
        app.state.purge_task = None
        yield

    return test_lifespan


@dataclass
class ApiHarness:
    client: TestClient
    auth: AuthService
    notifier: RecordingNotifier
    users: UserStore
    admin_token: str


@pytest.fixture
def api() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness: TestClient over the real app with in-memory components.

    Function-scoped so per-identifier rate limits and OTP state never leak
    between tests. An admin user is created up front and its access token
    is available as api.admin_token.
    """
    settings = make_settings()
    users = UserStore(f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    notifier = RecordingNotifier()
    auth = build_auth_service(settings, MemorySecretStore(), users, notifier)

    admin = users.find_or_create(IdentityClaim(email="admin@fieldday.test"))
    admin = users.add_role(admin.id, Role.admin)
    admin_token = auth.issue_token_pair(admin).access_token

    ip_limiter.reset()
    app.router.lifespan_context = _patch_lifespan(settings, auth)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, auth=auth, notifier=notifier, users=users, admin_token=admin_token)

    auth.close()
    users.close()
