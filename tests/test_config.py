"""
tests/test_config.py -- Unit tests for core/config.py (Settings).

Covers:
  - Dev mode generates distinct signing secrets
  - Production mode refuses missing, short or identical secrets
  - Defaults and environment overrides
  - get_settings() caching
"""

from __future__ import annotations

import pytest

from core.config import Settings, get_settings

ACCESS = "x" * 40
REFRESH = "y" * 40


class TestSecretPolicy:
    def test_debug_generates_distinct_secrets(self) -> None:
        s = Settings(_env_file=None, debug=True)
        assert len(s.jwt_secret) >= 32
        assert len(s.jwt_refresh_secret) >= 32
        assert s.jwt_secret != s.jwt_refresh_secret

    def test_production_requires_secrets(self) -> None:
        with pytest.raises(ValueError, match="JWT_SECRET is required"):
            Settings(_env_file=None, debug=False)

    def test_short_secret_rejected(self) -> None:
        with pytest.raises(ValueError, match="at least 32 characters"):
            Settings(_env_file=None, debug=False, jwt_secret="short", jwt_refresh_secret=REFRESH)

    def test_identical_secrets_rejected(self) -> None:
        with pytest.raises(ValueError, match="must differ"):
            Settings(_env_file=None, debug=False, jwt_secret=ACCESS, jwt_refresh_secret=ACCESS)

    def test_production_with_secrets(self) -> None:
        s = Settings(_env_file=None, debug=False, jwt_secret=ACCESS, jwt_refresh_secret=REFRESH)
        assert s.jwt_secret == ACCESS


class TestDefaults:
    def test_auth_defaults(self) -> None:
        s = Settings(_env_file=None, debug=True)
        assert s.otp_ttl_seconds == 300
        assert s.otp_max_attempts == 5
        assert s.otp_block_seconds == 900
        assert s.magic_link_ttl_seconds == 900
        assert s.access_token_expire_seconds == 900
        assert s.refresh_token_expire_seconds == 604800
        assert s.jwt_issuer == "fieldday"
        assert s.redis_url == ""

    def test_environment_override(self, monkeypatch) -> None:
        monkeypatch.setenv("OTP_MAX_ATTEMPTS", "7")
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/1")
        s = Settings(_env_file=None, debug=True)
        assert s.otp_max_attempts == 7
        assert s.redis_url == "redis://cache:6379/1"


def test_get_settings_is_cached() -> None:
    assert get_settings() is get_settings()
