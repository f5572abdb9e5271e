"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for FieldDay Auth happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead,
or better, receive a Settings instance from whoever constructs you.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. Only the
      application entry point (api/main.py) calls it; components receive the
      values they need through their constructors.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates signing secrets with a
      warning, production mode refuses to start without them.

Security notes:
  [M6] Signing secrets shorter than 32 chars are rejected outright. HS256
       relies on key entropy -- a short key makes offline brute-force feasible.

  [M7] In production mode (DEBUG not set or false), a missing secret is a
       hard startup failure.

  [M8] Access and refresh tokens must be signed with different secrets. A
       refresh token must never verify as an access token and vice versa.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or cache/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("fieldday.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'fieldday_auth.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    app_url: str = "http://localhost:3000"

    # ------------------------------------------------------------------
    # Signed tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    jwt_secret: str = ""
    jwt_refresh_secret: str = ""
    jwt_issuer: str = "fieldday"
    access_audience: str = "fieldday-api"
    refresh_audience: str = "fieldday-refresh"
    access_token_expire_seconds: int = 15 * 60
    refresh_token_expire_seconds: int = 7 * 24 * 60 * 60

    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    # Empty string selects the in-process store. Only safe for a single
    # instance -- counters and codes are not shared between processes.
    redis_url: str = ""
    database_url: str = _DEFAULT_DB_URL
    store_sweep_interval_seconds: int = 60

    # ------------------------------------------------------------------
    # One-time codes and magic links
    # ------------------------------------------------------------------

    otp_ttl_seconds: int = 5 * 60
    otp_max_attempts: int = 5
    otp_block_seconds: int = 15 * 60
    magic_link_ttl_seconds: int = 15 * 60

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    otp_rate_limit: int = 3
    otp_rate_window_seconds: int = 60
    magic_link_rate_limit: int = 3
    magic_link_rate_window_seconds: int = 60
    login_rate_limit: int = 5
    login_rate_window_seconds: int = 15 * 60
    # Per-IP guard applied by slowapi in front of the identifier limits.
    request_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Delivery providers (optional -- empty string means console delivery)
    # ------------------------------------------------------------------

    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""
    sendgrid_api_key: str = ""
    sendgrid_from_email: str = "no-reply@fieldday.app"
    notifier_timeout_seconds: int = 10

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing-secret policy [M6][M7][M8].

        Dev mode (DEBUG=true): auto-generate random secrets with a warning.
            Issued tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if either
            secret is missing.
        """
        for field in ("jwt_secret", "jwt_refresh_secret"):
            value = getattr(self, field)
            if not value:
                if self.debug:
                    value = secrets.token_hex(32)
                    setattr(self, field, value)
                    logger.warning(
                        "WARNING: Using auto-generated %s. Tokens will not persist across restarts.",
                        field.upper(),
                    )
                else:
                    raise ValueError(
                        f"{field.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
            if len(value) < 32:
                raise ValueError(f"{field.upper()} must be at least 32 characters.")
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must differ.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables, or construct Settings(...)
    directly and hand it to the component under test.
    """
    return Settings()
