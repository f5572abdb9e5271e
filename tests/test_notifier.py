"""
tests/test_notifier.py -- Unit tests for auth/notifier.py.

The requests.Session is a MagicMock; no network traffic is generated.

Covers:
  - Phone/email channel selection
  - Twilio SMS and SendGrid email request shapes
  - Provider failures return False instead of raising
  - Missing credentials fall back to console delivery
  - create_notifier() selection
"""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

import pytest
import requests

from auth.notifier import (
    SENDGRID_SEND_URL,
    ConsoleNotifier,
    ProviderNotifier,
    create_notifier,
    is_phone,
)
from core.config import Settings

ACCESS = "x" * 40
REFRESH = "y" * 40


def _settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "jwt_secret": ACCESS,
        "jwt_refresh_secret": REFRESH,
        "twilio_account_sid": "AC123",
        "twilio_auth_token": "tw-token",
        "twilio_from_number": "+15550000000",
        "sendgrid_api_key": "SG.key",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def session() -> MagicMock:
    return MagicMock(spec=requests.Session)


class TestIsPhone:
    @pytest.mark.parametrize("value", ["+15551234567", "15551234567", "+447911123456"])
    def test_phone(self, value: str) -> None:
        assert is_phone(value) is True

    @pytest.mark.parametrize("value", ["casey@example.com", "+0123", "555-1234", ""])
    def test_not_phone(self, value: str) -> None:
        assert is_phone(value) is False


class TestConsoleNotifier:
    def test_logs_code(self, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="fieldday.notifier"):
            assert ConsoleNotifier().send_otp("casey@example.com", "482913") is True
        assert "482913" in caplog.text

    def test_logs_link(self, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="fieldday.notifier"):
            assert ConsoleNotifier().send_magic_link("casey@example.com", "https://x/verify?token=t") is True
        assert "token=t" in caplog.text


class TestProviderNotifier:
    def test_sms_via_twilio(self, session: MagicMock) -> None:
        notifier = ProviderNotifier(_settings(), session=session)
        assert notifier.send_otp("+15551234567", "482913") is True
        url = session.post.call_args.args[0]
        kwargs = session.post.call_args.kwargs
        assert url == "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json"
        assert kwargs["data"]["To"] == "+15551234567"
        assert kwargs["data"]["From"] == "+15550000000"
        assert "482913" in kwargs["data"]["Body"]
        assert kwargs["auth"] == ("AC123", "tw-token")
        assert kwargs["timeout"] == 10

    def test_email_code_via_sendgrid(self, session: MagicMock) -> None:
        notifier = ProviderNotifier(_settings(), session=session)
        assert notifier.send_otp("casey@example.com", "482913") is True
        url = session.post.call_args.args[0]
        kwargs = session.post.call_args.kwargs
        assert url == SENDGRID_SEND_URL
        assert kwargs["json"]["personalizations"] == [{"to": [{"email": "casey@example.com"}]}]
        assert "482913" in kwargs["json"]["content"][0]["value"]
        assert kwargs["headers"] == {"Authorization": "Bearer SG.key"}

    def test_magic_link_via_sendgrid(self, session: MagicMock) -> None:
        notifier = ProviderNotifier(_settings(), session=session)
        assert notifier.send_magic_link("casey@example.com", "https://fieldday.test/v?token=abc") is True
        body = session.post.call_args.kwargs["json"]["content"][0]["value"]
        assert "https://fieldday.test/v?token=abc" in body

    def test_provider_error_returns_false(self, session: MagicMock) -> None:
        session.post.return_value.raise_for_status.side_effect = requests.HTTPError("503")
        notifier = ProviderNotifier(_settings(), session=session)
        assert notifier.send_otp("+15551234567", "482913") is False

    def test_network_error_returns_false(self, session: MagicMock) -> None:
        session.post.side_effect = requests.ConnectionError("down")
        notifier = ProviderNotifier(_settings(), session=session)
        assert notifier.send_magic_link("casey@example.com", "https://x") is False

    def test_missing_sms_credentials_falls_back_to_console(self, session: MagicMock) -> None:
        notifier = ProviderNotifier(_settings(twilio_auth_token=""), session=session)
        assert notifier.sms_enabled is False
        assert notifier.send_otp("+15551234567", "482913") is True
        session.post.assert_not_called()

    def test_redirect_cap(self, session: MagicMock) -> None:
        ProviderNotifier(_settings(), session=session)
        assert session.max_redirects == 3


class TestCreateNotifier:
    def test_console_without_providers(self) -> None:
        settings = _settings(twilio_account_sid="", sendgrid_api_key="")
        assert isinstance(create_notifier(settings), ConsoleNotifier)

    def test_provider_when_configured(self) -> None:
        assert isinstance(create_notifier(_settings(twilio_account_sid="")), ProviderNotifier)
