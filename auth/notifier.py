"""
auth/notifier.py -- Delivery of one-time codes and magic links.

Managers depend on the Notifier protocol, not on a provider. Delivery is
fire-and-forget from the manager's point of view: the secret is stored
before send_* is called, and a False return (or provider outage) is logged
without invalidating the stored secret. The user may still receive the code
through a retry on the provider side.

Implementations:
  ConsoleNotifier  -- logs the code/link. Local development only.
  ProviderNotifier -- SMS via the Twilio REST API, email via SendGrid v3.
                      A channel without credentials falls back to the console
                      so a half-configured dev setup still works.

Channel selection: an identifier matching an E.164-style phone pattern goes
to SMS; anything else is treated as an email address.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Protocol

import requests

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("fieldday.notifier")

_PHONE_RE = re.compile(r"^\+?[1-9]\d{1,14}$")

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"
SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"


def is_phone(identifier: str) -> bool:
    """Return True if identifier looks like a phone number (E.164-ish)."""
    return bool(_PHONE_RE.match(identifier))


class Notifier(Protocol):
    def send_otp(self, identifier: str, code: str) -> bool: ...

    def send_magic_link(self, email: str, url: str) -> bool: ...


class ConsoleNotifier:
    """Writes codes and links to the log instead of delivering them."""

    def send_otp(self, identifier: str, code: str) -> bool:
        logger.info("OTP code for %s: %s", identifier, code)
        return True

    def send_magic_link(self, email: str, url: str) -> bool:
        logger.info("Magic link for %s: %s", email, url)
        return True


class ProviderNotifier:
    """Twilio SMS + SendGrid email delivery over a shared requests.Session.

    max_redirects=3 replaces the requests default of 30 -- these are known
    provider APIs and never legitimately redirect more than that.
    """

    def __init__(self, settings: Settings, session: requests.Session | None = None) -> None:
        self._settings = settings
        self._session = session or requests.Session()
        self._session.max_redirects = 3
        self._console = ConsoleNotifier()

    @property
    def sms_enabled(self) -> bool:
        s = self._settings
        return bool(s.twilio_account_sid and s.twilio_auth_token and s.twilio_from_number)

    @property
    def email_enabled(self) -> bool:
        return bool(self._settings.sendgrid_api_key)

    def send_otp(self, identifier: str, code: str) -> bool:
        body = f"Your FieldDay code is {code}. It expires in {self._settings.otp_ttl_seconds // 60} minutes."
        if is_phone(identifier):
            if not self.sms_enabled:
                return self._console.send_otp(identifier, code)
            return self._send_sms(identifier, body)
        if not self.email_enabled:
            return self._console.send_otp(identifier, code)
        return self._send_email(identifier, "Your FieldDay sign-in code", body)

    def send_magic_link(self, email: str, url: str) -> bool:
        if not self.email_enabled:
            return self._console.send_magic_link(email, url)
        body = (
            f"Click the link below to sign in to FieldDay:\n\n{url}\n\n"
            f"The link expires in {self._settings.magic_link_ttl_seconds // 60} minutes and works once."
        )
        return self._send_email(email, "Sign in to FieldDay", body)

    def _send_sms(self, to: str, body: str) -> bool:
        s = self._settings
        try:
            resp = self._session.post(
                TWILIO_MESSAGES_URL.format(sid=s.twilio_account_sid),
                data={"To": to, "From": s.twilio_from_number, "Body": body},
                auth=(s.twilio_account_sid, s.twilio_auth_token),
                timeout=s.notifier_timeout_seconds,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("SMS delivery failed: %s", e)
            return False
        return True

    def _send_email(self, to: str, subject: str, body: str) -> bool:
        s = self._settings
        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": s.sendgrid_from_email},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        }
        try:
            resp = self._session.post(
                SENDGRID_SEND_URL,
                json=payload,
                headers={"Authorization": f"Bearer {s.sendgrid_api_key}"},
                timeout=s.notifier_timeout_seconds,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Email delivery failed: %s", e)
            return False
        return True


def create_notifier(settings: Settings) -> Notifier:
    """Return ProviderNotifier when any provider is configured, else ConsoleNotifier."""
    if settings.twilio_account_sid or settings.sendgrid_api_key:
        return ProviderNotifier(settings)
    if not settings.debug:
        logger.warning("No delivery provider configured -- codes and links are only logged")
    return ConsoleNotifier()
