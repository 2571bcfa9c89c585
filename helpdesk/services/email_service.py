"""Outbound email over SMTP with a Mailgun HTTP fallback."""
from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage

import requests

from ..config import Settings, get_settings
from ..security.secrets import MissingSecretError, is_placeholder, resolve_secret

logger = logging.getLogger(__name__)


class EmailDeliveryError(RuntimeError):
    """Raised when no transport could deliver the message."""


def _smtp_enabled(settings: Settings) -> bool:
    return bool(settings.email_host and settings.email_from_address)


def _mailgun_enabled(settings: Settings) -> bool:
    if is_placeholder(settings.mailgun_api_key):
        return False
    return bool(settings.mailgun_domain and settings.email_from_address)


def email_configured(settings: Settings | None = None) -> bool:
    settings = settings or get_settings()
    return _smtp_enabled(settings) or _mailgun_enabled(settings)


def _send_via_smtp(settings: Settings, to_address: str, subject: str, body: str, html: str | None) -> None:
    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = settings.email_from_address
    message["To"] = to_address
    message.set_content(body)
    if html:
        message.add_alternative(html, subtype="html")

    username = (settings.email_username or "").strip()

    try:
        with smtplib.SMTP(settings.email_host, settings.email_port, timeout=20) as smtp:
            if settings.email_use_tls:
                smtp.starttls()
            if username:
                smtp.login(username, resolve_secret(settings.email_password, "EMAIL_PASSWORD"))
            smtp.send_message(message)
    except MissingSecretError as exc:
        raise EmailDeliveryError(str(exc)) from exc
    except Exception as exc:  # pragma: no cover - network interactions
        logger.exception("SMTP delivery failed for %s", to_address)
        raise EmailDeliveryError(str(exc)) from exc


def _send_via_mailgun(settings: Settings, to_address: str, subject: str, body: str, html: str | None) -> None:
    try:
        api_key = resolve_secret(settings.mailgun_api_key, "MAILGUN_API_KEY")
    except MissingSecretError as exc:
        raise EmailDeliveryError(str(exc)) from exc

    data = {
        "from": settings.email_from_address,
        "to": to_address,
        "subject": subject,
        "text": body,
    }
    if html:
        data["html"] = html

    url = f"https://api.mailgun.net/v3/{settings.mailgun_domain}/messages"
    try:
        response = requests.post(url, auth=("api", api_key), data=data, timeout=20)
    except requests.RequestException as exc:  # pragma: no cover - network interactions
        logger.exception("Mailgun request failed for %s", to_address)
        raise EmailDeliveryError(str(exc)) from exc

    if response.status_code >= 400:
        logger.error("Mailgun returned %s: %s", response.status_code, response.text)
        raise EmailDeliveryError(f"Mailgun delivery failed with status {response.status_code}")


def send_email(
    to_address: str,
    subject: str,
    body: str,
    *,
    html: str | None = None,
    settings: Settings | None = None,
) -> bool:
    """Send an email through SMTP, falling back to Mailgun.

    Raises ``EmailDeliveryError`` when the payload is incomplete, no transport is
    configured, or every configured transport fails.
    """

    settings = settings or get_settings()
    if not to_address or not subject or not body:
        raise EmailDeliveryError("Email payload is incomplete")

    smtp_enabled = _smtp_enabled(settings)
    mailgun_enabled = _mailgun_enabled(settings)
    if not smtp_enabled and not mailgun_enabled:
        raise EmailDeliveryError("Email delivery is not configured. Provide SMTP settings or Mailgun credentials.")

    if smtp_enabled:
        try:
            _send_via_smtp(settings, to_address, subject, body, html)
            return True
        except EmailDeliveryError as exc:
            logger.warning("SMTP delivery failed, attempting fallback if available: %s", exc)
            if not mailgun_enabled:
                raise

    _send_via_mailgun(settings, to_address, subject, body, html)
    return True


__all__ = ["EmailDeliveryError", "email_configured", "send_email"]
