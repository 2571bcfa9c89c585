"""Customer verification and Slack user lookups."""
from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import Settings, get_settings
from ..security.secrets import MissingSecretError, resolve_secret
from ..utils import email_domain, is_valid_email, retry_operation

logger = logging.getLogger(__name__)

SLACK_USERS_INFO_URL = "https://slack.com/api/users.info"


class DirectoryLookupError(RuntimeError):
    """Raised when the Slack directory cannot be reached."""


_directory_client: httpx.Client | None = None


def set_directory_client(client: httpx.Client | None) -> None:
    """Override the shared directory HTTP client (used by tests)."""

    global _directory_client
    _directory_client = client


def _get_directory_client() -> httpx.Client:
    global _directory_client
    if _directory_client is None:
        _directory_client = httpx.Client(timeout=10.0)
    return _directory_client


class CustomerDirectory:
    """Decide who counts as a verified customer and resolve Slack ids to emails."""

    def __init__(self, settings: Settings | None = None, *, client: httpx.Client | None = None) -> None:
        self._settings = settings or get_settings()
        self._client = client

    def is_staff(self, email: str | None) -> bool:
        if not email:
            return False
        domain = (self._settings.admin_domain or "").lower()
        return bool(domain) and email.lower().endswith(f"@{domain}")

    def is_verified_customer(self, email: str | None) -> bool:
        if not email or not is_valid_email(email):
            return False
        address = email.lower()
        if self.is_staff(address):
            return False

        known_emails = self._settings.customer_emails
        known_domains = self._settings.customer_domains
        if address in known_emails:
            return True
        if email_domain(address) in known_domains:
            return True
        if not known_emails and not known_domains:
            return email_domain(address) in self._settings.allowed_domains
        return False

    def lookup_slack_email(self, user_id: str | None) -> str | None:
        """Resolve a Slack user id to an email address, or ``None`` when unknown."""

        if not user_id:
            return None
        try:
            token = resolve_secret(self._settings.slack_bot_token, "SLACK_BOT_TOKEN")
        except MissingSecretError:
            logger.warning("SLACK_BOT_TOKEN is not configured; cannot resolve Slack user %s", user_id)
            return None

        client = self._client or _get_directory_client()

        def _fetch() -> dict[str, Any]:
            try:
                response = client.get(
                    SLACK_USERS_INFO_URL,
                    params={"user": user_id},
                    headers={"Authorization": f"Bearer {token}"},
                )
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise DirectoryLookupError(str(exc)) from exc
            try:
                return response.json()
            except ValueError as exc:
                raise DirectoryLookupError("Slack returned invalid JSON") from exc

        try:
            data = retry_operation(
                _fetch,
                attempts=self._settings.max_retries,
                delay_ms=self._settings.retry_delay_ms,
                retry_on=(DirectoryLookupError,),
            )
        except DirectoryLookupError as exc:
            logger.warning("Slack lookup for %s failed: %s", user_id, exc)
            return None

        if not data.get("ok"):
            logger.info("Slack user %s not resolved: %s", user_id, data.get("error"))
            return None
        email = ((data.get("user") or {}).get("profile") or {}).get("email")
        return email.lower() if isinstance(email, str) and email else None


__all__ = ["CustomerDirectory", "DirectoryLookupError", "SLACK_USERS_INFO_URL", "set_directory_client"]
