"""Fan card lifecycle events out to email and the chat webhook."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any, Callable, Iterable, Mapping

import httpx
from markupsafe import Markup, escape

from ..config import Settings, get_settings
from ..constants import NOTIFICATION_SUBJECT_PREFIX
from ..schemas import CardRecord
from .email_service import EmailDeliveryError, send_email
from .settings_store import SettingsStore

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT = 10.0


class NotificationEvent(StrEnum):
    NEW_CARD = "new_card"
    CARD_UPDATED = "card_updated"
    CARD_CLOSED = "card_closed"


_EVENT_TOGGLES = {
    NotificationEvent.NEW_CARD: "notifications.notifyOnNewCard",
    NotificationEvent.CARD_UPDATED: "notifications.notifyOnCardUpdate",
    NotificationEvent.CARD_CLOSED: "notifications.notifyOnCardClose",
}

_EVENT_COLORS = {
    NotificationEvent.NEW_CARD: "#34a853",
    NotificationEvent.CARD_UPDATED: "#fbbc04",
    NotificationEvent.CARD_CLOSED: "#ea4335",
}

_EVENT_TITLES = {
    NotificationEvent.NEW_CARD: "New Support Card Created",
    NotificationEvent.CARD_UPDATED: "Support Card Updated",
    NotificationEvent.CARD_CLOSED: "Support Card Closed",
}


@dataclass(frozen=True)
class ChannelOutcome:
    channel: str
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class DispatchResult:
    """Per-channel outcomes; overall success is the AND of attempted channels."""

    event: str
    outcomes: tuple[ChannelOutcome, ...] = ()
    skipped: bool = False

    @property
    def success(self) -> bool:
        return all(outcome.success for outcome in self.outcomes)

    @property
    def attempted(self) -> list[str]:
        return [outcome.channel for outcome in self.outcomes]


Mailer = Callable[..., bool]


def compute_changes(
    before: CardRecord,
    after: CardRecord,
    *,
    fields: Iterable[str] = ("title", "status", "assigned_to", "labels"),
) -> dict[str, dict[str, Any]]:
    """Field-level diff between two card snapshots; list fields become added/removed sets."""

    changes: dict[str, dict[str, Any]] = {}
    for name in fields:
        old = getattr(before, name)
        new = getattr(after, name)
        if isinstance(old, list) or isinstance(new, list):
            old_items = list(old or [])
            new_items = list(new or [])
            added = [item for item in new_items if item not in old_items]
            removed = [item for item in old_items if item not in new_items]
            if added or removed:
                changes[name] = {"added": added, "removed": removed}
        elif old != new:
            changes[name] = {"from": old, "to": new}
    return changes


def format_changes(changes: Mapping[str, Mapping[str, Any]]) -> list[str]:
    lines: list[str] = []
    for name, change in changes.items():
        if "added" in change or "removed" in change:
            parts = []
            if change.get("added"):
                parts.append("added " + ", ".join(map(str, change["added"])))
            if change.get("removed"):
                parts.append("removed " + ", ".join(map(str, change["removed"])))
            lines.append(f"{name}: {'; '.join(parts)}")
        else:
            lines.append(f"{name}: {change.get('from') or '-'} -> {change.get('to') or '-'}")
    return lines


def _format_date(value: datetime) -> str:
    return value.strftime("%b %d, %Y %H:%M UTC")


def format_email_html(body_lines: Iterable[str], *, accent: str = "#1a73e8") -> str:
    paragraphs = "".join(f"<p style=\"margin: 0 0 8px 0;\">{escape(line)}</p>" for line in body_lines)
    return str(
        Markup(
            f"""
            <div style=\"background-color: {accent}; padding: 20px; text-align: center;\">
                <h1 style=\"color: white; margin: 0;\">HelpDesk Notification</h1>
            </div>
            <div style=\"padding: 20px; background-color: #ffffff;\">{paragraphs}</div>
            <div style=\"padding: 20px; background-color: #f8f9fa; text-align: center; color: #5f6368; font-size: 12px;\">
                <p>This is an automated message from HelpDesk. Please do not reply directly to this email.</p>
            </div>
            """
        )
    )


_http_client: httpx.Client | None = None


def set_http_client(client: httpx.Client | None) -> None:
    """Override the shared webhook HTTP client (used by tests)."""

    global _http_client
    _http_client = client


def _get_http_client() -> httpx.Client:
    global _http_client
    if _http_client is None:
        _http_client = httpx.Client(timeout=WEBHOOK_TIMEOUT)
    return _http_client


class NotificationDispatcher:
    """Send lifecycle notifications, gated per event and per channel by runtime settings."""

    def __init__(
        self,
        settings_store: SettingsStore,
        settings: Settings | None = None,
        *,
        mailer: Mailer | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._store = settings_store
        self._settings = settings or get_settings()
        self._mailer = mailer or send_email
        self._http_client = http_client

    # -- public events -------------------------------------------------------

    def notify_new_card(self, card: CardRecord) -> DispatchResult:
        return self.dispatch(NotificationEvent.NEW_CARD, card)

    def notify_card_updated(self, card: CardRecord, changes: Mapping[str, Mapping[str, Any]]) -> DispatchResult:
        return self.dispatch(NotificationEvent.CARD_UPDATED, card, changes)

    def notify_card_closed(self, card: CardRecord) -> DispatchResult:
        return self.dispatch(NotificationEvent.CARD_CLOSED, card)

    def dispatch(
        self,
        event: NotificationEvent,
        card: CardRecord,
        changes: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> DispatchResult:
        document = self._store.all()
        notifications = document.get("notifications") or {}
        toggle = _EVENT_TOGGLES[event].split(".", 1)[1]
        if not notifications.get(toggle, False):
            logger.debug("Notification %s disabled for card %s", event, card.id)
            return DispatchResult(event=event.value, skipped=True)

        change_lines = format_changes(changes or {})
        outcomes: list[ChannelOutcome] = []

        if notifications.get("emailNotifications"):
            recipient = (card.metadata or {}).get("email")
            if recipient:
                outcomes.append(self._send_email(event, card, recipient, change_lines))
            else:
                logger.info("Card %s has no customer email; skipping email notification", card.id)

        webhook_url = (document.get("slack") or {}).get("webhookUrl") or self._settings.slack_webhook_url
        if notifications.get("slackNotifications"):
            if webhook_url:
                outcomes.append(self._send_webhook(webhook_url, self._webhook_payload(event, card, change_lines)))
            else:
                logger.warning("Webhook notifications enabled but no webhook URL is configured")

        result = DispatchResult(event=event.value, outcomes=tuple(outcomes))
        if not result.success:
            logger.warning(
                "Notification %s for card %s partially failed: %s",
                event,
                card.id,
                [outcome.error for outcome in outcomes if not outcome.success],
            )
        return result

    def notify_admins(self, subject: str, body: str) -> DispatchResult:
        """Email every configured admin address; used for critical errors."""

        outcomes: list[ChannelOutcome] = []
        for address in self._settings.admin_emails:
            outcomes.append(self._deliver_email(address, subject, [body]))
        if not outcomes:
            logger.warning("No ADMIN_EMAILS configured; admin notification dropped: %s", subject)
        return DispatchResult(event="admin_alert", outcomes=tuple(outcomes))

    # -- formatting ----------------------------------------------------------

    def _email_lines(self, event: NotificationEvent, card: CardRecord, change_lines: list[str]) -> tuple[str, list[str]]:
        if event is NotificationEvent.NEW_CARD:
            subject = f"New Support Card Created: {card.title}"
            lines = [
                "A new support card has been created:",
                f"Title: {card.title}",
                f"Status: {card.status}",
                f"Created: {_format_date(card.created_at)}",
                "You can view the card details by logging into HelpDesk.",
            ]
        elif event is NotificationEvent.CARD_UPDATED:
            subject = f"Support Card Updated: {card.title}"
            lines = [
                "Your support card has been updated:",
                f"Title: {card.title}",
                f"Status: {card.status}",
                f"Updated: {_format_date(card.updated_at)}",
            ]
            if change_lines:
                lines.append("Changes:")
                lines.extend(change_lines)
        else:
            subject = f"Support Card Closed: {card.title}"
            lines = [
                "Your support card has been closed:",
                f"Title: {card.title}",
                f"Closed: {_format_date(card.updated_at)}",
                "If you need to reopen this card, reply to your original conversation.",
            ]
        return subject, lines

    def _webhook_payload(self, event: NotificationEvent, card: CardRecord, change_lines: list[str]) -> dict[str, Any]:
        customer = (card.metadata or {}).get("email") or card.created_by or "unknown"
        fields = [
            {"title": "Title", "value": card.title, "short": True},
            {"title": "Status", "value": card.status, "short": True},
        ]
        if event is NotificationEvent.NEW_CARD:
            fields.append({"title": "Created", "value": _format_date(card.created_at), "short": True})
            text = f"A new support card has been created by {customer}"
        elif event is NotificationEvent.CARD_UPDATED:
            fields.append({"title": "Changes", "value": "\n".join(change_lines), "short": False})
            text = f"A support card has been updated for {customer}"
        else:
            fields = [
                {"title": "Title", "value": card.title, "short": True},
                {"title": "Closed", "value": _format_date(card.updated_at), "short": True},
            ]
            text = f"A support card has been closed for {customer}"
        return {
            "attachments": [
                {
                    "color": _EVENT_COLORS[event],
                    "title": _EVENT_TITLES[event],
                    "text": text,
                    "fields": fields,
                    "footer": "HelpDesk",
                    "ts": int(card.updated_at.timestamp()),
                }
            ]
        }

    # -- transports ----------------------------------------------------------

    def _send_email(
        self,
        event: NotificationEvent,
        card: CardRecord,
        recipient: str,
        change_lines: list[str],
    ) -> ChannelOutcome:
        subject, lines = self._email_lines(event, card, change_lines)
        return self._deliver_email(recipient, subject, lines)

    def _deliver_email(self, recipient: str, subject: str, lines: list[str]) -> ChannelOutcome:
        try:
            self._mailer(
                recipient,
                f"{NOTIFICATION_SUBJECT_PREFIX}{subject}",
                "\n".join(lines),
                html=format_email_html(lines),
            )
        except EmailDeliveryError as exc:
            logger.warning("Email notification to %s failed: %s", recipient, exc)
            return ChannelOutcome(channel="email", success=False, error=str(exc))
        return ChannelOutcome(channel="email", success=True)

    def _send_webhook(self, url: str, payload: dict[str, Any]) -> ChannelOutcome:
        client = self._http_client or _get_http_client()
        try:
            response = client.post(url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Webhook notification failed: %s", exc)
            return ChannelOutcome(channel="webhook", success=False, error=str(exc))
        return ChannelOutcome(channel="webhook", success=True)


__all__ = [
    "ChannelOutcome",
    "DispatchResult",
    "NotificationDispatcher",
    "NotificationEvent",
    "compute_changes",
    "format_changes",
    "format_email_html",
    "set_http_client",
]
