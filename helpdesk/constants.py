"""Project-wide constant values and enumerations."""
from __future__ import annotations

from enum import StrEnum


class CardStatus(StrEnum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class CardKind(StrEnum):
    CUSTOMER = "customer"
    ISSUE = "issue"


class Channel(StrEnum):
    """Inbound channels the ingestion pipeline knows how to handle."""

    EMAIL = "email"
    SLACK = "slack"
    CHAT = "chat"


class CardSource(StrEnum):
    EMAIL = "email"
    SLACK = "slack"
    CHAT = "chat"
    WEB = "web"


class MessageType(StrEnum):
    INITIAL = "initial"
    REPLY = "reply"
    SYSTEM = "system"
    EMAIL = "email"


class ActivityType(StrEnum):
    CARD_CREATED = "card_created"
    CARD_UPDATED = "card_updated"
    CARD_DELETED = "card_deleted"
    MESSAGE_ADDED = "message_added"
    MEETING_SCHEDULED = "meeting_scheduled"
    SENDER_REJECTED = "sender_rejected"
    SETTINGS_UPDATED = "settings_updated"
    LOGIN = "login"


ACTIVE_STATUSES = (CardStatus.NEW, CardStatus.IN_PROGRESS)

CUSTOMER_LABEL = "customer"
SESSION_COOKIE = "helpdesk_session"
SYSTEM_USER = "system"
NOTIFICATION_SUBJECT_PREFIX = "[HelpDesk] "

__all__ = [
    "ACTIVE_STATUSES",
    "ActivityType",
    "CardKind",
    "CardSource",
    "CardStatus",
    "Channel",
    "CUSTOMER_LABEL",
    "MessageType",
    "NOTIFICATION_SUBJECT_PREFIX",
    "SESSION_COOKIE",
    "SYSTEM_USER",
]
