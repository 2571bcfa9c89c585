"""Convenience exports for ORM models."""
from .activity import Activity
from .app_setting import AppSetting
from .attachment import Attachment
from .card import Card
from .conversation_claim import ConversationClaim
from .message import Message

__all__ = [
    "Activity",
    "AppSetting",
    "Attachment",
    "Card",
    "ConversationClaim",
    "Message",
]
