"""Pydantic schemas shared across services and routers."""
from .actions import CardCreateRequest, CardDeleteRequest, CardUpdateRequest, MeetingRequest, SettingsPayload
from .inbound import InboundAttachment, InboundEnvelope, InboundMessage
from .records import (
    ActivityRecord,
    AttachmentRecord,
    CardRecord,
    CardStatistics,
    HelpdeskStatistics,
    MessageRecord,
)

__all__ = [
    "ActivityRecord",
    "AttachmentRecord",
    "CardCreateRequest",
    "CardDeleteRequest",
    "CardRecord",
    "CardStatistics",
    "CardUpdateRequest",
    "HelpdeskStatistics",
    "InboundAttachment",
    "InboundEnvelope",
    "InboundMessage",
    "MeetingRequest",
    "MessageRecord",
    "SettingsPayload",
]
