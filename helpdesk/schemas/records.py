"""Typed records decoded from the card, message, attachment and activity tables."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..utils import ensure_utc


class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    @field_validator("created_at", "updated_at", mode="after", check_fields=False)
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)


class CardRecord(_Record):
    id: str
    title: str
    status: str
    kind: str = "issue"
    parent_id: str | None = None
    created_at: datetime
    updated_at: datetime
    created_by: str | None = None
    assigned_to: str | None = None
    customer_email: str | None = None
    labels: list[str] = Field(default_factory=list)
    source: str = "web"
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("labels", mode="before")
    @classmethod
    def _labels(cls, value: Any) -> list[str]:
        return list(value or [])

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata(cls, value: Any) -> dict[str, Any]:
        return dict(value or {})


class AttachmentRecord(_Record):
    id: str
    card_id: str
    message_id: str | None = None
    name: str
    type: str
    size: int = 0
    storage_path: str
    created_at: datetime


class MessageRecord(_Record):
    id: str
    card_id: str
    content: str
    created_by: str | None = None
    created_at: datetime
    type: str = "reply"
    metadata: dict[str, Any] = Field(default_factory=dict)
    attachments: list[AttachmentRecord] = Field(default_factory=list)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata(cls, value: Any) -> dict[str, Any]:
        return dict(value or {})


class ActivityRecord(_Record):
    id: str
    type: str
    user: str | None = None
    card_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    @field_validator("details", mode="before")
    @classmethod
    def _details(cls, value: Any) -> dict[str, Any]:
        return dict(value or {})


class HelpdeskStatistics(BaseModel):
    active_cards: int = 0
    avg_response_time_minutes: float | None = None
    resolution_rate: float = 0.0
    total_cards: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)


class CardStatistics(BaseModel):
    response_time_minutes: float | None = None
    message_count: int = 0
    attachment_size: int = 0


__all__ = [
    "ActivityRecord",
    "AttachmentRecord",
    "CardRecord",
    "CardStatistics",
    "HelpdeskStatistics",
    "MessageRecord",
]
