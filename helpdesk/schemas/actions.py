"""Request bodies accepted by the POST action router."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class CardCreateRequest(BaseModel):
    title: str | None = None
    content: str | None = None
    status: str | None = None
    assigned_to: str | None = None
    labels: list[str] = Field(default_factory=list)
    source: str = "web"
    metadata: dict[str, Any] = Field(default_factory=dict)


class CardUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    card_id: str = Field(..., alias="cardId")
    title: str | None = None
    status: str | None = None
    assigned_to: str | None = None
    labels: list[str] | None = None
    metadata: dict[str, Any] | None = None

    def patch(self) -> dict[str, Any]:
        """Return only the fields the caller explicitly provided."""

        return self.model_dump(exclude_unset=True, exclude={"card_id"})


class MeetingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    card_id: str | None = Field(default=None, alias="cardId")
    title: str
    date: str
    time: str
    duration: int | None = None
    attendees: list[EmailStr] = Field(default_factory=list)
    description: str | None = None


class CardDeleteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    card_id: str = Field(..., alias="cardId")


class SettingsPayload(BaseModel):
    model_config = ConfigDict(extra="allow")


__all__ = [
    "CardCreateRequest",
    "CardDeleteRequest",
    "CardUpdateRequest",
    "MeetingRequest",
    "SettingsPayload",
]
