"""Inbound message envelope consumed by the ingestion pipeline."""
from __future__ import annotations

import base64
import binascii
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class InboundAttachment(BaseModel):
    """One file carried by an inbound message.

    JSON producers send text ``content`` and set ``contentEncoding`` to
    ``"base64"`` for binary files; without it the text is stored as UTF-8.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    content: bytes = b""
    content_encoding: Literal["base64", "text"] = Field(default="text", alias="contentEncoding")
    mime_type: str = Field(default="application/octet-stream", alias="mimeType")
    size: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _decode_content(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        value = data.get("content")
        if value is None:
            return {**data, "content": b""}
        if isinstance(value, (bytes, bytearray)):
            return {**data, "content": bytes(value)}
        if not isinstance(value, str):
            raise ValueError("attachment content must be bytes or text")
        encoding = data.get("contentEncoding", data.get("content_encoding", "text"))
        if encoding == "base64":
            try:
                return {**data, "content": base64.b64decode(value, validate=True)}
            except (binascii.Error, ValueError) as exc:
                raise ValueError("attachment content is not valid base64") from exc
        return {**data, "content": value.encode("utf-8")}

    @property
    def byte_size(self) -> int:
        """Actual length of the content; the declared ``size`` is informational."""

        return len(self.content)


class InboundMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    source: str | None = None
    sender: str | None = None
    content: str = ""
    subject: str | None = None
    channel: str | None = None
    space: str | None = None
    attachments: list[InboundAttachment] = Field(default_factory=list)


class InboundEnvelope(BaseModel):
    message: InboundMessage | None = None


__all__ = ["InboundAttachment", "InboundEnvelope", "InboundMessage"]
