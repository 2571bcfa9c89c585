"""SQLAlchemy ORM model for card conversation messages."""
from __future__ import annotations

from sqlalchemy import Column, DateTime, JSON, String, Text

from helpdesk.database import Base


class Message(Base):
    __tablename__ = "messages"

    id = Column(String(64), primary_key=True)
    card_id = Column(String(64), nullable=False, index=True)
    content = Column(Text, nullable=False, default="")
    created_by = Column(String(320), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    type = Column(String(16), nullable=False, default="reply")
    extra = Column("metadata", JSON, nullable=False, default=dict)


__all__ = ["Message"]
