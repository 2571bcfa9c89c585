"""SQLAlchemy ORM model for stored attachment metadata."""
from __future__ import annotations

from sqlalchemy import BigInteger, Column, DateTime, String

from helpdesk.database import Base


class Attachment(Base):
    __tablename__ = "attachments"

    id = Column(String(64), primary_key=True)
    card_id = Column(String(64), nullable=False, index=True)
    message_id = Column(String(64), nullable=True, index=True)
    name = Column(String(512), nullable=False)
    type = Column(String(255), nullable=False)
    size = Column(BigInteger, nullable=False, default=0)
    storage_path = Column(String(1024), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


__all__ = ["Attachment"]
