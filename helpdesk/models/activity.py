"""Append-only audit log entries."""
from __future__ import annotations

from sqlalchemy import Column, DateTime, JSON, String

from helpdesk.database import Base


class Activity(Base):
    __tablename__ = "activities"

    id = Column(String(64), primary_key=True)
    type = Column(String(64), nullable=False, index=True)
    user = Column("user", String(320), nullable=True, index=True)
    card_id = Column(String(64), nullable=True, index=True)
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)


__all__ = ["Activity"]
