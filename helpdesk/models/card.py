"""SQLAlchemy ORM model for cards (customer and issue records)."""
from __future__ import annotations

from sqlalchemy import Column, DateTime, JSON, String, UniqueConstraint

from helpdesk.database import Base


class Card(Base):
    __tablename__ = "cards"
    __table_args__ = (UniqueConstraint("customer_email", name="uq_cards_customer_email"),)

    id = Column(String(64), primary_key=True)
    title = Column(String(512), nullable=False)
    status = Column(String(32), nullable=False, default="new", index=True)
    kind = Column(String(16), nullable=False, default="issue", index=True)
    parent_id = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    created_by = Column(String(320), nullable=True, index=True)
    assigned_to = Column(String(320), nullable=True, index=True)
    # Set on customer cards only
    customer_email = Column(String(320), nullable=True)
    labels = Column(JSON, nullable=False, default=list)
    source = Column(String(16), nullable=False, default="web")
    # "metadata" is reserved on declarative classes
    extra = Column("metadata", JSON, nullable=False, default=dict)


__all__ = ["Card"]
