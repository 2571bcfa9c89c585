"""Claim rows that reserve one active issue card per conversation scope."""
from __future__ import annotations

from sqlalchemy import Column, DateTime, String, UniqueConstraint

from helpdesk.database import Base


class ConversationClaim(Base):
    __tablename__ = "conversation_claims"
    __table_args__ = (
        UniqueConstraint("customer_card_id", "source", "scope", name="uq_conversation_claims_scope"),
    )

    id = Column(String(64), primary_key=True)
    customer_card_id = Column(String(64), nullable=False)
    source = Column(String(16), nullable=False)
    scope = Column(String(255), nullable=False)
    card_id = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


__all__ = ["ConversationClaim"]
