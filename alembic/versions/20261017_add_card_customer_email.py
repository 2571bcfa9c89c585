"""Key customer cards by a unique customer email.

Revision ID: 20261017_card_customer_email
Revises: 20261016_create_helpdesk_tables
Create Date: 2026-10-17
"""
from __future__ import annotations

from alembic import op  # type: ignore[attr-defined]
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261017_card_customer_email"
down_revision = "20261016_create_helpdesk_tables"
branch_labels = None
depends_on = None

CUSTOMER_EMAIL_CONSTRAINT = "uq_cards_customer_email"


def upgrade() -> None:
    """Apply schema changes."""

    op.add_column("cards", sa.Column("customer_email", sa.String(length=320), nullable=True))
    op.execute("UPDATE cards SET customer_email = lower(created_by) WHERE kind = 'customer'")
    op.create_unique_constraint(CUSTOMER_EMAIL_CONSTRAINT, "cards", ["customer_email"])


def downgrade() -> None:
    """Revert schema changes."""

    op.drop_constraint(CUSTOMER_EMAIL_CONSTRAINT, "cards", type_="unique")
    op.drop_column("cards", "customer_email")
