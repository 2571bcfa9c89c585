"""Scheduled housekeeping: storage retention, activity pruning and orphan repair."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

from sqlalchemy import and_, delete, or_, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..constants import CardStatus
from ..models import Activity, Attachment, Card, ConversationClaim, Message
from ..utils import utcnow
from .storage_gateway import StorageCleanupSummary, StorageGateway

logger = logging.getLogger(__name__)


class MaintenanceError(RuntimeError):
    """Raised when a maintenance pass cannot complete successfully."""


@dataclass(frozen=True, slots=True)
class MaintenanceSummary:
    """Counts describing what a maintenance pass removed or repaired."""

    attachments_scanned: int = 0
    stored_objects_deleted: int = 0
    stored_object_failures: int = 0
    activities_deleted: int = 0
    orphan_messages: int = 0
    orphan_attachments: int = 0
    claims_released: int = 0

    @property
    def total(self) -> int:
        return (
            self.stored_objects_deleted
            + self.activities_deleted
            + self.orphan_messages
            + self.orphan_attachments
            + self.claims_released
        )


def _delete_ids(session: Session, model, ids: list[str]) -> int:
    if not ids:
        return 0
    result = session.execute(delete(model).where(model.id.in_(ids)))
    return result.rowcount or len(ids)


def prune_activities(session: Session, *, retention: timedelta) -> int:
    """Delete activity rows older than ``retention``."""

    if retention <= timedelta(0):
        raise ValueError("retention must be a positive duration")
    cutoff = utcnow() - retention
    try:
        result = session.execute(delete(Activity).where(Activity.created_at < cutoff))
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("Activity pruning failed; transaction rolled back")
        raise MaintenanceError("database activity pruning failed") from exc
    return result.rowcount or 0


def repair_integrity_issues(
    session: Session,
    *,
    storage: StorageGateway | None = None,
    batch_size: int = 100,
) -> tuple[int, int]:
    """Remove messages and attachments that point at missing parents.

    Messages go first so attachments of removed messages are picked up in the
    same pass. Returns ``(messages_deleted, attachments_deleted)``; a second run
    over a repaired database returns ``(0, 0)``.
    """

    batch_size = max(1, batch_size)
    orphan_messages = (
        select(Message.id)
        .outerjoin(Card, Card.id == Message.card_id)
        .where(Card.id.is_(None))
        .limit(batch_size)
    )
    orphan_attachments = (
        select(Attachment.id, Attachment.storage_path)
        .outerjoin(Card, Card.id == Attachment.card_id)
        .outerjoin(Message, Message.id == Attachment.message_id)
        .where(or_(Card.id.is_(None), and_(Attachment.message_id.is_not(None), Message.id.is_(None))))
        .limit(batch_size)
    )

    messages_deleted = attachments_deleted = 0
    stored_paths: list[str] = []
    try:
        while True:
            ids = list(session.scalars(orphan_messages))
            if not ids:
                break
            messages_deleted += _delete_ids(session, Message, ids)
            session.commit()

        while True:
            rows = session.execute(orphan_attachments).all()
            if not rows:
                break
            attachments_deleted += _delete_ids(session, Attachment, [row.id for row in rows])
            stored_paths.extend(row.storage_path for row in rows if row.storage_path)
            session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("Integrity repair failed; transaction rolled back")
        raise MaintenanceError("database integrity repair failed") from exc

    if storage is not None and stored_paths:
        storage.discard(stored_paths)

    if messages_deleted or attachments_deleted:
        logger.info(
            "Repaired orphaned rows (messages=%d, attachments=%d)",
            messages_deleted,
            attachments_deleted,
        )
    return messages_deleted, attachments_deleted


def release_stale_claims(session: Session) -> int:
    """Drop conversation claims whose card is closed or gone."""

    stale = (
        select(ConversationClaim.id)
        .outerjoin(Card, Card.id == ConversationClaim.card_id)
        .where(or_(Card.id.is_(None), Card.status == CardStatus.CLOSED.value))
    )
    try:
        released = _delete_ids(session, ConversationClaim, list(session.scalars(stale)))
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("Claim release failed; transaction rolled back")
        raise MaintenanceError("database claim release failed") from exc
    return released


def perform_maintenance(
    session: Session,
    *,
    settings: Settings | None = None,
    storage: StorageGateway | None = None,
) -> MaintenanceSummary:
    settings = settings or get_settings()
    storage = storage or StorageGateway(settings)

    cleanup: StorageCleanupSummary = storage.cleanup_old_attachments(days=settings.attachment_retention_days)
    activities = prune_activities(session, retention=timedelta(days=settings.activity_retention_days))
    messages, attachments = repair_integrity_issues(session, storage=storage, batch_size=settings.batch_size)
    claims = release_stale_claims(session)

    summary = MaintenanceSummary(
        attachments_scanned=cleanup.scanned,
        stored_objects_deleted=cleanup.deleted,
        stored_object_failures=cleanup.failed,
        activities_deleted=activities,
        orphan_messages=messages,
        orphan_attachments=attachments,
        claims_released=claims,
    )
    logger.info(
        "Maintenance finished (objects=%d, activities=%d, orphan_messages=%d, orphan_attachments=%d, claims=%d)",
        summary.stored_objects_deleted,
        summary.activities_deleted,
        summary.orphan_messages,
        summary.orphan_attachments,
        summary.claims_released,
    )
    return summary


def run_maintenance(
    session_factory: Callable[[], Session],
    *,
    settings: Settings | None = None,
    storage: StorageGateway | None = None,
) -> MaintenanceSummary:
    """Run one maintenance pass on a fresh session from ``session_factory``."""

    session = session_factory()
    try:
        return perform_maintenance(session, settings=settings, storage=storage)
    finally:
        session.close()


def check_health(
    session_factory: Callable[[], Session],
    *,
    storage: StorageGateway | None = None,
) -> dict[str, bool]:
    """Report whether the database and the attachment bucket are reachable."""

    session = session_factory()
    try:
        session.execute(text("SELECT 1"))
        database_ok = True
    except SQLAlchemyError:
        logger.exception("Database health check failed")
        database_ok = False
    finally:
        session.close()

    storage_ok = (storage or StorageGateway()).check()
    return {"database": database_ok, "storage": storage_ok}


__all__ = [
    "MaintenanceError",
    "MaintenanceSummary",
    "check_health",
    "perform_maintenance",
    "prune_activities",
    "release_stale_claims",
    "repair_integrity_issues",
    "run_maintenance",
]
