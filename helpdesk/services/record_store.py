"""Typed CRUD over the card, message, attachment and activity tables.

Statements are built with SQLAlchemy Core against each model's table and every
row is decoded by column name into a pydantic record, never by position.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from enum import StrEnum
from typing import Any, Callable, Iterable, Mapping, Protocol

from pydantic import BaseModel
from sqlalchemy import String, Table, case, cast, delete, func, insert, select, update
from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..constants import ACTIVE_STATUSES, CardKind, CardSource, CardStatus
from ..errors import ExternalServiceError, IntegrityError, NotFoundError, ValidationError
from ..models import Activity, Attachment, Card, ConversationClaim, Message
from ..schemas import (
    ActivityRecord,
    AttachmentRecord,
    CardRecord,
    CardStatistics,
    HelpdeskStatistics,
    MessageRecord,
)
from ..utils import ensure_utc, generate_id, later_than, utcnow

logger = logging.getLogger(__name__)


class RecordKind(StrEnum):
    CARD = "card"
    MESSAGE = "message"
    ATTACHMENT = "attachment"
    ACTIVITY = "activity"


@dataclass(frozen=True)
class _KindSpec:
    table: Table
    record: type[BaseModel]
    prefix: str
    mutable: bool = False


_SPECS: dict[RecordKind, _KindSpec] = {
    RecordKind.CARD: _KindSpec(Card.__table__, CardRecord, "card_", mutable=True),
    RecordKind.MESSAGE: _KindSpec(Message.__table__, MessageRecord, "msg_"),
    RecordKind.ATTACHMENT: _KindSpec(Attachment.__table__, AttachmentRecord, "att_"),
    RecordKind.ACTIVITY: _KindSpec(Activity.__table__, ActivityRecord, "activity_"),
}

_IMMUTABLE_FIELDS = frozenset({"id", "created_at"})


class ObjectDeleter(Protocol):
    def delete(self, path: str) -> Any:
        ...


@dataclass(frozen=True, slots=True)
class CascadeSummary:
    """Rows and stored objects removed by a card delete."""

    card_id: str
    messages: int
    attachments: int
    activities: int
    stored_objects_deleted: int = 0
    stored_object_failures: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return 1 + self.messages + self.attachments + self.activities


def _columns(table: Table) -> dict[str, Any]:
    return {column.name: column for column in table.columns}


def _named_select(table: Table):
    return select(*[column.label(column.name) for column in table.columns])


def _normalise_labels(labels: Iterable[str] | None) -> list[str]:
    seen: dict[str, None] = {}
    for label in labels or []:
        text = str(label).strip()
        if text:
            seen.setdefault(text, None)
    return list(seen)


class RecordStore:
    """CRUD gateway for the four record kinds, bound to one session."""

    def __init__(
        self,
        db: Session,
        settings: Settings | None = None,
        *,
        storage: ObjectDeleter | None = None,
        default_status: Callable[[], str] | None = None,
    ) -> None:
        self._db = db
        self._settings = settings or get_settings()
        self._storage = storage
        self._default_status = default_status or (lambda: self._settings.default_status)

    @property
    def session(self) -> Session:
        return self._db

    # -- transaction helpers -------------------------------------------------

    def commit(self) -> None:
        try:
            self._db.commit()
        except sa_exc.SQLAlchemyError as exc:
            self._db.rollback()
            logger.exception("Record store commit failed")
            raise ExternalServiceError("database commit failed") from exc

    def rollback(self) -> None:
        self._db.rollback()

    def _execute(self, statement, *, commit: bool):
        try:
            result = self._db.execute(statement)
            if commit:
                self._db.commit()
        except sa_exc.SQLAlchemyError as exc:
            self._db.rollback()
            logger.exception("Record store statement failed")
            raise ExternalServiceError("database write failed") from exc
        return result

    def _decode(self, kind: RecordKind, row) -> Any:
        return _SPECS[kind].record.model_validate(dict(row._mapping))

    # -- generic CRUD --------------------------------------------------------

    def create(
        self,
        kind: RecordKind | str,
        fields: Mapping[str, Any],
        *,
        record_id: str | None = None,
        commit: bool = True,
    ):
        """Insert a new record with a generated id and matching timestamps."""

        kind = RecordKind(kind)
        spec = _SPECS[kind]
        columns = _columns(spec.table)
        unknown = sorted(set(fields) - set(columns))
        if unknown:
            raise ValidationError(f"Unknown {kind} fields: {', '.join(unknown)}")

        now = utcnow()
        values: dict[str, Any] = dict(fields)
        values["id"] = record_id or generate_id(spec.prefix)
        values["created_at"] = now
        if "updated_at" in columns:
            values["updated_at"] = now

        if kind is RecordKind.CARD:
            if not (values.get("title") or "").strip():
                raise ValidationError("Card title is required")
            values.setdefault("status", self._default_status())
            values["labels"] = _normalise_labels(values.get("labels"))
            values["metadata"] = dict(values.get("metadata") or {})
            values.setdefault("kind", CardKind.ISSUE.value)
            values.setdefault("source", CardSource.WEB.value)
            if values["source"] not in {source.value for source in CardSource}:
                raise ValidationError(f"Unknown card source {values['source']}")
        elif kind is RecordKind.MESSAGE:
            if not values.get("card_id"):
                raise ValidationError("Message card_id is required")
            values["metadata"] = dict(values.get("metadata") or {})
        elif kind is RecordKind.ATTACHMENT:
            if not values.get("card_id"):
                raise ValidationError("Attachment card_id is required")
        elif kind is RecordKind.ACTIVITY:
            values["details"] = dict(values.get("details") or {})

        statement = insert(spec.table).values({columns[name]: value for name, value in values.items()})
        self._execute(statement, commit=commit)
        logger.debug("Created %s %s", kind, values["id"])
        return spec.record.model_validate(values)

    def find(self, kind: RecordKind | str, record_id: str):
        kind = RecordKind(kind)
        table = _SPECS[kind].table
        row = self._db.execute(_named_select(table).where(table.c.id == record_id)).first()
        return self._decode(kind, row) if row is not None else None

    def get(self, kind: RecordKind | str, record_id: str):
        record = self.find(kind, record_id)
        if record is None:
            raise NotFoundError(f"{RecordKind(kind).value} {record_id} not found")
        return record

    def update(
        self,
        kind: RecordKind | str,
        record_id: str,
        patch: Mapping[str, Any],
        *,
        commit: bool = True,
    ):
        """Apply ``patch`` and bump ``updated_at``; returns the re-fetched record."""

        kind = RecordKind(kind)
        spec = _SPECS[kind]
        if not spec.mutable:
            raise ValidationError(f"{kind} records are append-only")

        columns = _columns(spec.table)
        forbidden = sorted(set(patch) & _IMMUTABLE_FIELDS)
        if forbidden:
            raise ValidationError(f"Immutable fields cannot be updated: {', '.join(forbidden)}")
        unknown = sorted(set(patch) - set(columns))
        if unknown:
            raise ValidationError(f"Unknown {kind} fields: {', '.join(unknown)}")

        current = self.get(kind, record_id)
        values: dict[str, Any] = dict(patch)
        if "labels" in values:
            values["labels"] = _normalise_labels(values["labels"])
        if "metadata" in values:
            values["metadata"] = dict(values["metadata"] or {})
        if "title" in values and not (values["title"] or "").strip():
            raise ValidationError("Card title is required")
        values["updated_at"] = later_than(current.updated_at)

        statement = (
            update(spec.table)
            .where(spec.table.c.id == record_id)
            .values({columns[name]: value for name, value in values.items()})
        )
        self._execute(statement, commit=commit)
        return self.get(kind, record_id)

    def touch_card(self, card_id: str, *, commit: bool = True) -> CardRecord:
        return self.update(RecordKind.CARD, card_id, {}, commit=commit)

    def delete_records(self, kind: RecordKind | str, record_ids: Iterable[str], *, commit: bool = True) -> int:
        kind = RecordKind(kind)
        ids = list(record_ids)
        if not ids:
            return 0
        table = _SPECS[kind].table
        result = self._execute(delete(table).where(table.c.id.in_(ids)), commit=commit)
        return result.rowcount or 0

    # -- cards ---------------------------------------------------------------

    def list_cards(
        self,
        *,
        status: str | None = None,
        assigned_to: str | None = None,
        created_by: str | None = None,
        label: str | None = None,
        kind: str | None = None,
        source: str | None = None,
        parent_id: str | None = None,
        limit: int | None = None,
    ) -> list[CardRecord]:
        """Return cards matching every provided filter, newest first."""

        table = Card.__table__
        statement = _named_select(table)
        if status:
            statement = statement.where(table.c.status == status)
        if assigned_to:
            statement = statement.where(table.c.assigned_to == assigned_to)
        if created_by:
            statement = statement.where(table.c.created_by == created_by)
        if kind:
            statement = statement.where(table.c.kind == kind)
        if source:
            statement = statement.where(table.c.source == source)
        if parent_id:
            statement = statement.where(table.c.parent_id == parent_id)
        if label:
            # Labels are stored as a JSON list; match the quoted member.
            encoded = '"' + label.replace("\\", "\\\\").replace('"', '\\"') + '"'
            statement = statement.where(cast(table.c.labels, String).contains(encoded, autoescape=True))

        limit = limit if limit and limit > 0 else self._settings.page_size
        statement = statement.order_by(table.c.created_at.desc(), table.c.id.desc()).limit(limit)
        return [self._decode(RecordKind.CARD, row) for row in self._db.execute(statement)]

    def find_customer_card(self, email: str) -> CardRecord | None:
        table = Card.__table__
        statement = _named_select(table).where(table.c.customer_email == email.strip().lower())
        row = self._db.execute(statement).first()
        return self._decode(RecordKind.CARD, row) if row is not None else None

    def get_or_create_customer_card(self, email: str, fields: Mapping[str, Any]) -> tuple[CardRecord, bool]:
        """Return ``(card, created)`` for the customer keyed by ``email``.

        ``customer_email`` is unique, so a delivery that loses an insert race
        rolls back and reads the winner's card.
        """

        key = email.strip().lower()
        for _attempt in range(2):
            existing = self.find_customer_card(key)
            if existing is not None:
                return existing, False
            values = {**fields, "kind": CardKind.CUSTOMER.value, "customer_email": key}
            try:
                return self.create(RecordKind.CARD, values), True
            except ExternalServiceError as exc:
                if not isinstance(exc.__cause__, sa_exc.IntegrityError):
                    raise
                logger.info("Customer card for %s created concurrently", key)
        raise IntegrityError(f"customer card for {key} could not be resolved")

    # -- conversation claims -------------------------------------------------

    def find_active_issue(self, customer_card_id: str, source: str, scope: str) -> CardRecord | None:
        """Return the claimed non-closed issue card for a conversation scope.

        A claim whose card is missing or closed is released on the way out.
        """

        claims = ConversationClaim.__table__
        row = self._db.execute(
            select(claims.c.id, claims.c.card_id).where(
                claims.c.customer_card_id == customer_card_id,
                claims.c.source == source,
                claims.c.scope == scope,
            )
        ).first()
        if row is None:
            return None
        card = self.find(RecordKind.CARD, row.card_id)
        if card is not None and card.status != CardStatus.CLOSED:
            return card
        logger.info("Releasing stale conversation claim %s (card %s)", row.id, row.card_id)
        self._execute(delete(claims).where(claims.c.id == row.id), commit=True)
        return None

    def create_claimed_card(
        self,
        *,
        customer_card_id: str,
        source: str,
        scope: str,
        fields: Mapping[str, Any],
    ) -> tuple[CardRecord, bool]:
        """Get-or-insert the issue card for a conversation scope.

        Returns ``(card, created)``. The claim row and the card are written in
        one transaction, so concurrent deliveries converge on a single card.
        """

        claims = ConversationClaim.__table__
        for _attempt in range(2):
            existing = self.find_active_issue(customer_card_id, source, scope)
            if existing is not None:
                return existing, False

            card_id = generate_id(_SPECS[RecordKind.CARD].prefix)
            try:
                self._db.execute(
                    insert(claims).values(
                        id=generate_id("claim_"),
                        customer_card_id=customer_card_id,
                        source=source,
                        scope=scope,
                        card_id=card_id,
                        created_at=utcnow(),
                    )
                )
            except sa_exc.IntegrityError:
                self._db.rollback()
                logger.info("Conversation %s/%s/%s already claimed", customer_card_id, source, scope)
                continue
            except sa_exc.SQLAlchemyError as exc:
                self._db.rollback()
                logger.exception("Failed to claim conversation")
                raise ExternalServiceError("database write failed") from exc

            card = self.create(RecordKind.CARD, fields, record_id=card_id, commit=False)
            self.commit()
            return card, True

        existing = self.find_active_issue(customer_card_id, source, scope)
        if existing is None:
            raise IntegrityError("conversation claim could not be resolved")
        return existing, False

    def release_claims(self, card_id: str, *, commit: bool = True) -> int:
        claims = ConversationClaim.__table__
        result = self._execute(delete(claims).where(claims.c.card_id == card_id), commit=commit)
        return result.rowcount or 0

    # -- messages, attachments and activities --------------------------------

    def list_attachments(self, *, card_id: str | None = None, message_id: str | None = None) -> list[AttachmentRecord]:
        table = Attachment.__table__
        statement = _named_select(table)
        if card_id:
            statement = statement.where(table.c.card_id == card_id)
        if message_id:
            statement = statement.where(table.c.message_id == message_id)
        statement = statement.order_by(table.c.created_at.asc(), table.c.id.asc())
        return [self._decode(RecordKind.ATTACHMENT, row) for row in self._db.execute(statement)]

    def list_messages(self, card_id: str) -> list[MessageRecord]:
        """Return a card's messages oldest first with their attachments grouped in."""

        table = Message.__table__
        statement = (
            _named_select(table)
            .where(table.c.card_id == card_id)
            .order_by(table.c.created_at.asc(), table.c.id.asc())
        )
        messages = [self._decode(RecordKind.MESSAGE, row) for row in self._db.execute(statement)]
        grouped: dict[str, list[AttachmentRecord]] = {}
        for attachment in self.list_attachments(card_id=card_id):
            if attachment.message_id:
                grouped.setdefault(attachment.message_id, []).append(attachment)
        for message in messages:
            message.attachments = grouped.get(message.id, [])
        return messages

    def log_activity(
        self,
        activity_type: str,
        user: str | None,
        *,
        card_id: str | None = None,
        details: Mapping[str, Any] | None = None,
        commit: bool = True,
    ) -> ActivityRecord:
        return self.create(
            RecordKind.ACTIVITY,
            {"type": str(activity_type), "user": user, "card_id": card_id, "details": dict(details or {})},
            commit=commit,
        )

    def recent_activities(
        self,
        *,
        card_id: str | None = None,
        user: str | None = None,
        limit: int = 50,
    ) -> list[ActivityRecord]:
        table = Activity.__table__
        statement = _named_select(table)
        if card_id:
            statement = statement.where(table.c.card_id == card_id)
        if user:
            statement = statement.where(table.c.user == user)
        statement = statement.order_by(table.c.created_at.desc(), table.c.id.desc()).limit(limit)
        return [self._decode(RecordKind.ACTIVITY, row) for row in self._db.execute(statement)]

    # -- cascade delete ------------------------------------------------------

    def delete_card(self, card_id: str) -> CascadeSummary:
        """Delete a card with its attachments, messages, activities and stored objects.

        Rows go in a single transaction; stored objects are removed after the
        commit and any failures are left for the attachment cleanup job.
        """

        self.get(RecordKind.CARD, card_id)
        attachments = self.list_attachments(card_id=card_id)
        storage_paths = [attachment.storage_path for attachment in attachments]

        attachment_table = Attachment.__table__
        message_table = Message.__table__
        activity_table = Activity.__table__
        claim_table = ConversationClaim.__table__
        card_table = Card.__table__
        try:
            removed_attachments = self._db.execute(
                delete(attachment_table).where(attachment_table.c.card_id == card_id)
            ).rowcount
            removed_messages = self._db.execute(
                delete(message_table).where(message_table.c.card_id == card_id)
            ).rowcount
            removed_activities = self._db.execute(
                delete(activity_table).where(activity_table.c.card_id == card_id)
            ).rowcount
            self._db.execute(delete(claim_table).where(claim_table.c.card_id == card_id))
            self._db.execute(delete(card_table).where(card_table.c.id == card_id))
            self._db.commit()
        except sa_exc.SQLAlchemyError as exc:
            self._db.rollback()
            logger.exception("Cascade delete failed for card %s; transaction rolled back", card_id)
            raise ExternalServiceError("database delete failed") from exc

        deleted_objects = 0
        failures: list[str] = []
        if self._storage is not None:
            for path in storage_paths:
                result = self._storage.delete(path)
                if getattr(result, "success", False):
                    deleted_objects += 1
                else:
                    failures.append(path)
                    logger.warning("Stored object %s for card %s was not deleted: %s", path, card_id, getattr(result, "error", None))

        summary = CascadeSummary(
            card_id=card_id,
            messages=removed_messages or 0,
            attachments=removed_attachments or 0,
            activities=removed_activities or 0,
            stored_objects_deleted=deleted_objects,
            stored_object_failures=failures,
        )
        logger.info(
            "Deleted card %s (messages=%d, attachments=%d, activities=%d, objects=%d)",
            card_id,
            summary.messages,
            summary.attachments,
            summary.activities,
            summary.stored_objects_deleted,
        )
        return summary

    # -- statistics ----------------------------------------------------------

    def _first_reply_times(self, card_id: str | None = None):
        cards = Card.__table__
        messages = Message.__table__
        first_reply = (
            select(messages.c.card_id, func.min(messages.c.created_at).label("first_reply"))
            .select_from(messages.join(cards, cards.c.id == messages.c.card_id))
            .where(messages.c.created_by != cards.c.created_by)
            .group_by(messages.c.card_id)
            .subquery()
        )
        statement = select(cards.c.id, cards.c.created_at, first_reply.c.first_reply).join(
            first_reply, first_reply.c.card_id == cards.c.id
        )
        if card_id:
            statement = statement.where(cards.c.id == card_id)
        else:
            statement = statement.where(cards.c.kind == CardKind.ISSUE.value)
        minutes: list[float] = []
        for row in self._db.execute(statement):
            created = ensure_utc(row.created_at)
            replied = ensure_utc(row.first_reply)
            if created is not None and replied is not None:
                minutes.append((replied - created).total_seconds() / 60.0)
        return minutes

    def statistics(self, *, days: int = 30) -> HelpdeskStatistics:
        """Summarise active cards, response time and resolution rate for issue cards."""

        cards = Card.__table__
        issue_filter = cards.c.kind == CardKind.ISSUE.value
        by_status = {
            status: count
            for status, count in self._db.execute(
                select(cards.c.status, func.count()).where(issue_filter).group_by(cards.c.status)
            )
        }
        active = sum(by_status.get(status.value, 0) for status in ACTIVE_STATUSES)

        cutoff = utcnow() - timedelta(days=days)
        window_total, window_resolved = self._db.execute(
            select(
                func.count(),
                func.coalesce(func.sum(case((cards.c.status == CardStatus.RESOLVED.value, 1), else_=0)), 0),
            ).where(issue_filter, cards.c.created_at >= cutoff)
        ).one()
        rate = round((window_resolved or 0) * 100.0 / window_total, 2) if window_total else 0.0

        minutes = self._first_reply_times()
        average = round(sum(minutes) / len(minutes), 2) if minutes else None
        return HelpdeskStatistics(
            active_cards=active,
            avg_response_time_minutes=average,
            resolution_rate=rate,
            total_cards=sum(by_status.values()),
            by_status=by_status,
        )

    def card_statistics(self, card_id: str) -> CardStatistics:
        self.get(RecordKind.CARD, card_id)
        messages = Message.__table__
        attachments = Attachment.__table__
        message_count = self._db.execute(
            select(func.count()).select_from(messages).where(messages.c.card_id == card_id)
        ).scalar_one()
        attachment_size = self._db.execute(
            select(func.coalesce(func.sum(attachments.c.size), 0)).where(attachments.c.card_id == card_id)
        ).scalar_one()
        minutes = self._first_reply_times(card_id)
        return CardStatistics(
            response_time_minutes=round(minutes[0], 2) if minutes else None,
            message_count=int(message_count or 0),
            attachment_size=int(attachment_size or 0),
        )


__all__ = ["CascadeSummary", "RecordKind", "RecordStore"]
