"""Card workflow: create, update, converse, delete and schedule meetings."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from ..constants import (
    ActivityType,
    CardSource,
    CardStatus,
    CUSTOMER_LABEL,
    MessageType,
    SYSTEM_USER,
)
from ..errors import AuthorizationError, ValidationError
from ..schemas import (
    CardCreateRequest,
    CardRecord,
    InboundAttachment,
    MeetingRequest,
    MessageRecord,
)
from ..utils import generate_id
from .calendar_service import CalendarService, Meeting
from .notification_dispatcher import DispatchResult, NotificationDispatcher, compute_changes
from .record_store import CascadeSummary, RecordKind, RecordStore
from .settings_store import SettingsStore
from .storage_gateway import AttachmentPolicy, AttachmentResult, StorageGateway

logger = logging.getLogger(__name__)


class AttachmentRejected(ValidationError):
    """Raised when any attachment in a batch fails validation or upload."""

    def __init__(self, results: Sequence[AttachmentResult]) -> None:
        failures = [f"{item.name}: {item.error}" for item in results if not item.success]
        super().__init__("Attachment processing failed: " + "; ".join(failures))
        self.results = list(results)


@dataclass(frozen=True)
class CardUpdateResult:
    card: CardRecord
    changes: dict[str, dict[str, Any]]
    notification: DispatchResult | None = None


@dataclass
class PreparedAttachments:
    """Attachments uploaded for a message that has not been written yet."""

    results: list[AttachmentResult] = field(default_factory=list)

    @property
    def paths(self) -> list[str]:
        return [item.storage_path for item in self.results if item.storage_path]


class CardService:
    def __init__(
        self,
        records: RecordStore,
        settings_store: SettingsStore,
        storage: StorageGateway,
        dispatcher: NotificationDispatcher,
        *,
        calendar: CalendarService | None = None,
    ) -> None:
        self._records = records
        self._store = settings_store
        self._storage = storage
        self._dispatcher = dispatcher
        self._calendar = calendar or CalendarService()

    @property
    def records(self) -> RecordStore:
        return self._records

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher

    # -- message validation and attachments ----------------------------------

    def attachment_policy(self) -> AttachmentPolicy:
        email = self._store.get("email", {}) or {}
        return AttachmentPolicy(
            max_size=int(email.get("maxAttachmentSize") or 0),
            allowed_types=tuple(str(item).lower() for item in email.get("allowedAttachmentTypes") or []),
        )

    def check_message(self, content: str, attachments: Sequence[InboundAttachment] = ()) -> None:
        """Reject over-long content, too many files, or any file failing policy."""

        cards = self._store.get("cards", {}) or {}
        max_length = int(cards.get("maxMessageLength") or 10000)
        if len(content or "") > max_length:
            raise ValidationError(f"Message exceeds maximum length of {max_length} characters")
        max_attachments = int(cards.get("maxAttachments") or 0)
        if len(attachments) > max_attachments:
            raise ValidationError(f"A message may carry at most {max_attachments} attachments")

        policy = self.attachment_policy()
        rejected = [
            AttachmentResult(
                name=item.name,
                success=False,
                mime_type=item.mime_type,
                size=item.byte_size,
                error=reason,
            )
            for item in attachments
            if (reason := policy.rejection(item)) is not None
        ]
        if rejected:
            raise AttachmentRejected(rejected)

    def upload_attachments(self, card_id: str, attachments: Sequence[InboundAttachment]) -> PreparedAttachments:
        """Upload a batch all-or-nothing; on any failure the uploaded files are removed."""

        if not attachments:
            return PreparedAttachments()
        outcome = self._storage.process(card_id, attachments, policy=self.attachment_policy())
        if not outcome.success:
            self._storage.discard(outcome.stored_paths)
            raise AttachmentRejected(outcome.results)
        return PreparedAttachments(results=list(outcome.results))

    def write_message(
        self,
        card_id: str,
        content: str,
        user: str | None,
        *,
        message_type: str = MessageType.REPLY,
        source: str = "web",
        prepared: PreparedAttachments | None = None,
        bump_card: bool = True,
    ) -> MessageRecord:
        """Persist a message plus its attachment rows in one transaction."""

        records = self._records
        prepared = prepared or PreparedAttachments()
        attachment_ids = [generate_id("att_") for _ in prepared.results]
        try:
            message = records.create(
                RecordKind.MESSAGE,
                {
                    "card_id": card_id,
                    "content": content or "",
                    "created_by": user,
                    "type": str(message_type),
                    "metadata": {"source": source, "attachments": attachment_ids},
                },
                commit=False,
            )
            attachment_records = []
            for attachment_id, item in zip(attachment_ids, prepared.results):
                attachment_records.append(
                    records.create(
                        RecordKind.ATTACHMENT,
                        {
                            "card_id": card_id,
                            "message_id": message.id,
                            "name": item.name,
                            "type": item.mime_type,
                            "size": item.size,
                            "storage_path": item.storage_path,
                        },
                        record_id=attachment_id,
                        commit=False,
                    )
                )
            if bump_card:
                records.touch_card(card_id, commit=False)
            records.commit()
        except Exception:
            records.rollback()
            self._storage.discard(prepared.paths)
            raise

        message.attachments = attachment_records
        return message

    # -- customer cards ------------------------------------------------------

    def find_or_create_customer_card(self, email: str) -> CardRecord:
        card, created = self._records.get_or_create_customer_card(
            email,
            {
                "title": email,
                "created_by": email,
                "labels": [CUSTOMER_LABEL],
                "source": CardSource.WEB.value,
                "metadata": {"email": email},
            },
        )
        if created:
            logger.info("Created customer card %s for %s", card.id, email)
        return card

    # -- operations ----------------------------------------------------------

    def create_card(self, request: CardCreateRequest | Mapping[str, Any], user: str) -> CardRecord:
        """Create a card from the web UI with an optional first message."""

        if not isinstance(request, CardCreateRequest):
            request = CardCreateRequest.model_validate(request)
        if not (request.title or "").strip():
            raise ValidationError("Title is required")
        if request.status and request.status not in {status.value for status in CardStatus}:
            raise ValidationError(f"Unknown status {request.status}")
        if request.content:
            self.check_message(request.content)

        metadata = dict(request.metadata)
        metadata.setdefault("email", user)
        card = self._records.create(
            RecordKind.CARD,
            {
                "title": request.title.strip(),
                "status": request.status or self._store.get("cards.defaultStatus", CardStatus.NEW.value),
                "created_by": user,
                "assigned_to": request.assigned_to,
                "labels": request.labels,
                "source": (request.source or CardSource.WEB.value).strip().lower(),
                "metadata": metadata,
            },
        )
        if request.content:
            self.write_message(
                card.id,
                request.content,
                user,
                message_type=MessageType.INITIAL,
                source=card.source,
                bump_card=False,
            )
        self._records.log_activity(ActivityType.CARD_CREATED, user, card_id=card.id, details={"title": card.title})
        self._dispatcher.notify_new_card(card)
        return card

    def update_card(self, card_id: str, patch: Mapping[str, Any], user: str) -> CardUpdateResult:
        """Apply a patch, record the diff, and notify about the update or closure."""

        if "status" in patch and patch["status"] not in {status.value for status in CardStatus}:
            raise ValidationError(f"Unknown status {patch['status']}")

        before = self._records.get(RecordKind.CARD, card_id)
        after = self._records.update(RecordKind.CARD, card_id, patch)
        changes = compute_changes(before, after)

        if "status" in changes:
            self.write_message(
                card_id,
                f"Status changed from {changes['status']['from']} to {changes['status']['to']}",
                SYSTEM_USER,
                message_type=MessageType.SYSTEM,
                bump_card=False,
            )

        self._records.log_activity(ActivityType.CARD_UPDATED, user, card_id=card_id, details={"changes": changes})

        notification: DispatchResult | None = None
        if after.status == CardStatus.CLOSED and before.status != CardStatus.CLOSED:
            self._records.release_claims(card_id)
            notification = self._dispatcher.notify_card_closed(after)
        elif changes:
            notification = self._dispatcher.notify_card_updated(after, changes)
        return CardUpdateResult(card=after, changes=changes, notification=notification)

    def add_message(
        self,
        card_id: str,
        content: str,
        user: str | None,
        *,
        message_type: str = MessageType.REPLY,
        source: str = "web",
        attachments: Sequence[InboundAttachment] = (),
    ) -> MessageRecord:
        self._records.get(RecordKind.CARD, card_id)
        self.check_message(content, attachments)
        prepared = self.upload_attachments(card_id, attachments)
        message = self.write_message(
            card_id,
            content,
            user,
            message_type=message_type,
            source=source,
            prepared=prepared,
        )
        self._records.log_activity(
            ActivityType.MESSAGE_ADDED,
            user,
            card_id=card_id,
            details={"message_id": message.id, "source": source, "attachments": len(message.attachments)},
        )
        return message

    def get_messages(self, card_id: str) -> list[MessageRecord]:
        self._records.get(RecordKind.CARD, card_id)
        return self._records.list_messages(card_id)

    def delete_card(self, card_id: str, user: str, *, is_admin: bool) -> CascadeSummary:
        if not is_admin:
            raise AuthorizationError("Admin privileges required")
        card = self._records.get(RecordKind.CARD, card_id)
        summary = self._records.delete_card(card_id)
        self._records.log_activity(
            ActivityType.CARD_DELETED,
            user,
            details={
                "card_id": card_id,
                "title": card.title,
                "messages": summary.messages,
                "attachments": summary.attachments,
            },
        )
        return summary

    def schedule_meeting(self, request: MeetingRequest | Mapping[str, Any], user: str) -> Meeting:
        if not isinstance(request, MeetingRequest):
            request = MeetingRequest.model_validate(request)
        if request.card_id:
            self._records.get(RecordKind.CARD, request.card_id)

        meeting = self._calendar.schedule_meeting(request)
        self._records.log_activity(
            ActivityType.MEETING_SCHEDULED,
            user,
            card_id=request.card_id,
            details={"event_id": meeting.id, "start_time": meeting.start, "duration": request.duration},
        )
        if request.card_id:
            link = f" ({meeting.meet_link})" if meeting.meet_link else ""
            self.write_message(
                request.card_id,
                f"Meeting scheduled: {meeting.title} at {meeting.start}{link}",
                SYSTEM_USER,
                message_type=MessageType.SYSTEM,
            )
        return meeting


__all__ = ["AttachmentRejected", "CardService", "CardUpdateResult", "PreparedAttachments"]
