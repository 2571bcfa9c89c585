"""Turn inbound channel messages into customer and issue cards.

Every entry point returns a :class:`PipelineResult`; failures are converted into
``status="error"`` results instead of propagating to the delivering webhook.
"""
from __future__ import annotations

import logging
import traceback
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Mapping

from ..constants import ActivityType, CardKind, Channel, MessageType
from ..errors import HelpdeskError, UnauthorizedSender, ValidationError, is_critical_error
from ..schemas import CardRecord, InboundEnvelope, InboundMessage, MessageRecord
from ..utils import parse_email_address, utcnow
from .card_service import AttachmentRejected, CardService
from .directory import CustomerDirectory
from .record_store import RecordKind
from .settings_store import SettingsStore

logger = logging.getLogger(__name__)

IGNORED_SOURCE = "ignore"


@dataclass(frozen=True)
class PipelineResult:
    status: str
    message: str
    timestamp: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def create_response(status: str, message: str, data: Mapping[str, Any] | None = None) -> PipelineResult:
    return PipelineResult(status=status, message=message, timestamp=utcnow().isoformat(), data=dict(data or {}))


def error_response(exc: BaseException) -> PipelineResult:
    data: dict[str, Any] = {
        "error": exc.kind if isinstance(exc, HelpdeskError) else type(exc).__name__,
        "stack": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    }
    if isinstance(exc, AttachmentRejected):
        data["attachments"] = [
            {"name": item.name, "success": item.success, "error": item.error} for item in exc.results
        ]
    return create_response("error", str(exc) or type(exc).__name__, data)


def _parse_channel(source: str | None) -> Channel | None:
    try:
        return Channel((source or "").strip().lower())
    except ValueError:
        return None


@dataclass(frozen=True)
class _Conversation:
    channel: Channel
    scope_field: str
    metadata_key: str
    title_template: str
    created_message: str
    appended_message: str


_CONVERSATIONS = {
    Channel.SLACK: _Conversation(
        channel=Channel.SLACK,
        scope_field="channel",
        metadata_key="slackChannel",
        title_template="Slack conversation in {scope}",
        created_message="Slack message processed",
        appended_message="Message added to existing issue",
    ),
    Channel.CHAT: _Conversation(
        channel=Channel.CHAT,
        scope_field="space",
        metadata_key="chatSpace",
        title_template="Chat conversation in {scope}",
        created_message="Chat message processed",
        appended_message="Message added to existing chat",
    ),
}


class IngestionPipeline:
    def __init__(
        self,
        cards: CardService,
        settings_store: SettingsStore,
        directory: CustomerDirectory,
    ) -> None:
        self._cards = cards
        self._records = cards.records
        self._store = settings_store
        self._directory = directory
        self._handlers: dict[Channel, Callable[[InboundMessage], PipelineResult]] = {
            Channel.EMAIL: self._handle_email,
            Channel.SLACK: self._handle_slack,
            Channel.CHAT: self._handle_chat,
        }

    def on_message(self, event: Mapping[str, Any] | InboundEnvelope | InboundMessage) -> PipelineResult:
        """Process one inbound envelope; never raises."""

        try:
            message = self._parse(event)
            if message is None or (message.source or "").strip().lower() == IGNORED_SOURCE:
                return create_response("ignored", "Message filtered")

            channel = _parse_channel(message.source)
            if channel is None:
                return self._handle_generic(message)
            if not self._store.get(f"{channel.value}.enabled", True):
                logger.info("Dropping %s message: channel disabled", channel)
                return create_response("ignored", "Channel disabled", {"source": channel.value})
            return self._handlers[channel](message)
        except UnauthorizedSender as exc:
            return self._reject(exc.sender, getattr(event, "source", None) or _source_of(event))
        except Exception as exc:
            self._records.rollback()
            if isinstance(exc, HelpdeskError):
                logger.warning("Inbound message rejected: %s", exc)
            else:
                logger.exception("Unexpected error while processing inbound message")
            if is_critical_error(exc):
                self._alert_admins(exc)
            return error_response(exc)

    # -- parsing and verification --------------------------------------------

    @staticmethod
    def _parse(event: Mapping[str, Any] | InboundEnvelope | InboundMessage) -> InboundMessage | None:
        if isinstance(event, InboundMessage):
            return event
        if isinstance(event, InboundEnvelope):
            return event.message
        if not event:
            return None
        if "message" in event:
            return InboundEnvelope.model_validate(event).message
        return InboundMessage.model_validate(event)

    def _verify(self, sender: str | None) -> str:
        if not sender or not self._directory.is_verified_customer(sender):
            raise UnauthorizedSender(sender)
        return sender

    def _reject(self, sender: str | None, source: str | None) -> PipelineResult:
        logger.warning("Unauthorized sender: %s", sender)
        try:
            self._records.log_activity(
                ActivityType.SENDER_REJECTED,
                sender,
                details={"sender": sender, "source": source},
            )
        except Exception:
            self._records.rollback()
            logger.exception("Failed to record rejected sender %s", sender)
        return create_response(
            "error",
            "Unauthorized sender",
            {"error": UnauthorizedSender.kind, "sender": sender},
        )

    def _alert_admins(self, exc: BaseException) -> None:
        try:
            self._cards.dispatcher.notify_admins(
                "Critical ingestion error",
                f"{type(exc).__name__}: {exc}",
            )
        except Exception:
            logger.exception("Failed to notify admins about critical error")

    # -- shared steps --------------------------------------------------------

    def _start_conversation(
        self,
        card: CardRecord,
        message: InboundMessage,
        sender: str,
        source: Channel,
    ) -> MessageRecord:
        """Write the first message of a new issue card, deleting the card if that fails."""

        try:
            prepared = self._cards.upload_attachments(card.id, message.attachments)
            first = self._cards.write_message(
                card.id,
                message.content,
                sender,
                message_type=MessageType.INITIAL,
                source=source.value,
                prepared=prepared,
                bump_card=False,
            )
        except Exception:
            logger.warning("Discarding issue card %s after failed first message", card.id)
            self._records.delete_card(card.id)
            raise

        self._records.log_activity(
            ActivityType.CARD_CREATED,
            sender,
            card_id=card.id,
            details={"source": source.value, "message_id": first.id, "customer_card_id": card.parent_id},
        )
        self._cards.dispatcher.notify_new_card(card)
        return first

    def _issue_fields(self, *, title: str, customer: CardRecord, sender: str, source: Channel, extra: Mapping[str, Any]):
        metadata = {"email": sender, "customerCardId": customer.id}
        metadata.update(extra)
        return {
            "title": title,
            "kind": CardKind.ISSUE.value,
            "parent_id": customer.id,
            "status": self._store.get("cards.defaultStatus"),
            "created_by": sender,
            "source": source.value,
            "metadata": metadata,
        }

    # -- channel handlers ----------------------------------------------------

    def _handle_email(self, message: InboundMessage) -> PipelineResult:
        sender = self._verify(parse_email_address(message.sender))
        self._cards.check_message(message.content, message.attachments)

        customer = self._cards.find_or_create_customer_card(sender)
        subject = (message.subject or "").strip() or "(no subject)"
        issue = self._records.create(
            RecordKind.CARD,
            self._issue_fields(
                title=subject,
                customer=customer,
                sender=sender,
                source=Channel.EMAIL,
                extra={"subject": subject},
            ),
        )
        first = self._start_conversation(issue, message, sender, Channel.EMAIL)
        return create_response(
            "success",
            "Email processed",
            {"customer_card_id": customer.id, "issue_card_id": issue.id, "message_id": first.id},
        )

    def _handle_slack(self, message: InboundMessage) -> PipelineResult:
        sender = self._verify(self._directory.lookup_slack_email(message.sender))
        return self._handle_conversation(message, sender, _CONVERSATIONS[Channel.SLACK])

    def _handle_chat(self, message: InboundMessage) -> PipelineResult:
        sender = self._verify(parse_email_address(message.sender))
        return self._handle_conversation(message, sender, _CONVERSATIONS[Channel.CHAT])

    def _handle_conversation(self, message: InboundMessage, sender: str, conversation: _Conversation) -> PipelineResult:
        scope = (getattr(message, conversation.scope_field) or "").strip()
        if not scope:
            raise ValidationError(f"{conversation.channel.value} messages require a {conversation.scope_field}")
        self._cards.check_message(message.content, message.attachments)

        customer = self._cards.find_or_create_customer_card(sender)
        card, created = self._records.create_claimed_card(
            customer_card_id=customer.id,
            source=conversation.channel.value,
            scope=scope,
            fields=self._issue_fields(
                title=conversation.title_template.format(scope=scope),
                customer=customer,
                sender=sender,
                source=conversation.channel,
                extra={conversation.metadata_key: scope},
            ),
        )

        if created:
            first = self._start_conversation(card, message, sender, conversation.channel)
            return create_response(
                "success",
                conversation.created_message,
                {"customer_card_id": customer.id, "issue_card_id": card.id, "message_id": first.id},
            )

        reply = self._cards.add_message(
            card.id,
            message.content,
            sender,
            message_type=MessageType.REPLY,
            source=conversation.channel.value,
            attachments=message.attachments,
        )
        refreshed = self._records.get(RecordKind.CARD, card.id)
        self._cards.dispatcher.notify_card_updated(refreshed, {"messages": {"added": [reply.id], "removed": []}})
        return create_response(
            "success",
            conversation.appended_message,
            {"customer_card_id": customer.id, "issue_card_id": card.id, "message_id": reply.id},
        )

    def _handle_generic(self, message: InboundMessage) -> PipelineResult:
        logger.info("Processing generic message from source=%s sender=%s", message.source, message.sender)
        return create_response("success", "Generic message processed")


def _source_of(event: Any) -> str | None:
    if isinstance(event, Mapping):
        inner = event.get("message") if isinstance(event.get("message"), Mapping) else event
        source = inner.get("source") if isinstance(inner, Mapping) else None
        return str(source) if source else None
    if isinstance(event, InboundEnvelope) and event.message is not None:
        return event.message.source
    return None


__all__ = ["IngestionPipeline", "PipelineResult", "create_response", "error_response"]
