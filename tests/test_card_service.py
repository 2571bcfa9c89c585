"""Tests for the card workflow used by the dashboard actions."""
from __future__ import annotations

import json
import os
from typing import Iterator

import httpx
import pytest
from sqlalchemy import delete

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///./test_helpdesk.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

from conftest import build_settings  # noqa: E402

from helpdesk.constants import ActivityType, CardStatus, MessageType  # noqa: E402
from helpdesk.database import Base, SessionLocal, engine  # noqa: E402
from helpdesk.errors import AuthorizationError, ExternalServiceError, ValidationError  # noqa: E402
from helpdesk.models import Activity, AppSetting, Attachment, Card, ConversationClaim, Message  # noqa: E402
from helpdesk.schemas import InboundAttachment  # noqa: E402
from helpdesk.services import CalendarService, CardService  # noqa: E402

AGENT = "agent@support.test"


@pytest.fixture(scope="module", autouse=True)
def _create_schema() -> Iterator[None]:
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _clean_database() -> Iterator[None]:
    with SessionLocal() as session:
        for model in (Attachment, Message, Activity, ConversationClaim, Card, AppSetting):
            session.execute(delete(model))
        session.commit()
    yield


def test_create_card_with_first_message(harness_factory):
    harness = harness_factory()
    cards = harness.helpdesk.cards

    card = cards.create_card(
        {"title": " Reset MFA ", "content": "Lost my phone", "labels": ["auth"], "metadata": {"email": "dan@customer.test"}},
        AGENT,
    )

    assert card.title == "Reset MFA"
    assert card.status == CardStatus.NEW
    assert card.created_by == AGENT
    [message] = cards.get_messages(card.id)
    assert message.type == MessageType.INITIAL
    assert message.content == "Lost my phone"
    assert harness.mailer.sent[0]["to"] == "dan@customer.test"
    assert harness.helpdesk.records.recent_activities()[0].type == ActivityType.CARD_CREATED


def test_create_card_requires_title(harness_factory):
    cards = harness_factory().helpdesk.cards

    with pytest.raises(ValidationError, match="Title is required"):
        cards.create_card({"title": ""}, AGENT)


def test_create_card_rejects_unknown_source(harness_factory):
    cards = harness_factory().helpdesk.cards

    with pytest.raises(ValidationError, match="Unknown card source"):
        cards.create_card({"title": "t", "source": "carrier-pigeon"}, AGENT)
    assert cards.records.list_cards() == []


def test_status_change_writes_system_message_and_notifies(harness_factory):
    harness = harness_factory()
    cards = harness.helpdesk.cards
    card = cards.create_card({"title": "Slow VPN"}, AGENT)
    harness.mailer.sent.clear()

    result = cards.update_card(card.id, {"status": "in_progress", "assigned_to": AGENT}, AGENT)

    assert result.changes["status"] == {"from": "new", "to": "in_progress"}
    assert result.changes["assigned_to"] == {"from": None, "to": AGENT}
    assert result.card.updated_at > card.updated_at
    [system] = cards.get_messages(card.id)
    assert system.type == MessageType.SYSTEM
    assert system.content == "Status changed from new to in_progress"
    assert harness.mailer.sent[0]["subject"].startswith("[HelpDesk] Support Card Updated")


def test_closing_sends_close_notification(harness_factory):
    harness = harness_factory()
    cards = harness.helpdesk.cards
    card = cards.create_card({"title": "Done soon"}, AGENT)
    harness.mailer.sent.clear()

    result = cards.update_card(card.id, {"status": "closed"}, AGENT)

    assert result.notification.event == "card_closed"
    assert harness.mailer.sent[0]["subject"] == "[HelpDesk] Support Card Closed: Done soon"


def test_update_rejects_unknown_status(harness_factory):
    cards = harness_factory().helpdesk.cards
    card = cards.create_card({"title": "Typo"}, AGENT)

    with pytest.raises(ValidationError):
        cards.update_card(card.id, {"status": "done"}, AGENT)


def test_add_message_with_attachment_bumps_card(harness_factory):
    harness = harness_factory()
    cards = harness.helpdesk.cards
    card = cards.create_card({"title": "Logs"}, AGENT)

    message = cards.add_message(
        card.id,
        "Attached the log",
        AGENT,
        attachments=[InboundAttachment(name="app.log", content=b"trace", mime_type="text/plain")],
    )

    [attachment] = message.attachments
    assert attachment.storage_path in harness.s3.objects
    assert harness.helpdesk.records.get("card", card.id).updated_at > card.updated_at
    assert harness.helpdesk.records.card_statistics(card.id).attachment_size == len(b"trace")


def test_delete_requires_admin(harness_factory):
    cards = harness_factory().helpdesk.cards
    card = cards.create_card({"title": "Keep me"}, AGENT)

    with pytest.raises(AuthorizationError):
        cards.delete_card(card.id, AGENT, is_admin=False)

    summary = cards.delete_card(card.id, "ops@support.test", is_admin=True)
    assert summary.card_id == card.id
    [activity] = cards.records.recent_activities()
    assert activity.type == ActivityType.CARD_DELETED
    assert activity.details["title"] == "Keep me"


def _calendar(handler) -> CalendarService:
    settings = build_settings(CALENDAR_ACCESS_TOKEN="calendar-token", CALENDAR_TIMEZONE="UTC")
    return CalendarService(settings, client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_schedule_meeting_posts_event_and_records_message(harness_factory):
    harness = harness_factory()
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"id": "evt_1", "summary": "Kickoff", "hangoutLink": "https://meet.test/abc", "htmlLink": "https://cal.test/evt_1"},
        )

    helpdesk = harness.helpdesk
    cards = CardService(helpdesk.records, helpdesk.settings_store, helpdesk.storage, helpdesk.dispatcher, calendar=_calendar(_handler))
    card = cards.create_card({"title": "Onboarding"}, AGENT)

    meeting = cards.schedule_meeting(
        {"cardId": card.id, "title": "Kickoff", "date": "2026-10-20", "time": "15:30", "attendees": ["dan@example.com"]},
        AGENT,
    )

    assert meeting.meet_link == "https://meet.test/abc"
    assert meeting.start == "2026-10-20T15:30:00+00:00"
    assert meeting.end == "2026-10-20T16:15:00+00:00"
    body = json.loads(seen[0].content)
    assert body["attendees"] == [{"email": "dan@example.com"}]
    assert seen[0].headers["Authorization"] == "Bearer calendar-token"
    [message] = cards.get_messages(card.id)
    assert message.type == MessageType.SYSTEM
    assert "https://meet.test/abc" in message.content


def test_schedule_meeting_surfaces_calendar_errors(harness_factory):
    helpdesk = harness_factory().helpdesk
    cards = CardService(
        helpdesk.records,
        helpdesk.settings_store,
        helpdesk.storage,
        helpdesk.dispatcher,
        calendar=_calendar(lambda request: httpx.Response(503)),
    )

    with pytest.raises(ExternalServiceError):
        cards.schedule_meeting({"title": "Sync", "date": "2026-10-20", "time": "09:00"}, AGENT)


def test_schedule_meeting_rejects_bad_dates(harness_factory):
    helpdesk = harness_factory().helpdesk
    cards = CardService(
        helpdesk.records,
        helpdesk.settings_store,
        helpdesk.storage,
        helpdesk.dispatcher,
        calendar=_calendar(lambda request: httpx.Response(200, json={})),
    )

    with pytest.raises(ValidationError):
        cards.schedule_meeting({"title": "Sync", "date": "20/10/2026", "time": "9am"}, AGENT)
