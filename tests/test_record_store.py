"""Tests for generic record persistence, claims and cascade deletes."""
from __future__ import annotations

import os
from typing import Iterator

import pytest
from sqlalchemy import delete, func, select

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///./test_helpdesk.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

from helpdesk.constants import CardKind, CardStatus  # noqa: E402
from helpdesk.database import Base, SessionLocal, engine  # noqa: E402
from helpdesk.errors import NotFoundError, ValidationError  # noqa: E402
from helpdesk.models import Activity, AppSetting, Attachment, Card, ConversationClaim, Message  # noqa: E402
from helpdesk.services.record_store import RecordKind  # noqa: E402


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


def test_create_and_fetch_card(harness_factory):
    records = harness_factory().helpdesk.records

    card = records.create(RecordKind.CARD, {"title": "Broken login", "labels": ["Auth", "auth", " "]})
    fetched = records.get(RecordKind.CARD, card.id)

    assert card.id.startswith("card_")
    assert fetched.title == "Broken login"
    assert fetched.status == CardStatus.NEW
    assert fetched.kind == CardKind.ISSUE
    assert fetched.created_at == fetched.updated_at
    assert fetched.metadata == {}


def test_create_requires_a_title(harness_factory):
    records = harness_factory().helpdesk.records

    with pytest.raises(ValidationError):
        records.create(RecordKind.CARD, {"title": "   "})


def test_create_rejects_unknown_fields(harness_factory):
    records = harness_factory().helpdesk.records

    with pytest.raises(ValidationError, match="priority"):
        records.create(RecordKind.CARD, {"title": "x", "priority": "high"})


def test_empty_update_still_advances_updated_at(harness_factory):
    records = harness_factory().helpdesk.records
    card = records.create(RecordKind.CARD, {"title": "Quiet card"})

    touched = records.update(RecordKind.CARD, card.id, {})

    assert touched.updated_at > card.updated_at
    assert touched.created_at == card.created_at
    assert touched.title == "Quiet card"


def test_update_refuses_immutable_fields(harness_factory):
    records = harness_factory().helpdesk.records
    card = records.create(RecordKind.CARD, {"title": "Stable"})

    with pytest.raises(ValidationError, match="Immutable"):
        records.update(RecordKind.CARD, card.id, {"id": "card_other"})
    with pytest.raises(ValidationError, match="Immutable"):
        records.update(RecordKind.CARD, card.id, {"created_at": card.created_at})


def test_messages_are_append_only(harness_factory):
    records = harness_factory().helpdesk.records
    card = records.create(RecordKind.CARD, {"title": "Thread"})
    message = records.create(RecordKind.MESSAGE, {"card_id": card.id, "content": "hi"})

    with pytest.raises(ValidationError):
        records.update(RecordKind.MESSAGE, message.id, {"content": "edited"})


def test_missing_record_raises_not_found(harness_factory):
    records = harness_factory().helpdesk.records

    assert records.find(RecordKind.CARD, "card_missing") is None
    with pytest.raises(NotFoundError):
        records.get(RecordKind.CARD, "card_missing")


def test_list_cards_filters_by_label_and_status(harness_factory):
    records = harness_factory().helpdesk.records
    records.create(RecordKind.CARD, {"title": "A", "labels": ["billing"]})
    records.create(RecordKind.CARD, {"title": "B", "labels": ["billing-old"], "status": "resolved"})

    assert [card.title for card in records.list_cards(label="billing")] == ["A"]
    assert [card.title for card in records.list_cards(status="resolved")] == ["B"]


def _count(records, model, card_id: str) -> int:
    table = model.__table__
    return records.session.execute(select(func.count()).select_from(table).where(table.c.card_id == card_id)).scalar_one()


def test_delete_card_cascades_rows_and_stored_objects(harness_factory):
    harness = harness_factory()
    records = harness.helpdesk.records
    card = records.create(RecordKind.CARD, {"title": "Doomed"})
    other = records.create(RecordKind.CARD, {"title": "Survivor"})
    message = records.create(RecordKind.MESSAGE, {"card_id": card.id, "content": "bye"})
    for name in ("a.txt", "b.txt"):
        path = f"attachments/{card.id}/1_{name}"
        harness.helpdesk.storage.upload(path, name.encode(), "text/plain")
        records.create(
            RecordKind.ATTACHMENT,
            {
                "card_id": card.id,
                "message_id": message.id,
                "name": name,
                "type": "text/plain",
                "size": len(name),
                "storage_path": path,
            },
        )
    records.log_activity("card_created", "agent@support.test", card_id=card.id)
    records.log_activity("card_created", "agent@support.test", card_id=other.id)

    summary = records.delete_card(card.id)

    assert (summary.messages, summary.attachments, summary.activities) == (1, 2, 1)
    assert summary.stored_objects_deleted == 2
    assert harness.s3.objects == {}
    assert records.find(RecordKind.CARD, card.id) is None
    assert _count(records, Message, card.id) == 0
    assert _count(records, Attachment, card.id) == 0
    assert _count(records, Activity, card.id) == 0
    assert [activity.card_id for activity in records.recent_activities()] == [other.id]


def test_claimed_card_is_created_once_per_scope(harness_factory):
    records = harness_factory().helpdesk.records
    customer = records.create(RecordKind.CARD, {"title": "c@customer.test", "kind": "customer"})
    fields = {"title": "Slack conversation in C1", "parent_id": customer.id}

    first, created = records.create_claimed_card(customer_card_id=customer.id, source="slack", scope="C1", fields=fields)
    again, created_again = records.create_claimed_card(customer_card_id=customer.id, source="slack", scope="C1", fields=fields)
    other, created_other = records.create_claimed_card(customer_card_id=customer.id, source="slack", scope="C2", fields=fields)

    assert created is True and created_again is False and created_other is True
    assert again.id == first.id
    assert other.id != first.id


def test_statistics_count_issue_cards_only(harness_factory):
    records = harness_factory().helpdesk.records
    records.create(RecordKind.CARD, {"title": "c@customer.test", "kind": "customer"})
    records.create(RecordKind.CARD, {"title": "Open"})
    records.create(RecordKind.CARD, {"title": "Working", "status": "in_progress"})
    records.create(RecordKind.CARD, {"title": "Done", "status": "resolved"})

    stats = records.statistics()

    assert stats.total_cards == 3
    assert stats.active_cards == 2
    assert stats.resolution_rate == pytest.approx(33.33)
    assert stats.avg_response_time_minutes is None


def test_claim_conflict_returns_the_winning_card(harness_factory, monkeypatch):
    records = harness_factory().helpdesk.records
    customer = records.create(RecordKind.CARD, {"title": "c@customer.test", "kind": "customer"})
    fields = {"title": "Chat conversation in Ops", "parent_id": customer.id}
    winner, _ = records.create_claimed_card(customer_card_id=customer.id, source="chat", scope="Ops", fields=fields)

    lookups = []
    original = records.find_active_issue

    def _stale_first_lookup(*args):
        lookups.append(args)
        return None if len(lookups) == 1 else original(*args)

    monkeypatch.setattr(records, "find_active_issue", _stale_first_lookup)

    card, created = records.create_claimed_card(customer_card_id=customer.id, source="chat", scope="Ops", fields=fields)

    assert created is False
    assert card.id == winner.id
    assert len(lookups) == 2
    assert [item.id for item in records.list_cards(kind=CardKind.ISSUE.value)] == [winner.id]


def test_customer_card_is_unique_per_email(harness_factory, monkeypatch):
    records = harness_factory().helpdesk.records
    fields = {"title": "dana@customer.test", "labels": ["customer"]}
    first, created = records.get_or_create_customer_card("Dana@Customer.test", fields)

    original = records.find_customer_card
    calls = []

    def _stale_first_lookup(email):
        calls.append(email)
        return None if len(calls) == 1 else original(email)

    monkeypatch.setattr(records, "find_customer_card", _stale_first_lookup)

    second, created_again = records.get_or_create_customer_card("dana@customer.test", fields)

    assert created is True and created_again is False
    assert second.id == first.id
    assert first.customer_email == "dana@customer.test"
    assert len(records.list_cards(kind=CardKind.CUSTOMER.value)) == 1


def test_create_rejects_unknown_source(harness_factory):
    records = harness_factory().helpdesk.records

    with pytest.raises(ValidationError, match="carrier-pigeon"):
        records.create(RecordKind.CARD, {"title": "t", "source": "carrier-pigeon"})
    assert records.list_cards() == []


def test_create_uses_runtime_default_status(harness_factory):
    helpdesk = harness_factory().helpdesk
    helpdesk.settings_store.update({"cards": {"defaultStatus": "in_progress"}})

    card = helpdesk.records.create(RecordKind.CARD, {"title": "Triage later"})

    assert card.status == CardStatus.IN_PROGRESS
