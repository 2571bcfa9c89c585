"""Tests for the persisted runtime settings document."""
from __future__ import annotations

import json
import os
from typing import Iterator

import pytest
from sqlalchemy import delete

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///./test_helpdesk.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

from conftest import build_settings  # noqa: E402

from helpdesk.database import Base, SessionLocal, engine  # noqa: E402
from helpdesk.errors import ValidationError  # noqa: E402
from helpdesk.models import AppSetting  # noqa: E402
from helpdesk.services import SettingsStore  # noqa: E402
from helpdesk.services.settings_store import default_settings, validate_settings  # noqa: E402


@pytest.fixture(scope="module", autouse=True)
def _create_schema() -> Iterator[None]:
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _clean_database() -> Iterator[None]:
    with SessionLocal() as session:
        session.execute(delete(AppSetting))
        session.commit()
    yield


@pytest.fixture
def store() -> Iterator[SettingsStore]:
    with SessionLocal() as session:
        yield SettingsStore(session, build_settings())


def test_defaults_come_from_configuration(store: SettingsStore):
    assert store.get("cards.defaultStatus") == "new"
    assert store.get("cards.maxMessageLength") == 10000
    assert store.get("slack.enabled") is True
    assert store.get("notifications.slackNotifications") is True
    assert store.get("security.allowedDomains") == ["support.test", "staff.test"]
    assert store.get("missing.path", "fallback") == "fallback"


def test_set_persists_across_sessions(store: SettingsStore):
    store.set("ui.theme", "dark")

    with SessionLocal() as session:
        reloaded = SettingsStore(session, build_settings())
        assert reloaded.get("ui.theme") == "dark"
        assert reloaded.get("ui.cardsPerPage") == 50


def test_update_merges_nested_sections(store: SettingsStore):
    document = store.update({"notifications": {"emailNotifications": False}, "cards.closedAfterDays": 7})

    assert document["notifications"]["emailNotifications"] is False
    assert document["notifications"]["notifyOnNewCard"] is True
    assert store.get("cards.closedAfterDays") == 7


def test_lists_are_replaced_not_merged(store: SettingsStore):
    store.update({"security": {"allowedDomains": ["only.test"]}})

    assert store.get("security.allowedDomains") == ["only.test"]


@pytest.mark.parametrize(
    "path, value, fragment",
    [
        ("email.processingInterval", 10, "processing interval"),
        ("cards.maxMessageLength", 50, "message length"),
        ("cards.defaultStatus", "archived", "Default card status"),
        ("security.allowedDomains", [], "allowed domain"),
    ],
)
def test_invalid_values_are_rejected(store: SettingsStore, path, value, fragment):
    with pytest.raises(ValidationError, match=fragment):
        store.set(path, value)

    assert store.get(path) != value


def test_validate_settings_accepts_defaults():
    assert validate_settings(default_settings(build_settings())) == []


def test_export_then_import(store: SettingsStore):
    store.set("ui.theme", "dark")
    exported = json.loads(store.export_json())
    exported["ui"]["defaultView"] = "home"

    store.reset()
    assert store.get("ui.theme") == "light"

    store.import_json(json.dumps(exported))
    assert store.get("ui.theme") == "dark"
    assert store.get("ui.defaultView") == "home"


def test_import_rejects_non_objects(store: SettingsStore):
    with pytest.raises(ValidationError):
        store.import_json("[1, 2]")
    with pytest.raises(ValidationError):
        store.import_json("{not json")
