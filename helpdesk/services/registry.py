"""Wire the helpdesk components together for one database session."""
from __future__ import annotations

from dataclasses import dataclass

import httpx
from fastapi import Depends
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..database import get_session
from .calendar_service import CalendarService
from .card_service import CardService
from .directory import CustomerDirectory
from .ingestion import IngestionPipeline
from .notification_dispatcher import Mailer, NotificationDispatcher
from .record_store import RecordStore
from .settings_store import SettingsStore
from .storage_gateway import StorageGateway


@dataclass(frozen=True)
class Helpdesk:
    settings: Settings
    records: RecordStore
    settings_store: SettingsStore
    storage: StorageGateway
    dispatcher: NotificationDispatcher
    directory: CustomerDirectory
    cards: CardService
    pipeline: IngestionPipeline


def build_helpdesk(
    db: Session,
    settings: Settings | None = None,
    *,
    storage: StorageGateway | None = None,
    mailer: Mailer | None = None,
    http_client: httpx.Client | None = None,
    directory: CustomerDirectory | None = None,
    calendar: CalendarService | None = None,
) -> Helpdesk:
    settings = settings or get_settings()
    storage = storage or StorageGateway(settings)
    settings_store = SettingsStore(db, settings)
    records = RecordStore(
        db,
        settings,
        storage=storage,
        default_status=lambda: settings_store.get("cards.defaultStatus", settings.default_status),
    )
    dispatcher = NotificationDispatcher(settings_store, settings, mailer=mailer, http_client=http_client)
    directory = directory or CustomerDirectory(settings)
    cards = CardService(
        records,
        settings_store,
        storage,
        dispatcher,
        calendar=calendar or CalendarService(settings),
    )
    return Helpdesk(
        settings=settings,
        records=records,
        settings_store=settings_store,
        storage=storage,
        dispatcher=dispatcher,
        directory=directory,
        cards=cards,
        pipeline=IngestionPipeline(cards, settings_store, directory),
    )


def get_helpdesk(db: Session = Depends(get_session)) -> Helpdesk:
    """FastAPI dependency returning the request-scoped component graph."""

    return build_helpdesk(db)


__all__ = ["Helpdesk", "build_helpdesk", "get_helpdesk"]
