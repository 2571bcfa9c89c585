"""Engine and session factory shared by request handlers and maintenance jobs."""
from __future__ import annotations

from typing import Any, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import get_settings

settings = get_settings()


def _engine_options(database_url: str) -> dict[str, Any]:
    if database_url.startswith("sqlite"):
        # Sessions are opened from the maintenance worker thread as well
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine: Engine = create_engine(settings.database_url, **_engine_options(settings.database_url))

# Records are decoded after commit, so keep loaded attributes around
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    """Declarative base for the card, message, attachment, activity, settings and claim tables."""


def get_session() -> Iterator[Session]:
    """Yield one session per request; it is closed once the response is sent."""

    with SessionLocal() as session:
        yield session


def create_session() -> Session:
    return SessionLocal()


def init_db() -> None:
    """Create missing helpdesk tables (SQLite and first boot)."""

    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


__all__ = ["Base", "SessionLocal", "create_session", "engine", "get_session", "init_db"]
