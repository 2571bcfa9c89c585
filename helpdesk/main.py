"""Application entry point for the helpdesk FastAPI service."""
from __future__ import annotations

import asyncio
import logging
import os
from datetime import timedelta
from typing import Iterable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .database import create_session, init_db
from .routers import auth_router, webhooks_router
from .services import MaintenanceError, check_health, run_maintenance, run_migrations_if_needed
from .ui.router import router as ui_router

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

APP_NAME = settings.app_name
API_VERSION = settings.api_version
DISABLE_MAINTENANCE = (
    os.getenv("DISABLE_MAINTENANCE", "").lower() == "true" or os.getenv("PYTEST_CURRENT_TEST") is not None
)

app = FastAPI(title=APP_NAME, version=API_VERSION)

cors_origins = os.getenv("CORS_ORIGINS")
if cors_origins:
    origins: Iterable[str] = [origin.strip() for origin in cors_origins.split(",") if origin.strip()]
else:
    origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ui_router)
app.include_router(auth_router)
app.include_router(webhooks_router)

_MAINTENANCE_INTERVAL = timedelta(hours=settings.maintenance_interval_hours)
_maintenance_task: asyncio.Task[None] | None = None
_maintenance_stop = asyncio.Event()


async def _run_maintenance_once() -> None:
    """Execute a single maintenance pass in a worker thread."""

    try:
        summary = await asyncio.to_thread(run_maintenance, create_session, settings=settings)
        logger.info("Maintenance summary (total=%d)", summary.total)
    except MaintenanceError:
        logger.exception("Scheduled maintenance failed")
    except Exception:
        logger.exception("Unexpected error during maintenance run")


async def _maintenance_loop() -> None:
    while not _maintenance_stop.is_set():
        await _run_maintenance_once()
        try:
            await asyncio.wait_for(_maintenance_stop.wait(), timeout=_MAINTENANCE_INTERVAL.total_seconds())
        except asyncio.TimeoutError:
            continue


@app.on_event("startup")
async def _startup() -> None:
    """Ensure the database schema and background tasks are ready before serving."""

    try:
        run_migrations_if_needed(database_url=settings.database_url)
        init_db()
    except Exception:
        logger.exception("Database initialisation failed")
        raise

    if DISABLE_MAINTENANCE:
        logger.info("Background maintenance disabled")
        return

    global _maintenance_task
    if _maintenance_task is None or _maintenance_task.done():
        _maintenance_stop.clear()
        _maintenance_task = asyncio.create_task(_maintenance_loop())


@app.on_event("shutdown")
async def _shutdown() -> None:
    if DISABLE_MAINTENANCE:
        return

    _maintenance_stop.set()
    if _maintenance_task is not None:
        try:
            await _maintenance_task
        except asyncio.CancelledError:
            pass


@app.get("/api", tags=["system"])
def api_info() -> dict[str, str]:
    return {"service": APP_NAME, "version": API_VERSION}


@app.get("/health", tags=["system"])
def healthcheck() -> dict[str, object]:
    """Report database and attachment storage reachability."""

    checks = check_health(create_session)
    return {"status": "ok" if all(checks.values()) else "degraded", "checks": checks}
