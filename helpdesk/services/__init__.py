"""Convenience exports for the service layer."""
from .auth_service import (
    AuthenticatedUser,
    build_authorization_url,
    create_session_token,
    current_user,
    decode_session_token,
    exchange_code,
    is_admin_email,
    is_allowed_email,
)
from .calendar_service import CalendarService, Meeting
from .card_service import AttachmentRejected, CardService, CardUpdateResult
from .directory import CustomerDirectory
from .email_service import EmailDeliveryError, send_email
from .ingestion import IngestionPipeline, PipelineResult
from .maintenance import MaintenanceError, MaintenanceSummary, check_health, run_maintenance
from .migrations import run_migrations_if_needed
from .notification_dispatcher import DispatchResult, NotificationDispatcher, NotificationEvent
from .record_store import CascadeSummary, RecordKind, RecordStore
from .registry import Helpdesk, build_helpdesk, get_helpdesk
from .settings_store import SettingsStore, default_settings, validate_settings
from .storage_gateway import AttachmentPolicy, ProcessResult, StorageGateway

__all__ = [
    "AttachmentPolicy",
    "AttachmentRejected",
    "AuthenticatedUser",
    "CalendarService",
    "CardService",
    "CardUpdateResult",
    "CascadeSummary",
    "CustomerDirectory",
    "DispatchResult",
    "EmailDeliveryError",
    "Helpdesk",
    "IngestionPipeline",
    "MaintenanceError",
    "MaintenanceSummary",
    "Meeting",
    "NotificationDispatcher",
    "NotificationEvent",
    "PipelineResult",
    "ProcessResult",
    "RecordKind",
    "RecordStore",
    "SettingsStore",
    "StorageGateway",
    "build_authorization_url",
    "build_helpdesk",
    "check_health",
    "create_session_token",
    "current_user",
    "decode_session_token",
    "default_settings",
    "exchange_code",
    "get_helpdesk",
    "is_admin_email",
    "is_allowed_email",
    "run_maintenance",
    "run_migrations_if_needed",
    "send_email",
    "validate_settings",
]
