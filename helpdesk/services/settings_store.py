"""Runtime settings with DB-backed persistence.

Each scope is one JSON document in ``app_settings`` merged over defaults derived
from the process configuration. Writes read the whole document, change it and
store it back wholesale, so concurrent writers resolve as last-writer-wins.
"""

from __future__ import annotations

import copy
import json
import logging
from typing import Any, Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..constants import CardStatus
from ..errors import ExternalServiceError, ValidationError
from ..models import AppSetting
from ..utils import deep_merge, get_path, set_path

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "global"
_KEY_PREFIX = "settings:"


def default_settings(settings: Settings) -> dict[str, Any]:
    """Build the default settings document from the process configuration."""

    allowed_domains = settings.allowed_domains or ([settings.admin_domain.lower()] if settings.admin_domain else [])
    return {
        "email": {
            "enabled": settings.email_channel_enabled,
            "processingInterval": 60,
            "maxAttachmentSize": settings.max_attachment_size,
            "allowedAttachmentTypes": list(settings.allowed_attachment_types),
        },
        "slack": {
            "enabled": settings.slack_channel_enabled,
            "webhookUrl": settings.slack_webhook_url or "",
            "channelId": "",
        },
        "chat": {
            "enabled": settings.chat_channel_enabled,
        },
        "cards": {
            "autoLabeling": True,
            "defaultStatus": settings.default_status,
            "closedAfterDays": 30,
            "maxAttachments": 10,
            "maxMessageLength": 10000,
        },
        "ui": {
            "cardsPerPage": settings.page_size,
            "theme": "light",
            "defaultView": "cards",
        },
        "notifications": {
            "emailNotifications": True,
            "slackNotifications": bool(settings.slack_webhook_url),
            "notifyOnNewCard": True,
            "notifyOnCardUpdate": True,
            "notifyOnCardClose": True,
        },
        "security": {
            "allowedDomains": allowed_domains,
            "sessionTimeout": settings.session_minutes * 60,
            "maxLoginAttempts": 3,
        },
    }


def validate_settings(document: Mapping[str, Any]) -> list[str]:
    """Return human readable problems with a settings document (empty when valid)."""

    errors: list[str] = []
    email = document.get("email") or {}
    interval = email.get("processingInterval")
    if email.get("enabled") and (not isinstance(interval, (int, float)) or interval < 30):
        errors.append("Email processing interval must be at least 30 seconds")

    cards = document.get("cards") or {}
    length = cards.get("maxMessageLength")
    if not isinstance(length, int) or length < 1000 or length > 100000:
        errors.append("Card message length must be between 1,000 and 100,000 characters")
    if cards.get("defaultStatus") not in {status.value for status in CardStatus}:
        errors.append("Default card status must be one of: " + ", ".join(status.value for status in CardStatus))
    max_attachments = cards.get("maxAttachments")
    if not isinstance(max_attachments, int) or max_attachments < 0:
        errors.append("Maximum attachments must be a non-negative integer")

    security = document.get("security") or {}
    domains = security.get("allowedDomains")
    if not isinstance(domains, list) or not domains:
        errors.append("At least one allowed domain must be specified")
    return errors


class SettingsStore:
    """Dot-path get/set over a persisted settings document."""

    def __init__(self, db: Session, settings: Settings | None = None, *, scope: str = DEFAULT_SCOPE) -> None:
        self._db = db
        self._settings = settings or get_settings()
        self._scope = scope
        self._defaults = default_settings(self._settings)

    @property
    def key(self) -> str:
        return f"{_KEY_PREFIX}{self._scope}"

    def _stored(self) -> dict[str, Any]:
        row = self._db.get(AppSetting, self.key)
        if row is None or not row.value:
            return {}
        try:
            data = json.loads(row.value)
        except ValueError:
            logger.error("Stored settings for scope %s are not valid JSON; using defaults", self._scope)
            return {}
        return data if isinstance(data, dict) else {}

    def all(self) -> dict[str, Any]:
        return deep_merge(self._defaults, self._stored())

    def get(self, path: str, default: Any = None) -> Any:
        return copy.deepcopy(get_path(self.all(), path, default))

    def _write(self, document: dict[str, Any]) -> dict[str, Any]:
        problems = validate_settings(document)
        if problems:
            raise ValidationError("; ".join(problems))

        payload = json.dumps(document, sort_keys=True)
        row = self._db.get(AppSetting, self.key)
        if row is None:
            row = AppSetting(key=self.key, value=payload)
            self._db.add(row)
        else:
            row.value = payload

        try:
            self._db.commit()
        except SQLAlchemyError as exc:
            self._db.rollback()
            logger.exception("Failed to persist settings for scope %s", self._scope)
            raise ExternalServiceError("database write failed for settings") from exc
        return document

    def set(self, path: str, value: Any) -> dict[str, Any]:
        document = self.all()
        set_path(document, path, value)
        return self._write(document)

    def update(self, changes: Mapping[str, Any]) -> dict[str, Any]:
        """Merge a nested mapping (or dot-path keys) into the document."""

        document = self.all()
        for key, value in changes.items():
            if "." in key:
                set_path(document, key, value)
            elif isinstance(value, Mapping) and isinstance(document.get(key), dict):
                document[key] = deep_merge(document[key], value)
            else:
                document[key] = copy.deepcopy(value)
        return self._write(document)

    def reset(self) -> dict[str, Any]:
        row = self._db.get(AppSetting, self.key)
        if row is not None:
            self._db.delete(row)
            try:
                self._db.commit()
            except SQLAlchemyError as exc:
                self._db.rollback()
                raise ExternalServiceError("database write failed for settings") from exc
        return copy.deepcopy(self._defaults)

    def export_json(self) -> str:
        return json.dumps(self.all(), indent=2, sort_keys=True)

    def import_json(self, text: str) -> dict[str, Any]:
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise ValidationError("Settings import is not valid JSON") from exc
        if not isinstance(data, dict):
            raise ValidationError("Settings import must be a JSON object")
        return self._write(deep_merge(self._defaults, data))


__all__ = ["DEFAULT_SCOPE", "SettingsStore", "default_settings", "validate_settings"]
