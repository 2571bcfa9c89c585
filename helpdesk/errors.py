"""Error taxonomy shared by services, routers and the ingestion pipeline."""
from __future__ import annotations

import re


class HelpdeskError(RuntimeError):
    """Base class for expected helpdesk failures."""

    kind = "HelpdeskError"


class ValidationError(HelpdeskError):
    """Raised for missing required fields or invalid configuration values."""

    kind = "ValidationError"


class AuthenticationError(HelpdeskError):
    kind = "AuthenticationError"


class UnauthorizedSender(AuthenticationError):
    """Raised when an inbound sender is not a verified customer."""

    def __init__(self, sender: str | None) -> None:
        super().__init__("Unauthorized sender")
        self.sender = sender


class AuthorizationError(HelpdeskError):
    kind = "AuthorizationError"


class NotFoundError(HelpdeskError):
    kind = "NotFoundError"


class ExternalServiceError(HelpdeskError):
    """Raised when mail, storage, calendar or database calls fail."""

    kind = "ExternalServiceError"


class IntegrityError(HelpdeskError):
    """Raised when a uniqueness conflict cannot be resolved to a single record."""

    kind = "IntegrityError"


_CRITICAL_PATTERNS = (
    re.compile(r"database.*fail", re.IGNORECASE),
    re.compile(r"storage.*fail", re.IGNORECASE),
    re.compile(r"authentication.*fail", re.IGNORECASE),
    re.compile(r"authorization.*fail", re.IGNORECASE),
    re.compile(r"quota.*exceed", re.IGNORECASE),
)


def is_critical_error(exc: BaseException) -> bool:
    """Return True when an error message warrants paging the admins."""

    message = str(exc)
    return any(pattern.search(message) for pattern in _CRITICAL_PATTERNS)


__all__ = [
    "AuthenticationError",
    "AuthorizationError",
    "ExternalServiceError",
    "HelpdeskError",
    "IntegrityError",
    "NotFoundError",
    "UnauthorizedSender",
    "ValidationError",
    "is_critical_error",
]
