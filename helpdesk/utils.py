"""Small helpers shared across services: ids, clocks, retries and dict paths."""
from __future__ import annotations

import copy
import logging
import re
import secrets
import string
import time
from datetime import datetime, timedelta, timezone
from email.utils import parseaddr
from typing import Any, Callable, Mapping, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_BASE36 = string.digits + string.ascii_lowercase
_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
_ID_SUFFIX_LENGTH = 8


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops the offset on read)."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def later_than(previous: datetime | None) -> datetime:
    """Return the current time, nudged forward so it sorts after ``previous``."""

    now = utcnow()
    previous = ensure_utc(previous)
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("value must be non-negative")
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_id(prefix: str) -> str:
    """Return ``prefix`` + base36 millisecond timestamp + random base36 suffix."""

    timestamp = to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(_ID_SUFFIX_LENGTH))
    return f"{prefix}{timestamp}{suffix}"


def parse_email_address(value: str | None) -> str | None:
    """Reduce ``Name <addr>`` style senders to a lower-cased address."""

    if not value:
        return None
    _, address = parseaddr(value)
    address = (address or value).strip().lower()
    return address or None


def is_valid_email(value: str | None) -> bool:
    return bool(value and _EMAIL_RE.match(value))


def email_domain(value: str) -> str:
    return value.rsplit("@", 1)[-1].lower()


def mime_type_allowed(mime_type: str, allowed: list[str]) -> bool:
    """Match a MIME type against exact entries or ``category/*`` wildcards."""

    mime_type = (mime_type or "").lower()
    for entry in allowed:
        if entry.endswith("/*"):
            if mime_type.startswith(entry[:-1]):
                return True
        elif mime_type == entry:
            return True
    return False


def retry_operation(
    operation: Callable[[], T],
    *,
    attempts: int = 3,
    delay_ms: int = 1000,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` with exponential backoff, re-raising the last failure."""

    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except retry_on as exc:
            if attempt == attempts:
                raise
            wait = (delay_ms / 1000.0) * (2 ** (attempt - 1))
            logger.warning("Attempt %d/%d failed (%s); retrying in %.2fs", attempt, attempts, exc, wait)
            sleep(wait)
    raise AssertionError("unreachable")  # pragma: no cover


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into a copy of ``base``; nested dicts merge, other values replace."""

    merged = copy.deepcopy(dict(base))
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def get_path(document: Mapping[str, Any], path: str, default: Any = None) -> Any:
    node: Any = document
    for part in path.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return default
        node = node[part]
    return node


def set_path(document: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    node = document
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


__all__ = [
    "deep_merge",
    "email_domain",
    "ensure_utc",
    "generate_id",
    "get_path",
    "is_valid_email",
    "later_than",
    "mime_type_allowed",
    "parse_email_address",
    "retry_operation",
    "set_path",
    "to_base36",
    "utcnow",
]
