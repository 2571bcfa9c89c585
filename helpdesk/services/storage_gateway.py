"""Object storage gateway for attachment bytes (any S3-compatible bucket)."""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Sequence
from urllib.parse import quote

from boto3.session import Session
from botocore.client import BaseClient
from botocore.exceptions import BotoCoreError, ClientError

from ..config import Settings, get_settings
from ..schemas import InboundAttachment
from ..security.secrets import MissingSecretError, resolve_secret
from ..utils import ensure_utc, mime_type_allowed, utcnow

logger = logging.getLogger(__name__)

SIZE_LIMIT_ERROR = "File exceeds maximum size limit"
TYPE_NOT_ALLOWED_ERROR = "File type not allowed"


class StorageConfigurationError(RuntimeError):
    """Raised when the bucket or credentials are missing."""


@dataclass(frozen=True)
class StoredObject:
    path: str
    size: int
    last_modified: datetime | None


@dataclass(frozen=True)
class StorageResult:
    """Outcome of a single storage call; failures carry ``error`` instead of raising."""

    success: bool
    path: str | None = None
    url: str | None = None
    data: bytes | None = None
    objects: tuple[StoredObject, ...] = ()
    error: str | None = None


@dataclass(frozen=True)
class AttachmentResult:
    name: str
    success: bool
    mime_type: str
    size: int
    storage_path: str | None = None
    url: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class ProcessResult:
    success: bool
    results: list[AttachmentResult] = field(default_factory=list)

    @property
    def stored_paths(self) -> list[str]:
        return [item.storage_path for item in self.results if item.success and item.storage_path]

    @property
    def errors(self) -> list[str]:
        return [f"{item.name}: {item.error}" for item in self.results if not item.success]


@dataclass(frozen=True, slots=True)
class StorageCleanupSummary:
    scanned: int
    deleted: int
    failed: int


@dataclass(frozen=True)
class AttachmentPolicy:
    """Size and MIME-type rules applied before upload."""

    max_size: int
    allowed_types: tuple[str, ...]

    @classmethod
    def from_settings(cls, settings: Settings) -> "AttachmentPolicy":
        return cls(max_size=settings.max_attachment_size, allowed_types=tuple(settings.allowed_attachment_types))

    def rejection(self, attachment: InboundAttachment) -> str | None:
        if max(attachment.byte_size, attachment.size or 0) > self.max_size:
            return SIZE_LIMIT_ERROR
        if not mime_type_allowed(attachment.mime_type, list(self.allowed_types)):
            return TYPE_NOT_ALLOWED_ERROR
        return None


_client: BaseClient | None = None


def set_storage_client(client: BaseClient | None) -> None:
    """Override the shared S3 client (used by tests)."""

    global _client
    _client = client


def get_storage_client(settings: Settings | None = None) -> BaseClient:
    """Return the shared boto3 client, creating it from settings on first use."""

    global _client
    if _client is not None:
        return _client
    settings = settings or get_settings()
    try:
        key = resolve_secret(settings.storage_key, "STORAGE_KEY")
        secret = resolve_secret(settings.storage_secret, "STORAGE_SECRET")
    except MissingSecretError as exc:
        raise StorageConfigurationError(str(exc)) from exc
    session = Session()
    _client = session.client(
        "s3",
        region_name=settings.storage_region,
        endpoint_url=settings.storage_endpoint or None,
        aws_access_key_id=key,
        aws_secret_access_key=secret,
    )
    return _client


def _safe_name(name: str) -> str:
    """Keep the original filename, dropping any directory part."""

    cleaned = (name or "").replace("\\", "/").split("/")[-1].strip()
    if cleaned in {"", ".", ".."}:
        return "file"
    return cleaned


def _safe_segment(value: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9._-]", "-", value.strip())
    if cleaned in {"", ".", ".."}:
        raise ValueError("invalid storage path segment")
    return cleaned


class StorageGateway:
    """Validate attachments and move their bytes to and from the bucket."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client: BaseClient | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client
        self._clock = clock
        self._bucket = (self._settings.storage_bucket or "").strip()
        self._namespace = self._settings.attachment_path.strip("/") or "attachments"

    @property
    def namespace(self) -> str:
        return self._namespace

    def _s3(self) -> BaseClient:
        if not self._bucket:
            raise StorageConfigurationError("STORAGE_BUCKET is not configured")
        if self._client is None:
            self._client = get_storage_client(self._settings)
        return self._client

    def attachment_path(self, card_id: str, name: str, *, timestamp_ms: int | None = None) -> str:
        stamp = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
        return f"{self._namespace}/{_safe_segment(card_id)}/{stamp}_{_safe_name(name)}"

    # -- single calls --------------------------------------------------------

    def upload(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> StorageResult:
        try:
            self._s3().put_object(Bucket=self._bucket, Key=path, Body=data, ContentType=content_type)
        except (ClientError, BotoCoreError, StorageConfigurationError) as exc:
            logger.warning("Upload of %s failed: %s", path, exc)
            return StorageResult(success=False, path=path, error=str(exc))
        return StorageResult(success=True, path=path, url=self._object_url(path))

    def download(self, path: str) -> StorageResult:
        try:
            response = self._s3().get_object(Bucket=self._bucket, Key=path)
            body = response["Body"].read()
        except (ClientError, BotoCoreError, StorageConfigurationError) as exc:
            logger.warning("Download of %s failed: %s", path, exc)
            return StorageResult(success=False, path=path, error=str(exc))
        return StorageResult(success=True, path=path, data=body)

    def delete(self, path: str) -> StorageResult:
        try:
            self._s3().delete_object(Bucket=self._bucket, Key=path)
        except (ClientError, BotoCoreError, StorageConfigurationError) as exc:
            logger.warning("Delete of %s failed: %s", path, exc)
            return StorageResult(success=False, path=path, error=str(exc))
        return StorageResult(success=True, path=path)

    def list(self, prefix: str) -> StorageResult:
        objects: list[StoredObject] = []
        kwargs: dict[str, Any] = {"Bucket": self._bucket, "Prefix": prefix}
        try:
            client = self._s3()
            while True:
                response = client.list_objects_v2(**kwargs)
                for item in response.get("Contents", []) or []:
                    objects.append(
                        StoredObject(
                            path=item["Key"],
                            size=int(item.get("Size", 0)),
                            last_modified=ensure_utc(item.get("LastModified")),
                        )
                    )
                if not response.get("IsTruncated"):
                    break
                kwargs["ContinuationToken"] = response.get("NextContinuationToken")
        except (ClientError, BotoCoreError, StorageConfigurationError) as exc:
            logger.warning("Listing %s failed: %s", prefix, exc)
            return StorageResult(success=False, path=prefix, error=str(exc))
        return StorageResult(success=True, path=prefix, objects=tuple(objects))

    def signed_url(self, path: str, *, expires: int = 3600) -> StorageResult:
        try:
            url = self._s3().generate_presigned_url(
                "get_object",
                Params={"Bucket": self._bucket, "Key": path},
                ExpiresIn=expires,
            )
        except (ClientError, BotoCoreError, StorageConfigurationError) as exc:
            logger.warning("Signing URL for %s failed: %s", path, exc)
            return StorageResult(success=False, path=path, error=str(exc))
        return StorageResult(success=True, path=path, url=url)

    def _object_url(self, path: str) -> str:
        endpoint = (self._settings.storage_endpoint or "").rstrip("/")
        if endpoint:
            return f"{endpoint}/{self._bucket}/{quote(path)}"
        return f"s3://{self._bucket}/{quote(path)}"

    # -- attachment pipeline -------------------------------------------------

    def process(
        self,
        card_id: str,
        attachments: Sequence[InboundAttachment],
        *,
        policy: AttachmentPolicy | None = None,
    ) -> ProcessResult:
        """Validate and upload each attachment; overall success only if every file succeeded."""

        policy = policy or AttachmentPolicy.from_settings(self._settings)
        results: list[AttachmentResult] = []
        for attachment in attachments:
            size = attachment.byte_size
            reason = policy.rejection(attachment)
            if reason is not None:
                logger.info("Rejected attachment %s for card %s: %s", attachment.name, card_id, reason)
                results.append(
                    AttachmentResult(
                        name=attachment.name,
                        success=False,
                        mime_type=attachment.mime_type,
                        size=size,
                        error=reason,
                    )
                )
                continue

            path = self.attachment_path(card_id, attachment.name)
            outcome = self.upload(path, attachment.content, attachment.mime_type)
            results.append(
                AttachmentResult(
                    name=attachment.name,
                    success=outcome.success,
                    mime_type=attachment.mime_type,
                    size=size,
                    storage_path=path if outcome.success else None,
                    url=outcome.url,
                    error=outcome.error,
                )
            )

        return ProcessResult(success=all(item.success for item in results), results=results)

    def discard(self, paths: Iterable[str]) -> int:
        """Best-effort removal of objects uploaded by a failed batch."""

        removed = 0
        for path in paths:
            if self.delete(path).success:
                removed += 1
        return removed

    def cleanup_old_attachments(self, *, days: int | None = None) -> StorageCleanupSummary:
        """Delete stored attachments older than the retention window, referenced or not."""

        days = days if days is not None else self._settings.attachment_retention_days
        if days <= 0:
            raise ValueError("days must be positive")
        cutoff = self._clock() - timedelta(days=days)

        listing = self.list(f"{self._namespace}/")
        if not listing.success:
            logger.error("Attachment cleanup could not list storage: %s", listing.error)
            return StorageCleanupSummary(scanned=0, deleted=0, failed=0)

        deleted = failed = 0
        for item in listing.objects:
            if item.last_modified is None or item.last_modified >= cutoff:
                continue
            if self.delete(item.path).success:
                deleted += 1
            else:
                failed += 1

        logger.info(
            "Attachment cleanup finished (scanned=%d, deleted=%d, failed=%d)",
            len(listing.objects),
            deleted,
            failed,
        )
        return StorageCleanupSummary(scanned=len(listing.objects), deleted=deleted, failed=failed)

    def check(self) -> bool:
        try:
            self._s3().head_bucket(Bucket=self._bucket)
        except (ClientError, BotoCoreError, StorageConfigurationError) as exc:
            logger.warning("Storage health check failed: %s", exc)
            return False
        return True


__all__ = [
    "AttachmentPolicy",
    "AttachmentResult",
    "ProcessResult",
    "SIZE_LIMIT_ERROR",
    "StorageCleanupSummary",
    "StorageConfigurationError",
    "StorageGateway",
    "StorageResult",
    "StoredObject",
    "TYPE_NOT_ALLOWED_ERROR",
    "get_storage_client",
    "set_storage_client",
]
