"""Tests for attachment validation and the S3-backed storage gateway."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pydantic
import pytest

from conftest import FakeS3Client, build_settings

from helpdesk.schemas import InboundAttachment
from helpdesk.services.storage_gateway import (
    SIZE_LIMIT_ERROR,
    TYPE_NOT_ALLOWED_ERROR,
    AttachmentPolicy,
    StorageGateway,
)


def _gateway(s3: FakeS3Client | None = None, **overrides) -> tuple[StorageGateway, FakeS3Client]:
    s3 = s3 or FakeS3Client()
    return StorageGateway(build_settings(MAX_ATTACHMENT_SIZE=1024, **overrides), client=s3), s3


def test_process_uploads_valid_attachment():
    gateway, s3 = _gateway()

    outcome = gateway.process("card_abc", [InboundAttachment(name="screen shot.png", content=b"png-bytes", mime_type="image/png")])

    assert outcome.success is True
    [result] = outcome.results
    assert result.size == len(b"png-bytes")
    assert result.storage_path.startswith("attachments/card_abc/")
    assert result.storage_path.endswith("_screen shot.png")
    assert s3.objects[result.storage_path]["Body"] == b"png-bytes"
    assert s3.objects[result.storage_path]["ContentType"] == "image/png"


def test_process_rejects_oversized_attachment_without_uploading():
    gateway, s3 = _gateway()

    outcome = gateway.process("card_abc", [InboundAttachment(name="big.pdf", content=b"x" * 2048, mime_type="application/pdf")])

    assert outcome.success is False
    assert outcome.results[0].error == SIZE_LIMIT_ERROR
    assert s3.objects == {}


def test_size_limit_uses_actual_content_length():
    gateway, s3 = _gateway()

    outcome = gateway.process(
        "card_abc",
        [InboundAttachment(name="dump.txt", content=b"x" * 5000, size=10, mime_type="text/plain")],
    )

    assert outcome.success is False
    assert outcome.results[0].error == SIZE_LIMIT_ERROR
    assert outcome.results[0].size == 5000
    assert s3.objects == {}


def test_storage_path_keeps_original_filename():
    gateway, s3 = _gateway()

    outcome = gateway.process(
        "card_abc",
        [InboundAttachment(name="..\\reports/my report.pdf", content=b"%PDF", mime_type="application/pdf")],
    )

    [path] = outcome.stored_paths
    assert path.startswith("attachments/card_abc/")
    assert path.endswith("_my report.pdf")
    assert "/reports/" not in path
    assert outcome.results[0].url.endswith("my%20report.pdf")


def test_attachment_text_content_is_not_guessed_as_base64():
    assert InboundAttachment(name="a.txt", content="test").content == b"test"
    assert InboundAttachment.model_validate(
        {"name": "a.bin", "content": "dGVzdA==", "contentEncoding": "base64"}
    ).content == b"test"
    with pytest.raises(pydantic.ValidationError):
        InboundAttachment.model_validate({"name": "a.bin", "content": "not base64!", "contentEncoding": "base64"})


def test_process_rejects_disallowed_type():
    gateway, s3 = _gateway()

    outcome = gateway.process(
        "card_abc",
        [InboundAttachment(name="run.exe", content=b"MZ", mime_type="application/x-msdownload")],
    )

    assert outcome.success is False
    assert outcome.results[0].error == TYPE_NOT_ALLOWED_ERROR
    assert s3.objects == {}


def test_process_reports_mixed_batch_as_failure():
    gateway, _ = _gateway()

    outcome = gateway.process(
        "card_abc",
        [
            InboundAttachment(name="notes.txt", content=b"hello", mime_type="text/plain"),
            InboundAttachment(name="big.csv", content=b"x" * 4096, mime_type="text/csv"),
        ],
    )

    assert outcome.success is False
    assert len(outcome.stored_paths) == 1
    assert outcome.errors == [f"big.csv: {SIZE_LIMIT_ERROR}"]


def test_upload_failure_is_reported_not_raised():
    gateway, _ = _gateway(FakeS3Client(fail_on=("broken",)))

    result = gateway.upload("attachments/card_1/1_broken.txt", b"data", "text/plain")

    assert result.success is False
    assert "upload refused" in result.error


def test_missing_bucket_fails_softly():
    gateway = StorageGateway(build_settings(STORAGE_BUCKET=""), client=FakeS3Client())

    result = gateway.upload("attachments/x.txt", b"data")

    assert result.success is False
    assert "STORAGE_BUCKET" in result.error


def test_policy_accepts_wildcard_types():
    policy = AttachmentPolicy(max_size=100, allowed_types=("image/*",))

    assert policy.rejection(InboundAttachment(name="a.gif", content=b"gif", mime_type="image/gif")) is None
    assert policy.rejection(InboundAttachment(name="a.zip", content=b"zip", mime_type="application/zip")) == TYPE_NOT_ALLOWED_ERROR


def test_download_delete_and_signed_url_round_trip():
    gateway, s3 = _gateway()
    gateway.upload("attachments/card_1/1_a.txt", b"payload", "text/plain")

    assert gateway.download("attachments/card_1/1_a.txt").data == b"payload"
    assert gateway.signed_url("attachments/card_1/1_a.txt").url.startswith("https://signed.test/")
    assert gateway.delete("attachments/card_1/1_a.txt").success is True
    assert s3.objects == {}


def test_cleanup_old_attachments_removes_only_expired_objects():
    s3 = FakeS3Client()
    future = datetime.now(timezone.utc) + timedelta(days=31)
    gateway = StorageGateway(build_settings(), client=s3, clock=lambda: future)
    gateway.upload("attachments/card_1/1_old.txt", b"old", "text/plain")
    s3.objects["attachments/card_2/2_new.txt"] = {
        "Body": b"new",
        "ContentType": "text/plain",
        "LastModified": future,
    }

    summary = gateway.cleanup_old_attachments(days=30)

    assert summary.scanned == 2
    assert summary.deleted == 1
    assert list(s3.objects) == ["attachments/card_2/2_new.txt"]
