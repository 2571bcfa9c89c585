"""Inbound channel webhooks feeding the ingestion pipeline."""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from starlette.datastructures import UploadFile

from ..config import Settings, get_settings
from ..constants import Channel
from ..schemas import InboundAttachment, InboundEnvelope, InboundMessage
from ..security.secrets import MissingSecretError, resolve_secret
from ..services import Helpdesk, get_helpdesk
from ..services.ingestion import create_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SLACK_SIGNATURE_VERSION = "v0"
SLACK_MAX_SKEW_SECONDS = 60 * 5


def verify_mailgun_signature(timestamp: str | None, token: str | None, signature: str | None, signing_key: str) -> bool:
    if not timestamp or not token or not signature:
        return False
    message = f"{timestamp}{token}".encode("utf-8")
    digest = hmac.new(signing_key.encode("utf-8"), msg=message, digestmod=hashlib.sha256).hexdigest()
    return hmac.compare_digest(digest, signature)


def verify_slack_signature(
    timestamp: str | None,
    body: bytes,
    signature: str | None,
    signing_secret: str,
    *,
    now: float | None = None,
) -> bool:
    if not timestamp or not signature:
        return False
    try:
        sent_at = int(timestamp)
    except ValueError:
        return False
    if abs((now if now is not None else time.time()) - sent_at) > SLACK_MAX_SKEW_SECONDS:
        return False
    base = f"{SLACK_SIGNATURE_VERSION}:{timestamp}:".encode("utf-8") + body
    digest = hmac.new(signing_secret.encode("utf-8"), msg=base, digestmod=hashlib.sha256).hexdigest()
    return hmac.compare_digest(f"{SLACK_SIGNATURE_VERSION}={digest}", signature)


def _get_form_text(form, key: str) -> str | None:
    value = form.get(key)
    if value is None or isinstance(value, UploadFile):
        return None
    return str(value)


def _signing_key(value: str | None, name: str) -> str:
    try:
        return resolve_secret(value, name)
    except MissingSecretError:
        logger.error("%s is not configured", name)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook signing disabled")


@router.post("/mailgun/inbound")
async def mailgun_inbound(
    request: Request,
    helpdesk: Helpdesk = Depends(get_helpdesk),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    form = await request.form()
    signing_key = _signing_key(settings.mailgun_signing_key, "MAILGUN_SIGNING_KEY")
    if not verify_mailgun_signature(
        _get_form_text(form, "timestamp"),
        _get_form_text(form, "token"),
        _get_form_text(form, "signature"),
        signing_key,
    ):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid Mailgun signature")

    attachments = []
    for _, value in form.multi_items():
        if isinstance(value, UploadFile):
            content = await value.read()
            attachments.append(
                InboundAttachment(
                    name=value.filename or "attachment",
                    content=content,
                    mime_type=value.content_type or "application/octet-stream",
                    size=len(content),
                )
            )

    message = InboundMessage(
        source=Channel.EMAIL.value,
        sender=_get_form_text(form, "sender") or _get_form_text(form, "from"),
        subject=_get_form_text(form, "subject"),
        content=_get_form_text(form, "stripped-text") or _get_form_text(form, "body-plain") or "",
        attachments=attachments,
    )
    return helpdesk.pipeline.on_message(InboundEnvelope(message=message)).as_dict()


@router.post("/slack/events")
async def slack_events(
    request: Request,
    helpdesk: Helpdesk = Depends(get_helpdesk),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    body = await request.body()
    signing_secret = _signing_key(settings.slack_signing_secret, "SLACK_SIGNING_SECRET")
    if not verify_slack_signature(
        request.headers.get("X-Slack-Request-Timestamp"),
        body,
        request.headers.get("X-Slack-Signature"),
        signing_secret,
    ):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid Slack signature")

    try:
        payload = json.loads(body or b"{}")
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from exc

    if payload.get("type") == "url_verification":
        return {"challenge": payload.get("challenge")}

    event = payload.get("event") or {}
    if event.get("type") != "message" or event.get("bot_id") or event.get("subtype"):
        return create_response("ignored", "Event ignored").as_dict()

    message = InboundMessage(
        source=Channel.SLACK.value,
        sender=event.get("user"),
        content=event.get("text") or "",
        channel=event.get("channel"),
    )
    return helpdesk.pipeline.on_message(InboundEnvelope(message=message)).as_dict()


def verify_chat_token(payload: dict[str, Any], authorization: str | None, expected: str) -> bool:
    """Accept the event's verification ``token`` or a matching bearer header."""

    supplied = payload.get("token")
    if not isinstance(supplied, str) and authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer":
            supplied = credentials.strip()
    if not isinstance(supplied, str) or not supplied:
        return False
    return hmac.compare_digest(supplied, expected)


@router.post("/chat/events")
async def chat_events(
    request: Request,
    helpdesk: Helpdesk = Depends(get_helpdesk),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    expected = _signing_key(settings.chat_verification_token, "CHAT_VERIFICATION_TOKEN")
    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Event must be a JSON object")
    if not verify_chat_token(payload, request.headers.get("Authorization"), expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid Chat verification token")

    if payload.get("type") != "MESSAGE":
        return create_response("ignored", "Event ignored").as_dict()

    chat_message = payload.get("message") or {}
    sender = (chat_message.get("sender") or payload.get("user") or {}).get("email")
    space = chat_message.get("space") or payload.get("space") or {}
    message = InboundMessage(
        source=Channel.CHAT.value,
        sender=sender,
        content=chat_message.get("argumentText") or chat_message.get("text") or "",
        space=space.get("displayName") or space.get("name"),
    )
    return helpdesk.pipeline.on_message(InboundEnvelope(message=message)).as_dict()


@router.post("/messages")
async def generic_messages(
    request: Request,
    helpdesk: Helpdesk = Depends(get_helpdesk),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    if settings.inbound_token:
        supplied = request.headers.get("X-Helpdesk-Token") or ""
        if not hmac.compare_digest(supplied, settings.inbound_token):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid inbound token")

    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Envelope must be a JSON object")
    return helpdesk.pipeline.on_message(payload).as_dict()


__all__ = ["router", "verify_chat_token", "verify_mailgun_signature", "verify_slack_signature"]
