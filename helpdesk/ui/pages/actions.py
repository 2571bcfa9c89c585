"""JSON actions posted from the dashboard, selected by the ``action`` query parameter."""
from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Callable

import pydantic
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from ...constants import ActivityType
from ...errors import (
    AuthenticationError,
    AuthorizationError,
    ExternalServiceError,
    HelpdeskError,
    NotFoundError,
    ValidationError,
)
from ...schemas import CardCreateRequest, CardDeleteRequest, CardUpdateRequest, MeetingRequest, SettingsPayload
from ...services import AuthenticatedUser, Helpdesk, current_user, get_helpdesk

logger = logging.getLogger(__name__)

router = APIRouter()

ActionHandler = Callable[[Helpdesk, AuthenticatedUser, dict[str, Any]], dict[str, Any]]

_ERROR_STATUS = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    AuthenticationError: status.HTTP_401_UNAUTHORIZED,
    AuthorizationError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ExternalServiceError: status.HTTP_502_BAD_GATEWAY,
}


def _create_card(helpdesk: Helpdesk, user: AuthenticatedUser, payload: dict[str, Any]) -> dict[str, Any]:
    card = helpdesk.cards.create_card(CardCreateRequest.model_validate(payload), user.email)
    return {"card": card.model_dump(mode="json")}


def _update_card(helpdesk: Helpdesk, user: AuthenticatedUser, payload: dict[str, Any]) -> dict[str, Any]:
    request = CardUpdateRequest.model_validate(payload)
    result = helpdesk.cards.update_card(request.card_id, request.patch(), user.email)
    return {"card": result.card.model_dump(mode="json"), "changes": result.changes}


def _schedule_meeting(helpdesk: Helpdesk, user: AuthenticatedUser, payload: dict[str, Any]) -> dict[str, Any]:
    meeting = helpdesk.cards.schedule_meeting(MeetingRequest.model_validate(payload), user.email)
    return {"meeting": meeting.as_dict()}


def _save_settings(helpdesk: Helpdesk, user: AuthenticatedUser, payload: dict[str, Any]) -> dict[str, Any]:
    changes = SettingsPayload.model_validate(payload).model_dump()
    document = helpdesk.settings_store.update(changes)
    helpdesk.records.log_activity(ActivityType.SETTINGS_UPDATED, user.email, details={"keys": sorted(changes)})
    return {"settings": document}


def _get_statistics(helpdesk: Helpdesk, user: AuthenticatedUser, payload: dict[str, Any]) -> dict[str, Any]:
    days = int(payload.get("days") or 30)
    if payload.get("cardId"):
        return {"statistics": helpdesk.records.card_statistics(payload["cardId"]).model_dump(mode="json")}
    return {"statistics": helpdesk.records.statistics(days=days).model_dump(mode="json")}


def _delete_card(helpdesk: Helpdesk, user: AuthenticatedUser, payload: dict[str, Any]) -> dict[str, Any]:
    request = CardDeleteRequest.model_validate(payload)
    summary = helpdesk.cards.delete_card(request.card_id, user.email, is_admin=user.is_admin)
    return {"deleted": asdict(summary)}


# action -> (handler, admin only)
_ACTIONS: dict[str, tuple[ActionHandler, bool]] = {
    "create_card": (_create_card, False),
    "update_card": (_update_card, False),
    "schedule_meeting": (_schedule_meeting, False),
    "save_settings": (_save_settings, True),
    "get_statistics": (_get_statistics, True),
    "delete_card": (_delete_card, True),
}


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _status_for(exc: HelpdeskError) -> int:
    for error_type, status_code in _ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@router.post("/")
async def action_dispatch(
    request: Request,
    action: str | None = None,
    helpdesk: Helpdesk = Depends(get_helpdesk),
) -> JSONResponse:
    user = current_user(request, helpdesk.settings)
    if user is None:
        return _error("Authentication required", status.HTTP_401_UNAUTHORIZED)

    entry = _ACTIONS.get(action or "")
    if entry is None:
        return _error("Invalid action", status.HTTP_400_BAD_REQUEST)
    handler, admin_only = entry
    if admin_only and not user.is_admin:
        return _error("Admin privileges required", status.HTTP_403_FORBIDDEN)

    body = await request.body()
    try:
        payload = await request.json() if body else {}
    except ValueError:
        return _error("Invalid JSON payload", status.HTTP_400_BAD_REQUEST)
    if not isinstance(payload, dict):
        return _error("Request body must be a JSON object", status.HTTP_400_BAD_REQUEST)

    try:
        result = handler(helpdesk, user, payload)
    except pydantic.ValidationError as exc:
        return _error(str(exc), status.HTTP_400_BAD_REQUEST)
    except HelpdeskError as exc:
        logger.info("Action %s rejected: %s", action, exc)
        return _error(str(exc), _status_for(exc))
    except Exception as exc:
        logger.exception("Action %s failed", action)
        return _error(str(exc) or type(exc).__name__, status.HTTP_500_INTERNAL_SERVER_ERROR)

    return JSONResponse({"success": True, **result})


__all__ = ["router"]
