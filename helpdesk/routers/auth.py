"""Staff sign-in routes backed by Google OAuth and a signed session cookie."""
from __future__ import annotations

import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse

from ..config import Settings, get_settings
from ..constants import ActivityType, SESSION_COOKIE
from ..errors import AuthenticationError, ExternalServiceError
from ..services import Helpdesk, build_authorization_url, create_session_token, exchange_code, get_helpdesk, is_allowed_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

STATE_COOKIE = "helpdesk_oauth_state"


@router.get("/login")
async def login_redirect(settings: Settings = Depends(get_settings)) -> RedirectResponse:
    state = secrets.token_urlsafe(24)
    try:
        url = build_authorization_url(state, settings=settings)
    except AuthenticationError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    response = RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)
    response.set_cookie(STATE_COOKIE, state, max_age=600, httponly=True, samesite="lax", path="/auth")
    return response


@router.get("/callback")
async def oauth_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    helpdesk: Helpdesk = Depends(get_helpdesk),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    expected_state = request.cookies.get(STATE_COOKIE)
    if not state or not expected_state or not secrets.compare_digest(state, expected_state):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid OAuth state")

    try:
        email = exchange_code(code or "", settings=settings)
    except AuthenticationError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except ExternalServiceError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

    if not is_allowed_email(email, settings):
        logger.warning("Rejected sign-in from %s: domain not allowed", email)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Email domain is not allowed")

    token = create_session_token(email, settings=settings)
    helpdesk.records.log_activity(ActivityType.LOGIN, email, details={"method": "oauth"})

    response = RedirectResponse("/", status_code=status.HTTP_303_SEE_OTHER)
    response.delete_cookie(STATE_COOKIE, path="/auth")
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=settings.session_minutes * 60,
        httponly=True,
        samesite="lax",
        secure=settings.public_base_url.startswith("https"),
        path="/",
    )
    return response


@router.post("/logout")
async def logout() -> RedirectResponse:
    response = RedirectResponse("/", status_code=status.HTTP_303_SEE_OTHER)
    response.delete_cookie(SESSION_COOKIE, path="/")
    return response


__all__ = ["router"]
