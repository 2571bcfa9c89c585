"""Server-rendered pages selected by the ``page`` query parameter."""
from __future__ import annotations

import logging
import traceback
from typing import Callable

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import HTMLResponse

from ...constants import CardStatus
from ...services import AuthenticatedUser, Helpdesk, current_user, get_helpdesk
from ..template_helpers import render_template

logger = logging.getLogger(__name__)

router = APIRouter()

ADMIN_PAGES = frozenset({"admin"})
RECENT_ACTIVITY_LIMIT = 10


def _home(request: Request, user: AuthenticatedUser, helpdesk: Helpdesk) -> HTMLResponse:
    return render_template(
        request,
        "home.html",
        {
            "page_title": "Dashboard",
            "active_nav": "/?page=home",
            "user": user,
            "statistics": helpdesk.records.statistics(),
            "activities": helpdesk.records.recent_activities(limit=RECENT_ACTIVITY_LIMIT),
        },
    )


def _cards(request: Request, user: AuthenticatedUser, helpdesk: Helpdesk) -> HTMLResponse:
    params = request.query_params
    filters = {
        "status": params.get("status") or None,
        "assigned_to": params.get("assigned_to") or None,
        "label": params.get("label") or None,
    }
    try:
        limit = int(params.get("limit") or helpdesk.settings.page_size)
    except ValueError:
        limit = helpdesk.settings.page_size
    return render_template(
        request,
        "cards.html",
        {
            "page_title": "Cards",
            "active_nav": "/?page=cards",
            "user": user,
            "cards": helpdesk.records.list_cards(limit=limit, **filters),
            "filters": filters,
            "limit": limit,
            "statuses": [item.value for item in CardStatus],
        },
    )


def _admin(request: Request, user: AuthenticatedUser, helpdesk: Helpdesk) -> HTMLResponse:
    return render_template(
        request,
        "admin.html",
        {
            "page_title": "Admin",
            "active_nav": "/?page=admin",
            "user": user,
            "settings_document": helpdesk.settings_store.export_json(),
            "statistics": helpdesk.records.statistics(),
        },
    )


def _login(request: Request, user: AuthenticatedUser | None, helpdesk: Helpdesk) -> HTMLResponse:
    return render_template(request, "login.html", {"page_title": "Sign in", "user": user})


_PAGES: dict[str, Callable[[Request, AuthenticatedUser, Helpdesk], HTMLResponse]] = {
    "home": _home,
    "cards": _cards,
    "admin": _admin,
    "login": _login,
}


@router.get("/", response_class=HTMLResponse)
async def page_dispatch(request: Request, page: str = "home", helpdesk: Helpdesk = Depends(get_helpdesk)) -> HTMLResponse:
    """Render the requested page, or the login page when nobody is signed in."""

    user = current_user(request, helpdesk.settings)
    if user is None:
        return _login(request, None, helpdesk)

    handler = _PAGES.get(page)
    if handler is None:
        return render_template(
            request,
            "not_found.html",
            {"page_title": "Not found", "user": user, "page": page},
            status_code=status.HTTP_404_NOT_FOUND,
        )
    if page in ADMIN_PAGES and not user.is_admin:
        return render_template(
            request,
            "unauthorized.html",
            {"page_title": "Unauthorized", "user": user},
            status_code=status.HTTP_403_FORBIDDEN,
        )

    try:
        return handler(request, user, helpdesk)
    except Exception as exc:
        logger.exception("Rendering page %s failed", page)
        return render_template(
            request,
            "error.html",
            {
                "page_title": "Error",
                "user": user,
                "message": str(exc) or type(exc).__name__,
                "stack": traceback.format_exc(),
            },
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


__all__ = ["router"]
