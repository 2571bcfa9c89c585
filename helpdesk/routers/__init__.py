"""API routers for the helpdesk service."""
from .auth import router as auth_router
from .webhooks import router as webhooks_router

__all__ = ["auth_router", "webhooks_router"]
