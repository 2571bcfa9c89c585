"""Aggregate UI page routes into a single router."""
from __future__ import annotations

from fastapi import APIRouter

from .pages import actions, views

router = APIRouter(include_in_schema=False)

router.include_router(views.router)
router.include_router(actions.router)

__all__ = ["router"]
