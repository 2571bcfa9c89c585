"""Export page routers for composition."""
from __future__ import annotations

from . import actions, views

__all__ = [
    "actions",
    "views",
]
