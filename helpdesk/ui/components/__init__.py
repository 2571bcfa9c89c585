"""Expose reusable UI components."""
from __future__ import annotations

from . import cards, feedback, forms, layout

__all__ = [
    "cards",
    "feedback",
    "forms",
    "layout",
]
