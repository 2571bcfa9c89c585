"""Feedback elements like alerts and empty states."""
from __future__ import annotations

from markupsafe import Markup, escape

_TONES = {
    "info": "border-indigo-500/40 bg-indigo-500/10 text-indigo-200",
    "error": "border-rose-500/40 bg-rose-500/10 text-rose-200",
    "warning": "border-amber-500/40 bg-amber-500/10 text-amber-200",
}


def alert(message: str, *, tone: str = "info") -> Markup:
    classes = _TONES.get(tone, _TONES["info"])
    return Markup(f"<div class=\"rounded-2xl border px-5 py-4 text-sm {classes}\" role=\"alert\">{escape(message)}</div>")


def empty_state(message: str) -> Markup:
    return Markup(f"<p class=\"rounded-2xl bg-slate-900/50 px-5 py-8 text-center text-sm text-slate-400\">{escape(message)}</p>")


def toast_container() -> Markup:
    return Markup(
        """
        <div id=\"toast-root\" class=\"pointer-events-none fixed inset-x-0 top-5 z-50 flex flex-col items-center gap-3\"></div>
        """
    )


__all__ = ["alert", "empty_state", "toast_container"]
