"""Card-style components for support cards, activities and statistics."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from markupsafe import Markup, escape

_STATUS_PALETTE = {
    "new": "bg-sky-500/15 text-sky-300",
    "in_progress": "bg-amber-500/15 text-amber-300",
    "resolved": "bg-emerald-500/15 text-emerald-300",
    "closed": "bg-slate-700/60 text-slate-300",
}


def _date_text(value: datetime | None) -> str:
    return value.strftime("%b %d, %Y • %I:%M %p") if value else ""


def status_badge(status: str) -> Markup:
    palette = _STATUS_PALETTE.get(status, "bg-slate-800/80 text-slate-300")
    label = status.replace("_", " ").title()
    return Markup(f"<span class=\"rounded-full px-3 py-1 text-xs font-semibold {palette}\">{escape(label)}</span>")


def stat_tile(*, label: str, value: Any) -> Markup:
    return Markup(
        f"""
        <div class=\"rounded-3xl bg-slate-900/70 p-6 shadow-lg shadow-black/20\">
            <p class=\"text-xs uppercase tracking-wide text-slate-400\">{escape(label)}</p>
            <p class=\"mt-2 text-3xl font-semibold text-white\">{escape(value)}</p>
        </div>
        """
    )


def card_row(card) -> Markup:
    """Render one support card as a list row."""

    labels = "".join(
        f"<span class=\"rounded-full bg-slate-800/70 px-2.5 py-1 text-xs text-slate-200\">{escape(label)}</span>"
        for label in card.labels
    )
    assignee = escape(card.assigned_to) if card.assigned_to else "Unassigned"
    return Markup(
        f"""
        <li class=\"rounded-2xl bg-slate-900/70 p-5 shadow-md shadow-black/10\" data-card-id=\"{escape(card.id)}\">
            <div class=\"flex items-center justify-between gap-4\">
                <p class=\"text-sm font-semibold text-white\">{escape(card.title)}</p>
                {status_badge(card.status)}
            </div>
            <p class=\"mt-2 text-xs text-slate-400\">{escape(card.source)} · {assignee} · updated {escape(_date_text(card.updated_at))}</p>
            <div class=\"mt-3 flex flex-wrap gap-2\">{labels}</div>
        </li>
        """
    )


def activity_item(activity) -> Markup:
    who = escape(activity.user or "system")
    what = escape(activity.type.replace("_", " "))
    return Markup(
        f"""
        <li class=\"flex items-center justify-between rounded-2xl bg-slate-900/70 px-5 py-3 text-sm text-slate-200\">
            <span><strong class=\"text-white\">{who}</strong> {what}</span>
            <time class=\"text-xs text-slate-400\">{escape(_date_text(activity.created_at))}</time>
        </li>
        """
    )


__all__ = ["activity_item", "card_row", "stat_tile", "status_badge"]
