"""Form field components styled with Tailwind."""
from __future__ import annotations

from typing import Iterable

from markupsafe import Markup, escape


_INPUT_BASE = (
    "block w-full rounded-xl border border-slate-700/60 bg-slate-900/70 px-4 py-2.5 text-sm text-slate-100 "
    "placeholder:text-slate-500 focus:border-indigo-500 focus:ring-2 focus:ring-indigo-600 focus:ring-offset-0"
)


def text_input(name: str, *, label: str, value: str = "", placeholder: str = "", type_: str = "text", required: bool = False) -> Markup:
    required_attr = "required" if required else ""
    return Markup(
        f"""
        <label class=\"flex flex-col gap-2 text-sm font-medium text-slate-200\" for=\"{name}\">
            <span>{escape(label)}</span>
            <input id=\"{name}\" name=\"{name}\" type=\"{type_}\" value=\"{escape(value)}\" placeholder=\"{escape(placeholder)}\" class=\"{_INPUT_BASE}\" {required_attr}>
        </label>
        """
    )


def select(name: str, *, label: str, options: Iterable[str], selected: str | None = None, include_blank: bool = True) -> Markup:
    option_html = ["<option value=\"\">Any</option>"] if include_blank else []
    for option in options:
        chosen = " selected" if option == selected else ""
        option_html.append(f"<option value=\"{escape(option)}\"{chosen}>{escape(option.replace('_', ' ').title())}</option>")
    return Markup(
        f"""
        <label class=\"flex flex-col gap-2 text-sm font-medium text-slate-200\" for=\"{name}\">
            <span>{escape(label)}</span>
            <select id=\"{name}\" name=\"{name}\" class=\"{_INPUT_BASE}\">{''.join(option_html)}</select>
        </label>
        """
    )


def textarea(name: str, *, label: str, value: str = "", rows: int = 4, required: bool = False) -> Markup:
    required_attr = "required" if required else ""
    return Markup(
        f"""
        <label class=\"flex flex-col gap-2 text-sm font-medium text-slate-200\" for=\"{name}\">
            <span>{escape(label)}</span>
            <textarea id=\"{name}\" name=\"{name}\" rows=\"{rows}\" class=\"{_INPUT_BASE} resize-none\" {required_attr}>{escape(value)}</textarea>
        </label>
        """
    )


def toggle(id_: str, *, label: str, checked: bool = False) -> Markup:
    state = "checked" if checked else ""
    return Markup(
        f"""
        <label class=\"flex cursor-pointer items-center gap-3 text-sm text-slate-200\">
            <span>{escape(label)}</span>
            <input id=\"{id_}\" name=\"{id_}\" type=\"checkbox\" class=\"h-4 w-4 rounded border-slate-600 bg-slate-800 text-indigo-500\" {state}>
        </label>
        """
    )


__all__ = ["select", "text_input", "textarea", "toggle"]
