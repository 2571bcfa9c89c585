"""Layout building blocks shared across pages."""
from __future__ import annotations

from markupsafe import Markup, escape

NAV_LINKS = (
    ("Dashboard", "/?page=home", False),
    ("Cards", "/?page=cards", False),
    ("Admin", "/?page=admin", True),
)


def navbar(*, user_email: str | None = None, is_admin: bool = False, active: str | None = None) -> Markup:
    links_html: list[str] = []
    for label, href, admin_only in NAV_LINKS:
        if admin_only and not is_admin:
            continue
        text_class = "text-white" if active == href else "text-slate-300"
        links_html.append(
            f"<a href=\"{href}\" class=\"rounded-full px-4 py-2 text-sm font-medium transition hover:text-white {text_class}\">{label}</a>"
        )

    if user_email:
        account = (
            f"<span class=\"text-xs text-slate-400\">{escape(user_email)}</span>"
            "<form method=\"post\" action=\"/auth/logout\">"
            "<button class=\"rounded-full border border-slate-700/70 px-4 py-2 text-xs font-semibold text-slate-200 transition hover:border-indigo-500\">Sign out</button>"
            "</form>"
        )
    else:
        account = (
            "<a href=\"/auth/login\" class=\"rounded-full border border-indigo-500/40 px-4 py-2 text-xs font-semibold text-indigo-300 transition hover:bg-indigo-600/20\">Sign in</a>"
        )

    return Markup(
        f"""
        <header class=\"sticky top-0 z-40 border-b border-slate-800/60 bg-slate-950/90 backdrop-blur\">
            <div class=\"mx-auto flex max-w-7xl flex-wrap items-center gap-3 px-4 py-4 sm:px-6\">
                <a href=\"/\" class=\"flex-1 text-lg font-semibold text-white\">HelpDesk</a>
                <nav class=\"flex items-center gap-1\">{''.join(links_html)}</nav>
                <div class=\"flex items-center gap-3\">{account}</div>
            </div>
        </header>
        """
    )


__all__ = ["NAV_LINKS", "navbar"]
