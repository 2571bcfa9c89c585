"""Session cookies and Google OAuth sign-in for helpdesk staff."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

import httpx
from fastapi import Request
from jose import JWTError, jwt

from ..config import Settings, get_settings
from ..constants import SESSION_COOKIE
from ..errors import AuthenticationError, ExternalServiceError
from ..security.secrets import MissingSecretError, resolve_secret
from ..utils import email_domain, parse_email_address

logger = logging.getLogger(__name__)

ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
OAUTH_SCOPES = ("openid", "email", "profile")


@dataclass(frozen=True)
class AuthenticatedUser:
    email: str
    is_admin: bool = False


_oauth_client: httpx.Client | None = None


def set_oauth_client(client: httpx.Client | None) -> None:
    """Override the shared OAuth HTTP client (used by tests)."""

    global _oauth_client
    _oauth_client = client


def _get_oauth_client() -> httpx.Client:
    global _oauth_client
    if _oauth_client is None:
        _oauth_client = httpx.Client(timeout=15.0)
    return _oauth_client


def is_admin_email(email: str | None, settings: Settings | None = None) -> bool:
    settings = settings or get_settings()
    domain = (settings.admin_domain or "").strip().lower()
    return bool(email and domain) and email.lower().endswith(f"@{domain}")


def is_allowed_email(email: str | None, settings: Settings | None = None) -> bool:
    """Staff sign-in is limited to ALLOWED_DOMAINS, or the admin domain when unset."""

    settings = settings or get_settings()
    domain = email_domain(email or "")
    if not domain:
        return False
    allowed = settings.allowed_domains or ([settings.admin_domain.lower()] if settings.admin_domain else [])
    return domain in allowed


def _jwt_secret(settings: Settings) -> str:
    try:
        return resolve_secret(settings.jwt_secret_key, "JWT_SECRET_KEY")
    except MissingSecretError as exc:
        raise AuthenticationError("Session signing key is not configured") from exc


def create_session_token(
    email: str,
    *,
    settings: Settings | None = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """Create a signed JWT identifying ``email``."""

    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=expires_minutes or settings.session_minutes)
    payload = {"sub": email.lower(), "exp": expire, "iat": now}
    return jwt.encode(payload, _jwt_secret(settings), algorithm=ALGORITHM)


def decode_session_token(token: str, *, settings: Settings | None = None) -> str:
    """Return the email embedded in ``token`` or raise :class:`AuthenticationError`."""

    settings = settings or get_settings()
    try:
        payload = jwt.decode(token, _jwt_secret(settings), algorithms=[ALGORITHM])
    except JWTError as exc:
        raise AuthenticationError("Invalid session token") from exc

    subject = payload.get("sub")
    if not subject or not isinstance(subject, str):
        raise AuthenticationError("Invalid session token payload")
    return subject


def current_user(request: Request, settings: Settings | None = None) -> AuthenticatedUser | None:
    """Resolve the signed-in user from the session cookie, or ``None``."""

    settings = settings or get_settings()
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        return None
    try:
        email = decode_session_token(token, settings=settings)
    except AuthenticationError as exc:
        logger.info("Rejected session cookie: %s", exc)
        return None
    if not is_allowed_email(email, settings):
        return None
    return AuthenticatedUser(email=email, is_admin=is_admin_email(email, settings))


def build_authorization_url(state: str, *, settings: Settings | None = None) -> str:
    settings = settings or get_settings()
    if not settings.oauth_client_id or not settings.oauth_redirect_url:
        raise AuthenticationError("OAuth is not configured")
    query = {
        "client_id": settings.oauth_client_id,
        "redirect_uri": settings.oauth_redirect_url,
        "response_type": "code",
        "scope": " ".join(OAUTH_SCOPES),
        "access_type": "online",
        "prompt": "select_account",
        "state": state,
    }
    if settings.admin_domain:
        query["hd"] = settings.admin_domain
    return f"{GOOGLE_AUTH_URL}?{urlencode(query)}"


def exchange_code(
    code: str,
    *,
    settings: Settings | None = None,
    client: httpx.Client | None = None,
) -> str:
    """Trade an OAuth authorization code for the signed-in user's email."""

    settings = settings or get_settings()
    if not code:
        raise AuthenticationError("Missing authorization code")
    try:
        client_secret = resolve_secret(settings.oauth_client_secret, "OAUTH_CLIENT_SECRET")
    except MissingSecretError as exc:
        raise AuthenticationError("OAuth is not configured") from exc

    http = client or _get_oauth_client()
    try:
        token_response = http.post(
            GOOGLE_TOKEN_URL,
            data={
                "code": code,
                "client_id": settings.oauth_client_id or "",
                "client_secret": client_secret,
                "redirect_uri": settings.oauth_redirect_url or "",
                "grant_type": "authorization_code",
            },
        )
        token_response.raise_for_status()
        access_token = token_response.json().get("access_token")
        if not access_token:
            raise AuthenticationError("OAuth token exchange returned no access token")

        profile_response = http.get(GOOGLE_USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"})
        profile_response.raise_for_status()
        profile = profile_response.json()
    except httpx.HTTPError as exc:
        logger.warning("OAuth exchange failed: %s", exc)
        raise ExternalServiceError("OAuth provider request failed") from exc

    email = parse_email_address(profile.get("email"))
    if not email or profile.get("email_verified") is False:
        raise AuthenticationError("OAuth profile has no verified email")
    return email


__all__ = [
    "ALGORITHM",
    "AuthenticatedUser",
    "build_authorization_url",
    "create_session_token",
    "current_user",
    "decode_session_token",
    "exchange_code",
    "is_admin_email",
    "is_allowed_email",
    "set_oauth_client",
]
