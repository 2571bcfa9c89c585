"""
Runtime configuration helpers for the helpdesk service.

Loads DATABASE_URL and the rest of the deployment surface from the process
environment, falling back to a ``.env`` file in the project root.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[1]

ENV_PATH = BASE_DIR / ".env"

# Platform-provided variables win over .env defaults
load_dotenv(dotenv_path=ENV_PATH, override=False)

DEFAULT_ATTACHMENT_TYPES = ",".join(
    [
        "image/*",
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "text/plain",
        "text/csv",
    ]
)


def split_csv(value: str | None) -> list[str]:
    """Split a comma separated environment value into trimmed, non-empty items."""

    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    database_url: str = Field(..., alias="DATABASE_URL")
    db_schema: str = Field(default="helpdesk", alias="DB_SCHEMA")

    app_name: str = Field(default="HelpDesk", alias="APP_NAME")
    api_version: str = Field(default="0.1.0", alias="API_VERSION")
    public_base_url: str = Field(default="http://localhost:8000", alias="PUBLIC_BASE_URL")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Object storage (any S3-compatible endpoint)
    storage_bucket: str | None = Field(default=None, alias="STORAGE_BUCKET")
    storage_endpoint: str | None = Field(default=None, alias="STORAGE_ENDPOINT")
    storage_region: str = Field(default="us-east-1", alias="STORAGE_REGION")
    storage_key: str | None = Field(default=None, alias="STORAGE_KEY")
    storage_secret: str | None = Field(default=None, alias="STORAGE_SECRET")
    attachment_path: str = Field(default="attachments", alias="ATTACHMENT_PATH")

    oauth_client_id: str | None = Field(default=None, alias="OAUTH_CLIENT_ID")
    oauth_client_secret: str | None = Field(default=None, alias="OAUTH_CLIENT_SECRET")
    oauth_redirect_url: str | None = Field(default=None, alias="OAUTH_REDIRECT_URL")
    jwt_secret_key: str = Field(default="change-me", alias="JWT_SECRET_KEY")
    session_minutes: int = Field(default=24 * 60, alias="SESSION_MINUTES")

    allowed_domains_raw: str = Field(default="", alias="ALLOWED_DOMAINS")
    admin_domain: str = Field(default="", alias="ADMIN_DOMAIN")
    admin_emails_raw: str = Field(default="", alias="ADMIN_EMAILS")
    customer_domains_raw: str = Field(default="", alias="CUSTOMER_DOMAINS")
    customer_emails_raw: str = Field(default="", alias="CUSTOMER_EMAILS")

    email_channel_enabled: bool = Field(default=True, alias="EMAIL_CHANNEL_ENABLED")
    slack_channel_enabled: bool = Field(default=False, alias="SLACK_CHANNEL_ENABLED")
    chat_channel_enabled: bool = Field(default=True, alias="CHAT_CHANNEL_ENABLED")

    max_attachment_size: int = Field(default=10 * 1024 * 1024, alias="MAX_ATTACHMENT_SIZE")
    allowed_attachment_types_raw: str = Field(default=DEFAULT_ATTACHMENT_TYPES, alias="ALLOWED_ATTACHMENT_TYPES")
    default_status: str = Field(default="new", alias="DEFAULT_STATUS")
    page_size: int = Field(default=50, alias="PAGE_SIZE")

    max_retries: int = Field(default=3, alias="MAX_RETRIES")
    retry_delay_ms: int = Field(default=1000, alias="RETRY_DELAY_MS")
    batch_size: int = Field(default=100, alias="BATCH_SIZE")

    email_host: str | None = Field(default=None, alias="EMAIL_HOST")
    email_port: int = Field(default=587, alias="EMAIL_PORT")
    email_username: str | None = Field(default=None, alias="EMAIL_USERNAME")
    email_password: str | None = Field(default=None, alias="EMAIL_PASSWORD")
    email_from_address: str | None = Field(default=None, alias="EMAIL_FROM_ADDRESS")
    email_use_tls: bool = Field(default=True, alias="EMAIL_USE_TLS")
    mailgun_api_key: str | None = Field(default=None, alias="MAILGUN_API_KEY")
    mailgun_domain: str | None = Field(default=None, alias="MAILGUN_DOMAIN")
    mailgun_signing_key: str | None = Field(default=None, alias="MAILGUN_SIGNING_KEY")

    slack_webhook_url: str | None = Field(default=None, alias="SLACK_WEBHOOK_URL")
    slack_bot_token: str | None = Field(default=None, alias="SLACK_BOT_TOKEN")
    slack_signing_secret: str | None = Field(default=None, alias="SLACK_SIGNING_SECRET")
    chat_verification_token: str | None = Field(default=None, alias="CHAT_VERIFICATION_TOKEN")
    inbound_token: str | None = Field(default=None, alias="INBOUND_TOKEN")

    calendar_id: str = Field(default="primary", alias="CALENDAR_ID")
    calendar_access_token: str | None = Field(default=None, alias="CALENDAR_ACCESS_TOKEN")
    calendar_timezone: str = Field(default="America/Los_Angeles", alias="CALENDAR_TIMEZONE")
    meeting_duration_minutes: int = Field(default=45, alias="MEETING_DURATION_MINUTES")

    attachment_retention_days: int = Field(default=30, alias="ATTACHMENT_RETENTION_DAYS")
    activity_retention_days: int = Field(default=90, alias="ACTIVITY_RETENTION_DAYS")
    maintenance_interval_hours: float = Field(default=24.0, alias="MAINTENANCE_INTERVAL_HOURS")

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def allowed_domains(self) -> list[str]:
        return [domain.lower() for domain in split_csv(self.allowed_domains_raw)]

    @property
    def admin_emails(self) -> list[str]:
        return [email.lower() for email in split_csv(self.admin_emails_raw)]

    @property
    def customer_domains(self) -> list[str]:
        return [domain.lower() for domain in split_csv(self.customer_domains_raw)]

    @property
    def customer_emails(self) -> list[str]:
        return [email.lower() for email in split_csv(self.customer_emails_raw)]

    @property
    def allowed_attachment_types(self) -> list[str]:
        return [mime.lower() for mime in split_csv(self.allowed_attachment_types_raw)]


@lru_cache()
def get_settings() -> Settings:
    return Settings()


__all__ = ["DEFAULT_ATTACHMENT_TYPES", "Settings", "get_settings", "split_csv"]
