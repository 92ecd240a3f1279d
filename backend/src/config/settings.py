"""
Application settings configuration for Vocalis.

Centralized settings loaded from environment variables.
"""

from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class AppSettings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment Variables:
        SMTP_HOST: SMTP server hostname (empty = email channel not configured)
        SMTP_PORT: SMTP server port (default: 587)
        SMTP_SECURE: Use implicit TLS when connecting (default: False)
        SMTP_USER: SMTP username (optional)
        SMTP_PASS: SMTP password (optional)
        SMTP_FROM: Sender address for notification emails
        SMTP_TIMEOUT_SEC: Timeout for a single SMTP exchange (default: 30)
        NOTIF_WORKER_ENABLED: Run the delivery polling loop in this process (default: True)
        NOTIF_WORKER_INTERVAL_SEC: Seconds between delivery batches (default: 5)
        NOTIF_WORKER_BATCH_SIZE: Maximum queue entries per batch (default: 50)
        NOTIF_MAX_ATTEMPTS: Delivery attempts before an entry is failed (default: 5)
        NOTIF_STALE_PROCESSING_SEC: Re-arm entries stuck in processing after this many
            seconds (default: 0 = disabled)
        NOTIF_QUEUE_RETENTION_DAYS: Days to keep sent/failed queue entries (default: 30)
        ADMIN_API_TOKEN: Shared token for the queue admin endpoints (empty = disabled)
        CORS_ORIGINS: Comma-separated list of allowed origins
    """

    # SMTP transport for the email channel
    smtp_host: str = Field(
        default="",
        validation_alias="SMTP_HOST",
        description="SMTP server hostname. Empty = email transport not configured."
    )

    smtp_port: int = Field(
        default=587,
        validation_alias="SMTP_PORT",
        ge=1,
        le=65535,
    )

    smtp_secure: bool = Field(
        default=False,
        validation_alias="SMTP_SECURE",
        description="Connect with implicit TLS (port 465 style)"
    )

    smtp_user: str = Field(default="", validation_alias="SMTP_USER")

    smtp_pass: str = Field(default="", validation_alias="SMTP_PASS")

    smtp_from: str = Field(
        default="no-reply@example.com",
        validation_alias="SMTP_FROM",
    )

    smtp_timeout_sec: float = Field(
        default=30.0,
        validation_alias="SMTP_TIMEOUT_SEC",
        gt=0,
    )

    # Delivery worker
    notif_worker_enabled: bool = Field(
        default=True,
        validation_alias="NOTIF_WORKER_ENABLED",
    )

    notif_worker_interval_sec: float = Field(
        default=5.0,
        validation_alias="NOTIF_WORKER_INTERVAL_SEC",
        gt=0,
    )

    notif_worker_batch_size: int = Field(
        default=50,
        validation_alias="NOTIF_WORKER_BATCH_SIZE",
        ge=1,
        le=1000,
    )

    notif_max_attempts: int = Field(
        default=5,
        validation_alias="NOTIF_MAX_ATTEMPTS",
        ge=1,
    )

    notif_stale_processing_sec: int = Field(
        default=0,
        validation_alias="NOTIF_STALE_PROCESSING_SEC",
        ge=0,
        description="Entries stuck in processing longer than this are re-armed. 0 = disabled."
    )

    notif_queue_retention_days: int = Field(
        default=30,
        validation_alias="NOTIF_QUEUE_RETENTION_DAYS",
        ge=0,
        description="Sent/failed entries older than this are purged. 0 = keep forever."
    )

    admin_api_token: str = Field(
        default="",
        validation_alias="ADMIN_API_TOKEN",
        description="Token required in X-Admin-Token for queue administration"
    )

    cors_origins: str = Field(
        default="http://localhost:3000",
        validation_alias="CORS_ORIGINS",
    )

    class Config:
        env_file = ".env"
        extra = "ignore"

    @field_validator("smtp_host", "smtp_from")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        """Trim surrounding whitespace from address-like settings."""
        return v.strip()

    @property
    def smtp_configured(self) -> bool:
        """Check if an SMTP transport is configured for the email channel."""
        return bool(self.smtp_host)

    @property
    def admin_api_enabled(self) -> bool:
        """Check if the queue admin endpoints are enabled."""
        return bool(self.admin_api_token)

    @property
    def cors_origins_list(self) -> List[str]:
        """Get the allowed CORS origins as a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> AppSettings:
    """
    Get cached application settings instance.

    Returns:
        AppSettings: Configured application settings from environment
    """
    return AppSettings()
