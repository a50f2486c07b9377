"""
Configuration and settings for the rewards service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    site_name: str = Field(default="LukeRewards Spins")
    environment: str = Field(default="development")

    # Database (any SQLAlchemy URL; empty means in-memory SQLite)
    database_url: Optional[str] = Field(default=None)

    # Rate limit store (Redis); in-process store when unset
    redis_url: Optional[str] = Field(default=None)
    redis_key_prefix: str = Field(default="spins:ratelimit")

    # Wager feed (Google Sheets)
    google_sheets_id: Optional[str] = Field(default=None)
    wager_sheet_name: str = Field(default="Affiliate NGR Summary")
    google_service_account_file: Optional[str] = Field(default=None)
    wager_cache_ttl_seconds: int = Field(default=60, ge=1)
    wager_background_refresh: bool = Field(default=False)

    # Ticket and bonus rules
    ticket_unit: int = Field(default=1000, ge=1)
    bonus_cooldown_hours: float = Field(default=24.0, gt=0)

    # Anti-abuse
    rate_limit_per_ip_per_hour: int = Field(default=30, ge=1)
    rate_limit_per_stake_id_per_hour: int = Field(default=50, ge=1)
    lookup_limit_per_ip_per_hour: int = Field(default=120, ge=1)
    admin_login_limit: int = Field(default=5, ge=1)
    admin_login_window_seconds: int = Field(default=15 * 60, ge=1)
    user_login_limit: int = Field(default=10, ge=1)
    user_login_window_seconds: int = Field(default=15 * 60, ge=1)
    trust_proxy_headers: bool = Field(default=False)

    # Sessions
    admin_password: Optional[str] = Field(default=None)
    session_secret: str = Field(default="lukerewards-spins")
    admin_session_idle_seconds: int = Field(default=30 * 60)
    admin_session_max_seconds: int = Field(default=24 * 60 * 60)
    user_session_days: int = Field(default=30)
    password_reset_ttl_seconds: int = Field(default=60 * 60)
    cookie_secure: bool = Field(default=False)

    # Object storage for backups and verification screenshots: a local data
    # root, or an S3-compatible bucket when set
    storage_dir: str = Field(default="data")
    backup_bucket: Optional[str] = Field(default=None)
    backup_endpoint: Optional[str] = Field(default=None)
    backup_region: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)
    backup_interval_hours: float = Field(default=12.0, gt=0)
    backup_retention_days: int = Field(default=7, ge=1)

    # Email
    smtp_host: Optional[str] = Field(default=None)
    smtp_port: int = Field(default=587)
    smtp_username: Optional[str] = Field(default=None)
    smtp_password: Optional[str] = Field(default=None)
    mail_from: str = Field(default="LukeRewards <rewards@lukethedegen.com>")
    public_base_url: str = Field(default="http://localhost:5000")

    @property
    def sheets_configured(self) -> bool:
        return bool(self.google_sheets_id)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
