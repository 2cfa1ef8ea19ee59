from __future__ import annotations

import logging
from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("leadrabbit.config")


class Settings(BaseSettings):
    """
    Central configuration for the LeadRabbit backend.

    - Reads from .env (local) and the process environment.
    - Ignores extra env vars so adding new ones doesn't break startup.
    - Secrets are optional here; the auth resolver reports a 500 when they
      are missing instead of the process refusing to boot.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # -------------------------------------------------------------------------
    # Core app
    # -------------------------------------------------------------------------
    app_name: str = Field(default="LeadRabbit Backend", alias="APP_NAME")
    debug: bool = Field(default=False, alias="DEBUG")
    environment: str = Field(default="local", alias="ENVIRONMENT")

    cors_origins_raw: Optional[str] = Field(default=None, alias="CORS_ORIGINS")

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------
    jwt_secret_key: Optional[str] = Field(default=None, alias="JWT_SECRET_KEY")
    session_max_age_seconds: int = Field(default=3600, alias="SESSION_MAX_AGE_SECONDS")
    session_cookie_name: str = Field(default="appToken", alias="SESSION_COOKIE_NAME")
    session_cookie_secure: bool = Field(default=False, alias="SESSION_COOKIE_SECURE")

    # -------------------------------------------------------------------------
    # Databases
    # -------------------------------------------------------------------------
    # Super-admin registry of customers and their webhook ids.
    registry_database_url: str = Field(
        default="sqlite:///./data/leadrabbit_superadmin.db",
        alias="REGISTRY_DATABASE_URL",
    )
    # Per-customer database URL; "{database_name}" is substituted per tenant.
    tenant_database_url_template: Optional[str] = Field(
        default=None,
        alias="TENANT_DATABASE_URL_TEMPLATE",
    )
    # Used when session claims carry no tenant (single-tenant deployments).
    default_database_name: str = Field(default="leadrabbit", alias="DEFAULT_DATABASE_NAME")

    # -------------------------------------------------------------------------
    # Google Calendar (per-user OAuth)
    # -------------------------------------------------------------------------
    google_client_id: Optional[str] = Field(default=None, alias="GOOGLE_CLIENT_ID")
    google_client_secret: Optional[str] = Field(default=None, alias="GOOGLE_CLIENT_SECRET")
    google_redirect_uri: Optional[str] = Field(default=None, alias="GOOGLE_REDIRECT_URI")
    google_http_timeout_seconds: float = Field(default=15.0, alias="GOOGLE_HTTP_TIMEOUT_SECONDS")

    meetings_timezone: str = Field(default="Asia/Kolkata", alias="MEETINGS_TIMEZONE")

    # -------------------------------------------------------------------------
    # Lead assignment / presence defaults (overridable per tenant)
    # -------------------------------------------------------------------------
    assignment_start_hour: int = Field(default=9, alias="ASSIGNMENT_START_HOUR")
    assignment_end_hour: int = Field(default=18, alias="ASSIGNMENT_END_HOUR")
    assignment_timezone: str = Field(default="Asia/Kolkata", alias="ASSIGNMENT_TIMEZONE")
    assignment_max_per_user: int = Field(default=4, alias="ASSIGNMENT_MAX_PER_USER")
    stale_heartbeat_minutes: int = Field(default=30, alias="STALE_HEARTBEAT_MINUTES")
    inactivity_minutes: int = Field(default=30, alias="INACTIVITY_MINUTES")

    @property
    def cors_origins(self) -> List[str]:
        if not self.cors_origins_raw:
            return ["http://localhost:3000", "http://127.0.0.1:3000"]
        return [
            origin.strip()
            for origin in self.cors_origins_raw.split(",")
            if origin.strip()
        ]

    def tenant_database_url(self, database_name: str) -> str:
        """Build the SQLAlchemy URL for a tenant database."""
        template = self.tenant_database_url_template or "sqlite:///./data/{database_name}.db"
        return template.format(database_name=database_name)


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings loader so config is evaluated once per process.
    """
    settings = Settings()
    logger.info(
        "Settings loaded (env=%s, debug=%s, default_db=%s)",
        settings.environment,
        settings.debug,
        settings.default_database_name,
    )
    return settings
