import logging
from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("leadrabbit.ingestion.config")


class IngestionSettings(BaseSettings):
    """Settings for lead ingestion (99acres webhook + sync, Facebook lead ads).

    Environment variables (examples):

    INGESTION_ACRES99_API_URL="https://www.99acres.com/99api/v1/getmy99Response/.../uid/"
    INGESTION_MAX_WINDOW_HOURS=48
    INGESTION_OVERLAP_MINUTES=15
    INGESTION_FACEBOOK_APP_SECRET=...
    """

    model_config = SettingsConfigDict(
        env_prefix="INGESTION_",
        env_file=".env",
        extra="ignore",
    )

    acres99_api_url: str = (
        "https://www.99acres.com/99api/v1/getmy99Response/OeAuXClO43hwseaXEQ/uid/"
    )
    # 99acres refuses query windows longer than two days.
    max_window_hours: int = 48
    max_lookback_hours: int = 48
    overlap_minutes: int = 15
    http_timeout_seconds: float = 30.0

    facebook_app_secret: Optional[str] = None
    facebook_verify_token: Optional[str] = None
    facebook_graph_url: str = "https://graph.facebook.com"
    facebook_graph_version: str = "v19.0"

    @field_validator("max_window_hours", "max_lookback_hours", mode="before")
    @classmethod
    def validate_hours(cls, v):
        val = int(v)
        if val <= 0:
            raise ValueError("Sync window hours must be > 0")
        return val

    @field_validator("overlap_minutes", mode="before")
    @classmethod
    def validate_overlap(cls, v):
        val = int(v)
        if val < 0:
            raise ValueError("INGESTION_OVERLAP_MINUTES must be >= 0")
        return val


@lru_cache(maxsize=1)
def get_ingestion_settings() -> IngestionSettings:
    settings = IngestionSettings()
    if not settings.facebook_app_secret:
        logger.warning(
            "INGESTION_FACEBOOK_APP_SECRET not configured. Facebook webhooks will be rejected."
        )
    logger.info(
        "IngestionSettings loaded (max_window_hours=%s, max_lookback_hours=%s, overlap_minutes=%s)",
        settings.max_window_hours,
        settings.max_lookback_hours,
        settings.overlap_minutes,
    )
    return settings
