from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CronConfig(BaseModel):
    """Per-tenant lead assignment window and presence timeouts."""

    model_config = ConfigDict(populate_by_name=True)

    cron_start_hour: int = Field(alias="cronStartHour")
    cron_end_hour: int = Field(alias="cronEndHour")
    stale_heartbeat_minutes: int = Field(alias="staleHeartbeatMinutes")
    inactivity_minutes: int = Field(alias="inactivityMinutes")


class CronConfigUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cron_start_hour: Optional[int] = Field(default=None, alias="cronStartHour")
    cron_end_hour: Optional[int] = Field(default=None, alias="cronEndHour")
    stale_heartbeat_minutes: Optional[int] = Field(default=None, alias="staleHeartbeatMinutes")
    inactivity_minutes: Optional[int] = Field(default=None, alias="inactivityMinutes")


class InactivityResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    inactivity_minutes: int = Field(alias="inactivityMinutes")
