from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from leadrabbit.clock import utcnow
from leadrabbit.config import get_settings
from leadrabbit.errors import ValidationError
from leadrabbit.models import TenantSetting
from leadrabbit.models.tenant_setting import CRON_CONFIG
from leadrabbit.schemas.settings import CronConfig, CronConfigUpdate

logger = logging.getLogger("leadrabbit.services.settings")


def default_cron_config() -> CronConfig:
    settings = get_settings()
    return CronConfig(
        cron_start_hour=settings.assignment_start_hour,
        cron_end_hour=settings.assignment_end_hour,
        stale_heartbeat_minutes=settings.stale_heartbeat_minutes,
        inactivity_minutes=settings.inactivity_minutes,
    )


def get_setting(session: Session, name: str) -> Optional[TenantSetting]:
    return session.execute(
        select(TenantSetting).where(TenantSetting.name == name)
    ).scalar_one_or_none()


def put_setting(session: Session, name: str, value: Dict[str, Any]) -> TenantSetting:
    row = get_setting(session, name)
    if row is None:
        row = TenantSetting(name=name)
        session.add(row)
    # New dict so the JSON column registers the change.
    row.value = dict(value)
    row.updated_at = utcnow()
    return row


def get_cron_config(session: Session) -> CronConfig:
    """Stored values layered over the process defaults."""
    merged = default_cron_config().model_dump()
    row = get_setting(session, CRON_CONFIG)
    if row is not None and row.value:
        for key in merged:
            if row.value.get(key) is not None:
                merged[key] = row.value[key]
    return CronConfig(**merged)


def validate_cron_config(update: CronConfigUpdate) -> CronConfig:
    start, end = update.cron_start_hour, update.cron_end_hour
    if start is None or end is None or not 0 <= start <= 23 or not 1 <= end <= 24:
        raise ValidationError("Invalid hour values. Start: 0-23, End: 1-24.")
    if start >= end:
        raise ValidationError("Start hour must be less than end hour.")

    stale = update.stale_heartbeat_minutes
    if stale is None or not 1 <= stale <= 60:
        raise ValidationError("Invalid stale heartbeat minutes. Must be between 1 and 60.")

    inactivity = update.inactivity_minutes
    if inactivity is None or not 1 <= inactivity <= 120:
        raise ValidationError("Invalid inactivity minutes. Must be between 1 and 120.")

    return CronConfig(
        cron_start_hour=start,
        cron_end_hour=end,
        stale_heartbeat_minutes=stale,
        inactivity_minutes=inactivity,
    )


def update_cron_config(session: Session, update: CronConfigUpdate, updated_by: str) -> CronConfig:
    config = validate_cron_config(update)
    put_setting(session, CRON_CONFIG, config.model_dump())
    session.commit()
    logger.info(
        "Cron config updated by %s (window=%s-%s, stale=%s, inactivity=%s)",
        updated_by,
        config.cron_start_hour,
        config.cron_end_hour,
        config.stale_heartbeat_minutes,
        config.inactivity_minutes,
    )
    return config


def get_inactivity_minutes(session: Optional[Session]) -> int:
    """Tenant value, or the default when no session (unauthenticated caller)."""
    if session is None:
        return get_settings().inactivity_minutes
    return get_cron_config(session).inactivity_minutes
