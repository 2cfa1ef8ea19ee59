import datetime
from typing import Any, Dict

from sqlalchemy import JSON, Column, DateTime, Integer, String

from leadrabbit.clock import utcnow
from leadrabbit.db import TenantBase

CRON_CONFIG = "cronConfig"
LEAD_ASSIGNMENT = "leadAssignment"


class TenantSetting(TenantBase):
    """Named JSON settings document (cron config, assignment pointer)."""

    __tablename__ = "tenant_settings"

    id: int = Column(Integer, primary_key=True)
    name: str = Column(String(64), nullable=False, unique=True)
    value: Dict[str, Any] = Column(JSON, nullable=False, default=dict)
    updated_at: datetime.datetime = Column(DateTime, default=utcnow, nullable=False)
