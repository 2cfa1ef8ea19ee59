import datetime
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from leadrabbit.clock import utcnow
from leadrabbit.db import TenantBase


class IntegrationAccount(TenantBase):
    """Credentials for a lead source (99acres login, Facebook page token)."""

    __tablename__ = "integration_accounts"

    id: int = Column(Integer, primary_key=True, index=True)
    source: str = Column(String(64), nullable=False, index=True)
    username: str = Column(String(255), nullable=False)
    credential: str = Column(Text, nullable=False)
    is_active: bool = Column(Boolean, nullable=False, default=True, index=True)
    # Sync watermark: end of the last fully processed window.
    last_sync: Optional[datetime.datetime] = Column(DateTime, nullable=True)
    created_at: datetime.datetime = Column(DateTime, default=utcnow, nullable=False)
    updated_at: datetime.datetime = Column(DateTime, default=utcnow, nullable=False)
