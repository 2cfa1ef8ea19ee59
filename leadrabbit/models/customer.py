import datetime
from typing import Dict, List, Optional

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, relationship

from leadrabbit.clock import utcnow
from leadrabbit.db import RegistryBase


class Customer(RegistryBase):
    """A tenant in the super-admin registry; owns exactly one database."""

    __tablename__ = "customers"

    id: int = Column(Integer, primary_key=True, index=True)
    customer_name: str = Column(String(255), nullable=False)
    database_name: str = Column(String(63), nullable=False, unique=True)
    subdomain: Optional[str] = Column(String(63), nullable=True, unique=True, index=True)
    status: str = Column(String(32), nullable=False, default="active", index=True)
    created_at: datetime.datetime = Column(DateTime, default=utcnow, nullable=False)

    webhook_links: Mapped[List["CustomerWebhook"]] = relationship(
        "CustomerWebhook",
        back_populates="customer",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def webhooks(self) -> Dict[str, str]:
        return {link.source: link.webhook_id for link in self.webhook_links}


class CustomerWebhook(RegistryBase):
    """Maps (source, webhook id) to the customer whose database receives leads."""

    __tablename__ = "customer_webhooks"

    id: int = Column(Integer, primary_key=True)
    customer_id: int = Column(
        Integer, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source: str = Column(String(64), nullable=False)
    webhook_id: str = Column(String(128), nullable=False)

    customer: Mapped["Customer"] = relationship("Customer", back_populates="webhook_links")

    __table_args__ = (
        UniqueConstraint("source", "webhook_id", name="uq_customer_webhooks_source_webhook"),
        UniqueConstraint("customer_id", "source", name="uq_customer_webhooks_customer_source"),
    )
