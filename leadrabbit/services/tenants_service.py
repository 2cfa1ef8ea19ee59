from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from leadrabbit.config import get_settings
from leadrabbit.db import open_tenant_session, validate_database_name
from leadrabbit.errors import NotFound
from leadrabbit.models import Customer, CustomerWebhook

logger = logging.getLogger("leadrabbit.services.tenants")


@dataclass(frozen=True)
class TenantHandle:
    """Resolved tenant: who the customer is and which database holds its data."""

    database_name: str
    customer_id: Optional[int] = None
    customer_name: Optional[str] = None

    @property
    def label(self) -> str:
        return self.customer_name or self.database_name

    def open_session(self) -> Session:
        """Open a session on this tenant's pooled engine (may raise DatabaseUnavailable)."""
        return open_tenant_session(self.database_name)


def _handle_for(customer: Customer) -> TenantHandle:
    return TenantHandle(
        database_name=validate_database_name(customer.database_name),
        customer_id=customer.id,
        customer_name=customer.customer_name,
    )


def default_tenant() -> TenantHandle:
    return TenantHandle(database_name=get_settings().default_database_name)


def resolve_tenant_by_webhook_id(registry: Session, source: str, webhook_id: str) -> TenantHandle:
    """
    Exact match on webhooks[source] == webhook_id.

    No default-tenant fallback here: an unknown webhook must never route leads
    into somebody else's database.
    """
    customer = registry.execute(
        select(Customer)
        .join(CustomerWebhook, CustomerWebhook.customer_id == Customer.id)
        .where(
            CustomerWebhook.source == source,
            CustomerWebhook.webhook_id == webhook_id,
        )
    ).scalar_one_or_none()

    if customer is None:
        logger.warning("Unknown %s webhookId %s", source, webhook_id)
        raise NotFound("Invalid webhook URL")

    return _handle_for(customer)


def resolve_tenant_by_token(claims: Mapping[str, Any]) -> TenantHandle:
    """
    Tenant from session claims; pre-multitenancy tokens carry no dbName and
    land on the default database.
    """
    database_name = claims.get("dbName")
    if not database_name:
        return default_tenant()

    customer_id = claims.get("customerId")
    return TenantHandle(
        database_name=validate_database_name(str(database_name)),
        customer_id=int(customer_id) if customer_id is not None else None,
        customer_name=claims.get("customerName"),
    )


def resolve_tenant_by_id(registry: Session, customer_id: Optional[Any]) -> TenantHandle:
    """Tenant for an OAuth state payload. Missing id means the default tenant."""
    if customer_id in (None, ""):
        return default_tenant()

    try:
        key = int(customer_id)
    except (TypeError, ValueError) as exc:
        raise NotFound("Customer not found") from exc

    customer = registry.get(Customer, key)
    if customer is None:
        raise NotFound("Customer not found")
    return _handle_for(customer)


def resolve_tenant_by_subdomain(registry: Session, host: Optional[str]) -> TenantHandle:
    """
    Tenant from the request host ("acme.leadrabbit.app" -> "acme").

    Hosts without a registered subdomain (localhost, bare domain) use the
    default tenant, which keeps single-tenant deployments working.
    """
    if not host:
        return default_tenant()

    hostname = host.split(":", 1)[0].lower()
    parts = hostname.split(".")
    if len(parts) < 3:
        return default_tenant()

    customer = registry.execute(
        select(Customer).where(Customer.subdomain == parts[0])
    ).scalar_one_or_none()

    if customer is None:
        return default_tenant()
    return _handle_for(customer)


def list_active_tenants(registry: Session) -> List[TenantHandle]:
    """All active customers, in id order, for cron-invoked jobs."""
    customers = (
        registry.execute(
            select(Customer).where(Customer.status == "active").order_by(Customer.id)
        )
        .scalars()
        .all()
    )
    logger.debug("Fetched %d active tenants", len(customers))
    return [_handle_for(customer) for customer in customers]
