"""Shared ingestion plumbing: errors, account lookup, normalization, dedupe insert."""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from leadrabbit.clock import utcnow
from leadrabbit.errors import LeadRabbitError
from leadrabbit.models import IntegrationAccount, Lead, LeadStatus

logger = logging.getLogger("leadrabbit.ingestion.common")

INSERTED = "inserted"
DUPLICATE = "duplicate"


class IngestionError(LeadRabbitError):
    """Base exception for ingestion-related failures."""

    status_code = 400


class AuthenticationError(IngestionError):
    """Raised when a payload signature or handshake token does not verify."""


class InvalidEnvelope(IngestionError):
    """Payload is not the document the source promised (bad XML, false status)."""


def get_active_account(db: Session, source: str) -> Optional[IntegrationAccount]:
    """First active integration account for `source`, or None."""
    return db.execute(
        select(IntegrationAccount)
        .where(
            IntegrationAccount.source == source,
            IntegrationAccount.is_active.is_(True),
        )
        .order_by(IntegrationAccount.id)
        .limit(1)
    ).scalar_one_or_none()


def clean_name(value: Optional[str], default: str = "Unknown") -> str:
    return (value or "").strip() or default


def clean_email(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def clean_phone(value: Optional[str]) -> str:
    return (value or "").strip()


def lead_exists(db: Session, source: str, external_query_id: str) -> bool:
    found = db.execute(
        select(Lead.id).where(
            Lead.source == source,
            Lead.external_query_id == external_query_id,
        )
    ).first()
    return found is not None


def insert_lead_if_new(
    db: Session,
    *,
    source: str,
    external_query_id: str,
    name: str,
    email: str,
    phone: str,
    account_id: Optional[int],
    meta_data: Dict[str, Any],
) -> str:
    """
    Insert one lead unless (source, external_query_id) already exists.

    Each lead is committed on its own so a later failure never takes earlier
    inserts with it. A unique violation from a concurrent redelivery is a
    duplicate, not an error.
    """
    if lead_exists(db, source, external_query_id):
        logger.debug("Duplicate %s lead %s skipped", source, external_query_id)
        return DUPLICATE

    now = utcnow()
    meta = dict(meta_data)
    meta["queryId"] = external_query_id
    lead = Lead(
        source=source,
        external_query_id=external_query_id,
        status=LeadStatus.NEW,
        name=name,
        email=email,
        phone=phone,
        account_id=account_id,
        meta_data=meta,
        created_at=now,
        updated_at=now,
    )
    db.add(lead)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(
            "Concurrent insert of %s lead %s detected; counted as duplicate",
            source,
            external_query_id,
        )
        return DUPLICATE

    return INSERTED
