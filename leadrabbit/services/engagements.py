"""
Engagement (dated note) operations on a lead.

Every mutation is a single conditional row statement scoped to the lead. When
the dialect cannot return the affected row, or returns none, the row is
re-read to decide whether the write happened.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from leadrabbit.clock import utcnow
from leadrabbit.errors import LeadRabbitError, NotFound, ValidationError
from leadrabbit.models import Engagement, Lead
from leadrabbit.services.leads import Actor, get_lead_for_actor

logger = logging.getLogger("leadrabbit.services.engagements")

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def ensure_valid_date(value: Optional[str]) -> str:
    date = (value or "").strip()
    if not DATE_RE.match(date):
        raise ValidationError("A valid date (YYYY-MM-DD) is required.")
    try:
        datetime.strptime(date, "%Y-%m-%d")
    except ValueError as exc:
        raise ValidationError("A valid date (YYYY-MM-DD) is required.") from exc
    return date


def resolve_engagement_type(type_: Optional[str], custom_type: Optional[str]) -> str:
    """An explicit custom type beats the selected one."""
    for candidate in (custom_type, type_):
        cleaned = (candidate or "").strip()
        if cleaned:
            return cleaned
    raise ValidationError("Engagement type is required.")


def sort_engagements(engagements: Iterable[Engagement]) -> List[Engagement]:
    """Most recent first: descending by (date, updated_at)."""
    return sorted(engagements, key=lambda e: (e.date, e.updated_at), reverse=True)


def _load_sorted(session: Session, lead_id: int) -> List[Engagement]:
    rows = session.execute(
        select(Engagement).where(Engagement.lead_id == lead_id)
    ).scalars().all()
    return sort_engagements(rows)


def _find(session: Session, lead_id: int, engagement_id: int) -> Optional[Engagement]:
    return session.execute(
        select(Engagement).where(
            Engagement.id == engagement_id,
            Engagement.lead_id == lead_id,
        )
    ).scalar_one_or_none()


def _supports(session: Session, feature: str) -> bool:
    return bool(getattr(session.get_bind().dialect, feature, False))


def list_engagements(session: Session, lead_id: int, actor: Actor) -> List[Engagement]:
    get_lead_for_actor(session, lead_id, actor)
    return _load_sorted(session, lead_id)


def add_engagement(
    session: Session,
    lead_id: int,
    actor: Actor,
    *,
    date: Optional[str],
    type_: Optional[str] = None,
    custom_type: Optional[str] = None,
    note: Optional[str] = None,
) -> Tuple[Engagement, List[Engagement]]:
    date = ensure_valid_date(date)
    engagement_type = resolve_engagement_type(type_, custom_type)
    lead = get_lead_for_actor(session, lead_id, actor)

    now = utcnow()
    engagement = Engagement(
        lead_id=lead.id,
        date=date,
        type=engagement_type,
        note=(note or "").strip(),
        created_at=now,
        updated_at=now,
        created_by=actor.email,
        updated_by=actor.email,
    )
    session.add(engagement)
    lead.updated_at = now
    session.commit()

    if _find(session, lead.id, engagement.id) is None:
        logger.error("Engagement %s missing after insert on lead %s", engagement.id, lead.id)
        raise LeadRabbitError("Failed to persist engagement.")

    logger.info("Engagement %s added to lead %s by %s", engagement.id, lead.id, actor.email)
    return engagement, _load_sorted(session, lead.id)


def update_engagement(
    session: Session,
    lead_id: int,
    engagement_id: int,
    actor: Actor,
    *,
    date: Optional[str],
    type_: Optional[str] = None,
    custom_type: Optional[str] = None,
    note: Optional[str] = None,
) -> List[Engagement]:
    date = ensure_valid_date(date)
    engagement_type = resolve_engagement_type(type_, custom_type)
    lead = get_lead_for_actor(session, lead_id, actor)

    if _find(session, lead.id, engagement_id) is None:
        raise NotFound("Engagement not found for the current user.")

    now = utcnow()
    statement = (
        update(Engagement)
        .where(Engagement.id == engagement_id, Engagement.lead_id == lead.id)
        .values(
            date=date,
            type=engagement_type,
            note=(note or "").strip(),
            updated_at=now,
            updated_by=actor.email,
        )
        .execution_options(synchronize_session=False)
    )

    returned = None
    if _supports(session, "update_returning"):
        returned = session.execute(statement.returning(Engagement.id)).first()
    else:
        session.execute(statement)
    session.execute(
        update(Lead).where(Lead.id == lead.id).values(updated_at=now)
    )
    session.commit()

    if returned is None:
        # No row came back: verify the post-state before reporting failure.
        session.expire_all()
        current = _find(session, lead.id, engagement_id)
        if current is None:
            raise NotFound("Engagement not found for the current user.")
        if current.date != date or current.type != engagement_type:
            logger.error("Engagement %s was not updated on lead %s", engagement_id, lead.id)
            raise LeadRabbitError("Failed to update engagement.")

    session.expire_all()
    logger.info("Engagement %s on lead %s updated by %s", engagement_id, lead.id, actor.email)
    return _load_sorted(session, lead.id)


def delete_engagement(
    session: Session,
    lead_id: int,
    engagement_id: int,
    actor: Actor,
) -> List[Engagement]:
    lead = get_lead_for_actor(session, lead_id, actor)

    if _find(session, lead.id, engagement_id) is None:
        raise NotFound("Engagement not found for the current user.")

    statement = delete(Engagement).where(
        Engagement.id == engagement_id,
        Engagement.lead_id == lead.id,
    ).execution_options(synchronize_session=False)

    returned = None
    if _supports(session, "delete_returning"):
        returned = session.execute(statement.returning(Engagement.id)).first()
    else:
        session.execute(statement)
    session.execute(
        update(Lead).where(Lead.id == lead.id).values(updated_at=utcnow())
    )
    session.commit()

    session.expire_all()
    if returned is None and _find(session, lead.id, engagement_id) is not None:
        logger.error("Engagement %s still present after delete on lead %s", engagement_id, lead.id)
        raise LeadRabbitError("Failed to delete engagement.")

    logger.info("Engagement %s on lead %s deleted by %s", engagement_id, lead.id, actor.email)
    return _load_sorted(session, lead.id)
