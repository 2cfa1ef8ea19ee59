from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Protocol, Tuple

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from leadrabbit.clock import utcnow
from leadrabbit.errors import NotFound, ValidationError
from leadrabbit.models import Lead, LeadStatus

logger = logging.getLogger("leadrabbit.services.leads")


class Actor(Protocol):
    email: str

    @property
    def is_admin(self) -> bool: ...


# Free-form inputs the UI (and older clients) send, lower-cased.
STATUS_ALIASES = {
    "new": LeadStatus.NEW,
    "interested": LeadStatus.INTERESTED,
    "inprogress": LeadStatus.INTERESTED,
    "in progress": LeadStatus.INTERESTED,
    "in_progress": LeadStatus.INTERESTED,
    "not interested": LeadStatus.NOT_INTERESTED,
    "not_interested": LeadStatus.NOT_INTERESTED,
    "notinterested": LeadStatus.NOT_INTERESTED,
    "deal": LeadStatus.DEAL,
    "closed": LeadStatus.DEAL,
}


def normalize_status(value: object) -> Optional[LeadStatus]:
    """Resolve free-form input to a LeadStatus; None means no match."""
    if not isinstance(value, str):
        return None

    key = " ".join(value.split()).lower()
    if not key:
        return None

    for status in LeadStatus:
        if status.value.lower() == key:
            return status

    return STATUS_ALIASES.get(key)


def _scope(statement, lead_id: int, actor: Actor):
    """Tenant scoping is the session; ownership scoping is this filter."""
    statement = statement.where(Lead.id == lead_id)
    if not actor.is_admin:
        statement = statement.where(Lead.assigned_to == actor.email)
    return statement


def get_lead_for_actor(session: Session, lead_id: int, actor: Actor) -> Lead:
    """
    Load a lead the actor may touch. Missing and not-owned are both NotFound.
    """
    lead = session.execute(_scope(select(Lead), lead_id, actor)).scalar_one_or_none()
    if lead is None:
        raise NotFound("Lead not found for the current user.")
    return lead


def update_status(
    session: Session,
    lead_id: Optional[int],
    requested_status: object,
    actor: Actor,
) -> Tuple[LeadStatus, datetime]:
    if lead_id is None:
        raise ValidationError("Lead identifier is required.")

    status = normalize_status(requested_status)
    if status is None:
        raise ValidationError("Invalid lead status value.", code="InvalidStatus")

    now = utcnow()
    result = session.execute(
        _scope(update(Lead), lead_id, actor)
        .values(status=status, updated_at=now)
        .execution_options(synchronize_session=False)
    )

    if not result.rowcount:
        logger.info("Status update matched no lead (lead=%s, actor=%s)", lead_id, actor.email)
        raise NotFound("Lead not found for the current user.")

    session.commit()
    logger.info("Lead %s status -> %s by %s", lead_id, status.value, actor.email)
    return status, now


def list_leads(
    session: Session,
    *,
    assigned_to: Optional[str] = None,
    status: Optional[str] = None,
    source: Optional[str] = None,
    search: Optional[str] = None,
    lead_ids: Optional[Iterable[int]] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Lead]:
    """
    Return leads, newest first, with optional filtering.

    `lead_ids` restricts to an explicit set (used for favorites-only views).
    An unknown status filter is a ValidationError rather than an empty page.
    """
    try:
        query = select(Lead)

        if assigned_to:
            query = query.where(Lead.assigned_to == assigned_to)

        if status:
            resolved = normalize_status(status)
            if resolved is None:
                raise ValidationError("Invalid lead status value.", code="InvalidStatus")
            query = query.where(Lead.status == resolved)

        if source:
            query = query.where(Lead.source == source)

        if lead_ids is not None:
            query = query.where(Lead.id.in_(list(lead_ids)))

        if search:
            like = f"%{search.strip()}%"
            query = query.where(
                or_(
                    Lead.name.ilike(like),
                    Lead.email.ilike(like),
                    Lead.phone.ilike(like),
                )
            )

        query = query.order_by(Lead.created_at.desc(), Lead.id.desc()).offset(offset).limit(limit)
        leads: List[Lead] = list(session.execute(query).scalars().all())

        logger.debug(
            "Fetched %d leads (assigned_to=%s, status=%s, source=%s, search=%s, limit=%d, offset=%d)",
            len(leads),
            assigned_to,
            status,
            source,
            search,
            limit,
            offset,
        )
        return leads

    except ValidationError:
        raise
    except Exception:
        logger.exception(
            "Error while fetching leads (status=%s, search=%s, limit=%d, offset=%d)",
            status,
            search,
            limit,
            offset,
        )
        raise
