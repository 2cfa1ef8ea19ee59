"""
Work performed by the cron-invoked jobs: presence cleanup and round-robin
lead assignment. Scheduling itself is left to the platform (cron, k8s
CronJob, ...) which runs `python -m leadrabbit.jobs`.
"""

from __future__ import annotations

import datetime
import logging
import math
from dataclasses import dataclass
from typing import List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from leadrabbit.clock import utcnow
from leadrabbit.config import get_settings
from leadrabbit.models import Lead, User
from leadrabbit.models.tenant_setting import LEAD_ASSIGNMENT
from leadrabbit.schemas.settings import CronConfig
from leadrabbit.services.settings_service import get_cron_config, get_setting, put_setting

logger = logging.getLogger("leadrabbit.services.assignment")


@dataclass
class AssignmentResult:
    assigned: int = 0
    skipped_reason: Optional[str] = None


def mark_stale_users_inactive(
    session: Session,
    now: Optional[datetime.datetime] = None,
    stale_minutes: Optional[int] = None,
) -> int:
    """Online users with no heartbeat since the cutoff go offline/inactive."""
    now = now or utcnow()
    if stale_minutes is None:
        stale_minutes = get_cron_config(session).stale_heartbeat_minutes
    cutoff = now - datetime.timedelta(minutes=stale_minutes)

    result = session.execute(
        update(User)
        .where(
            User.is_online.is_(True),
            or_(User.last_heartbeat.is_(None), User.last_heartbeat < cutoff),
        )
        .values(is_online=False, status="inactive")
        .execution_options(synchronize_session=False)
    )
    session.commit()

    count = result.rowcount or 0
    if count:
        logger.info("Marked %d stale user(s) inactive (cutoff=%s)", count, cutoff.isoformat())
    return count


def local_hour(now: datetime.datetime, tz_name: str) -> int:
    """Hour of a naive-UTC instant in the given time zone."""
    aware = now.replace(tzinfo=datetime.timezone.utc)
    return aware.astimezone(ZoneInfo(tz_name)).hour


def in_assignment_window(now: datetime.datetime, config: CronConfig, tz_name: str) -> bool:
    hour = local_hour(now, tz_name)
    return config.cron_start_hour <= hour < config.cron_end_hour


def assign_leads(
    session: Session,
    now: Optional[datetime.datetime] = None,
    config: Optional[CronConfig] = None,
) -> AssignmentResult:
    """
    Round-robin unassigned leads across online, verified users (by email).

    Each user receives at most min(ceil(unassigned / users), cap) leads per
    run. The pointer (last index and user) persists in tenant settings so the
    next run starts with the following user.
    """
    settings = get_settings()
    now = now or utcnow()
    config = config or get_cron_config(session)

    if not in_assignment_window(now, config, settings.assignment_timezone):
        return AssignmentResult(skipped_reason="outside assignment window")

    users: List[User] = list(
        session.execute(
            select(User)
            .where(User.is_online.is_(True), User.is_verified.is_(True))
            .order_by(User.email)
        ).scalars()
    )
    if not users:
        return AssignmentResult(skipped_reason="no online users")

    leads: List[Lead] = list(
        session.execute(
            select(Lead)
            .where(or_(Lead.assigned_to.is_(None), Lead.assigned_to == ""))
            .order_by(Lead.created_at, Lead.id)
        ).scalars()
    )
    if not leads:
        return AssignmentResult(skipped_reason="no unassigned leads")

    per_user = min(math.ceil(len(leads) / len(users)), settings.assignment_max_per_user)

    pointer = get_setting(session, LEAD_ASSIGNMENT)
    state = dict(pointer.value) if pointer is not None else {}
    last_index = int(state.get("lastAssignedIndex", -1))
    last_user = state.get("lastAssignedUser")

    if last_user and any(user.email == last_user for user in users):
        user_index = (last_index + 1) % len(users)
    else:
        user_index = max(last_index, 0) % len(users)

    total = min(per_user * len(users), len(leads))
    for i in range(total):
        lead = leads[i]
        lead.assigned_to = users[user_index].email
        lead.assigned_at = now
        lead.updated_at = now
        if (i + 1) % per_user == 0:
            user_index = (user_index + 1) % len(users)

    put_setting(
        session,
        LEAD_ASSIGNMENT,
        {
            "lastAssignedIndex": user_index,
            "lastAssignedUser": users[user_index].email,
            "lastAssignedAt": now.isoformat(),
        },
    )
    session.commit()

    logger.info("Assigned %d lead(s) across %d user(s), %d each max", total, len(users), per_user)
    return AssignmentResult(assigned=total)
