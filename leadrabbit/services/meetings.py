"""
Meetings recorded against a lead, each backed by a Google Calendar event.

The calendar call always happens first: if it fails, nothing is written
locally, so there is never a meeting row without an event behind it.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from leadrabbit.clock import utcnow
from leadrabbit.config import get_settings
from leadrabbit.errors import LeadRabbitError, NotFound, UpstreamError, ValidationError
from leadrabbit.models import Lead, Meeting, MeetingStatus, User
from leadrabbit.services import calendar_service
from leadrabbit.services.calendar_service import GoogleCalendarClient
from leadrabbit.services.engagements import ensure_valid_date
from leadrabbit.services.leads import Actor, get_lead_for_actor

logger = logging.getLogger("leadrabbit.services.meetings")

CALENDAR_NOT_CONNECTED = "GOOGLE_CALENDAR_NOT_CONNECTED"

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})\s*(AM|PM)$", re.IGNORECASE)


def normalize_time_label(label: str) -> str:
    return " ".join(label.strip().upper().split())


def parse_12_hour_time(label: Optional[str]) -> Optional[str]:
    """'01:30 PM' -> '13:30'; None if the label is not HH:MM AM/PM."""
    if not label:
        return None
    match = _TIME_RE.match(normalize_time_label(label))
    if not match:
        return None

    hours, minutes, period = int(match.group(1)), int(match.group(2)), match.group(3).upper()
    if hours < 1 or hours > 12 or minutes > 59:
        return None

    if period == "AM":
        hours = 0 if hours == 12 else hours
    elif hours != 12:
        hours += 12
    return f"{hours:02d}:{minutes:02d}"


def build_date_time(date: str, time_24: str) -> str:
    return f"{date}T{time_24}:00"


@dataclass
class MeetingTimes:
    date: str
    start_label: str
    end_label: str
    start_date_time: str
    end_date_time: str


def validate_meeting_times(date: Optional[str], start_label: Optional[str], end_label: Optional[str]) -> MeetingTimes:
    try:
        date = ensure_valid_date(date)
    except ValidationError as exc:
        raise ValidationError("A valid meeting date (YYYY-MM-DD) is required.") from exc

    if not (start_label or "").strip() or not (end_label or "").strip():
        raise ValidationError("Start and end times in 12-hour format are required.")

    start_24 = parse_12_hour_time(start_label)
    end_24 = parse_12_hour_time(end_label)
    if not start_24 or not end_24:
        raise ValidationError("Time values must be in the format HH:MM AM/PM.")

    # Zero-padded HH:MM compares correctly as strings.
    if not start_24 < end_24:
        raise ValidationError("End time must be later than start time.")

    return MeetingTimes(
        date=date,
        start_label=normalize_time_label(start_label),
        end_label=normalize_time_label(end_label),
        start_date_time=build_date_time(date, start_24),
        end_date_time=build_date_time(date, end_24),
    )


def build_attendees(agent_email: str, lead: Lead) -> List[Dict[str, Optional[str]]]:
    """Agent first, then the lead (with its display name) unless it is the same address."""
    attendees: List[Dict[str, Optional[str]]] = [{"email": agent_email}]
    lead_email = (lead.email or "").strip()
    if lead_email and lead_email.lower() != agent_email.lower():
        attendees.append({"email": lead_email, "displayName": lead.name or None})
    return attendees


def _access_token(session: Session, user: User, client: GoogleCalendarClient) -> str:
    token = calendar_service.get_valid_access_token(session, user, client)
    if not token:
        raise ValidationError(
            "Google Calendar is not connected. Please connect your Google account before creating meetings.",
            code=CALENDAR_NOT_CONNECTED,
        )
    return token


def _get_meeting(session: Session, lead: Lead, meeting_id: int) -> Meeting:
    meeting = session.execute(
        select(Meeting).where(Meeting.id == meeting_id, Meeting.lead_id == lead.id)
    ).scalar_one_or_none()
    if meeting is None:
        raise NotFound("Meeting not found for the current user.")
    return meeting


def list_meetings(session: Session, lead_id: int, actor: Actor) -> List[Meeting]:
    lead = get_lead_for_actor(session, lead_id, actor)
    return list(
        session.execute(
            select(Meeting).where(Meeting.lead_id == lead.id).order_by(Meeting.created_at)
        ).scalars()
    )


def record_meeting(
    session: Session,
    lead_id: int,
    actor: Actor,
    user: User,
    client: GoogleCalendarClient,
    *,
    title: Optional[str],
    date: Optional[str],
    start_time: Optional[str],
    end_time: Optional[str],
    location: Optional[str] = None,
    description: Optional[str] = None,
    time_zone: Optional[str] = None,
) -> Meeting:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Meeting title is required.")

    times = validate_meeting_times(date, start_time, end_time)
    location = (location or "").strip()
    description = (description or "").strip()
    time_zone = (time_zone or "").strip() or get_settings().meetings_timezone

    lead = get_lead_for_actor(session, lead_id, actor)
    access_token = _access_token(session, user, client)
    attendees = build_attendees(actor.email, lead)

    try:
        event = client.upsert_event(
            access_token,
            calendar_service.build_event(
                summary=title,
                description=description,
                location=location,
                start_date_time=times.start_date_time,
                end_date_time=times.end_date_time,
                time_zone=time_zone,
                attendees=attendees,
            ),
        )
    except UpstreamError as exc:
        if exc.code == calendar_service.INSUFFICIENT_SCOPES:
            raise
        logger.error("Calendar event creation failed for lead %s: %s", lead.id, exc)
        raise UpstreamError("Failed to create Google Calendar event. Meeting was not saved.") from exc

    if not event.get("id"):
        raise UpstreamError("Google Calendar event was not created. Please try again.")

    now = utcnow()
    meeting = Meeting(
        lead_id=lead.id,
        title=title,
        date=times.date,
        start_time_label=times.start_label,
        end_time_label=times.end_label,
        start_date_time=times.start_date_time,
        end_date_time=times.end_date_time,
        time_zone=time_zone,
        location=location,
        description=description,
        attendees=[attendee["email"] for attendee in attendees],
        google_event_id=event["id"],
        hangout_link=event.get("hangoutLink"),
        google_calendar_synced=True,
        status=MeetingStatus.SCHEDULED,
        created_at=now,
        updated_at=now,
        created_by=actor.email,
    )
    session.add(meeting)
    lead.updated_at = now

    try:
        session.commit()
    except Exception as exc:
        session.rollback()
        logger.exception(
            "Meeting row for event %s could not be saved; the calendar event remains", event["id"]
        )
        raise LeadRabbitError("Failed to persist meeting.") from exc

    logger.info("Meeting %s recorded on lead %s by %s", meeting.id, lead.id, actor.email)
    return meeting


def reschedule_meeting(
    session: Session,
    lead_id: int,
    meeting_id: int,
    actor: Actor,
    user: User,
    client: GoogleCalendarClient,
    *,
    title: Optional[str] = None,
    date: Optional[str] = None,
    start_time: Optional[str] = None,
    end_time: Optional[str] = None,
    location: Optional[str] = None,
    description: Optional[str] = None,
    time_zone: Optional[str] = None,
) -> Meeting:
    """Partial update; the calendar event is updated before the row."""
    lead = get_lead_for_actor(session, lead_id, actor)
    meeting = _get_meeting(session, lead, meeting_id)

    if meeting.status == MeetingStatus.CANCELLED:
        raise ValidationError("Cancelled meetings cannot be rescheduled.")

    new_title = meeting.title if title is None else title.strip()
    if not new_title:
        raise ValidationError("Meeting title is required.")

    times = validate_meeting_times(
        meeting.date if date is None else date,
        meeting.start_time_label if start_time is None else start_time,
        meeting.end_time_label if end_time is None else end_time,
    )
    new_location = meeting.location if location is None else location.strip()
    new_description = meeting.description if description is None else description.strip()
    new_time_zone = (time_zone or "").strip() or meeting.time_zone

    access_token = _access_token(session, user, client)
    attendees = build_attendees(meeting.created_by, lead)

    try:
        event = client.upsert_event(
            access_token,
            calendar_service.build_event(
                summary=new_title,
                description=new_description,
                location=new_location,
                start_date_time=times.start_date_time,
                end_date_time=times.end_date_time,
                time_zone=new_time_zone,
                attendees=attendees,
            ),
            event_id=meeting.google_event_id,
        )
    except UpstreamError as exc:
        if exc.code == calendar_service.INSUFFICIENT_SCOPES:
            raise
        raise UpstreamError("Failed to update Google Calendar event. Meeting was not changed.") from exc

    now = utcnow()
    meeting.title = new_title
    meeting.date = times.date
    meeting.start_time_label = times.start_label
    meeting.end_time_label = times.end_label
    meeting.start_date_time = times.start_date_time
    meeting.end_date_time = times.end_date_time
    meeting.time_zone = new_time_zone
    meeting.location = new_location
    meeting.description = new_description
    meeting.attendees = [attendee["email"] for attendee in attendees]
    meeting.hangout_link = event.get("hangoutLink") or meeting.hangout_link
    meeting.updated_at = now
    lead.updated_at = now
    session.commit()

    logger.info("Meeting %s on lead %s rescheduled by %s", meeting.id, lead.id, actor.email)
    return meeting


def cancel_meeting(
    session: Session,
    lead_id: int,
    meeting_id: int,
    actor: Actor,
    user: User,
    client: GoogleCalendarClient,
) -> Meeting:
    """
    Best-effort calendar delete, then mark the meeting cancelled. A calendar
    failure is logged and the row is still cancelled (google_calendar_synced
    goes False).
    """
    lead = get_lead_for_actor(session, lead_id, actor)
    meeting = _get_meeting(session, lead, meeting_id)

    if meeting.status == MeetingStatus.CANCELLED:
        return meeting

    synced = False
    access_token = calendar_service.get_valid_access_token(session, user, client)
    if access_token:
        try:
            client.delete_event(access_token, meeting.google_event_id)
            synced = True
        except UpstreamError as exc:
            logger.warning(
                "Calendar delete failed for meeting %s (event %s): %s",
                meeting.id,
                meeting.google_event_id,
                exc,
            )
    else:
        logger.warning("No calendar connection for %s; meeting %s cancelled locally only", user.email, meeting.id)

    now = utcnow()
    meeting.status = MeetingStatus.CANCELLED
    meeting.cancelled_at = now
    meeting.google_calendar_synced = synced
    meeting.updated_at = now
    lead.updated_at = now
    session.commit()

    logger.info("Meeting %s on lead %s cancelled by %s", meeting.id, lead.id, actor.email)
    return meeting
