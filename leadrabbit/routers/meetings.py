from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, status

from leadrabbit.schemas.leads import MeetingCreateRequest, MeetingOut, MeetingUpdateRequest
from leadrabbit.services import meetings as meeting_service
from leadrabbit.services.auth_service import AuthenticatedUser, authenticated_user
from leadrabbit.services.calendar_service import GoogleCalendarClient, get_calendar_client

logger = logging.getLogger("leadrabbit.routers.meetings")

router = APIRouter(prefix="/api/leads/{lead_id}/meetings", tags=["meetings"])


def _dump(meeting: Any) -> Dict[str, Any]:
    return MeetingOut.model_validate(meeting).model_dump(mode="json", by_alias=True)


@router.get("")
def list_meetings(
    lead_id: int,
    auth: AuthenticatedUser = Depends(authenticated_user),
) -> Dict[str, Any]:
    meetings = meeting_service.list_meetings(auth.db, lead_id, auth)
    return {"meetings": [_dump(m) for m in meetings]}


@router.post("", status_code=status.HTTP_201_CREATED)
def record_meeting(
    lead_id: int,
    payload: MeetingCreateRequest,
    auth: AuthenticatedUser = Depends(authenticated_user),
    calendar: GoogleCalendarClient = Depends(get_calendar_client),
) -> Dict[str, Any]:
    """Create the calendar event, then the meeting. No event, no meeting."""
    meeting = meeting_service.record_meeting(
        auth.db,
        lead_id,
        auth,
        auth.user,
        calendar,
        title=payload.title,
        date=payload.date,
        start_time=payload.start_time,
        end_time=payload.end_time,
        location=payload.location,
        description=payload.description,
        time_zone=payload.time_zone,
    )
    meetings = meeting_service.list_meetings(auth.db, lead_id, auth)
    return {
        "meeting": _dump(meeting),
        "meetings": [_dump(m) for m in meetings],
        "googleCalendarSynced": True,
    }


@router.patch("/{meeting_id}")
def reschedule_meeting(
    lead_id: int,
    meeting_id: int,
    payload: MeetingUpdateRequest,
    auth: AuthenticatedUser = Depends(authenticated_user),
    calendar: GoogleCalendarClient = Depends(get_calendar_client),
) -> Dict[str, Any]:
    meeting = meeting_service.reschedule_meeting(
        auth.db,
        lead_id,
        meeting_id,
        auth,
        auth.user,
        calendar,
        title=payload.title,
        date=payload.date,
        start_time=payload.start_time,
        end_time=payload.end_time,
        location=payload.location,
        description=payload.description,
        time_zone=payload.time_zone,
    )
    return {"meeting": _dump(meeting)}


@router.delete("/{meeting_id}")
def cancel_meeting(
    lead_id: int,
    meeting_id: int,
    auth: AuthenticatedUser = Depends(authenticated_user),
    calendar: GoogleCalendarClient = Depends(get_calendar_client),
) -> Dict[str, Any]:
    meeting = meeting_service.cancel_meeting(auth.db, lead_id, meeting_id, auth, auth.user, calendar)
    return {"meeting": _dump(meeting), "googleCalendarSynced": meeting.google_calendar_synced}
