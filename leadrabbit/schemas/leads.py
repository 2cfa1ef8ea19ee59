from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from leadrabbit.models.lead import LeadStatus, MeetingStatus


class EngagementOut(BaseModel):
    """Engagement as returned to the UI (camelCase keys)."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    date: str
    type: str
    note: str
    created_at: datetime = Field(serialization_alias="createdAt")
    updated_at: datetime = Field(serialization_alias="updatedAt")
    created_by: str = Field(serialization_alias="createdBy")
    updated_by: str = Field(serialization_alias="updatedBy")


class MeetingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    date: str
    start_time_label: str = Field(serialization_alias="startTime")
    end_time_label: str = Field(serialization_alias="endTime")
    start_date_time: str = Field(serialization_alias="startDateTime")
    end_date_time: str = Field(serialization_alias="endDateTime")
    time_zone: str = Field(serialization_alias="timeZone")
    location: str = ""
    description: str = ""
    attendees: List[str] = Field(default_factory=list)
    google_event_id: str = Field(serialization_alias="googleEventId")
    hangout_link: Optional[str] = Field(default=None, serialization_alias="hangoutLink")
    google_calendar_synced: bool = Field(default=True, serialization_alias="googleCalendarSynced")
    status: MeetingStatus
    cancelled_at: Optional[datetime] = Field(default=None, serialization_alias="cancelledAt")
    created_at: datetime = Field(serialization_alias="createdAt")
    updated_at: datetime = Field(serialization_alias="updatedAt")
    created_by: str = Field(serialization_alias="createdBy")


class LeadOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    source: str
    status: LeadStatus
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    assigned_to: Optional[str] = Field(default=None, serialization_alias="assignedTo")
    assigned_at: Optional[datetime] = Field(default=None, serialization_alias="assignedAt")
    meta_data: Dict[str, Any] = Field(default_factory=dict, serialization_alias="metaData")
    engagements: List[EngagementOut] = Field(default_factory=list)
    meetings: List[MeetingOut] = Field(default_factory=list)
    created_at: datetime = Field(serialization_alias="createdAt")
    updated_at: datetime = Field(serialization_alias="updatedAt")


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class StatusUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    lead_id: Optional[int] = Field(default=None, alias="leadId")
    status: Optional[str] = None


class StatusUpdateResponse(BaseModel):
    message: str = "Lead status updated successfully"
    status: LeadStatus
    updated_at: datetime = Field(serialization_alias="updatedAt")


class EngagementRequest(BaseModel):
    """
    Create/update payload. `customType` wins over `type` when both are sent.
    """

    model_config = ConfigDict(populate_by_name=True)

    date: Optional[str] = None
    type: Optional[str] = None
    custom_type: Optional[str] = Field(default=None, alias="customType")
    note: Optional[str] = None


class MeetingCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    date: Optional[str] = None
    start_time: Optional[str] = Field(default=None, alias="startTime")
    end_time: Optional[str] = Field(default=None, alias="endTime")
    location: Optional[str] = None
    description: Optional[str] = None
    time_zone: Optional[str] = Field(default=None, alias="timeZone")


class MeetingUpdateRequest(MeetingCreateRequest):
    """Partial reschedule; omitted fields keep their stored values."""


class FavoriteToggleRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    lead_id: Optional[int] = Field(default=None, alias="leadId")
