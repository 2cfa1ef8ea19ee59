import datetime
import enum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, relationship

from leadrabbit.clock import utcnow
from leadrabbit.db import TenantBase


class LeadStatus(str, enum.Enum):
    """Closed set of lead statuses; aliases are resolved before storage."""

    NEW = "New"
    INTERESTED = "Interested"
    NOT_INTERESTED = "Not Interested"
    DEAL = "Deal"


class MeetingStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Lead(TenantBase):
    """Canonical lead record inside a tenant database."""

    __tablename__ = "leads"

    id: int = Column(Integer, primary_key=True, index=True)
    source: str = Column(String(64), index=True, nullable=False)
    external_query_id: Optional[str] = Column(String(128), nullable=True)
    status: LeadStatus = Column(
        Enum(
            LeadStatus,
            native_enum=False,
            values_callable=_enum_values,
            validate_strings=True,
            length=32,
        ),
        nullable=False,
        default=LeadStatus.NEW,
        index=True,
    )
    name: Optional[str] = Column(String(255), nullable=True)
    email: Optional[str] = Column(String(255), index=True, nullable=True)
    phone: Optional[str] = Column(String(64), nullable=True)
    assigned_to: Optional[str] = Column(String(255), index=True, nullable=True)
    assigned_at: Optional[datetime.datetime] = Column(DateTime, nullable=True)
    account_id: Optional[int] = Column(
        Integer, ForeignKey("integration_accounts.id", ondelete="SET NULL"), nullable=True
    )
    meta_data: Dict[str, Any] = Column(JSON, nullable=False, default=dict)
    created_at: datetime.datetime = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at: datetime.datetime = Column(DateTime, default=utcnow, nullable=False)

    engagements: Mapped[List["Engagement"]] = relationship(
        "Engagement",
        back_populates="lead",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    meetings: Mapped[List["Meeting"]] = relationship(
        "Meeting",
        back_populates="lead",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Meeting.created_at",
    )

    __table_args__ = (
        # Dedupe key for ingestion; NULL ids (manual leads) never collide.
        UniqueConstraint("source", "external_query_id", name="uq_leads_source_external_query_id"),
        Index("ix_leads_source_created", "source", "created_at"),
    )


class Engagement(TenantBase):
    """A dated note (call, visit, follow-up...) recorded against a lead."""

    __tablename__ = "lead_engagements"

    id: int = Column(Integer, primary_key=True)
    lead_id: int = Column(
        Integer, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True
    )
    date: str = Column(String(10), nullable=False)
    type: str = Column(String(128), nullable=False)
    note: str = Column(Text, nullable=False, default="")
    created_at: datetime.datetime = Column(DateTime, default=utcnow, nullable=False)
    updated_at: datetime.datetime = Column(DateTime, default=utcnow, nullable=False)
    created_by: str = Column(String(255), nullable=False)
    updated_by: str = Column(String(255), nullable=False)

    lead: Mapped["Lead"] = relationship("Lead", back_populates="engagements")


class Meeting(TenantBase):
    """A meeting scheduled with a lead, backed by a Google Calendar event."""

    __tablename__ = "lead_meetings"

    id: int = Column(Integer, primary_key=True)
    lead_id: int = Column(
        Integer, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: str = Column(String(255), nullable=False)
    date: str = Column(String(10), nullable=False)
    start_time_label: str = Column(String(16), nullable=False)
    end_time_label: str = Column(String(16), nullable=False)
    start_date_time: str = Column(String(19), nullable=False)
    end_date_time: str = Column(String(19), nullable=False)
    time_zone: str = Column(String(64), nullable=False)
    location: str = Column(String(512), nullable=False, default="")
    description: str = Column(Text, nullable=False, default="")
    attendees: List[str] = Column(JSON, nullable=False, default=list)
    google_event_id: str = Column(String(255), nullable=False)
    hangout_link: Optional[str] = Column(String(512), nullable=True)
    google_calendar_synced: bool = Column(Boolean, nullable=False, default=True)
    status: MeetingStatus = Column(
        Enum(
            MeetingStatus,
            native_enum=False,
            values_callable=_enum_values,
            validate_strings=True,
            length=16,
        ),
        nullable=False,
        default=MeetingStatus.SCHEDULED,
    )
    cancelled_at: Optional[datetime.datetime] = Column(DateTime, nullable=True)
    created_at: datetime.datetime = Column(DateTime, default=utcnow, nullable=False)
    updated_at: datetime.datetime = Column(DateTime, default=utcnow, nullable=False)
    created_by: str = Column(String(255), nullable=False)

    lead: Mapped["Lead"] = relationship("Lead", back_populates="meetings")
