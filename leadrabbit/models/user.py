import datetime
import enum
from typing import List, Optional

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, relationship

from leadrabbit.clock import utcnow
from leadrabbit.db import TenantBase


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    AGENT = "agent"


class User(TenantBase):
    """Admin or agent account inside a tenant database."""

    __tablename__ = "users"

    id: int = Column(Integer, primary_key=True, index=True)
    name: str = Column(String(255), nullable=False, default="")
    email: str = Column(String(255), nullable=False, unique=True, index=True)
    role: str = Column(String(16), nullable=False, default=UserRole.AGENT.value)
    password_hash: str = Column(String(255), nullable=False)
    status: str = Column(String(32), nullable=False, default="active")
    is_online: bool = Column(Boolean, nullable=False, default=False, index=True)
    is_verified: bool = Column(Boolean, nullable=False, default=False)
    avatar: Optional[str] = Column(String(512), nullable=True)
    last_heartbeat: Optional[datetime.datetime] = Column(DateTime, nullable=True)
    created_at: datetime.datetime = Column(DateTime, default=utcnow, nullable=False)
    updated_at: datetime.datetime = Column(DateTime, default=utcnow, nullable=False)

    favorite_links: Mapped[List["UserFavorite"]] = relationship(
        "UserFavorite",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    google_calendar: Mapped[Optional["GoogleCalendarConnection"]] = relationship(
        "GoogleCalendarConnection",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    @property
    def favorites(self) -> List[int]:
        return [link.lead_id for link in self.favorite_links]


class UserFavorite(TenantBase):
    """Set membership of a lead in a user's favorites."""

    __tablename__ = "user_favorites"

    id: int = Column(Integer, primary_key=True)
    user_id: int = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    lead_id: int = Column(
        Integer, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False
    )
    created_at: datetime.datetime = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "lead_id", name="uq_user_favorites_user_lead"),
    )


class GoogleCalendarConnection(TenantBase):
    """Per-user Google OAuth tokens used for calendar sync."""

    __tablename__ = "google_calendar_connections"

    id: int = Column(Integer, primary_key=True)
    user_id: int = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    google_email: str = Column(String(255), nullable=False)
    google_name: Optional[str] = Column(String(255), nullable=True)
    access_token: str = Column(Text, nullable=False)
    refresh_token: str = Column(Text, nullable=False)
    expires_at: datetime.datetime = Column(DateTime, nullable=False)
    connected_at: datetime.datetime = Column(DateTime, default=utcnow, nullable=False)
