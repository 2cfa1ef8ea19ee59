from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from leadrabbit.models.user import UserRole


class LoginRequest(BaseModel):
    email: str
    password: str


class UserCreateRequest(BaseModel):
    """Admin form for adding an agent or admin to the tenant."""

    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: UserRole = UserRole.AGENT
    status: Optional[str] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        return v


class UserOut(BaseModel):
    """A user as shown in admin lists. Never carries the password hash."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    role: str
    status: str
    is_online: bool = Field(serialization_alias="isOnline")
    is_verified: bool = Field(serialization_alias="isVerified")
    avatar: Optional[str] = None
    last_heartbeat: Optional[datetime] = Field(default=None, serialization_alias="lastHeartbeat")
    created_at: datetime = Field(serialization_alias="createdAt")


class UserListResponse(BaseModel):
    users: List[UserOut]


class FavoritesResponse(BaseModel):
    favorites: List[int]
    is_favorite: Optional[bool] = Field(default=None, serialization_alias="isFavorite")
