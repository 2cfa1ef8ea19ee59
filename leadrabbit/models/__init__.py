"""
Models package for the LeadRabbit backend.

Imports and exposes ORM models so they are registered with the registry and
tenant metadata before any create_all() runs.
"""

from __future__ import annotations

from leadrabbit.db import RegistryBase, TenantBase
from .customer import Customer, CustomerWebhook  # noqa: F401
from .integration import IntegrationAccount  # noqa: F401
from .lead import Engagement, Lead, LeadStatus, Meeting, MeetingStatus  # noqa: F401
from .tenant_setting import TenantSetting  # noqa: F401
from .user import GoogleCalendarConnection, User, UserFavorite, UserRole  # noqa: F401

__all__ = [
    "RegistryBase",
    "TenantBase",
    "Customer",
    "CustomerWebhook",
    "IntegrationAccount",
    "Lead",
    "LeadStatus",
    "Engagement",
    "Meeting",
    "MeetingStatus",
    "TenantSetting",
    "User",
    "UserFavorite",
    "UserRole",
    "GoogleCalendarConnection",
]
