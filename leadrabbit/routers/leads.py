from __future__ import annotations

import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query

from leadrabbit.schemas.leads import (
    FavoriteToggleRequest,
    LeadOut,
    StatusUpdateRequest,
    StatusUpdateResponse,
)
from leadrabbit.schemas.users import FavoritesResponse, UserOut
from leadrabbit.services import leads as lead_service
from leadrabbit.services import users_service
from leadrabbit.services.auth_service import AuthenticatedUser, authenticated_user, require_admin

logger = logging.getLogger("leadrabbit.routers.leads")

router = APIRouter(prefix="/api/leads", tags=["leads"])


@router.get("/getLeads", response_model=List[LeadOut])
def get_my_leads(
    limit: int = Query(default=500, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    auth: AuthenticatedUser = Depends(authenticated_user),
) -> List[Any]:
    """Leads assigned to the caller."""
    return lead_service.list_leads(auth.db, assigned_to=auth.email, limit=limit, offset=offset)


@router.get("/getAllLeads", response_model=List[LeadOut])
def get_all_leads(
    status: Optional[str] = None,
    source: Optional[str] = None,
    assigned_to: Optional[str] = Query(default=None, alias="assignedTo"),
    search: Optional[str] = None,
    favorites_only: bool = Query(default=False, alias="favoritesOnly"),
    limit: int = Query(default=500, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    auth: AuthenticatedUser = Depends(authenticated_user),
) -> List[Any]:
    """Admin view across every lead in the tenant."""
    require_admin(auth)
    return lead_service.list_leads(
        auth.db,
        assigned_to=assigned_to,
        status=status,
        source=source,
        search=search,
        lead_ids=auth.user.favorites if favorites_only else None,
        limit=limit,
        offset=offset,
    )


@router.patch("/updateStatus", response_model=StatusUpdateResponse)
def update_status(
    payload: StatusUpdateRequest,
    auth: AuthenticatedUser = Depends(authenticated_user),
) -> StatusUpdateResponse:
    status, updated_at = lead_service.update_status(auth.db, payload.lead_id, payload.status, auth)
    return StatusUpdateResponse(status=status, updated_at=updated_at)


@router.get("/favorites", response_model=FavoritesResponse)
def get_favorites(auth: AuthenticatedUser = Depends(authenticated_user)) -> FavoritesResponse:
    return FavoritesResponse(favorites=users_service.list_favorites(auth.user))


@router.post("/favorites", response_model=FavoritesResponse)
def toggle_favorite(
    payload: FavoriteToggleRequest,
    auth: AuthenticatedUser = Depends(authenticated_user),
) -> FavoritesResponse:
    favorites, is_favorite = users_service.toggle_favorite(auth.db, auth.user, payload.lead_id)
    return FavoritesResponse(favorites=favorites, is_favorite=is_favorite)


@router.get("/getOnlineUsers", response_model=List[UserOut])
def get_online_users(auth: AuthenticatedUser = Depends(authenticated_user)) -> List[Any]:
    return users_service.list_online_users(auth.db)

