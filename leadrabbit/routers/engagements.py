from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, status

from leadrabbit.schemas.leads import EngagementOut, EngagementRequest
from leadrabbit.services import engagements as engagement_service
from leadrabbit.services.auth_service import AuthenticatedUser, authenticated_user

logger = logging.getLogger("leadrabbit.routers.engagements")

router = APIRouter(prefix="/api/leads/{lead_id}/engagements", tags=["engagements"])


def _dump(engagements: List[Any]) -> List[Dict[str, Any]]:
    return [
        EngagementOut.model_validate(item).model_dump(mode="json", by_alias=True)
        for item in engagements
    ]


@router.get("")
def list_engagements(
    lead_id: int,
    auth: AuthenticatedUser = Depends(authenticated_user),
) -> Dict[str, Any]:
    engagements = engagement_service.list_engagements(auth.db, lead_id, auth)
    return {"engagements": _dump(engagements)}


@router.post("", status_code=status.HTTP_201_CREATED)
def add_engagement(
    lead_id: int,
    payload: EngagementRequest,
    auth: AuthenticatedUser = Depends(authenticated_user),
) -> Dict[str, Any]:
    engagement, engagements = engagement_service.add_engagement(
        auth.db,
        lead_id,
        auth,
        date=payload.date,
        type_=payload.type,
        custom_type=payload.custom_type,
        note=payload.note,
    )
    return {
        "engagement": _dump([engagement])[0],
        "engagements": _dump(engagements),
    }


@router.patch("/{engagement_id}")
def update_engagement(
    lead_id: int,
    engagement_id: int,
    payload: EngagementRequest,
    auth: AuthenticatedUser = Depends(authenticated_user),
) -> Dict[str, Any]:
    engagements = engagement_service.update_engagement(
        auth.db,
        lead_id,
        engagement_id,
        auth,
        date=payload.date,
        type_=payload.type,
        custom_type=payload.custom_type,
        note=payload.note,
    )
    return {"engagements": _dump(engagements)}


@router.delete("/{engagement_id}")
def delete_engagement(
    lead_id: int,
    engagement_id: int,
    auth: AuthenticatedUser = Depends(authenticated_user),
) -> Dict[str, Any]:
    engagements = engagement_service.delete_engagement(auth.db, lead_id, engagement_id, auth)
    return {"engagements": _dump(engagements)}
