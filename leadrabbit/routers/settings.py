import logging
from typing import Any, Dict

from fastapi import APIRouter, Request

from leadrabbit.schemas.settings import InactivityResponse
from leadrabbit.services.auth_service import AuthenticatedUser, resolve_authenticated_user
from leadrabbit.services.settings_service import get_inactivity_minutes

logger = logging.getLogger("leadrabbit.routers.settings")

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("/inactivity")
def inactivity(request: Request) -> Dict[str, Any]:
    """Tenant inactivity timeout; anonymous callers get the default."""
    resolved = resolve_authenticated_user(request)
    if not isinstance(resolved, AuthenticatedUser):
        return InactivityResponse(inactivity_minutes=get_inactivity_minutes(None)).model_dump(by_alias=True)

    try:
        minutes = get_inactivity_minutes(resolved.db)
    finally:
        resolved.db.close()
    return InactivityResponse(inactivity_minutes=minutes).model_dump(by_alias=True)
