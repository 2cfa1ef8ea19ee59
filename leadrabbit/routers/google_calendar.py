from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from leadrabbit.db import get_registry_db
from leadrabbit.services.auth_service import AuthenticatedUser, authenticated_user
from leadrabbit.services.calendar_service import (
    GoogleCalendarClient,
    connection_status,
    encode_oauth_state,
    get_calendar_client,
    handle_oauth_callback,
    remove_user_tokens,
)

logger = logging.getLogger("leadrabbit.routers.google_calendar")

router = APIRouter(prefix="/api/google-calendar", tags=["google-calendar"])


@router.get("/connect")
def connect(
    return_path: Optional[str] = Query(default=None, alias="returnPath"),
    auth: AuthenticatedUser = Depends(authenticated_user),
    calendar: GoogleCalendarClient = Depends(get_calendar_client),
) -> Dict[str, str]:
    """Consent URL for the caller; the signed state ties the callback back to them."""
    default_path = "/admin" if auth.is_admin else "/user"
    state = encode_oauth_state(
        auth.tenant.customer_id,
        auth.email,
        auth.role,
        return_path or default_path,
    )
    return {"authUrl": calendar.build_auth_url(state)}


@router.get("/callback")
def callback(
    code: Optional[str] = None,
    error: Optional[str] = None,
    state: Optional[str] = None,
    registry: Session = Depends(get_registry_db),
    calendar: GoogleCalendarClient = Depends(get_calendar_client),
) -> RedirectResponse:
    target = handle_oauth_callback(registry, calendar, code=code, error=error, state=state)
    return RedirectResponse(target, status_code=302)


@router.get("/status")
def status(auth: AuthenticatedUser = Depends(authenticated_user)) -> Dict[str, Any]:
    return connection_status(auth.user)


@router.delete("/disconnect")
def disconnect(auth: AuthenticatedUser = Depends(authenticated_user)) -> Dict[str, Any]:
    remove_user_tokens(auth.db, auth.user)
    return {"success": True, "message": "Google Calendar disconnected"}
