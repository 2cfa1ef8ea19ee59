from __future__ import annotations

import logging
from typing import Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leadrabbit.config import get_settings
from leadrabbit.db import get_registry_db
from leadrabbit.schemas.users import LoginRequest
from leadrabbit.services import auth_service

logger = logging.getLogger("leadrabbit.routers.auth")

router = APIRouter(prefix="/api", tags=["auth"])


@router.post("/authenticate")
def authenticate(
    payload: LoginRequest,
    request: Request,
    registry: Session = Depends(get_registry_db),
) -> JSONResponse:
    """Verify credentials and set the `appToken` session cookie."""
    settings = get_settings()
    token, user, tenant = auth_service.login(
        registry,
        payload.email,
        payload.password,
        request.headers.get("host"),
    )

    response = JSONResponse(
        {
            "success": True,
            "message": "Login successful",
            "role": user.role,
            "customerName": tenant.customer_name,
        }
    )
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=settings.session_max_age_seconds,
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
        path="/",
    )
    return response


@router.post("/logout")
def logout(request: Request) -> JSONResponse:
    settings = get_settings()
    try:
        auth_service.logout(request.cookies.get(settings.session_cookie_name))
    except Exception:  # pragma: no cover - logout must always clear the cookie
        logger.exception("Failed to mark user offline during logout")

    response = JSONResponse({"success": True, "message": "Logged out"})
    response.delete_cookie(settings.session_cookie_name, path="/")
    return response


@router.post("/heartbeat")
def heartbeat(request: Request) -> Dict[str, bool]:
    token = request.cookies.get(get_settings().session_cookie_name)
    return {"ok": auth_service.heartbeat(token)}
