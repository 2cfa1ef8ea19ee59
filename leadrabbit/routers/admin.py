import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, status

from leadrabbit.schemas.settings import CronConfigUpdate
from leadrabbit.schemas.users import UserCreateRequest, UserOut
from leadrabbit.services import settings_service, users_service
from leadrabbit.services.auth_service import AuthenticatedUser, authenticated_user, require_admin

logger = logging.getLogger("leadrabbit.routers.admin")

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _dump_user(user: Any) -> Dict[str, Any]:
    return UserOut.model_validate(user).model_dump(mode="json", by_alias=True)


@router.get("/addUser")
def list_users(auth: AuthenticatedUser = Depends(authenticated_user)) -> Dict[str, Any]:
    require_admin(auth)
    return {"users": [_dump_user(user) for user in users_service.list_users(auth.db)]}


@router.post("/addUser", status_code=status.HTTP_201_CREATED)
def add_user(
    payload: UserCreateRequest,
    auth: AuthenticatedUser = Depends(authenticated_user),
) -> Dict[str, Any]:
    require_admin(auth)
    user = users_service.add_user(
        auth.db,
        name=payload.name,
        email=payload.email,
        password=payload.password,
        role=payload.role.value,
        status=payload.status,
    )
    logger.info("Admin %s added user %s", auth.email, user.email)
    return {"success": True, "message": "User added successfully", "user": _dump_user(user)}


@router.get("/configuration")
def get_configuration(auth: AuthenticatedUser = Depends(authenticated_user)) -> Dict[str, Any]:
    require_admin(auth)
    config = settings_service.get_cron_config(auth.db)
    return {"config": config.model_dump(by_alias=True)}


@router.put("/configuration")
def update_configuration(
    payload: CronConfigUpdate,
    auth: AuthenticatedUser = Depends(authenticated_user),
) -> Dict[str, Any]:
    require_admin(auth)
    config = settings_service.update_cron_config(auth.db, payload, auth.email)
    return {
        "success": True,
        "message": "Configuration updated successfully",
        "config": config.model_dump(by_alias=True),
    }
