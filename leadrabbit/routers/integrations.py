import logging
from typing import Any, Dict, List

import httpx
from fastapi import APIRouter, Depends

from leadrabbit.ingestion import acres99
from leadrabbit.ingestion.schemas import (
    AccountActionRequest,
    AccountDeleteRequest,
    SyncResponse,
)
from leadrabbit.services import integrations_service
from leadrabbit.services.auth_service import AuthenticatedUser, authenticated_user, require_admin

logger = logging.getLogger("leadrabbit.routers.integrations")

router = APIRouter(prefix="/api/99acres", tags=["integrations"])


def get_sync_client():
    """HTTP client for the 99acres query API; overridden in tests."""
    client = acres99.build_http_client()
    try:
        yield client
    finally:
        client.close()


@router.get("/accounts")
def list_accounts(auth: AuthenticatedUser = Depends(authenticated_user)) -> List[Dict[str, Any]]:
    require_admin(auth)
    accounts = integrations_service.list_accounts(auth.db, acres99.SOURCE)
    return [account.model_dump(mode="json", by_alias=True) for account in accounts]


@router.post("/accounts")
def update_account(
    payload: AccountActionRequest,
    auth: AuthenticatedUser = Depends(authenticated_user),
) -> Dict[str, Any]:
    require_admin(auth)
    account = integrations_service.set_account_active(
        auth.db, acres99.SOURCE, payload.account_id, payload.action
    )
    return {"success": True, "isActive": account.is_active}


@router.delete("/accounts")
def delete_account(
    payload: AccountDeleteRequest,
    auth: AuthenticatedUser = Depends(authenticated_user),
) -> Dict[str, Any]:
    require_admin(auth)
    integrations_service.delete_account(auth.db, acres99.SOURCE, payload.account_id)
    return {"success": True}


@router.post("/sync")
def sync(
    auth: AuthenticatedUser = Depends(authenticated_user),
    client: httpx.Client = Depends(get_sync_client),
) -> Dict[str, Any]:
    """Pull every active 99acres account of the caller's tenant."""
    require_admin(auth)
    result, synced, failed = acres99.sync_tenant(auth.tenant, client)

    body = SyncResponse(
        success=not failed,
        leads_synced=result.leads_processed,
        accounts_synced=synced,
        failed_accounts=failed,
    )
    return body.model_dump(by_alias=True)
