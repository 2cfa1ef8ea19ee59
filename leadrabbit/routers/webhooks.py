import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from leadrabbit.db import get_registry_db
from leadrabbit.errors import LeadRabbitError
from leadrabbit.ingestion import acres99, facebook
from leadrabbit.ingestion.common import AuthenticationError, IngestionError
from leadrabbit.ingestion.schemas import IngestResult, WebhookResponse
from leadrabbit.services.tenants_service import resolve_tenant_by_webhook_id

logger = logging.getLogger("leadrabbit.routers.webhooks")

router = APIRouter(prefix="/webhook", tags=["webhooks"])


def get_graph_client():
    """Graph API client for Facebook lead fetches; overridden in tests."""
    client = acres99.build_http_client()
    try:
        yield client
    finally:
        client.close()


async def raw_body(request: Request) -> bytes:
    """Request body as bytes, read on the event loop so handlers can stay sync."""
    return await request.body()


def _response(result: IngestResult, source: str) -> Dict[str, Any]:
    if not result.account_active:
        body = WebhookResponse(
            success=True,
            leads_processed=0,
            message=f"No active {source} account; payload ignored",
        )
    else:
        body = WebhookResponse(
            success=True,
            leads_processed=result.leads_processed,
            message=(
                f"{result.leads_processed} new, {result.duplicates} duplicate, "
                f"{result.skipped} skipped"
            ),
        )
    return body.model_dump(by_alias=True)


@router.post(
    "/99acres/{webhook_id}",
    summary="99acres push webhook",
    description="Receives the 99acres XML response document for the tenant owning `webhook_id`.",
)
def acres99_webhook(
    webhook_id: str,
    body: bytes = Depends(raw_body),
    registry: Session = Depends(get_registry_db),
) -> Dict[str, Any]:
    tenant = resolve_tenant_by_webhook_id(registry, acres99.SOURCE, webhook_id)

    db = tenant.open_session()
    try:
        result = acres99.ingest_acres99_payload(db, body, tenant.label)
    except IngestionError as exc:
        logger.warning("99acres webhook rejected for %s: %s", tenant.label, exc)
        raise
    except Exception as exc:  # pragma: no cover - safety net
        logger.exception("Unexpected error during 99acres webhook ingestion")
        raise LeadRabbitError("Unexpected error during webhook ingestion.") from exc
    finally:
        db.close()

    return _response(result, acres99.SOURCE)


@router.get("/facebook/{webhook_id}", response_class=PlainTextResponse)
def facebook_handshake(
    webhook_id: str,
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    registry: Session = Depends(get_registry_db),
) -> PlainTextResponse:
    """Subscription verification: echo `hub.challenge` when the token matches."""
    resolve_tenant_by_webhook_id(registry, facebook.SOURCE, webhook_id)
    return PlainTextResponse(facebook.verify_subscription(mode, token, challenge))


@router.post(
    "/facebook/{webhook_id}",
    summary="Facebook lead-ads webhook",
    description=f"Signed JSON change notifications; requires the {facebook.SIGNATURE_HEADER} header.",
)
def facebook_webhook(
    webhook_id: str,
    request: Request,
    body: bytes = Depends(raw_body),
    registry: Session = Depends(get_registry_db),
    graph=Depends(get_graph_client),
) -> Dict[str, Any]:
    tenant = resolve_tenant_by_webhook_id(registry, facebook.SOURCE, webhook_id)

    try:
        facebook.verify_signature(body, request.headers.get(facebook.SIGNATURE_HEADER))
    except AuthenticationError as exc:
        logger.warning("Facebook webhook authentication failed for %s: %s", tenant.label, exc)
        raise

    payload = facebook.parse_payload(body)

    db = tenant.open_session()
    try:
        result = facebook.ingest_facebook_payload(db, payload, graph, tenant.label)
    except IngestionError as exc:
        logger.warning("Facebook webhook rejected for %s: %s", tenant.label, exc)
        raise
    except Exception as exc:  # pragma: no cover - safety net
        logger.exception("Unexpected error during Facebook webhook ingestion")
        raise LeadRabbitError("Unexpected error during webhook ingestion.") from exc
    finally:
        db.close()

    return _response(result, facebook.SOURCE)
