"""
Facebook Lead Ads adapter.

Facebook calls GET once to verify the subscription (hub.* handshake) and then
POSTs signed JSON change notifications. Notifications may carry the lead's
field_data inline; when they do not, the lead is fetched from the Graph API
with the integration account's page access token.
"""

import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Iterator, List, Optional

import httpx
from sqlalchemy.orm import Session

from leadrabbit.ingestion.common import (
    INSERTED,
    AuthenticationError,
    InvalidEnvelope,
    clean_email,
    clean_name,
    clean_phone,
    get_active_account,
    insert_lead_if_new,
)
from leadrabbit.ingestion.config import get_ingestion_settings
from leadrabbit.ingestion.schemas import IngestResult
from leadrabbit.models import IntegrationAccount

logger = logging.getLogger("leadrabbit.ingestion.facebook")

SOURCE = "facebook"
SIGNATURE_HEADER = "X-Hub-Signature-256"


def verify_subscription(mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> str:
    """Answer the hub.* handshake with the challenge, or refuse with 403."""
    expected = get_ingestion_settings().facebook_verify_token
    if mode != "subscribe" or not expected or token != expected or challenge is None:
        logger.warning("Facebook subscription handshake rejected (mode=%s)", mode)
        raise AuthenticationError("Verification failed", status_code=403)
    return challenge


def verify_signature(raw_body: bytes, signature_header: Optional[str]) -> None:
    """Check `sha256=<hex>` HMAC of the raw body against the app secret."""
    secret = get_ingestion_settings().facebook_app_secret
    if not secret:
        raise AuthenticationError("Facebook app secret is not configured")

    if not signature_header or not signature_header.startswith("sha256="):
        raise AuthenticationError("Missing or malformed signature")

    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    provided = signature_header[len("sha256="):]
    if not hmac.compare_digest(expected, provided):
        raise AuthenticationError("Invalid signature")


def parse_payload(raw_body: bytes) -> Dict[str, Any]:
    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidEnvelope("Invalid JSON body") from exc

    if not isinstance(payload, dict) or not isinstance(payload.get("entry"), list):
        raise InvalidEnvelope("Payload has no entry list")
    return payload


def _iter_changes(payload: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    for entry in payload.get("entry") or []:
        if not isinstance(entry, dict):
            continue
        for change in entry.get("changes") or []:
            value = change.get("value") if isinstance(change, dict) else None
            if isinstance(value, dict):
                yield value


def _fields(field_data: List[Dict[str, Any]]) -> Dict[str, str]:
    """Flatten [{"name": "email", "values": ["a@b"]}] into {"email": "a@b"}."""
    flat: Dict[str, str] = {}
    for item in field_data or []:
        if not isinstance(item, dict) or not item.get("name"):
            continue
        values = item.get("values") or []
        flat[str(item["name"])] = str(values[0]) if values else ""
    return flat


def fetch_lead(client: httpx.Client, leadgen_id: str, access_token: str) -> Dict[str, Any]:
    """GET a lead from the Graph API; raises httpx.HTTPError on failure."""
    settings = get_ingestion_settings()
    url = f"{settings.facebook_graph_url}/{settings.facebook_graph_version}/{leadgen_id}"
    response = client.get(url, params={"access_token": access_token})
    response.raise_for_status()
    return response.json()


def normalize_lead(value: Dict[str, Any], field_data: List[Dict[str, Any]], leadgen_id: str) -> Dict[str, Any]:
    fields = _fields(field_data)

    name = fields.get("full_name") or fields.get("name")
    if not name:
        name = " ".join(
            part for part in (fields.get("first_name"), fields.get("last_name")) if part
        )

    return {
        "external_query_id": leadgen_id,
        "name": clean_name(name),
        "email": clean_email(fields.get("email")),
        "phone": clean_phone(fields.get("phone_number") or fields.get("phone")),
        "meta_data": {
            "platform": SOURCE,
            "formId": value.get("form_id"),
            "pageId": value.get("page_id"),
            "adId": value.get("ad_id"),
            "createdTime": value.get("created_time"),
            "fields": fields,
        },
    }


def ingest_facebook_payload(
    db: Session,
    payload: Dict[str, Any],
    client: Optional[httpx.Client] = None,
    tenant_label: str = "",
) -> IngestResult:
    """Ingest one verified lead-ads notification into a tenant database."""
    account: Optional[IntegrationAccount] = get_active_account(db, SOURCE)
    if account is None:
        logger.warning("Facebook webhook [%s]: no active facebook account", tenant_label)
        return IngestResult(account_active=False)

    result = IngestResult()

    for value in _iter_changes(payload):
        leadgen_id = value.get("leadgen_id") or value.get("lead_id")
        if not leadgen_id:
            logger.warning("Facebook change without leadgen_id skipped")
            result.skipped += 1
            continue
        leadgen_id = str(leadgen_id)

        field_data = value.get("field_data")
        if not field_data:
            if client is None:
                logger.warning("No HTTP client to fetch Facebook lead %s; skipped", leadgen_id)
                result.skipped += 1
                continue
            try:
                field_data = fetch_lead(client, leadgen_id, account.credential).get("field_data") or []
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("Graph API fetch failed for lead %s: %s", leadgen_id, exc)
                result.skipped += 1
                continue

        entry = normalize_lead(value, field_data, leadgen_id)
        try:
            outcome = insert_lead_if_new(db, source=SOURCE, account_id=account.id, **entry)
        except Exception:
            db.rollback()
            logger.exception("Failed to store Facebook lead %s", leadgen_id)
            result.skipped += 1
            continue

        if outcome == INSERTED:
            result.leads_processed += 1
        else:
            result.duplicates += 1

    logger.info(
        "Facebook webhook [%s]: %d processed, %d duplicates, %d skipped",
        tenant_label,
        result.leads_processed,
        result.duplicates,
        result.skipped,
    )
    return result
