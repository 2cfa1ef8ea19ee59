"""
99acres adapter: push webhook (XML body) and pull sync (XML query over HTTP).

Both paths parse the same response document:

    <Xml ActionStatus="true">
      <Resp>
        <QryDtl ResType="..." QueryId="..." TblId="...">
          <CmpctLabl/> <QryInfo/> <RcvdOn/> <ProdId Status="" Type="">123</ProdId> ...
        </QryDtl>
        <CntctDtl><Name/><Email/><Phone/></CntctDtl>
      </Resp>
      ...
    </Xml>
"""

import datetime
import logging
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from leadrabbit.clock import utcnow
from leadrabbit.errors import UpstreamError
from leadrabbit.ingestion.common import (
    INSERTED,
    InvalidEnvelope,
    clean_email,
    clean_name,
    clean_phone,
    get_active_account,
    insert_lead_if_new,
)
from leadrabbit.ingestion.config import IngestionSettings, get_ingestion_settings
from leadrabbit.ingestion.schemas import IngestResult
from leadrabbit.models import IntegrationAccount
from leadrabbit.services.tenants_service import TenantHandle

logger = logging.getLogger("leadrabbit.ingestion.acres99")

SOURCE = "99acres"
_QUERY_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_envelope(body: Union[str, bytes]) -> ET.Element:
    """
    Parse a 99acres response document and check ActionStatus.

    Raises InvalidEnvelope for unparsable XML, a missing <Xml> root, or
    ActionStatus other than "true".
    """
    try:
        root = ET.fromstring(body)
    except ET.ParseError as exc:
        raise InvalidEnvelope("Invalid XML structure") from exc

    if root.tag != "Xml":
        raise InvalidEnvelope("Invalid XML structure")

    if root.get("ActionStatus") != "true":
        message = root.findtext("ErrorDetail/Message") or "Unknown error"
        raise InvalidEnvelope(f"ActionStatus is false: {message}")

    return root


def _text(node: Optional[ET.Element], path: str) -> Optional[str]:
    if node is None:
        return None
    value = node.findtext(path)
    return value.strip() if value is not None else None


def _to_int(value: Optional[str]) -> int:
    try:
        return int(value) if value else 0
    except ValueError:
        return 0


def normalize_response(resp: ET.Element) -> Optional[Dict[str, Any]]:
    """
    Map one <Resp> element onto canonical lead fields.

    Returns None when the entry lacks query/contact details or an id.
    """
    qry = resp.find("QryDtl")
    contact = resp.find("CntctDtl")
    if qry is None or contact is None:
        return None

    query_id = qry.get("QueryId") or qry.get("TblId")
    if not query_id:
        return None

    product = qry.find("ProdId")
    if product is None:
        product = ET.Element("ProdId")

    meta = {
        "platform": SOURCE,
        "responseType": qry.get("ResType"),
        "propertyDescription": _text(contact, "CmpctLabl") or _text(qry, "CmpctLabl"),
        "queryInfo": _text(qry, "QryInfo"),
        "receivedOn": _text(qry, "RcvdOn"),
        "projectId": _text(qry, "ProjId"),
        "projectName": _text(qry, "ProjName"),
        "cityName": _text(qry, "CityName"),
        "propertyType": _text(qry, "ResCom"),
        "price": _to_int(_text(qry, "Price")),
        "phoneVerified": _text(qry, "PhoneVerificationStatus") == "VERIFIED",
        "emailVerified": _text(qry, "EmailVerificationStatus") == "VERIFIED",
        "identity": _text(qry, "IDENTITY"),
        "propertyCode": _text(qry, "PROPERTY_CODE"),
        "productId": (product.text or "").strip() or None,
        "productStatus": product.get("Status"),
        "productType": product.get("Type"),
    }

    return {
        "external_query_id": query_id,
        "name": clean_name(_text(contact, "Name")),
        "email": clean_email(_text(contact, "Email")),
        "phone": clean_phone(_text(contact, "Phone")),
        "meta_data": meta,
    }


def _ingest_responses(
    db: Session,
    responses: List[ET.Element],
    account: IntegrationAccount,
    *,
    strict: bool,
) -> IngestResult:
    """
    Insert every response. With strict=False (webhook) a failing entry is
    logged and skipped; with strict=True (sync) it aborts the window.
    """
    result = IngestResult()

    for resp in responses:
        entry = normalize_response(resp)
        if entry is None:
            logger.warning("99acres entry without QryDtl/CntctDtl/QueryId skipped")
            result.skipped += 1
            continue

        try:
            outcome = insert_lead_if_new(
                db,
                source=SOURCE,
                account_id=account.id,
                **entry,
            )
        except Exception:
            if strict:
                raise
            db.rollback()
            logger.exception("Failed to store 99acres lead %s", entry["external_query_id"])
            result.skipped += 1
            continue

        if outcome == INSERTED:
            result.leads_processed += 1
        else:
            result.duplicates += 1

    return result


# ---------------------------------------------------------------------------
# Push webhook
# ---------------------------------------------------------------------------


def ingest_acres99_payload(db: Session, body: Union[str, bytes], tenant_label: str = "") -> IngestResult:
    """Ingest one pushed 99acres document into a tenant database."""
    root = parse_envelope(body)

    account = get_active_account(db, SOURCE)
    if account is None:
        logger.warning("99acres webhook [%s]: no active 99acres account", tenant_label)
        return IngestResult(account_active=False)

    responses = root.findall("Resp")
    logger.info("99acres webhook [%s]: %d lead(s) received", tenant_label, len(responses))

    result = _ingest_responses(db, responses, account, strict=False)

    logger.info(
        "99acres webhook [%s]: %d processed, %d duplicates, %d skipped",
        tenant_label,
        result.leads_processed,
        result.duplicates,
        result.skipped,
    )
    return result


# ---------------------------------------------------------------------------
# Pull sync
# ---------------------------------------------------------------------------


def compute_sync_window(
    last_sync: Optional[datetime.datetime],
    now: datetime.datetime,
    settings: Optional[IngestionSettings] = None,
) -> Tuple[datetime.datetime, datetime.datetime]:
    """
    start = max(last_sync - overlap, now - max_lookback)
    end   = min(start + max_window, now)
    """
    settings = settings or get_ingestion_settings()
    floor = now - datetime.timedelta(hours=settings.max_lookback_hours)

    if last_sync is None:
        start = floor
    else:
        start = max(last_sync - datetime.timedelta(minutes=settings.overlap_minutes), floor)

    end = min(start + datetime.timedelta(hours=settings.max_window_hours), now)
    return start, end


def build_query_xml(username: str, password: str, start: datetime.datetime, end: datetime.datetime) -> str:
    query = ET.Element("query")
    ET.SubElement(query, "user_name").text = username
    ET.SubElement(query, "pswd").text = password
    ET.SubElement(query, "start_date").text = start.strftime(_QUERY_TIME_FORMAT)
    ET.SubElement(query, "end_date").text = end.strftime(_QUERY_TIME_FORMAT)
    return "<?xml version='1.0'?>" + ET.tostring(query, encoding="unicode")


def build_http_client(transport: Optional[httpx.BaseTransport] = None) -> httpx.Client:
    settings = get_ingestion_settings()
    return httpx.Client(timeout=settings.http_timeout_seconds, transport=transport)


def fetch_window(
    client: httpx.Client,
    account: IntegrationAccount,
    start: datetime.datetime,
    end: datetime.datetime,
) -> str:
    settings = get_ingestion_settings()
    request_xml = build_query_xml(account.username, account.credential, start, end)

    try:
        response = client.post(settings.acres99_api_url, data={"xml": request_xml})
        response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.error("99acres API call failed for account %s: %s", account.id, exc)
        raise UpstreamError("99acres API request failed") from exc

    return response.text


def sync_account(
    db: Session,
    account: IntegrationAccount,
    client: httpx.Client,
    now: Optional[datetime.datetime] = None,
) -> IngestResult:
    """
    Pull one window for an account. last_sync advances only after every
    entry in the window was handled; any failure leaves it untouched.
    """
    now = now or utcnow()
    start, end = compute_sync_window(account.last_sync, now)

    logger.info(
        "99acres sync account=%s window=%s..%s",
        account.id,
        start.strftime(_QUERY_TIME_FORMAT),
        end.strftime(_QUERY_TIME_FORMAT),
    )

    body = fetch_window(client, account, start, end)
    root = parse_envelope(body)
    result = _ingest_responses(db, root.findall("Resp"), account, strict=True)

    account.last_sync = end
    account.updated_at = utcnow()
    db.commit()

    logger.info(
        "99acres sync account=%s: %d new, %d duplicates, %d skipped",
        account.id,
        result.leads_processed,
        result.duplicates,
        result.skipped,
    )
    return result


def sync_tenant(
    tenant: TenantHandle,
    client: httpx.Client,
    now: Optional[datetime.datetime] = None,
) -> Tuple[IngestResult, int, List[int]]:
    """
    Sync every active 99acres account of a tenant.

    Accounts are isolated: one failing account is logged and the rest still
    run. Returns (aggregate result, accounts synced, failed account ids).
    """
    total = IngestResult()
    synced = 0
    failed: List[int] = []

    db = tenant.open_session()
    try:
        accounts = (
            db.execute(
                select(IntegrationAccount)
                .where(
                    IntegrationAccount.source == SOURCE,
                    IntegrationAccount.is_active.is_(True),
                )
                .order_by(IntegrationAccount.id)
            )
            .scalars()
            .all()
        )

        for account in accounts:
            try:
                total = total.merge(sync_account(db, account, client, now=now))
                synced += 1
            except Exception:
                db.rollback()
                failed.append(account.id)
                logger.exception(
                    "99acres sync failed for account %s on tenant %s; last_sync unchanged",
                    account.id,
                    tenant.label,
                )
    finally:
        db.close()

    return total, synced, failed
