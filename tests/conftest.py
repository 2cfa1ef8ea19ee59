"""
Shared pytest fixtures for the LeadRabbit test suite.

Every test gets its own temporary SQLite registry plus one SQLite file per
tenant (through TENANT_DATABASE_URL_TEMPLATE), fresh settings caches, and
helpers to sign session cookies. Outbound HTTP is faked so tests never
leave the process: httpx.MockTransport for Facebook and 99acres, a
recording httplib2 stand-in plus token-endpoint patches for Google.
"""

import datetime
import json
from types import SimpleNamespace
from typing import Callable, List, Optional, Tuple
from urllib.parse import parse_qsl, urlsplit

import httplib2
import pytest
from fastapi.testclient import TestClient
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from leadrabbit.clock import utcnow
from leadrabbit.config import get_settings
from leadrabbit.db import open_registry_session, open_tenant_session, reset_engines
from leadrabbit.ingestion.config import get_ingestion_settings
from leadrabbit.models import (
    Customer,
    CustomerWebhook,
    GoogleCalendarConnection,
    IntegrationAccount,
    Lead,
    LeadStatus,
    User,
)
from leadrabbit.services.auth_service import hash_password, issue_session_token
from leadrabbit.services.calendar_service import GoogleCalendarClient, get_calendar_client
from leadrabbit.services.tenants_service import TenantHandle

TENANT_DB = "acme"
ADMIN_EMAIL = "admin@acmerealty.com"
AGENT_EMAIL = "agent@acmerealty.com"
OTHER_AGENT_EMAIL = "other@acmerealty.com"
PASSWORD = "secret123"
WEBHOOK_99ACRES = "wh-99acres-acme"
WEBHOOK_FACEBOOK = "wh-facebook-acme"
FACEBOOK_APP_SECRET = "fb-app-secret"
FACEBOOK_VERIFY_TOKEN = "fb-verify-token"


def _clear_caches() -> None:
    get_settings.cache_clear()
    get_ingestion_settings.cache_clear()
    reset_engines()


# ============================================================
# Environment
# ============================================================

@pytest.fixture(autouse=True)
def mock_env(tmp_path, monkeypatch):
    """Point every database at tmp_path and set safe secrets."""
    defaults = {
        "ENVIRONMENT": "test",
        "JWT_SECRET_KEY": "test-secret-key-for-unit-tests-only",
        "REGISTRY_DATABASE_URL": f"sqlite:///{tmp_path}/registry.db",
        "TENANT_DATABASE_URL_TEMPLATE": f"sqlite:///{tmp_path}/{{database_name}}.db",
        "DEFAULT_DATABASE_NAME": TENANT_DB,
        "GOOGLE_CLIENT_ID": "test-client-id",
        "GOOGLE_CLIENT_SECRET": "test-client-secret",
        "GOOGLE_REDIRECT_URI": "http://localhost:5000/api/google-calendar/callback",
        "INGESTION_FACEBOOK_APP_SECRET": FACEBOOK_APP_SECRET,
        "INGESTION_FACEBOOK_VERIFY_TOKEN": FACEBOOK_VERIFY_TOKEN,
        "INGESTION_ACRES99_API_URL": "https://99acres.test/api/",
    }
    for key, value in defaults.items():
        monkeypatch.setenv(key, value)

    _clear_caches()
    yield tmp_path
    _clear_caches()


# ============================================================
# Seed data
# ============================================================

@pytest.fixture
def tenant(mock_env) -> SimpleNamespace:
    """One customer "Acme Realty" with an admin, two agents and both integrations."""
    registry = open_registry_session()
    try:
        customer = Customer(
            customer_name="Acme Realty",
            database_name=TENANT_DB,
            subdomain="acme",
            status="active",
        )
        customer.webhook_links = [
            CustomerWebhook(source="99acres", webhook_id=WEBHOOK_99ACRES),
            CustomerWebhook(source="facebook", webhook_id=WEBHOOK_FACEBOOK),
        ]
        registry.add(customer)
        registry.commit()
        customer_id = customer.id
    finally:
        registry.close()

    db = open_tenant_session(TENANT_DB)
    try:
        users = {}
        for email, role in (
            (ADMIN_EMAIL, "admin"),
            (AGENT_EMAIL, "agent"),
            (OTHER_AGENT_EMAIL, "agent"),
        ):
            user = User(
                name=email.split("@")[0].title(),
                email=email,
                role=role,
                password_hash=hash_password(PASSWORD),
                is_verified=True,
            )
            db.add(user)
            users[email] = user

        acres = IntegrationAccount(source="99acres", username="acme99", credential="99-pass")
        fb = IntegrationAccount(source="facebook", username="acme-page", credential="page-token")
        db.add_all([acres, fb])
        db.commit()

        handle = SimpleNamespace(
            customer_id=customer_id,
            handle=TenantHandle(
                database_name=TENANT_DB,
                customer_id=customer_id,
                customer_name="Acme Realty",
            ),
            user_ids={email: user.id for email, user in users.items()},
            acres_account_id=acres.id,
            facebook_account_id=fb.id,
        )
    finally:
        db.close()
    return handle


@pytest.fixture
def tenant_db(tenant):
    """Session on the seeded tenant database, closed after the test."""
    db = open_tenant_session(TENANT_DB)
    yield db
    db.close()


@pytest.fixture
def make_lead(tenant) -> Callable[..., int]:
    counter = {"n": 0}

    def _make(assigned_to=None, status=LeadStatus.NEW, name=None, email=None, source="manual") -> int:
        counter["n"] += 1
        db = open_tenant_session(TENANT_DB)
        try:
            lead = Lead(
                source=source,
                external_query_id=f"seed-{counter['n']}",
                status=status,
                name=name or f"Lead {counter['n']}",
                email=email or f"lead{counter['n']}@example.com",
                phone="9999999999",
                assigned_to=assigned_to,
                meta_data={},
            )
            db.add(lead)
            db.commit()
            return lead.id
        finally:
            db.close()

    return _make


@pytest.fixture
def connect_calendar(tenant) -> Callable[[str], None]:
    """Give a user a valid (non-expiring) Google Calendar connection."""

    def _connect(email: str) -> None:
        db = open_tenant_session(TENANT_DB)
        try:
            db.add(
                GoogleCalendarConnection(
                    user_id=tenant.user_ids[email],
                    google_email=email,
                    access_token="access-token",
                    refresh_token="refresh-token",
                    expires_at=utcnow() + datetime.timedelta(hours=1),
                )
            )
            db.commit()
        finally:
            db.close()

    return _connect


# ============================================================
# App & client
# ============================================================

@pytest.fixture
def app(mock_env):
    from leadrabbit.main import create_app

    application = create_app()
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app, tenant):
    with TestClient(app) as test_client:
        yield test_client


def session_token(tenant: SimpleNamespace, email: str) -> str:
    role = "admin" if email == ADMIN_EMAIL else "agent"
    return issue_session_token(SimpleNamespace(email=email, role=role), tenant.handle)


@pytest.fixture
def login_as(client, tenant) -> Callable[[str], TestClient]:
    """Set the session cookie for `email` on the shared client."""

    def _login(email: str) -> TestClient:
        client.cookies.set(get_settings().session_cookie_name, session_token(tenant, email))
        return client

    return _login


# ============================================================
# Fake Google
# ============================================================

class FakeGoogleHttp:
    """
    Recording stand-in for the httplib2 transport googleapiclient drives.

    `responder(call) -> (status, payload)` decides what Google answers;
    every request lands in `requests` with its method, path, query params
    and body.
    """

    def __init__(self, responder: Callable[[SimpleNamespace], Tuple[int, Optional[dict]]]):
        self.requests: List[SimpleNamespace] = []
        self.responder = responder

    def request(self, uri, method="GET", body=None, headers=None, **kwargs):
        parts = urlsplit(uri)
        call = SimpleNamespace(
            method=method,
            uri=uri,
            path=parts.path,
            params=dict(parse_qsl(parts.query)),
            body=body,
        )
        self.requests.append(call)

        status, payload = self.responder(call)
        content = json.dumps(payload).encode() if payload is not None else b""
        return httplib2.Response({"status": str(status), "content-type": "application/json"}), content


def google_default_response(call: SimpleNamespace) -> Tuple[int, Optional[dict]]:
    if call.path.endswith("/userinfo"):
        return 200, {"email": "agent.google@gmail.com", "name": "Agent Google"}
    if call.method in ("POST", "PUT"):
        return 200, {"id": "evt-123", "hangoutLink": "https://meet.test/abc"}
    if call.method == "DELETE":
        return 204, None
    return 404, {"error": {"code": 404, "message": "Not Found"}}


@pytest.fixture
def calendar_calls(app) -> FakeGoogleHttp:
    """Route the calendar dependency's Google API calls through FakeGoogleHttp."""
    http = FakeGoogleHttp(google_default_response)
    app.dependency_overrides[get_calendar_client] = lambda: GoogleCalendarClient(http=http)
    return http


@pytest.fixture
def google_tokens(monkeypatch) -> SimpleNamespace:
    """
    Fake Google's token endpoint where the libraries call it: the code
    exchange (`Flow.fetch_token`) and refreshes (`Credentials.refresh`).
    Set `exchange` or `refresh` to an exception to make that call fail.
    """
    state = SimpleNamespace(
        exchange={"access_token": "new-access", "refresh_token": "new-refresh", "expires_in": 3600},
        refresh={"access_token": "fresh", "expires_in": 3600},
        codes=[],
    )

    def fetch_token(flow, **kwargs):
        state.codes.append(kwargs.get("code"))
        if isinstance(state.exchange, Exception):
            raise state.exchange
        return dict(state.exchange)

    def refresh(credentials, request):
        if isinstance(state.refresh, Exception):
            raise state.refresh
        credentials.token = state.refresh["access_token"]
        credentials.expiry = utcnow() + datetime.timedelta(seconds=state.refresh["expires_in"])

    monkeypatch.setattr(Flow, "fetch_token", fetch_token)
    monkeypatch.setattr(Credentials, "refresh", refresh)
    return state


# ============================================================
# 99acres documents
# ============================================================

def acres99_document(query_ids: List[str], action_status: str = "true") -> str:
    entries = "".join(
        f"""
        <Resp>
          <QryDtl ResType="EOI" QueryId="{qid}">
            <CmpctLabl>2 BHK in Sector 45</CmpctLabl>
            <QryInfo>Interested in a site visit</QryInfo>
            <RcvdOn>2024-05-01 10:00:00</RcvdOn>
            <ProdId Status="Active" Type="NP">P{qid}</ProdId>
          </QryDtl>
          <CntctDtl>
            <Name>Buyer {qid}</Name>
            <Email>Buyer{qid}@Example.com</Email>
            <Phone> 98765{qid} </Phone>
          </CntctDtl>
        </Resp>"""
        for qid in query_ids
    )
    return f'<?xml version="1.0"?><Xml ActionStatus="{action_status}">{entries}</Xml>'


def count_leads(source: str) -> int:
    db = open_tenant_session(TENANT_DB)
    try:
        return db.query(Lead).filter(Lead.source == source).count()
    finally:
        db.close()
