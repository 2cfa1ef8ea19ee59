"""
Tests for services/auth_service.py and routers/auth.py

Covers:
- Auth resolver status codes (401 / 403 / 400 / 404 / 500)
- Login against the tenant picked by subdomain
- Heartbeat and logout presence updates
"""

from types import SimpleNamespace

from sqlalchemy import select

from leadrabbit.config import get_settings
from leadrabbit.db import open_tenant_session
from leadrabbit.models import User
from leadrabbit.services.auth_service import (
    AuthFailure,
    AuthenticatedUser,
    _serializer,
    resolve_authenticated_user,
)
from tests.conftest import AGENT_EMAIL, PASSWORD, TENANT_DB, session_token


def _load_user(email):
    db = open_tenant_session(TENANT_DB)
    try:
        return db.execute(select(User).where(User.email == email)).scalar_one()
    finally:
        db.close()


# ============================================================
# Resolver through a protected endpoint
# ============================================================

class TestAuthResolver:
    def test_missing_cookie_is_401(self, client):
        response = client.get("/api/leads/getLeads")
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_garbage_token_is_403(self, client):
        client.cookies.set("appToken", "definitely-not-a-token")
        response = client.get("/api/leads/getLeads")
        assert response.status_code == 403
        assert response.json()["error"] == "Invalid token"

    def test_expired_token_is_403(self, client, tenant, monkeypatch):
        client.cookies.set("appToken", session_token(tenant, AGENT_EMAIL))

        # Any age is older than a negative max age.
        monkeypatch.setenv("SESSION_MAX_AGE_SECONDS", "-1")
        get_settings.cache_clear()

        response = client.get("/api/leads/getLeads")
        assert response.status_code == 403
        assert response.json()["error"] == "Invalid token"

    def test_deleted_user_is_404(self, client, tenant):
        client.cookies.set("appToken", session_token(tenant, "ghost@acmerealty.com"))
        response = client.get("/api/leads/getLeads")
        assert response.status_code == 404
        assert response.json()["error"] == "User not found"

    def test_token_without_email_is_400(self, client):
        token = _serializer(get_settings()).dumps({"role": "agent", "dbName": TENANT_DB})
        client.cookies.set("appToken", token)
        response = client.get("/api/leads/getLeads")
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid token payload"

    def test_token_with_unsafe_db_name_is_400(self, client):
        token = _serializer(get_settings()).dumps(
            {"email": AGENT_EMAIL, "role": "agent", "dbName": "../etc/passwd"}
        )
        client.cookies.set("appToken", token)
        response = client.get("/api/leads/getLeads")
        assert response.status_code == 400

    def test_missing_secret_is_500(self, tenant):
        settings = get_settings().model_copy(update={"jwt_secret_key": None})
        request = SimpleNamespace(cookies={"appToken": session_token(tenant, AGENT_EMAIL)})

        result = resolve_authenticated_user(request, settings)

        assert isinstance(result, AuthFailure)
        assert result.status == 500
        assert result.error == "Server misconfiguration"

    def test_valid_token_resolves_user_and_tenant(self, tenant):
        request = SimpleNamespace(cookies={"appToken": session_token(tenant, AGENT_EMAIL)})

        result = resolve_authenticated_user(request)
        try:
            assert isinstance(result, AuthenticatedUser)
            assert result.email == AGENT_EMAIL
            assert result.user.email == AGENT_EMAIL
            assert result.tenant.database_name == TENANT_DB
            assert result.tenant.customer_id == tenant.customer_id
            assert not result.is_admin
        finally:
            result.db.close()

    def test_agent_is_forbidden_from_admin_listing(self, login_as):
        client = login_as(AGENT_EMAIL)
        response = client.get("/api/leads/getAllLeads")
        assert response.status_code == 403


# ============================================================
# Login / logout / heartbeat
# ============================================================

class TestLogin:
    def test_login_sets_cookie_and_marks_online(self, client):
        response = client.post(
            "/api/authenticate",
            json={"email": AGENT_EMAIL, "password": PASSWORD},
            headers={"host": "acme.leadrabbit.app"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["role"] == "agent"
        assert body["customerName"] == "Acme Realty"
        assert "appToken" in response.cookies
        assert _load_user(AGENT_EMAIL).is_online is True

    def test_wrong_password_is_401(self, client):
        response = client.post(
            "/api/authenticate",
            json={"email": AGENT_EMAIL, "password": "wrong-password"},
        )
        assert response.status_code == 401
        assert _load_user(AGENT_EMAIL).is_online is False

    def test_unknown_email_is_404(self, client):
        response = client.post(
            "/api/authenticate",
            json={"email": "nobody@acmerealty.com", "password": PASSWORD},
        )
        assert response.status_code == 404

    def test_heartbeat_records_presence(self, login_as):
        client = login_as(AGENT_EMAIL)
        response = client.post("/api/heartbeat")
        assert response.json() == {"ok": True}

        user = _load_user(AGENT_EMAIL)
        assert user.is_online is True
        assert user.last_heartbeat is not None

    def test_heartbeat_without_token_is_not_an_error(self, client):
        response = client.post("/api/heartbeat")
        assert response.status_code == 200
        assert response.json() == {"ok": False}

    def test_heartbeat_with_token_without_email_is_not_an_error(self, client):
        token = _serializer(get_settings()).dumps({"role": "agent", "dbName": TENANT_DB})
        client.cookies.set("appToken", token)

        response = client.post("/api/heartbeat")

        assert response.status_code == 200
        assert response.json() == {"ok": False}

    def test_logout_marks_offline_and_clears_cookie(self, login_as):
        client = login_as(AGENT_EMAIL)
        client.post("/api/heartbeat")

        response = client.post("/api/logout")
        assert response.status_code == 200
        assert _load_user(AGENT_EMAIL).is_online is False
        assert "appToken" in response.headers.get("set-cookie", "")
