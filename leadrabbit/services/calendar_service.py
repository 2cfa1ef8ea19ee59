"""
Google Calendar bridge: per-user OAuth tokens and event upsert/delete.

Each user connects their own Google account. Tokens live in the tenant's
google_calendar_connections table; the OAuth `state` round-trips as a signed
self-contained payload, so nothing is kept in server memory between the
connect and callback requests.

The consent flow and code exchange go through google-auth-oauthlib's
`Flow`, refreshes through google-auth `Credentials`, and the Calendar v3 and
userinfo calls through googleapiclient discovery services.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httplib2
import requests
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from itsdangerous import BadSignature, URLSafeTimedSerializer
from oauthlib.oauth2.rfc6749.errors import OAuth2Error
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leadrabbit.clock import utcnow
from leadrabbit.config import Settings, get_settings
from leadrabbit.errors import LeadRabbitError, UpstreamError, ValidationError
from leadrabbit.models import GoogleCalendarConnection, User
from leadrabbit.services.tenants_service import resolve_tenant_by_id

logger = logging.getLogger("leadrabbit.services.calendar")

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"

SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
]

STATE_SALT = "leadrabbit-google-oauth"
STATE_MAX_AGE_SECONDS = 15 * 60
TOKEN_REFRESH_BUFFER = datetime.timedelta(minutes=5)
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600

INSUFFICIENT_SCOPES = "INSUFFICIENT_SCOPES"


# ---------------------------------------------------------------------------
# OAuth state
# ---------------------------------------------------------------------------


def _state_serializer(settings: Optional[Settings] = None) -> URLSafeTimedSerializer:
    settings = settings or get_settings()
    if not settings.jwt_secret_key:
        raise LeadRabbitError("Server misconfiguration")
    return URLSafeTimedSerializer(secret_key=settings.jwt_secret_key, salt=STATE_SALT)


def encode_oauth_state(
    customer_id: Optional[int],
    email: str,
    role: str,
    return_path: str = "/",
) -> str:
    payload = {
        "customerId": customer_id,
        "email": email,
        "role": role,
        "returnPath": sanitize_return_path(return_path),
    }
    return _state_serializer().dumps(payload)


def decode_oauth_state(state: Optional[str], max_age: int = STATE_MAX_AGE_SECONDS) -> Optional[Dict[str, Any]]:
    """Signed state back to its payload; None when tampered, stale or garbage."""
    if not state:
        return None
    try:
        payload = _state_serializer().loads(state, max_age=max_age)
    except BadSignature:
        return None
    if not isinstance(payload, dict) or not payload.get("email"):
        return None
    return payload


def sanitize_return_path(path: Optional[str]) -> str:
    """
    Only same-site relative paths; anything else becomes "/".

    Browsers read a backslash after the leading slash as a second slash, and
    drop tabs and newlines, so those count as protocol-relative too.
    """
    if not path or not path.startswith("/"):
        return "/"
    if path[1:2] in ("/", "\\") or any(ch < " " for ch in path):
        return "/"
    parts = urlsplit(path)
    if parts.scheme or parts.netloc:
        return "/"
    return path


# ---------------------------------------------------------------------------
# Google client
# ---------------------------------------------------------------------------


class GoogleCalendarClient:
    """
    Google OAuth, userinfo and Calendar v3 for one request.

    `http` replaces the authorized httplib2 transport the discovery services
    use; tests hand in a recording fake.
    """

    def __init__(self, settings: Optional[Settings] = None, http: Any = None) -> None:
        self.settings = settings or get_settings()
        self._http = http

    # -- OAuth -------------------------------------------------------------

    def _require_credentials(self) -> None:
        if not (self.settings.google_client_id and self.settings.google_client_secret):
            logger.error("GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET not configured")
            raise LeadRabbitError("Google Calendar integration is not configured")

    def _flow(self) -> Flow:
        self._require_credentials()
        redirect_uri = self.settings.google_redirect_uri or ""
        client_config = {
            "web": {
                "client_id": self.settings.google_client_id,
                "client_secret": self.settings.google_client_secret,
                "auth_uri": AUTH_URI,
                "token_uri": TOKEN_URI,
                "redirect_uris": [redirect_uri],
            }
        }
        # No PKCE verifier: the signed state is all that reaches the callback.
        return Flow.from_client_config(
            client_config,
            scopes=SCOPES,
            redirect_uri=redirect_uri,
            autogenerate_code_verifier=False,
        )

    def build_auth_url(self, state: str) -> str:
        # prompt=consent so Google always hands out a refresh token.
        url, _ = self._flow().authorization_url(
            access_type="offline",
            prompt="consent",
            state=state,
        )
        return url

    def exchange_code(self, code: str) -> Dict[str, Any]:
        flow = self._flow()
        try:
            token = flow.fetch_token(code=code)
        except (OAuth2Error, requests.RequestException, Warning) as exc:
            # oauthlib raises Warning when the granted scopes differ from the requested ones.
            logger.error("Google code exchange failed: %s", exc)
            raise UpstreamError("Google token request failed") from exc

        if not token.get("access_token"):
            raise UpstreamError("Google token response missing access_token")
        return dict(token)

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        self._require_credentials()
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=TOKEN_URI,
            client_id=self.settings.google_client_id,
            client_secret=self.settings.google_client_secret,
            scopes=SCOPES,
        )
        try:
            credentials.refresh(Request())
        except GoogleAuthError as exc:
            logger.error("Google token refresh failed: %s", exc)
            raise UpstreamError("Google token refresh failed") from exc

        if not credentials.token:
            raise UpstreamError("Google token response missing access_token")
        return {"access_token": credentials.token, "expiry": credentials.expiry}

    def _service(self, name: str, version: str, access_token: str) -> Any:
        http = self._http
        if http is None:
            http = AuthorizedHttp(
                Credentials(token=access_token),
                http=httplib2.Http(timeout=self.settings.google_http_timeout_seconds),
            )
        return build(name, version, http=http, cache_discovery=False)

    def userinfo(self, access_token: str) -> Dict[str, Any]:
        try:
            return self._service("oauth2", "v2", access_token).userinfo().get().execute()
        except (HttpError, httplib2.HttpLib2Error, OSError) as exc:
            logger.error("Google userinfo request failed: %s", exc)
            raise UpstreamError("Google userinfo request failed") from exc

    # -- Calendar ----------------------------------------------------------

    def upsert_event(
        self,
        access_token: str,
        event: Dict[str, Any],
        event_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Insert (or update when `event_id` is given) on the primary calendar."""
        events = self._service("calendar", "v3", access_token).events()
        if event_id:
            request = events.update(calendarId="primary", eventId=event_id, body=event, sendUpdates="all")
        else:
            request = events.insert(calendarId="primary", body=event, sendUpdates="all")

        try:
            return request.execute()
        except HttpError as exc:
            raise _calendar_error(exc) from exc
        except (httplib2.HttpLib2Error, OSError) as exc:
            logger.error("Google Calendar unreachable: %s", exc)
            raise UpstreamError("Failed to reach Google Calendar") from exc

    def delete_event(self, access_token: str, event_id: str) -> None:
        events = self._service("calendar", "v3", access_token).events()
        try:
            events.delete(calendarId="primary", eventId=event_id, sendUpdates="all").execute()
        except HttpError as exc:
            # Already gone is as good as deleted.
            if exc.resp.status in (404, 410):
                return
            raise _calendar_error(exc) from exc
        except (httplib2.HttpLib2Error, OSError) as exc:
            raise UpstreamError("Failed to reach Google Calendar") from exc


def _calendar_error(exc: HttpError) -> UpstreamError:
    content = exc.content or b""
    body = content.decode("utf-8", "replace") if isinstance(content, bytes) else str(content)

    if exc.resp.status == 403 or "insufficient authentication scopes" in body.lower():
        logger.warning("Google Calendar rejected call: insufficient scopes")
        return UpstreamError(
            "Google Calendar permissions are insufficient. Please reconnect Google Calendar.",
            status_code=403,
            code=INSUFFICIENT_SCOPES,
        )

    logger.error("Google Calendar call failed: %s", exc.resp.status)
    return UpstreamError("Google Calendar request failed")


def get_calendar_client() -> GoogleCalendarClient:
    """FastAPI dependency; tests override it with a client on a fake transport."""
    return GoogleCalendarClient()


# ---------------------------------------------------------------------------
# Token storage
# ---------------------------------------------------------------------------


def save_user_tokens(
    session: Session,
    user: User,
    tokens: Dict[str, Any],
    profile: Dict[str, Any],
    now: Optional[datetime.datetime] = None,
) -> GoogleCalendarConnection:
    """
    Store tokens on the user. A reconnect without a new refresh token keeps
    the previous one.
    """
    now = now or utcnow()
    existing = user.google_calendar

    refresh_token = tokens.get("refresh_token") or (existing.refresh_token if existing else None)
    if not refresh_token:
        raise ValidationError("No refresh token available. Please revoke access and reconnect.")

    expires_in = int(tokens.get("expires_in") or DEFAULT_TOKEN_LIFETIME_SECONDS)
    expires_at = now + datetime.timedelta(seconds=expires_in)

    if existing is None:
        existing = GoogleCalendarConnection(user_id=user.id, connected_at=now)
        user.google_calendar = existing

    existing.access_token = tokens["access_token"]
    existing.refresh_token = refresh_token
    existing.expires_at = expires_at
    existing.google_email = profile.get("email") or user.email
    existing.google_name = profile.get("name")
    user.updated_at = now
    session.commit()

    logger.info("Google Calendar connected for %s (%s)", user.email, existing.google_email)
    return existing


def remove_user_tokens(session: Session, user: User) -> None:
    if user.google_calendar is not None:
        user.google_calendar = None
        user.updated_at = utcnow()
        session.commit()
        logger.info("Google Calendar disconnected for %s", user.email)


def get_valid_access_token(
    session: Session,
    user: User,
    client: GoogleCalendarClient,
    now: Optional[datetime.datetime] = None,
) -> Optional[str]:
    """
    Stored access token if it is good for at least five more minutes,
    otherwise a refreshed one. A failed refresh clears the connection.
    """
    connection = user.google_calendar
    if connection is None or not connection.refresh_token:
        return None

    now = now or utcnow()
    if connection.access_token and connection.expires_at - TOKEN_REFRESH_BUFFER > now:
        return connection.access_token

    try:
        refreshed = client.refresh(connection.refresh_token)
    except LeadRabbitError:
        logger.warning("Google token refresh failed for %s; clearing connection", user.email)
        remove_user_tokens(session, user)
        return None

    connection.access_token = refreshed["access_token"]
    connection.expires_at = refreshed.get("expiry") or now + datetime.timedelta(
        seconds=DEFAULT_TOKEN_LIFETIME_SECONDS
    )
    user.updated_at = now
    session.commit()
    return connection.access_token


def connection_status(user: User) -> Dict[str, Any]:
    connection = user.google_calendar
    if connection is None:
        return {"connected": False}
    return {
        "connected": True,
        "googleEmail": connection.google_email,
        "googleName": connection.google_name,
        "connectedAt": connection.connected_at.isoformat() if connection.connected_at else None,
    }


def build_event(
    *,
    summary: str,
    description: str,
    location: str,
    start_date_time: str,
    end_date_time: str,
    time_zone: str,
    attendees: List[Dict[str, Optional[str]]],
) -> Dict[str, Any]:
    event: Dict[str, Any] = {
        "summary": summary,
        "start": {"dateTime": start_date_time, "timeZone": time_zone},
        "end": {"dateTime": end_date_time, "timeZone": time_zone},
        "attendees": [
            {k: v for k, v in attendee.items() if v} for attendee in attendees
        ],
        "reminders": {"useDefault": True},
    }
    if description:
        event["description"] = description
    if location:
        event["location"] = location
    return event


# ---------------------------------------------------------------------------
# OAuth callback
# ---------------------------------------------------------------------------


def _redirect(path: str, **params: str) -> str:
    """Append `params` to the path, keeping any query it already has."""
    parts = urlsplit(path)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(("", "", parts.path, urlencode(query), parts.fragment))


def handle_oauth_callback(
    registry: Session,
    client: GoogleCalendarClient,
    *,
    code: Optional[str],
    error: Optional[str],
    state: Optional[str],
) -> str:
    """
    Finish the consent flow and return the path to redirect the browser to.

    Every failure lands on `{returnPath}?googleCalendarError=<reason>`.
    """
    payload = decode_oauth_state(state)
    requested = payload.get("returnPath") if payload else None
    return_path = sanitize_return_path(requested) if requested else "/admin"

    if error:
        logger.warning("Google OAuth returned error: %s", error)
        return _redirect(return_path, googleCalendarError=error)

    if not code or payload is None:
        return _redirect(return_path, googleCalendarError="missing_code_or_state")

    try:
        tokens = client.exchange_code(code)
    except LeadRabbitError:
        return _redirect(return_path, googleCalendarError="no_access_token")

    try:
        profile = client.userinfo(tokens["access_token"])
    except LeadRabbitError:
        return _redirect(return_path, googleCalendarError="no_google_email")
    if not profile.get("email"):
        return _redirect(return_path, googleCalendarError="no_google_email")

    try:
        tenant = resolve_tenant_by_id(registry, payload.get("customerId"))
        session = tenant.open_session()
    except (LeadRabbitError, SQLAlchemyError):
        logger.exception("Tenant lookup failed during Google OAuth callback")
        return _redirect(return_path, googleCalendarError="database_unavailable")

    try:
        user = session.execute(
            select(User).where(User.email == payload["email"])
        ).scalar_one_or_none()
        if user is None:
            return _redirect(return_path, googleCalendarError="user_not_found")
        save_user_tokens(session, user, tokens, profile)
    except (LeadRabbitError, SQLAlchemyError) as exc:
        session.rollback()
        logger.warning("Google OAuth callback could not store tokens: %s", exc)
        return _redirect(return_path, googleCalendarError="callback_failed")
    finally:
        session.close()

    return _redirect(return_path, googleCalendarConnected="true")
