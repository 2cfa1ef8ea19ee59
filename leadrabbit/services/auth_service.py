from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, Optional, Tuple, Union

from fastapi import Request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from leadrabbit.clock import utcnow
from leadrabbit.config import Settings, get_settings
from leadrabbit.errors import (
    DatabaseUnavailable,
    Forbidden,
    LeadRabbitError,
    NotFound,
    Unauthorized,
    ValidationError,
)
from leadrabbit.models import User
from leadrabbit.services.tenants_service import (
    TenantHandle,
    resolve_tenant_by_subdomain,
    resolve_tenant_by_token,
)

logger = logging.getLogger("leadrabbit.services.auth")

SESSION_SALT = "leadrabbit-session"


# ---------------------------------------------------------------------------
# Tokens & passwords
# ---------------------------------------------------------------------------


def _serializer(settings: Settings) -> URLSafeTimedSerializer:
    if not settings.jwt_secret_key:
        raise RuntimeError("JWT_SECRET_KEY is not configured")
    return URLSafeTimedSerializer(secret_key=settings.jwt_secret_key, salt=SESSION_SALT)


def issue_session_token(user: User, tenant: TenantHandle, settings: Optional[Settings] = None) -> str:
    """Signed, timestamped session token carrying identity and tenant."""
    settings = settings or get_settings()
    claims: Dict[str, Any] = {
        "email": user.email,
        "role": user.role,
        "dbName": tenant.database_name,
    }
    if tenant.customer_id is not None:
        claims["customerId"] = tenant.customer_id
    if tenant.customer_name:
        claims["customerName"] = tenant.customer_name
    return _serializer(settings).dumps(claims)


def decode_session_token(token: str, settings: Optional[Settings] = None) -> Dict[str, Any]:
    """
    Verify signature and age. Raises SignatureExpired / BadSignature.
    """
    settings = settings or get_settings()
    claims = _serializer(settings).loads(token, max_age=settings.session_max_age_seconds)
    if not isinstance(claims, dict):
        raise BadSignature("Session payload is not an object")
    return claims


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    if not password_hash or not password:
        return False
    return check_password_hash(password_hash, password)


# ---------------------------------------------------------------------------
# Auth resolver
# ---------------------------------------------------------------------------


@dataclass
class AuthenticatedUser:
    """Successful resolution; `db` is an open tenant session owned by the caller."""

    db: Session
    email: str
    role: str
    user: User
    tenant: TenantHandle
    status: int = field(default=200)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass
class AuthFailure:
    status: int
    error: str


AuthResult = Union[AuthenticatedUser, AuthFailure]


def resolve_authenticated_user(
    request: Request,
    settings: Optional[Settings] = None,
) -> AuthResult:
    """
    Single authorization choke point for protected endpoints.

    500 misconfigured, 401 no token, 403 bad/expired token, 400 token without
    identity, 503 tenant store unreachable, 404 user gone.
    """
    settings = settings or get_settings()

    if not settings.jwt_secret_key:
        logger.error("JWT_SECRET_KEY is not configured; refusing to authenticate")
        return AuthFailure(status=500, error="Server misconfiguration")

    if settings.environment == "development" and not settings.tenant_database_url_template:
        return AuthFailure(status=500, error="Database not configured")

    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        return AuthFailure(status=401, error="Unauthorized")

    try:
        claims = decode_session_token(token, settings)
    except SignatureExpired:
        logger.info("Rejected expired session token")
        return AuthFailure(status=403, error="Invalid token")
    except BadSignature:
        logger.warning("Rejected session token with bad signature")
        return AuthFailure(status=403, error="Invalid token")

    email = claims.get("email")
    role = claims.get("role")
    if not email or not role:
        return AuthFailure(status=400, error="Invalid token payload")

    try:
        tenant = resolve_tenant_by_token(claims)
        db = tenant.open_session()
    except ValidationError:
        return AuthFailure(status=400, error="Invalid token payload")
    except DatabaseUnavailable:
        logger.error("Tenant database unavailable during auth (email=%s)", email)
        return AuthFailure(status=503, error="Database unavailable")
    except (RuntimeError, SQLAlchemyError):
        logger.exception("Failed to open tenant database during auth")
        return AuthFailure(status=500, error="Database connection failed")

    try:
        user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    except SQLAlchemyError:
        logger.exception("Database error while loading user %s", email)
        db.close()
        return AuthFailure(status=500, error="Database connection failed")

    if user is None:
        db.close()
        return AuthFailure(status=404, error="User not found")

    return AuthenticatedUser(db=db, email=email, role=role, user=user, tenant=tenant)


def authenticated_user(request: Request) -> Generator[AuthenticatedUser, None, None]:
    """
    FastAPI dependency around resolve_authenticated_user.

    Commits on success, rolls back on error, always closes the tenant session.
    """
    resolved = resolve_authenticated_user(request)
    if isinstance(resolved, AuthFailure):
        raise LeadRabbitError(resolved.error, status_code=resolved.status)

    db = resolved.db
    try:
        yield resolved
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def require_admin(auth: AuthenticatedUser) -> AuthenticatedUser:
    if not auth.is_admin:
        logger.warning("Non-admin %s attempted an admin operation", auth.email)
        raise Forbidden("Forbidden")
    return auth


# ---------------------------------------------------------------------------
# Login / logout / heartbeat
# ---------------------------------------------------------------------------


def login(registry: Session, email: str, password: str, host: Optional[str]) -> Tuple[str, User, TenantHandle]:
    """Verify credentials in the host's tenant and issue a session token."""
    email = (email or "").strip().lower()
    if not email or not password:
        raise ValidationError("Email and password are required.")

    tenant = resolve_tenant_by_subdomain(registry, host)
    db = tenant.open_session()
    try:
        user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if user is None:
            raise NotFound("User not found")

        if not verify_password(user.password_hash, password):
            logger.info("Invalid credentials for %s on tenant %s", email, tenant.label)
            raise Unauthorized("Invalid credentials")

        user.is_online = True
        user.updated_at = utcnow()
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    token = issue_session_token(user, tenant)
    logger.info("User %s logged in (tenant=%s, role=%s)", email, tenant.label, user.role)
    return token, user, tenant


def _tenant_for_token(token: Optional[str]) -> Optional[Tuple[Dict[str, Any], TenantHandle]]:
    settings = get_settings()
    if not token or not settings.jwt_secret_key:
        return None
    try:
        claims = decode_session_token(token, settings)
        return claims, resolve_tenant_by_token(claims)
    except (BadSignature, ValidationError):
        return None


def logout(token: Optional[str]) -> None:
    """Best effort: mark the user offline when the token still verifies."""
    resolved = _tenant_for_token(token)
    if resolved is None:
        return

    claims, tenant = resolved
    email = claims.get("email")
    if not email:
        return

    db = tenant.open_session()
    try:
        user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if user is not None:
            user.is_online = False
            db.commit()
            logger.info("User %s logged out", email)
    finally:
        db.close()


def heartbeat(token: Optional[str]) -> bool:
    """
    Record presence. Missing or expired tokens, and tokens without an email,
    are not an error: returns False.
    """
    resolved = _tenant_for_token(token)
    if resolved is None:
        return False

    claims, tenant = resolved
    email = claims.get("email")
    if not email:
        return False

    db = tenant.open_session()
    try:
        user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if user is None:
            return False
        user.last_heartbeat = utcnow()
        user.is_online = True
        user.status = "active"
        db.commit()
    finally:
        db.close()
    return True
