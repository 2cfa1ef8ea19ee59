from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from leadrabbit.clock import utcnow
from leadrabbit.errors import NotFound, ValidationError
from leadrabbit.models import Lead, User, UserFavorite
from leadrabbit.services.auth_service import hash_password

logger = logging.getLogger("leadrabbit.services.users")


# ---------------------------------------------------------------------------
# Favorites
# ---------------------------------------------------------------------------


def list_favorites(user: User) -> List[int]:
    return sorted(user.favorites)


def toggle_favorite(session: Session, user: User, lead_id: Optional[int]) -> Tuple[List[int], bool]:
    """
    Flip membership of `lead_id` in the user's favorites.

    Returns (favorites, is_favorite_now). Favorites live on the user; the
    lead row is never touched.
    """
    if lead_id is None:
        raise ValidationError("Lead identifier is required.")

    if session.get(Lead, lead_id) is None:
        raise NotFound("Lead not found.")

    link = session.execute(
        select(UserFavorite).where(
            UserFavorite.user_id == user.id,
            UserFavorite.lead_id == lead_id,
        )
    ).scalar_one_or_none()

    if link is not None:
        user.favorite_links.remove(link)
        is_favorite = False
    else:
        user.favorite_links.append(UserFavorite(user_id=user.id, lead_id=lead_id))
        is_favorite = True

    try:
        session.commit()
    except IntegrityError:
        # Double-click race: the other request already added it.
        session.rollback()
        session.refresh(user)
        is_favorite = lead_id in user.favorites

    logger.info("User %s favorite %s -> %s", user.email, lead_id, is_favorite)
    return list_favorites(user), is_favorite


# ---------------------------------------------------------------------------
# Tenant users
# ---------------------------------------------------------------------------


def add_user(
    session: Session,
    *,
    name: str,
    email: str,
    password: str,
    role: str,
    status: Optional[str] = None,
) -> User:
    email = email.strip().lower()
    existing = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if existing is not None:
        raise ValidationError("Email already registered")

    now = utcnow()
    user = User(
        name=name.strip(),
        email=email,
        role=role,
        status=status or "active",
        password_hash=hash_password(password),
        is_online=False,
        is_verified=False,
        created_at=now,
        updated_at=now,
    )
    session.add(user)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise ValidationError("Email already registered") from exc

    logger.info("User %s added with role %s", email, role)
    return user


def list_users(session: Session) -> List[User]:
    return list(
        session.execute(select(User).order_by(User.created_at.desc(), User.id.desc())).scalars()
    )


def list_online_users(session: Session) -> List[User]:
    return list(
        session.execute(
            select(User).where(User.is_online.is_(True)).order_by(User.email)
        ).scalars()
    )
