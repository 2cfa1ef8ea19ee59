from __future__ import annotations

import logging
from typing import List

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from leadrabbit.clock import utcnow
from leadrabbit.errors import NotFound, ValidationError
from leadrabbit.ingestion.schemas import IntegrationAccountResponse
from leadrabbit.models import IntegrationAccount, Lead

logger = logging.getLogger("leadrabbit.services.integrations")

ACCOUNT_ACTIONS = {"enable": True, "disable": False}


def list_accounts(session: Session, source: str) -> List[IntegrationAccountResponse]:
    """Accounts for a source with the number of leads each one brought in."""
    accounts = (
        session.execute(
            select(IntegrationAccount)
            .where(IntegrationAccount.source == source)
            .order_by(IntegrationAccount.id)
        )
        .scalars()
        .all()
    )

    counts = dict(
        session.execute(
            select(Lead.account_id, func.count(Lead.id))
            .where(Lead.source == source, Lead.account_id.is_not(None))
            .group_by(Lead.account_id)
        ).all()
    )

    return [
        IntegrationAccountResponse(
            id=account.id,
            source=account.source,
            username=account.username,
            is_active=account.is_active,
            last_sync=account.last_sync,
            created_at=account.created_at,
            total_leads=counts.get(account.id, 0),
        )
        for account in accounts
    ]


def _get_account(session: Session, source: str, account_id: int) -> IntegrationAccount:
    account = session.get(IntegrationAccount, account_id)
    if account is None or account.source != source:
        raise NotFound("Integration account not found")
    return account


def set_account_active(session: Session, source: str, account_id: int, action: str) -> IntegrationAccount:
    key = (action or "").strip().lower()
    if key not in ACCOUNT_ACTIONS:
        raise ValidationError("Action must be 'enable' or 'disable'")

    account = _get_account(session, source, account_id)
    account.is_active = ACCOUNT_ACTIONS[key]
    account.updated_at = utcnow()
    session.commit()

    logger.info("%s account %s %sd", source, account_id, key)
    return account


def delete_account(session: Session, source: str, account_id: int) -> None:
    """Remove the account. Its leads stay; their account_id is cleared."""
    account = _get_account(session, source, account_id)
    session.execute(
        Lead.__table__.update()
        .where(Lead.account_id == account.id)
        .values(account_id=None)
    )
    session.delete(account)
    session.commit()
    logger.info("%s account %s deleted", source, account_id)
