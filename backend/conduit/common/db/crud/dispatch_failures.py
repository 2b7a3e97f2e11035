from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from conduit.common.db.sql_models import DispatchFailure


def create_dispatch_failure(
    db_session: Session,
    envelope_id: UUID,
    action_type: str,
    subscription_id: UUID | None,
    attempts: int,
    last_error: str,
    payload: dict[str, Any],
) -> DispatchFailure:
    """Record an action that exhausted its attempts"""
    failure = DispatchFailure(
        envelope_id=envelope_id,
        action_type=action_type,
        subscription_id=subscription_id,
        attempts=attempts,
        last_error=last_error,
        payload=payload,
    )
    db_session.add(failure)
    db_session.flush()
    return failure


def get_dispatch_failures(
    db_session: Session,
    subscription_id: UUID | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[DispatchFailure]:
    statement = select(DispatchFailure)
    if subscription_id:
        statement = statement.filter(DispatchFailure.subscription_id == subscription_id)
    statement = statement.order_by(DispatchFailure.failed_at.desc()).limit(limit).offset(offset)
    return list(db_session.execute(statement).scalars().all())
