from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from conduit.common.db.sql_models import DispatchExecution
from conduit.common.enums import ExecutionStatus


def create_dispatch_execution(
    db_session: Session,
    envelope_id: UUID,
    attempt: int,
    action_type: str,
    subscription_id: UUID | None,
    status: ExecutionStatus,
    duration_ms: int,
    payload: dict[str, Any],
    error: str | None = None,
) -> DispatchExecution:
    """Record the outcome of one attempt of a dispatched action"""
    execution = DispatchExecution(
        envelope_id=envelope_id,
        attempt=attempt,
        action_type=action_type,
        subscription_id=subscription_id,
        status=status,
        duration_ms=duration_ms,
        payload=payload,
        error=error,
    )
    db_session.add(execution)
    db_session.flush()
    return execution


def get_dispatch_executions(
    db_session: Session,
    envelope_id: UUID | None = None,
    subscription_id: UUID | None = None,
    status: ExecutionStatus | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[DispatchExecution]:
    """Executions matching the given filters, oldest attempt first."""
    statement = select(DispatchExecution)
    if envelope_id:
        statement = statement.filter(DispatchExecution.envelope_id == envelope_id)
    if subscription_id:
        statement = statement.filter(DispatchExecution.subscription_id == subscription_id)
    if status:
        statement = statement.filter(DispatchExecution.status == status)
    statement = (
        statement.order_by(DispatchExecution.executed_at.asc(), DispatchExecution.attempt.asc())
        .limit(limit)
        .offset(offset)
    )
    return list(db_session.execute(statement).scalars().all())
