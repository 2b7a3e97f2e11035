from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from conduit.common.db.sql_models import WebhookEvent
from conduit.common.logging_setup import get_logger

logger = get_logger(__name__)


def create_webhook_event(
    db_session: Session,
    subscription_id: UUID,
    event_type: str,
    payload: Any,
    matched_subscriptions: int = 0,
    event_key: str | None = None,
) -> WebhookEvent:
    """
    Record a verified inbound webhook for audit.

    Raises:
        IntegrityError: the subscription already has an event with this `event_key`
    """
    webhook_event = WebhookEvent(
        subscription_id=subscription_id,
        event_type=event_type,
        event_key=event_key,
        payload=payload,
        matched_subscriptions=matched_subscriptions,
    )
    db_session.add(webhook_event)
    db_session.flush()
    logger.info(
        f"Created webhook_event, event_id={webhook_event.id}, "
        f"subscription_id={subscription_id}, event_key={event_key}"
    )
    return webhook_event


def get_webhook_event_by_key(
    db_session: Session, subscription_id: UUID, event_key: str
) -> WebhookEvent | None:
    statement = select(WebhookEvent).filter_by(subscription_id=subscription_id, event_key=event_key)
    webhook_event: WebhookEvent | None = db_session.execute(statement).scalar_one_or_none()
    return webhook_event


def get_webhook_events(
    db_session: Session, subscription_id: UUID, limit: int = 100, offset: int = 0
) -> list[WebhookEvent]:
    statement = (
        select(WebhookEvent)
        .filter_by(subscription_id=subscription_id)
        .order_by(WebhookEvent.received_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(db_session.execute(statement).scalars().all())
