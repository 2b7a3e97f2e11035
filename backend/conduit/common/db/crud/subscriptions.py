from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from conduit.common.db.sql_models import Connection, Subscription
from conduit.common.enums import ActionType, ConnectionStatus, SubscriptionStatus
from conduit.common.logging_setup import get_logger

logger = get_logger(__name__)


def create_subscription(
    db_session: Session,
    connection_id: UUID,
    event_type: str,
    endpoint_secret: str,
    action_type: ActionType,
    action_config: dict[str, Any],
    mapping_rules: list[dict[str, str]] | None = None,
    filter_expression: str | None = None,
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
) -> Subscription:
    """Create a new subscription for a connection"""
    subscription = Subscription(
        connection_id=connection_id,
        event_type=event_type,
        endpoint_secret=endpoint_secret,
        filter_expression=filter_expression,
        mapping_rules=mapping_rules or [],
        action_type=action_type,
        action_config=action_config,
        status=status,
    )
    db_session.add(subscription)
    db_session.flush()
    logger.info(
        f"Created subscription, subscription_id={subscription.id}, "
        f"connection_id={connection_id}, event_type={event_type}"
    )
    return subscription


def get_subscription(db_session: Session, subscription_id: UUID) -> Subscription | None:
    statement = select(Subscription).filter_by(id=subscription_id)
    subscription: Subscription | None = db_session.execute(statement).scalar_one_or_none()
    return subscription


def get_routable_subscriptions(
    db_session: Session,
    connection_id: UUID | None = None,
    owner_id: str | None = None,
) -> list[Subscription]:
    """
    Get active subscriptions whose connection is active, in ascending id order.
    Event type matching is left to the caller since it supports glob patterns.
    """
    statement = (
        select(Subscription)
        .join(Connection, Subscription.connection_id == Connection.id)
        .filter(
            Subscription.status == SubscriptionStatus.ACTIVE,
            Connection.status == ConnectionStatus.ACTIVE,
        )
    )
    if connection_id is not None:
        statement = statement.filter(Subscription.connection_id == connection_id)
    if owner_id is not None:
        statement = statement.filter(Connection.owner_id == owner_id)

    statement = statement.order_by(Subscription.id.asc())
    return list(db_session.execute(statement).scalars().all())

def update_subscription_status(
    db_session: Session, subscription: Subscription, status: SubscriptionStatus
) -> Subscription:
    subscription.status = status
    db_session.flush()
    db_session.refresh(subscription)
    logger.info(f"Updated subscription status, subscription_id={subscription.id}, status={status}")
    return subscription


def delete_subscription(db_session: Session, subscription: Subscription) -> None:
    subscription_id = subscription.id
    db_session.delete(subscription)
    db_session.flush()
    logger.info(f"Deleted subscription, subscription_id={subscription_id}")
