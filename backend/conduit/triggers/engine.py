import secrets
from collections.abc import Iterable
from fnmatch import fnmatchcase
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.orm import Session

from conduit.common.db import crud
from conduit.common.db.sql_models import Subscription
from conduit.common.enums import (
    ActionType,
    ConnectionStatus,
    EventSource,
    RouteStatus,
    SubscriptionStatus,
)
from conduit.common.exceptions import (
    ConnectionNotActive,
    ConnectionNotFound,
    InvalidSubscription,
    SubscriptionNotFound,
)
from conduit.common.schemas.action import build_action
from conduit.common.schemas.event import EventContext, RouteOutcome
from conduit.common.schemas.subscription import MappingRule
from conduit.transform import DataTransformer, TransformError

from .dispatcher import AsyncDispatcher
from .logging import get_triggers_logger, log_event_routed, log_subscription_failed

logger = get_triggers_logger()


def event_type_matches(pattern: str, event_type: str) -> bool:
    """Exact match, or a glob pattern such as `github.*` or `*.created`."""
    if pattern == event_type:
        return True
    return "*" in pattern and fnmatchcase(event_type, pattern)


class TriggerEngine:
    """
    Routes events to matching subscriptions: filter, transform, dispatch.

    A webhook is routed to the one subscription it was addressed to and signed for.
    Internal events reach every matching subscription. Every subscription is handled
    on its own: a failure while processing one of them is logged and reported in its
    outcome and never affects its siblings.
    """

    def __init__(self, db_session: Session, transformer: DataTransformer, dispatcher: AsyncDispatcher):
        self.db_session = db_session
        self.transformer = transformer
        self.dispatcher = dispatcher

    # ========================================================================
    # Subscription lifecycle
    # ========================================================================

    def subscribe(
        self,
        connection_id: UUID,
        event_type: str,
        action_type: ActionType,
        action_config: dict[str, Any],
        mapping_rules: Iterable[MappingRule | dict[str, Any]] | None = None,
        filter_expression: str | None = None,
        endpoint_secret: str | None = None,
    ) -> Subscription:
        """
        Register an active subscription on an active connection.

        The filter, the mapping rules and the action config are checked up front;
        a webhook secret is generated when none is given.

        Raises:
            ConnectionNotFound: no such connection
            ConnectionNotActive: the connection is not active
            InvalidSubscription: empty event type, bad filter, rules or action config
        """
        connection = crud.connections.get_connection(self.db_session, connection_id)
        if connection is None:
            raise ConnectionNotFound(f"connection={connection_id} not found")
        if connection.status != ConnectionStatus.ACTIVE:
            raise ConnectionNotActive(
                f"connection={connection_id} is {connection.status}, cannot subscribe"
            )
        if not event_type.strip():
            raise InvalidSubscription("event_type must not be empty")

        rules = self._validate_rules(mapping_rules or [])
        if filter_expression:
            try:
                self.transformer.validate_template(filter_expression)
            except TransformError as e:
                raise InvalidSubscription(f"filter_expression: {e}") from e
        try:
            build_action(action_type, action_config, {}, connection_id=connection.id)
        except (ValidationError, ValueError) as e:
            raise InvalidSubscription(f"action_config does not fit {action_type}: {e}") from e

        subscription = crud.subscriptions.create_subscription(
            self.db_session,
            connection_id=connection.id,
            event_type=event_type,
            endpoint_secret=endpoint_secret or secrets.token_urlsafe(32),
            action_type=action_type,
            action_config=action_config,
            mapping_rules=[rule.model_dump() for rule in rules],
            filter_expression=filter_expression,
        )
        self.db_session.commit()
        return subscription

    def pause(self, subscription_id: UUID) -> Subscription:
        """Stop routing events to a subscription until it is resumed."""
        subscription = self._get_subscription(subscription_id)
        crud.subscriptions.update_subscription_status(
            self.db_session, subscription, SubscriptionStatus.PAUSED
        )
        self.db_session.commit()
        return subscription

    def resume(self, subscription_id: UUID) -> Subscription:
        """
        Raises:
            SubscriptionNotFound: no such subscription
            ConnectionNotActive: the subscription's connection is not active
        """
        subscription = self._get_subscription(subscription_id)
        if subscription.connection.status != ConnectionStatus.ACTIVE:
            raise ConnectionNotActive(
                f"connection={subscription.connection_id} is {subscription.connection.status}, "
                "cannot resume"
            )
        crud.subscriptions.update_subscription_status(
            self.db_session, subscription, SubscriptionStatus.ACTIVE
        )
        self.db_session.commit()
        return subscription

    def unsubscribe(self, subscription_id: UUID) -> None:
        subscription = self._get_subscription(subscription_id)
        crud.subscriptions.delete_subscription(self.db_session, subscription)
        self.db_session.commit()

    def _get_subscription(self, subscription_id: UUID) -> Subscription:
        subscription = crud.subscriptions.get_subscription(self.db_session, subscription_id)
        if subscription is None:
            raise SubscriptionNotFound(f"subscription={subscription_id} not found")
        return subscription

    def _validate_rules(
        self, mapping_rules: Iterable[MappingRule | dict[str, Any]]
    ) -> list[MappingRule]:
        try:
            rules = [MappingRule.model_validate(rule) for rule in mapping_rules]
        except ValidationError as e:
            raise InvalidSubscription(f"mapping_rules: {e}") from e
        rule_errors = self.transformer.validate_mappings(rules)
        if rule_errors:
            details = "; ".join(f"rule {error.index}: {error.error}" for error in rule_errors)
            raise InvalidSubscription(f"mapping_rules: {details}")
        return rules

    # ========================================================================
    # Routing
    # ========================================================================

    def route(self, context: EventContext) -> list[RouteOutcome]:
        """Route an event to every matching subscription, in ascending subscription id order."""
        if context.source == EventSource.WEBHOOK:
            candidates = self._webhook_candidates(context)
        else:
            candidates = [
                subscription
                for subscription in crud.subscriptions.get_routable_subscriptions(
                    self.db_session, owner_id=context.owner_id
                )
                if event_type_matches(subscription.event_type, context.event_type)
            ]

        outcomes = [self._process(subscription, context) for subscription in candidates]
        log_event_routed(
            context.event_type,
            str(context.source),
            candidates=len(candidates),
            dispatched=sum(1 for o in outcomes if o.status == RouteStatus.DISPATCHED),
            subscription_id=str(context.subscription_id) if context.subscription_id else None,
        )
        return outcomes

    def route_internal(
        self, event_type: str, data: dict[str, Any], owner_id: str | None = None
    ) -> list[RouteOutcome]:
        """Route an internally raised event, optionally only to one owner's subscriptions."""
        context = EventContext(
            event_type=event_type,
            source=EventSource.INTERNAL,
            owner_id=owner_id,
            body=data,
        )
        return self.route(context)

    def _webhook_candidates(self, context: EventContext) -> list[Subscription]:
        if context.subscription_id is None:
            logger.warning(f"Webhook event without a subscription, event_type={context.event_type}")
            return []
        subscription = crud.subscriptions.get_subscription(self.db_session, context.subscription_id)
        if subscription is None:
            return []
        if (
            subscription.status != SubscriptionStatus.ACTIVE
            or subscription.connection.status != ConnectionStatus.ACTIVE
        ):
            logger.info(
                f"Webhook for inactive subscription ignored, subscription_id={subscription.id}, "
                f"status={subscription.status}, connection_status={subscription.connection.status}"
            )
            return []
        if not event_type_matches(subscription.event_type, context.event_type):
            return []
        return [subscription]

    def _process(self, subscription: Subscription, context: EventContext) -> RouteOutcome:
        try:
            if context.source == EventSource.INTERNAL:
                # internal events aren't bound to a connection until they match one
                context = context.model_copy(
                    update={
                        "subscription_id": subscription.id,
                        "connection_id": subscription.connection_id,
                        "service_id": subscription.connection.service_id,
                        "owner_id": subscription.connection.owner_id,
                    }
                )
            variables = context.to_transform_context()

            filter_expression = subscription.filter_expression
            if filter_expression and not self._passes_filter(
                subscription.id, filter_expression, variables
            ):
                return RouteOutcome(subscription_id=subscription.id, status=RouteStatus.FILTERED)

            result = self.transformer.transform(variables, subscription.mapping_rules or [])
            for rule_error in result.errors:
                logger.warning(
                    f"Mapping rule error, subscription_id={subscription.id}, "
                    f"rule_index={rule_error.index}, target={rule_error.target}, "
                    f"error={rule_error.error}",
                    extra={"subscription_id": str(subscription.id), **rule_error.to_dict()},
                )

            action = build_action(
                subscription.action_type,
                subscription.action_config or {},
                result.output,
                subscription_id=subscription.id,
                connection_id=subscription.connection_id,
            )
            envelope_id = self.dispatcher.submit(action)
            return RouteOutcome(
                subscription_id=subscription.id,
                status=RouteStatus.DISPATCHED,
                envelope_id=envelope_id,
                rule_errors=len(result.errors),
            )
        except Exception as e:
            log_subscription_failed(
                str(subscription.id),
                context.event_type,
                f"{type(e).__name__}: {e}",
            )
            return RouteOutcome(
                subscription_id=subscription.id,
                status=RouteStatus.FAILED,
                error=type(e).__name__,
            )

    def _passes_filter(
        self, subscription_id: UUID, filter_expression: str, variables: dict[str, Any]
    ) -> bool:
        try:
            return self.transformer.is_truthy(filter_expression, variables)
        except TransformError as e:
            logger.warning(
                f"Filter evaluation failed, treating as not matched, "
                f"subscription_id={subscription_id}, error_type={type(e).__name__}, error={e}"
            )
            return False
