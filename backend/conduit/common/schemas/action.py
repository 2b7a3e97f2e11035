"""
Typed actions produced by the TriggerEngine and executed by the AsyncDispatcher.
The set of variants is closed: each one has exactly one executor.
"""

from typing import Annotated, Any, Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, HttpUrl

from conduit.common.enums import ActionType


class WebhookForwardAction(BaseModel):
    """POST the mapped payload as JSON to a URL."""

    action_type: Literal["webhook_forward"] = "webhook_forward"
    subscription_id: UUID | None = None
    url: HttpUrl
    headers: dict[str, str] = Field(default_factory=dict)
    payload: dict[str, Any] = Field(default_factory=dict)


class ServiceRequestAction(BaseModel):
    """Authorized request against the connection's service API."""

    action_type: Literal["service_request"] = "service_request"
    subscription_id: UUID | None = None
    connection_id: UUID
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    path: str = Field(description="Path relative to the service's API base URL")
    payload: dict[str, Any] = Field(default_factory=dict)


Action = Annotated[WebhookForwardAction | ServiceRequestAction, Field(discriminator="action_type")]


class DispatchEnvelope(BaseModel):
    """
    Unit of work on the dispatch queue. The id stays the same across attempts,
    `attempt` is the 1-based number of the attempt this envelope will run as.
    """

    id: UUID = Field(default_factory=uuid4)
    action: Action
    attempt: int = 1
    last_error: str | None = None


def build_action(
    action_type: ActionType,
    action_config: dict[str, Any],
    payload: dict[str, Any],
    subscription_id: UUID | None = None,
    connection_id: UUID | None = None,
) -> WebhookForwardAction | ServiceRequestAction:
    """
    Build the typed action for a subscription from its stored config and a mapped payload.

    Raises:
        pydantic.ValidationError: the stored action config does not fit the action type
        ValueError: a service request config naming another connection
    """
    match action_type:
        case ActionType.WEBHOOK_FORWARD:
            return WebhookForwardAction(
                subscription_id=subscription_id, payload=payload, **action_config
            )
        case ActionType.SERVICE_REQUEST:
            # always the subscription's own connection, never one named in the config
            configured = action_config.get("connection_id")
            if configured is not None and str(configured) != str(connection_id):
                raise ValueError("action_config.connection_id must be the subscription's connection")
            return ServiceRequestAction(
                subscription_id=subscription_id,
                connection_id=connection_id,
                payload=payload,
                **{k: v for k, v in action_config.items() if k != "connection_id"},
            )
    raise ValueError(f"Unknown action type: {action_type}")
