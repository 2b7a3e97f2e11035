from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from conduit.common.enums import EventSource, RouteStatus
from conduit.common.utils import utcnow


class EventContext(BaseModel):
    """
    Normalized inbound event: what the TriggerEngine routes and what mapping
    expressions are evaluated against.
    """

    event_type: str
    source: EventSource
    subscription_id: UUID | None = None
    connection_id: UUID | None = None
    service_id: str | None = None
    owner_id: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None
    raw_body: str = ""
    event_key: str | None = Field(
        default=None, description="Delivery id used to drop provider retries of the same webhook"
    )
    received_at: datetime = Field(default_factory=utcnow)

    def to_transform_context(self) -> dict[str, Any]:
        """
        Variables visible to filter and mapping expressions.

        The parsed body's top-level keys are exposed directly (``{{ user.name }}``)
        and the full event under ``event`` (``{{ get(event.headers, "x-request-id") }}``).
        """
        event = {
            "type": self.event_type,
            "source": str(self.source),
            "subscription_id": str(self.subscription_id) if self.subscription_id else None,
            "connection_id": str(self.connection_id) if self.connection_id else None,
            "service_id": self.service_id,
            "owner_id": self.owner_id,
            "headers": dict(self.headers),
            "received_at": self.received_at.isoformat(),
        }
        variables: dict[str, Any] = dict(self.body) if isinstance(self.body, dict) else {}
        variables["body"] = self.body
        variables["event"] = event
        return variables


class RouteOutcome(BaseModel):
    """What happened to one candidate subscription while routing an event."""

    subscription_id: UUID
    status: RouteStatus
    envelope_id: UUID | None = None
    rule_errors: int = 0
    error: str | None = None
