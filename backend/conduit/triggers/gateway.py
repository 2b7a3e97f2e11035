import hashlib
import json
from collections.abc import Mapping
from typing import Any
from urllib.parse import parse_qs
from uuid import UUID

from sqlalchemy.orm import Session

from conduit.common.db import crud
from conduit.common.enums import EventSource
from conduit.common.exceptions import SubscriptionNotFound, VerificationFailed
from conduit.common.schemas.event import EventContext
from conduit.server.config import ServiceConfig

from .logging import get_triggers_logger, log_webhook_received
from .verify import VerificationError, verify_webhook

logger = get_triggers_logger()

# delivery id headers, first present wins
EVENT_KEY_HEADERS = (
    "x-github-delivery",
    "x-shopify-webhook-id",
    "x-webhook-id",
    "x-event-id",
    "idempotency-key",
)

MAX_EVENT_KEY_LENGTH = 255


def flatten_headers(headers: Mapping[str, str] | Any) -> dict[str, str]:
    """Lower-cased single-valued headers; repeated headers keep the last value."""
    return {str(key).lower(): str(value) for key, value in headers.items()}


def parse_body(raw_body: bytes, content_type: str | None) -> Any:
    """
    Parse a webhook body: JSON, url-encoded form, or raw text as the last resort.
    """
    text = raw_body.decode("utf-8", errors="replace")
    media_type = (content_type or "").split(";")[0].strip().lower()

    if media_type == "application/x-www-form-urlencoded":
        form = parse_qs(text, keep_blank_values=True)
        parsed: dict[str, Any] = {k: v[0] if len(v) == 1 else v for k, v in form.items()}
        # form-wrapped JSON, e.g. Slack interactivity's `payload=...`
        if isinstance(parsed.get("payload"), str):
            try:
                parsed["payload"] = json.loads(parsed["payload"])
            except json.JSONDecodeError:
                logger.debug("Form payload field is not JSON, keeping it as text")
        return parsed

    if not text.strip():
        return {}
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        if media_type.endswith("json"):
            logger.warning(f"Webhook body declared as JSON is not valid JSON, content_type={media_type}")
        return text


def derive_event_key(headers: Mapping[str, str], body: Any, raw_body: bytes) -> str:
    """
    Stable key identifying one delivery: the provider's delivery id header, else the
    body's `id`/`event_id`, else a sha256 of the raw body.
    """
    for name in EVENT_KEY_HEADERS:
        value = headers.get(name)
        if value:
            return value[:MAX_EVENT_KEY_LENGTH]
    if isinstance(body, dict):
        for field in ("id", "event_id"):
            value = body.get(field)
            if isinstance(value, str | int) and not isinstance(value, bool) and str(value):
                return f"{field}:{value}"[:MAX_EVENT_KEY_LENGTH]
    return f"sha256:{hashlib.sha256(raw_body).hexdigest()}"


class WebhookGateway:
    """
    Verifies inbound webhooks and turns them into EventContexts.
    Verification only: routing and dispatch happen in the TriggerEngine.
    """

    def __init__(self, db_session: Session, services: Mapping[str, ServiceConfig] | None = None):
        self.db_session = db_session
        self.services = services or {}

    def _scheme_for(self, service_id: str) -> str:
        service = self.services.get(service_id)
        if service is not None and service.webhook_scheme:
            return service.webhook_scheme
        return service_id

    def handle(
        self, subscription_id: str | UUID, raw_body: bytes, headers: Mapping[str, str] | Any
    ) -> EventContext:
        """
        Resolve the subscription, verify the signature and build the event context.

        Raises:
            SubscriptionNotFound: unknown subscription id
            VerificationFailed: missing, malformed or mismatching signature
        """
        try:
            subscription_uuid = (
                subscription_id if isinstance(subscription_id, UUID) else UUID(str(subscription_id))
            )
        except ValueError:
            raise SubscriptionNotFound(f"subscription={subscription_id} not found") from None

        subscription = crud.subscriptions.get_subscription(self.db_session, subscription_uuid)
        if subscription is None:
            logger.warning(f"Webhook for unknown subscription, subscription_id={subscription_uuid}")
            raise SubscriptionNotFound(f"subscription={subscription_uuid} not found")

        flat_headers = flatten_headers(headers)
        service_id = subscription.connection.service_id
        log_webhook_received(
            service_id, str(subscription.id), body_length=len(raw_body)
        )

        try:
            is_valid = verify_webhook(
                self._scheme_for(service_id),
                subscription.endpoint_secret,
                raw_body,
                flat_headers,
                service_id=service_id,
            )
        except VerificationError as e:
            raise VerificationFailed(f"subscription={subscription.id}: {e}") from e
        if not is_valid:
            raise VerificationFailed(f"subscription={subscription.id}: signature mismatch")

        body = parse_body(raw_body, flat_headers.get("content-type"))
        return EventContext(
            event_type=subscription.event_type,
            source=EventSource.WEBHOOK,
            subscription_id=subscription.id,
            connection_id=subscription.connection_id,
            service_id=service_id,
            owner_id=subscription.connection.owner_id,
            headers=flat_headers,
            body=body,
            raw_body=raw_body.decode("utf-8", errors="replace"),
            event_key=derive_event_key(flat_headers, body, raw_body),
        )
