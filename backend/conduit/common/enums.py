from enum import StrEnum


class ConnectionStatus(StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    REVOKED = "revoked"
    EXPIRED = "expired"


class SubscriptionStatus(StrEnum):
    ACTIVE = "active"
    PAUSED = "paused"


class ActionType(StrEnum):
    WEBHOOK_FORWARD = "webhook_forward"
    SERVICE_REQUEST = "service_request"


class EventSource(StrEnum):
    WEBHOOK = "webhook"
    INTERNAL = "internal"


class RouteStatus(StrEnum):
    DISPATCHED = "dispatched"
    FILTERED = "filtered"
    FAILED = "failed"


class ExecutionStatus(StrEnum):
    SUCCESS = "success"
    RETRYING = "retrying"
    FAILED = "failed"
