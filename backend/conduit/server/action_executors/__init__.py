from collections.abc import Mapping

from sqlalchemy.orm import Session, sessionmaker

from conduit.common.enums import ActionType
from conduit.server.action_executors.base_executor import (
    ActionExecutionResult,
    ActionExecutor,
)
from conduit.server.action_executors.service_request_executor import ServiceRequestExecutor
from conduit.server.action_executors.webhook_forward_executor import WebhookForwardExecutor
from conduit.server.config import ServerSettings

__all__ = [
    "ActionExecutionResult",
    "ActionExecutor",
    "ServiceRequestExecutor",
    "WebhookForwardExecutor",
    "build_executor_table",
]


def build_executor_table(
    session_factory: sessionmaker[Session],
    settings: ServerSettings,
    timeout: float,
) -> Mapping[ActionType, ActionExecutor]:
    """The executor for every action type. The table is closed: no action type is left out."""
    return {
        ActionType.WEBHOOK_FORWARD: WebhookForwardExecutor(timeout=timeout),
        ActionType.SERVICE_REQUEST: ServiceRequestExecutor(
            session_factory, settings, timeout=timeout
        ),
    }
