from typing_extensions import override

import httpx

from conduit.common.logging_setup import get_logger
from conduit.common.schemas.action import WebhookForwardAction
from conduit.server.action_executors.base_executor import ActionExecutionResult, ActionExecutor

logger = get_logger(__name__)


class WebhookForwardExecutor(ActionExecutor[WebhookForwardAction]):
    """
    POSTs the mapped payload as JSON to the configured URL.
    """

    @override
    async def _execute(self, action: WebhookForwardAction) -> ActionExecutionResult:
        headers = {"Content-Type": "application/json", **action.headers}
        request = httpx.Request(
            method="POST",
            url=str(action.url),
            headers=headers,
            json=action.payload,
        )
        logger.info(
            f"Forwarding payload, subscription_id={action.subscription_id}, "
            f"host={request.url.host}, payload_keys={list(action.payload.keys())}"
        )
        return await self._send_request(request)
