from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

import httpx
from pydantic import BaseModel

from conduit.common.logging_setup import get_logger
from conduit.common.schemas.action import ServiceRequestAction, WebhookForwardAction

logger = get_logger(__name__)

TAction = TypeVar("TAction", WebhookForwardAction, ServiceRequestAction)


class ActionExecutionResult(BaseModel):
    success: bool
    status_code: int | None = None
    data: Any | None = None
    error: str | None = None


class ActionExecutor(ABC, Generic[TAction]):
    """
    Base class for action executors. One executor per action type.
    A failed execution is reported in the result, not raised.
    """

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    async def execute(self, action: TAction) -> ActionExecutionResult:
        try:
            return await self._execute(action)
        except httpx.TimeoutException as e:
            logger.warning(
                f"Action timed out, action_type={action.action_type}, timeout={self.timeout}"
            )
            return ActionExecutionResult(success=False, error=f"timeout: {type(e).__name__}")
        except httpx.TransportError as e:
            logger.warning(
                f"Action transport error, action_type={action.action_type}, "
                f"error_type={type(e).__name__}"
            )
            return ActionExecutionResult(success=False, error=f"transport error: {e}")

    @abstractmethod
    async def _execute(self, action: TAction) -> ActionExecutionResult:
        pass

    async def _send_request(self, request: httpx.Request) -> ActionExecutionResult:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.send(request)

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(
                f"HTTP error from action target, method={request.method}, "
                f"host={request.url.host}, path={request.url.path}, status_code={response.status_code}"
            )
            return ActionExecutionResult(
                success=False,
                status_code=response.status_code,
                error=self._get_error_message(response, e),
            )

        return ActionExecutionResult(
            success=True,
            status_code=response.status_code,
            data=self._get_response_data(response),
        )

    def _get_response_data(self, response: httpx.Response) -> Any:
        """
        JSON response data if the response is JSON, otherwise the text.
        """
        try:
            return response.json() if response.content else {}
        except ValueError:
            return response.text

    def _get_error_message(self, response: httpx.Response, error: httpx.HTTPStatusError) -> str:
        # response bodies usually explain the error better than the status line
        text = response.text[:500] if response.content else ""
        return f"{error.response.status_code} {text}".strip()
