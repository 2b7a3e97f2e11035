from typing_extensions import override

import httpx
from sqlalchemy.orm import Session, sessionmaker

from conduit.common.db import crud
from conduit.common.exceptions import ConduitException
from conduit.common.logging_setup import get_logger
from conduit.common.schemas.action import ServiceRequestAction
from conduit.server.action_executors.base_executor import ActionExecutionResult, ActionExecutor
from conduit.server.authentication_manager import AuthenticationManager
from conduit.server.config import ServerSettings

logger = get_logger(__name__)


class ServiceRequestExecutor(ActionExecutor[ServiceRequestAction]):
    """
    Sends the mapped payload to the connection's service API,
    authorized with the connection's (refreshed if needed) access token.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: ServerSettings,
        timeout: float = 10.0,
    ):
        super().__init__(timeout=timeout)
        self.session_factory = session_factory
        self.settings = settings

    @override
    async def _execute(self, action: ServiceRequestAction) -> ActionExecutionResult:
        with self.session_factory() as db_session:
            connection = crud.connections.get_connection(db_session, action.connection_id)
            if connection is None:
                return ActionExecutionResult(
                    success=False, error=f"connection={action.connection_id} not found"
                )
            service = self.settings.services.get(connection.service_id)
            if service is None or not service.api_base_url:
                return ActionExecutionResult(
                    success=False,
                    error=f"service={connection.service_id} has no api_base_url configured",
                )

            auth_manager = AuthenticationManager(db_session, self.settings)
            try:
                access_token = await auth_manager.get_access_token(action.connection_id)
            except ConduitException as e:
                logger.warning(
                    f"Could not obtain access token, connection_id={action.connection_id}, "
                    f"error={e.title}"
                )
                return ActionExecutionResult(success=False, error=e.title)

        url = f"{service.api_base_url.rstrip('/')}/{action.path.lstrip('/')}"
        has_body = action.method not in ("GET", "DELETE")
        request = httpx.Request(
            method=action.method,
            url=url,
            headers={"Authorization": f"Bearer {access_token}"},
            params=None if has_body else action.payload or None,
            json=action.payload if has_body else None,
        )
        logger.info(
            f"Executing service request, subscription_id={action.subscription_id}, "
            f"service_id={connection.service_id}, method={action.method}, path={action.path}"
        )
        return await self._send_request(request)
