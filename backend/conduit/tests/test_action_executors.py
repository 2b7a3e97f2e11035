import json
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import httpx
import pytest

from conduit.common.enums import ActionType, ConnectionStatus
from conduit.common.schemas.action import ServiceRequestAction, WebhookForwardAction
from conduit.server.action_executors import (
    ServiceRequestExecutor,
    WebhookForwardExecutor,
    build_executor_table,
)
from conduit.server.oauth2_manager import OAuth2Manager


class RecordingTransport:
    """Stands in for httpx.AsyncClient.send, answering every request with one response."""

    def __init__(self, status_code: int = 200, body: object = None, error: Exception | None = None):
        self.status_code = status_code
        self.body = body if body is not None else {"ok": True}
        self.error = error
        self.requests: list[httpx.Request] = []

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if isinstance(self.body, str):
            return httpx.Response(self.status_code, text=self.body, request=request)
        return httpx.Response(self.status_code, json=self.body, request=request)


def _patch_send(transport: RecordingTransport):
    async def send(client, request, **kwargs):
        return await transport.handle(request)

    return patch.object(httpx.AsyncClient, "send", new=send)


class TestWebhookForwardExecutor:
    """Test forwarding mapped payloads to webhook URLs"""

    @pytest.mark.asyncio
    async def test_posts_payload_as_json(self):
        """Test that the payload is POSTed as JSON with the configured headers"""
        transport = RecordingTransport(body={"received": True})
        action = WebhookForwardAction(
            url="https://hooks.example.test/inbound",
            headers={"X-Source": "conduit"},
            payload={"customer": {"name": "Ada"}},
        )

        with _patch_send(transport):
            result = await WebhookForwardExecutor(timeout=5).execute(action)

        assert result.success is True
        assert result.status_code == 200
        assert result.data == {"received": True}

        request = transport.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://hooks.example.test/inbound"
        assert request.headers["X-Source"] == "conduit"
        assert request.headers["Content-Type"] == "application/json"
        assert json.loads(request.content) == {"customer": {"name": "Ada"}}

    @pytest.mark.asyncio
    async def test_http_error_is_a_failed_result(self):
        """Test that non-2xx answers are reported, not raised"""
        transport = RecordingTransport(status_code=503, body="maintenance")
        action = WebhookForwardAction(url="https://hooks.example.test/inbound")

        with _patch_send(transport):
            result = await WebhookForwardExecutor().execute(action)

        assert result.success is False
        assert result.status_code == 503
        assert result.error == "503 maintenance"

    @pytest.mark.asyncio
    async def test_timeout_is_a_failed_result(self):
        """Test that a timeout is reported as a failure"""
        transport = RecordingTransport(error=httpx.ReadTimeout("too slow"))
        action = WebhookForwardAction(url="https://hooks.example.test/inbound")

        with _patch_send(transport):
            result = await WebhookForwardExecutor().execute(action)

        assert result.success is False
        assert result.error.startswith("timeout")

    @pytest.mark.asyncio
    async def test_connection_error_is_a_failed_result(self):
        """Test that an unreachable target is reported as a failure"""
        transport = RecordingTransport(error=httpx.ConnectError("refused"))
        action = WebhookForwardAction(url="https://hooks.example.test/inbound")

        with _patch_send(transport):
            result = await WebhookForwardExecutor().execute(action)

        assert result.success is False
        assert result.error.startswith("transport error")


class TestServiceRequestExecutor:
    """Test authorized requests against a connection's service API"""

    @pytest.mark.asyncio
    async def test_sends_bearer_request(self, session_factory, server_settings, make_connection):
        """Test that the request goes to the service API with the connection's token"""
        connection = make_connection()
        transport = RecordingTransport(status_code=201, body={"id": "c_1"})
        action = ServiceRequestAction(
            connection_id=connection.id, method="POST", path="/contacts", payload={"name": "Ada"}
        )

        with _patch_send(transport):
            result = await ServiceRequestExecutor(session_factory, server_settings).execute(action)

        assert result.success is True
        assert result.data == {"id": "c_1"}
        request = transport.requests[0]
        assert str(request.url) == "https://api.acme.test/v1/contacts"
        assert request.headers["Authorization"] == "Bearer access-token-1"
        assert json.loads(request.content) == {"name": "Ada"}

    @pytest.mark.asyncio
    async def test_get_sends_payload_as_query(self, session_factory, server_settings, make_connection):
        """Test that GET requests carry the payload as query parameters"""
        connection = make_connection()
        transport = RecordingTransport()
        action = ServiceRequestAction(
            connection_id=connection.id, method="GET", path="contacts", payload={"email": "a@b.c"}
        )

        with _patch_send(transport):
            await ServiceRequestExecutor(session_factory, server_settings).execute(action)

        request = transport.requests[0]
        assert request.url.path == "/v1/contacts"
        assert request.url.params["email"] == "a@b.c"
        assert request.content == b""

    @pytest.mark.asyncio
    async def test_expiring_token_is_refreshed_first(
        self, session_factory, server_settings, make_connection
    ):
        """Test that an expiring token is refreshed before the request"""
        connection = make_connection(expires_in=30)
        transport = RecordingTransport()
        action = ServiceRequestAction(connection_id=connection.id, path="contacts")

        with (
            _patch_send(transport),
            patch.object(
                OAuth2Manager,
                "refresh_token",
                new_callable=AsyncMock,
                return_value={"access_token": "refreshed-token", "expires_in": 3600},
            ),
        ):
            result = await ServiceRequestExecutor(session_factory, server_settings).execute(action)

        assert result.success is True
        assert transport.requests[0].headers["Authorization"] == "Bearer refreshed-token"

    @pytest.mark.asyncio
    async def test_inactive_connection_fails_without_request(
        self, session_factory, server_settings, make_connection
    ):
        """Test that a revoked connection fails the action without calling the service"""
        connection = make_connection(status=ConnectionStatus.REVOKED)
        transport = RecordingTransport()
        action = ServiceRequestAction(connection_id=connection.id, path="contacts")

        with _patch_send(transport):
            result = await ServiceRequestExecutor(session_factory, server_settings).execute(action)

        assert result.success is False
        assert result.error == "Connection not active"
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_unknown_connection(self, session_factory, server_settings):
        """Test that a missing connection fails the action"""
        action = ServiceRequestAction(connection_id=uuid4(), path="contacts")

        result = await ServiceRequestExecutor(session_factory, server_settings).execute(action)

        assert result.success is False
        assert "not found" in result.error

    @pytest.mark.asyncio
    async def test_service_without_api_base_url(
        self, session_factory, server_settings, make_connection
    ):
        """Test that services without an API base URL cannot receive requests"""
        connection = make_connection(service_id="github")
        action = ServiceRequestAction(connection_id=connection.id, path="repos")

        result = await ServiceRequestExecutor(session_factory, server_settings).execute(action)

        assert result.success is False
        assert "api_base_url" in result.error


def test_executor_table_covers_every_action_type(session_factory, server_settings):
    """Test that every action type has an executor"""
    table = build_executor_table(session_factory, server_settings, timeout=5)

    assert set(table) == set(ActionType)
    assert isinstance(table[ActionType.WEBHOOK_FORWARD], WebhookForwardExecutor)
    assert isinstance(table[ActionType.SERVICE_REQUEST], ServiceRequestExecutor)
