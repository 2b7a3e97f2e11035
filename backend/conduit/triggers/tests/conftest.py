"""Shared test fixtures for triggers module tests."""

import base64
import hashlib
import hmac
from collections.abc import Callable
from typing import Any

import pytest

from conduit.common.schemas.action import DispatchEnvelope
from conduit.transform import ConfigSource, DataTransformer, build_default_registry

from ..dispatcher import AsyncDispatcher
from ..engine import TriggerEngine
from ..gateway import WebhookGateway


def create_signature(body: str | bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw body, as sent in X-Signature."""
    raw = body.encode() if isinstance(body, str) else body
    return hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()


def create_github_signature(body: str | bytes, secret: str) -> str:
    """Create GitHub's X-Hub-Signature-256 value."""
    return f"sha256={create_signature(body, secret)}"


def create_shopify_signature(body: str | bytes, secret: str) -> str:
    """Create Shopify's base64 X-Shopify-Hmac-Sha256 value."""
    raw = body.encode() if isinstance(body, str) else body
    return base64.b64encode(hmac.new(secret.encode(), raw, hashlib.sha256).digest()).decode()


def create_slack_signature(body: str, timestamp: str, secret: str) -> str:
    """Create valid Slack signature for testing."""
    sig_basestring = f"v0:{timestamp}:{body}"
    signature = hmac.new(secret.encode(), sig_basestring.encode(), hashlib.sha256).hexdigest()
    return f"v0={signature}"


class FailureLog:
    """FailureRecorder double keeping (envelope, error) pairs."""

    def __init__(self) -> None:
        self.failures: list[tuple[DispatchEnvelope, str]] = []

    def __call__(self, envelope: DispatchEnvelope, error: str) -> None:
        self.failures.append((envelope, error))


@pytest.fixture
def failure_log() -> FailureLog:
    return FailureLog()


@pytest.fixture
def transformer() -> DataTransformer:
    return DataTransformer(build_default_registry(ConfigSource({"app": {"name": "Vodo Platform"}})))


@pytest.fixture
def dispatcher(dispatch_queue, failure_log) -> AsyncDispatcher:
    return AsyncDispatcher(
        queue=dispatch_queue,
        executors={},
        record_failure=failure_log,
        max_attempts=3,
        backoff_seconds=60,
    )


@pytest.fixture
def trigger_engine(db_session, transformer, dispatcher) -> TriggerEngine:
    return TriggerEngine(db_session, transformer, dispatcher)


@pytest.fixture
def gateway(db_session, server_settings) -> WebhookGateway:
    return WebhookGateway(db_session, server_settings.services)


@pytest.fixture
def signed_headers() -> Callable[..., dict[str, Any]]:
    def _signed_headers(body: str, secret: str = "whsec_test", **extra: str) -> dict[str, Any]:
        return {
            "Content-Type": "application/json",
            "X-Signature": create_signature(body, secret),
            **extra,
        }

    return _signed_headers
