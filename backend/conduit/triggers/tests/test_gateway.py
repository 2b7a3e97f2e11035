"""Tests for webhook intake: subscription lookup, verification and body parsing."""

import hashlib
import json
from uuid import uuid4

import pytest

from conduit.common.enums import EventSource
from conduit.common.exceptions import SubscriptionNotFound, VerificationFailed

from ..gateway import derive_event_key, flatten_headers, parse_body
from .conftest import create_github_signature, create_signature


class TestWebhookGateway:
    """Test WebhookGateway.handle."""

    def test_verified_webhook_builds_event_context(
        self, gateway, make_connection, make_subscription, signed_headers
    ):
        """Test that a correctly signed webhook yields the event context."""
        connection = make_connection()
        subscription = make_subscription(connection)
        body = json.dumps({"order": {"id": 1042}})

        context = gateway.handle(
            str(subscription.id), body.encode(), signed_headers(body, **{"X-Request-Id": "req-1"})
        )

        assert context.source == EventSource.WEBHOOK
        assert context.event_type == "order.created"
        assert context.subscription_id == subscription.id
        assert context.connection_id == connection.id
        assert context.service_id == "acme"
        assert context.owner_id == "owner-1"
        assert context.body == {"order": {"id": 1042}}
        assert context.raw_body == body
        assert context.headers["x-request-id"] == "req-1"
        assert context.event_key == f"sha256:{hashlib.sha256(body.encode()).hexdigest()}"

    def test_bit_flipped_body_is_rejected(
        self, gateway, make_connection, make_subscription, signed_headers
    ):
        """Test that a body differing by one bit from the signed one fails verification."""
        subscription = make_subscription(make_connection())
        body = json.dumps({"order": {"id": 1042}})
        headers = signed_headers(body)
        tampered = bytearray(body.encode())
        tampered[5] ^= 0x01

        with pytest.raises(VerificationFailed):
            gateway.handle(str(subscription.id), bytes(tampered), headers)

    def test_missing_signature_is_rejected(self, gateway, make_connection, make_subscription):
        """Test that an unsigned webhook fails verification."""
        subscription = make_subscription(make_connection())

        with pytest.raises(VerificationFailed):
            gateway.handle(str(subscription.id), b"{}", {"Content-Type": "application/json"})

    def test_signature_uses_the_subscription_secret(
        self, gateway, make_connection, make_subscription, signed_headers
    ):
        """Test that a signature made with another subscription's secret is rejected."""
        connection = make_connection()
        subscription = make_subscription(connection, endpoint_secret="whsec_mine")
        body = "{}"

        with pytest.raises(VerificationFailed):
            gateway.handle(str(subscription.id), body.encode(), signed_headers(body, "whsec_other"))

    def test_service_scheme_is_used(self, gateway, make_connection, make_subscription):
        """Test that GitHub connections are verified with GitHub's scheme."""
        subscription = make_subscription(
            make_connection(service_id="github"), event_type="github.push"
        )
        body = json.dumps({"ref": "refs/heads/main"})
        headers = {
            "Content-Type": "application/json",
            "X-Hub-Signature-256": create_github_signature(body, "whsec_test"),
        }

        context = gateway.handle(str(subscription.id), body.encode(), headers)

        assert context.body == {"ref": "refs/heads/main"}

    def test_unknown_subscription(self, gateway):
        """Test that unknown subscriptions are not found."""
        with pytest.raises(SubscriptionNotFound):
            gateway.handle(str(uuid4()), b"{}", {"X-Signature": create_signature(b"{}", "x")})

    def test_malformed_subscription_id(self, gateway):
        """Test that a malformed id is not found rather than an error."""
        with pytest.raises(SubscriptionNotFound):
            gateway.handle("not-a-uuid", b"{}", {})


class TestParseBody:
    """Test webhook body parsing."""

    def test_json(self):
        assert parse_body(b'{"a": [1, 2]}', "application/json; charset=utf-8") == {"a": [1, 2]}

    def test_json_without_content_type(self):
        assert parse_body(b'{"a": 1}', None) == {"a": 1}

    def test_form(self):
        body = b"name=Ada&tags=a&tags=b&empty="
        assert parse_body(body, "application/x-www-form-urlencoded") == {
            "name": "Ada",
            "tags": ["a", "b"],
            "empty": "",
        }

    def test_form_wrapped_json_payload(self):
        body = b"payload=%7B%22type%22%3A%22block_actions%22%7D"
        parsed = parse_body(body, "application/x-www-form-urlencoded")
        assert parsed == {"payload": {"type": "block_actions"}}

    def test_raw_text(self):
        assert parse_body(b"plain text", "text/plain") == "plain text"

    def test_empty_body(self):
        assert parse_body(b"", "application/json") == {}


class TestDeriveEventKey:
    """Test the delivery key used to drop repeated webhooks."""

    def test_delivery_header_wins(self):
        headers = {"x-github-delivery": "72d3162e-cc78", "x-webhook-id": "other"}
        assert derive_event_key(headers, {"id": "evt_1"}, b"{}") == "72d3162e-cc78"

    def test_body_id(self):
        assert derive_event_key({}, {"id": "evt_1"}, b"{}") == "id:evt_1"
        assert derive_event_key({}, {"event_id": 42}, b"{}") == "event_id:42"

    def test_body_digest_fallback(self):
        """Test that bodies without an id are keyed by their digest."""
        raw_body = b'{"id": true}'
        first = derive_event_key({}, {"id": True}, raw_body)
        second = derive_event_key({}, "plain text", b"plain text")

        assert first == "sha256:" + hashlib.sha256(raw_body).hexdigest()
        assert second != first
        assert derive_event_key({}, "plain text", b"plain text") == second

    def test_long_header_is_truncated(self):
        assert len(derive_event_key({"x-event-id": "x" * 400}, {}, b"{}")) == 255


def test_flatten_headers_lowercases_names():
    """Test that header names are lower-cased."""
    assert flatten_headers({"X-Signature": "abc", "Content-Type": "text/plain"}) == {
        "x-signature": "abc",
        "content-type": "text/plain",
    }
