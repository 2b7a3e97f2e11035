"""Tests for webhook signature verification schemes."""

import json
import time

import pytest

from ..verify import (
    DEFAULT_SCHEME,
    InvalidSignatureFormatError,
    MissingSignatureError,
    StaleTimestampError,
    get_verifier,
    register_verifier,
    verify_default_signature,
    verify_github_signature,
    verify_shopify_signature,
    verify_slack_signature,
    verify_webhook,
)
from .conftest import (
    create_github_signature,
    create_shopify_signature,
    create_signature,
    create_slack_signature,
)

SECRET = "whsec_test"
BODY = json.dumps({"order": {"id": 1042, "total": 99.5}}).encode()


def _flip_bit(data: bytes, index: int = 0) -> bytes:
    flipped = bytearray(data)
    flipped[index] ^= 0x01
    return bytes(flipped)


class TestDefaultSignature:
    """Test the default HMAC-SHA256 scheme."""

    def test_valid_signature(self):
        """Test valid signature verification."""
        headers = {"x-signature": create_signature(BODY, SECRET)}
        assert verify_default_signature(SECRET, BODY, headers) is True

    def test_sha256_prefix_accepted(self):
        """Test that a sha256= prefixed signature is accepted."""
        headers = {"x-signature": f"sha256={create_signature(BODY, SECRET)}"}
        assert verify_default_signature(SECRET, BODY, headers) is True

    @pytest.mark.parametrize("index", [0, len(BODY) // 2, len(BODY) - 1])
    def test_any_body_bit_flip_fails(self, index):
        """Test that flipping a single bit of the body breaks the signature."""
        headers = {"x-signature": create_signature(BODY, SECRET)}
        assert verify_default_signature(SECRET, _flip_bit(BODY, index), headers) is False

    def test_wrong_secret_fails(self):
        """Test that a signature made with another secret is rejected."""
        headers = {"x-signature": create_signature(BODY, "other-secret")}
        assert verify_default_signature(SECRET, BODY, headers) is False

    def test_garbage_signature_fails(self):
        """Test that a non-hex signature is a mismatch, not a crash."""
        headers = {"x-signature": "not-hex-ü"}
        assert verify_default_signature(SECRET, BODY, headers) is False

    def test_missing_signature(self):
        """Test missing signature header."""
        with pytest.raises(MissingSignatureError):
            verify_default_signature(SECRET, BODY, {})


class TestGitHubSignature:
    """Test GitHub X-Hub-Signature-256 verification."""

    def test_valid_signature(self):
        """Test valid GitHub signature."""
        headers = {"x-hub-signature-256": create_github_signature(BODY, SECRET)}
        assert verify_github_signature(SECRET, BODY, headers) is True

    def test_invalid_signature(self):
        """Test that a tampered body is rejected."""
        headers = {"x-hub-signature-256": create_github_signature(BODY, SECRET)}
        assert verify_github_signature(SECRET, _flip_bit(BODY), headers) is False

    def test_invalid_format(self):
        """Test signature without the sha256= prefix."""
        headers = {"x-hub-signature-256": create_signature(BODY, SECRET)}
        with pytest.raises(InvalidSignatureFormatError):
            verify_github_signature(SECRET, BODY, headers)


class TestShopifySignature:
    """Test Shopify base64 HMAC verification."""

    def test_valid_signature(self):
        """Test valid Shopify signature."""
        headers = {"x-shopify-hmac-sha256": create_shopify_signature(BODY, SECRET)}
        assert verify_shopify_signature(SECRET, BODY, headers) is True

    def test_invalid_signature(self):
        """Test that a tampered body is rejected."""
        headers = {"x-shopify-hmac-sha256": create_shopify_signature(BODY, SECRET)}
        assert verify_shopify_signature(SECRET, _flip_bit(BODY), headers) is False

    def test_invalid_base64(self):
        """Test that a signature that isn't base64 can't be verified."""
        with pytest.raises(InvalidSignatureFormatError):
            verify_shopify_signature(SECRET, BODY, {"x-shopify-hmac-sha256": "!!not base64!!"})


class TestSlackSignature:
    """Test Slack signature verification with replay protection."""

    def test_valid_signature(self):
        """Test valid Slack signature verification."""
        timestamp = str(int(time.time()))
        body = '{"type": "event_callback"}'
        headers = {
            "x-slack-signature": create_slack_signature(body, timestamp, SECRET),
            "x-slack-request-timestamp": timestamp,
        }
        assert verify_slack_signature(SECRET, body.encode(), headers) is True

    def test_invalid_signature(self):
        """Test invalid Slack signature rejection."""
        headers = {
            "x-slack-signature": "v0=invalid",
            "x-slack-request-timestamp": str(int(time.time())),
        }
        assert verify_slack_signature(SECRET, BODY, headers) is False

    def test_replay_protection(self):
        """Test replay attack protection."""
        old_timestamp = str(int(time.time()) - 600)  # 10 minutes ago
        body = '{"type": "event_callback"}'
        headers = {
            "x-slack-signature": create_slack_signature(body, old_timestamp, SECRET),
            "x-slack-request-timestamp": old_timestamp,
        }
        with pytest.raises(StaleTimestampError, match="timestamp too old"):
            verify_slack_signature(SECRET, body.encode(), headers)

    def test_missing_timestamp(self):
        """Test missing timestamp header."""
        with pytest.raises(MissingSignatureError):
            verify_slack_signature(SECRET, BODY, {"x-slack-signature": "v0=abc"})

    def test_invalid_timestamp(self):
        """Test non-numeric timestamp."""
        headers = {"x-slack-signature": "v0=abc", "x-slack-request-timestamp": "yesterday"}
        with pytest.raises(InvalidSignatureFormatError):
            verify_slack_signature(SECRET, BODY, headers)


class TestVerifierRegistry:
    """Test per-service scheme lookup."""

    def test_unknown_scheme_uses_default(self):
        """Test that services without a registered scheme use HMAC-SHA256."""
        name, verifier = get_verifier("acme")
        assert name == DEFAULT_SCHEME
        assert verifier is verify_default_signature

    def test_register_custom_scheme(self):
        """Test that a registered scheme is used for its services."""
        register_verifier("token-header", lambda secret, body, headers: headers.get("x-token") == secret)

        assert verify_webhook("token-header", SECRET, BODY, {"x-token": SECRET}) is True
        assert verify_webhook("token-header", SECRET, BODY, {"x-token": "nope"}) is False

    def test_verify_webhook_dispatches_to_scheme(self):
        """Test that verify_webhook picks the scheme's header."""
        headers = {"x-hub-signature-256": create_github_signature(BODY, SECRET)}
        assert verify_webhook("github", SECRET, BODY, headers, service_id="github") is True
        with pytest.raises(MissingSignatureError):
            verify_webhook("acme", SECRET, BODY, headers, service_id="acme")
