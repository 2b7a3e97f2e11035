"""
Webhook signature verification, pluggable per service.

Every scheme is a function `(secret, body, headers) -> bool` over the raw request
body and lower-cased headers. It returns False on a signature mismatch and raises
a VerificationError when the request can't be verified at all (missing header,
malformed signature, stale timestamp). Unknown services use the default
HMAC-SHA256 scheme.
"""

import base64
import binascii
import hashlib
import hmac
import time
from collections.abc import Callable, Mapping

from .logging import log_webhook_verification_failed, log_webhook_verified
from .settings import settings

DEFAULT_SCHEME = "default"
DEFAULT_SIGNATURE_HEADER = "x-signature"

WebhookVerifier = Callable[[str, bytes, Mapping[str, str]], bool]


class VerificationError(Exception):
    """Base exception for webhook verification errors."""
    pass


class MissingSignatureError(VerificationError):
    """The signature (or another header the scheme needs) is absent."""
    pass


class InvalidSignatureFormatError(VerificationError):
    """The signature header doesn't have the scheme's format."""
    pass


class StaleTimestampError(VerificationError):
    """The signed timestamp is outside the replay window."""
    pass


def _hmac_sha256(secret: str, message: bytes) -> bytes:
    return hmac.new(secret.encode(), message, hashlib.sha256).digest()


def _require_header(headers: Mapping[str, str], name: str, scheme: str) -> str:
    value = headers.get(name)
    if not value:
        log_webhook_verification_failed(None, "missing_header", scheme=scheme, header=name)
        raise MissingSignatureError(f"Missing {name} header")
    return value


def verify_default_signature(secret: str, body: bytes, headers: Mapping[str, str]) -> bool:
    """
    Verify a hex HMAC-SHA256 of the raw body sent in `X-Signature`.

    A `sha256=` prefix on the header value is accepted.
    """
    signature = _require_header(headers, DEFAULT_SIGNATURE_HEADER, DEFAULT_SCHEME).strip()
    if signature.startswith("sha256="):
        signature = signature[7:]

    computed_signature = _hmac_sha256(secret, body).hex()

    # Use constant-time comparison to prevent timing attacks
    return hmac.compare_digest(signature.lower().encode(), computed_signature.encode())


def verify_github_signature(secret: str, body: bytes, headers: Mapping[str, str]) -> bool:
    """
    Verify GitHub's `X-Hub-Signature-256: sha256=<hex>`.
    """
    signature = _require_header(headers, "x-hub-signature-256", "github")

    if not signature.startswith("sha256="):
        log_webhook_verification_failed("github", "invalid_signature_format")
        raise InvalidSignatureFormatError("Invalid signature format")

    computed_signature = _hmac_sha256(secret, body).hex()
    return hmac.compare_digest(signature[7:].encode(), computed_signature.encode())


def verify_shopify_signature(secret: str, body: bytes, headers: Mapping[str, str]) -> bool:
    """
    Verify Shopify's base64 HMAC-SHA256 in `X-Shopify-Hmac-Sha256`.
    """
    signature = _require_header(headers, "x-shopify-hmac-sha256", "shopify")
    try:
        expected_digest = base64.b64decode(signature, validate=True)
    except (binascii.Error, ValueError) as e:
        log_webhook_verification_failed("shopify", "invalid_signature_format")
        raise InvalidSignatureFormatError("Invalid signature format") from e

    return hmac.compare_digest(expected_digest, _hmac_sha256(secret, body))


def verify_slack_signature(secret: str, body: bytes, headers: Mapping[str, str]) -> bool:
    """
    Verify Slack's `X-Slack-Signature: v0=<hex>` over `v0:<timestamp>:<body>`.

    Requests whose `X-Slack-Request-Timestamp` is outside the replay window are rejected.
    """
    signature = _require_header(headers, "x-slack-signature", "slack")
    timestamp = _require_header(headers, "x-slack-request-timestamp", "slack")

    # Check timestamp to prevent replay attacks
    try:
        request_timestamp = int(timestamp)
    except (ValueError, TypeError) as e:
        log_webhook_verification_failed("slack", "invalid_timestamp")
        raise InvalidSignatureFormatError("Invalid timestamp format") from e

    age_seconds = abs(int(time.time()) - request_timestamp)
    if age_seconds > settings.max_timestamp_age_seconds:
        log_webhook_verification_failed("slack", "timestamp_too_old", age_seconds=age_seconds)
        raise StaleTimestampError(f"Request timestamp too old, age={age_seconds}s")

    if not signature.startswith("v0="):
        log_webhook_verification_failed("slack", "invalid_signature_format")
        raise InvalidSignatureFormatError("Invalid signature format")

    base_string = f"v0:{timestamp}:".encode() + body
    computed_signature = _hmac_sha256(secret, base_string).hex()
    return hmac.compare_digest(signature[3:].encode(), computed_signature.encode())


_VERIFIERS: dict[str, WebhookVerifier] = {
    DEFAULT_SCHEME: verify_default_signature,
    "github": verify_github_signature,
    "shopify": verify_shopify_signature,
    "slack": verify_slack_signature,
}


def register_verifier(scheme: str, verifier: WebhookVerifier) -> None:
    """Register (or replace) the verifier used for services with this scheme."""
    _VERIFIERS[scheme] = verifier


def get_verifier(scheme: str | None) -> tuple[str, WebhookVerifier]:
    """Verifier for a scheme, falling back to the default HMAC-SHA256 scheme."""
    if scheme and scheme in _VERIFIERS:
        return scheme, _VERIFIERS[scheme]
    return DEFAULT_SCHEME, _VERIFIERS[DEFAULT_SCHEME]


def verify_webhook(
    scheme: str | None,
    secret: str,
    body: bytes,
    headers: Mapping[str, str],
    service_id: str | None = None,
) -> bool:
    """
    Verify a webhook with the scheme registered for `scheme`.

    Returns:
        True if the signature is valid, False otherwise

    Raises:
        VerificationError: the request can't be verified with this scheme
    """
    scheme_name, verifier = get_verifier(scheme)
    is_valid = verifier(secret, body, headers)

    if is_valid:
        log_webhook_verified(service_id, scheme_name)
    else:
        log_webhook_verification_failed(service_id, "signature_mismatch", scheme=scheme_name)
    return is_valid
