"""Structured logging utilities for the triggers module."""

from typing import Any

from conduit.common.logging_setup import get_logger

logger = get_logger(__name__)


def log_webhook_received(service_id: str | None, subscription_id: str, **kwargs: Any) -> None:
    """Log webhook received with structured data."""
    log_data = {
        "event": "webhook_received",
        "service_id": service_id,
        "subscription_id": subscription_id,
        **kwargs
    }
    logger.info("Webhook received", extra=log_data)


def log_webhook_verified(service_id: str | None, scheme: str, **kwargs: Any) -> None:
    """Log successful webhook verification with structured data."""
    log_data = {
        "event": "webhook_verified",
        "service_id": service_id,
        "scheme": scheme,
        **kwargs
    }
    logger.info("Webhook signature verified", extra=log_data)


def log_webhook_verification_failed(
    service_id: str | None,
    reason: str,
    **kwargs: Any
) -> None:
    """Log failed webhook verification with structured data."""
    log_data = {
        "event": "webhook_verification_failed",
        "service_id": service_id,
        "reason": reason,
        **kwargs
    }
    logger.warning("Webhook verification failed", extra=log_data)


def log_security_violation(
    violation_type: str,
    requester_ip: str | None,
    **kwargs: Any
) -> None:
    """Audit log for requests rejected at the platform boundary."""
    log_data = {
        "event": "security_violation",
        "violation_type": violation_type,
        "requester_ip": requester_ip,
        **kwargs
    }
    logger.warning("Security violation", extra=log_data)


def log_event_routed(
    event_type: str,
    source: str,
    candidates: int,
    dispatched: int,
    **kwargs: Any
) -> None:
    """Log the outcome of routing one event with structured data."""
    log_data = {
        "event": "event_routed",
        "event_type": event_type,
        "source": source,
        "candidates": candidates,
        "dispatched": dispatched,
        **kwargs
    }
    logger.info("Event routed", extra=log_data)


def log_subscription_failed(
    subscription_id: str,
    event_type: str,
    error: str,
    **kwargs: Any
) -> None:
    """Log a subscription that could not be processed for an event."""
    log_data = {
        "event": "subscription_failed",
        "subscription_id": subscription_id,
        "event_type": event_type,
        "error": error,
        **kwargs
    }
    logger.error("Subscription processing failed", extra=log_data)


def log_dispatch_enqueued(
    envelope_id: str,
    action_type: str,
    attempt: int,
    delay_seconds: int = 0,
    **kwargs: Any
) -> None:
    """Log an action attempt enqueued with structured data."""
    log_data = {
        "event": "dispatch_enqueued",
        "envelope_id": envelope_id,
        "action_type": action_type,
        "attempt": attempt,
        "delay_seconds": delay_seconds,
        **kwargs
    }
    logger.info("Dispatch enqueued", extra=log_data)


def log_dispatch_succeeded(
    envelope_id: str,
    action_type: str,
    attempt: int,
    **kwargs: Any
) -> None:
    """Log a successful action attempt with structured data."""
    log_data = {
        "event": "dispatch_succeeded",
        "envelope_id": envelope_id,
        "action_type": action_type,
        "attempt": attempt,
        **kwargs
    }
    logger.info("Dispatch succeeded", extra=log_data)


def log_dispatch_attempt_failed(
    envelope_id: str,
    action_type: str,
    attempt: int,
    error: str,
    **kwargs: Any
) -> None:
    """Log a failed action attempt that will be retried."""
    log_data = {
        "event": "dispatch_attempt_failed",
        "envelope_id": envelope_id,
        "action_type": action_type,
        "attempt": attempt,
        "error": error,
        **kwargs
    }
    logger.warning("Dispatch attempt failed", extra=log_data)


def log_dispatch_failed(
    envelope_id: str,
    action_type: str,
    attempts: int,
    error: str,
    **kwargs: Any
) -> None:
    """Log an action that exhausted its attempts with structured data."""
    log_data = {
        "event": "dispatch_failed",
        "envelope_id": envelope_id,
        "action_type": action_type,
        "attempts": attempts,
        "error": error,
        **kwargs
    }
    logger.error("Dispatch failed permanently", extra=log_data)


def get_triggers_logger() -> Any:
    """Get the triggers module logger."""
    return logger
