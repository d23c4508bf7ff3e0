"""Redaction of sensitive webhook data before logging.

A top-level ``data`` key is sensitive when its lowercased name contains any
of the fragments below (substring match, so ``customerEmail`` and
``driver_license_no`` both match). Values of sensitive keys are replaced
with a fixed marker; nested values are not inspected.
"""

from __future__ import annotations

from typing import Any

from rental_webhooks.webhooks.models import WebhookEvent

SENSITIVE_KEY_FRAGMENTS = ("email", "phone", "ssn", "license", "payment", "card")
REDACTED = "[REDACTED]"


def is_sensitive_key(key: str) -> bool:
    lowered = str(key).lower()
    return any(fragment in lowered for fragment in SENSITIVE_KEY_FRAGMENTS)


def redact_data(data: dict[str, Any] | None) -> dict[str, Any]:
    """Return a copy of ``data`` with sensitive values replaced."""
    return {
        key: REDACTED if is_sensitive_key(key) else value
        for key, value in (data or {}).items()
    }


def safe_event_summary(event: WebhookEvent) -> dict[str, Any]:
    """Loggable representation of an event, with ``data`` redacted."""
    return {
        "eventId": event.event_id,
        "eventType": event.event_type,
        "timestamp": event.timestamp,
        "dataKeys": list((event.data or {}).keys()),
        "data": redact_data(event.data),
    }
