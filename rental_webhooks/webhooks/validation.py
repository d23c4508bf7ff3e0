"""Webhook payload parsing and envelope validation."""

from __future__ import annotations

import json
from typing import Any

from rental_webhooks.webhooks.models import WebhookEvent

REQUIRED_FIELDS = ("eventId", "eventType", "timestamp")


class PayloadValidationError(ValueError):
    """Inbound payload rejected before dispatch."""

    reason = "invalid_payload"


class InvalidJsonError(PayloadValidationError):
    """Body is not a JSON object (or ``data`` is not an object)."""

    reason = "invalid_json"


class MissingFieldsError(PayloadValidationError):
    """One or more envelope fields are absent or empty."""

    reason = "missing_fields"

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Missing required fields: {', '.join(missing)}")


def _envelope_value(value: Any) -> str:
    # JSON spelling for non-string scalars (true, not True)
    return value if isinstance(value, str) else json.dumps(value, separators=(",", ":"))


def _reject_constant(name: str) -> Any:
    raise InvalidJsonError(f"Invalid JSON: {name} is not a valid JSON value")


def parse_payload(raw: str | bytes) -> WebhookEvent:
    """Parse a raw webhook body into a WebhookEvent.

    Raises:
        InvalidJsonError: body is not valid JSON, not an object, or ``data``
            is present but not an object
        MissingFieldsError: eventId, eventType or timestamp absent/empty
    """
    try:
        payload = json.loads(raw, parse_constant=_reject_constant)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidJsonError(f"Invalid JSON: {e}") from e
    except RecursionError as e:
        raise InvalidJsonError("Invalid JSON: payload nested too deeply") from e

    if not isinstance(payload, dict):
        raise InvalidJsonError("Payload must be a JSON object")

    # Falsy values (None, "", 0) count as missing
    missing = [name for name in REQUIRED_FIELDS if not payload.get(name)]
    if missing:
        raise MissingFieldsError(missing)

    data = payload.get("data")
    if data is None:
        data = {}
    elif not isinstance(data, dict):
        raise InvalidJsonError("data must be a JSON object")

    return WebhookEvent(
        event_id=_envelope_value(payload["eventId"]),
        event_type=_envelope_value(payload["eventType"]),
        timestamp=_envelope_value(payload["timestamp"]),
        data=data,
        metadata=payload.get("metadata"),
    )
