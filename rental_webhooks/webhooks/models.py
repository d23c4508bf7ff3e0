"""Webhook data model: inbound events, dedup records, request outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass
class WebhookEvent:
    """Validated inbound webhook envelope.

    ``timestamp`` is the partner-assigned event time, kept as the raw string.
    """

    event_id: str
    event_type: str
    timestamp: str
    data: dict[str, Any] = field(default_factory=dict)
    metadata: Any = None  # unvalidated passthrough


@dataclass(frozen=True)
class DedupRecord:
    """A previously processed event identity."""

    identity_hash: str
    first_seen_at: float  # epoch seconds


class WebhookOutcome(str, Enum):
    """How a single webhook delivery ended (audit log status)."""

    DISABLED = "disabled"
    SIGNATURE_FAILED = "signature_failed"
    INVALID_JSON = "invalid_json"
    MISSING_FIELDS = "missing_fields"
    DUPLICATE = "duplicate"
    PROCESSED = "processed"
    FAILED = "failed"
