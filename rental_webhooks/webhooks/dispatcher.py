"""Webhook event dispatcher: routes validated events to handlers by event type.

Handlers are registered per event type. Anything outside the registry goes
to the default handler, which logs and returns, since HQ Rentals may add
event types without notice. Exceptions from a registered handler propagate
to the endpoint (reported as a 500, event not recorded as processed).

The built-in handlers only log. Real side effects (notifications, inventory
updates) are injected with register() under the same contract.
"""

from __future__ import annotations

import html
import logging
import re
from collections.abc import Callable
from typing import Any

from rental_webhooks.webhooks.models import WebhookEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[WebhookEvent], None]

# Maximum logged field length
_MAX_FIELD_LENGTH = 200

RESERVATION_CREATED = "reservation.created"
RESERVATION_UPDATED = "reservation.updated"
RESERVATION_CANCELLED = "reservation.cancelled"
VEHICLE_STATUS_CHANGED = "vehicle.status_changed"
PAYMENT_COMPLETED = "payment.completed"


def _sanitize_field(value: Any) -> str:
    """Sanitize a payload field value for safe inclusion in log lines."""
    if value is None:
        return ""
    s = str(value)
    # Strip HTML tags
    s = re.sub(r"<[^>]+>", "", s)
    s = html.unescape(s)
    # Collapse whitespace (also drops CR/LF used for log injection)
    s = re.sub(r"\s+", " ", s).strip()
    if len(s) > _MAX_FIELD_LENGTH:
        s = s[:_MAX_FIELD_LENGTH] + "..."
    return s


def handle_reservation_created(event: WebhookEvent) -> None:
    logger.info("New reservation created: %s", _sanitize_field(event.data.get("reservationId")))


def handle_reservation_updated(event: WebhookEvent) -> None:
    logger.info("Reservation updated: %s", _sanitize_field(event.data.get("reservationId")))


def handle_reservation_cancelled(event: WebhookEvent) -> None:
    logger.info("Reservation cancelled: %s", _sanitize_field(event.data.get("reservationId")))


def handle_vehicle_status_changed(event: WebhookEvent) -> None:
    logger.info(
        "Vehicle status changed: %s -> %s",
        _sanitize_field(event.data.get("vehicleId")),
        _sanitize_field(event.data.get("status")),
    )


def handle_payment_completed(event: WebhookEvent) -> None:
    logger.info("Payment completed: %s", _sanitize_field(event.data.get("paymentId")))


def handle_unknown_event(event: WebhookEvent) -> None:
    logger.info(
        "Unknown webhook event type: %s (id=%s) - acknowledged without action",
        _sanitize_field(event.event_type),
        _sanitize_field(event.event_id),
    )


_DEFAULT_HANDLERS: dict[str, EventHandler] = {
    RESERVATION_CREATED: handle_reservation_created,
    RESERVATION_UPDATED: handle_reservation_updated,
    RESERVATION_CANCELLED: handle_reservation_cancelled,
    VEHICLE_STATUS_CHANGED: handle_vehicle_status_changed,
    PAYMENT_COMPLETED: handle_payment_completed,
}


class EventDispatcher:
    """Registry of event type -> handler, with a fallback for unknown types."""

    def __init__(
        self,
        handlers: dict[str, EventHandler] | None = None,
        default: EventHandler | None = None,
    ):
        self._handlers: dict[str, EventHandler] = dict(handlers or {})
        self._default = default or handle_unknown_event

    @property
    def known_event_types(self) -> list[str]:
        return sorted(self._handlers)

    def register(self, event_type: str, handler: EventHandler) -> None:
        """Add or replace the handler for an event type."""
        if event_type in self._handlers:
            logger.info("Replacing webhook handler for %s", event_type)
        self._handlers[event_type] = handler

    def dispatch(self, event: WebhookEvent) -> None:
        """Run the handler for ``event.event_type`` (default handler if unknown)."""
        handler = self._handlers.get(event.event_type, self._default)
        logger.info(
            "Dispatching webhook event: %s (id=%s)",
            _sanitize_field(event.event_type),
            _sanitize_field(event.event_id),
        )
        handler(event)


def default_dispatcher() -> EventDispatcher:
    """Dispatcher with logging handlers for the known HQ Rentals event types."""
    return EventDispatcher(handlers=_DEFAULT_HANDLERS)
