"""Webhook HTTP handlers: FastAPI routes for the HQ Rentals webhook endpoint.

POST flow:
1. Feature gate (501 if disabled, body never read)
2. Read raw body (needed for HMAC verification)
3. Verify signature (401 on failure)
4. Parse and validate envelope (400, invalid JSON vs missing fields)
5. Check idempotency (200 "already processed" for duplicates)
6. Log redacted payload, dispatch by event type
7. Record identity, return 204

Security contract:
- Unexpected failures return 500 with the error text, never the secret or signature
- Unknown event types are accepted (204), not errors
- Log all webhook activity for audit trail
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from rental_webhooks.config import WebhookSettings
from rental_webhooks.webhooks.dispatcher import EventDispatcher, _sanitize_field
from rental_webhooks.webhooks.idempotency import EventDeduplicator, compute_identity
from rental_webhooks.webhooks.models import WebhookOutcome
from rental_webhooks.webhooks.redaction import REDACTED, safe_event_summary
from rental_webhooks.webhooks.validation import (
    InvalidJsonError,
    MissingFieldsError,
    parse_payload,
)
from rental_webhooks.webhooks.verification import SignatureVerifier, verify_hmac_sha256

logger = logging.getLogger(__name__)

_MISSING_FIELDS_MESSAGE = "eventId, eventType, and timestamp are required"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error(status_code: int, error: str, **extra: Any) -> JSONResponse:
    body = {"error": error, **extra, "timestamp": _now_iso()}
    return JSONResponse(body, status_code=status_code)


class WebhookEndpoint:
    """Orchestrates verification, validation, dedup and dispatch per request.

    Stateless across requests except through the deduplicator.
    """

    def __init__(
        self,
        settings: WebhookSettings,
        deduplicator: EventDeduplicator,
        dispatcher: EventDispatcher,
        verifier: SignatureVerifier = verify_hmac_sha256,
    ):
        self.settings = settings
        self.deduplicator = deduplicator
        self.dispatcher = dispatcher
        self._verifier = verifier
        # Per-outcome receive counter for the audit log
        self._outcome_counts: dict[str, int] = {}

    def _audit(self, event_type: str, event_id: str, outcome: WebhookOutcome) -> None:
        """Audit log line for webhook activity."""
        self._outcome_counts[outcome.value] = self._outcome_counts.get(outcome.value, 0) + 1
        logger.info(
            "WEBHOOK_AUDIT provider=%s event=%s id=%s status=%s count=%d",
            self.settings.provider,
            _sanitize_field(event_type),
            _sanitize_field(event_id),
            outcome.value,
            self._outcome_counts[outcome.value],
        )

    @property
    def outcome_counts(self) -> dict[str, int]:
        return dict(self._outcome_counts)

    def _scrub(self, message: str, signature: str | None) -> str:
        for sensitive in (self.settings.secret, signature):
            if sensitive and sensitive in message:
                message = message.replace(sensitive, REDACTED)
        return message

    async def handle_post(self, request: Request) -> Response:
        """Handle one webhook delivery. Never raises."""
        if not self.settings.enabled:
            self._audit("unknown", "unknown", WebhookOutcome.DISABLED)
            return _error(
                501,
                "Webhooks disabled",
                message="Set HQ_WEBHOOKS_ENABLED=true to enable webhook processing",
            )

        start = time.time()
        signature = None
        try:
            signature = request.headers.get(self.settings.signature_header)
            body = await request.body()

            if not self._verifier(body, signature, self.settings.secret):
                logger.warning("Invalid webhook signature")
                self._audit("unknown", "unknown", WebhookOutcome.SIGNATURE_FAILED)
                return _error(401, "Invalid signature")

            try:
                event = parse_payload(body)
            except InvalidJsonError as e:
                logger.warning("Invalid webhook JSON: %s", e)
                self._audit("unknown", "unknown", WebhookOutcome.INVALID_JSON)
                return _error(400, "Invalid JSON payload", reason=e.reason, message=str(e))
            except MissingFieldsError as e:
                self._audit("unknown", "unknown", WebhookOutcome.MISSING_FIELDS)
                return _error(
                    400,
                    "Missing required fields",
                    reason=e.reason,
                    message=f"{_MISSING_FIELDS_MESSAGE} (missing: {', '.join(e.missing)})",
                    missing=e.missing,
                )

            identity = compute_identity(event)
            if self.deduplicator.is_duplicate(identity):
                logger.info("Duplicate webhook event ignored: %s", _sanitize_field(event.event_id))
                self._audit(event.event_type, event.event_id, WebhookOutcome.DUPLICATE)
                return JSONResponse(
                    {
                        "message": "Event already processed",
                        "eventId": event.event_id,
                        "timestamp": _now_iso(),
                    },
                    status_code=200,
                )

            logger.info("HQ webhook received: %s", json.dumps(safe_event_summary(event), default=str))
            self.dispatcher.dispatch(event)
            self.deduplicator.record(identity)
            self._audit(event.event_type, event.event_id, WebhookOutcome.PROCESSED)
        except Exception as e:
            logger.exception("Webhook processing error")
            self._audit("unknown", "unknown", WebhookOutcome.FAILED)
            message = self._scrub(str(e) or type(e).__name__, signature)
            return _error(500, "Webhook processing failed", message=message)

        elapsed_ms = (time.time() - start) * 1000
        logger.debug("Webhook processed in %.1fms: %s", elapsed_ms, _sanitize_field(event.event_type))
        return Response(status_code=204)

    def status(self) -> dict[str, Any]:
        """Read-only endpoint status and dedup statistics."""
        last_sweep = self.deduplicator.last_sweep_at
        return {
            "enabled": self.settings.enabled,
            "endpoint": self.settings.endpoint_path,
            "methods": ["POST"],
            "signatureRequired": self.settings.signature_required,
            "processedEvents": self.deduplicator.count,
            "status": "active" if self.settings.enabled else "disabled",
            "lastCleanup": (
                datetime.fromtimestamp(last_sweep, tz=timezone.utc).isoformat()
                if last_sweep is not None
                else None
            ),
        }

    def preflight(self) -> Response:
        """CORS preflight response."""
        return Response(
            status_code=200,
            headers={
                "Access-Control-Allow-Origin": "*",
                "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
                "Access-Control-Allow-Headers": f"Content-Type, {self.settings.signature_header}",
            },
        )


def register_webhook_routes(app: FastAPI, endpoint: WebhookEndpoint) -> None:
    """Register the webhook POST/GET/OPTIONS routes on the FastAPI app."""
    path = endpoint.settings.endpoint_path

    @app.post(path)
    async def receive_webhook(request: Request):
        """Receive HQ Rentals webhooks (signature-verified when a secret is set)."""
        return await endpoint.handle_post(request)

    @app.get(path)
    async def webhook_status():
        """Webhook endpoint status and configuration."""
        return endpoint.status()

    @app.options(path)
    async def webhook_preflight():
        return endpoint.preflight()

    logger.info("Webhook routes registered: %s", path)
