"""Webhook receiver configuration, read from environment variables.

Variables:
- HQ_WEBHOOKS_ENABLED: "true" turns the endpoint on (default off -> 501)
- HQ_WEBHOOK_SECRET: shared HMAC secret; unset allows unsigned webhooks
- HQ_WEBHOOK_SIGNATURE_HEADER: header carrying the hex signature
- HQ_WEBHOOK_PROVIDER: path segment under /webhooks/
- HQ_WEBHOOK_RETENTION_SECONDS / HQ_WEBHOOK_DEDUP_MAX_ENTRIES: dedup window and high-water mark
- HQ_WEBHOOK_DEDUP_BACKEND: "memory" or "redis" (REDIS_URL)
- HQ_WEBHOOK_SWEEP_INTERVAL_SECONDS: scheduled sweep interval, 0 disables
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_SIGNATURE_HEADER = "X-HQ-Signature"
DEFAULT_RETENTION_SECONDS = 24 * 60 * 60
DEFAULT_DEDUP_MAX_ENTRIES = 1000
DEFAULT_SWEEP_INTERVAL_SECONDS = 3600
DEFAULT_REDIS_URL = "redis://localhost:6381/0"

_BACKENDS = ("memory", "redis")


@dataclass(frozen=True)
class WebhookSettings:
    """Settings for the HQ webhook endpoint."""

    enabled: bool = False
    secret: str | None = None
    signature_header: str = DEFAULT_SIGNATURE_HEADER
    provider: str = "hq"
    retention_seconds: int = DEFAULT_RETENTION_SECONDS
    dedup_max_entries: int = DEFAULT_DEDUP_MAX_ENTRIES
    dedup_backend: str = "memory"
    redis_url: str = DEFAULT_REDIS_URL
    sweep_interval_seconds: int = DEFAULT_SWEEP_INTERVAL_SECONDS

    @property
    def signature_required(self) -> bool:
        return bool(self.secret)

    @property
    def endpoint_path(self) -> str:
        return f"/webhooks/{self.provider}"


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() == "true"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid integer for %s=%r, using default %d", name, raw, default)
        return default
    if value < 0:
        logger.warning("Negative value for %s=%d, using default %d", name, value, default)
        return default
    return value


def load_webhook_settings() -> WebhookSettings:
    """Build WebhookSettings from the current environment."""
    backend = os.environ.get("HQ_WEBHOOK_DEDUP_BACKEND", "memory").strip().lower()
    if backend not in _BACKENDS:
        logger.warning("Unknown HQ_WEBHOOK_DEDUP_BACKEND=%r, using in-memory store", backend)
        backend = "memory"

    return WebhookSettings(
        enabled=_env_bool("HQ_WEBHOOKS_ENABLED"),
        secret=os.environ.get("HQ_WEBHOOK_SECRET") or None,
        signature_header=os.environ.get(
            "HQ_WEBHOOK_SIGNATURE_HEADER", DEFAULT_SIGNATURE_HEADER
        ),
        provider=os.environ.get("HQ_WEBHOOK_PROVIDER", "hq"),
        retention_seconds=_env_int("HQ_WEBHOOK_RETENTION_SECONDS", DEFAULT_RETENTION_SECONDS),
        dedup_max_entries=_env_int("HQ_WEBHOOK_DEDUP_MAX_ENTRIES", DEFAULT_DEDUP_MAX_ENTRIES),
        dedup_backend=backend,
        redis_url=os.environ.get("REDIS_URL", DEFAULT_REDIS_URL),
        sweep_interval_seconds=_env_int(
            "HQ_WEBHOOK_SWEEP_INTERVAL_SECONDS", DEFAULT_SWEEP_INTERVAL_SECONDS
        ),
    )
