"""Webhook scheduler jobs: periodic dedup record eviction.

Runs every HQ_WEBHOOK_SWEEP_INTERVAL_SECONDS (default hourly) so expired
records are dropped even when traffic never reaches the high-water mark.
"""

from __future__ import annotations

import logging

from rental_webhooks.webhooks.idempotency import EventDeduplicator

logger = logging.getLogger(__name__)


def dedup_sweep_job(deduplicator: EventDeduplicator) -> int:
    """Sweep expired dedup records. Called by APScheduler; never raises.

    Returns:
        Number of records removed (0 on failure)
    """
    try:
        removed = deduplicator.sweep()
    except Exception:
        logger.exception("Webhook dedup sweep failed")
        return 0

    logger.info(
        "Webhook dedup sweep: removed=%d remaining=%d", removed, deduplicator.count
    )
    return removed
