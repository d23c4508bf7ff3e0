"""FastAPI application for the HQ Rentals webhook receiver.

Run with ``rental-webhooks --port 8080`` or ``uvicorn rental_webhooks.serve:app``.
With TESTING=1 the lifespan skips the APScheduler sweep job.
"""

from __future__ import annotations

import argparse
import logging
import os
from contextlib import asynccontextmanager

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI

from rental_webhooks.config import WebhookSettings, load_webhook_settings
from rental_webhooks.webhooks.dispatcher import default_dispatcher
from rental_webhooks.webhooks.handlers import WebhookEndpoint, register_webhook_routes
from rental_webhooks.webhooks.idempotency import (
    EventDeduplicator,
    InMemoryDedupStore,
    RedisDedupStore,
)
from rental_webhooks.webhooks.scheduler_jobs import dedup_sweep_job

logger = logging.getLogger(__name__)


def build_endpoint(settings: WebhookSettings) -> WebhookEndpoint:
    """Wire the dedup store, dispatcher and verifier for the given settings."""
    if settings.dedup_backend == "redis":
        store = RedisDedupStore(
            provider=settings.provider,
            redis_url=settings.redis_url,
            ttl_seconds=settings.retention_seconds,
        )
    else:
        store = InMemoryDedupStore()

    deduplicator = EventDeduplicator(
        store=store,
        retention_seconds=settings.retention_seconds,
        high_water_mark=settings.dedup_max_entries,
    )
    return WebhookEndpoint(settings, deduplicator, default_dispatcher())


def _start_scheduler(endpoint: WebhookEndpoint) -> BackgroundScheduler | None:
    interval = endpoint.settings.sweep_interval_seconds
    if os.environ.get("TESTING") == "1" or interval <= 0:
        return None
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        dedup_sweep_job,
        "interval",
        seconds=interval,
        args=[endpoint.deduplicator],
        id="webhook_dedup_sweep",
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info("Webhook dedup sweep scheduled every %ds", interval)
    return scheduler


def create_app(settings: WebhookSettings | None = None) -> FastAPI:
    """Create the FastAPI app with the webhook routes registered."""
    settings = settings or load_webhook_settings()
    endpoint = build_endpoint(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler = _start_scheduler(endpoint)
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.shutdown(wait=False)

    app = FastAPI(title="HQ Rentals Webhooks", lifespan=lifespan)
    app.state.webhook_endpoint = endpoint

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    register_webhook_routes(app, endpoint)
    logger.info(
        "Webhook endpoint %s enabled=%s signature_required=%s backend=%s",
        settings.endpoint_path,
        settings.enabled,
        settings.signature_required,
        settings.dedup_backend,
    )
    return app


app = create_app()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="rental-webhooks",
        description="HQ Rentals webhook receiver",
    )
    parser.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Bind port (default: 8080)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    import uvicorn

    uvicorn.run("rental_webhooks.serve:app", host=args.host, port=args.port)


if __name__ == "__main__":
    main()
