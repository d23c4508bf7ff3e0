"""Shared fixtures for the webhook receiver test suite."""

from __future__ import annotations

import os

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.datastructures import Headers

# Skip the APScheduler sweep job in app lifespans
os.environ.setdefault("TESTING", "1")

from rental_webhooks.config import WebhookSettings  # noqa: E402
from rental_webhooks.webhooks.dispatcher import default_dispatcher  # noqa: E402
from rental_webhooks.webhooks.handlers import (  # noqa: E402
    WebhookEndpoint,
    register_webhook_routes,
)
from rental_webhooks.webhooks.idempotency import EventDeduplicator  # noqa: E402


class FakeClock:
    """Controllable epoch-seconds clock for dedup expiry tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRequest:
    """Minimal stand-in for starlette.Request (async body(), headers)."""

    def __init__(self, body: bytes = b"", headers: dict | None = None, error: Exception | None = None):
        self._body = body
        self._error = error
        self.headers = Headers(headers=headers or {})
        self.body_reads = 0

    async def body(self) -> bytes:
        self.body_reads += 1
        if self._error is not None:
            raise self._error
        return self._body


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_endpoint(clock):
    """Factory for WebhookEndpoint instances with isolated dedup state."""

    def _make(enabled: bool = True, secret: str | None = None, dispatcher=None, **kwargs):
        settings = WebhookSettings(enabled=enabled, secret=secret, **kwargs)
        deduplicator = EventDeduplicator(
            clock=clock,
            retention_seconds=settings.retention_seconds,
            high_water_mark=settings.dedup_max_entries,
        )
        return WebhookEndpoint(settings, deduplicator, dispatcher or default_dispatcher())

    return _make


@pytest.fixture
def make_client(make_endpoint):
    """Factory returning (TestClient, WebhookEndpoint) on a bare FastAPI app."""

    def _make(**kwargs):
        endpoint = make_endpoint(**kwargs)
        app = FastAPI()
        register_webhook_routes(app, endpoint)
        return TestClient(app, raise_server_exceptions=False), endpoint

    return _make


@pytest.fixture
def client(make_client):
    """Enabled endpoint, no secret configured."""
    c, _ = make_client(enabled=True)
    return c


@pytest.fixture
def make_request():
    """Factory for FakeRequest objects (direct handle_post calls)."""
    return FakeRequest
