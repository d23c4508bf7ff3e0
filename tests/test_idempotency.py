"""Tests for webhook deduplication: identity hashing, expiry, stores."""

from __future__ import annotations

import hashlib
from datetime import timedelta
from unittest.mock import MagicMock

from freezegun import freeze_time
from hypothesis import given
from hypothesis import strategies as st

from rental_webhooks.webhooks.idempotency import (
    EventDeduplicator,
    InMemoryDedupStore,
    RedisDedupStore,
    compute_identity,
)
from rental_webhooks.webhooks.models import DedupRecord, WebhookEvent
from rental_webhooks.webhooks.scheduler_jobs import dedup_sweep_job

DAY = 24 * 60 * 60


def _event(event_id="e1", event_type="reservation.created", timestamp="2024-01-01T00:00:00Z", data=None):
    return WebhookEvent(event_id, event_type, timestamp, data or {})


# ── Identity ──────────────────────────────────────────────────────────────


def test_identity_deterministic():
    """Same envelope should produce the same hash."""
    assert compute_identity(_event()) == compute_identity(_event())
    assert EventDeduplicator.compute_identity(_event()) == compute_identity(_event())


def test_identity_ignores_data_and_metadata():
    a = _event(data={"a": 1, "b": 2})
    b = _event(data={"b": 2, "a": 1, "extra": True})
    b.metadata = {"attempt": 3}
    assert compute_identity(a) == compute_identity(b)


def test_identity_is_sha256_of_pipe_joined_envelope():
    expected = hashlib.sha256(b"e1|2024-01-01T00:00:00Z|reservation.created").hexdigest()
    assert compute_identity(_event()) == expected


def test_identity_differs_per_field():
    base = compute_identity(_event())
    assert compute_identity(_event(event_id="e2")) != base
    assert compute_identity(_event(event_type="reservation.updated")) != base
    assert compute_identity(_event(timestamp="2024-01-02T00:00:00Z")) != base


@given(st.text(), st.text(), st.text())
def test_identity_is_hex_digest(event_id, event_type, timestamp):
    identity = compute_identity(_event(event_id, event_type, timestamp))
    assert len(identity) == 64
    int(identity, 16)


# ── EventDeduplicator ─────────────────────────────────────────────────────


class TestEventDeduplicator:
    """Duplicate detection and retention-window eviction."""

    def test_new_identity_not_duplicate(self, clock):
        dedup = EventDeduplicator(clock=clock)
        assert dedup.is_duplicate("abc") is False

    def test_recorded_identity_is_duplicate(self, clock):
        dedup = EventDeduplicator(clock=clock)
        dedup.record("abc")
        assert dedup.is_duplicate("abc") is True
        assert dedup.count == 1

    def test_expired_record_not_duplicate(self, clock):
        dedup = EventDeduplicator(clock=clock)
        dedup.record("abc")
        clock.advance(DAY + 1)
        assert dedup.is_duplicate("abc") is False

    def test_record_at_boundary_still_duplicate(self, clock):
        dedup = EventDeduplicator(clock=clock)
        dedup.record("abc")
        clock.advance(DAY)
        assert dedup.is_duplicate("abc") is True

    def test_record_overwrites_first_seen(self, clock):
        dedup = EventDeduplicator(clock=clock)
        dedup.record("abc")
        clock.advance(DAY - 10)
        dedup.record("abc")
        clock.advance(DAY - 10)
        assert dedup.is_duplicate("abc") is True

    def test_sweep_removes_only_expired(self, clock):
        dedup = EventDeduplicator(clock=clock)
        dedup.record("old")
        clock.advance(DAY - 60)
        dedup.record("fresh")
        clock.advance(120)
        assert dedup.sweep() == 1
        assert dedup.count == 1
        assert dedup.is_duplicate("fresh") is True
        assert dedup.last_sweep_at == clock.now

    def test_sweep_on_high_water_mark(self, clock):
        dedup = EventDeduplicator(clock=clock, high_water_mark=3)
        for i in range(3):
            dedup.record(f"old-{i}")
        clock.advance(DAY + 1)
        assert dedup.count == 3
        assert dedup.last_sweep_at is None

        dedup.record("new")  # 4 > 3 triggers sweep
        assert dedup.count == 1
        assert dedup.last_sweep_at == clock.now

    def test_high_water_mark_keeps_live_records(self, clock):
        dedup = EventDeduplicator(clock=clock, high_water_mark=2)
        for i in range(5):
            dedup.record(f"live-{i}")
        assert dedup.count == 5

    def test_custom_retention(self, clock):
        dedup = EventDeduplicator(clock=clock, retention_seconds=60)
        dedup.record("abc")
        clock.advance(61)
        assert dedup.is_duplicate("abc") is False

    def test_wall_clock_with_freezegun(self):
        with freeze_time("2024-01-01 00:00:00") as frozen:
            dedup = EventDeduplicator()
            dedup.record("abc")
            frozen.tick(timedelta(seconds=DAY - 1))
            assert dedup.is_duplicate("abc") is True
            frozen.tick(timedelta(seconds=2))
            assert dedup.is_duplicate("abc") is False
            assert dedup.sweep() == 1

    def test_instances_isolated(self, clock):
        a = EventDeduplicator(clock=clock)
        b = EventDeduplicator(clock=clock)
        a.record("abc")
        assert b.is_duplicate("abc") is False


# ── Stores ────────────────────────────────────────────────────────────────


class TestInMemoryDedupStore:
    def test_put_get_delete(self):
        store = InMemoryDedupStore()
        store.put("h", 10.0)
        assert store.get("h") == 10.0
        assert len(store) == 1
        assert store.records() == [DedupRecord("h", 10.0)]
        store.delete("h")
        assert store.get("h") is None
        store.delete("h")  # idempotent
        assert len(store) == 0


class TestRedisDedupStore:
    """Redis backend (mocked client)."""

    def test_put_sets_ttl(self):
        mock_r = MagicMock()
        store = RedisDedupStore(provider="hq", ttl_seconds=DAY, client=mock_r)
        store.put("abc", 1700000000.0)
        mock_r.set.assert_called_once()
        args, kwargs = mock_r.set.call_args
        assert args[0] == "webhook:seen:hq:abc"
        assert float(args[1]) == 1700000000.0
        assert kwargs["ex"] == DAY

    def test_get_parses_timestamp(self):
        mock_r = MagicMock()
        mock_r.get.return_value = "1700000000.5"
        store = RedisDedupStore(client=mock_r)
        assert store.get("abc") == 1700000000.5
        mock_r.get.assert_called_once_with("webhook:seen:hq:abc")

    def test_get_missing(self):
        mock_r = MagicMock()
        mock_r.get.return_value = None
        assert RedisDedupStore(client=mock_r).get("abc") is None

    def test_redis_down_fails_open(self):
        """Redis failure -> treated as not seen (allow webhook)."""
        mock_r = MagicMock()
        mock_r.get.side_effect = Exception("Redis connection refused")
        mock_r.set.side_effect = Exception("Redis connection refused")
        store = RedisDedupStore(client=mock_r)
        dedup = EventDeduplicator(store=store)
        assert dedup.is_duplicate("abc") is False
        dedup.record("abc")  # logged, not raised

    def test_record_does_not_scan_keyspace(self, clock):
        """TTL expires Redis keys, so record() never counts or sweeps them."""
        mock_r = MagicMock()
        dedup = EventDeduplicator(store=RedisDedupStore(client=mock_r), clock=clock, high_water_mark=0)
        dedup.record("a")
        dedup.record("b")
        assert mock_r.set.call_count == 2
        assert mock_r.scan_iter.call_count == 0
        assert mock_r.mget.call_count == 0
        assert dedup.last_sweep_at is None

    def test_corrupt_value_ignored(self):
        mock_r = MagicMock()
        mock_r.get.return_value = "not-a-number"
        assert RedisDedupStore(client=mock_r).get("abc") is None

    def test_records_skips_expired_keys(self):
        mock_r = MagicMock()
        mock_r.scan_iter.return_value = iter(["webhook:seen:hq:a", "webhook:seen:hq:b"])
        mock_r.mget.return_value = ["100.0", None]
        store = RedisDedupStore(client=mock_r)
        assert store.records() == [DedupRecord("a", 100.0)]
        mock_r.scan_iter.assert_called_with(match="webhook:seen:hq:*")

    def test_sweep_deletes_expired(self, clock):
        mock_r = MagicMock()
        mock_r.scan_iter.return_value = iter(["webhook:seen:hq:old", "webhook:seen:hq:new"])
        mock_r.mget.return_value = [str(clock.now - DAY - 5), str(clock.now - 5)]
        dedup = EventDeduplicator(store=RedisDedupStore(client=mock_r), clock=clock)
        assert dedup.sweep() == 1
        mock_r.delete.assert_called_once_with("webhook:seen:hq:old")


# ── Scheduler job ─────────────────────────────────────────────────────────


class TestDedupSweepJob:
    def test_job_sweeps(self, clock):
        dedup = EventDeduplicator(clock=clock)
        dedup.record("abc")
        clock.advance(DAY + 1)
        assert dedup_sweep_job(dedup) == 1
        assert dedup.count == 0

    def test_job_never_raises(self):
        dedup = MagicMock()
        dedup.sweep.side_effect = RuntimeError("store down")
        assert dedup_sweep_job(dedup) == 0
