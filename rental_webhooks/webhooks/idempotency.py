"""Webhook idempotency: envelope-hash deduplication with a 24h retention window.

Contract:
- Identity = SHA-256 of "eventId|timestamp|eventType" (not the full body),
  so retried deliveries with reordered or extra data still dedup
- Records are written only after a successful dispatch
- Records older than the retention window are swept, either when the live
  count crosses the high-water mark or when sweep() is called externally.
  TTL-backed stores expire records themselves and skip the high-water check
- Duplicate deliveries are acknowledged with 200, never reprocessed
- Check and record are separate steps: concurrent duplicates may both dispatch

Backends:
- InMemoryDedupStore: single-process dict behind a lock (default)
- RedisDedupStore: shared store with TTL; fails open if Redis is down
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections.abc import Callable
from typing import Protocol

from rental_webhooks.config import DEFAULT_REDIS_URL
from rental_webhooks.webhooks.models import DedupRecord, WebhookEvent

logger = logging.getLogger(__name__)

_DEDUP_TTL_SECONDS = 86400  # 24 hours
_HIGH_WATER_MARK = 1000

# Key prefix for webhook dedup
_KEY_PREFIX = "webhook:seen"


def compute_identity(event: WebhookEvent) -> str:
    """Return the dedup identity hash for an event envelope."""
    identity = f"{event.event_id}|{event.timestamp}|{event.event_type}"
    return hashlib.sha256(identity.encode("utf-8")).hexdigest()


class DedupStore(Protocol):
    """Storage backend for dedup records (identity hash -> first-seen time).

    Stores with ``expires_natively`` drop old records themselves (TTL), so
    record() skips the high-water check and never scans them.
    """

    expires_natively: bool

    def get(self, identity_hash: str) -> float | None: ...

    def put(self, identity_hash: str, first_seen_at: float) -> None: ...

    def delete(self, identity_hash: str) -> None: ...

    def records(self) -> list[DedupRecord]: ...

    def __len__(self) -> int: ...


class InMemoryDedupStore:
    """Process-local dedup store. Not shared across instances or restarts."""

    expires_natively = False

    def __init__(self) -> None:
        self._records: dict[str, float] = {}
        self._lock = threading.Lock()

    def get(self, identity_hash: str) -> float | None:
        with self._lock:
            return self._records.get(identity_hash)

    def put(self, identity_hash: str, first_seen_at: float) -> None:
        with self._lock:
            self._records[identity_hash] = first_seen_at

    def delete(self, identity_hash: str) -> None:
        with self._lock:
            self._records.pop(identity_hash, None)

    def records(self) -> list[DedupRecord]:
        with self._lock:
            return [DedupRecord(h, ts) for h, ts in self._records.items()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class RedisDedupStore:
    """Redis-backed dedup store for multi-instance deployments.

    Keys: webhook:seen:{provider}:{identity_hash} -> first-seen epoch seconds,
    written with a TTL equal to the retention window. Redis errors are logged
    and treated as "not seen" (fail-open for availability).
    """

    expires_natively = True

    def __init__(
        self,
        provider: str = "hq",
        redis_url: str | None = None,
        ttl_seconds: int = _DEDUP_TTL_SECONDS,
        client=None,
    ):
        self._provider = provider
        self._redis_url = redis_url or DEFAULT_REDIS_URL
        self._ttl_seconds = ttl_seconds
        self._client = client

    def _get_redis(self):
        if self._client is None:
            import redis as redis_lib

            self._client = redis_lib.from_url(self._redis_url, decode_responses=True)
        return self._client

    def _key(self, identity_hash: str) -> str:
        return f"{_KEY_PREFIX}:{self._provider}:{identity_hash}"

    def get(self, identity_hash: str) -> float | None:
        try:
            raw = self._get_redis().get(self._key(identity_hash))
        except Exception:
            logger.warning(
                "Redis unavailable for webhook dedup - allowing %s/%s",
                self._provider,
                identity_hash,
                exc_info=True,
            )
            return None
        if raw is None:
            return None
        try:
            return float(raw)
        except (TypeError, ValueError):
            logger.warning("Corrupt dedup record for %s/%s: %r", self._provider, identity_hash, raw)
            return None

    def put(self, identity_hash: str, first_seen_at: float) -> None:
        try:
            self._get_redis().set(
                self._key(identity_hash), repr(first_seen_at), ex=self._ttl_seconds
            )
        except Exception:
            logger.warning(
                "Failed to mark webhook as seen: %s/%s", self._provider, identity_hash
            )

    def delete(self, identity_hash: str) -> None:
        try:
            self._get_redis().delete(self._key(identity_hash))
        except Exception:
            logger.warning(
                "Failed to delete dedup record: %s/%s", self._provider, identity_hash
            )

    def _keys(self) -> list[str]:
        try:
            return list(self._get_redis().scan_iter(match=f"{_KEY_PREFIX}:{self._provider}:*"))
        except Exception:
            logger.warning("Redis unavailable for dedup scan", exc_info=True)
            return []

    def records(self) -> list[DedupRecord]:
        keys = self._keys()
        if not keys:
            return []
        try:
            values = self._get_redis().mget(keys)
        except Exception:
            logger.warning("Redis unavailable for dedup scan", exc_info=True)
            return []
        prefix_len = len(f"{_KEY_PREFIX}:{self._provider}:")
        result = []
        for key, raw in zip(keys, values):
            if raw is None:
                continue  # expired between SCAN and MGET
            try:
                result.append(DedupRecord(key[prefix_len:], float(raw)))
            except (TypeError, ValueError):
                continue
        return result

    def __len__(self) -> int:
        return len(self._keys())


def _wall_clock() -> float:
    return time.time()


class EventDeduplicator:
    """Tracks processed event identities with time-based expiry."""

    def __init__(
        self,
        store: DedupStore | None = None,
        clock: Callable[[], float] | None = None,
        retention_seconds: int = _DEDUP_TTL_SECONDS,
        high_water_mark: int = _HIGH_WATER_MARK,
    ):
        self._store = store if store is not None else InMemoryDedupStore()
        self._clock = clock or _wall_clock
        self.retention_seconds = retention_seconds
        self.high_water_mark = high_water_mark
        self.last_sweep_at: float | None = None

    @staticmethod
    def compute_identity(event: WebhookEvent) -> str:
        return compute_identity(event)

    @property
    def count(self) -> int:
        """Number of records currently held by the store."""
        return len(self._store)

    def _expired(self, first_seen_at: float, now: float) -> bool:
        return now - first_seen_at > self.retention_seconds

    def is_duplicate(self, identity_hash: str) -> bool:
        """True if a non-expired record exists for this identity."""
        first_seen_at = self._store.get(identity_hash)
        if first_seen_at is None:
            return False
        return not self._expired(first_seen_at, self._clock())

    def record(self, identity_hash: str) -> None:
        """Mark an identity as processed now (overwrites any earlier record)."""
        self._store.put(identity_hash, self._clock())
        if self._store.expires_natively:
            return
        if len(self._store) > self.high_water_mark:
            removed = self.sweep()
            logger.info("Dedup high-water mark exceeded, swept %d expired records", removed)

    def sweep(self) -> int:
        """Remove all records older than the retention window.

        Returns:
            Number of records removed
        """
        now = self._clock()
        expired = [r.identity_hash for r in self._store.records() if self._expired(r.first_seen_at, now)]
        for identity_hash in expired:
            self._store.delete(identity_hash)
        self.last_sweep_at = now
        if expired:
            logger.debug("Swept %d expired dedup records", len(expired))
        return len(expired)
