"""Short-lived memoization of recognition results.

Keystroke-driven forms call recognition repeatedly with the same
normalized input; the cache answers those calls without another
identity store query. It is a pure latency optimization: a miss always
recomputes the same answer.
"""

import hashlib
import json
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from src.identity.schemas import (
    RecognitionInput,
    RecognitionOptions,
    RecognitionResult,
)

logger = structlog.get_logger()

SWEEP_JOB_ID = "recognition_cache_sweep"


@dataclass(frozen=True)
class CacheEntry:
    """A cached result and when it was recorded (monotonic seconds).

    The audit fields hold what the lookup that produced it recorded, so a hit is
    audited exactly like the miss it replays.
    """

    tenant_id: str
    result: RecognitionResult
    recorded_at: float
    audit_ids: tuple[str, ...] = ()
    audit_confidence: int | None = None


class RecognitionCache:
    """Thread-safe TTL cache for recognition results.

    Entries are replaced whole under a short-held lock, so a concurrent
    reader sees either the previous or the new entry, never a partial one.
    Expired entries are dropped lazily on lookup and by a periodic sweep
    started with start() and stopped with stop().
    """

    def __init__(
        self,
        ttl_seconds: float = 30.0,
        max_entries: int = 5000,
        sweep_interval_seconds: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize an empty cache.

        Args:
            ttl_seconds: Maximum age of an entry that still counts as a hit
            max_entries: Size bound; the least recently used entry is
                evicted when full
            sweep_interval_seconds: How often the background sweep runs
            clock: Monotonic time source (injectable for tests)
        """
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._sweep_interval = sweep_interval_seconds
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._scheduler: AsyncIOScheduler | None = None

    @staticmethod
    def make_key(
        tenant_id: str,
        query: RecognitionInput,
        options: RecognitionOptions,
    ) -> str:
        """Stable hash of tenant, normalized input and options."""
        payload = {
            "tenant_id": tenant_id,
            "input": query.model_dump(mode="json"),
            "options": options.model_dump(mode="json"),
        }
        encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()

    def get(self, key: str) -> RecognitionResult | None:
        """Return the cached result if it is younger than the TTL."""
        entry = self.get_entry(key)
        return entry.result if entry is not None else None

    def get_entry(self, key: str) -> CacheEntry | None:
        """Return the whole entry (result and audit context) if fresh."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if now - entry.recorded_at > self._ttl:
                del self._entries[key]
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry

    def set(
        self,
        key: str,
        tenant_id: str,
        result: RecognitionResult,
        audit_ids: tuple[str, ...] = (),
        audit_confidence: int | None = None,
    ) -> None:
        """Store a result, evicting the least recently used entry if full."""
        entry = CacheEntry(
            tenant_id=tenant_id,
            result=result,
            recorded_at=self._clock(),
            audit_ids=tuple(audit_ids),
            audit_confidence=audit_confidence,
        )
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    def invalidate_tenant(self, tenant_id: str) -> int:
        """Drop every entry for a tenant (after profile data changed).

        Returns:
            Number of entries removed
        """
        with self._lock:
            stale = [k for k, e in self._entries.items() if e.tenant_id == tenant_id]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug("recognition cache invalidated", tenant_id=tenant_id, removed=len(stale))
        return len(stale)

    def clear(self) -> None:
        """Remove all entries and reset statistics."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def sweep(self) -> int:
        """Remove expired entries.

        Works from a snapshot so lookups are only blocked for the
        individual deletions, not for the scan.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        with self._lock:
            snapshot = list(self._entries.items())
        expired = [k for k, e in snapshot if now - e.recorded_at > self._ttl]
        removed = 0
        for key in expired:
            with self._lock:
                entry = self._entries.get(key)
                # Skip keys rewritten since the snapshot
                if entry is not None and now - entry.recorded_at > self._ttl:
                    del self._entries[key]
                    removed += 1
        if removed:
            logger.debug("recognition cache swept", removed=removed)
        return removed

    def stats(self) -> dict[str, float | int]:
        """Hit/miss counters and current size."""
        with self._lock:
            total = self._hits + self._misses
            return {
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": (self._hits / total) if total else 0.0,
                "size": len(self._entries),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def running(self) -> bool:
        """True while the background sweep is scheduled."""
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """Schedule the periodic sweep. Must be called from a running event loop."""
        if self.running:
            return
        self._scheduler = AsyncIOScheduler(timezone=UTC)
        self._scheduler.add_job(
            self.sweep,
            "interval",
            seconds=self._sweep_interval,
            id=SWEEP_JOB_ID,
            replace_existing=True,
            max_instances=1,
        )
        self._scheduler.start()
        logger.info("Starting recognition cache sweep", interval_seconds=self._sweep_interval)

    def stop(self) -> None:
        """Cancel the periodic sweep."""
        if self._scheduler is None:
            return
        if self._scheduler.running:
            logger.info("Shutting down recognition cache sweep")
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
