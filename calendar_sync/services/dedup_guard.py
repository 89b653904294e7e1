"""Deduplication guard - time-bounded idempotency cache.

Google delivers bursts of notifications for one logical change. Entries keyed
by (scope, change id) suppress repeat processing for ``ttl_ms`` after the
first one. Callers check ``is_duplicate`` and, when it returns False, call
``mark_processing`` before doing any work. The gap between the two is not
locked; notifications are processed by a single worker so it stays
negligible.
"""

import threading
from typing import Dict, Optional

from calendar_sync.logging_config import get_logger
from calendar_sync.utils.clock import Clock
from calendar_sync.utils.periodic import PeriodicJob

logger = get_logger(__name__)


class DeduplicationGuard:
    """TTL cache of recently processed changes with a background sweeper."""

    def __init__(
        self,
        ttl_ms: int = 300_000,
        sweep_interval_ms: int = 60_000,
        clock: Optional[Clock] = None,
    ):
        if ttl_ms <= 0:
            raise ValueError(f"ttl_ms must be positive, got {ttl_ms}")
        self.ttl_ms = ttl_ms
        self.sweep_interval_ms = sweep_interval_ms
        self._clock = clock or Clock()
        self._entries: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._sweeper: Optional[PeriodicJob] = None

    @staticmethod
    def _key(scope: str, change_id: str) -> str:
        return f"{scope}:{change_id}"

    def is_duplicate(self, scope: str, change_id: str) -> bool:
        """Check for an unexpired entry; expired entries are evicted."""
        key = self._key(scope, change_id)
        now = self._clock.now_millis()
        with self._lock:
            first_seen = self._entries.get(key)
            if first_seen is None:
                return False
            if now - first_seen > self.ttl_ms:
                del self._entries[key]
                return False
            return True

    def mark_processing(self, scope: str, change_id: str) -> None:
        """Insert or refresh the entry for a change."""
        with self._lock:
            self._entries[self._key(scope, change_id)] = self._clock.now_millis()

    def sweep(self) -> int:
        """Remove entries older than the TTL.

        Returns:
            Number of entries removed
        """
        now = self._clock.now_millis()
        with self._lock:
            stale = [key for key, first_seen in self._entries.items() if now - first_seen > self.ttl_ms]
            for key in stale:
                del self._entries[key]
            remaining = len(self._entries)
        if stale:
            logger.debug("dedup_entries_swept", removed=len(stale), remaining=remaining)
        return len(stale)

    def start(self) -> None:
        if self.sweep_interval_ms <= 0 or self._sweeper is not None:
            return
        self._sweeper = PeriodicJob("dedup-sweep", self.sweep_interval_ms, self.sweep)
        self._sweeper.start()

    def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.stop()
            self._sweeper = None

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> Dict[str, int]:
        return {
            "size": self.size(),
            "ttlMs": self.ttl_ms,
            "sweepIntervalMs": self.sweep_interval_ms,
        }
