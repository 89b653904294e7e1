"""Registry/store synchronizer - write-through coordination.

The only component that mutates both the registry and the durable store.
Writes go to the store first and reach the registry only once the store
accepted them. When the store write fails the registry is left untouched
and the StoreError propagates to the caller.
"""

import threading
from dataclasses import dataclass, field
from typing import List, Optional

from calendar_sync.logging_config import get_logger
from calendar_sync.models.settings import StopMode
from calendar_sync.models.subscription import Subscription, SubscriptionStatus
from calendar_sync.repositories.subscription_registry import SubscriptionRegistry
from calendar_sync.repositories.subscription_store import (
    StoreError,
    SubscriptionNotFoundError,
    SubscriptionStore,
)
from calendar_sync.utils.clock import MILLIS_PER_DAY, Clock

logger = get_logger(__name__)


@dataclass
class LoadResult:
    """Counts from reconciling the store into the registry."""

    loaded: int = 0
    expired: int = 0
    needs_renewal: int = 0
    expired_ids: List[str] = field(default_factory=list)


@dataclass
class BulkPushResult:
    pushed: int = 0
    failed: int = 0


class Synchronizer:
    """Keeps SubscriptionRegistry and SubscriptionStore consistent."""

    def __init__(
        self,
        registry: SubscriptionRegistry,
        store: SubscriptionStore,
        clock: Optional[Clock] = None,
        renewal_threshold_ms: int = MILLIS_PER_DAY,
        stop_mode: StopMode = StopMode.DELETE,
    ):
        self.registry = registry
        self.store = store
        self._clock = clock or Clock()
        self._renewal_threshold_ms = renewal_threshold_ms
        self._stop_mode = stop_mode
        self._lock = threading.RLock()

    def load_from_store(self, detect_expired: bool = True) -> LoadResult:
        """Load active store records into the registry.

        Records whose expiry already passed are never loaded. With
        ``detect_expired`` they are also marked expired in the store,
        best-effort.

        Raises:
            StoreError: If the store cannot be read
        """
        now = self._clock.now_millis()
        renewal_deadline = now + self._renewal_threshold_ms
        result = LoadResult()

        subscriptions = self.store.load_all_active()

        with self._lock:
            for subscription in subscriptions:
                if subscription.is_stale_active(now):
                    result.expired += 1
                    result.expired_ids.append(subscription.id)
                    logger.warning(
                        "stale_active_subscription_detected",
                        subscription_id=subscription.id,
                        scope=subscription.scope,
                        expired_ms_ago=now - subscription.expires_at,
                    )
                    if detect_expired:
                        self._mark_expired_best_effort(subscription)
                    continue

                self.registry.register(subscription)
                result.loaded += 1
                if subscription.expires_at < renewal_deadline:
                    result.needs_renewal += 1

        logger.info(
            "registry_loaded_from_store",
            loaded=result.loaded,
            expired=result.expired,
            needs_renewal=result.needs_renewal,
        )
        return result

    def _mark_expired_best_effort(self, subscription: Subscription) -> None:
        try:
            self.store.mark_expired(subscription.id)
        except StoreError as e:
            logger.warning(
                "mark_expired_failed",
                subscription_id=subscription.id,
                error=str(e),
            )
            return
        subscription.set_status(SubscriptionStatus.EXPIRED, self._clock.now_millis(), reason="expired_before_load")

    def save_to_all(self, subscription: Subscription) -> None:
        """Persist a subscription, then make it visible in the registry.

        Raises:
            StoreError: If the store write fails (registry unchanged)
        """
        with self._lock:
            self.store.save(subscription)
            self.registry.register(subscription)
        logger.debug("subscription_synced", subscription_id=subscription.id, scope=subscription.scope)

    def cache_only(self, subscription: Subscription) -> None:
        """Registry-only registration, for when the store is unavailable."""
        with self._lock:
            self.registry.register(subscription)
        logger.warning(
            "subscription_cached_without_persistence",
            subscription_id=subscription.id,
            scope=subscription.scope,
        )

    def remove_from_all(self, subscription_id: str) -> None:
        """Delete (or mark stopped) in the store, then drop from the registry.

        A record already missing from the store is not an error.

        Raises:
            StoreError: If the store write fails (registry unchanged)
        """
        with self._lock:
            if self._stop_mode == StopMode.MARK_STOPPED:
                try:
                    self.store.mark_stopped(subscription_id)
                except SubscriptionNotFoundError:
                    logger.debug("stopped_subscription_not_in_store", subscription_id=subscription_id)
            else:
                self.store.delete(subscription_id)
            self.registry.unregister(subscription_id)
        logger.info("subscription_removed", subscription_id=subscription_id, stop_mode=self._stop_mode.value)

    def update_expiry_everywhere(self, subscription_id: str, new_expires_at: int) -> None:
        """Move a subscription's expiry in the store, then in the registry.

        Raises:
            ValueError: If the new expiry is not in the future (nothing written)
            StoreError: If the store write fails (registry unchanged)
        """
        now = self._clock.now_millis()
        if new_expires_at <= now:
            raise ValueError(f"new expiry {new_expires_at} is not after now ({now})")
        with self._lock:
            self.store.update_expiry(subscription_id, new_expires_at)
            cached = self.registry.get(subscription_id)
            if cached is not None:
                cached.extend_expiry(new_expires_at, now, reason="expiry_updated")
                self.registry.register(cached)

    def bulk_push_registry_to_store(self) -> BulkPushResult:
        """Write every registry entry to the store (backfill after an outage)."""
        result = BulkPushResult()
        for subscription in self.registry.all():
            try:
                self.store.save(subscription)
                result.pushed += 1
            except StoreError as e:
                result.failed += 1
                logger.warning("bulk_push_failed", subscription_id=subscription.id, error=str(e))
        logger.info("registry_pushed_to_store", pushed=result.pushed, failed=result.failed)
        return result
