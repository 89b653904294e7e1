"""Subscription registry - in-memory index of active watch channels.

Fast lookup during notification handling. Disposable: rebuilt from the
durable store on startup. Only the synchronizer mutates it.
"""

import threading
from typing import Dict, List, Optional

from calendar_sync.models.subscription import Subscription


class SubscriptionRegistry:
    """Thread-safe map of channel id to Subscription.

    Lookups never raise; missing entries come back as None or empty lists.
    """

    def __init__(self):
        self._subscriptions: Dict[str, Subscription] = {}
        self._lock = threading.RLock()

    def register(self, subscription: Subscription) -> None:
        """Add or replace a subscription (upsert by id).

        The registry keeps its own copy; callers mutating the passed object
        do not change what is registered.
        """
        with self._lock:
            self._subscriptions[subscription.id] = subscription.model_copy()

    def unregister(self, subscription_id: str) -> bool:
        """Remove a subscription.

        Returns:
            True if it was present
        """
        with self._lock:
            return self._subscriptions.pop(subscription_id, None) is not None

    def get(self, subscription_id: str) -> Optional[Subscription]:
        with self._lock:
            subscription = self._subscriptions.get(subscription_id)
        return subscription.model_copy() if subscription is not None else None

    def get_by_scope(self, scope: str) -> List[Subscription]:
        """Get all subscriptions watching a calendar, newest expiry first."""
        with self._lock:
            matches = [s.model_copy() for s in self._subscriptions.values() if s.scope == scope]
        return sorted(matches, key=lambda s: s.expires_at, reverse=True)

    def expiring_within(self, window_millis: int, now_millis: int) -> List[Subscription]:
        """Get subscriptions that are still valid but expire within the window."""
        deadline = now_millis + window_millis
        with self._lock:
            matches = [
                s.model_copy() for s in self._subscriptions.values() if now_millis <= s.expires_at < deadline
            ]
        return sorted(matches, key=lambda s: s.expires_at)

    def expired(self, now_millis: int) -> List[Subscription]:
        with self._lock:
            return [s.model_copy() for s in self._subscriptions.values() if s.is_expired(now_millis)]

    def all(self) -> List[Subscription]:
        with self._lock:
            return [s.model_copy() for s in self._subscriptions.values()]

    def scopes(self) -> List[str]:
        with self._lock:
            return sorted({s.scope for s in self._subscriptions.values()})

    def has(self, subscription_id: str) -> bool:
        with self._lock:
            return subscription_id in self._subscriptions

    def size(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def clear(self) -> None:
        with self._lock:
            self._subscriptions.clear()

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, subscription_id: str) -> bool:
        return self.has(subscription_id)

    def __repr__(self) -> str:
        return f"SubscriptionRegistry(subscriptions={self.size()})"
