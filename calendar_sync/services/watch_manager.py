"""Watch channel manager - registration, stopping and startup reconciliation.

Every mapped primary user gets one watch channel on their calendar.
"""

import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from calendar_sync.logging_config import get_logger
from calendar_sync.models.api import (
    RegisteredChannel,
    ResyncFailure,
    ResyncResponse,
    ResyncSummary,
    StoppedChannel,
)
from calendar_sync.models.subscription import Subscription
from calendar_sync.repositories.mapping_store import IdentityMappingStore
from calendar_sync.repositories.subscription_store import StoreError
from calendar_sync.services.calendar_client import CalendarClient
from calendar_sync.services.synchronizer import LoadResult, Synchronizer
from calendar_sync.utils.channel_ids import generate_channel_id
from calendar_sync.utils.clock import Clock
from calendar_sync.utils.retry import DEFAULT_RETRY_POLICY, RetryPolicy, with_retry

logger = get_logger(__name__)


@dataclass
class RegistrationBatch:
    registered: List[Subscription] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)


@dataclass
class StartupReport:
    """How the registry was brought up."""

    mode: str  # "restored", "full_registration" or "skipped"
    load: Optional[LoadResult] = None
    registered: int = 0
    failed: int = 0


class WatchManager:
    def __init__(
        self,
        synchronizer: Synchronizer,
        calendar_client: CalendarClient,
        mapping_store: IdentityMappingStore,
        webhook_url: str,
        clock: Optional[Clock] = None,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        sleep=time.sleep,
    ):
        self._sync = synchronizer
        self._calendar = calendar_client
        self._mappings = mapping_store
        self._webhook_url = webhook_url
        self._clock = clock or Clock()
        self._retry_policy = retry_policy
        self._sleep = sleep

    def register_channel(self, scope: str) -> Subscription:
        """Register a watch channel for one calendar and persist it.

        Falls back to registry-only when the store write fails.

        Raises:
            Exception: provider error after retries, or ValueError for an
                already expired registration
        """
        channel_id = generate_channel_id(scope, self._clock.now_millis())
        registration = with_retry(
            lambda: self._calendar.register(scope, channel_id, self._webhook_url),
            self._retry_policy,
            description="events.watch",
            sleep=self._sleep,
        )
        subscription = Subscription.from_registration(registration, scope, self._clock.now_millis())

        try:
            self._sync.save_to_all(subscription)
        except StoreError as e:
            logger.warning(
                "channel_persistence_failed",
                subscription_id=subscription.id,
                scope=scope,
                error=str(e),
            )
            self._sync.cache_only(subscription)

        return subscription

    def _register_scopes(self, scopes: List[str]) -> RegistrationBatch:
        batch = RegistrationBatch()
        for scope in scopes:
            try:
                batch.registered.append(self.register_channel(scope))
            except Exception as e:
                batch.failed.append((scope, str(e)))
                logger.error(
                    "channel_registration_failed",
                    scope=scope,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        logger.info(
            "channel_registration_completed",
            total=len(scopes),
            registered=len(batch.registered),
            failed=len(batch.failed),
        )
        return batch

    def register_all(self) -> RegistrationBatch:
        """Register a channel for every mapped primary user."""
        return self._register_scopes(self._mappings.all_primaries())

    def register_missing(self) -> RegistrationBatch:
        """Register channels for primaries without a live registry entry."""
        now = self._clock.now_millis()
        watched = {s.scope for s in self._sync.registry.all() if not s.is_expired(now)}
        missing = [p for p in self._mappings.all_primaries() if p not in watched]
        if not missing:
            logger.info("no_missing_channels", watched=len(watched))
            return RegistrationBatch()
        return self._register_scopes(missing)

    def _cancel_best_effort(self, subscription: Subscription) -> None:
        try:
            self._calendar.cancel(subscription.id, subscription.resource_handle)
        except Exception as e:
            logger.warning(
                "channel_stop_failed",
                subscription_id=subscription.id,
                scope=subscription.scope,
                error=str(e),
            )

    def stop_channel(self, subscription_id: str) -> bool:
        """Stop a channel at the provider and remove it everywhere.

        Returns:
            False if the channel is unknown

        Raises:
            StoreError: If the durable record cannot be removed
        """
        subscription = self._sync.registry.get(subscription_id)
        if subscription is None:
            subscription = self._sync.store.get(subscription_id)
        if subscription is None:
            logger.warning("stop_unknown_channel", subscription_id=subscription_id)
            return False

        self._cancel_best_effort(subscription)
        self._sync.remove_from_all(subscription_id)
        return True

    def _known_subscriptions(self) -> List[Subscription]:
        known = {s.id: s for s in self._sync.registry.all()}
        try:
            for subscription in self._sync.store.load_all_active():
                known.setdefault(subscription.id, subscription)
        except StoreError as e:
            logger.warning("store_unavailable_using_registry", error=str(e))
        return list(known.values())

    def stop_all(self) -> Tuple[List[Subscription], List[Tuple[Subscription, str]]]:
        """Stop every known channel.

        Returns:
            (stopped, failed) where failed pairs a subscription with the error
        """
        stopped: List[Subscription] = []
        failed: List[Tuple[Subscription, str]] = []
        for subscription in self._known_subscriptions():
            self._cancel_best_effort(subscription)
            try:
                self._sync.remove_from_all(subscription.id)
                stopped.append(subscription)
            except StoreError as e:
                failed.append((subscription, str(e)))
        logger.info("all_channels_stopped", stopped=len(stopped), failed=len(failed))
        return stopped, failed

    def force_resync(self, reason: Optional[str] = None) -> ResyncResponse:
        """Stop every channel and register one per mapped primary."""
        started = self._clock.now_millis()
        logger.warning("force_resync_started", reason=reason)

        response = ResyncResponse(reason=reason)
        stopped, stop_failures = self.stop_all()
        response.stopped = [StoppedChannel(channel_id=s.id, scope=s.scope) for s in stopped]
        response.failed = [
            ResyncFailure(scope=s.scope, channel_id=s.id, operation="stop", error=error)
            for s, error in stop_failures
        ]

        batch = self.register_all()
        response.registered = [
            RegisteredChannel(channel_id=s.id, scope=s.scope, expiration=s.expires_at) for s in batch.registered
        ]
        response.failed.extend(
            ResyncFailure(scope=scope, operation="register", error=error) for scope, error in batch.failed
        )

        response.summary = ResyncSummary(
            stopped=len(response.stopped),
            registered=len(response.registered),
            failed=len(response.failed),
            duration=self._clock.now_millis() - started,
        )
        logger.warning(
            "force_resync_completed",
            reason=reason,
            stopped=response.summary.stopped,
            registered=response.summary.registered,
            failed=response.summary.failed,
        )
        return response

    def reconcile_on_startup(self, store_enabled: bool = True) -> StartupReport:
        """Bring the registry up before notifications are accepted.

        Restores from the store and registers only what is missing. Falls back
        to registering every primary when the store is disabled or unreachable.
        """
        if self._mappings.size() == 0:
            logger.warning("no_mappings_loaded_skipping_registration")
            return StartupReport(mode="skipped")

        if store_enabled:
            try:
                load = self._sync.load_from_store(detect_expired=True)
            except StoreError as e:
                logger.error("store_restore_failed_registering_all", error=str(e))
            else:
                batch = self.register_missing()
                return StartupReport(
                    mode="restored",
                    load=load,
                    registered=len(batch.registered),
                    failed=len(batch.failed),
                )

        batch = self.register_all()
        return StartupReport(
            mode="full_registration",
            registered=len(batch.registered),
            failed=len(batch.failed),
        )
