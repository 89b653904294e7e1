"""Watch channel renewal.

Google Calendar watch channels expire (about 7 days after registration) and
cannot be extended in place. Renewing means stopping the old channel,
registering a new one for the same calendar and replacing the durable
record.

Overlapping runs are safe: each item is re-read from the store right before
it is renewed and skipped if another run already handled it.
"""

import threading
import time
from typing import Optional

from calendar_sync.logging_config import get_logger
from calendar_sync.models.api import (
    FailedChannel,
    RenewalResponse,
    RenewalSummary,
    RenewedChannel,
    SkippedChannel,
)
from calendar_sync.models.subscription import Subscription, SubscriptionStatus
from calendar_sync.repositories.subscription_store import StoreError
from calendar_sync.services.calendar_client import CalendarClient
from calendar_sync.services.synchronizer import Synchronizer
from calendar_sync.state_logger import log_subscription_replaced
from calendar_sync.utils.channel_ids import generate_channel_id
from calendar_sync.utils.clock import MILLIS_PER_DAY, MILLIS_PER_HOUR, Clock
from calendar_sync.utils.retry import DEFAULT_RETRY_POLICY, RetryPolicy, retry_after_seconds, with_retry

logger = get_logger(__name__)

DRY_RUN_REASON = "Dry run - no action taken"
NOT_ACTIVE_REASON = "No longer active (renewed or stopped by another run)"


class RenewalError(Exception):
    """Raised when a single channel cannot be renewed."""

    def __init__(self, subscription_id: str, scope: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.subscription_id = subscription_id
        self.scope = scope
        self.cause = cause


class RenewalService:
    def __init__(
        self,
        synchronizer: Synchronizer,
        calendar_client: CalendarClient,
        webhook_url: str,
        clock: Optional[Clock] = None,
        default_threshold_ms: int = MILLIS_PER_DAY,
        renewal_interval_ms: int = MILLIS_PER_HOUR,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        sleep=time.sleep,
    ):
        self._sync = synchronizer
        self._calendar = calendar_client
        self._webhook_url = webhook_url
        self._clock = clock or Clock()
        self.default_threshold_ms = default_threshold_ms
        self.renewal_interval_ms = renewal_interval_ms
        self._retry_policy = retry_policy
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_renewal: Optional[int] = None

    @property
    def last_renewal(self) -> Optional[int]:
        return self._last_renewal

    def next_renewal(self) -> Optional[int]:
        """When the in-process scheduler will run next, None if disabled or never run."""
        if self.renewal_interval_ms <= 0 or self._last_renewal is None:
            return None
        return self._last_renewal + self.renewal_interval_ms

    def find_expiring(self, threshold_ms: int) -> list[Subscription]:
        """Active channels expiring within threshold_ms from now.

        Raises:
            StoreError: If the store query fails
        """
        threshold = self._clock.now_millis() + threshold_ms
        expiring = self._sync.store.find_expiring_before(threshold)
        logger.info("expiring_channels_found", count=len(expiring), threshold_ms=threshold_ms)
        return expiring

    def renew_one(self, subscription: Subscription) -> RenewedChannel:
        """Replace one watch channel with a fresh registration.

        Raises:
            RenewalError: If the new channel cannot be registered or persisted
        """
        started = self._clock.now_millis()
        logger.info(
            "channel_renewal_started",
            subscription_id=subscription.id,
            scope=subscription.scope,
            expires_in_ms=subscription.expires_in(started),
        )

        try:
            with_retry(
                lambda: self._calendar.cancel(subscription.id, subscription.resource_handle),
                self._retry_policy,
                description="channels.stop",
                sleep=self._sleep,
            )
        except Exception as e:
            # an already expired or stopped channel is an acceptable outcome
            logger.warning(
                "old_channel_stop_failed",
                subscription_id=subscription.id,
                scope=subscription.scope,
                error=str(e),
            )

        new_channel_id = generate_channel_id(subscription.scope, self._clock.now_millis())
        try:
            registration = with_retry(
                lambda: self._calendar.register(subscription.scope, new_channel_id, self._webhook_url),
                self._retry_policy,
                description="events.watch",
                sleep=self._sleep,
            )
            replacement = Subscription.from_registration(registration, subscription.scope, self._clock.now_millis())
        except Exception as e:
            raise RenewalError(subscription.id, subscription.scope, str(e), cause=e) from e

        if replacement.expires_at <= subscription.expires_at:
            logger.warning(
                "renewed_expiry_not_extended",
                subscription_id=replacement.id,
                old_expires_at=subscription.expires_at,
                new_expires_at=replacement.expires_at,
            )

        try:
            self._sync.save_to_all(replacement)
        except StoreError as e:
            self._sync.cache_only(replacement)
            raise RenewalError(
                subscription.id,
                subscription.scope,
                f"new channel {replacement.id} registered but not persisted: {e}",
                cause=e,
            ) from e

        try:
            self._sync.remove_from_all(subscription.id)
        except StoreError as e:
            logger.warning("old_channel_record_not_removed", subscription_id=subscription.id, error=str(e))

        log_subscription_replaced(
            old_subscription_id=subscription.id,
            new_subscription_id=replacement.id,
            scope=subscription.scope,
            old_expires_at=subscription.expires_at,
            new_expires_at=replacement.expires_at,
        )
        return RenewedChannel(
            channel_id=subscription.id,
            new_channel_id=replacement.id,
            scope=subscription.scope,
            old_expiration=subscription.expires_at,
            new_expiration=replacement.expires_at,
            duration=self._clock.now_millis() - started,
        )

    def _revalidate(self, candidate: Subscription, threshold_ms: int) -> tuple[Optional[Subscription], Optional[str]]:
        """Re-read a candidate; return (subscription, None) to renew or (None, reason) to skip."""
        current = self._sync.store.get(candidate.id)
        if current is None or current.status != SubscriptionStatus.ACTIVE:
            return None, NOT_ACTIVE_REASON

        now = self._clock.now_millis()
        if current.expires_at >= now + threshold_ms:
            hours_left = round((current.expires_at - now) / MILLIS_PER_HOUR)
            return None, f"Expiration beyond threshold (still {hours_left} hours away)"
        return current, None

    def renew_expiring(self, threshold_ms: Optional[int] = None, dry_run: bool = False) -> RenewalResponse:
        """Renew every active channel expiring within the threshold.

        Raises:
            StoreError: If the expiring channels cannot be queried
        """
        threshold_ms = self.default_threshold_ms if threshold_ms is None else threshold_ms
        started = self._clock.now_millis()
        logger.info("channel_renewal_job_started", threshold_ms=threshold_ms, dry_run=dry_run)

        with self._lock:
            expiring = self.find_expiring(threshold_ms)
            response = RenewalResponse()

            for candidate in expiring:
                if dry_run:
                    response.skipped.append(
                        SkippedChannel(
                            channel_id=candidate.id,
                            scope=candidate.scope,
                            expiration=candidate.expires_at,
                            reason=DRY_RUN_REASON,
                        )
                    )
                    continue
                self._renew_candidate(candidate, threshold_ms, response)

            if not dry_run:
                self._last_renewal = self._clock.now_millis()

        response.summary = RenewalSummary(
            total=len(expiring),
            renewed=len(response.renewed),
            skipped=len(response.skipped),
            failed=len(response.failed),
            duration=self._clock.now_millis() - started,
        )
        logger.info(
            "channel_renewal_job_completed",
            dry_run=dry_run,
            total=response.summary.total,
            renewed=response.summary.renewed,
            skipped=response.summary.skipped,
            failed=response.summary.failed,
            duration_ms=response.summary.duration,
        )
        return response

    def _renew_candidate(self, candidate: Subscription, threshold_ms: int, response: RenewalResponse) -> None:
        try:
            current, skip_reason = self._revalidate(candidate, threshold_ms)
            if current is None:
                response.skipped.append(
                    SkippedChannel(
                        channel_id=candidate.id,
                        scope=candidate.scope,
                        expiration=candidate.expires_at,
                        reason=skip_reason,
                    )
                )
                return
            response.renewed.append(self.renew_one(current))
        except (RenewalError, StoreError) as e:
            cause = getattr(e, "cause", None) or e
            response.failed.append(
                FailedChannel(
                    channel_id=candidate.id,
                    scope=candidate.scope,
                    error=str(e),
                    retry_after=retry_after_seconds(cause, self._retry_policy),
                )
            )
            logger.error(
                "channel_renewal_failed",
                subscription_id=candidate.id,
                scope=candidate.scope,
                error=str(e),
                error_type=type(cause).__name__,
            )
