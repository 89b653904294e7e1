"""Notification pipeline - from push notification to attendee propagation.

Per inbound notification:
    sync handshake    -> acknowledged, dropped
    unknown channel   -> rejected (404), dedup guard untouched
    change (exists)   -> queued on the worker, acknowledged immediately
    anything else     -> ignored

Background processing of a change lists the calendar's recently updated
events, resolves each to its synchronization unit (the event, or the series
root for a recurring instance), gates on the deduplication guard and runs the
propagation action. One failing unit never aborts its siblings.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from calendar_sync.logging_config import get_logger
from calendar_sync.repositories.mapping_store import IdentityMappingStore
from calendar_sync.repositories.subscription_registry import SubscriptionRegistry
from calendar_sync.services.calendar_client import CalendarClient
from calendar_sync.services.dedup_guard import DeduplicationGuard
from calendar_sync.services.event_sync import EventSyncService
from calendar_sync.services.notification_worker import NotificationWorker
from calendar_sync.utils.clock import MILLIS_PER_HOUR, Clock
from calendar_sync.utils.event_ids import RecurringInstance, parse_event_id
from calendar_sync.utils.retry import DEFAULT_RETRY_POLICY, RetryPolicy, with_retry

logger = get_logger(__name__)

SYNC_STATE = "sync"
CHANGE_STATES = frozenset({"exists", "update"})


class NotificationOutcome(str, Enum):
    SYNC_ACKNOWLEDGED = "sync_acknowledged"
    UNKNOWN_CHANNEL = "unknown_channel"
    ACCEPTED = "accepted"
    IGNORED = "ignored"
    QUEUE_FULL = "queue_full"


@dataclass(frozen=True)
class Notification:
    """Headers of one Google Calendar push notification."""

    channel_id: str
    resource_state: str
    resource_id: str
    message_number: Optional[int] = None


@dataclass
class BatchResult:
    """Counts for one pass over a calendar's changed events."""

    scope: str
    fetched: int = 0
    synced: int = 0
    skipped: int = 0
    duplicates: int = 0
    failed: int = 0
    scope_unmapped: bool = False


class NotificationPipeline:
    def __init__(
        self,
        registry: SubscriptionRegistry,
        dedup_guard: DeduplicationGuard,
        mapping_store: IdentityMappingStore,
        calendar_client: CalendarClient,
        event_sync: EventSyncService,
        worker: NotificationWorker,
        clock: Optional[Clock] = None,
        lookback_ms: int = MILLIS_PER_HOUR,
        max_results: int = 200,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        sleep=time.sleep,
    ):
        self._registry = registry
        self._dedup = dedup_guard
        self._mappings = mapping_store
        self._calendar = calendar_client
        self._event_sync = event_sync
        self._worker = worker
        self._clock = clock or Clock()
        self._lookback_ms = lookback_ms
        self._max_results = max_results
        self._retry_policy = retry_policy
        self._sleep = sleep

    def handle_notification(self, notification: Notification) -> NotificationOutcome:
        """Classify a notification and queue change processing.

        Never calls the provider; returns as soon as the task is queued.
        """
        state = notification.resource_state.lower()

        if state == SYNC_STATE:
            logger.debug("sync_handshake_acknowledged", channel_id=notification.channel_id)
            return NotificationOutcome.SYNC_ACKNOWLEDGED

        subscription = self._registry.get(notification.channel_id)
        if subscription is None:
            logger.warning(
                "notification_for_unknown_channel",
                channel_id=notification.channel_id,
                resource_state=state,
            )
            return NotificationOutcome.UNKNOWN_CHANNEL

        if state not in CHANGE_STATES:
            logger.info(
                "notification_ignored",
                channel_id=notification.channel_id,
                resource_state=state,
            )
            return NotificationOutcome.IGNORED

        scope = subscription.scope
        queued = self._worker.submit(
            "process_changes",
            lambda: self.process_changes(scope, notification.channel_id),
            scope=scope,
            channel_id=notification.channel_id,
            message_number=notification.message_number,
        )
        if not queued:
            return NotificationOutcome.QUEUE_FULL

        logger.info(
            "notification_accepted",
            channel_id=notification.channel_id,
            scope=scope,
            message_number=notification.message_number,
        )
        return NotificationOutcome.ACCEPTED

    def process_changes(self, scope: str, channel_id: Optional[str] = None) -> BatchResult:
        """Propagate attendees for every event changed within the lookback window.

        Raises:
            Exception: If the changed-events listing fails after retries
        """
        started = self._clock.now_millis()
        result = BatchResult(scope=scope)

        if not self._mappings.has_primary(scope):
            logger.debug("calendar_owner_unmapped", scope=scope, channel_id=channel_id)
            result.scope_unmapped = True
            return result

        since = started - self._lookback_ms
        items = with_retry(
            lambda: self._calendar.list_changed_since(scope, since, self._max_results),
            self._retry_policy,
            description="events.list",
            sleep=self._sleep,
        )
        result.fetched = len(items)

        for item in items:
            event_id = item.get("id")
            if not event_id:
                continue
            self._process_item(scope, event_id, result)

        logger.info(
            "calendar_changes_processed",
            scope=scope,
            channel_id=channel_id,
            fetched=result.fetched,
            synced=result.synced,
            skipped=result.skipped,
            duplicates=result.duplicates,
            failed=result.failed,
            duration_ms=self._clock.now_millis() - started,
        )
        return result

    def _process_item(self, scope: str, event_id: str, result: BatchResult) -> None:
        parsed = parse_event_id(event_id)
        unit_id = parsed.unit_id
        if isinstance(parsed, RecurringInstance):
            logger.debug("recurring_instance_resolved", scope=scope, instance_id=event_id, root_id=unit_id)

        if self._dedup.is_duplicate(scope, unit_id):
            result.duplicates += 1
            logger.info("event_sync_duplicate_skipped", scope=scope, unit_id=unit_id, event_id=event_id)
            return
        self._dedup.mark_processing(scope, unit_id)

        try:
            sync_result = self._event_sync.sync_unit(scope, unit_id)
        except Exception as e:
            result.failed += 1
            logger.error(
                "event_sync_failed",
                scope=scope,
                unit_id=unit_id,
                event_id=event_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        if sync_result.skipped:
            result.skipped += 1
        else:
            result.synced += 1
