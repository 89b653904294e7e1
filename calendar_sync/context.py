"""Service context - owns and wires every component.

Built once at startup and handed to the HTTP layer; there are no module-level
singletons. Tests build a context around in-memory fakes.
"""

import time
from typing import Callable, List, Optional

from calendar_sync.logging_config import get_logger
from calendar_sync.models.settings import Settings
from calendar_sync.repositories.mapping_store import IdentityMappingStore
from calendar_sync.repositories.subscription_registry import SubscriptionRegistry
from calendar_sync.repositories.subscription_store import (
    FirestoreSubscriptionStore,
    InMemorySubscriptionStore,
    SubscriptionStore,
)
from calendar_sync.services.calendar_client import CalendarClient
from calendar_sync.services.dedup_guard import DeduplicationGuard
from calendar_sync.services.event_sync import EventSyncService
from calendar_sync.services.google_credentials import load_service_account_info
from calendar_sync.services.mapping_loader import MappingLoadError, create_mapping_loader, refresh_mappings
from calendar_sync.services.notification_pipeline import NotificationPipeline
from calendar_sync.services.notification_worker import NotificationWorker
from calendar_sync.services.renewal_service import RenewalService
from calendar_sync.services.status_service import StatusService
from calendar_sync.services.synchronizer import Synchronizer
from calendar_sync.services.watch_manager import StartupReport, WatchManager
from calendar_sync.utils.clock import Clock
from calendar_sync.utils.periodic import PeriodicJob
from calendar_sync.utils.retry import RetryPolicy

logger = get_logger(__name__)


class ServiceContext:
    """Every long-lived component of the service.

    Args:
        settings: Validated settings
        store: Durable subscription store
        calendar_client: Google Calendar client
        mapping_loader: Object with a ``load()`` returning identity mappings
        clock: Time source shared by all components
        sleep: Sleep used between retries
    """

    def __init__(
        self,
        settings: Settings,
        store: SubscriptionStore,
        calendar_client: CalendarClient,
        mapping_loader,
        clock: Optional[Clock] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.clock = clock or Clock()
        self.retry_policy = RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            delay_ms=settings.retry_delay_ms,
        )

        self.registry = SubscriptionRegistry()
        self.store = store
        self.synchronizer = Synchronizer(
            self.registry,
            store,
            clock=self.clock,
            renewal_threshold_ms=settings.renewal_threshold_ms,
            stop_mode=settings.stop_mode,
        )
        self.dedup_guard = DeduplicationGuard(
            ttl_ms=settings.dedup_ttl_ms,
            sweep_interval_ms=settings.dedup_sweep_interval_ms,
            clock=self.clock,
        )
        self.mapping_store = IdentityMappingStore(clock=self.clock)
        self.mapping_loader = mapping_loader
        self.calendar_client = calendar_client

        self.event_sync = EventSyncService(calendar_client, self.mapping_store, self.retry_policy, sleep=sleep)
        self.worker = NotificationWorker(max_queue_size=settings.worker_queue_size)
        self.pipeline = NotificationPipeline(
            self.registry,
            self.dedup_guard,
            self.mapping_store,
            calendar_client,
            self.event_sync,
            self.worker,
            clock=self.clock,
            lookback_ms=settings.change_lookback_ms,
            max_results=settings.list_max_results,
            retry_policy=self.retry_policy,
            sleep=sleep,
        )
        self.renewal_service = RenewalService(
            self.synchronizer,
            calendar_client,
            settings.webhook_url,
            clock=self.clock,
            default_threshold_ms=settings.renewal_threshold_ms,
            renewal_interval_ms=settings.renewal_interval_ms,
            retry_policy=self.retry_policy,
            sleep=sleep,
        )
        self.watch_manager = WatchManager(
            self.synchronizer,
            calendar_client,
            self.mapping_store,
            settings.webhook_url,
            clock=self.clock,
            retry_policy=self.retry_policy,
            sleep=sleep,
        )
        self.status_service = StatusService(
            self.synchronizer,
            calendar_client,
            self.renewal_service,
            clock=self.clock,
            expiring_soon_ms=settings.renewal_threshold_ms,
        )

        self.jobs: List[PeriodicJob] = []
        self.startup_report: Optional[StartupReport] = None
        self.started = False

    def reload_mappings(self) -> int:
        """Refresh identity mappings from their source.

        Raises:
            MappingLoadError: If the source cannot be read (previous mapping kept)
        """
        return refresh_mappings(self.mapping_loader, self.mapping_store)

    def _scheduled_mapping_refresh(self) -> None:
        try:
            self.reload_mappings()
        except MappingLoadError:
            # already counted and logged by the mapping store
            return

    def _scheduled_renewal(self) -> None:
        self.renewal_service.renew_expiring()

    def startup(self, start_background: bool = True) -> StartupReport:
        """Load mappings, reconcile channels, then start background work.

        Runs before the first notification is accepted.
        """
        logger.info("service_starting", firestore_enabled=self.settings.firestore_enabled)

        try:
            self.reload_mappings()
        except MappingLoadError:
            logger.warning("starting_without_mappings")

        self.startup_report = self.watch_manager.reconcile_on_startup(
            store_enabled=self.settings.firestore_enabled
        )

        if start_background:
            self.dedup_guard.start()
            self.worker.start()
            if self.settings.mapping_refresh_interval_ms > 0:
                self.jobs.append(
                    PeriodicJob(
                        "mapping-refresh",
                        self.settings.mapping_refresh_interval_ms,
                        self._scheduled_mapping_refresh,
                    )
                )
            if self.settings.renewal_interval_ms > 0:
                self.jobs.append(
                    PeriodicJob("channel-renewal", self.settings.renewal_interval_ms, self._scheduled_renewal)
                )
            for job in self.jobs:
                job.start()

        self.started = True
        logger.info(
            "service_started",
            startup_mode=self.startup_report.mode,
            channels=self.registry.size(),
            mappings=self.mapping_store.size(),
        )
        return self.startup_report

    def shutdown(self) -> None:
        """Stop background work; stop channels only when nothing would restore them."""
        logger.info("service_shutting_down")
        for job in self.jobs:
            job.stop()
        self.jobs = []
        self.worker.stop()
        self.dedup_guard.stop()

        if not self.settings.firestore_enabled:
            self.watch_manager.stop_all()
        else:
            logger.info("channels_preserved_for_restart", channels=self.registry.size())

        self.started = False
        logger.info("service_stopped")


def build_context(settings: Settings) -> ServiceContext:
    """Wire production implementations from settings."""
    clock = Clock()
    service_account_info = load_service_account_info(settings)

    if settings.firestore_enabled:
        store: SubscriptionStore = FirestoreSubscriptionStore(
            collection_name=settings.firestore_collection,
            project=settings.firestore_project,
            clock=clock,
        )
    else:
        logger.warning("firestore_disabled_channels_not_persisted")
        store = InMemorySubscriptionStore(clock=clock)

    return ServiceContext(
        settings=settings,
        store=store,
        calendar_client=CalendarClient(service_account_info),
        mapping_loader=create_mapping_loader(settings, service_account_info),
        clock=clock,
    )
