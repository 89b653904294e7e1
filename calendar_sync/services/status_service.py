"""Channel status reporting for operators."""

from typing import Optional

from calendar_sync.logging_config import get_logger
from calendar_sync.models.api import ChannelStatus, HealthBlock, StatusResponse, StatusSummary
from calendar_sync.models.subscription import Subscription, SubscriptionStatus
from calendar_sync.repositories.subscription_store import StoreError
from calendar_sync.services.calendar_client import CalendarClient
from calendar_sync.services.renewal_service import RenewalService
from calendar_sync.services.synchronizer import Synchronizer
from calendar_sync.utils.clock import MILLIS_PER_DAY, Clock, format_duration

logger = get_logger(__name__)

STATUS_ACTIVE = "active"
STATUS_EXPIRING_SOON = "expiringSoon"
STATUS_EXPIRED = "expired"


class StatusService:
    def __init__(
        self,
        synchronizer: Synchronizer,
        calendar_client: CalendarClient,
        renewal_service: RenewalService,
        clock: Optional[Clock] = None,
        expiring_soon_ms: int = MILLIS_PER_DAY,
    ):
        self._sync = synchronizer
        self._calendar = calendar_client
        self._renewal = renewal_service
        self._clock = clock or Clock()
        self._expiring_soon_ms = expiring_soon_ms

    def classify(self, subscription: Subscription, now_millis: int) -> str:
        expires_in = subscription.expires_in(now_millis)
        if expires_in < 0 or subscription.status == SubscriptionStatus.EXPIRED:
            return STATUS_EXPIRED
        if expires_in < self._expiring_soon_ms:
            return STATUS_EXPIRING_SOON
        return STATUS_ACTIVE

    def get_status(self) -> StatusResponse:
        """All channels with time to expiry, read from the store when reachable."""
        now = self._clock.now_millis()
        source = "store"
        store_connected = True
        try:
            subscriptions = [
                s for s in self._sync.store.get_all_ordered_by_expiry() if s.status != SubscriptionStatus.STOPPED
            ]
        except StoreError as e:
            logger.warning("status_store_unavailable", error=str(e))
            store_connected = False
            source = "registry"
            subscriptions = sorted(self._sync.registry.all(), key=lambda s: s.expires_at)

        channels = []
        summary = StatusSummary(total=len(subscriptions))
        for subscription in subscriptions:
            category = self.classify(subscription, now)
            if category == STATUS_EXPIRED:
                summary.expired += 1
            elif category == STATUS_EXPIRING_SOON:
                summary.expiring_soon += 1
            else:
                summary.active += 1
            channels.append(
                ChannelStatus(
                    channel_id=subscription.id,
                    scope=subscription.scope,
                    resource_handle=subscription.resource_handle,
                    expiration=subscription.expires_at,
                    expires_in=subscription.expires_in(now),
                    expires_in_human=format_duration(subscription.expires_in(now)),
                    status=category,
                    registered_at=subscription.registered_at,
                    last_updated_at=subscription.last_updated_at,
                )
            )

        health = HealthBlock(
            store_connected=store_connected,
            provider_connected=self._calendar.is_configured(),
            last_renewal=self._renewal.last_renewal,
            next_renewal=self._renewal.next_renewal(),
        )
        return StatusResponse(channels=channels, summary=summary, health=health, source=source)
