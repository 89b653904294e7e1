"""Tests for channel status reporting."""

from calendar_sync.models.subscription import Subscription, SubscriptionStatus
from calendar_sync.utils.clock import MILLIS_PER_DAY, MILLIS_PER_HOUR

START = 1_700_000_000_000


def make_subscription(sub_id, expires_in, status=SubscriptionStatus.ACTIVE):
    return Subscription(
        id=sub_id,
        resource_handle=f"res-{sub_id}",
        scope=f"{sub_id}@example.com",
        expires_at=START + expires_in,
        registered_at=START - MILLIS_PER_DAY,
        last_updated_at=START - MILLIS_PER_DAY,
        status=status,
    )


class TestChannelStatus:
    """Test the status report."""

    def test_channels_classified(self, context, store):
        store.save(make_subscription("fresh", 5 * MILLIS_PER_DAY))
        store.save(make_subscription("soon", 12 * MILLIS_PER_HOUR))
        store.save(make_subscription("late", -MILLIS_PER_HOUR))

        status = context.status_service.get_status()

        assert status.source == "store"
        assert status.summary.total == 3
        assert status.summary.active == 1
        assert status.summary.expiring_soon == 1
        assert status.summary.expired == 1
        assert [c.channel_id for c in status.channels] == ["late", "soon", "fresh"]
        assert [c.status for c in status.channels] == ["expired", "expiringSoon", "active"]

    def test_time_to_expiry(self, context, store):
        store.save(make_subscription("fresh", 6 * MILLIS_PER_DAY + 23 * MILLIS_PER_HOUR))

        channel = context.status_service.get_status().channels[0]

        assert channel.expires_in == 6 * MILLIS_PER_DAY + 23 * MILLIS_PER_HOUR
        assert channel.expires_in_human == "6d 23h"

    def test_marked_expired_record_reported_expired(self, context, store):
        store.save(make_subscription("flagged", 3 * MILLIS_PER_DAY, status=SubscriptionStatus.EXPIRED))

        assert context.status_service.get_status().channels[0].status == "expired"

    def test_stopped_records_excluded(self, context, store):
        store.save(make_subscription("stopped", 3 * MILLIS_PER_DAY, status=SubscriptionStatus.STOPPED))

        assert context.status_service.get_status().summary.total == 0

    def test_falls_back_to_registry_when_store_unreachable(self, context, store):
        context.synchronizer.cache_only(make_subscription("cached", 3 * MILLIS_PER_DAY))
        store.failing_operations.add("get_all_ordered_by_expiry")

        status = context.status_service.get_status()

        assert status.source == "registry"
        assert status.health.store_connected is False
        assert [c.channel_id for c in status.channels] == ["cached"]

    def test_health_block(self, context, calendar):
        calendar.configured = False

        health = context.status_service.get_status().health

        assert health.store_connected is True
        assert health.provider_connected is False
        assert health.last_renewal is None
        assert health.next_renewal is None

    def test_serializes_with_camel_case(self, context, store):
        store.save(make_subscription("soon", 12 * MILLIS_PER_HOUR))

        body = context.status_service.get_status().model_dump(by_alias=True)

        assert body["summary"]["expiringSoon"] == 1
        assert body["channels"][0]["channelId"] == "soon"
        assert "storeConnected" in body["health"]
