"""Tests for SubscriptionRegistry - in-memory index of watch channels."""

import pytest

from calendar_sync.models.subscription import Subscription
from calendar_sync.repositories.subscription_registry import SubscriptionRegistry
from calendar_sync.utils.clock import MILLIS_PER_DAY, MILLIS_PER_HOUR

NOW = 1_700_000_000_000


def make_subscription(sub_id: str, scope: str = "alice@example.com", expires_in: int = 7 * MILLIS_PER_DAY):
    return Subscription(
        id=sub_id,
        resource_handle=f"res-{sub_id}",
        scope=scope,
        expires_at=NOW + expires_in,
        registered_at=NOW,
        last_updated_at=NOW,
    )


@pytest.fixture
def registry():
    return SubscriptionRegistry()


class TestRegistryBasics:
    """Test register/unregister/get."""

    def test_registry_initializes_empty(self, registry):
        assert registry.size() == 0
        assert registry.all() == []

    def test_register_and_get(self, registry):
        registry.register(make_subscription("ch-1"))
        found = registry.get("ch-1")
        assert found is not None
        assert found.scope == "alice@example.com"
        assert "ch-1" in registry

    def test_get_missing_returns_none(self, registry):
        assert registry.get("nope") is None

    def test_unregister_missing_does_not_raise(self, registry):
        assert registry.unregister("nope") is False

    def test_unregister_removes(self, registry):
        registry.register(make_subscription("ch-1"))
        assert registry.unregister("ch-1") is True
        assert not registry.has("ch-1")

    def test_register_same_id_updates_in_place(self, registry):
        """Registering the same id with a later expiry replaces, never duplicates."""
        registry.register(make_subscription("ch-1", expires_in=MILLIS_PER_HOUR))
        registry.register(make_subscription("ch-1", expires_in=5 * MILLIS_PER_DAY))

        assert registry.size() == 1
        assert registry.get("ch-1").expires_at == NOW + 5 * MILLIS_PER_DAY

    def test_registry_keeps_its_own_copy(self, registry):
        subscription = make_subscription("ch-1")
        registry.register(subscription)
        subscription.expires_at = 0

        assert registry.get("ch-1").expires_at == NOW + 7 * MILLIS_PER_DAY


class TestRegistryQueries:
    """Test scope and expiry queries."""

    def test_get_by_scope(self, registry):
        registry.register(make_subscription("ch-1", scope="alice@example.com"))
        registry.register(make_subscription("ch-2", scope="bob@example.com"))
        registry.register(make_subscription("ch-3", scope="alice@example.com", expires_in=MILLIS_PER_DAY))

        matches = registry.get_by_scope("alice@example.com")
        assert [s.id for s in matches] == ["ch-1", "ch-3"]

    def test_expiring_within(self, registry):
        registry.register(make_subscription("soon", expires_in=12 * MILLIS_PER_HOUR))
        registry.register(make_subscription("later", expires_in=3 * MILLIS_PER_DAY))
        registry.register(make_subscription("gone", expires_in=-MILLIS_PER_HOUR))

        expiring = registry.expiring_within(MILLIS_PER_DAY, NOW)
        assert [s.id for s in expiring] == ["soon"]

    def test_expired(self, registry):
        registry.register(make_subscription("gone", expires_in=-MILLIS_PER_HOUR))
        registry.register(make_subscription("fine"))

        assert [s.id for s in registry.expired(NOW)] == ["gone"]

    def test_scopes_are_unique_and_sorted(self, registry):
        registry.register(make_subscription("ch-1", scope="bob@example.com"))
        registry.register(make_subscription("ch-2", scope="alice@example.com"))
        registry.register(make_subscription("ch-3", scope="bob@example.com"))

        assert registry.scopes() == ["alice@example.com", "bob@example.com"]

    def test_clear(self, registry):
        registry.register(make_subscription("ch-1"))
        registry.clear()
        assert len(registry) == 0
