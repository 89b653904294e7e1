"""Tests for the durable subscription stores (Firestore mocked)."""

from unittest.mock import MagicMock, patch

import pytest
from google.api_core.exceptions import NotFound, ServiceUnavailable
from pydantic import ValidationError

from calendar_sync.models.subscription import Subscription, SubscriptionStatus
from calendar_sync.repositories.subscription_store import (
    FirestoreSubscriptionStore,
    InMemorySubscriptionStore,
    StoreError,
    SubscriptionNotFoundError,
)
from calendar_sync.utils.clock import MILLIS_PER_DAY, FrozenClock

NOW = 1_700_000_000_000


def make_subscription(sub_id="ch-1", expires_in=7 * MILLIS_PER_DAY, status=SubscriptionStatus.ACTIVE):
    return Subscription(
        id=sub_id,
        resource_handle="res-1",
        scope="alice@example.com",
        expires_at=NOW + expires_in,
        registered_at=NOW,
        last_updated_at=NOW,
        status=status,
    )


def snapshot(document, exists=True):
    snap = MagicMock()
    snap.exists = exists
    snap.id = document.get("id") if document else "missing"
    snap.to_dict.return_value = document
    return snap


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def firestore_store(client, clock):
    return FirestoreSubscriptionStore(collection_name="watchChannels", client=client, clock=clock)


@pytest.fixture(autouse=True)
def passthrough_transactional():
    """Run transactional functions directly with the mock transaction."""
    with patch(
        "calendar_sync.repositories.subscription_store.firestore.transactional",
        side_effect=lambda fn: fn,
    ):
        yield


class TestSubscriptionDocument:
    """Test camelCase document mapping."""

    def test_to_document_uses_camel_case(self):
        document = make_subscription().to_document()
        assert document == {
            "id": "ch-1",
            "resourceHandle": "res-1",
            "scope": "alice@example.com",
            "expiresAt": NOW + 7 * MILLIS_PER_DAY,
            "registeredAt": NOW,
            "lastUpdatedAt": NOW,
            "status": "active",
        }

    def test_from_document(self):
        subscription = Subscription.from_document(make_subscription().to_document())
        assert subscription.resource_handle == "res-1"
        assert subscription.status == SubscriptionStatus.ACTIVE


class TestFirestoreSave:
    """Test transactional create-or-update."""

    def test_save_creates_new_document(self, firestore_store, client):
        doc_ref = client.collection.return_value.document.return_value
        doc_ref.get.return_value = snapshot(None, exists=False)
        transaction = client.transaction.return_value

        firestore_store.save(make_subscription())

        client.collection.assert_called_with("watchChannels")
        client.collection.return_value.document.assert_called_with("ch-1")
        transaction.create.assert_called_once()
        assert transaction.create.call_args[0][1]["expiresAt"] == NOW + 7 * MILLIS_PER_DAY

    def test_save_existing_keeps_registered_at(self, firestore_store, client):
        doc_ref = client.collection.return_value.document.return_value
        existing = make_subscription().to_document()
        existing["registeredAt"] = NOW - MILLIS_PER_DAY
        doc_ref.get.return_value = snapshot(existing)
        transaction = client.transaction.return_value

        firestore_store.save(make_subscription(expires_in=8 * MILLIS_PER_DAY))

        transaction.set.assert_called_once()
        written = transaction.set.call_args[0][1]
        assert written["registeredAt"] == NOW - MILLIS_PER_DAY
        assert written["expiresAt"] == NOW + 8 * MILLIS_PER_DAY

    def test_save_wraps_api_errors(self, firestore_store, client):
        client.transaction.side_effect = ServiceUnavailable("firestore down")

        with pytest.raises(StoreError) as exc_info:
            firestore_store.save(make_subscription())

        assert exc_info.value.operation == "save"
        assert isinstance(exc_info.value.cause, ServiceUnavailable)


class TestFirestoreQueries:
    """Test filtered reads."""

    def test_load_all_active(self, firestore_store, client):
        query = client.collection.return_value.where.return_value
        query.stream.return_value = [snapshot(make_subscription("a").to_document())]

        result = firestore_store.load_all_active()

        assert [s.id for s in result] == ["a"]
        field_filter = client.collection.return_value.where.call_args.kwargs["filter"]
        assert field_filter.field_path == "status"
        assert field_filter.value == "active"

    def test_find_expiring_before_orders_by_expiry(self, firestore_store, client):
        ordered = client.collection.return_value.where.return_value.where.return_value.order_by.return_value
        ordered.stream.return_value = [snapshot(make_subscription("soon", expires_in=1000).to_document())]

        result = firestore_store.find_expiring_before(NOW + MILLIS_PER_DAY)

        assert [s.id for s in result] == ["soon"]
        client.collection.return_value.where.return_value.where.return_value.order_by.assert_called_with(
            "expiresAt"
        )

    def test_invalid_documents_are_skipped(self, firestore_store, client):
        query = client.collection.return_value.where.return_value
        query.stream.return_value = [
            snapshot({"id": "broken"}),
            snapshot(make_subscription("ok").to_document()),
        ]

        assert [s.id for s in firestore_store.load_all_active()] == ["ok"]

    def test_get_missing_returns_none(self, firestore_store, client):
        client.collection.return_value.document.return_value.get.return_value = snapshot(None, exists=False)
        assert firestore_store.get("nope") is None

    def test_get_invalid_document_raises_store_error(self, firestore_store, client):
        client.collection.return_value.document.return_value.get.return_value = snapshot({"id": "broken"})

        with pytest.raises(StoreError) as exc_info:
            firestore_store.get("broken")

        assert exc_info.value.operation == "get"
        assert isinstance(exc_info.value.cause, ValidationError)

    def test_query_failure_raises_store_error(self, firestore_store, client):
        client.collection.return_value.where.return_value.stream.side_effect = ServiceUnavailable("down")
        with pytest.raises(StoreError):
            firestore_store.load_all_active()

    def test_ping_false_when_unreachable(self, firestore_store, client):
        client.collection.return_value.limit.return_value.stream.side_effect = ServiceUnavailable("down")
        assert firestore_store.ping() is False


class TestFirestoreUpdates:
    """Test single-field updates and deletes."""

    def test_update_expiry(self, firestore_store, client, clock):
        doc_ref = client.collection.return_value.document.return_value
        clock.advance(minutes=5)

        firestore_store.update_expiry("ch-1", NOW + 9 * MILLIS_PER_DAY)

        doc_ref.update.assert_called_once_with(
            {
                "expiresAt": NOW + 9 * MILLIS_PER_DAY,
                "lastUpdatedAt": clock.now_millis(),
                "status": "active",
            }
        )

    def test_update_missing_raises_not_found(self, firestore_store, client):
        client.collection.return_value.document.return_value.update.side_effect = NotFound("no doc")
        with pytest.raises(SubscriptionNotFoundError):
            firestore_store.mark_stopped("ch-1")

    def test_delete(self, firestore_store, client):
        firestore_store.delete("ch-1")
        client.collection.return_value.document.return_value.delete.assert_called_once()

    def test_mark_expired(self, firestore_store, client):
        firestore_store.mark_expired("ch-1")
        fields = client.collection.return_value.document.return_value.update.call_args[0][0]
        assert fields["status"] == "expired"


class TestInMemoryStore:
    """Test the store used when Firestore is disabled."""

    def test_save_then_load_active(self, clock):
        store = InMemorySubscriptionStore(clock=clock)
        store.save(make_subscription("a"))
        store.save(make_subscription("b", status=SubscriptionStatus.STOPPED))

        assert [s.id for s in store.load_all_active()] == ["a"]
        assert len(store) == 2

    def test_find_expiring_before(self, clock):
        store = InMemorySubscriptionStore(clock=clock)
        store.save(make_subscription("late", expires_in=5 * MILLIS_PER_DAY))
        store.save(make_subscription("soon", expires_in=MILLIS_PER_DAY // 2))

        assert [s.id for s in store.find_expiring_before(NOW + MILLIS_PER_DAY)] == ["soon"]

    def test_save_twice_keeps_one_record(self, clock):
        store = InMemorySubscriptionStore(clock=clock)
        store.save(make_subscription("a", expires_in=MILLIS_PER_DAY))
        store.save(make_subscription("a", expires_in=2 * MILLIS_PER_DAY))

        assert store.count() == 1
        assert store.get("a").expires_at == NOW + 2 * MILLIS_PER_DAY

    def test_mark_stopped_missing_raises(self, clock):
        store = InMemorySubscriptionStore(clock=clock)
        with pytest.raises(SubscriptionNotFoundError):
            store.mark_stopped("nope")

    def test_delete_missing_is_noop(self, clock):
        store = InMemorySubscriptionStore(clock=clock)
        store.delete("nope")

    def test_invalid_document_skipped_by_queries_and_rejected_by_get(self, clock):
        store = InMemorySubscriptionStore(clock=clock)
        store.save(make_subscription("ok"))
        store._documents["broken"] = {"id": "broken", "status": "active"}

        assert [s.id for s in store.load_all_active()] == ["ok"]
        with pytest.raises(StoreError):
            store.get("broken")
