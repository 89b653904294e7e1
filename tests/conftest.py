"""Shared fixtures: frozen clock, in-memory store and calendar fakes, service context."""

from typing import Any, Dict, List, Optional
from unittest.mock import Mock

import pytest
from googleapiclient.errors import HttpError

from calendar_sync.context import ServiceContext
from calendar_sync.models.mapping import IdentityMapping
from calendar_sync.models.settings import Settings
from calendar_sync.models.subscription import WatchRegistration
from calendar_sync.repositories.subscription_store import InMemorySubscriptionStore, StoreError
from calendar_sync.utils.clock import MILLIS_PER_DAY, FrozenClock

START_MILLIS = 1_700_000_000_000
CHANNEL_LIFETIME_MS = 7 * MILLIS_PER_DAY


def make_http_error(status: int, message: str = "error") -> HttpError:
    """Build a googleapiclient HttpError with the given status."""
    resp = Mock(status=status, reason=message)
    content = ('{"error": {"code": %d, "message": "%s"}}' % (status, message)).encode()
    return HttpError(resp, content)


class FakeSubscriptionStore(InMemorySubscriptionStore):
    """In-memory store that can be told to fail."""

    def __init__(self, clock):
        super().__init__(clock=clock)
        self.failing_operations: set = set()
        self.fail_all = False
        self.calls: List[str] = []

    def _maybe_fail(self, operation: str) -> None:
        self.calls.append(operation)
        if self.fail_all or operation in self.failing_operations:
            raise StoreError(operation, "store unavailable", cause=ConnectionError("unreachable"))

    def save(self, subscription):
        self._maybe_fail("save")
        super().save(subscription)

    def load_all_active(self):
        self._maybe_fail("load_all_active")
        return super().load_all_active()

    def find_expiring_before(self, threshold_millis):
        self._maybe_fail("find_expiring_before")
        return super().find_expiring_before(threshold_millis)

    def update_expiry(self, subscription_id, new_expires_at):
        self._maybe_fail("update_expiry")
        super().update_expiry(subscription_id, new_expires_at)

    def delete(self, subscription_id):
        self._maybe_fail("delete")
        super().delete(subscription_id)

    def mark_stopped(self, subscription_id):
        self._maybe_fail("mark_stopped")
        super().mark_stopped(subscription_id)

    def mark_expired(self, subscription_id):
        self._maybe_fail("mark_expired")
        super().mark_expired(subscription_id)

    def get(self, subscription_id):
        self._maybe_fail("get")
        return super().get(subscription_id)

    def get_all_ordered_by_expiry(self):
        self._maybe_fail("get_all_ordered_by_expiry")
        return super().get_all_ordered_by_expiry()

    def ping(self):
        return not self.fail_all

    def mutating_calls(self) -> List[str]:
        mutating = {"save", "update_expiry", "delete", "mark_stopped", "mark_expired"}
        return [c for c in self.calls if c in mutating]


class FakeCalendarClient:
    """Records provider calls; events live in a dict per calendar."""

    def __init__(self, clock):
        self._clock = clock
        self.events: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.changed: Dict[str, List[Dict[str, Any]]] = {}
        self.register_errors: Dict[str, List[Exception]] = {}
        self.cancel_error: Optional[Exception] = None
        self.get_errors: Dict[str, List[Exception]] = {}
        self.registered: List[WatchRegistration] = []
        self.cancelled: List[tuple] = []
        self.patches: List[tuple] = []
        self.list_calls: List[tuple] = []
        self.configured = True
        self._counter = 0

    def is_configured(self) -> bool:
        return self.configured

    def register(self, scope, channel_id, callback_url):
        errors = self.register_errors.get(scope)
        if errors:
            raise errors.pop(0)
        self._counter += 1
        registration = WatchRegistration(
            id=channel_id,
            resource_handle=f"resource-{self._counter}",
            expires_at=self._clock.now_millis() + CHANNEL_LIFETIME_MS,
        )
        self.registered.append(registration)
        return registration

    def cancel(self, channel_id, resource_handle):
        self.cancelled.append((channel_id, resource_handle))
        if self.cancel_error is not None:
            raise self.cancel_error

    def list_changed_since(self, scope, since_millis, max_results=200):
        self.list_calls.append((scope, since_millis, max_results))
        return list(self.changed.get(scope, []))

    def get_item(self, scope, event_id):
        errors = self.get_errors.get(event_id)
        if errors:
            raise errors.pop(0)
        try:
            return dict(self.events[scope][event_id])
        except KeyError:
            raise make_http_error(404, "Not Found")

    def update_participants(self, scope, event_id, attendees, send_updates="all"):
        self.patches.append((scope, event_id, list(attendees), send_updates))
        self.events.setdefault(scope, {}).setdefault(event_id, {"id": event_id})["attendees"] = list(attendees)
        return self.events[scope][event_id]

    def add_event(self, scope, event_id, attendees=None, status="confirmed", changed=True):
        event = {"id": event_id, "status": status, "attendees": [{"email": a} for a in (attendees or [])]}
        self.events.setdefault(scope, {})[event_id] = event
        if changed:
            self.changed.setdefault(scope, []).append({"id": event_id})
        return event


class FakeMappingLoader:
    def __init__(self, mappings=None):
        self.mappings = list(mappings or [])
        self.error: Optional[Exception] = None
        self.load_count = 0

    def load(self):
        self.load_count += 1
        if self.error is not None:
            raise self.error
        return list(self.mappings)


@pytest.fixture
def clock():
    """Frozen clock at a fixed start time."""
    return FrozenClock(START_MILLIS)


@pytest.fixture
def settings():
    """Settings with retries instant and background jobs off."""
    return Settings(
        mapping_source="file",
        webhook_url="https://sync.example.com/webhook",
        firestore_enabled=True,
        retry_max_attempts=3,
        retry_delay_ms=0,
        dedup_sweep_interval_ms=0,
        renewal_interval_ms=0,
        mapping_refresh_interval_ms=0,
    )


@pytest.fixture
def store(clock):
    return FakeSubscriptionStore(clock)


@pytest.fixture
def calendar(clock):
    return FakeCalendarClient(clock)


@pytest.fixture
def mappings():
    return [
        IdentityMapping(primary="alice@example.com", secondaries=["alice.alt@example.org"]),
        IdentityMapping(
            primary="bob@example.com",
            secondaries=["bob.alt@example.org", "bob.delegate@example.org"],
        ),
    ]


@pytest.fixture
def mapping_loader(mappings):
    return FakeMappingLoader(mappings)


@pytest.fixture
def make_context(settings, store, calendar, mapping_loader, clock):
    """Factory for a ServiceContext around the fakes."""

    def _make(**overrides) -> ServiceContext:
        context_settings = settings.model_copy(update=overrides) if overrides else settings
        return ServiceContext(
            settings=context_settings,
            store=store,
            calendar_client=calendar,
            mapping_loader=mapping_loader,
            clock=clock,
            sleep=lambda seconds: None,
        )

    return _make


@pytest.fixture
def context(make_context):
    return make_context()


@pytest.fixture
def loaded_context(context):
    """Context with mappings loaded, no channels registered."""
    context.reload_mappings()
    return context


@pytest.fixture
def http_error():
    """Factory building HttpError instances by status code."""
    return make_http_error
