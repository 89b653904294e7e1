"""Tests for the Google Calendar client (discovery service mocked)."""

from unittest.mock import MagicMock

import pytest

from calendar_sync.services.calendar_client import (
    CalendarClient,
    InvalidWatchResponseError,
    ProviderNotConfiguredError,
    to_rfc3339,
)

ALICE = "alice@example.com"


@pytest.fixture
def service():
    return MagicMock()


@pytest.fixture
def subjects():
    return []


@pytest.fixture
def client(service, subjects):
    def factory(subject):
        subjects.append(subject)
        return service

    return CalendarClient(service_factory=factory)


class TestWatchChannels:
    """Test events.watch and channels.stop."""

    def test_register(self, client, service, subjects):
        service.events.return_value.watch.return_value.execute.return_value = {
            "id": "ch-1",
            "resourceId": "res-1",
            "expiration": "1700604800000",
        }

        registration = client.register(ALICE, "ch-1", "https://sync.example.com/webhook")

        service.events.return_value.watch.assert_called_once_with(
            calendarId=ALICE,
            body={"id": "ch-1", "type": "web_hook", "address": "https://sync.example.com/webhook"},
        )
        assert registration.resource_handle == "res-1"
        assert registration.expires_at == 1_700_604_800_000
        assert subjects == [ALICE]

    @pytest.mark.parametrize(
        "response",
        [
            {"id": "ch-1", "expiration": "1700604800000"},
            {"id": "ch-1", "resourceId": "res-1"},
            {"id": "ch-1", "resourceId": "res-1", "expiration": "soon"},
        ],
    )
    def test_incomplete_watch_response(self, client, service, response):
        service.events.return_value.watch.return_value.execute.return_value = response

        with pytest.raises(InvalidWatchResponseError):
            client.register(ALICE, "ch-1", "https://sync.example.com/webhook")

    def test_cancel(self, client, service, subjects):
        client.cancel("ch-1", "res-1")

        service.channels.return_value.stop.assert_called_once_with(body={"id": "ch-1", "resourceId": "res-1"})
        assert subjects == [None]


class TestEvents:
    """Test events.list, events.get and events.patch."""

    def test_list_follows_pages(self, client, service):
        events_list = service.events.return_value.list
        events_list.return_value.execute.side_effect = [
            {"items": [{"id": "a"}], "nextPageToken": "page-2"},
            {"items": [{"id": "b"}]},
        ]

        items = client.list_changed_since(ALICE, 1_700_000_000_000, max_results=200)

        assert [i["id"] for i in items] == ["a", "b"]
        first_call = events_list.call_args_list[0].kwargs
        assert first_call == {
            "calendarId": ALICE,
            "updatedMin": "2023-11-14T22:13:20Z",
            "singleEvents": True,
            "maxResults": 200,
        }
        assert events_list.call_args_list[1].kwargs["pageToken"] == "page-2"

    def test_get_item(self, client, service):
        service.events.return_value.get.return_value.execute.return_value = {"id": "evt1"}

        assert client.get_item(ALICE, "evt1") == {"id": "evt1"}
        service.events.return_value.get.assert_called_once_with(calendarId=ALICE, eventId="evt1")

    def test_update_participants(self, client, service):
        attendees = [{"email": ALICE}, {"email": "alice.alt@example.org", "responseStatus": "needsAction"}]

        client.update_participants(ALICE, "evt1", attendees)

        service.events.return_value.patch.assert_called_once_with(
            calendarId=ALICE,
            eventId="evt1",
            body={"attendees": attendees},
            sendUpdates="all",
        )

    def test_service_cached_per_subject(self, client, subjects):
        client.get_item(ALICE, "evt1")
        client.get_item(ALICE, "evt2")
        client.get_item("bob@example.com", "evt3")

        assert subjects == [ALICE, "bob@example.com"]


class TestConfiguration:
    def test_unconfigured_client(self):
        client = CalendarClient()

        assert client.is_configured() is False
        with pytest.raises(ProviderNotConfiguredError):
            client.get_item(ALICE, "evt1")

    def test_to_rfc3339(self):
        assert to_rfc3339(1_700_000_000_000) == "2023-11-14T22:13:20Z"
