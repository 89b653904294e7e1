"""Google Calendar v3 client.

Responsibilities:
- Register and stop push-notification watch channels
- List events changed since a point in time
- Read and patch a single event's attendees
- Impersonate each calendar owner via domain-wide delegation

Calls are made once; callers wrap them with ``utils.retry.with_retry``.
"""

import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from googleapiclient.discovery import build

from calendar_sync.logging_config import get_logger
from calendar_sync.models.subscription import WatchRegistration
from calendar_sync.services.google_credentials import CALENDAR_SCOPES, build_credentials

logger = get_logger(__name__)

ServiceFactory = Callable[[Optional[str]], Any]


class InvalidWatchResponseError(Exception):
    """Raised when events.watch returns a response missing required fields."""

    pass


class ProviderNotConfiguredError(Exception):
    """Raised when the client is used without service account credentials."""

    pass


def to_rfc3339(millis: int) -> str:
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).isoformat().replace("+00:00", "Z")


class CalendarClient:
    """Thin wrapper over googleapiclient's calendar resource."""

    def __init__(
        self,
        service_account_info: Optional[Dict[str, Any]] = None,
        service_factory: Optional[ServiceFactory] = None,
    ):
        """Initialize the client.

        Args:
            service_account_info: Parsed service account key (None leaves the client unconfigured)
            service_factory: Builds a calendar service for a subject; overrides the key when given
        """
        self._service_account_info = service_account_info
        self._service_factory = service_factory
        self._services: Dict[Optional[str], Any] = {}
        self._lock = threading.Lock()

    def is_configured(self) -> bool:
        return self._service_factory is not None or self._service_account_info is not None

    def _build_service(self, subject: Optional[str]) -> Any:
        if self._service_factory is not None:
            return self._service_factory(subject)
        if self._service_account_info is None:
            raise ProviderNotConfiguredError("no service account key configured")
        credentials = build_credentials(self._service_account_info, CALENDAR_SCOPES, subject=subject)
        return build("calendar", "v3", credentials=credentials, cache_discovery=False)

    def _service(self, subject: Optional[str] = None) -> Any:
        with self._lock:
            service = self._services.get(subject)
            if service is None:
                service = self._build_service(subject)
                self._services[subject] = service
            return service

    def register(self, scope: str, channel_id: str, callback_url: str) -> WatchRegistration:
        """Register a watch channel on a calendar's events.

        Args:
            scope: Calendar id
            channel_id: Channel id to request
            callback_url: HTTPS URL notifications are delivered to

        Returns:
            WatchRegistration with the provider's resource id and expiry

        Raises:
            InvalidWatchResponseError: If the response lacks id, resourceId or expiration
        """
        body = {
            "id": channel_id,
            "type": "web_hook",
            "address": callback_url,
        }
        response = self._service(scope).events().watch(calendarId=scope, body=body).execute()

        resource_id = response.get("resourceId")
        expiration = response.get("expiration")
        returned_id = response.get("id") or channel_id
        if not resource_id or not expiration:
            raise InvalidWatchResponseError(
                f"events.watch for {scope} returned incomplete channel: {response!r}"
            )

        try:
            expires_at = int(expiration)
        except (TypeError, ValueError):
            raise InvalidWatchResponseError(f"events.watch for {scope} returned bad expiration: {expiration!r}")

        logger.info(
            "watch_channel_registered",
            scope=scope,
            channel_id=returned_id,
            resource_id=resource_id,
            expires_at=expires_at,
        )
        return WatchRegistration(id=returned_id, resource_handle=resource_id, expires_at=expires_at)

    def cancel(self, channel_id: str, resource_handle: str) -> None:
        """Stop a watch channel. Does not need impersonation."""
        self._service().channels().stop(body={"id": channel_id, "resourceId": resource_handle}).execute()
        logger.info("watch_channel_stopped", channel_id=channel_id, resource_id=resource_handle)

    def list_changed_since(self, scope: str, since_millis: int, max_results: int = 200) -> List[Dict[str, Any]]:
        """List events updated since a timestamp, recurring series expanded.

        Follows page tokens until exhausted.
        """
        events = self._service(scope).events()
        items: List[Dict[str, Any]] = []
        page_token = None
        while True:
            kwargs: Dict[str, Any] = {
                "calendarId": scope,
                "updatedMin": to_rfc3339(since_millis),
                "singleEvents": True,
                "maxResults": max_results,
            }
            if page_token:
                kwargs["pageToken"] = page_token
            result = events.list(**kwargs).execute()
            items.extend(result.get("items", []))
            page_token = result.get("nextPageToken")
            if not page_token:
                break

        logger.debug("changed_events_listed", scope=scope, count=len(items))
        return items

    def get_item(self, scope: str, event_id: str) -> Dict[str, Any]:
        return self._service(scope).events().get(calendarId=scope, eventId=event_id).execute()

    def update_participants(
        self,
        scope: str,
        event_id: str,
        attendees: List[Dict[str, Any]],
        send_updates: str = "all",
    ) -> Dict[str, Any]:
        """Replace an event's attendee list.

        Args:
            scope: Calendar id
            event_id: Event (or series root) id
            attendees: Full attendee list to store
            send_updates: 'all', 'externalOnly' or 'none'
        """
        updated = (
            self._service(scope)
            .events()
            .patch(
                calendarId=scope,
                eventId=event_id,
                body={"attendees": attendees},
                sendUpdates=send_updates,
            )
            .execute()
        )
        logger.info("event_attendees_updated", scope=scope, event_id=event_id, attendee_count=len(attendees))
        return updated
