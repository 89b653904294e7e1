"""Attendee propagation for one synchronization unit.

When a primary user attends an event, every secondary account mapped to that
user is added as an attendee. The patch is idempotent in effect: once all
secondaries are present the unit is skipped.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from calendar_sync.logging_config import get_logger
from calendar_sync.repositories.mapping_store import IdentityMappingStore
from calendar_sync.services.calendar_client import CalendarClient
from calendar_sync.utils.retry import DEFAULT_RETRY_POLICY, RetryPolicy, with_retry

logger = get_logger(__name__)

SKIP_CANCELLED = "Event cancelled"
SKIP_NO_PRIMARY = "No mapped primary attendees"
SKIP_ALREADY_PRESENT = "All secondaries already present"


@dataclass
class SyncResult:
    unit_id: str
    scope: str
    added_participants: List[str] = field(default_factory=list)
    skipped: bool = False
    skip_reason: Optional[str] = None


def _email(attendee: Dict[str, Any]) -> str:
    return (attendee.get("email") or "").strip().lower()


class EventSyncService:
    """Adds mapped secondary attendees to events that include a primary."""

    def __init__(
        self,
        calendar_client: CalendarClient,
        mapping_store: IdentityMappingStore,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        sleep=time.sleep,
    ):
        self._calendar = calendar_client
        self._mappings = mapping_store
        self._retry_policy = retry_policy
        self._sleep = sleep

    def find_primaries(self, scope: str, attendees: List[Dict[str, Any]]) -> List[str]:
        """Mapped primaries on the event, or the calendar owner if none attend."""
        primaries = []
        for attendee in attendees:
            email = _email(attendee)
            if email and email not in primaries and self._mappings.has_primary(email):
                primaries.append(email)
        if not primaries and self._mappings.has_primary(scope):
            primaries.append(scope.strip().lower())
        return primaries

    def secondaries_to_add(self, primaries: List[str], attendees: List[Dict[str, Any]]) -> List[str]:
        present = {_email(a) for a in attendees}
        to_add: List[str] = []
        for primary in primaries:
            for secondary in self._mappings.secondaries_for(primary):
                if secondary not in present and secondary not in to_add:
                    to_add.append(secondary)
        return to_add

    def sync_unit(self, scope: str, unit_id: str) -> SyncResult:
        """Propagate secondaries onto one event or recurring series root.

        Raises:
            Exception: the provider error once retries are exhausted or on a
                permanent failure
        """
        event = with_retry(
            lambda: self._calendar.get_item(scope, unit_id),
            self._retry_policy,
            description="events.get",
            sleep=self._sleep,
        )

        if event.get("status") == "cancelled":
            logger.info("event_sync_skipped", scope=scope, unit_id=unit_id, reason=SKIP_CANCELLED)
            return SyncResult(unit_id=unit_id, scope=scope, skipped=True, skip_reason=SKIP_CANCELLED)

        attendees = list(event.get("attendees") or [])
        primaries = self.find_primaries(scope, attendees)
        if not primaries:
            logger.debug("event_sync_skipped", scope=scope, unit_id=unit_id, reason=SKIP_NO_PRIMARY)
            return SyncResult(unit_id=unit_id, scope=scope, skipped=True, skip_reason=SKIP_NO_PRIMARY)

        to_add = self.secondaries_to_add(primaries, attendees)
        if not to_add:
            logger.info(
                "event_sync_skipped",
                scope=scope,
                unit_id=unit_id,
                reason=SKIP_ALREADY_PRESENT,
                primaries=primaries,
            )
            return SyncResult(unit_id=unit_id, scope=scope, skipped=True, skip_reason=SKIP_ALREADY_PRESENT)

        new_attendees = attendees + [{"email": email, "responseStatus": "needsAction"} for email in to_add]
        with_retry(
            lambda: self._calendar.update_participants(scope, unit_id, new_attendees, send_updates="all"),
            self._retry_policy,
            description="events.patch",
            sleep=self._sleep,
        )

        logger.info(
            "event_synced",
            scope=scope,
            unit_id=unit_id,
            added_participants=to_add,
            primaries=primaries,
        )
        return SyncResult(unit_id=unit_id, scope=scope, added_participants=to_add)
