"""Recurring-event id parsing.

Google Calendar expands recurring series into instances whose ids are the
series root id followed by an underscore and the original start time, e.g.
``abc123_20251115T100000Z``. Propagation is keyed on the root id so that all
instances of one series collapse into a single synchronization unit.
"""

from dataclasses import dataclass
from typing import Union

INSTANCE_SEPARATOR = "_"


@dataclass(frozen=True)
class SingleEvent:
    """A standalone event (or a series root)."""

    id: str

    @property
    def unit_id(self) -> str:
        return self.id


@dataclass(frozen=True)
class RecurringInstance:
    """One occurrence of a recurring series."""

    root_id: str
    instance_id: str

    @property
    def unit_id(self) -> str:
        return self.root_id


ParsedEventId = Union[SingleEvent, RecurringInstance]


def parse_event_id(event_id: str) -> ParsedEventId:
    """Classify an event id as a single event or a recurring instance.

    Args:
        event_id: Event id as returned by events.list

    Returns:
        SingleEvent when the id has no separator, otherwise a RecurringInstance
        whose root id is everything before the first separator

    Raises:
        ValueError: If event_id is empty
    """
    if not event_id:
        raise ValueError("event id must not be empty")

    root_id, separator, _ = event_id.partition(INSTANCE_SEPARATOR)
    if not separator or not root_id:
        return SingleEvent(id=event_id)
    return RecurringInstance(root_id=root_id, instance_id=event_id)


def root_event_id(event_id: str) -> str:
    """Get the synchronization unit id for an event id."""
    return parse_event_id(event_id).unit_id


def is_recurring_instance(event_id: str) -> bool:
    return isinstance(parse_event_id(event_id), RecurringInstance)
