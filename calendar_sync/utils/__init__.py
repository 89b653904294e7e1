"""Utility functions and helpers for the sync service."""

from calendar_sync.utils.channel_ids import (
    extract_channel_timestamp,
    generate_channel_id,
    sanitize_scope,
    validate_channel_id,
)
from calendar_sync.utils.clock import Clock, FrozenClock, format_duration
from calendar_sync.utils.event_ids import (
    RecurringInstance,
    SingleEvent,
    is_recurring_instance,
    parse_event_id,
    root_event_id,
)
from calendar_sync.utils.retry import (
    RetryPolicy,
    is_rate_limited,
    is_transient_error,
    retry_after_seconds,
    with_retry,
)

__all__ = [
    # Channel ids
    "generate_channel_id",
    "sanitize_scope",
    "validate_channel_id",
    "extract_channel_timestamp",
    # Time
    "Clock",
    "FrozenClock",
    "format_duration",
    # Event ids
    "SingleEvent",
    "RecurringInstance",
    "parse_event_id",
    "root_event_id",
    "is_recurring_instance",
    # Retry
    "RetryPolicy",
    "with_retry",
    "is_transient_error",
    "is_rate_limited",
    "retry_after_seconds",
]
