"""Clock abstraction for time-dependent components.

Responsibilities:
- Provide the current time in Unix milliseconds
- Allow tests to freeze and fast-forward time
"""

import threading
import time
from typing import Optional

MILLIS_PER_SECOND = 1000
MILLIS_PER_MINUTE = 60 * MILLIS_PER_SECOND
MILLIS_PER_HOUR = 60 * MILLIS_PER_MINUTE
MILLIS_PER_DAY = 24 * MILLIS_PER_HOUR


class Clock:
    """Wall clock returning real time."""

    def now_millis(self) -> int:
        """Get the current time as Unix timestamp in milliseconds."""
        return int(time.time() * 1000)


class FrozenClock(Clock):
    """Clock that only moves when told to.

    Args:
        start_millis: initial time, defaults to the real current time
    """

    def __init__(self, start_millis: Optional[int] = None) -> None:
        self._lock = threading.RLock()
        self._now_millis = start_millis if start_millis is not None else int(time.time() * 1000)

    def now_millis(self) -> int:
        with self._lock:
            return self._now_millis

    def advance(
            self,
            days: int = 0,
            hours: int = 0,
            minutes: int = 0,
            seconds: int = 0,
            millis: int = 0,
    ) -> int:
        """Advance time and return the new current time.

        Raises:
            ValueError: if any value is negative
        """
        if min(days, hours, minutes, seconds, millis) < 0:
            raise ValueError("Cannot advance time backwards, negative values are not allowed.")

        delta = (
            days * MILLIS_PER_DAY
            + hours * MILLIS_PER_HOUR
            + minutes * MILLIS_PER_MINUTE
            + seconds * MILLIS_PER_SECOND
            + millis
        )
        with self._lock:
            self._now_millis += delta
            return self._now_millis

    def set(self, timestamp_millis: int) -> None:
        """Jump to a specific timestamp.

        Raises:
            ValueError: If timestamp is before the current time
        """
        with self._lock:
            if timestamp_millis < self._now_millis:
                raise ValueError(
                    f"cannot set time backwards, current: {self._now_millis}, requested: {timestamp_millis}"
                )
            self._now_millis = timestamp_millis


def format_duration(millis: int) -> str:
    """Render a duration as a short human-readable string (e.g. "6d 23h", "-2h 5m")."""
    sign = "-" if millis < 0 else ""
    remaining = abs(millis)

    days, remaining = divmod(remaining, MILLIS_PER_DAY)
    hours, remaining = divmod(remaining, MILLIS_PER_HOUR)
    minutes = remaining // MILLIS_PER_MINUTE

    if days:
        return f"{sign}{days}d {hours}h"
    if hours:
        return f"{sign}{hours}h {minutes}m"
    return f"{sign}{minutes}m"
