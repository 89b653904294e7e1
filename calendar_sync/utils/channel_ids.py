"""Watch channel id generation and validation.

Format: calendar-sync-{scope with '@' and '.' replaced by '-'}-{unix_millis}
Example: calendar-sync-alice-example-com-1700000000000
"""

import re
from typing import Optional

CHANNEL_ID_PREFIX = "calendar-sync"

# Google accepts [A-Za-z0-9\-_\+/=] up to 64 characters
_CHANNEL_ID_PATTERN = re.compile(r"^[A-Za-z0-9\-_+/=]{1,64}$")
_SCOPE_SANITIZE_PATTERN = re.compile(r"[@.]")
_TIMESTAMP_SUFFIX_PATTERN = re.compile(r"-(\d{13})$")


def sanitize_scope(scope: str) -> str:
    """Replace characters the channel id format does not allow."""
    return _SCOPE_SANITIZE_PATTERN.sub("-", scope)


def generate_channel_id(scope: str, now_millis: int) -> str:
    """Generate a watch channel id for a calendar.

    Args:
        scope: Calendar id (usually an email address)
        now_millis: Registration time in Unix milliseconds

    Returns:
        Channel id, truncated on the scope part to fit Google's 64 char limit
    """
    if not scope:
        raise ValueError("scope must not be empty")

    suffix = f"-{now_millis}"
    body = f"{CHANNEL_ID_PREFIX}-{sanitize_scope(scope)}"
    return body[: 64 - len(suffix)] + suffix


def validate_channel_id(channel_id: str) -> bool:
    return bool(channel_id) and bool(_CHANNEL_ID_PATTERN.match(channel_id))


def extract_channel_timestamp(channel_id: str) -> Optional[int]:
    """Extract the registration timestamp from a generated channel id.

    Returns:
        Unix millis, or None if the id was not generated by this service
    """
    if not channel_id.startswith(CHANNEL_ID_PREFIX + "-"):
        return None
    match = _TIMESTAMP_SUFFIX_PATTERN.search(channel_id)
    if not match:
        return None
    return int(match.group(1))
