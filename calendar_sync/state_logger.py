"""State change logging for watch-channel subscriptions.

Tracks status transitions and expiry changes with before/after values
for debugging and auditing.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from calendar_sync.logging_config import get_logger

logger = get_logger(__name__)


def _iso(millis: int) -> str:
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).isoformat()


def log_subscription_status_change(
    subscription_id: str,
    scope: str,
    old_status: Any,
    new_status: Any,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log subscription status change.

    Args:
        subscription_id: Watch channel id
        scope: Monitored calendar
        old_status: Previous status value
        new_status: New status value
        reason: Reason for status change
        **extra_context: Additional context (expiry, resource handle, etc.)
    """
    logger.info(
        "subscription_status_changed",
        subscription_id=subscription_id,
        scope=scope,
        old_status=str(old_status),
        new_status=str(new_status),
        reason=reason,
        **extra_context,
    )


def log_expiry_change(
    subscription_id: str,
    scope: str,
    old_expires_at: int,
    new_expires_at: int,
    reason: str,
    **extra_context: Any,
) -> None:
    """Log subscription expiry change.

    Args:
        subscription_id: Watch channel id
        scope: Monitored calendar
        old_expires_at: Previous expiry (Unix millis)
        new_expires_at: New expiry (Unix millis)
        reason: Reason for change (renewal, reload, etc.)
        **extra_context: Additional context
    """
    logger.info(
        "subscription_expiry_changed",
        subscription_id=subscription_id,
        scope=scope,
        old_expiry=_iso(old_expires_at),
        new_expiry=_iso(new_expires_at),
        extension_hours=round((new_expires_at - old_expires_at) / (1000 * 3600), 2),
        reason=reason,
        **extra_context,
    )


def log_subscription_replaced(
    old_subscription_id: str,
    new_subscription_id: str,
    scope: str,
    old_expires_at: int,
    new_expires_at: int,
    **extra_context: Any,
) -> None:
    """Log a renewal that replaced one watch channel with another."""
    logger.info(
        "subscription_replaced",
        old_subscription_id=old_subscription_id,
        new_subscription_id=new_subscription_id,
        scope=scope,
        old_expiry=_iso(old_expires_at),
        new_expiry=_iso(new_expires_at),
        **extra_context,
    )
