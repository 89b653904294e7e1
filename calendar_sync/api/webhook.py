"""Push notification endpoint for Google Calendar watch channels.

Implements:
- POST /webhook

Google sends no body; everything is in X-Goog-* headers. The response goes
out before any Calendar API call is made.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse

from calendar_sync.api.dependencies import get_context
from calendar_sync.context import ServiceContext
from calendar_sync.logging_config import get_logger
from calendar_sync.services.notification_pipeline import Notification, NotificationOutcome

logger = get_logger(__name__)
router = APIRouter(tags=["Webhook"])


def _parse_message_number(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


@router.post("/webhook", summary="Receive Google Calendar push notification")
async def receive_notification(
    channel_id: Optional[str] = Header(None, alias="X-Goog-Channel-ID"),
    resource_state: Optional[str] = Header(None, alias="X-Goog-Resource-State"),
    resource_id: Optional[str] = Header(None, alias="X-Goog-Resource-ID"),
    message_number: Optional[str] = Header(None, alias="X-Goog-Message-Number"),
    context: ServiceContext = Depends(get_context),
) -> JSONResponse:
    """Acknowledge a notification and queue its processing.

    Returns:
        200 {"status": "ok"} for sync handshakes and accepted changes
        200 {"status": "ignored"} for other resource states
        400 when a required header is missing
        404 for an unknown channel
        500 when the processing queue is full
    """
    missing = [
        name
        for name, value in (
            ("X-Goog-Channel-ID", channel_id),
            ("X-Goog-Resource-State", resource_state),
            ("X-Goog-Resource-ID", resource_id),
        )
        if not value
    ]
    if missing:
        logger.warning("webhook_missing_headers", missing=missing)
        return JSONResponse(
            status_code=400,
            content={"error": "missing_headers", "message": f"Missing required headers: {', '.join(missing)}"},
        )

    notification = Notification(
        channel_id=channel_id,
        resource_state=resource_state,
        resource_id=resource_id,
        message_number=_parse_message_number(message_number),
    )
    outcome = context.pipeline.handle_notification(notification)

    if outcome == NotificationOutcome.UNKNOWN_CHANNEL:
        return JSONResponse(
            status_code=404,
            content={"error": "unknown_channel", "message": f"Channel '{channel_id}' is not registered"},
        )
    if outcome == NotificationOutcome.QUEUE_FULL:
        return JSONResponse(
            status_code=500,
            content={"error": "internal_server_error", "message": "Notification queue is full"},
        )
    if outcome == NotificationOutcome.IGNORED:
        return JSONResponse(status_code=200, content={"status": "ignored"})
    return JSONResponse(status_code=200, content={"status": "ok"})
