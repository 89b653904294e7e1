"""FastAPI middleware for request logging and log correlation."""

import time
import uuid
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from calendar_sync.logging_config import bind_context, clear_context, get_logger

logger = get_logger(__name__)

# Health checks arrive every few seconds on Cloud Run
QUIET_PATHS = frozenset({"/health"})


def incoming_request_id(request: Request) -> Optional[str]:
    """Reuse the caller's request id, or the trace id Cloud Run forwards."""
    request_id = request.headers.get("x-request-id")
    if request_id:
        return request_id
    trace = request.headers.get("x-cloud-trace-context")
    if trace:
        return trace.split("/", 1)[0]
    return None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request with a correlation id.

    The id is bound to the logging context for the whole request and
    returned in the ``X-Request-ID`` response header.
    """

    def __init__(self, app: ASGIApp, quiet_paths: frozenset = QUIET_PATHS):
        super().__init__(app)
        self.quiet_paths = quiet_paths

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = incoming_request_id(request) or str(uuid.uuid4())
        path = request.url.path
        bind_context(request_id=request_id)
        log = logger.debug if path in self.quiet_paths else logger.info

        log("request_started", method=request.method, path=path)
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                method=request.method,
                path=path,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            raise
        else:
            log(
                "request_completed",
                method=request.method,
                path=path,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_context()


class ContextMiddleware(BaseHTTPMiddleware):
    """Binds push-notification headers to the logging context.

    Google Calendar identifies the channel and what happened in headers:
    - X-Goog-Channel-ID -> channel_id
    - X-Goog-Resource-State -> resource_state
    - X-Goog-Message-Number -> message_number
    """

    HEADERS = (
        ("x-goog-channel-id", "channel_id"),
        ("x-goog-resource-state", "resource_state"),
        ("x-goog-message-number", "message_number"),
    )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        for header, key in self.HEADERS:
            value = request.headers.get(header)
            if value:
                bind_context(**{key: value})
        return await call_next(request)
