"""Retry with fixed delay for outbound Google API calls.

Transient failures (rate limiting, 5xx, network resets) are retried with a
fixed delay up to a capped number of attempts. Permanent failures (bad
request, forbidden, not found) propagate on the first attempt.
"""

import socket
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from google.api_core import exceptions as api_exceptions
from google.api_core import retry as api_retry
from googleapiclient.errors import HttpError

from calendar_sync.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
RATE_LIMIT_MARKERS = ("rate limit", "ratelimitexceeded", "quota", "userratelimitexceeded")

_is_transient_api_core_error = api_retry.if_exception_type(
    api_exceptions.TooManyRequests,
    api_exceptions.InternalServerError,
    api_exceptions.BadGateway,
    api_exceptions.ServiceUnavailable,
    api_exceptions.GatewayTimeout,
    api_exceptions.DeadlineExceeded,
    api_exceptions.Aborted,
    api_exceptions.RetryError,
)


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay retry policy.

    Attributes:
        max_attempts: total attempts including the first one
        delay_ms: pause between attempts
    """

    max_attempts: int = 5
    delay_ms: int = 30000

    @property
    def delay_seconds(self) -> float:
        return self.delay_ms / 1000


DEFAULT_RETRY_POLICY = RetryPolicy()


def _http_status(error: HttpError) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if status is None and getattr(error, "resp", None) is not None:
        status = getattr(error.resp, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def is_rate_limited(error: BaseException) -> bool:
    """Check whether an error signals rate limiting or quota exhaustion."""
    if isinstance(error, HttpError) and _http_status(error) == 429:
        return True
    if isinstance(error, api_exceptions.TooManyRequests):
        return True
    message = str(error).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def is_transient_error(error: BaseException) -> bool:
    """Determine if an error is transient (retry) or permanent (don't retry).

    Args:
        error: The error to classify

    Returns:
        True if the operation should be retried
    """
    if isinstance(error, HttpError):
        status = _http_status(error)
        if status in TRANSIENT_STATUS_CODES:
            return True
        # Calendar reports per-user rate limits as 403 with a rateLimitExceeded reason
        return status == 403 and is_rate_limited(error)

    if isinstance(error, api_exceptions.GoogleAPICallError) or isinstance(
        error, api_exceptions.RetryError
    ):
        return _is_transient_api_core_error(error)

    if isinstance(error, (ConnectionError, TimeoutError, socket.timeout, socket.gaierror)):
        return True

    return False


def retry_after_seconds(error: BaseException, policy: RetryPolicy = DEFAULT_RETRY_POLICY) -> Optional[int]:
    """Suggested wait before the caller tries again, None for permanent errors."""
    if is_rate_limited(error) or is_transient_error(error):
        return max(1, int(policy.delay_seconds))
    return None


def with_retry(
        operation: Callable[[], T],
        policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        description: str = "operation",
        sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run an operation, retrying transient failures with a fixed delay.

    Args:
        operation: Zero-argument callable performing the outbound call
        policy: Attempt cap and delay
        description: Name used in log events
        sleep: Sleep function (injectable for tests)

    Returns:
        Result of the operation

    Raises:
        Exception: the permanent error, or the last transient error once
            attempts are exhausted
    """
    attempt = 1
    while True:
        try:
            return operation()
        except Exception as e:
            if not is_transient_error(e):
                logger.warning(
                    "operation_failed_permanently",
                    operation=description,
                    attempt=attempt,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise

            if attempt >= policy.max_attempts:
                logger.error(
                    "operation_retries_exhausted",
                    operation=description,
                    attempts=attempt,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                raise

            logger.warning(
                "operation_retrying",
                operation=description,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay_ms=policy.delay_ms,
                error=str(e),
                error_type=type(e).__name__,
            )
            sleep(policy.delay_seconds)
            attempt += 1
