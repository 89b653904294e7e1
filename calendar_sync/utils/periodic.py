"""Background thread running a function at a fixed interval."""

import threading
from typing import Callable, Optional

from calendar_sync.logging_config import get_logger

logger = get_logger(__name__)


class PeriodicJob:
    """Runs ``fn`` every ``interval_ms`` until stopped.

    The first run happens one interval after ``start()``. Exceptions raised by
    ``fn`` are logged and the loop keeps going.
    """

    def __init__(self, name: str, interval_ms: int, fn: Callable[[], object]):
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")
        self.name = name
        self.interval_ms = interval_ms
        self._fn = fn
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.run_count = 0
        self.failure_count = 0

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._loop, name=f"periodic-{self.name}", daemon=True
            )
            self._thread.start()
        logger.info("periodic_job_started", job=self.name, interval_ms=self.interval_ms)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
        self._stop_event.set()
        if thread is not None:
            thread.join(timeout)
            logger.info("periodic_job_stopped", job=self.name, runs=self.run_count)

    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def run_once(self) -> None:
        """Run the job body immediately in the calling thread."""
        self.run_count += 1
        try:
            self._fn()
        except Exception as e:
            self.failure_count += 1
            logger.error(
                "periodic_job_failed",
                job=self.name,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval_ms / 1000):
            self.run_once()
