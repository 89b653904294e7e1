"""Background worker for accepted change notifications.

The webhook hands each accepted notification to this worker and returns
immediately. One thread drains a bounded queue, so notifications for a
calendar are processed one at a time. Every task runs inside its own error
boundary.
"""

import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from calendar_sync.logging_config import bind_context, clear_context, get_logger

logger = get_logger(__name__)

_STOP = object()


@dataclass
class WorkerTask:
    name: str
    fn: Callable[[], Any]
    context: Dict[str, Any] = field(default_factory=dict)
    enqueued_at: float = field(default_factory=time.monotonic)


class NotificationWorker:
    """Single-thread consumer of a bounded task queue."""

    def __init__(self, max_queue_size: int = 1000):
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=max_queue_size)
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.processed = 0
        self.failed = 0
        self.rejected = 0

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(target=self._loop, name="notification-worker", daemon=True)
            self._thread.start()
        logger.info("notification_worker_started", max_queue_size=self._queue.maxsize)

    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def submit(self, name: str, fn: Callable[[], Any], **context: Any) -> bool:
        """Queue a task without blocking.

        Returns:
            False if the queue is full
        """
        try:
            self._queue.put_nowait(WorkerTask(name=name, fn=fn, context=context))
        except queue.Full:
            self.rejected += 1
            logger.error("notification_queue_full", task=name, queue_size=self._queue.qsize(), **context)
            return False
        return True

    def pending(self) -> int:
        return self._queue.qsize()

    def _execute(self, task: WorkerTask) -> None:
        bind_context(task=task.name, **task.context)
        started = time.monotonic()
        try:
            task.fn()
            self.processed += 1
            logger.debug(
                "worker_task_completed",
                queued_ms=round((started - task.enqueued_at) * 1000, 2),
                duration_ms=round((time.monotonic() - started) * 1000, 2),
            )
        except Exception as e:
            self.failed += 1
            logger.error(
                "worker_task_failed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
        finally:
            clear_context()

    def _loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._execute(item)
            finally:
                self._queue.task_done()

    def run_pending(self) -> int:
        """Run queued tasks in the calling thread until the queue is empty.

        For use when the worker thread is not started (tests, one-shot runs).

        Returns:
            Number of tasks run
        """
        count = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return count
            try:
                if item is not _STOP:
                    self._execute(item)
                    count += 1
            finally:
                self._queue.task_done()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait until every queued task has finished.

        Returns:
            False if the timeout elapsed first
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def stop(self, timeout: Optional[float] = 30.0) -> None:
        """Drain the queue, then stop the thread."""
        with self._lock:
            thread = self._thread
            self._thread = None
        if thread is None:
            return
        drained = self.join(timeout)
        try:
            self._queue.put(_STOP, timeout=1)
        except queue.Full:
            logger.warning("notification_worker_stop_signal_dropped")
        thread.join(timeout)
        logger.info(
            "notification_worker_stopped",
            drained=drained,
            processed=self.processed,
            failed=self.failed,
            rejected=self.rejected,
        )
