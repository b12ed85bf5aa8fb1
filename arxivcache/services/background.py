"""Detached best-effort work (reference prefetch, lazy PDF text).

Tasks run on a bounded pool, outside the triggering caller's cancellation
scope. They still observe the pool's own ``shutdown_event``, which is the
process-lifetime cancellation signal.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Optional

from arxivcache.errors import OperationCancelled

logger = logging.getLogger(__name__)


def interruptible_sleep(seconds: float, cancel: Optional[threading.Event] = None) -> None:
    """Sleep for *seconds*, returning early with :class:`OperationCancelled` on *cancel*."""
    if seconds <= 0:
        if cancel is not None and cancel.is_set():
            raise OperationCancelled()
        return
    if cancel is None:
        time.sleep(seconds)
        return
    if cancel.wait(seconds):
        raise OperationCancelled()


class BackgroundTasks:
    """Bounded worker pool for fire-and-forget tasks.

    Every task is called as ``fn(*args, cancel=shutdown_event, **kwargs)``.
    Failures are logged; nobody waits on the result.
    """

    def __init__(
        self,
        max_workers: int = 4,
        shutdown_event: Optional[threading.Event] = None,
    ):
        self.shutdown_event = shutdown_event or threading.Event()
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix="arxivcache-bg"
        )
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Optional[Future]:
        """Schedule *fn*; returns None once the pool is shutting down."""
        if self.shutdown_event.is_set():
            return None
        name = getattr(fn, "__qualname__", repr(fn))
        try:
            future = self._executor.submit(self._run, name, fn, args, kwargs)
        except RuntimeError:
            # Executor already shut down.
            return None
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return future

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _run(self, name: str, fn: Callable[..., Any], args: tuple, kwargs: dict) -> Any:
        try:
            return fn(*args, cancel=self.shutdown_event, **kwargs)
        except OperationCancelled:
            logger.debug("Background task %s cancelled", name)
        except Exception:
            logger.exception("Background task %s failed", name)
        return None

    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for currently scheduled tasks; True if all finished."""
        with self._lock:
            futures = list(self._pending)
        _, not_done = wait(futures, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_tasks: bool = True) -> None:
        """Signal cancellation to running tasks and stop the pool."""
        self.shutdown_event.set()
        self._executor.shutdown(wait=wait_for_tasks, cancel_futures=True)

    def __enter__(self) -> "BackgroundTasks":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()
