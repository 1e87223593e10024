"""
Spawned-but-not-awaited work.

Generation kicked off by a submission runs here, outside the submitting call.
Every task gets a done-callback that logs its failure.
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Set

logger = logging.getLogger(__name__)


class BackgroundRunner:
    def __init__(self, max_workers: int = 4, name: str = "ritual-bg") -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._lock = threading.Lock()
        self._pending: Set[Future] = set()

    def spawn(self, fn: Callable, *args, description: str = "task", **kwargs) -> Future:
        future = self._executor.submit(fn, *args, **kwargs)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(lambda f: self._finished(f, description))
        return future

    def _finished(self, future: Future, description: str) -> None:
        with self._lock:
            self._pending.discard(future)
        if future.cancelled():
            logger.info("Background %s cancelled", description)
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Background %s failed: %s", description, exc, exc_info=exc)

    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def drain(self, timeout: float = None) -> bool:
        """
        Wait for outstanding tasks without cancelling them.

        Returns True if everything finished within ``timeout``.
        """
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_tasks: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_tasks)


BACKGROUND = BackgroundRunner()
