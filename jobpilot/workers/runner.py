"""Executors for background pipeline stages."""

from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from threading import Lock

from jobpilot.core.logging import get_logger

logger = get_logger(__name__)

Task = Callable[[], None]


class BackgroundRunner:
    def __init__(self, max_workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pipeline-stage")
        self._futures: set[Future] = set()
        self._lock = Lock()

    def submit(self, name: str, task: Task) -> Future:
        future = self._executor.submit(task)
        with self._lock:
            self._futures.add(future)
        future.add_done_callback(lambda done: self._finished(name, done))
        return future

    def _finished(self, name: str, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Background stage crashed", extra={"extra": {"stage": name, "error": repr(exc)}})

    def pending(self) -> int:
        with self._lock:
            return sum(1 for future in self._futures if not future.done())

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class InlineRunner:
    """Runs each stage synchronously in the caller's thread."""

    def __init__(self) -> None:
        self.ran: list[str] = []

    def submit(self, name: str, task: Task) -> None:
        self.ran.append(name)
        task()

    def pending(self) -> int:
        return 0

    def shutdown(self, wait: bool = True) -> None:
        return None
