"""Fixed-size pool of worker threads for blocking codec work.

Every submission gets its own ``concurrent.futures.Future``; the async side
awaits it with ``asyncio.wrap_future`` so the event loop is never blocked
waiting on a transcode. The work queue is unbounded: admission control is
the caller's job.
"""

import logging
import queue
import threading
from concurrent.futures import Future
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Queue entry telling one worker to exit
_TERMINATE = None

_Envelope = Optional[Tuple[Callable[[], Any], Future]]


class WorkerPool:
    """N persistent threads pulling closures off one shared queue."""

    def __init__(self, worker_count: int, name: str = "media-worker"):
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self._queue: "queue.Queue[_Envelope]" = queue.Queue()
        self._shutdown = False
        self._shutdown_lock = threading.Lock()
        self._workers: List[threading.Thread] = []
        for index in range(worker_count):
            worker = threading.Thread(target=self._work, name=f"{name}-{index}", daemon=True)
            worker.start()
            self._workers.append(worker)
        logger.info("worker pool started with %d threads", worker_count)

    @property
    def size(self) -> int:
        return len(self._workers)

    def pending(self) -> int:
        """Approximate number of submissions not yet picked up by a worker."""
        return self._queue.qsize()

    def execute(self, fn: Callable[[], Any]) -> Future:
        """Queue ``fn`` and return the future its result will land in. Never blocks."""
        with self._shutdown_lock:
            if self._shutdown:
                raise RuntimeError("cannot schedule new work after shutdown")
            future: Future = Future()
            self._queue.put((fn, future))
        return future

    def shutdown(self) -> None:
        """Stop accepting work, let queued jobs finish, then join every worker."""
        with self._shutdown_lock:
            if self._shutdown:
                return
            self._shutdown = True
            for _ in self._workers:
                self._queue.put(_TERMINATE)

        for worker in self._workers:
            worker.join()
        logger.info("worker pool stopped")

    def _work(self) -> None:
        while True:
            envelope = self._queue.get()
            if envelope is _TERMINATE:
                return

            fn, future = envelope
            if not future.set_running_or_notify_cancel():
                continue
            try:
                result = fn()
            except BaseException as exc:
                # the worker survives; the submitter decides what the failure means
                logger.debug("job failed in %s: %r", threading.current_thread().name, exc)
                future.set_exception(exc)
            else:
                future.set_result(result)
