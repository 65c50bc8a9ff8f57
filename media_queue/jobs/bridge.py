"""The one sanctioned crossing from a worker thread into the event loop."""

import asyncio
from typing import Any, Coroutine, Optional, TypeVar

T = TypeVar("T")


class AsyncBridge:
    """Runs coroutines on the service loop on behalf of blocking worker threads.

    Storage and metadata I/O is async, but the media pipeline runs on pool
    threads. ``run`` hands the coroutine to the loop and parks the calling
    thread until it finishes. Never call it from the loop thread itself:
    that thread would wait on work only it can run.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def run(self, coro: Coroutine[Any, Any, T], timeout: Optional[float] = None) -> T:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            coro.close()
            raise RuntimeError("AsyncBridge.run called from the event loop thread")

        return asyncio.run_coroutine_threadsafe(coro, self._loop).result(timeout)
