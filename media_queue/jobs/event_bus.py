"""
Per-job broadcast of lifecycle events to SSE subscribers.

Each registered job owns a channel with a bounded replay buffer. Registration
seeds the buffer with ``Queued`` so a subscriber that attaches before the job
starts still sees a coherent first state. Subscribers get the buffered
history on attach, then live events. A subscriber that falls more than
``depth`` events behind loses the oldest ones and is told how many it missed.

The job map is guarded by one lock; publishing is safe from any thread.
"""

import asyncio
import logging
import threading
from collections import deque
from typing import Deque, Dict, List, Optional
from uuid import UUID

from media_queue.jobs.models import QueueEvent

logger = logging.getLogger(__name__)

DEFAULT_DEPTH = 16


class StreamLagged(Exception):
    """The subscriber fell behind and ``skipped`` events were dropped."""

    def __init__(self, skipped: int):
        super().__init__(f"stream lagged by {skipped} events")
        self.skipped = skipped


class StreamClosed(Exception):
    """The job was retired and every buffered event has been consumed."""


class Subscription:
    """One receiver of a job's events."""

    def __init__(self, job_id: UUID, history: List[QueueEvent], capacity: int, loop: asyncio.AbstractEventLoop):
        self.job_id = job_id
        self._capacity = capacity
        self._buffer: Deque[QueueEvent] = deque(history[-capacity:])
        self._lagged = 0
        self._closed = False
        self._lock = threading.Lock()
        self._loop = loop
        self._wakeup = asyncio.Event()

    def _push(self, event: QueueEvent) -> None:
        with self._lock:
            if self._closed:
                return
            if len(self._buffer) >= self._capacity:
                self._buffer.popleft()
                self._lagged += 1
            self._buffer.append(event)
        self._notify()

    def _close(self) -> None:
        with self._lock:
            self._closed = True
        self._notify()

    def _notify(self) -> None:
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._wakeup.set)

    async def recv(self) -> QueueEvent:
        """Next event. Raises StreamLagged once after an overflow, StreamClosed at the end."""
        while True:
            with self._lock:
                if self._lagged:
                    skipped, self._lagged = self._lagged, 0
                    raise StreamLagged(skipped)
                if self._buffer:
                    return self._buffer.popleft()
                if self._closed:
                    raise StreamClosed()
                self._wakeup.clear()
            await self._wakeup.wait()


class _JobChannel:
    def __init__(self, depth: int):
        self.history: Deque[QueueEvent] = deque(maxlen=depth)
        self.subscribers: List[Subscription] = []


class JobEventBus:
    """Registry of live jobs and their subscribers."""

    def __init__(self, depth: int = DEFAULT_DEPTH):
        self._depth = depth
        self._lock = threading.Lock()
        self._channels: Dict[UUID, _JobChannel] = {}

    def register(self, job_id: UUID) -> bool:
        """Create the job's channel seeded with Queued. False if it is already live."""
        with self._lock:
            if job_id in self._channels:
                return False
            channel = _JobChannel(self._depth)
            channel.history.append(QueueEvent.queued())
            self._channels[job_id] = channel
        logger.debug("registered job %s", job_id)
        return True

    def subscribe(self, job_id: UUID) -> Optional[Subscription]:
        """Attach to a live job; None when it never existed or already finished.

        Must be called from a coroutine running on the loop that will consume
        the subscription.
        """
        loop = asyncio.get_running_loop()
        with self._lock:
            channel = self._channels.get(job_id)
            if channel is None:
                return None
            subscription = Subscription(job_id, list(channel.history), self._depth, loop)
            channel.subscribers.append(subscription)
            count = len(channel.subscribers)
        logger.debug("job %s has %d subscriber(s)", job_id, count)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            channel = self._channels.get(subscription.job_id)
            if channel is not None and subscription in channel.subscribers:
                channel.subscribers.remove(subscription)

    def publish(self, job_id: UUID, event: QueueEvent) -> bool:
        """Fan ``event`` out to current subscribers. No-op (False) for unknown jobs."""
        with self._lock:
            channel = self._channels.get(job_id)
            if channel is None:
                logger.warning("dropping %s event for unknown job %s", event.kind.value, job_id)
                return False
            channel.history.append(event)
            for subscription in channel.subscribers:
                subscription._push(event)
        return True

    def retire(self, job_id: UUID) -> None:
        """Remove the job; subscribers drain what they hold and then close."""
        with self._lock:
            channel = self._channels.pop(job_id, None)
        if channel is None:
            return
        for subscription in channel.subscribers:
            subscription._close()
        logger.debug("retired job %s", job_id)

    def __contains__(self, job_id: UUID) -> bool:
        with self._lock:
            return job_id in self._channels

    def __len__(self) -> int:
        with self._lock:
            return len(self._channels)
