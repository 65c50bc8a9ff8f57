"""Job dispatcher interface."""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from media_queue.jobs.event_bus import Subscription
from media_queue.jobs.models import ProcessMediaRequest


class JobDispatcher(ABC):
    """Abstract interface the HTTP layer talks to."""

    @abstractmethod
    async def submit(self, request: ProcessMediaRequest) -> None:
        """Queue a media job. Raises AppError for requests rejected up front."""
        ...

    @abstractmethod
    async def subscribe(self, file_id: UUID) -> Optional[Subscription]:
        """Event stream of a live job, or None if there is nothing to watch."""
        ...

    @abstractmethod
    def unsubscribe(self, subscription: Subscription) -> None:
        """Detach a subscriber that stopped listening."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Start the dispatcher (must run on the serving event loop)."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the dispatcher gracefully."""
        ...
