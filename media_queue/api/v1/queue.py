"""Media queue API: submit jobs and stream their progress as server-sent events."""

import asyncio
import logging
from typing import AsyncIterator, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from media_queue.auth.bearer import verify_interconnect
from media_queue.config import settings
from media_queue.errors import ErrorKind
from media_queue.jobs.dispatcher import JobDispatcher
from media_queue.jobs.event_bus import StreamClosed, StreamLagged, Subscription
from media_queue.jobs.models import EventKind, ProcessMediaRequest, QueueEvent

logger = logging.getLogger(__name__)

router = APIRouter()

# Set by main.py during lifespan
_dispatcher: Optional[JobDispatcher] = None


def set_dispatcher(dispatcher: Optional[JobDispatcher]) -> None:
    global _dispatcher
    _dispatcher = dispatcher


def _require_dispatcher() -> JobDispatcher:
    if _dispatcher is None:
        raise ErrorKind.SERVER.msg("Job dispatcher not initialized")
    return _dispatcher


class QueueResponse(BaseModel):
    status: int
    message: str


# ----------------------------------------------------------------------
# SSE formatting
# ----------------------------------------------------------------------

def format_sse(event: str, data: str = "") -> str:
    lines = [f"event: {event}"]
    for line in (data or event).splitlines() or [""]:
        lines.append(f"data: {line}")
    return "\n".join(lines) + "\n\n"


def format_queue_event(event: QueueEvent) -> str:
    if event.kind is EventKind.ERROR and event.error is not None:
        return format_sse(event.kind.value, event.error.describe())
    return format_sse(event.kind.value)


async def stream_job_events(
    dispatcher: JobDispatcher,
    subscription: Subscription,
    keepalive: float,
) -> AsyncIterator[str]:
    """Relay one subscription until its terminal event, pinging while idle."""
    try:
        while True:
            try:
                event = await asyncio.wait_for(subscription.recv(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keep-alive\n\n"
                continue
            except StreamLagged as lag:
                logger.warning("subscriber of %s lagged by %d event(s)", subscription.job_id, lag.skipped)
                yield format_sse(EventKind.ERROR.value, "stream lagged")
                continue
            except StreamClosed:
                return

            yield format_queue_event(event)
            if event.is_terminal:
                return
    finally:
        dispatcher.unsubscribe(subscription)


# ----------------------------------------------------------------------
# Endpoints
# ----------------------------------------------------------------------

@router.post("/queue", response_model=QueueResponse)
async def queue_media(request: ProcessMediaRequest, _token: UUID = Depends(verify_interconnect)):
    """Accept a thumbnail/preview job for an uploaded file."""
    dispatcher = _require_dispatcher()
    await dispatcher.submit(request)
    return QueueResponse(status=200, message="Media queued for processing")


@router.get("/subscribe/{file_id}")
async def subscribe_job(file_id: UUID, _token: UUID = Depends(verify_interconnect)) -> StreamingResponse:
    """Server-sent events for one job: queued, started, then done or error."""
    dispatcher = _require_dispatcher()
    subscription = await dispatcher.subscribe(file_id)
    if subscription is None:
        raise ErrorKind.NOT_FOUND.msg("Requested file id not present in queue")

    return StreamingResponse(
        stream_job_events(dispatcher, subscription, settings.sse_keepalive_seconds),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
