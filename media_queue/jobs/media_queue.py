"""Media job orchestrator.

A job goes through three hands:

1. ``submit`` (event loop): validates the path, issues the callback token,
   registers the job on the event bus (``Queued``) and hands the pipeline
   to the worker pool.
2. ``_process`` (pool thread): publishes ``Started``, fetches size and
   metadata, renders the variants and uploads them. Remote I/O goes through
   the AsyncBridge.
3. ``_complete`` (event loop task): awaits the pool result, posts the
   completion callback to the origin service, publishes ``Done`` or ``Err``
   and retires the job.
"""

import asyncio
import functools
import logging
from concurrent.futures import Future
from typing import Optional, Set
from uuid import UUID

import httpx

from media_queue.auth.interconnect import InterconnectTrust
from media_queue.config import settings
from media_queue.errors import AppError, ErrorKind
from media_queue.jobs.bridge import AsyncBridge
from media_queue.jobs.dispatcher import JobDispatcher
from media_queue.jobs.event_bus import JobEventBus, Subscription
from media_queue.jobs.models import (
    CompletionPayload,
    FileData,
    ImageData,
    ProcessedImage,
    ProcessedJob,
    ProcessMediaRequest,
    QueueEvent,
    SourcePath,
)
from media_queue.jobs.worker_pool import WorkerPool
from media_queue.media.codec import ProcessedMedia, process_image
from media_queue.media.formats import MediaType, media_type_for_extension
from media_queue.media.metadata import extract_metadata_from_path, extract_metadata_from_stream
from media_queue.media.video import process_video
from media_queue.storage.remote import RemoteStorage
from media_queue.storage.scratch import ScratchStore

logger = logging.getLogger(__name__)

X_SPACE_HEADER = "x-space-id"


class MediaQueue(JobDispatcher):
    """Thumbnail/preview/metadata jobs on a fixed worker pool."""

    def __init__(
        self,
        storage: RemoteStorage,
        trust: InterconnectTrust,
        http: httpx.AsyncClient,
        scratch: ScratchStore,
        worker_count: Optional[int] = None,
        event_bus: Optional[JobEventBus] = None,
        callback_path: Optional[str] = None,
    ):
        self._storage = storage
        self._trust = trust
        self._http = http
        self._scratch = scratch
        self._worker_count = worker_count or settings.worker_count
        self._bus = event_bus or JobEventBus(settings.event_replay_depth)
        self._callback_path = callback_path or settings.callback_path
        self._pool: Optional[WorkerPool] = None
        self._bridge: Optional[AsyncBridge] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def event_bus(self) -> JobEventBus:
        return self._bus

    @property
    def trust(self) -> InterconnectTrust:
        return self._trust

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._bridge = AsyncBridge(asyncio.get_running_loop())
        self._pool = WorkerPool(self._worker_count)

    async def stop(self) -> None:
        """Let queued jobs finish, join the workers, then flush completion tasks."""
        if self._pool is not None:
            await asyncio.to_thread(self._pool.shutdown)
            self._pool = None
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._scratch.cleanup_expired()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(self, request: ProcessMediaRequest) -> None:
        if self._pool is None or self._bridge is None:
            raise ErrorKind.SERVER.msg("Media queue is not running")

        source = SourcePath.parse(request.s3_file_path)
        media_type = media_type_for_extension(source.extension)
        token = self._trust.issue()

        if not self._bus.register(request.file_id):
            raise ErrorKind.BAD_REQUEST.msg("File is already queued for processing")

        try:
            future = self._pool.execute(functools.partial(self._process, request, source, media_type))
        except RuntimeError as exc:
            self._bus.retire(request.file_id)
            raise ErrorKind.SERVER.err(exc, "Media queue is shutting down") from exc

        task = asyncio.create_task(
            self._complete(request, source, media_type, token, future),
            name=f"complete-{request.file_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("queued %s %s (%s)", media_type.value, source.key, request.file_id)

    async def subscribe(self, file_id: UUID) -> Optional[Subscription]:
        return self._bus.subscribe(file_id)

    def unsubscribe(self, subscription: Subscription) -> None:
        self._bus.unsubscribe(subscription)

    # ------------------------------------------------------------------
    # Worker side (runs on a pool thread)
    # ------------------------------------------------------------------

    def _process(self, request: ProcessMediaRequest, source: SourcePath, media_type: MediaType) -> ProcessedJob:
        bridge = self._bridge
        file_id = request.file_id
        self._bus.publish(file_id, QueueEvent.started())

        file_size = bridge.run(self._storage.head_size(source.key))

        if media_type is MediaType.IMAGE:
            data = bridge.run(self._storage.download(source.key))
            local_path = self._scratch.write(str(file_id), source.file_name, data)
            metadata = extract_metadata_from_path(local_path)
            rendered = process_image(data, metadata.orientation_hint(), source.stem)
        else:
            metadata = bridge.run(
                extract_metadata_from_stream(self._storage.stream(source.key), source.file_name)
            )
            url = self._storage.presign_read(source.key)
            rendered = process_video(url, metadata.orientation_hint(), source.stem)

        self._upload(bridge, source, rendered)

        return ProcessedJob(
            metadata=metadata,
            file_size=file_size,
            image=ProcessedImage(
                thumbnail=ImageData(
                    width=rendered.thumbnail.width,
                    height=rendered.thumbnail.height,
                    file_name=rendered.thumbnail.remote_file_name,
                ),
                preview=ImageData(
                    width=rendered.preview.width,
                    height=rendered.preview.height,
                    file_name=rendered.preview.remote_file_name,
                ),
                file_name=source.file_name,
            ),
        )

    def _upload(self, bridge: AsyncBridge, source: SourcePath, rendered: ProcessedMedia) -> None:
        # no rollback: a failed preview leaves the thumbnail behind
        for variant in (rendered.thumbnail, rendered.preview):
            bridge.run(self._storage.upload(source.sibling(variant.remote_file_name), variant.encoded_bytes))

    # ------------------------------------------------------------------
    # Completion (runs on the event loop)
    # ------------------------------------------------------------------

    async def _complete(
        self,
        request: ProcessMediaRequest,
        source: SourcePath,
        media_type: MediaType,
        token: str,
        future: Future,
    ) -> None:
        file_id = request.file_id
        try:
            try:
                job = await asyncio.wrap_future(future)
                await self._notify_origin(request, media_type, job, token)
            except AppError as err:
                logger.error("job %s failed at %s: %s (%s)", file_id, err.at, err.describe(), err.cause)
                event = QueueEvent.failed(err)
            except Exception as exc:
                logger.exception("job %s crashed", file_id)
                event = QueueEvent.failed(ErrorKind.SERVER.err(exc, "Media processing crashed"))
            else:
                logger.info("processed %s (%s)", source.key, file_id)
                event = QueueEvent.done()
            self._bus.publish(file_id, event)
        finally:
            self._bus.retire(file_id)
            self._scratch.discard(str(file_id))

    async def _notify_origin(
        self,
        request: ProcessMediaRequest,
        media_type: MediaType,
        job: ProcessedJob,
        token: str,
    ) -> None:
        payload = CompletionPayload(
            file_id=request.file_id,
            folder_id=request.folder_id,
            updated_date=request.updated_date,
            file_data=FileData(
                file_name=job.image.file_name,
                thumbnail=job.image.thumbnail,
                preview=job.image.preview,
                metadata=job.metadata,
                size=job.file_size,
                media_type=media_type,
            ),
        )
        try:
            response = await self._http.post(
                self._trust.backend_uri(self._callback_path),
                json=payload.model_dump(mode="json", by_alias=True),
                headers={
                    "Authorization": f"Bearer {token}",
                    X_SPACE_HEADER: str(request.space_id),
                },
            )
        except httpx.HTTPError as exc:
            raise ErrorKind.SERVER.err(exc, "Failed to call backend for media updation") from exc

        if not response.is_success:
            raise ErrorKind.SERVER.msg(f"Failed to update the processed images: {response.reason_phrase}")
