"""Job data model: requests, lifecycle events and completion payloads."""

from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from media_queue.errors import AppError, ErrorKind
from media_queue.media.formats import MediaType
from media_queue.media.metadata import MediaDatetime, MediaMetadata


class ProcessMediaRequest(BaseModel):
    """Submit-job body sent by the origin service."""
    file_id: UUID
    updated_date: MediaDatetime
    space_id: UUID
    folder_id: UUID
    s3_file_path: str


@dataclass(frozen=True)
class SourcePath:
    """Remote key of the uploaded original, split into the parts the queue needs."""
    key: str
    file_name: str
    stem: str
    extension: str

    @classmethod
    def parse(cls, key: str) -> "SourcePath":
        path = PurePosixPath(key)
        extension = path.suffix[1:]
        if not extension:
            raise ErrorKind.FS.msg("Invalid file path without extension")
        if not path.stem:
            raise ErrorKind.FS.msg("Invalid file stem")
        return cls(key=key, file_name=path.name, stem=path.stem, extension=extension)

    def sibling(self, file_name: str) -> str:
        """Key of ``file_name`` in the same remote folder as the original."""
        return str(PurePosixPath(self.key).with_name(file_name))


class EventKind(str, Enum):
    QUEUED = "queued"
    STARTED = "started"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class QueueEvent:
    """One step of a job's lifecycle: Queued -> Started -> Done | Err."""
    kind: EventKind
    error: Optional[AppError] = None

    @classmethod
    def queued(cls) -> "QueueEvent":
        return cls(EventKind.QUEUED)

    @classmethod
    def started(cls) -> "QueueEvent":
        return cls(EventKind.STARTED)

    @classmethod
    def done(cls) -> "QueueEvent":
        return cls(EventKind.DONE)

    @classmethod
    def failed(cls, error: AppError) -> "QueueEvent":
        return cls(EventKind.ERROR, error)

    @property
    def is_terminal(self) -> bool:
        return self.kind in (EventKind.DONE, EventKind.ERROR)


class ImageData(BaseModel):
    """Descriptor of one uploaded variant."""
    width: int
    height: int
    file_name: str


class ProcessedImage(BaseModel):
    thumbnail: ImageData
    preview: ImageData
    file_name: str


class ProcessedJob(BaseModel):
    """What a worker hands back to the orchestrator on success."""
    metadata: MediaMetadata
    file_size: int
    image: ProcessedImage


class FileData(BaseModel):
    file_name: str
    thumbnail: ImageData
    preview: ImageData
    metadata: MediaMetadata
    size: int
    media_type: MediaType


class CompletionPayload(BaseModel):
    """Body of the completion callback to the origin service."""
    file_id: UUID
    folder_id: UUID
    updated_date: MediaDatetime
    file_data: FileData
