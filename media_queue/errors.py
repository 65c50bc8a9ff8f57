"""Typed application errors.

Every failure the queue can surface is an ``AppError`` tagged with an
``ErrorKind``, a human message, the call site that raised it and the
rendering of the underlying cause (if any). Build them through the kind::

    raise ErrorKind.MEDIA.msg("No video stream found")
    raise ErrorKind.STORAGE.err(exc, "Failed to upload preview")
"""

import inspect
import os
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    UNAUTHORIZED = "Unauthorized"
    BAD_REQUEST = "BadRequest"
    NOT_FOUND = "NotFound"
    SERVER = "ServerError"
    INVALID_BODY = "InvalidBody"
    FS = "FsError"
    STORAGE = "StorageError"
    MEDIA = "MediaError"

    def msg(self, message: str) -> "AppError":
        return AppError(self, message)

    def err(self, cause: BaseException, message: str) -> "AppError":
        return AppError(self, message, cause=cause)

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_STATUS_CODES = {
    ErrorKind.INVALID_BODY: 400,
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.SERVER: 500,
    ErrorKind.FS: 424,
    ErrorKind.STORAGE: 424,
    ErrorKind.MEDIA: 422,
}

_THIS_FILE = os.path.abspath(__file__)


def _call_site() -> str:
    """First frame outside this module, as ``file:line``."""
    frame = inspect.currentframe()
    try:
        while frame is not None and os.path.abspath(frame.f_code.co_filename) == _THIS_FILE:
            frame = frame.f_back
        if frame is None:
            return "unknown"
        return f"{frame.f_code.co_filename}:{frame.f_lineno}"
    finally:
        del frame


class AppError(Exception):
    """Base exception for every error the media queue reports."""

    def __init__(self, kind: ErrorKind, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.at = _call_site()
        self.cause = str(cause) if cause is not None else ""
        if cause is not None:
            self.__cause__ = cause

    def describe(self) -> str:
        return f"[{self.kind.value}]: {self.message}"

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"AppError(kind={self.kind.value!r}, message={self.message!r}, at={self.at!r}, cause={self.cause!r})"
