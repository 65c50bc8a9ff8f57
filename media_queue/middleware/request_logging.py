"""Access log middleware: one line per request, tagged with a request id."""

import logging
import time
import uuid
from typing import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "x-request-id"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tags every request with an id and logs method, path, status and latency."""

    def __init__(self, app, logger: logging.Logger = None):
        super().__init__(app)
        self.logger = logger or logging.getLogger("media_queue.http")

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        client = request.client.host if request.client else "unknown"
        self.logger.debug("[%s] %s %s <- %s", request_id, request.method, request.url.path, client)

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.logger.exception(
                "[%s] %s %s -> unhandled error (%.2f ms)",
                request_id, request.method, request.url.path, duration_ms,
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        status = response.status_code
        if status >= 500:
            level = logging.ERROR
        elif status >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        self.logger.log(
            level, "[%s] %s %s -> %d (%.2f ms)",
            request_id, request.method, request.url.path, status, duration_ms,
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
