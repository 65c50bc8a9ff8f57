"""Media queue service - FastAPI application."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from media_queue.api.v1 import queue as queue_api
from media_queue.api.v1.health import router as health_router
from media_queue.api.v1.router import v1_router
from media_queue.auth import bearer
from media_queue.auth.interconnect import InterconnectTrust
from media_queue.config import settings
from media_queue.errors import AppError, ErrorKind
from media_queue.jobs.media_queue import MediaQueue
from media_queue.logging_config import configure_logging
from media_queue.middleware.request_logging import RequestLoggingMiddleware
from media_queue.storage.remote import RemoteStorage, build_http_client
from media_queue.storage.scratch import scratch_from_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    configure_logging()
    logger.info("Starting media queue on port %s", settings.service_port)

    trust = InterconnectTrust.from_settings()
    storage_http = build_http_client()
    callback_http = build_http_client()
    scratch = scratch_from_settings()

    dispatcher = MediaQueue(
        storage=RemoteStorage.from_settings(storage_http),
        trust=trust,
        http=callback_http,
        scratch=scratch,
    )
    await dispatcher.start()
    logger.info("Media queue started with %d workers", settings.worker_count)

    # Wire dispatcher and trust into API endpoints
    bearer.set_trust(trust)
    queue_api.set_dispatcher(dispatcher)

    try:
        yield
    finally:
        logger.info("Shutting down media queue")
        queue_api.set_dispatcher(None)
        await dispatcher.stop()
        await callback_http.aclose()
        await storage_http.aclose()
        bearer.set_trust(None)


def error_response(err: AppError) -> JSONResponse:
    status = err.kind.status_code
    if status >= 500 or status == 424:
        logger.error("%s at %s (cause: %s)", err.describe(), err.at, err.cause or "-")
    else:
        logger.warning("%s at %s", err.describe(), err.at)
    return JSONResponse(status_code=status, content={"status": status, "message": err.describe()})


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return error_response(exc)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', '')}"
        for error in exc.errors()
    )
    return error_response(ErrorKind.INVALID_BODY.msg(details or "Invalid request body"))


def create_app() -> FastAPI:
    app = FastAPI(
        title="Media Queue",
        description="Thumbnails, previews and metadata for uploaded images and videos",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # Mount routers
    app.include_router(health_router, tags=["health"])  # GET /health at root
    app.include_router(v1_router)  # All /v1/* endpoints
    return app


app = create_app()


def run() -> None:
    configure_logging()
    uvicorn.run(app, host="0.0.0.0", port=settings.service_port, log_config=None)
