"""Aggregate all v1 API routers."""

from fastapi import APIRouter
from media_queue.api.v1.queue import router as queue_router

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(queue_router, tags=["queue"])
