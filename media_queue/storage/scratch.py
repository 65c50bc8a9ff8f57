"""Per-job scratch files with TTL-based cleanup."""

import logging
import os
import shutil
import tempfile
import time
from typing import Optional

from media_queue.config import settings

logger = logging.getLogger(__name__)


class ScratchStore:
    """Local working copies of originals, one directory per job."""

    def __init__(self, base_dir: Optional[str] = None, ttl_hours: int = 2):
        if base_dir:
            self._base_dir = base_dir
        else:
            self._base_dir = os.path.join(tempfile.gettempdir(), "media_queue_scratch")
        os.makedirs(self._base_dir, exist_ok=True)
        self._ttl_seconds = ttl_hours * 3600

    @property
    def base_dir(self) -> str:
        return self._base_dir

    def job_dir(self, job_id: str) -> str:
        """Get or create directory for a job's scratch files."""
        job_dir = os.path.join(self._base_dir, str(job_id))
        os.makedirs(job_dir, exist_ok=True)
        return job_dir

    def write(self, job_id: str, file_name: str, data: bytes) -> str:
        path = os.path.join(self.job_dir(job_id), os.path.basename(file_name))
        with open(path, "wb") as fh:
            fh.write(data)
        return path

    def discard(self, job_id: str) -> None:
        shutil.rmtree(os.path.join(self._base_dir, str(job_id)), ignore_errors=True)

    def cleanup_expired(self) -> int:
        """Remove job directories older than TTL. Returns count of removed dirs."""
        now = time.time()
        removed = 0
        if not os.path.exists(self._base_dir):
            return 0
        for entry in os.listdir(self._base_dir):
            job_dir = os.path.join(self._base_dir, entry)
            if not os.path.isdir(job_dir):
                continue
            if now - os.path.getmtime(job_dir) > self._ttl_seconds:
                shutil.rmtree(job_dir, ignore_errors=True)
                removed += 1
        if removed:
            logger.info("removed %d expired scratch dir(s)", removed)
        return removed


def scratch_from_settings() -> ScratchStore:
    return ScratchStore(base_dir=settings.scratch_dir, ttl_hours=settings.scratch_ttl_hours)
