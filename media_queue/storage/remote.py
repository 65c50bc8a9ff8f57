"""S3-compatible object storage for originals and their derived variants.

boto3 is only used to presign URLs (no network round trip). Every transfer
goes through an async httpx client against those URLs, so the same calls
serve the event loop directly and worker threads through the bridge.
"""

import logging
from typing import AsyncIterator, Optional

import boto3
import httpx
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from media_queue.config import settings
from media_queue.errors import ErrorKind

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class RemoteStorage:
    """Presigned-URL access to one bucket."""

    def __init__(self, s3_client, bucket: str, http: httpx.AsyncClient, expiry_seconds: int = 3600):
        self._s3 = s3_client
        self._bucket = bucket
        self._http = http
        self._expiry = expiry_seconds

    @classmethod
    def from_settings(cls, http: httpx.AsyncClient) -> "RemoteStorage":
        s3_client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint or None,
            aws_access_key_id=settings.s3_access_key_id or None,
            aws_secret_access_key=settings.s3_secret_access_key or None,
            region_name=settings.s3_region,
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        )
        return cls(s3_client, settings.s3_bucket, http, settings.presign_expiry_seconds)

    # ------------------------------------------------------------------
    # Presigning
    # ------------------------------------------------------------------

    def _presign(self, operation: str, key: str, **extra) -> str:
        params = {"Bucket": self._bucket, "Key": key, **extra}
        try:
            return self._s3.generate_presigned_url(operation, Params=params, ExpiresIn=self._expiry)
        except (BotoCoreError, ClientError) as exc:
            raise ErrorKind.STORAGE.err(exc, f"Failed to presign {operation} for {key}") from exc

    def presign_read(self, key: str) -> str:
        return self._presign("get_object", key)

    def presign_head(self, key: str) -> str:
        return self._presign("head_object", key)

    def presign_write(self, key: str, content_type: str = "image/jpeg") -> str:
        return self._presign("put_object", key, ContentType=content_type)

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    async def head_size(self, key: str) -> int:
        """Size in bytes of the stored object."""
        try:
            response = await self._http.head(self.presign_head(key))
        except httpx.HTTPError as exc:
            raise ErrorKind.STORAGE.err(exc, "Failed to get head object") from exc
        if not response.is_success:
            raise ErrorKind.STORAGE.msg(f"Failed to get head object: {response.status_code}")

        length = response.headers.get("content-length")
        if length is None or not length.isdigit():
            raise ErrorKind.STORAGE.msg("Failed to get size of file")
        return int(length)

    async def stream(self, key: str) -> AsyncIterator[bytes]:
        """Yield the object's bytes chunk by chunk."""
        url = self.presign_read(key)
        try:
            async with self._http.stream("GET", url) as response:
                if not response.is_success:
                    raise ErrorKind.STORAGE.msg(f"Failed to download media: {response.status_code}")
                async for chunk in response.aiter_bytes(_CHUNK_SIZE):
                    yield chunk
        except httpx.HTTPError as exc:
            raise ErrorKind.STORAGE.err(exc, "Failed to read download byte stream") from exc

    async def download(self, key: str) -> bytes:
        buffer = bytearray()
        async for chunk in self.stream(key):
            buffer.extend(chunk)
        return bytes(buffer)

    async def upload(self, key: str, data: bytes, content_type: str = "image/jpeg") -> None:
        url = self.presign_write(key, content_type)
        try:
            response = await self._http.put(url, content=data, headers={"content-type": content_type})
        except httpx.HTTPError as exc:
            raise ErrorKind.STORAGE.err(exc, f"Failed to upload {key}") from exc
        if not response.is_success:
            raise ErrorKind.STORAGE.msg(f"Failed to upload {key}: {response.status_code}")
        logger.debug("uploaded %d bytes to %s", len(data), key)


def build_http_client(timeout: Optional[float] = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout or settings.callback_timeout_seconds)
