"""Image decode / orient / resize / encode pipeline.

Everything here is pure and stateless: bytes in, two JPEG variants out.
The format is sniffed from magic bytes, never from the file extension.
General raster formats go through Pillow; HEIF/HEIC goes through
pillow-heif and is wrapped as a regular Pillow image before the shared
orient + resize path.
"""

import io
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import filetype
import numpy as np
import pillow_heif
from PIL import Image, UnidentifiedImageError

from media_queue.errors import ErrorKind
from media_queue.media.formats import MediaOrientation

logger = logging.getLogger(__name__)

THUMBNAIL_HEIGHT = 176
THUMBNAIL_QUALITY = 60
PREVIEW_HEIGHT = 1080
PREVIEW_QUALITY = 80

# Disable PIL decompression bomb check; originals come from trusted uploads
Image.MAX_IMAGE_PIXELS = None


class ImageFormat(str, Enum):
    GENERAL = "general"
    HEIF = "heif"


_GENERAL_MIMES = {
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/bmp",
    "image/tiff",
    "image/avif",
    "image/x-icon",
}
_HEIF_MIMES = {"image/heic", "image/heif"}


@dataclass
class MediaVariant:
    """One resized, re-encoded derivative of the source."""
    width: int
    height: int
    encoded_bytes: bytes
    remote_file_name: str


@dataclass
class ProcessedMedia:
    thumbnail: MediaVariant
    preview: MediaVariant


def thumbnail_name(stem: str) -> str:
    return f"thumbnail_{stem}.jpeg"


def preview_name(stem: str) -> str:
    return f"preview_{stem}.jpeg"


def sniff_image_format(data: bytes) -> ImageFormat:
    """Classify ``data`` by magic bytes."""
    kind = filetype.guess(data)
    if kind is None:
        raise ErrorKind.MEDIA.msg("Could not detect file type from magic bytes")
    if kind.mime in _HEIF_MIMES:
        return ImageFormat.HEIF
    if kind.mime in _GENERAL_MIMES:
        return ImageFormat.GENERAL
    if not kind.mime.startswith("image/"):
        raise ErrorKind.MEDIA.msg(
            f"File is not an image, detected as: {kind.mime} ({kind.extension})"
        )
    raise ErrorKind.MEDIA.msg(f"Unsupported image format: {kind.mime} ({kind.extension})")


def _decode_general(data: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise ErrorKind.MEDIA.err(exc, "Failed to load image from bytes") from exc
    return img


def _decode_heif(data: bytes) -> Image.Image:
    """Decode the primary HEIF image (or the first one) into an RGB Pillow image."""
    try:
        heif_file = pillow_heif.open_heif(io.BytesIO(data), convert_hdr_to_8bit=True)
    except (ValueError, RuntimeError, OSError) as exc:
        raise ErrorKind.MEDIA.err(exc, "Failed to create HEIF context") from exc

    if len(heif_file) == 0:
        raise ErrorKind.MEDIA.msg("No image handle found for heif")

    index = heif_file.primary_index
    if not 0 <= index < len(heif_file):
        index = 0

    try:
        heif_image = heif_file[index]
        plane = np.asarray(heif_image)
    except (ValueError, RuntimeError) as exc:
        raise ErrorKind.MEDIA.err(exc, "Failed to decode from heif handle") from exc

    if plane.ndim != 3 or plane.shape[2] < 3:
        raise ErrorKind.MEDIA.msg("Interleaved RGB plane not found in heif image")
    return Image.fromarray(np.ascontiguousarray(plane[:, :, :3]), mode="RGB")


def decode_image(data: bytes) -> tuple[Image.Image, ImageFormat]:
    image_format = sniff_image_format(data)
    if image_format is ImageFormat.HEIF:
        return _decode_heif(data), image_format
    return _decode_general(data), image_format


def apply_orientation(img: Image.Image, orientation: Optional[int]) -> Image.Image:
    """Undo the EXIF orientation so the image displays upright.

    Codes outside 1..8 (or None) leave the image untouched.
    """
    if orientation is None:
        return img
    try:
        method = MediaOrientation(orientation).transpose_method
    except ValueError:
        return img
    if method is None:
        return img
    return img.transpose(method)


def render_variant(img: Image.Image, height: int, quality: int, name: str) -> MediaVariant:
    """Resize to a fixed height keeping aspect ratio, then JPEG encode."""
    src_width, src_height = img.size
    if src_width == 0 or src_height == 0:
        raise ErrorKind.MEDIA.msg("Source image has no pixels")

    width = max(1, round(src_width * height / src_height))
    resized = img.convert("RGB").resize((width, height), Image.LANCZOS)

    buffer = io.BytesIO()
    try:
        resized.save(buffer, format="JPEG", quality=quality)
    except (OSError, ValueError) as exc:
        raise ErrorKind.FS.err(exc, "Failed to write image to buffer") from exc

    encoded = buffer.getvalue()
    if not encoded:
        raise ErrorKind.MEDIA.msg("Encoder produced an empty image")
    return MediaVariant(width=resized.width, height=resized.height, encoded_bytes=encoded, remote_file_name=name)


def render_variants(img: Image.Image, orientation: Optional[int], stem: str) -> ProcessedMedia:
    """Orient once, then derive thumbnail and preview from the same frame."""
    oriented = apply_orientation(img, orientation)
    return ProcessedMedia(
        thumbnail=render_variant(oriented, THUMBNAIL_HEIGHT, THUMBNAIL_QUALITY, thumbnail_name(stem)),
        preview=render_variant(oriented, PREVIEW_HEIGHT, PREVIEW_QUALITY, preview_name(stem)),
    )


def process_image(data: bytes, orientation: Optional[int], stem: str) -> ProcessedMedia:
    """Full image branch: sniff, decode, orient, resize, encode.

    libheif already applies the container's rotation/mirror transforms while
    decoding, so the orientation hint is ignored for HEIF sources.
    """
    img, image_format = decode_image(data)
    if image_format is ImageFormat.HEIF:
        orientation = None
    logger.debug("decoded %s image %sx%s for %s", image_format.value, img.width, img.height, stem)
    return render_variants(img, orientation, stem)
