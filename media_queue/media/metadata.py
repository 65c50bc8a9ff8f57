"""Media metadata harvested with exiftool.

exiftool reports the same tag as a string for one file and a number for
another (``ShutterSpeed`` is ``"1/250"`` or ``0.004``, ``Rotation`` is
``90`` or ``"Rotate 90 CW"``), so every field is optional and normalized
before validation: text-ish tags always become strings, numeric tags always
become numbers, and values that cannot be normalized are dropped instead of
failing the whole job.
"""

import asyncio
import json
import logging
import re
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Any, AsyncIterator, Dict, Optional, Tuple, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, field_serializer, field_validator

from media_queue.config import settings
from media_queue.errors import ErrorKind
from media_queue.media.formats import MediaOrientation

logger = logging.getLogger(__name__)

# Tags exiftool reports with local filesystem detail we never forward
_SCRUBBED_TAGS = ("SourceFile", "Directory")

_NUMBER = re.compile(r"[-+]?\d+(?:\.\d+)?")
_TZ_SUFFIX = re.compile(r"(Z|[+-]\d{2}:?\d{2})$")


def _coerce_media_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = parse_media_datetime(str(value))
        if parsed is None:
            raise ValueError(f"Invalid media datetime: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# RFC 3339 or exiftool's YYYY:MM:DD HH:MM:SS; naive values are UTC, output always carries an offset
MediaDatetime = Annotated[datetime, BeforeValidator(_coerce_media_datetime)]


class MediaMetadata(BaseModel):
    """Optional attributes of an image or video, keyed by exiftool tag name."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    make: Optional[str] = Field(default=None, alias="Make")
    model: Optional[str] = Field(default=None, alias="Model")
    software: Optional[str] = Field(default=None, alias="Software")

    image_width: Optional[int] = Field(default=None, alias="ImageWidth")
    image_height: Optional[int] = Field(default=None, alias="ImageHeight")

    duration: Optional[str] = Field(default=None, alias="Duration")
    media_duration: Optional[str] = Field(default=None, alias="MediaDuration")
    frame_rate: Optional[float] = Field(default=None, alias="VideoFrameRate")

    date_time: Optional[MediaDatetime] = Field(default=None, alias="DateTimeOriginal")
    orientation: Optional[MediaOrientation] = Field(default=None, alias="Orientation")
    # degrees clockwise, as reported by video containers
    rotation: Optional[int] = Field(default=None, alias="Rotation")

    iso: Optional[int] = Field(default=None, alias="ISO")
    shutter_speed: Optional[str] = Field(default=None, alias="ShutterSpeed")
    aperture: Optional[float] = Field(default=None, alias="Aperture")
    f_number: Optional[float] = Field(default=None, alias="FNumber")
    exposure_time: Optional[str] = Field(default=None, alias="ExposureTime")

    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @field_validator(
        "make", "model", "software", "duration", "media_duration",
        "shutter_speed", "exposure_time",
        mode="before",
    )
    @classmethod
    def _as_text(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)

    @field_validator("frame_rate", "aperture", "f_number", mode="before")
    @classmethod
    def _as_float(cls, value: Any) -> Optional[float]:
        return _to_float(value)

    @field_validator("image_width", "image_height", "iso", mode="before")
    @classmethod
    def _as_int(cls, value: Any) -> Optional[int]:
        number = _to_float(value)
        return int(number) if number is not None else None

    @field_validator("date_time", mode="before")
    @classmethod
    def _as_datetime(cls, value: Any) -> Optional[datetime]:
        if value is None:
            return None
        try:
            return _coerce_media_datetime(value)
        except ValueError:
            logger.debug("ignoring unparsable date %r", value)
            return None

    @field_validator("orientation", mode="before")
    @classmethod
    def _as_orientation(cls, value: Any) -> Optional[MediaOrientation]:
        if value is None:
            return None
        try:
            return MediaOrientation.parse(value)
        except ValueError:
            logger.debug("ignoring unknown orientation %r", value)
            return None

    @field_validator("rotation", mode="before")
    @classmethod
    def _as_degrees(cls, value: Any) -> Optional[int]:
        if value is None:
            return None
        number = _to_float(value)
        if number is not None:
            return int(number) % 360
        try:
            return MediaOrientation.parse(value).rotation_degrees
        except ValueError:
            logger.debug("ignoring unknown rotation %r", value)
            return None

    @field_serializer("orientation")
    def _orientation_text(self, value: Optional[MediaOrientation]) -> Optional[str]:
        # the origin service reads orientation codes as strings
        return str(int(value)) if value is not None else None

    def orientation_hint(self) -> Optional[MediaOrientation]:
        """Explicit orientation tag, falling back to the container rotation."""
        if self.orientation is not None:
            return self.orientation
        if self.rotation is not None:
            return MediaOrientation.from_rotation(self.rotation)
        return None


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def parse_media_datetime(value: str) -> Optional[datetime]:
    """Parse ISO-8601 or exiftool's ``YYYY:MM:DD HH:MM:SS[+HH:MM]``."""
    text = value.strip()
    try:
        parsed = datetime.fromisoformat(text[:-1] + "+00:00" if text.endswith("Z") else text)
    except ValueError:
        pass
    else:
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    # offset is dropped; exiftool local times are stored as UTC
    naive = _TZ_SUFFIX.sub("", text)
    for fmt in ("%Y:%m:%d %H:%M:%S", "%Y:%m:%d %H:%M:%S.%f"):
        try:
            return datetime.strptime(naive, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def parse_dms_decimal(dms: Union[str, float, int]) -> float:
    """Convert ``40 deg 26' 46.00" N`` style text to signed decimal degrees.

    Plain decimal strings are accepted too. Southern and western
    hemispheres are negative.
    """
    if isinstance(dms, (int, float)):
        return float(dms)

    text = dms.strip()
    hemisphere = text[-1:].upper()
    if hemisphere in ("N", "S", "E", "W"):
        text = text[:-1]
    else:
        hemisphere = ""

    parts = [float(n) for n in _NUMBER.findall(text)[:3]]
    if not parts:
        raise ValueError(f"Invalid coordinate: {dms!r}")
    parts += [0.0] * (3 - len(parts))

    degrees, minutes, seconds = parts
    decimal = abs(degrees) + minutes / 60.0 + seconds / 3600.0
    if degrees < 0 or hemisphere in ("S", "W"):
        return -decimal
    return decimal


def extract_gps_info(data: Dict[str, Any]) -> Optional[Tuple[float, float]]:
    """Latitude/longitude from a combined position tag or the separate ones."""
    coordinates = None

    combined = data.get("GPSCoordinates") or data.get("GPSPosition")
    if isinstance(combined, str) and "," in combined:
        lat, lng = combined.split(",", 1)
        coordinates = (lat.strip(), lng.strip())

    if coordinates is None:
        lat, lng = data.get("GPSLatitude"), data.get("GPSLongitude")
        if lat is not None and lng is not None:
            coordinates = (lat, lng)

    if coordinates is None:
        return None

    try:
        return parse_dms_decimal(coordinates[0]), parse_dms_decimal(coordinates[1])
    except ValueError:
        logger.warning("unparsable GPS coordinates: %r", coordinates)
        return None


def parse_exiftool_output(output: bytes, source_name: str) -> MediaMetadata:
    """Turn ``exiftool -j`` output into MediaMetadata."""
    try:
        data = json.loads(output.decode("utf-8", "replace"))
    except json.JSONDecodeError as exc:
        raise ErrorKind.MEDIA.err(exc, "Failed to deserialize metadata") from exc

    if isinstance(data, list):
        data = data[0] if data else {}
    if not isinstance(data, dict):
        raise ErrorKind.MEDIA.msg(f"Unexpected metadata shape for {source_name}")

    for tag in _SCRUBBED_TAGS:
        if tag in data:
            data[tag] = ""

    gps = extract_gps_info(data)

    try:
        metadata = MediaMetadata.model_validate(data)
    except ValidationError as exc:
        raise ErrorKind.MEDIA.err(exc, f"Failed to deserialize media data: {source_name}") from exc

    if gps is not None:
        metadata.latitude, metadata.longitude = gps
    return metadata


def extract_metadata_from_path(path: Union[str, Path], exiftool: Optional[str] = None) -> MediaMetadata:
    """Run exiftool against a local file. Blocking; call from a worker thread."""
    cmd = [exiftool or settings.exiftool_path, "-j", str(path)]
    try:
        result = subprocess.run(cmd, capture_output=True, check=False)
    except OSError as exc:
        raise ErrorKind.MEDIA.err(exc, "Failed to get exif data") from exc

    if result.returncode != 0:
        raise ErrorKind.MEDIA.msg(result.stderr.decode("utf-8", "replace").strip() or "exiftool failed")

    return parse_exiftool_output(result.stdout, Path(path).name)


async def extract_metadata_from_stream(
    chunks: AsyncIterator[bytes],
    source_name: str,
    exiftool: Optional[str] = None,
) -> MediaMetadata:
    """Pipe a remote byte stream into ``exiftool -j -``."""
    try:
        proc = await asyncio.create_subprocess_exec(
            exiftool or settings.exiftool_path, "-j", "-",
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise ErrorKind.MEDIA.err(exc, "Failed to get exif data") from exc

    async def feed() -> None:
        try:
            async for chunk in chunks:
                proc.stdin.write(chunk)
                await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            # exiftool closes stdin as soon as it has read the tags it needs
            logger.debug("exiftool stopped reading %s early", source_name)
        finally:
            proc.stdin.close()
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

    feeder = asyncio.create_task(feed())
    try:
        stdout, stderr = await asyncio.gather(proc.stdout.read(), proc.stderr.read())
        returncode = await proc.wait()
    except BaseException:
        feeder.cancel()
        if proc.returncode is None:
            proc.kill()
        raise
    await feeder

    if returncode != 0:
        raise ErrorKind.MEDIA.msg(stderr.decode("utf-8", "replace").strip() or "exiftool failed")

    return parse_exiftool_output(stdout, source_name)
