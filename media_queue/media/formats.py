"""Media classification by file extension and EXIF orientation codes."""

from enum import Enum, IntEnum
from typing import Optional, Union

from PIL import Image

from media_queue.errors import ErrorKind


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


_EXTENSIONS = {
    # images
    "jpg": MediaType.IMAGE,
    "jpeg": MediaType.IMAGE,
    "png": MediaType.IMAGE,
    "gif": MediaType.IMAGE,
    "bmp": MediaType.IMAGE,
    "heif": MediaType.IMAGE,
    "heic": MediaType.IMAGE,
    "avif": MediaType.IMAGE,
    # videos
    "mp4": MediaType.VIDEO,
    "m4v": MediaType.VIDEO,
    "mkv": MediaType.VIDEO,
    "mov": MediaType.VIDEO,
    "avi": MediaType.VIDEO,
    "hevc": MediaType.VIDEO,
    "mpg": MediaType.VIDEO,
    "mpeg": MediaType.VIDEO,
}


def media_type_for_extension(ext: str) -> MediaType:
    """Classify a remote object by its extension (no content sniffing here)."""
    media_type = _EXTENSIONS.get(ext.lower())
    if media_type is None:
        raise ErrorKind.MEDIA.msg(f"Invalid media format: {ext}")
    return media_type


class MediaOrientation(IntEnum):
    """EXIF orientation tag (0x0112) values."""
    NORMAL = 1
    FLIP_HORIZONTAL = 2
    ROTATE_180 = 3
    FLIP_VERTICAL = 4
    TRANSPOSE = 5       # mirror horizontal + rotate 270 CW
    ROTATE_90_CW = 6
    TRANSVERSE = 7      # mirror horizontal + rotate 90 CW
    ROTATE_270_CW = 8

    @property
    def transpose_method(self) -> Optional[Image.Transpose]:
        return _TRANSPOSE_METHODS.get(self)

    @property
    def rotation_degrees(self) -> int:
        return _DEGREES.get(self, 0)

    @classmethod
    def from_rotation(cls, degrees: int) -> "MediaOrientation":
        return {
            90: cls.ROTATE_90_CW,
            180: cls.ROTATE_180,
            270: cls.ROTATE_270_CW,
        }.get(degrees % 360, cls.NORMAL)

    @classmethod
    def parse(cls, value: Union[str, int, float]) -> "MediaOrientation":
        """Accept an EXIF code or the text exiftool prints for it."""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return cls(int(value))
        text = str(value).strip().lower()
        if text.isdigit():
            return cls(int(text))
        try:
            return _TEXT_VALUES[text]
        except KeyError:
            raise ValueError(f"Invalid orientation value: {value}") from None


_TRANSPOSE_METHODS = {
    MediaOrientation.FLIP_HORIZONTAL: Image.Transpose.FLIP_LEFT_RIGHT,
    MediaOrientation.ROTATE_180: Image.Transpose.ROTATE_180,
    MediaOrientation.FLIP_VERTICAL: Image.Transpose.FLIP_TOP_BOTTOM,
    MediaOrientation.TRANSPOSE: Image.Transpose.TRANSPOSE,
    # PIL rotates counter-clockwise
    MediaOrientation.ROTATE_90_CW: Image.Transpose.ROTATE_270,
    MediaOrientation.TRANSVERSE: Image.Transpose.TRANSVERSE,
    MediaOrientation.ROTATE_270_CW: Image.Transpose.ROTATE_90,
}

_DEGREES = {
    MediaOrientation.ROTATE_90_CW: 90,
    MediaOrientation.ROTATE_180: 180,
    MediaOrientation.ROTATE_270_CW: 270,
}

_TEXT_VALUES = {
    "horizontal (normal)": MediaOrientation.NORMAL,
    "normal": MediaOrientation.NORMAL,
    "none": MediaOrientation.NORMAL,
    "rotate 0": MediaOrientation.NORMAL,
    "mirror horizontal": MediaOrientation.FLIP_HORIZONTAL,
    "flip horizontal": MediaOrientation.FLIP_HORIZONTAL,
    "rotate 180": MediaOrientation.ROTATE_180,
    "mirror vertical": MediaOrientation.FLIP_VERTICAL,
    "flip vertical": MediaOrientation.FLIP_VERTICAL,
    "mirror horizontal and rotate 270 cw": MediaOrientation.TRANSPOSE,
    "transpose": MediaOrientation.TRANSPOSE,
    "rotate 90 cw": MediaOrientation.ROTATE_90_CW,
    "90 cw": MediaOrientation.ROTATE_90_CW,
    "mirror horizontal and rotate 90 cw": MediaOrientation.TRANSVERSE,
    "transverse": MediaOrientation.TRANSVERSE,
    "rotate 270 cw": MediaOrientation.ROTATE_270_CW,
    "rotate 90 ccw": MediaOrientation.ROTATE_270_CW,
    "270 cw": MediaOrientation.ROTATE_270_CW,
    "90 ccw": MediaOrientation.ROTATE_270_CW,
}
