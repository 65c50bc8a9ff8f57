"""Video thumbnails: grab the first decodable frame and reuse the image pipeline."""

import logging
from fractions import Fraction
from typing import Optional

import av

from media_queue.errors import ErrorKind
from media_queue.media.codec import ProcessedMedia, process_image

logger = logging.getLogger(__name__)

_ENCODER_PIX_FMT = "yuvj420p"


def _encode_jpeg(frame: "av.VideoFrame") -> bytes:
    """Encode one decoded frame as a standalone JPEG through the MJPEG encoder."""
    try:
        encoder = av.CodecContext.create("mjpeg", "w")
    except (av.error.FFmpegError, ValueError) as exc:
        raise ErrorKind.MEDIA.err(exc, "MJPEG codec not found") from exc

    encoder.width = frame.width
    encoder.height = frame.height
    encoder.pix_fmt = _ENCODER_PIX_FMT
    encoder.time_base = Fraction(1, 1)

    try:
        scaled = frame.reformat(format=_ENCODER_PIX_FMT)
    except (av.error.FFmpegError, ValueError) as exc:
        raise ErrorKind.MEDIA.err(exc, "Failed to scale frame") from exc
    scaled.pts = 0

    buffer = bytearray()
    try:
        for packet in encoder.encode(scaled):
            buffer.extend(bytes(packet))
        # drain
        for packet in encoder.encode(None):
            buffer.extend(bytes(packet))
    except (av.error.FFmpegError, ValueError) as exc:
        raise ErrorKind.MEDIA.err(exc, "Failed to encode frame") from exc

    if not buffer:
        raise ErrorKind.MEDIA.msg("Empty encoded packet data")
    return bytes(buffer)


def extract_first_frame(source_url: str) -> bytes:
    """Open ``source_url`` (a presigned URL or a local path) and return its first frame as JPEG."""
    try:
        container = av.open(source_url)
    except (av.error.FFmpegError, OSError) as exc:
        raise ErrorKind.MEDIA.err(exc, "Failed to open video source") from exc

    with container:
        if not container.streams.video:
            raise ErrorKind.MEDIA.msg("No video stream found")
        stream = container.streams.best("video")
        if stream is None:
            raise ErrorKind.MEDIA.msg("No video stream found")
        stream.thread_type = "AUTO"

        try:
            for packet in container.demux(stream):
                for frame in packet.decode():
                    logger.debug(
                        "grabbed %sx%s frame (%s) from %s stream",
                        frame.width, frame.height, frame.format.name, stream.codec_context.name,
                    )
                    return _encode_jpeg(frame)
        except av.error.FFmpegError as exc:
            raise ErrorKind.MEDIA.err(exc, "Failed to decode video packet") from exc

    raise ErrorKind.MEDIA.msg("No frames found to process")


def process_video(source_url: str, orientation: Optional[int], stem: str) -> ProcessedMedia:
    """Thumbnail and preview from the first frame, oriented by the container rotation."""
    jpeg = extract_first_frame(source_url)
    return process_image(jpeg, orientation, stem)
