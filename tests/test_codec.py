import io

import pytest
from PIL import Image

from media_queue.errors import AppError, ErrorKind
from media_queue.media.codec import (
    PREVIEW_HEIGHT,
    THUMBNAIL_HEIGHT,
    ImageFormat,
    apply_orientation,
    process_image,
    render_variant,
    sniff_image_format,
)

RED = (255, 0, 0)
BLUE = (0, 0, 255)


@pytest.fixture(name="marked_square")
def marked_square_fixture():
    """8x8 white square with a red top-left pixel"""
    img = Image.new("RGB", (8, 8), (255, 255, 255))
    img.putpixel((0, 0), RED)
    return img


@pytest.mark.parametrize("data", [
    b"",
    b"\x00\x01\x02 definitely not media" * 4,
])
def test_unknown_magic_bytes_fail(data):
    """test undetectable content is a media error, not an empty variant"""
    with pytest.raises(AppError) as exc_info:
        process_image(data, None, "x")
    assert exc_info.value.kind is ErrorKind.MEDIA


def test_non_image_type_fails():
    pdf = b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n" + b"0" * 64
    with pytest.raises(AppError) as exc_info:
        sniff_image_format(pdf)
    assert "not an image" in exc_info.value.message


def test_sniff_ignores_extension(split_image, encode):
    """test format comes from the bytes"""
    assert sniff_image_format(encode(split_image(), "PNG")) is ImageFormat.GENERAL
    assert sniff_image_format(encode(split_image())) is ImageFormat.GENERAL


def test_truncated_image_fails(split_image, encode):
    data = encode(split_image())
    with pytest.raises(AppError) as exc_info:
        process_image(data[:200], None, "broken")
    assert exc_info.value.kind is ErrorKind.MEDIA


@pytest.mark.parametrize("orientation", [None, 1, 0, 9])
def test_identity_orientations_are_noop(marked_square, orientation):
    """test absent, normal and out-of-range codes leave pixels alone"""
    result = apply_orientation(marked_square, orientation)
    assert result.getpixel((0, 0)) == RED
    assert result.tobytes() == marked_square.tobytes()


def test_rotate_180_twice_round_trips(marked_square):
    once = apply_orientation(marked_square, 3)
    assert once.getpixel((7, 7)) == RED
    twice = apply_orientation(once, 3)
    assert twice.tobytes() == marked_square.tobytes()


@pytest.mark.parametrize("orientation, corner", [
    (2, (7, 0)),  # mirror horizontal
    (4, (0, 7)),  # mirror vertical
    (5, (0, 0)),  # transpose
    (6, (7, 0)),  # rotate 90 cw
    (7, (7, 7)),  # transverse
    (8, (0, 7)),  # rotate 270 cw
])
def test_orientation_moves_top_left_corner(marked_square, orientation, corner):
    """test each exif code lands the top-left pixel where a viewer would show it"""
    assert apply_orientation(marked_square, orientation).getpixel(corner) == RED


def test_rotate_90_swaps_dimensions(split_image):
    rotated = apply_orientation(split_image(400, 300), 6)
    assert rotated.size == (300, 400)
    # left (red) half of the source is now on top
    assert rotated.getpixel((150, 10)) == RED
    assert rotated.getpixel((150, 390)) == BLUE


def test_render_variant_keeps_aspect_ratio(split_image):
    variant = render_variant(split_image(400, 300), THUMBNAIL_HEIGHT, 60, "thumbnail_cat.jpeg")
    assert (variant.width, variant.height) == (235, THUMBNAIL_HEIGHT)
    assert variant.encoded_bytes[:2] == b"\xff\xd8"
    assert Image.open(io.BytesIO(variant.encoded_bytes)).size == (235, THUMBNAIL_HEIGHT)


def test_render_variant_never_collapses_width():
    strip = Image.new("RGB", (1, 2000), RED)
    variant = render_variant(strip, THUMBNAIL_HEIGHT, 60, "t.jpeg")
    assert variant.width == 1


def test_process_image_names_and_sizes(split_image, encode):
    """test both variants come from one decode with derived names"""
    processed = process_image(encode(split_image(400, 300), "PNG"), None, "cat")

    assert processed.thumbnail.remote_file_name == "thumbnail_cat.jpeg"
    assert processed.preview.remote_file_name == "preview_cat.jpeg"
    assert processed.thumbnail.height == THUMBNAIL_HEIGHT
    assert processed.preview.height == PREVIEW_HEIGHT
    assert processed.preview.width == 1440
    assert len(processed.thumbnail.encoded_bytes) < len(processed.preview.encoded_bytes)


def test_process_image_handles_alpha(encode):
    rgba = Image.new("RGBA", (40, 20), (0, 255, 0, 128))
    processed = process_image(encode(rgba, "PNG"), 1, "alpha")
    assert processed.thumbnail.width == 352
