import json
from datetime import datetime, timezone

import pytest

from pydantic import ValidationError

from media_queue.errors import AppError, ErrorKind
from media_queue.jobs.models import ProcessMediaRequest
from media_queue.media.formats import MediaOrientation, MediaType, media_type_for_extension
from media_queue.media.metadata import (
    MediaMetadata,
    extract_gps_info,
    parse_dms_decimal,
    parse_exiftool_output,
    parse_media_datetime,
)


def test_dms_north():
    """test degrees-minutes-seconds text converts to decimal"""
    assert parse_dms_decimal('40 deg 26\' 46" N') == pytest.approx(40.446111, abs=1e-6)


def test_dms_south_is_negative():
    assert parse_dms_decimal('40 deg 26\' 46" S') == pytest.approx(-40.446111, abs=1e-6)


def test_dms_degree_sign_and_plain_decimal():
    assert parse_dms_decimal("79° 58' 56.00\" W") == pytest.approx(-79.982222, abs=1e-6)
    assert parse_dms_decimal("12.5") == 12.5


def test_dms_garbage():
    with pytest.raises(ValueError):
        parse_dms_decimal("unknown")


def test_gps_from_separate_tags():
    gps = extract_gps_info({"GPSLatitude": '1 deg 30\' 0" S', "GPSLongitude": '2 deg 15\' 0" E'})
    assert gps == (pytest.approx(-1.5), pytest.approx(2.25))


def test_exiftool_output_is_normalized():
    """test mixed string/number tags land in one representation"""
    output = json.dumps([{
        "SourceFile": "/tmp/scratch/cat.jpg",
        "Directory": "/tmp/scratch",
        "Make": "Canon",
        "Model": 5,
        "Software": 1.5,
        "ImageWidth": "4000",
        "ImageHeight": 3000,
        "ISO": "200",
        "ShutterSpeed": 0.004,
        "ExposureTime": "1/250",
        "FNumber": "2.8",
        "Orientation": "Rotate 90 CW",
        "DateTimeOriginal": "2023:05:01 10:20:30+02:00",
        "GPSPosition": "40 deg 26' 46.00\" N, 79 deg 58' 56.00\" W",
    }]).encode()

    metadata = parse_exiftool_output(output, "cat.jpg")

    assert metadata.make == "Canon"
    assert metadata.model == "5"
    assert metadata.software == "1.5"
    assert metadata.image_width == 4000
    assert metadata.image_height == 3000
    assert metadata.iso == 200
    assert metadata.shutter_speed == "0.004"
    assert metadata.exposure_time == "1/250"
    assert metadata.f_number == 2.8
    assert metadata.orientation is MediaOrientation.ROTATE_90_CW
    assert metadata.date_time == datetime(2023, 5, 1, 10, 20, 30, tzinfo=timezone.utc)
    assert metadata.latitude == pytest.approx(40.446111, abs=1e-6)
    assert metadata.longitude == pytest.approx(-79.982222, abs=1e-6)


def test_unparsable_values_are_dropped():
    metadata = parse_exiftool_output(b'{"ISO": "n/a", "Orientation": "sideways", "VideoFrameRate": "fast"}', "x")
    assert metadata.iso is None
    assert metadata.orientation is None
    assert metadata.frame_rate is None


def test_rotation_is_fallback_orientation():
    """test container rotation stands in for a missing orientation tag"""
    assert MediaMetadata.model_validate({"Rotation": 90}).orientation_hint() is MediaOrientation.ROTATE_90_CW
    assert MediaMetadata.model_validate({"Rotation": "Rotate 270 CW"}).rotation == 270
    assert MediaMetadata.model_validate({"Rotation": 0}).orientation_hint() is MediaOrientation.NORMAL
    assert MediaMetadata().orientation_hint() is None


def test_explicit_orientation_wins_over_rotation():
    metadata = MediaMetadata.model_validate({"Orientation": 3, "Rotation": 90})
    assert metadata.orientation_hint() is MediaOrientation.ROTATE_180


def test_bad_json_is_media_error():
    with pytest.raises(AppError) as exc_info:
        parse_exiftool_output(b"not json", "x.jpg")
    assert exc_info.value.kind is ErrorKind.MEDIA


def test_metadata_serializes_with_tag_names():
    metadata = MediaMetadata.model_validate({"Make": "Apple", "Orientation": 6})
    dumped = metadata.model_dump(mode="json", by_alias=True)
    assert dumped["Make"] == "Apple"
    assert dumped["Orientation"] == "6"


def test_datetime_formats():
    assert parse_media_datetime("2024-01-02T03:04:05+00:00") == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert parse_media_datetime("2024:01:02 03:04:05.25Z") == datetime(2024, 1, 2, 3, 4, 5, 250000, tzinfo=timezone.utc)
    assert parse_media_datetime("0000:00:00 00:00:00") is None


@pytest.mark.parametrize("ext, expected", [
    ("jpg", MediaType.IMAGE),
    ("HEIC", MediaType.IMAGE),
    ("mov", MediaType.VIDEO),
    ("MP4", MediaType.VIDEO),
])
def test_media_type_table(ext, expected):
    assert media_type_for_extension(ext) is expected


def test_unknown_extension():
    with pytest.raises(AppError) as exc_info:
        media_type_for_extension("txt")
    assert exc_info.value.message == "Invalid media format: txt"


def request_with_date(updated_date):
    return ProcessMediaRequest(
        file_id="0190a6d4-0000-7000-8000-000000000001",
        updated_date=updated_date,
        space_id="0190a6d4-0000-7000-8000-000000000002",
        folder_id="0190a6d4-0000-7000-8000-000000000003",
        s3_file_path="spaces/s1/cat.jpg",
    )


@pytest.mark.parametrize("raw", [
    "2024-05-01T10:00:00",
    "2024-05-01T10:00:00Z",
    "2024-05-01T12:00:00+02:00",
    "2024:05:01 10:00:00",
])
def test_updated_date_always_carries_an_offset(raw):
    """test naive, rfc 3339 and exif style timestamps reach the origin as utc-aware"""
    request = request_with_date(raw)
    assert request.updated_date.utcoffset() is not None
    assert request.updated_date == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    dumped = request.model_dump(mode="json")["updated_date"]
    assert dumped in ("2024-05-01T10:00:00Z", "2024-05-01T12:00:00+02:00")


def test_updated_date_rejects_garbage():
    with pytest.raises(ValidationError):
        request_with_date("yesterday")


def test_naive_capture_time_is_utc():
    """test metadata dates serialize with an offset whatever form exiftool used"""
    iso = MediaMetadata.model_validate({"DateTimeOriginal": "2024-05-01T10:00:00"})
    exif = MediaMetadata.model_validate({"DateTimeOriginal": "2024:05:01 10:00:00"})
    assert iso.model_dump(mode="json", by_alias=True)["DateTimeOriginal"] == "2024-05-01T10:00:00Z"
    assert exif.model_dump(mode="json", by_alias=True)["DateTimeOriginal"] == "2024-05-01T10:00:00Z"


def test_orientation_goes_out_as_text():
    """test orientation codes serialize as the numeric strings the origin parses"""
    dumped = MediaMetadata.model_validate({"Orientation": "Rotate 90 CW"}).model_dump(mode="json", by_alias=True)
    assert dumped["Orientation"] == "6"
    assert MediaMetadata().model_dump(mode="json", by_alias=True)["Orientation"] is None
    # and reads back
    assert MediaMetadata.model_validate(dumped).orientation is MediaOrientation.ROTATE_90_CW
