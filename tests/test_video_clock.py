from datetime import datetime, timedelta, timezone

import pytest

from strava_overlay.errors import MetadataExtractionError, SynchronizationError
from strava_overlay.video_clock import (
    ensure_within_activity,
    find_creation_time,
    parse_creation_time,
)

from conftest import LOCAL_START, make_activity


def _payload(format_tags=None, stream_tags=()):
    return {
        "format": {"tags": format_tags} if format_tags is not None else {},
        "streams": [{"codec_type": "video", "tags": tags} for tags in stream_tags],
    }


def test_format_creation_time_wins_over_streams() -> None:
    payload = _payload(
        {"creation_time": "2024-05-01T10:00:00Z"},
        [{"creation_time": "2030-01-01T00:00:00Z"}],
    )

    assert find_creation_time(payload) == "2024-05-01T10:00:00Z"


@pytest.mark.parametrize("tag", ["date", "DATE", "creation-time"])
def test_alternate_format_tags(tag: str) -> None:
    assert find_creation_time(_payload({tag: "2024-05-01 10:00:00"})) == "2024-05-01 10:00:00"


def test_rule_order_is_respected_within_format_tags() -> None:
    payload = _payload({"creation-time": "late", "date": "early"})

    assert find_creation_time(payload) == "early"


def test_falls_back_to_stream_tags() -> None:
    payload = _payload({"encoder": "x"}, [{"language": "und"}, {"DATE": "2024-05-01"}])

    assert find_creation_time(payload) == "2024-05-01"


def test_no_creation_time_returns_none() -> None:
    assert find_creation_time(_payload({"creation_time": "  "})) is None
    assert find_creation_time({}) is None


@pytest.mark.parametrize(
    "text",
    [
        "2024-05-01T10:00:00Z",
        "2024-05-01T10:00:00.000000Z",
        "2024-05-01T10:00:00.0000000Z",
        "2024-05-01 10:00:00",
        "2024:05:01 10:00:00",
        "2024-05-01T10:00:00+00:00",
    ],
)
def test_wall_clock_values_are_taken_as_written(text: str) -> None:
    assert parse_creation_time(text, utc_offset_s=7200) == LOCAL_START


def test_explicit_offset_is_shifted_onto_activity_clock() -> None:
    # 10:00 at +02:00 is 08:00 UTC, i.e. 10:00 on a UTC+2 activity clock
    parsed = parse_creation_time("2024-05-01T10:00:00+02:00", utc_offset_s=7200)

    assert parsed == LOCAL_START
    assert parsed.tzinfo == timezone.utc


def test_unparseable_creation_time_raises() -> None:
    with pytest.raises(MetadataExtractionError):
        parse_creation_time("yesterday-ish")


def test_video_inside_activity_is_accepted() -> None:
    activity = make_activity(elapsed_s=3600)

    ensure_within_activity(activity.reference_start, activity)
    ensure_within_activity(activity.reference_end, activity)


@pytest.mark.parametrize("offset", [-1, 3601])
def test_video_outside_activity_raises(offset: int) -> None:
    activity = make_activity(elapsed_s=3600)
    start = LOCAL_START + timedelta(seconds=offset)

    with pytest.raises(SynchronizationError):
        ensure_within_activity(start, activity)


def test_reference_start_is_local_clock() -> None:
    activity = make_activity(utc_offset_s=7200)

    assert activity.reference_start == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
