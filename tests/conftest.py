"""Global pytest fixtures & helpers.

Adds project root to path and provides factories for activities, trackpoints
and overlay frames shared across test modules.
"""
from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Sequence

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from strava_overlay.models import (
    Activity,
    ActivityStreams,
    OverlayFrame,
    Trackpoint,
    TrackpointMetrics,
)
from strava_overlay.telemetry import build_trackpoints

# Activity recorded 08:00 UTC in a UTC+2 zone; local clock starts 10:00.
START_UTC = datetime(2024, 5, 1, 8, 0, 0, tzinfo=timezone.utc)
LOCAL_START = datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)

# ~11.1 m per sample when moving due north, i.e. ~40 km/h at 1 Hz.
STEP_DEG = 0.0001


# --- Factory helpers -------------------------------------------------
def make_activity(activity_id=42, elapsed_s=3600.0, utc_offset_s=7200.0) -> Activity:
    return Activity(
        id=activity_id,
        start_date=START_UTC,
        utc_offset_s=utc_offset_s,
        elapsed_time_s=elapsed_s,
        name="Morning Ride",
    )


def make_point(
    offset_s: float,
    latlng=(45.0, 7.0),
    elevation: Optional[float] = None,
    base: datetime = LOCAL_START,
) -> Trackpoint:
    return Trackpoint(
        time=base + timedelta(seconds=offset_s), latlng=latlng, elevation=elevation
    )


def make_streams(seconds: int, *, altitude_step: float = 0.5) -> ActivityStreams:
    return ActivityStreams(
        time=list(range(seconds)),
        latlng=[[45.0 + i * STEP_DEG, 7.0] for i in range(seconds)],
        distance=[i * 11.1 for i in range(seconds)],
        altitude=[100.0 + i * altitude_step for i in range(seconds)],
    )


def make_track(activity: Activity, seconds: int = 121) -> List[Trackpoint]:
    return build_trackpoints(activity, make_streams(seconds))


def make_frames(
    directory: Path,
    offsets: Sequence[float],
    *,
    base: datetime = LOCAL_START,
    speeds: Optional[Sequence[float]] = None,
) -> List[OverlayFrame]:
    directory.mkdir(parents=True, exist_ok=True)
    frames = []
    for index, offset in enumerate(offsets):
        path = directory / f"overlay_42_job_{index:06d}.svg"
        path.write_text("<svg/>", encoding="utf-8")
        speed = speeds[index] if speeds is not None else 20.0
        frames.append(
            OverlayFrame(
                index=index,
                timestamp=base + timedelta(seconds=offset),
                path=path,
                metrics=TrackpointMetrics(speed_kmh=speed),
            )
        )
    return frames


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def activity() -> Activity:
    return make_activity()


@pytest.fixture
def track(activity: Activity) -> List[Trackpoint]:
    return make_track(activity)


@pytest.fixture
def video_file(tmp_path: Path) -> Path:
    path = tmp_path / "ride.mp4"
    path.write_bytes(b"\x00" * 128)
    return path
