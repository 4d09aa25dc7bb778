from pathlib import Path

import pytest

from strava_overlay.errors import OverlayGenerationError
from strava_overlay.metrics import compute_metrics
from strava_overlay.models import TrackpointMetrics
from strava_overlay.overlay import (
    OverlayGenerator,
    cleanup_overlays,
    overlay_filename,
    render_svg,
    speed_scale,
)

from conftest import LOCAL_START, make_point


@pytest.mark.parametrize(
    "speeds, expected",
    [([], 10), ([0.0], 10), ([9.9], 10), ([10.0], 10), ([10.1], 20), ([12.0, 47.0], 50)],
)
def test_speed_scale_is_next_multiple_of_ten(speeds, expected) -> None:
    assert speed_scale(speeds) == expected


def test_overlay_filename_is_namespaced_by_activity_and_job() -> None:
    assert overlay_filename(42, "abc123", 7) == "overlay_42_abc123_000007.svg"


def test_render_svg_contains_gauges_and_timestamp() -> None:
    metrics = TrackpointMetrics(
        speed_kmh=23.45, bearing_deg=90.0, g_force=0.5,
        elevation_gain_m=1.25, total_elevation_gain_m=12.6,
    )

    svg = render_svg(metrics, LOCAL_START, 30)

    assert svg.startswith("<?xml")
    assert 'width="400" height="300"' in svg
    assert ">23.4</text>" in svg or ">23.5</text>" in svg
    assert "km/h" in svg
    assert ">0.50</text>" in svg
    assert ">13m</text>" in svg
    assert ">+1.2</text>" in svg or ">+1.3</text>" in svg
    assert ">10:00:00</text>" in svg
    assert ">30</text>" in svg and ">40</text>" not in svg
    assert 'stroke="url(#speedGradient)"' in svg


def test_speed_arc_omitted_when_stationary() -> None:
    svg = render_svg(TrackpointMetrics(), LOCAL_START, 10)

    assert "speedGradient)" not in svg.split("</defs>")[1]


def test_generate_writes_one_frame_per_annotated_point(tmp_path: Path) -> None:
    points = [
        make_point(0, (45.0, 7.0)),
        make_point(1, None),
        make_point(2, (45.0001, 7.0)),
        make_point(3, (45.0004, 7.0)),
    ]
    compute_metrics(points)

    frames = OverlayGenerator(tmp_path).generate(42, "job1", points)

    assert [f.index for f in frames] == [0, 1, 2]
    assert [f.path.name for f in frames] == [
        "overlay_42_job1_000000.svg",
        "overlay_42_job1_000001.svg",
        "overlay_42_job1_000002.svg",
    ]
    assert frames[1].timestamp == points[2].time
    assert all(f.path.exists() for f in frames)


def test_all_frames_share_one_speed_scale(tmp_path: Path) -> None:
    points = [
        make_point(0, (45.0, 7.0)),
        make_point(1, (45.0, 7.0)),
        make_point(2, (45.0001, 7.0)),
    ]
    compute_metrics(points)
    # ~40 km/h at the last point, so every frame uses a 50 km/h dial
    frames = OverlayGenerator(tmp_path).generate(42, "job1", points)

    for frame in frames:
        svg = frame.path.read_text(encoding="utf-8")
        assert ">50</text>" in svg
        assert ">60</text>" not in svg


def test_generate_fails_when_directory_is_unwritable(tmp_path: Path) -> None:
    blocked = tmp_path / "blocked"
    blocked.write_text("not a directory", encoding="utf-8")
    points = compute_metrics([make_point(0), make_point(1)])

    with pytest.raises(OverlayGenerationError):
        OverlayGenerator(blocked).generate(42, "job1", points)


def test_cleanup_removes_only_matching_files(tmp_path: Path) -> None:
    names = [
        "overlay_42_job1_000000.svg",
        "overlay_42_job1_000001.png",
        "overlay_42_job2_000000.svg",
        "overlay_420_job1_000000.svg",
        "overlay_42_job1_000000.svg.bak",
        "notes.txt",
    ]
    for name in names:
        (tmp_path / name).write_text("x", encoding="utf-8")

    assert cleanup_overlays(42, "job1", tmp_path) == 2
    remaining = sorted(p.name for p in tmp_path.iterdir())
    assert "overlay_42_job2_000000.svg" in remaining

    assert cleanup_overlays(42, overlay_dir=tmp_path) == 1
    assert sorted(p.name for p in tmp_path.iterdir()) == [
        "notes.txt",
        "overlay_420_job1_000000.svg",
        "overlay_42_job1_000000.svg.bak",
    ]


def test_cleanup_missing_directory_is_noop(tmp_path: Path) -> None:
    assert cleanup_overlays(42, "job1", tmp_path / "missing") == 0


def test_activity_cleanup_removes_job_ids_with_underscores(tmp_path: Path) -> None:
    points = [make_point(0, (45.0, 7.0)), make_point(1, (45.0001, 7.0))]
    compute_metrics(points)
    frames = OverlayGenerator(tmp_path).generate(42, "job_1", points)
    (tmp_path / "overlay_7_job_1_000000.svg").write_text("x", encoding="utf-8")

    assert len(frames) == 2
    assert cleanup_overlays(42, overlay_dir=tmp_path) == 2
    assert [p.name for p in tmp_path.iterdir()] == ["overlay_7_job_1_000000.svg"]
