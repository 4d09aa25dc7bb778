from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List

import pytest

from strava_overlay.compositing import (
    Compositor,
    build_composition_plan,
    build_overlay_filter,
    build_static_filter,
    select_static_frame,
    select_strategy,
    subsample_frames,
)
from strava_overlay.errors import CompositingError
from strava_overlay.models import CompositionEntry, Strategy

from conftest import LOCAL_START, make_frames


class RecordingTaskFactory:
    """Stands in for ToolkitTask; records commands instead of spawning ffmpeg."""

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.fail_with = fail_with

    def __call__(self, cmd, *, description, error_cls, output_path):
        factory = self

        class _Task:
            def run(self, timeout=None):
                factory.calls.append(
                    {"cmd": list(cmd), "timeout": timeout, "output": output_path}
                )
                if factory.fail_with is not None:
                    raise factory.fail_with
                output_path.write_bytes(b"video")

        return _Task()


def _fake_rasterizer(svg: Path, png: Path) -> Path:
    png.write_bytes(b"png")
    return png


def _compositor(factory: RecordingTaskFactory) -> Compositor:
    return Compositor(
        ffmpeg="ffmpeg", rasterizer=_fake_rasterizer, task_factory=factory, timeout_s=600
    )


# --- plan -----------------------------------------------------------
def test_windows_derive_from_consecutive_gaps(tmp_path: Path) -> None:
    frames = make_frames(tmp_path, [0.0, 0.05, 1.05, 11.05])
    video_start = LOCAL_START + timedelta(seconds=2)

    plan = build_composition_plan(frames, video_start, Strategy.COMPLEX)

    assert [e.duration_s for e in plan.entries] == pytest.approx([0.1, 1.0, 5.0, 1.0])
    assert [e.start_s for e in plan.entries] == pytest.approx([-2.0, -1.95, -0.95, 9.05])
    assert plan.strategy is Strategy.COMPLEX


def test_single_frame_gets_default_window(tmp_path: Path) -> None:
    plan = build_composition_plan(make_frames(tmp_path, [3.0]), LOCAL_START, Strategy.SIMPLE)

    assert plan.entries[0].start_s == pytest.approx(3.0)
    assert plan.entries[0].duration_s == pytest.approx(1.0)


@pytest.mark.parametrize(
    "frames, duration, expected",
    [
        (1000, 600, Strategy.COMPLEX),
        (1001, 600, Strategy.SIMPLE),
        (1000, 601, Strategy.SIMPLE),
        (5, 700, Strategy.SIMPLE),
        (1, 1, Strategy.COMPLEX),
    ],
)
def test_strategy_boundaries(frames: int, duration: float, expected: Strategy) -> None:
    assert select_strategy(frames, duration) is expected


# --- filter graphs --------------------------------------------------
def test_overlay_filter_chains_time_gated_overlays(tmp_path: Path) -> None:
    frames = make_frames(tmp_path, [0, 1])
    entries = [
        CompositionEntry(frame=frames[0], start_s=0.5, duration_s=1.0),
        CompositionEntry(frame=frames[1], start_s=1.5, duration_s=1.0),
    ]

    graph, label = build_overlay_filter(entries)

    assert graph == (
        "[0:v][1:v]overlay=0:0:enable='between(t,0.500,1.500)'[ov0];"
        "[ov0][2:v]overlay=0:0:enable='between(t,1.500,2.500)'[ov1]"
    )
    assert label == "[ov1]"


def test_overlay_filter_clamps_negative_start(tmp_path: Path) -> None:
    frame = make_frames(tmp_path, [0])[0]

    graph, _ = build_overlay_filter([CompositionEntry(frame, -0.25, 1.0)])

    assert "between(t,0.000,0.750)" in graph


def test_overlay_filter_requires_entries() -> None:
    with pytest.raises(ValueError):
        build_overlay_filter([])


def test_static_filter_uses_reduced_opacity() -> None:
    graph, label = build_static_filter(0.8)

    assert graph == "[1:v]format=rgba,colorchannelmixer=aa=0.8[ovrl];[0:v][ovrl]overlay=0:0[vout]"
    assert label == "[vout]"


def test_static_frame_is_nearest_temporal_midpoint(tmp_path: Path) -> None:
    frames = make_frames(tmp_path, [0, 1, 2, 10])

    assert select_static_frame(frames) is frames[2]


def test_static_frame_tie_prefers_earlier(tmp_path: Path) -> None:
    frames = make_frames(tmp_path, [0, 4, 6, 10])

    assert select_static_frame(frames) is frames[1]


def test_subsample_keeps_every_nth_frame(tmp_path: Path) -> None:
    frames = make_frames(tmp_path, list(range(65)))

    assert [f.index for f in subsample_frames(frames, 30)] == [0, 30, 60]


# --- compositor -----------------------------------------------------
def test_complex_composite_command_and_raster_cleanup(tmp_path: Path) -> None:
    frames = make_frames(tmp_path / "overlays", [0, 1, 2])
    factory = RecordingTaskFactory()
    output = tmp_path / "out" / "result.mp4"

    plan = _compositor(factory).composite(
        tmp_path / "in.mp4", output, frames, LOCAL_START, 60.0
    )

    assert plan.strategy is Strategy.COMPLEX
    call = factory.calls[0]
    cmd = call["cmd"]
    assert call["timeout"] == 600
    assert cmd.count("-i") == 4
    assert cmd[cmd.index("-filter_complex") + 1].count("overlay=0:0") == 3
    assert cmd[cmd.index("-map") + 1] == "[ov2]"
    assert "0:a?" in cmd
    assert cmd[cmd.index("-c:v") + 1] == "libx264"
    assert cmd[cmd.index("-crf") + 1] == "23"
    assert cmd[cmd.index("-b:a") + 1] == "128k"
    assert cmd[cmd.index("-movflags") + 1] == "+faststart"
    assert cmd[-1] == str(output)
    assert output.exists()
    assert not list((tmp_path / "overlays").glob("*.png"))
    assert all(f.raster_path is None for f in frames)


def test_simple_composite_uses_one_static_frame(tmp_path: Path) -> None:
    frames = make_frames(tmp_path / "overlays", [0, 1, 2, 3, 4])
    factory = RecordingTaskFactory()

    plan = _compositor(factory).composite(
        tmp_path / "in.mp4", tmp_path / "out.mp4", frames, LOCAL_START, 700.0
    )

    assert plan.strategy is Strategy.SIMPLE
    call = factory.calls[0]
    cmd = call["cmd"]
    assert call["timeout"] is None
    assert cmd.count("-i") == 2
    assert frames[2].path.with_suffix(".png").name in " ".join(cmd)
    assert "colorchannelmixer=aa=0.8" in cmd[cmd.index("-filter_complex") + 1]
    assert cmd[cmd.index("-c:a") + 1] == "copy"
    assert not list((tmp_path / "overlays").glob("*.png"))


def test_rasters_removed_when_encode_fails(tmp_path: Path) -> None:
    frames = make_frames(tmp_path / "overlays", [0, 1])
    factory = RecordingTaskFactory(fail_with=CompositingError("encoder exploded"))

    with pytest.raises(CompositingError, match="encoder exploded"):
        _compositor(factory).composite(
            tmp_path / "in.mp4", tmp_path / "out.mp4", frames, LOCAL_START, 10.0
        )

    assert not list((tmp_path / "overlays").glob("*.png"))
    # vector frames are left for the orchestrator's cleanup step
    assert all(f.path.exists() for f in frames)


def test_composite_without_frames_fails(tmp_path: Path) -> None:
    with pytest.raises(CompositingError):
        _compositor(RecordingTaskFactory()).composite(
            tmp_path / "in.mp4", tmp_path / "out.mp4", [], LOCAL_START, 10.0
        )


def test_preview_limits_input_and_uses_fast_settings(tmp_path: Path) -> None:
    frames = make_frames(tmp_path / "overlays", [i * 0.1 for i in range(61)])
    factory = RecordingTaskFactory()

    plan = _compositor(factory).preview(
        tmp_path / "in.mp4", tmp_path / "preview.mp4", frames, LOCAL_START
    )

    assert [e.frame.index for e in plan.entries] == [0, 30, 60]
    cmd = factory.calls[0]["cmd"]
    assert cmd[cmd.index("-t") + 1] == "30"
    assert cmd.index("-t") < cmd.index("-i")
    assert cmd[cmd.index("-preset") + 1] == "fast"
    assert cmd[cmd.index("-crf") + 1] == "28"
    assert cmd[cmd.index("-b:a") + 1] == "96k"
    assert factory.calls[0]["timeout"] == 600
