"""Composite overlay frames onto the source video with ffmpeg.

Two strategies exist:

``complex``
    Every frame is a separate PNG input, chained through ``overlay`` filters
    gated with ``enable='between(t,start,end)'`` so it is only visible during
    its window. The encode runs under a hard wall-clock budget.
``simple``
    A single frame (nearest the temporal midpoint) is laid over the whole
    clip at reduced opacity. Used when the job is too large for the filter
    chain.

Visibility windows come from the gaps between consecutive frame timestamps,
clamped to ``[WINDOW_MIN_S, WINDOW_MAX_S]``; the last frame gets
``LAST_WINDOW_S``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .config import (
    AUDIO_BITRATE,
    AUDIO_CODEC,
    COMPLEX_MAX_DURATION_S,
    COMPLEX_MAX_FRAMES,
    COMPOSITE_TIMEOUT_S,
    FFMPEG_BINARY,
    LAST_WINDOW_S,
    PREVIEW_AUDIO_BITRATE,
    PREVIEW_CRF,
    PREVIEW_FRAME_STEP,
    PREVIEW_MAX_SECONDS,
    PREVIEW_PRESET,
    STATIC_OVERLAY_OPACITY,
    VIDEO_CODEC,
    VIDEO_CRF,
    VIDEO_PRESET,
    WINDOW_MAX_S,
    WINDOW_MIN_S,
)
from .errors import CompositingError
from .models import CompositionEntry, CompositionPlan, OverlayFrame, Strategy
from .toolkit import ToolkitTask, rasterize

LOGGER = logging.getLogger(__name__)

Rasterizer = Callable[[Path, Path], Path]
TaskFactory = Callable[..., ToolkitTask]


@dataclass(frozen=True)
class EncoderSettings:
    video_codec: str = VIDEO_CODEC
    preset: str = VIDEO_PRESET
    crf: int = VIDEO_CRF
    audio_codec: str = AUDIO_CODEC
    audio_bitrate: str = AUDIO_BITRATE


FULL_QUALITY = EncoderSettings()
PREVIEW_QUALITY = EncoderSettings(
    preset=PREVIEW_PRESET, crf=PREVIEW_CRF, audio_bitrate=PREVIEW_AUDIO_BITRATE
)


def select_strategy(
    frame_count: int,
    video_duration_s: float,
    *,
    max_frames: int = COMPLEX_MAX_FRAMES,
    max_duration_s: float = COMPLEX_MAX_DURATION_S,
) -> Strategy:
    """``simple`` when either limit is exceeded, else ``complex``."""

    if frame_count > max_frames or video_duration_s > max_duration_s:
        return Strategy.SIMPLE
    return Strategy.COMPLEX


def _clamp_window(gap_s: float) -> float:
    return min(max(gap_s, WINDOW_MIN_S), WINDOW_MAX_S)


def build_composition_plan(
    frames: Sequence[OverlayFrame],
    video_start: datetime,
    strategy: Strategy,
) -> CompositionPlan:
    """Pair each frame with its visibility window relative to ``video_start``."""

    entries: List[CompositionEntry] = []
    for position, frame in enumerate(frames):
        start = (frame.timestamp - video_start).total_seconds()
        if position + 1 < len(frames):
            gap = (frames[position + 1].timestamp - frame.timestamp).total_seconds()
            duration = _clamp_window(gap)
        else:
            duration = LAST_WINDOW_S
        entries.append(CompositionEntry(frame=frame, start_s=start, duration_s=duration))
    return CompositionPlan(entries=entries, strategy=strategy)


def build_overlay_filter(entries: Sequence[CompositionEntry]) -> tuple[str, str]:
    """Return ``(filter_complex, final_label)`` chaining time-gated overlays.

    Input ``0`` is the source video; entry ``i`` is input ``i + 1``. Windows
    that start before the clip are clamped to ``t=0``.
    """

    if not entries:
        raise ValueError("at least one composition entry is required")
    parts: List[str] = []
    current = "[0:v]"
    for idx, entry in enumerate(entries):
        start = max(entry.start_s, 0.0)
        end = entry.end_s
        label = f"[ov{idx}]"
        parts.append(
            f"{current}[{idx + 1}:v]overlay=0:0:"
            f"enable='between(t,{start:.3f},{end:.3f})'{label}"
        )
        current = label
    return ";".join(parts), current


def build_static_filter(opacity: float = STATIC_OVERLAY_OPACITY) -> tuple[str, str]:
    label = "[vout]"
    return (
        f"[1:v]format=rgba,colorchannelmixer=aa={opacity:g}[ovrl];"
        f"[0:v][ovrl]overlay=0:0{label}",
        label,
    )


def select_static_frame(frames: Sequence[OverlayFrame]) -> OverlayFrame:
    """Frame nearest the midpoint between the first and last timestamps.

    On a tie the earlier frame wins.
    """

    if not frames:
        raise ValueError("no overlay frames to choose from")
    first = frames[0].timestamp
    midpoint = first + (frames[-1].timestamp - first) / 2
    best = frames[0]
    best_diff = abs((best.timestamp - midpoint).total_seconds())
    for frame in frames[1:]:
        diff = abs((frame.timestamp - midpoint).total_seconds())
        if diff < best_diff:
            best, best_diff = frame, diff
    return best


def subsample_frames(
    frames: Sequence[OverlayFrame], step: int = PREVIEW_FRAME_STEP
) -> List[OverlayFrame]:
    return list(frames[:: max(1, step)])


def build_encode_command(
    *,
    ffmpeg: str,
    video_path: Path,
    overlay_inputs: Sequence[Path],
    filter_complex: str,
    video_label: str,
    output_path: Path,
    settings: EncoderSettings,
    copy_audio: bool = False,
    max_input_seconds: float | None = None,
) -> List[str]:
    cmd = [ffmpeg, "-y", "-loglevel", "error"]
    if max_input_seconds is not None:
        cmd.extend(["-t", f"{max_input_seconds:g}"])
    cmd.extend(["-i", str(video_path)])
    for path in overlay_inputs:
        cmd.extend(["-i", str(path)])
    cmd.extend(
        [
            "-filter_complex",
            filter_complex,
            "-map",
            video_label,
            "-map",
            "0:a?",
            "-c:v",
            settings.video_codec,
            "-preset",
            settings.preset,
            "-crf",
            str(settings.crf),
        ]
    )
    if copy_audio:
        cmd.extend(["-c:a", "copy"])
    else:
        cmd.extend(["-c:a", settings.audio_codec, "-b:a", settings.audio_bitrate])
    cmd.extend(["-movflags", "+faststart", str(output_path)])
    return cmd


class Compositor:
    """Rasterize frames and drive the ffmpeg encode for one request."""

    def __init__(
        self,
        *,
        ffmpeg: str = FFMPEG_BINARY,
        rasterizer: Rasterizer = rasterize,
        task_factory: TaskFactory = ToolkitTask,
        timeout_s: float = COMPOSITE_TIMEOUT_S,
    ) -> None:
        self.ffmpeg = ffmpeg
        self.rasterizer = rasterizer
        self.task_factory = task_factory
        self.timeout_s = timeout_s

    def composite(
        self,
        video_path: Path,
        output_path: Path,
        frames: Sequence[OverlayFrame],
        video_start: datetime,
        video_duration_s: float,
        strategy: Optional[Strategy] = None,
    ) -> CompositionPlan:
        """Render ``output_path``; return the plan that was executed.

        Raster copies are removed afterwards whatever the outcome.

        Raises:
            CompositingError: The encoder or rasterizer failed.
            CompositingTimeoutError: The complex encode exceeded its budget.
        """

        if not frames:
            raise CompositingError("no overlay frames to composite")
        if strategy is None:
            strategy = select_strategy(len(frames), video_duration_s)
        plan = build_composition_plan(frames, video_start, strategy)
        try:
            if strategy is Strategy.COMPLEX:
                self._run_complex(video_path, output_path, plan, FULL_QUALITY)
            else:
                self._run_simple(video_path, output_path, frames)
        finally:
            self.cleanup_rasters(frames)
        return plan

    def preview(
        self,
        video_path: Path,
        output_path: Path,
        frames: Sequence[OverlayFrame],
        video_start: datetime,
        *,
        frame_step: int = PREVIEW_FRAME_STEP,
        max_seconds: float = PREVIEW_MAX_SECONDS,
    ) -> CompositionPlan:
        """Fast low-quality render of the first seconds using every Nth frame."""

        if not frames:
            raise CompositingError("no overlay frames to composite")
        sampled = subsample_frames(frames, frame_step)
        plan = build_composition_plan(sampled, video_start, Strategy.COMPLEX)
        try:
            self._run_complex(
                video_path,
                output_path,
                plan,
                PREVIEW_QUALITY,
                max_input_seconds=max_seconds,
            )
        finally:
            self.cleanup_rasters(sampled)
        return plan

    def _run_complex(
        self,
        video_path: Path,
        output_path: Path,
        plan: CompositionPlan,
        settings: EncoderSettings,
        *,
        max_input_seconds: float | None = None,
    ) -> None:
        rasters = self._rasterize([entry.frame for entry in plan.entries])
        filter_complex, label = build_overlay_filter(plan.entries)
        cmd = build_encode_command(
            ffmpeg=self.ffmpeg,
            video_path=video_path,
            overlay_inputs=rasters,
            filter_complex=filter_complex,
            video_label=label,
            output_path=output_path,
            settings=settings,
            max_input_seconds=max_input_seconds,
        )
        LOGGER.info(
            "Compositing %d overlays onto %s (complex, budget %.0fs)",
            len(rasters),
            video_path,
            self.timeout_s,
        )
        self._run(cmd, output_path, "complex composite", self.timeout_s)

    def _run_simple(
        self,
        video_path: Path,
        output_path: Path,
        frames: Sequence[OverlayFrame],
    ) -> None:
        frame = select_static_frame(frames)
        rasters = self._rasterize([frame])
        filter_complex, label = build_static_filter()
        cmd = build_encode_command(
            ffmpeg=self.ffmpeg,
            video_path=video_path,
            overlay_inputs=rasters,
            filter_complex=filter_complex,
            video_label=label,
            output_path=output_path,
            settings=FULL_QUALITY,
            copy_audio=True,
        )
        LOGGER.info(
            "Compositing static overlay %s onto %s (simple)", frame.path.name, video_path
        )
        self._run(cmd, output_path, "simple composite", None)

    def _run(
        self, cmd: List[str], output_path: Path, description: str, timeout: float | None
    ) -> None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        task = self.task_factory(
            cmd,
            description=description,
            error_cls=CompositingError,
            output_path=output_path,
        )
        task.run(timeout=timeout)

    def _rasterize(self, frames: Sequence[OverlayFrame]) -> List[Path]:
        rasters: List[Path] = []
        for frame in frames:
            png = frame.path.with_suffix(".png")
            frame.raster_path = self.rasterizer(frame.path, png)
            rasters.append(frame.raster_path)
        LOGGER.debug("Rasterized %d overlay frames", len(rasters))
        return rasters

    @staticmethod
    def cleanup_rasters(frames: Sequence[OverlayFrame]) -> None:
        """Delete raster copies; failures are logged only."""

        for frame in frames:
            png = frame.raster_path or frame.path.with_suffix(".png")
            try:
                png.unlink(missing_ok=True)
            except OSError as exc:
                LOGGER.warning("Failed to remove raster %s: %s", png, exc)
            frame.raster_path = None


__all__ = [
    "Compositor",
    "EncoderSettings",
    "FULL_QUALITY",
    "PREVIEW_QUALITY",
    "build_composition_plan",
    "build_encode_command",
    "build_overlay_filter",
    "build_static_filter",
    "select_static_frame",
    "select_strategy",
    "subsample_frames",
]
