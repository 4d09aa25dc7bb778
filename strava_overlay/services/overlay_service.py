"""Video overlay pipeline service.

Runs one request through a fixed sequence of stages::

    validating -> extracting_video_info -> synchronizing_trackpoints
    -> generating_overlays -> selecting_strategy
    -> compositing_complex | compositing_simple -> cleaning_up -> completed

Any stage may fail; ``cleaning_up`` always runs before the terminal
``failed`` (or ``completed``) stage, and its own errors are only logged.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, List, Sequence

from ..compositing import Compositor, select_strategy
from ..config import (
    MIN_TRACKPOINTS,
    MIN_VALID_COORDINATE_RATIO,
    OUTPUT_DIR,
    OVERLAY_DIR,
    RETENTION_SWEEP_ENABLED,
    VIDEO_MAX_SIZE_BYTES,
)
from ..correlation import find_closest, synchronize
from ..errors import (
    InputValidationError,
    MetadataExtractionError,
    OverlayGenerationError,
    SynchronizationError,
)
from ..metrics import compute_metrics, summarize_activity
from ..models import (
    Activity,
    OverlayFrame,
    ProcessingResult,
    ProcessingStatistics,
    RequestContext,
    Strategy,
    Trackpoint,
    VideoInfo,
    VideoSyncResult,
)
from ..overlay import OverlayGenerator, cleanup_overlays
from ..retention import ensure_retention_sweeper
from ..strava_client import StravaClient
from ..toolkit import probe_video
from ..video_clock import (
    ensure_within_activity,
    on_activity_clock,
    parse_creation_time,
)


class PipelineStage(str, Enum):
    VALIDATING = "validating"
    EXTRACTING_VIDEO_INFO = "extracting_video_info"
    SYNCHRONIZING_TRACKPOINTS = "synchronizing_trackpoints"
    GENERATING_OVERLAYS = "generating_overlays"
    SELECTING_STRATEGY = "selecting_strategy"
    COMPOSITING_COMPLEX = "compositing_complex"
    COMPOSITING_SIMPLE = "compositing_simple"
    CLEANING_UP = "cleaning_up"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class VideoOverlayServiceConfig:
    probe: Callable[[Path], VideoInfo] = probe_video
    compositor: Compositor | None = None
    client: StravaClient | None = None
    output_dir: Path | str = OUTPUT_DIR
    overlay_dir: Path | str = OVERLAY_DIR
    max_video_bytes: int = VIDEO_MAX_SIZE_BYTES
    start_retention_sweeper: bool = RETENTION_SWEEP_ENABLED
    on_stage: Callable[[PipelineStage], None] | None = None
    logger: logging.Logger | None = None


class VideoOverlayService:
    def __init__(self, config: VideoOverlayServiceConfig | None = None):
        self.config = config or VideoOverlayServiceConfig()
        self._log = self.config.logger or logging.getLogger(self.__class__.__name__)
        self.compositor = self.config.compositor or Compositor()
        self.generator = OverlayGenerator(self.config.overlay_dir)
        self.output_dir = Path(self.config.output_dir)
        self._client = self.config.client
        if self.config.start_retention_sweeper:
            ensure_retention_sweeper(base=self.output_dir)

    @property
    def client(self) -> StravaClient:
        if self._client is None:
            self._client = StravaClient()
        return self._client

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------
    def process(
        self,
        ctx: RequestContext,
        video_path: Path | str,
        activity: Activity,
        trackpoints: Sequence[Trackpoint],
        video_start: datetime,
        *,
        preview: bool = False,
        video_info: VideoInfo | None = None,
    ) -> ProcessingResult:
        """Render the overlay video for ``activity`` and return its statistics.

        ``video_start`` must be on the same clock as the trackpoint
        timestamps; a naive value is taken as activity-local wall clock. Pass ``video_info`` to reuse an earlier probe.
        """

        started = time.monotonic()
        video_path = Path(video_path)
        activity_id = getattr(activity, "id", None)
        frames: List[OverlayFrame] = []
        completed = False
        self._log.info(
            "Processing activity=%s job=%s video=%s preview=%s",
            activity_id,
            ctx.job_id,
            video_path,
            preview,
        )
        try:
            self._enter(PipelineStage.VALIDATING)
            self.validate(video_path, activity, trackpoints)
            if not isinstance(video_start, datetime):
                raise InputValidationError("Video start time is required")
            video_start = on_activity_clock(video_start, activity.utc_offset_s)

            self._enter(PipelineStage.EXTRACTING_VIDEO_INFO)
            info = video_info or self.config.probe(video_path)

            self._enter(PipelineStage.SYNCHRONIZING_TRACKPOINTS)
            synced = synchronize(trackpoints, video_start, info.duration_s)
            if not synced:
                raise SynchronizationError(
                    f"No trackpoints of activity {activity.id} fall within the "
                    f"video window starting {video_start.isoformat()} "
                    f"({info.duration_s:.1f}s)"
                )
            compute_metrics(synced)

            self._enter(PipelineStage.GENERATING_OVERLAYS)
            frames = self.generator.generate(activity.id, ctx.job_id, synced)
            if not frames:
                raise OverlayGenerationError(
                    f"No synchronized trackpoint of activity {activity.id} has coordinates"
                )

            self._enter(PipelineStage.SELECTING_STRATEGY)
            strategy = (
                Strategy.COMPLEX
                if preview
                else select_strategy(len(frames), info.duration_s)
            )
            self._log.info(
                "Strategy %s for %d frames over %.1fs",
                strategy.value,
                len(frames),
                info.duration_s,
            )

            output_path = self.output_dir / _output_name(activity.id, ctx.job_id, preview)
            if strategy is Strategy.COMPLEX:
                self._enter(PipelineStage.COMPOSITING_COMPLEX)
            else:
                self._enter(PipelineStage.COMPOSITING_SIMPLE)
            if preview:
                self.compositor.preview(video_path, output_path, frames, video_start)
            else:
                self.compositor.composite(
                    video_path,
                    output_path,
                    frames,
                    video_start,
                    info.duration_s,
                    strategy=strategy,
                )

            statistics = _aggregate_statistics(
                trackpoints, synced, frames, strategy, info.duration_s
            )
            completed = True
        finally:
            self._enter(PipelineStage.CLEANING_UP)
            self._cleanup(activity_id, ctx.job_id, frames)
            self._enter(PipelineStage.COMPLETED if completed else PipelineStage.FAILED)

        statistics.processing_time_s = round(time.monotonic() - started, 3)
        self._log.info(
            "Finished activity=%s job=%s output=%s in %.1fs",
            activity.id,
            ctx.job_id,
            output_path,
            statistics.processing_time_s,
        )
        return ProcessingResult(
            output_path=output_path,
            strategy=strategy,
            statistics=statistics,
            preview=preview,
        )

    def preview(
        self,
        ctx: RequestContext,
        video_path: Path | str,
        activity: Activity,
        trackpoints: Sequence[Trackpoint],
        video_start: datetime,
        *,
        video_info: VideoInfo | None = None,
    ) -> ProcessingResult:
        return self.process(
            ctx,
            video_path,
            activity,
            trackpoints,
            video_start,
            preview=True,
            video_info=video_info,
        )

    def process_activity_video(
        self,
        ctx: RequestContext,
        activity_id: int | str,
        video_path: Path | str,
        *,
        preview: bool = False,
    ) -> ProcessingResult:
        """Fetch the activity, place the video on its timeline and render."""

        video_path = Path(video_path)
        self.validate_video(video_path)
        activity, trackpoints = self.client.get_activity_with_trackpoints(
            ctx, activity_id
        )
        info = self.config.probe(video_path)
        video_start = self.video_start(info, activity)
        return self.process(
            ctx,
            video_path,
            activity,
            trackpoints,
            video_start,
            preview=preview,
            video_info=info,
        )

    def locate_video_start(
        self,
        ctx: RequestContext,
        activity_id: int | str,
        video_path: Path | str,
    ) -> VideoSyncResult:
        """Find where the clip starts on the activity, without rendering."""

        video_path = Path(video_path)
        self.validate_video(video_path)
        activity, trackpoints = self.client.get_activity_with_trackpoints(
            ctx, activity_id
        )
        info = self.config.probe(video_path)
        video_start = self.video_start(info, activity)
        compute_metrics(trackpoints)
        closest = find_closest(trackpoints, video_start)
        return VideoSyncResult(
            video_start=video_start,
            closest_trackpoint=closest,
            video=info,
            activity_stats=summarize_activity(trackpoints),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def video_start(self, info: VideoInfo, activity: Activity) -> datetime:
        if not info.creation_time:
            raise MetadataExtractionError(
                "Video has no creation time tag; cannot place it on the activity"
            )
        start = parse_creation_time(info.creation_time, activity.utc_offset_s)
        ensure_within_activity(start, activity)
        return start

    def validate_video(self, video_path: Path) -> None:
        if not video_path.is_file():
            raise InputValidationError(f"Video file not found: {video_path}")
        size = video_path.stat().st_size
        if size > self.config.max_video_bytes:
            raise InputValidationError(
                f"Video {video_path.name} is {size} bytes; limit is "
                f"{self.config.max_video_bytes}"
            )

    def validate(
        self,
        video_path: Path,
        activity: Activity,
        trackpoints: Sequence[Trackpoint],
    ) -> None:
        self.validate_video(video_path)
        if activity is None or activity.id is None or str(activity.id).strip() == "":
            raise InputValidationError("Activity identifier is required")
        if len(trackpoints) < MIN_TRACKPOINTS:
            raise InputValidationError(
                f"At least {MIN_TRACKPOINTS} trackpoints are required "
                f"(got {len(trackpoints)})"
            )
        located = sum(1 for point in trackpoints if point.is_located)
        ratio = located / len(trackpoints)
        if ratio < MIN_VALID_COORDINATE_RATIO:
            self._log.warning(
                "Only %.0f%% of trackpoints have coordinates for activity=%s",
                ratio * 100,
                activity.id,
            )

    def _enter(self, stage: PipelineStage) -> None:
        self._log.debug("Stage -> %s", stage.value)
        if self.config.on_stage is not None:
            self.config.on_stage(stage)

    def _cleanup(
        self, activity_id: int | str | None, job_id: str, frames: Sequence[OverlayFrame]
    ) -> None:
        try:
            self.compositor.cleanup_rasters(frames)
            if activity_id is not None:
                cleanup_overlays(activity_id, job_id, self.config.overlay_dir)
        except OSError as exc:
            self._log.warning(
                "Cleanup failed for activity=%s job=%s: %s", activity_id, job_id, exc
            )


def _output_name(activity_id: int | str, job_id: str, preview: bool) -> str:
    prefix = "preview" if preview else "overlay"
    return f"{prefix}_{activity_id}_{job_id}.mp4"


def _aggregate_statistics(
    trackpoints: Sequence[Trackpoint],
    synced: Sequence[Trackpoint],
    frames: Sequence[OverlayFrame],
    strategy: Strategy,
    video_duration_s: float,
) -> ProcessingStatistics:
    speeds = [frame.metrics.speed_kmh for frame in frames]
    total_gain = frames[-1].metrics.total_elevation_gain_m if frames else 0.0
    return ProcessingStatistics(
        total_trackpoints=len(trackpoints),
        synced_trackpoints=len(synced),
        overlays_generated=len(frames),
        max_speed_kmh=round(max(speeds, default=0.0), 1),
        total_elevation_gain_m=round(total_gain, 1),
        strategy=strategy,
        video_duration_s=video_duration_s,
    )
