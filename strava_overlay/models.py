"""Dataclasses shared by the telemetry, overlay and compositing layers."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from hashlib import sha256
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

LatLon = Tuple[float, float]


class Strategy(str, Enum):
    """Compositing strategy chosen once per request."""

    COMPLEX = "complex"
    SIMPLE = "simple"


@dataclass
class RequestContext:
    """Per-request credentials and identity threaded through the pipeline."""

    access_token: str
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def token_fingerprint(self) -> str:
        # Used as a cache key; the raw token never leaves this object.
        return sha256(self.access_token.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class Activity:
    id: int | str
    start_date: datetime
    utc_offset_s: float
    elapsed_time_s: float
    name: str | None = None
    timezone: str | None = None

    @property
    def reference_start(self) -> datetime:
        """Activity start expressed on the activity's local clock."""
        return self.start_date + timedelta(seconds=self.utc_offset_s)

    @property
    def reference_end(self) -> datetime:
        return self.reference_start + timedelta(seconds=self.elapsed_time_s)


@dataclass(slots=True)
class ActivityStreams:
    """Index-aligned raw samples as returned by the activity provider."""

    time: Optional[List[float]] = None
    latlng: Optional[List[Optional[LatLon]]] = None
    distance: Optional[List[Optional[float]]] = None
    altitude: Optional[List[Optional[float]]] = None


@dataclass(slots=True)
class TrackpointMetrics:
    distance_m: float = 0.0
    speed_kmh: float = 0.0
    bearing_deg: float = 0.0
    g_force: float = 0.0
    elevation_gain_m: float = 0.0
    total_elevation_gain_m: float = 0.0


@dataclass(slots=True)
class Trackpoint:
    time: Optional[datetime]
    latlng: Optional[LatLon]
    elevation: Optional[float] = None
    metrics: Optional[TrackpointMetrics] = None

    @property
    def is_located(self) -> bool:
        return self.latlng is not None and self.time is not None


@dataclass(slots=True)
class OverlayFrame:
    index: int
    timestamp: datetime
    path: Path
    metrics: TrackpointMetrics
    raster_path: Optional[Path] = None


@dataclass(slots=True)
class CompositionEntry:
    frame: OverlayFrame
    start_s: float
    duration_s: float

    @property
    def end_s(self) -> float:
        return self.start_s + self.duration_s


@dataclass(slots=True)
class CompositionPlan:
    entries: List[CompositionEntry]
    strategy: Strategy


@dataclass(slots=True)
class VideoInfo:
    duration_s: float
    fps: float
    width: int
    height: int
    bitrate: Optional[int] = None
    size_bytes: Optional[int] = None
    format_name: Optional[str] = None
    creation_time: Optional[str] = None


@dataclass
class ProcessingStatistics:
    total_trackpoints: int
    synced_trackpoints: int
    overlays_generated: int
    max_speed_kmh: float
    total_elevation_gain_m: float
    strategy: Strategy
    video_duration_s: float
    processing_time_s: float = 0.0


@dataclass
class ProcessingResult:
    output_path: Path
    strategy: Strategy
    statistics: ProcessingStatistics
    preview: bool = False

    def as_dict(self) -> Dict[str, Any]:
        stats = asdict(self.statistics)
        stats["strategy"] = self.strategy.value
        return {
            "output_path": str(self.output_path),
            "strategy": self.strategy.value,
            "preview": self.preview,
            "statistics": stats,
        }


@dataclass
class VideoSyncResult:
    """Where a clip starts on the activity timeline (no rendering involved)."""

    video_start: datetime
    closest_trackpoint: Optional[Trackpoint]
    video: VideoInfo
    activity_stats: Dict[str, Any] = field(default_factory=dict)
