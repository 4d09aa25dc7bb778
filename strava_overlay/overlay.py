"""SVG gauge frames, one per metrics-annotated trackpoint.

Each frame draws a speed dial (ticks every 10 km/h over a 270 degree sweep
with a progress arc), a compass needle for the bearing, a small g-force
needle gauge, the cumulative elevation gain and an ``HH:MM:SS`` label. All
frames of one run share a single speed scale so the dial does not jump.
"""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Sequence

from .config import OVERLAY_DIR, OVERLAY_HEIGHT, OVERLAY_WIDTH
from .errors import OverlayGenerationError
from .models import OverlayFrame, Trackpoint, TrackpointMetrics

LOGGER = logging.getLogger(__name__)

_DIAL_START_DEG = -135.0
_DIAL_SWEEP_DEG = 270.0
_DIAL_RADIUS = 80.0
_MAX_G = 2.0
_MIN_SCALE = 10


def speed_scale(speeds: Iterable[float]) -> int:
    """Smallest multiple of 10 that is >= the highest speed (at least 10)."""

    top = max(speeds, default=0.0)
    return max(_MIN_SCALE, int(math.ceil(top / 10.0)) * 10)


def overlay_filename(activity_id: int | str, job_id: str, index: int, ext: str = "svg") -> str:
    return f"overlay_{activity_id}_{job_id}_{index:06d}.{ext}"


def overlay_pattern(activity_id: int | str, job_id: str | None = None) -> re.Pattern[str]:
    """Regex matching the SVG/PNG frames of an activity (optionally one job)."""

    # job ids may contain underscores; the six-digit index anchors the end
    job = re.escape(job_id) if job_id is not None else r".+"
    return re.compile(
        rf"^overlay_{re.escape(str(activity_id))}_{job}_\d{{6}}\.(?:svg|png)$"
    )


def _polar(angle_deg: float, radius: float) -> tuple[float, float]:
    radians = math.radians(angle_deg)
    return math.cos(radians) * radius, math.sin(radians) * radius


def _dial_angle(speed: float, scale: int) -> float:
    return _DIAL_START_DEG + (min(speed, scale) / scale) * _DIAL_SWEEP_DEG


def _speed_marks(scale: int) -> str:
    marks: List[str] = []
    for speed in range(0, scale + 1, 10):
        angle = _dial_angle(speed, scale)
        x1, y1 = _polar(angle, 75)
        x2, y2 = _polar(angle, 85)
        tx, ty = _polar(angle, 65)
        marks.append(
            f'<line x1="{x1:.2f}" y1="{y1:.2f}" x2="{x2:.2f}" y2="{y2:.2f}" '
            'stroke="#ffffff" stroke-width="2" opacity="0.8"/>'
        )
        marks.append(
            f'<text x="{tx:.2f}" y="{ty:.2f}" text-anchor="middle" '
            'font-family="Arial" font-size="10" fill="#ffffff" '
            f'opacity="0.7">{speed}</text>'
        )
    return "\n        ".join(marks)


def _speed_arc(speed: float, scale: int) -> str:
    if speed <= 0:
        return ""
    end = _dial_angle(speed, scale)
    x1, y1 = _polar(_DIAL_START_DEG, _DIAL_RADIUS)
    x2, y2 = _polar(end, _DIAL_RADIUS)
    large_arc = 1 if end - _DIAL_START_DEG > 180 else 0
    r = _DIAL_RADIUS
    return (
        f'<path d="M {x1:.2f} {y1:.2f} A {r:g} {r:g} 0 {large_arc} 1 {x2:.2f} {y2:.2f}" '
        'fill="none" stroke="url(#speedGradient)" stroke-width="6" '
        'opacity="0.9" filter="url(#glow)"/>'
    )


def _compass_needle(bearing: float) -> str:
    # 0 degrees points north (up)
    angle = bearing - 90.0
    tip_x, tip_y = _polar(angle, 50)
    base_x, base_y = _polar(angle + 180.0, 15)
    coords = f'x1="{base_x:.2f}" y1="{base_y:.2f}" x2="{tip_x:.2f}" y2="{tip_y:.2f}"'
    return (
        f'<line {coords} stroke="#ff4444" stroke-width="4" '
        'stroke-linecap="round" filter="url(#glow)"/>\n        '
        f'<line {coords} stroke="#ffffff" stroke-width="2" stroke-linecap="round"/>'
    )


def _g_force_needle(g_force: float) -> str:
    normalized = min(g_force / _MAX_G, 1.0)
    tip_x, tip_y = _polar(-90.0 + normalized * 180.0, 15)
    return (
        f'<line x1="0" y1="0" x2="{tip_x:.2f}" y2="{tip_y:.2f}" '
        'stroke="#ffaa00" stroke-width="2" stroke-linecap="round"/>'
    )


def _cardinal(label: str, x: int, y: int) -> str:
    return (
        f'<text x="{x}" y="{y}" text-anchor="middle" font-family="Arial" '
        f'font-size="12" font-weight="bold" fill="#ffffff" '
        f'filter="url(#shadow)">{label}</text>'
    )


def render_svg(
    metrics: TrackpointMetrics,
    timestamp: datetime,
    scale: int,
    *,
    width: int = OVERLAY_WIDTH,
    height: int = OVERLAY_HEIGHT,
) -> str:
    """Return the SVG document for one frame."""

    speed = metrics.speed_kmh
    cardinals = "\n    ".join(
        (
            _cardinal("N", 150, 30),
            _cardinal("S", 150, 240),
            _cardinal("E", 270, 125),
            _cardinal("W", 30, 125),
        )
    )
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<svg width="{width}" height="{height}" viewBox="0 0 400 300" xmlns="http://www.w3.org/2000/svg">
    <defs>
        <radialGradient id="backgroundGradient" cx="50%" cy="50%" r="50%">
            <stop offset="0%" stop-color="rgba(0,0,0,0.6)"/>
            <stop offset="100%" stop-color="rgba(0,0,0,0.9)"/>
        </radialGradient>
        <linearGradient id="speedGradient" x1="0%" y1="0%" x2="100%" y2="0%">
            <stop offset="0%" stop-color="#00ffff"/>
            <stop offset="50%" stop-color="#0080ff"/>
            <stop offset="100%" stop-color="#ff00ff"/>
        </linearGradient>
        <filter id="glow" x="-50%" y="-50%" width="200%" height="200%">
            <feGaussianBlur stdDeviation="3" result="coloredBlur"/>
            <feMerge>
                <feMergeNode in="coloredBlur"/>
                <feMergeNode in="SourceGraphic"/>
            </feMerge>
        </filter>
        <filter id="shadow" x="-50%" y="-50%" width="200%" height="200%">
            <feDropShadow dx="2" dy="2" stdDeviation="3" flood-color="rgba(0,0,0,0.5)"/>
        </filter>
    </defs>
    <rect width="400" height="300" fill="url(#backgroundGradient)" rx="20" opacity="0.8"/>
    <g id="speed" transform="translate(150,120)">
        <circle r="{_DIAL_RADIUS:g}" fill="none" stroke="rgba(255,255,255,0.3)" stroke-width="2"/>
        {_speed_marks(scale)}
        {_speed_arc(speed, scale)}
        {_compass_needle(metrics.bearing_deg)}
        <circle r="8" fill="#ff4444" filter="url(#glow)"/>
        <circle r="4" fill="#ffffff"/>
    </g>
    <g id="speed-readout" transform="translate(280,200)">
        <rect x="-30" y="-15" width="60" height="30" rx="5" fill="rgba(0,0,0,0.8)" stroke="#00ffff" stroke-width="1"/>
        <text x="0" y="5" text-anchor="middle" font-family="Arial, monospace" font-size="16" font-weight="bold" fill="#00ffff" filter="url(#glow)">{speed:.1f}</text>
        <text x="0" y="-20" text-anchor="middle" font-family="Arial" font-size="10" fill="#ffffff" opacity="0.8">km/h</text>
    </g>
    <g id="g-force" transform="translate(100,80)">
        <circle r="25" fill="rgba(0,0,0,0.7)" stroke="rgba(255,255,255,0.5)" stroke-width="1"/>
        <circle r="20" fill="none" stroke="rgba(255,255,255,0.3)" stroke-width="1"/>
        {_g_force_needle(metrics.g_force)}
        <text x="0" y="-30" text-anchor="middle" font-family="Arial" font-size="8" fill="#ffffff" opacity="0.8">G-Force</text>
        <text x="0" y="5" text-anchor="middle" font-family="Arial, monospace" font-size="10" font-weight="bold" fill="#ffaa00">{metrics.g_force:.2f}</text>
    </g>
    <g id="elevation" transform="translate(100,180)">
        <circle r="25" fill="rgba(0,0,0,0.7)" stroke="rgba(255,255,255,0.5)" stroke-width="1"/>
        <text x="0" y="-30" text-anchor="middle" font-family="Arial" font-size="8" fill="#ffffff" opacity="0.8">Elevation</text>
        <text x="0" y="0" text-anchor="middle" font-family="Arial, monospace" font-size="9" font-weight="bold" fill="#00ff00">{round(metrics.total_elevation_gain_m)}m</text>
        <text x="0" y="12" text-anchor="middle" font-family="Arial" font-size="7" fill="#00ff00" opacity="0.7">+{metrics.elevation_gain_m:.1f}</text>
    </g>
    {cardinals}
    <text id="timestamp" x="10" y="290" font-family="Arial" font-size="8" fill="rgba(255,255,255,0.5)">{timestamp.strftime("%H:%M:%S")}</text>
</svg>
"""


class OverlayGenerator:
    """Write one SVG frame per trackpoint carrying metrics."""

    def __init__(
        self,
        overlay_dir: Path | str = OVERLAY_DIR,
        *,
        width: int = OVERLAY_WIDTH,
        height: int = OVERLAY_HEIGHT,
    ) -> None:
        self.overlay_dir = Path(overlay_dir)
        self.width = width
        self.height = height

    def generate(
        self,
        activity_id: int | str,
        job_id: str,
        trackpoints: Sequence[Trackpoint],
    ) -> List[OverlayFrame]:
        """Render frames for ``trackpoints`` in order.

        Points without metrics (no coordinate, or never annotated) are
        skipped. Frame indices are contiguous over the frames written.

        Raises:
            OverlayGenerationError: If the directory or any frame cannot be
                written. Frames already on disk are left for
                :func:`cleanup_overlays`.
        """

        annotated = [
            (point.time, point.metrics)
            for point in trackpoints
            if point.metrics is not None and point.time is not None
        ]
        scale = speed_scale(metrics.speed_kmh for _, metrics in annotated)
        try:
            self.overlay_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OverlayGenerationError(
                f"Cannot create overlay directory {self.overlay_dir}: {exc}"
            ) from exc

        frames: List[OverlayFrame] = []
        for index, (timestamp, metrics) in enumerate(annotated):
            path = self.overlay_dir / overlay_filename(activity_id, job_id, index)
            svg = render_svg(
                metrics, timestamp, scale, width=self.width, height=self.height
            )
            try:
                path.write_text(svg, encoding="utf-8")
            except OSError as exc:
                raise OverlayGenerationError(
                    f"Failed to write overlay frame {path}: {exc}"
                ) from exc
            frames.append(
                OverlayFrame(
                    index=index,
                    timestamp=timestamp,
                    path=path,
                    metrics=metrics,
                )
            )
        LOGGER.info(
            "Generated %d overlay frames for activity=%s job=%s (scale %d km/h)",
            len(frames),
            activity_id,
            job_id,
            scale,
        )
        return frames


def cleanup_overlays(
    activity_id: int | str,
    job_id: str | None = None,
    overlay_dir: Path | str = OVERLAY_DIR,
) -> int:
    """Delete overlay files of ``activity_id`` (one job, or all); return the count.

    Best-effort: failures are logged and never raised.
    """

    directory = Path(overlay_dir)
    if not directory.is_dir():
        return 0
    pattern = overlay_pattern(activity_id, job_id)
    removed = 0
    for path in directory.iterdir():
        if not pattern.match(path.name):
            continue
        try:
            path.unlink()
            removed += 1
        except FileNotFoundError:
            continue
        except OSError as exc:
            LOGGER.warning("Failed to remove overlay %s: %s", path, exc)
    LOGGER.debug(
        "Removed %d overlay files for activity=%s job=%s", removed, activity_id, job_id
    )
    return removed


__all__ = [
    "OverlayGenerator",
    "cleanup_overlays",
    "overlay_filename",
    "overlay_pattern",
    "render_svg",
    "speed_scale",
]
