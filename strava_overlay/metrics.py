"""Per-segment motion metrics derived from consecutive trackpoints.

Metrics are attached in a single left-to-right pass: every value of point
``i`` depends only on point ``i - 1`` (and on the running elevation total).

G-force: the speed delta is held in km/h, so it is converted to m/s before
dividing by the elapsed time and by standard gravity. ``G_FORCE_LEGACY_UNITS=1``
divides the raw km/h delta instead, which reads 3.6 times higher.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Sequence

import pandas as pd

from .config import G_FORCE_LEGACY_UNITS
from .models import LatLon, Trackpoint, TrackpointMetrics

LOGGER = logging.getLogger(__name__)

_EARTH_RADIUS_M = 6_371_000.0
_STANDARD_GRAVITY = 9.81
_KMH_PER_MS = 3.6


def haversine_m(first: LatLon, second: LatLon) -> float:
    """Great-circle distance in metres between two lat/lon pairs."""

    lat1, lon1 = first
    lat2, lon2 = second
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = lat2_rad - lat1_rad
    delta_lon = math.radians(lon2 - lon1)
    sin_half_lat = math.sin(delta_lat / 2.0)
    sin_half_lon = math.sin(delta_lon / 2.0)
    a = sin_half_lat**2 + math.cos(lat1_rad) * math.cos(lat2_rad) * sin_half_lon**2
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return _EARTH_RADIUS_M * c


def initial_bearing_deg(first: LatLon, second: LatLon) -> float:
    """Initial bearing from ``first`` to ``second`` in ``[0, 360)`` degrees."""

    lat1, lon1 = first
    lat2, lon2 = second
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lon = math.radians(lon2 - lon1)
    y = math.sin(delta_lon) * math.cos(lat2_rad)
    x = math.cos(lat1_rad) * math.sin(lat2_rad) - math.sin(lat1_rad) * math.cos(
        lat2_rad
    ) * math.cos(delta_lon)
    bearing = (math.degrees(math.atan2(y, x)) + 360.0) % 360.0
    return 0.0 if bearing >= 360.0 else bearing


def g_force(
    speed_delta_kmh: float, elapsed_s: float, *, legacy_units: bool = G_FORCE_LEGACY_UNITS
) -> float:
    """Magnitude of the acceleration between two samples, in g."""

    if elapsed_s <= 0:
        return 0.0
    delta = speed_delta_kmh if legacy_units else speed_delta_kmh / _KMH_PER_MS
    return abs(delta / elapsed_s) / _STANDARD_GRAVITY


def compute_metrics(
    trackpoints: Sequence[Trackpoint],
    *,
    legacy_g_force: bool = G_FORCE_LEGACY_UNITS,
) -> List[Trackpoint]:
    """Attach :class:`TrackpointMetrics` to every located trackpoint.

    Points without a coordinate or timestamp get ``metrics = None`` and are
    excluded from overlays. A located point whose immediate predecessor is
    not located (or which is the first point) gets zero instantaneous metrics
    while the cumulative elevation gain carries forward. Speed, bearing and
    g-force are skipped when the time delta is not positive.
    """

    total_gain = 0.0
    previous: Trackpoint | None = None
    for point in trackpoints:
        if not point.is_located:
            point.metrics = None
            previous = point
            continue
        metrics = TrackpointMetrics()
        if previous is not None and previous.metrics is not None:
            metrics.distance_m = haversine_m(previous.latlng, point.latlng)
            elapsed = (point.time - previous.time).total_seconds()
            if elapsed > 0:
                metrics.speed_kmh = metrics.distance_m / elapsed * _KMH_PER_MS
                metrics.bearing_deg = initial_bearing_deg(previous.latlng, point.latlng)
                metrics.g_force = g_force(
                    metrics.speed_kmh - previous.metrics.speed_kmh,
                    elapsed,
                    legacy_units=legacy_g_force,
                )
            if point.elevation is not None and previous.elevation is not None:
                metrics.elevation_gain_m = max(0.0, point.elevation - previous.elevation)
                total_gain += metrics.elevation_gain_m
        metrics.total_elevation_gain_m = total_gain
        point.metrics = metrics
        previous = point
    return list(trackpoints)


def summarize_activity(trackpoints: Sequence[Trackpoint]) -> Dict[str, Any]:
    """Activity-level totals over trackpoints that already carry metrics."""

    rows = [
        {
            "distance_m": point.metrics.distance_m,
            "speed_kmh": point.metrics.speed_kmh,
            "g_force": point.metrics.g_force,
            "elevation_gain_m": point.metrics.elevation_gain_m,
        }
        for point in trackpoints
        if point.metrics is not None
    ]
    timed = [point.time for point in trackpoints if point.time is not None]
    duration = (timed[-1] - timed[0]).total_seconds() if timed else 0.0
    if not rows:
        return {
            "total_distance_m": 0,
            "max_speed_kmh": 0.0,
            "total_elevation_gain_m": 0,
            "max_g_force": 0.0,
            "duration_s": duration,
        }
    frame = pd.DataFrame(rows)
    summary = {
        "total_distance_m": int(round(frame["distance_m"].sum())),
        "max_speed_kmh": round(float(frame["speed_kmh"].max()), 1),
        "total_elevation_gain_m": int(round(frame["elevation_gain_m"].sum())),
        "max_g_force": round(float(frame["g_force"].max()), 2),
        "duration_s": duration,
    }
    LOGGER.debug("Activity summary: %s", summary)
    return summary


__all__ = [
    "compute_metrics",
    "g_force",
    "haversine_m",
    "initial_bearing_deg",
    "summarize_activity",
]
