"""Convert raw activity streams into absolute-timestamped trackpoints."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, List, Optional, Sequence

from .errors import MissingTelemetryError
from .models import Activity, ActivityStreams, LatLon, Trackpoint

LOGGER = logging.getLogger(__name__)


def build_trackpoints(activity: Activity, streams: ActivityStreams) -> List[Trackpoint]:
    """Return one trackpoint per elapsed-seconds sample of ``streams``.

    Timestamps are ``activity.reference_start + elapsed``. Coordinates and
    elevations are taken from the index-aligned streams; absent or malformed
    samples become ``None`` rather than an error.

    Raises:
        MissingTelemetryError: If the activity has no ``time`` stream.
    """

    if streams.time is None:
        raise MissingTelemetryError(
            f"activity {activity.id} stream is missing the time series"
        )
    reference = activity.reference_start
    latlng = streams.latlng or []
    altitude = streams.altitude or []

    trackpoints: List[Trackpoint] = []
    for index, elapsed in enumerate(streams.time):
        trackpoints.append(
            Trackpoint(
                time=reference + timedelta(seconds=float(elapsed)),
                latlng=_coerce_latlng(_at(latlng, index)),
                elevation=_coerce_float(_at(altitude, index)),
            )
        )
    located = sum(1 for point in trackpoints if point.latlng is not None)
    LOGGER.debug(
        "Built %d trackpoints for activity=%s (%d with coordinates)",
        len(trackpoints),
        activity.id,
        located,
    )
    return trackpoints


def _at(values: Sequence[Any], index: int) -> Any:
    return values[index] if index < len(values) else None


def _coerce_latlng(value: Any) -> Optional[LatLon]:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        return None
    try:
        return float(value[0]), float(value[1])
    except (TypeError, ValueError):
        return None


def _coerce_float(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


__all__ = ["build_trackpoints"]
