"""Place instants on an activity's timeline."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from .models import Trackpoint
from .video_clock import on_activity_clock

LOGGER = logging.getLogger(__name__)


def find_closest(
    trackpoints: Sequence[Trackpoint], target: datetime
) -> Optional[Trackpoint]:
    """Return the located trackpoint nearest to ``target``.

    Only points carrying both a coordinate and a timestamp are considered.
    On an exact tie the earliest point in sequence order wins. Returns
    ``None`` when no point qualifies. A naive ``target`` is read as
    activity-local wall clock.
    """

    target = on_activity_clock(target)
    closest: Optional[Trackpoint] = None
    smallest: Optional[float] = None
    for point in trackpoints:
        if not point.is_located:
            continue
        diff = abs((point.time - target).total_seconds())
        if smallest is None or diff < smallest:
            smallest = diff
            closest = point
    if closest is None:
        LOGGER.warning("No located trackpoints to correlate with %s", target)
    else:
        LOGGER.debug(
            "Closest trackpoint to %s is %s (diff=%.3fs)",
            target.isoformat(),
            closest.time.isoformat(),
            smallest,
        )
    return closest


def synchronize(
    trackpoints: Sequence[Trackpoint], video_start: datetime, duration_s: float
) -> List[Trackpoint]:
    """Keep trackpoints captured while the video was recording.

    The window is ``[video_start, video_start + duration_s]`` with both ends
    included. Points without a timestamp are dropped.
    """

    video_start = on_activity_clock(video_start)
    video_end = video_start + timedelta(seconds=duration_s)
    synced = [
        point
        for point in trackpoints
        if point.time is not None and video_start <= point.time <= video_end
    ]
    LOGGER.info(
        "Trackpoints synchronized total=%d synced=%d start=%s duration=%.1fs",
        len(trackpoints),
        len(synced),
        video_start.isoformat(),
        duration_s,
    )
    return synced


__all__ = ["find_closest", "synchronize"]
