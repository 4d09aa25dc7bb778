"""Locate a video's capture instant on the activity's clock.

Cameras disagree on where they store the creation timestamp, so the lookup
is a list of ``(scope, tag)`` rules tried in order; the first non-empty value
wins. ``scope`` is ``"format"`` for container tags or ``"streams"`` for the
tags of each stream (first stream first).

Clock frame: trackpoint timestamps are activity-local wall clock stored as
UTC-aware datetimes (``start_date + utc_offset``). Most action cameras write
local wall clock and label it ``Z`` (or leave it naive), so such values are
taken as written. A value with an explicit non-zero offset is a true instant
and is shifted onto the activity-local clock with the activity's UTC offset.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Sequence, Tuple

from .errors import MetadataExtractionError, SynchronizationError
from .models import Activity

LOGGER = logging.getLogger(__name__)

CreationTimeRule = Tuple[str, str]

CREATION_TIME_RULES: Sequence[CreationTimeRule] = (
    ("format", "creation_time"),
    ("format", "date"),
    ("format", "DATE"),
    ("format", "creation-time"),
    ("streams", "creation_time"),
    ("streams", "date"),
    ("streams", "DATE"),
    ("streams", "creation-time"),
)

_EXIF_DATE = re.compile(r"^(\d{4}):(\d{2}):(\d{2})")
_FRACTION = re.compile(r"\.(\d+)")


def find_creation_time(
    probe_payload: Dict[str, Any],
    rules: Sequence[CreationTimeRule] = CREATION_TIME_RULES,
) -> Optional[str]:
    """Return the first creation timestamp string matched by ``rules``."""

    for scope, tag in rules:
        for tags in _tag_sets(probe_payload, scope):
            value = tags.get(tag)
            if isinstance(value, str) and value.strip():
                LOGGER.debug("Creation time found via %s.%s", scope, tag)
                return value.strip()
    return None


def _tag_sets(payload: Dict[str, Any], scope: str) -> Sequence[Dict[str, Any]]:
    if scope == "format":
        tags = (payload.get("format") or {}).get("tags")
        return [tags] if isinstance(tags, dict) else []
    streams = payload.get("streams") or []
    return [
        stream["tags"]
        for stream in streams
        if isinstance(stream, dict) and isinstance(stream.get("tags"), dict)
    ]


def parse_creation_time(text: str, utc_offset_s: float = 0.0) -> datetime:
    """Parse a container timestamp into the activity-local clock frame.

    Accepts ISO 8601 (``T`` or space separated, optional ``Z`` or offset, any
    number of fractional digits) and EXIF style ``YYYY:MM:DD HH:MM:SS``.

    Raises:
        MetadataExtractionError: If ``text`` is not a recognisable timestamp.
    """

    normalized = _EXIF_DATE.sub(r"\1-\2-\3", text.strip())
    if normalized.endswith(("Z", "z")):
        normalized = normalized[:-1]
    # datetime.fromisoformat only takes up to microseconds
    normalized = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), normalized)
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise MetadataExtractionError(
            f"Unrecognised video creation time {text!r}"
        ) from exc

    return on_activity_clock(parsed, utc_offset_s)


def on_activity_clock(value: datetime, utc_offset_s: float = 0.0) -> datetime:
    """Express ``value`` on the activity-local clock used by trackpoints.

    Naive and UTC values are taken as local wall clock; any other offset is
    converted to the instant and shifted by ``utc_offset_s``.
    """

    offset = value.utcoffset()
    if offset is None or offset == timedelta(0):
        return value.replace(tzinfo=timezone.utc)
    instant = value.astimezone(timezone.utc)
    return instant + timedelta(seconds=utc_offset_s)


def ensure_within_activity(video_start: datetime, activity: Activity) -> None:
    """Raise :class:`SynchronizationError` if the clip starts outside the activity."""

    start = activity.reference_start
    end = activity.reference_end
    if video_start < start or video_start > end:
        raise SynchronizationError(
            f"Video recorded at {video_start.isoformat()} is outside activity "
            f"{activity.id} ({start.isoformat()} to {end.isoformat()})"
        )


__all__ = [
    "CREATION_TIME_RULES",
    "ensure_within_activity",
    "find_creation_time",
    "on_activity_clock",
    "parse_creation_time",
]
