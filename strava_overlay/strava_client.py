"""Strava API client for activity listings, records and telemetry streams.

Credentials are never stored here: every call takes the caller's
:class:`~strava_overlay.models.RequestContext`.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Type

import requests
from cachetools import TTLCache
from requests import Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import (
    ACTIVITIES_PER_PAGE_DEFAULT,
    ACTIVITIES_PER_PAGE_MAX,
    ACTIVITY_STREAM_CACHE_SIZE,
    ACTIVITY_STREAM_CACHE_TTL_SECONDS,
    HTTP_POOL_CONNECTIONS,
    HTTP_POOL_MAXSIZE,
    REQUEST_TIMEOUT,
    STRAVA_BASE_URL,
    STREAM_KEYS,
)
from .errors import StravaAPIError, StravaPermissionError, StravaResourceNotFoundError
from .models import Activity, ActivityStreams, RequestContext, Trackpoint
from .telemetry import build_trackpoints

RequestsJSONDecodeError: Type[Exception]
if hasattr(requests.exceptions, "JSONDecodeError"):
    RequestsJSONDecodeError = requests.exceptions.JSONDecodeError
else:  # pragma: no cover - fallback for old requests versions
    RequestsJSONDecodeError = ValueError

LOGGER = logging.getLogger(__name__)

_StreamCacheKey = Tuple[str, str]


def _build_retry() -> Retry:
    return Retry(
        total=3,
        backoff_factor=1.0,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=["GET"],
    )


def create_default_session() -> Session:
    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=HTTP_POOL_CONNECTIONS,
        pool_maxsize=HTTP_POOL_MAXSIZE,
        max_retries=_build_retry(),
    )
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update(
        {
            "Accept-Encoding": "gzip, deflate",
            "Accept": "application/json",
        }
    )
    return session


class StravaClient:
    """Fetch activities and streams, caching streams per token and activity."""

    def __init__(
        self,
        *,
        session: Session | None = None,
        timeout: int = REQUEST_TIMEOUT,
        base_url: str = STRAVA_BASE_URL,
        cache_size: int = ACTIVITY_STREAM_CACHE_SIZE,
        cache_ttl: float = ACTIVITY_STREAM_CACHE_TTL_SECONDS,
    ) -> None:
        self._session = session or create_default_session()
        self._timeout = timeout
        self._base_url = base_url.rstrip("/")
        self._stream_cache: TTLCache[_StreamCacheKey, ActivityStreams] = TTLCache(
            maxsize=max(1, cache_size), ttl=cache_ttl
        )
        self._cache_lock = threading.RLock()

    def get_activity(self, ctx: RequestContext, activity_id: int | str) -> Activity:
        """Return the activity record (start, UTC offset, elapsed time)."""

        context = f"activity:{activity_id}"
        payload = self._fetch_json(ctx, f"/activities/{activity_id}", None, context)
        if not isinstance(payload, dict):
            raise StravaAPIError(
                f"{context} payload had unexpected type {type(payload).__name__}"
            )
        return parse_activity(payload, fallback_id=activity_id)

    def get_streams(
        self,
        ctx: RequestContext,
        activity_id: int | str,
        keys: str = STREAM_KEYS,
    ) -> ActivityStreams:
        """Return the index-aligned streams for ``activity_id``.

        Missing streams come back as ``None``; the caller decides whether that
        is fatal.
        """

        cache_key: _StreamCacheKey = (ctx.token_fingerprint, str(activity_id))
        with self._cache_lock:
            cached = self._stream_cache.get(cache_key)
        if cached is not None:
            LOGGER.debug("Stream cache hit activity=%s", activity_id)
            return cached

        context = f"activity_stream:{activity_id}"
        params = {"keys": keys, "key_by_type": "true"}
        payload = self._fetch_json(
            ctx, f"/activities/{activity_id}/streams", params, context
        )
        streams = parse_streams(payload, context)
        with self._cache_lock:
            self._stream_cache[cache_key] = streams
        return streams

    def list_activities(
        self,
        ctx: RequestContext,
        per_page: Any = ACTIVITIES_PER_PAGE_DEFAULT,
        *,
        gps_only: bool = False,
    ) -> List[Dict[str, Any]]:
        """Return the athlete's most recent activity summaries.

        With ``gps_only`` only activities carrying a route polyline are kept,
        i.e. the ones a video can be synchronized against.
        """

        size = validate_per_page(per_page)
        payload = self._fetch_json(
            ctx, "/athlete/activities", {"per_page": size}, "athlete_activities"
        )
        if not isinstance(payload, list):
            raise StravaAPIError(
                f"athlete_activities payload had unexpected type {type(payload).__name__}"
            )
        activities = [item for item in payload if isinstance(item, dict)]
        if gps_only:
            activities = [item for item in activities if has_gps_track(item)]
        LOGGER.info(
            "Listed %d activities (per_page=%d gps_only=%s)",
            len(activities),
            size,
            gps_only,
        )
        return activities

    def get_activity_with_trackpoints(
        self, ctx: RequestContext, activity_id: int | str
    ) -> Tuple[Activity, List[Trackpoint]]:
        activity = self.get_activity(ctx, activity_id)
        streams = self.get_streams(ctx, activity_id)
        return activity, build_trackpoints(activity, streams)

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._stream_cache.clear()

    def _fetch_json(
        self,
        ctx: RequestContext,
        path: str,
        params: Optional[Dict[str, Any]],
        context: str,
    ) -> Any:
        url = f"{self._base_url}{path}"
        try:
            response = self._session.get(
                url,
                headers={"Authorization": f"Bearer {ctx.access_token}"},
                params=params,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            message = f"{context} network error: {exc.__class__.__name__}"
            LOGGER.error(message)
            raise StravaAPIError(message) from exc

        error = classify_response_status(response, context)
        if error is not None:
            raise error
        try:
            return response.json()
        except (ValueError, RequestsJSONDecodeError) as exc:
            message = f"{context} returned a non-JSON body"
            LOGGER.error(message)
            raise StravaAPIError(message) from exc


def classify_response_status(
    response: requests.Response, context: str
) -> Optional[StravaAPIError]:
    """Return the error matching a failed response, or ``None`` on success."""

    status = response.status_code
    if status < 400:
        return None
    detail = extract_error(response)

    def with_detail(message: str) -> str:
        return f"{message} | {detail}" if detail else message

    if status in (401, 403):
        message = with_detail(f"{context} forbidden (status {status})")
        LOGGER.warning(message)
        return StravaPermissionError(message)
    if status == 404:
        message = with_detail(f"{context} not found")
        LOGGER.info(message)
        return StravaResourceNotFoundError(message)
    message = with_detail(f"{context} request failed (status {status})")
    LOGGER.error(message)
    return StravaAPIError(message)


def extract_error(resp: Optional[requests.Response]) -> Optional[str]:
    """Return compact string with Strava error info (message + codes) if present."""

    if resp is None:
        return None
    try:
        data = resp.json()
    except (ValueError, RequestsJSONDecodeError):
        text = getattr(resp, "text", "")
        if not isinstance(text, str) or not text.strip():
            return None
        trimmed = text.strip()
        return (trimmed[:297] + "...") if len(trimmed) > 300 else trimmed
    if not isinstance(data, dict):
        return None
    parts: List[str] = []
    if data.get("message"):
        parts.append(str(data["message"]))
    errors = data.get("errors")
    if isinstance(errors, list):
        for err in errors:
            if not isinstance(err, dict):
                continue
            spec = "/".join(filter(None, (err.get("resource"), err.get("field"))))
            code = err.get("code")
            if code and spec:
                parts.append(f"{spec}:{code}")
            elif code:
                parts.append(str(code))
    return " | ".join(parts) if parts else None


def validate_per_page(value: Any) -> int:
    """Coerce a page size to 1..ACTIVITIES_PER_PAGE_MAX, else the default."""

    try:
        size = int(value)
    except (TypeError, ValueError):
        return ACTIVITIES_PER_PAGE_DEFAULT
    if size < 1 or size > ACTIVITIES_PER_PAGE_MAX:
        return ACTIVITIES_PER_PAGE_DEFAULT
    return size


def has_gps_track(summary: Dict[str, Any]) -> bool:
    route = summary.get("map")
    if not isinstance(route, dict):
        return False
    return bool(route.get("summary_polyline"))


def parse_activity(payload: Dict[str, Any], *, fallback_id: int | str) -> Activity:
    """Build an :class:`Activity` from the Strava activity JSON."""

    raw_start = payload.get("start_date")
    if not raw_start:
        raise StravaAPIError(f"activity {fallback_id} has no start_date")
    return Activity(
        id=payload.get("id", fallback_id),
        start_date=_parse_utc(str(raw_start)),
        utc_offset_s=float(payload.get("utc_offset") or 0.0),
        elapsed_time_s=float(payload.get("elapsed_time") or 0.0),
        name=payload.get("name"),
        timezone=payload.get("timezone"),
    )


def parse_streams(payload: Any, context: str) -> ActivityStreams:
    """Map a ``key_by_type`` streams response onto :class:`ActivityStreams`.

    A list-shaped response (``key_by_type=false``) is accepted as well.
    """

    if isinstance(payload, list):
        payload = {
            item.get("type"): item for item in payload if isinstance(item, dict)
        }
    if not isinstance(payload, dict):
        message = f"{context} payload had unexpected type {type(payload).__name__}"
        LOGGER.error(message)
        raise StravaAPIError(message)

    def data_for(key: str) -> Optional[List[Any]]:
        stream = payload.get(key)
        if not isinstance(stream, dict):
            return None
        data = stream.get("data")
        return list(data) if isinstance(data, list) else None

    return ActivityStreams(
        time=data_for("time"),
        latlng=data_for("latlng"),
        distance=data_for("distance"),
        altitude=data_for("altitude"),
    )


def _parse_utc(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


__all__ = [
    "StravaClient",
    "classify_response_status",
    "create_default_session",
    "extract_error",
    "has_gps_track",
    "parse_activity",
    "parse_streams",
    "validate_per_page",
]
