"""Central configuration for the Strava video overlay tool.

All values are constants imported by the rest of the package. Adjust as needed
for your environment. Every value can be overridden through environment
variables (optionally via a local `.env`).
"""

from __future__ import annotations

import importlib
import os


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


# Load .env variables when python-dotenv is available.
_load_dotenv = None
try:
    _dotenv_mod = importlib.import_module("dotenv")
    _load_dotenv = getattr(_dotenv_mod, "load_dotenv", None)
except ImportError:
    _load_dotenv = None

if callable(_load_dotenv):
    # Load .env from the current directory or any parent folder.
    _load_dotenv()


# ---------------------------------------------------------------------------
# Strava settings
# ---------------------------------------------------------------------------
STRAVA_BASE_URL = os.getenv("STRAVA_BASE_URL", "https://www.strava.com/api/v3")

# Streams requested for every activity. ``time`` is mandatory, the rest are
# optional and simply absent from the response when the device did not record
# them.
STREAM_KEYS = os.getenv("STRAVA_STREAM_KEYS", "latlng,time,distance,altitude")

# Page size for athlete activity listings. Values outside 1..200 fall back to
# the default.
ACTIVITIES_PER_PAGE_DEFAULT = _env_int("STRAVA_ACTIVITIES_PER_PAGE", 30)
ACTIVITIES_PER_PAGE_MAX = 200

# Request timeout in seconds.
REQUEST_TIMEOUT = _env_int("STRAVA_REQUEST_TIMEOUT", 30)

# HTTP session pool sizes.
HTTP_POOL_CONNECTIONS = 10
HTTP_POOL_MAXSIZE = 10

# Maximum number of activity streams to keep in the in-memory cache and how
# long (seconds) an entry stays valid.
ACTIVITY_STREAM_CACHE_SIZE = _env_int("ACTIVITY_STREAM_CACHE_SIZE", 64)
ACTIVITY_STREAM_CACHE_TTL_SECONDS = _env_int("ACTIVITY_STREAM_CACHE_TTL_SECONDS", 3600)


# ---------------------------------------------------------------------------
# Video toolkit
# ---------------------------------------------------------------------------
FFMPEG_BINARY = os.getenv("FFMPEG_BINARY", "ffmpeg")
FFPROBE_BINARY = os.getenv("FFPROBE_BINARY", "ffprobe")

# Upper bound (bytes) for a source video accepted by the pipeline.
VIDEO_MAX_SIZE_BYTES = _env_int("VIDEO_MAX_SIZE_BYTES", 500 * 1024 * 1024)

# Wall-clock budget (seconds) for the dynamic compositing encode. The encoder
# is killed when the budget expires.
COMPOSITE_TIMEOUT_S = _env_float("COMPOSITE_TIMEOUT_S", 10 * 60)

# Bounds for the short helper invocations (rasterize one frame, probe).
RASTERIZE_TIMEOUT_S = _env_float("RASTERIZE_TIMEOUT_S", 60)
PROBE_TIMEOUT_S = _env_float("PROBE_TIMEOUT_S", 30)


# ---------------------------------------------------------------------------
# Pipeline thresholds
# ---------------------------------------------------------------------------
MIN_TRACKPOINTS = 2

# Below this share of trackpoints with coordinates a warning is logged.
MIN_VALID_COORDINATE_RATIO = _env_float("MIN_VALID_COORDINATE_RATIO", 0.8)

# Jobs above either limit fall back to the static overlay strategy.
COMPLEX_MAX_FRAMES = _env_int("COMPLEX_MAX_FRAMES", 1000)
COMPLEX_MAX_DURATION_S = _env_float("COMPLEX_MAX_DURATION_S", 600)

# Visibility window bounds (seconds) for each overlay frame.
WINDOW_MIN_S = 0.1
WINDOW_MAX_S = 5.0
LAST_WINDOW_S = 1.0

# Opacity of the single frame used by the static strategy.
STATIC_OVERLAY_OPACITY = _env_float("STATIC_OVERLAY_OPACITY", 0.8)

# Preview keeps every Nth frame and only the first N seconds of video.
PREVIEW_FRAME_STEP = _env_int("PREVIEW_FRAME_STEP", 30)
PREVIEW_MAX_SECONDS = _env_float("PREVIEW_MAX_SECONDS", 30)

# When True, g-force divides the km/h speed delta by 9.81 directly. The
# default converts the delta to m/s first.
G_FORCE_LEGACY_UNITS = _env_bool("G_FORCE_LEGACY_UNITS", False)


# ---------------------------------------------------------------------------
# Overlay rendering
# ---------------------------------------------------------------------------
OVERLAY_WIDTH = 400
OVERLAY_HEIGHT = 300


# ---------------------------------------------------------------------------
# Encoder settings
# ---------------------------------------------------------------------------
VIDEO_CODEC = "libx264"
VIDEO_PRESET = "medium"
VIDEO_CRF = 23
AUDIO_CODEC = "aac"
AUDIO_BITRATE = "128k"

PREVIEW_PRESET = "fast"
PREVIEW_CRF = 28
PREVIEW_AUDIO_BITRATE = "96k"


# ---------------------------------------------------------------------------
# Persisted layout
# ---------------------------------------------------------------------------
# Transient SVG/PNG frames. Files are deleted after every run.
OVERLAY_DIR = os.getenv("OVERLAY_DIR", "overlays")

# Rendered videos. Files older than RETENTION_MAX_AGE_HOURS are swept.
OUTPUT_DIR = os.getenv("OUTPUT_DIR", "output")

RETENTION_SWEEP_ENABLED = _env_bool("RETENTION_SWEEP_ENABLED", True)
RETENTION_MAX_AGE_HOURS = _env_float("RETENTION_MAX_AGE_HOURS", 24)
RETENTION_INTERVAL_SECONDS = _env_float("RETENTION_INTERVAL_SECONDS", 3600)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
