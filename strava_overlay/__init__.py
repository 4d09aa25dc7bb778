"""Strava telemetry video overlay package."""

from .main import main
from .models import Activity, ProcessingResult, RequestContext, Trackpoint
from .errors import OverlayPipelineError, StravaAPIError

__all__ = [
    "main",
    "Activity",
    "ProcessingResult",
    "RequestContext",
    "Trackpoint",
    "OverlayPipelineError",
    "StravaAPIError",
]
