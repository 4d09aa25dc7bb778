"""Central error types used across the application."""

from __future__ import annotations


class OverlayPipelineError(RuntimeError):
    """Base error for failures that abort a processing request."""


class InputValidationError(OverlayPipelineError):
    """Raised when the video, trackpoints or activity fail pre-flight checks."""


class MissingTelemetryError(OverlayPipelineError):
    """Raised when an activity stream lacks the required time series."""


class MetadataExtractionError(OverlayPipelineError):
    """Raised when the video toolkit cannot read the video's metadata."""


class SynchronizationError(OverlayPipelineError):
    """Raised when the video cannot be placed on the activity's timeline."""


class OverlayGenerationError(OverlayPipelineError):
    """Raised when an overlay frame cannot be written."""


class CompositingError(OverlayPipelineError):
    """Raised when the encoder (or rasterizer) subprocess fails."""


class CompositingTimeoutError(CompositingError, TimeoutError):
    """Raised when an encode exceeds its wall-clock budget and is killed."""


class StravaAPIError(RuntimeError):
    """Base error for Strava API failures."""


class StravaPermissionError(StravaAPIError):
    """Raised when the API reports insufficient scopes or authentication issues."""


class StravaResourceNotFoundError(StravaAPIError):
    """Raised when an activity or stream does not exist."""


__all__ = [
    "OverlayPipelineError",
    "InputValidationError",
    "MissingTelemetryError",
    "MetadataExtractionError",
    "SynchronizationError",
    "OverlayGenerationError",
    "CompositingError",
    "CompositingTimeoutError",
    "StravaAPIError",
    "StravaPermissionError",
    "StravaResourceNotFoundError",
]
