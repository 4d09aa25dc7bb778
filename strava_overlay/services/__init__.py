"""Service layer package.

Exports the pipeline service consumed by the CLI.
"""

from .overlay_service import PipelineStage, VideoOverlayService, VideoOverlayServiceConfig

__all__ = ["PipelineStage", "VideoOverlayService", "VideoOverlayServiceConfig"]
