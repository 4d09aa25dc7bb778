"""Command line entry point: render a telemetry overlay onto an activity video."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Any, Dict

from .config import ACTIVITIES_PER_PAGE_DEFAULT, LOG_LEVEL
from .errors import OverlayPipelineError, StravaAPIError
from .models import RequestContext, VideoSyncResult
from .services import VideoOverlayService


def _setup_logging() -> None:
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Overlay Strava telemetry gauges onto an action camera video"
    )
    parser.add_argument("--activity-id", help="Strava activity id")
    parser.add_argument("--video", help="Path to the source video")
    parser.add_argument(
        "--list-activities",
        action="store_true",
        help="List recent activities as JSON instead of rendering",
    )
    parser.add_argument(
        "--per-page",
        default=ACTIVITIES_PER_PAGE_DEFAULT,
        help="Activities to list (1-200, default 30)",
    )
    parser.add_argument(
        "--gps-only",
        action="store_true",
        help="With --list-activities, keep only activities with a GPS track",
    )
    parser.add_argument(
        "--preview",
        action="store_true",
        help="Render a fast low-quality preview of the first seconds",
    )
    parser.add_argument(
        "--sync-only",
        action="store_true",
        help="Only report where the video starts on the activity",
    )
    parser.add_argument(
        "--access-token",
        default=None,
        help="Strava access token (defaults to STRAVA_ACCESS_TOKEN)",
    )
    args = parser.parse_args(argv)
    if not args.list_activities and (not args.activity_id or not args.video):
        parser.error("--activity-id and --video are required unless --list-activities")
    return args


def _sync_payload(result: VideoSyncResult) -> Dict[str, Any]:
    closest = result.closest_trackpoint
    return {
        "video_start": result.video_start.isoformat(),
        "video_duration_s": result.video.duration_s,
        "closest_trackpoint": (
            {
                "time": closest.time.isoformat() if closest.time else None,
                "latlng": list(closest.latlng) if closest.latlng else None,
                "elevation": closest.elevation,
            }
            if closest is not None
            else None
        ),
        "activity_stats": result.activity_stats,
    }


def main(
    argv: list[str] | None = None, service: VideoOverlayService | None = None
) -> int:
    _setup_logging()
    args = parse_args(argv)
    token = args.access_token or os.getenv("STRAVA_ACCESS_TOKEN")
    if not token:
        logging.error("No access token: pass --access-token or set STRAVA_ACCESS_TOKEN")
        return 2

    ctx = RequestContext(access_token=token)
    service = service or VideoOverlayService()
    try:
        if args.list_activities:
            payload = service.client.list_activities(
                ctx, args.per_page, gps_only=args.gps_only
            )
        elif args.sync_only:
            payload = _sync_payload(
                service.locate_video_start(ctx, args.activity_id, args.video)
            )
        else:
            payload = service.process_activity_video(
                ctx, args.activity_id, args.video, preview=args.preview
            ).as_dict()
    except (OverlayPipelineError, StravaAPIError) as exc:
        logging.error("Processing failed (%s): %s", exc.__class__.__name__, exc)
        return 1
    print(json.dumps(payload, indent=2))
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    sys.exit(main())
