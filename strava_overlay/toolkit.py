"""Thin wrappers around the ffmpeg/ffprobe executables.

Every invocation is a :class:`ToolkitTask`: a single subprocess that can be
cancelled from another thread. A wall-clock budget is wired to that
cancellation through a timer, so an expired encode is killed rather than
left to finish in the background.
"""

from __future__ import annotations

import json
import logging
import subprocess
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Type

from .config import (
    FFMPEG_BINARY,
    FFPROBE_BINARY,
    OVERLAY_HEIGHT,
    OVERLAY_WIDTH,
    PROBE_TIMEOUT_S,
    RASTERIZE_TIMEOUT_S,
)
from .errors import CompositingError, CompositingTimeoutError, MetadataExtractionError
from .models import VideoInfo
from .video_clock import find_creation_time

LOGGER = logging.getLogger(__name__)

_STDERR_TAIL_LINES = 20


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def run_probe(
    path: Path,
    *,
    ffprobe: str = FFPROBE_BINARY,
    timeout: float = PROBE_TIMEOUT_S,
) -> Dict[str, Any]:
    """Return ffprobe's JSON description (format and streams) of ``path``."""

    cmd = [
        ffprobe,
        "-v",
        "error",
        "-show_format",
        "-show_streams",
        "-of",
        "json",
        str(path),
    ]
    try:
        result = subprocess.run(
            cmd, check=True, capture_output=True, text=True, timeout=timeout
        )
    except FileNotFoundError as exc:
        raise MetadataExtractionError(f"{ffprobe} executable not found") from exc
    except subprocess.TimeoutExpired as exc:
        raise MetadataExtractionError(
            f"ffprobe timed out after {timeout:.0f}s reading {path}"
        ) from exc
    except subprocess.CalledProcessError as exc:
        detail = (exc.stderr or "").strip()
        raise MetadataExtractionError(
            f"ffprobe could not read {path}: {detail or exc.returncode}"
        ) from exc
    try:
        data = json.loads(result.stdout or "{}")
    except json.JSONDecodeError as exc:
        raise MetadataExtractionError(f"ffprobe returned invalid JSON for {path}") from exc
    if not isinstance(data, dict):
        raise MetadataExtractionError(f"ffprobe returned unexpected output for {path}")
    return data


def parse_probe(data: Dict[str, Any], path: Path | None = None) -> VideoInfo:
    """Build :class:`VideoInfo` from an ffprobe JSON payload."""

    streams = data.get("streams") or []
    video = next(
        (
            stream
            for stream in streams
            if isinstance(stream, dict) and stream.get("codec_type") == "video"
        ),
        None,
    )
    if video is None:
        raise MetadataExtractionError(f"No video stream found in {path or 'input'}")
    fmt = data.get("format") or {}
    rate = str(video.get("r_frame_rate") or video.get("avg_frame_rate") or "0/1")
    num, _, den = rate.partition("/")
    fps = _to_float(num) / max(_to_float(den, 1.0), 1.0)
    duration = _to_float(fmt.get("duration"), _to_float(video.get("duration")))
    if duration <= 0:
        raise MetadataExtractionError(f"Could not determine duration of {path or 'input'}")
    return VideoInfo(
        duration_s=duration,
        fps=fps or 30.0,
        width=_to_int(video.get("width")) or 0,
        height=_to_int(video.get("height")) or 0,
        bitrate=_to_int(fmt.get("bit_rate")),
        size_bytes=_to_int(fmt.get("size")),
        format_name=fmt.get("format_name"),
        creation_time=find_creation_time(data),
    )


def probe_video(path: Path, *, ffprobe: str = FFPROBE_BINARY) -> VideoInfo:
    """Use ffprobe to collect duration, geometry, fps and creation time."""

    info = parse_probe(run_probe(path, ffprobe=ffprobe), path)
    LOGGER.info(
        "Probed %s: %.1fs %dx%d @ %.2ffps",
        path,
        info.duration_s,
        info.width,
        info.height,
        info.fps,
    )
    return info


class ToolkitTask:
    """One cancellable ffmpeg (or compatible) subprocess.

    ``run`` blocks until the process exits. ``cancel`` may be called from any
    thread and kills the process; ``run`` with a ``timeout`` arms a timer that
    calls it. After ``run`` returns or raises, the process has been reaped.
    """

    def __init__(
        self,
        cmd: Sequence[str],
        *,
        description: str,
        error_cls: Type[CompositingError] = CompositingError,
        output_path: Path | None = None,
    ) -> None:
        self.cmd = [str(part) for part in cmd]
        self.description = description
        self.error_cls = error_cls
        self.output_path = output_path
        self._proc: Optional[subprocess.Popen[bytes]] = None
        self._lock = threading.Lock()
        self._cancelled = threading.Event()
        self._timed_out = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode if self._proc is not None else None

    def cancel(self) -> None:
        with self._lock:
            self._cancelled.set()
            proc = self._proc
        if proc is not None and proc.poll() is None:
            LOGGER.warning("Killing %s (pid=%s)", self.description, proc.pid)
            proc.kill()

    def _expire(self) -> None:
        with self._lock:
            proc = self._proc
        # a late timer must not fail a process that already exited
        if proc is None or proc.poll() is not None:
            return
        self._timed_out.set()
        self.cancel()

    def run(self, timeout: float | None = None) -> None:
        LOGGER.debug("Running %s: %s", self.description, " ".join(self.cmd))
        try:
            proc = subprocess.Popen(
                self.cmd, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE
            )
        except OSError as exc:
            raise self.error_cls(
                f"{self.description}: could not start {self.cmd[0]}: {exc}"
            ) from exc

        with self._lock:
            self._proc = proc
            cancelled_early = self._cancelled.is_set()
        if cancelled_early:
            proc.kill()

        timer: threading.Timer | None = None
        if timeout is not None:
            timer = threading.Timer(timeout, self._expire)
            timer.daemon = True
            timer.start()
        try:
            _, stderr = proc.communicate()
        finally:
            if timer is not None:
                timer.cancel()
            if proc.poll() is None:
                proc.kill()
                proc.wait()

        if proc.returncode == 0:
            return
        if self._timed_out.is_set():
            self._discard_output()
            raise CompositingTimeoutError(
                f"{self.description} exceeded {timeout:.0f}s and was killed"
            )
        if self._cancelled.is_set():
            self._discard_output()
            raise self.error_cls(f"{self.description} was cancelled")
        if proc.returncode != 0:
            self._discard_output()
            raise self.error_cls(
                f"{self.description} failed with exit code {proc.returncode}: "
                f"{_stderr_tail(stderr)}"
            )

    def _discard_output(self) -> None:
        if self.output_path is None:
            return
        try:
            self.output_path.unlink(missing_ok=True)
        except OSError as exc:
            LOGGER.warning("Could not remove partial output %s: %s", self.output_path, exc)


def _stderr_tail(stderr: bytes | None) -> str:
    if not stderr:
        return "no diagnostic output"
    lines = stderr.decode("utf-8", errors="replace").strip().splitlines()
    return "\n".join(lines[-_STDERR_TAIL_LINES:])


def rasterize(
    svg_path: Path,
    png_path: Path,
    *,
    width: int = OVERLAY_WIDTH,
    height: int = OVERLAY_HEIGHT,
    ffmpeg: str = FFMPEG_BINARY,
    timeout: float = RASTERIZE_TIMEOUT_S,
) -> Path:
    """Render one SVG overlay into a fixed-size PNG."""

    cmd = [
        ffmpeg,
        "-y",
        "-loglevel",
        "error",
        "-i",
        str(svg_path),
        "-vf",
        f"scale={width}:{height}",
        str(png_path),
    ]
    ToolkitTask(
        cmd, description=f"rasterize {svg_path.name}", output_path=png_path
    ).run(timeout=timeout)
    return png_path


__all__ = [
    "ToolkitTask",
    "parse_probe",
    "probe_video",
    "rasterize",
    "run_probe",
]
