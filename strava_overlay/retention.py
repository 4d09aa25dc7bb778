"""Age-based sweep of rendered videos in the output directory.

Only file age is considered, never ownership, so concurrent jobs are safe as
long as the age horizon is far longer than a single render.
"""

from __future__ import annotations

import argparse
import logging
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Optional

from .config import (
    OUTPUT_DIR,
    RETENTION_INTERVAL_SECONDS,
    RETENTION_MAX_AGE_HOURS,
)

LOGGER = logging.getLogger(__name__)


def _resolve_base(path: str | Path | None) -> Path:
    candidate = Path(OUTPUT_DIR) if path is None else Path(path)
    return candidate if candidate.is_absolute() else Path.cwd() / candidate


def _iter_output_files(base: Path, pattern: str) -> Iterable[Path]:
    return (path for path in base.glob(pattern) if path.is_file())


def prune_directory(
    *,
    base: str | Path | None = None,
    max_age: Optional[timedelta] = None,
    pattern: str = "*",
    dry_run: bool = False,
) -> dict[str, int]:
    """Delete files in ``base`` matching ``pattern`` older than ``max_age``."""

    resolved = _resolve_base(base)
    if not resolved.exists():
        LOGGER.debug("Output directory %s does not exist; nothing to prune.", resolved)
        return {"deleted": 0, "skipped": 0}

    window = (
        max_age if max_age is not None else timedelta(hours=RETENTION_MAX_AGE_HOURS)
    )
    cutoff = datetime.now(timezone.utc) - window
    deleted = skipped = 0
    for file_path in _iter_output_files(resolved, pattern):
        try:
            modified = datetime.fromtimestamp(
                file_path.stat().st_mtime, tz=timezone.utc
            )
        except OSError:
            skipped += 1
            continue
        if modified >= cutoff:
            continue
        if dry_run:
            LOGGER.info("[dry-run] Would delete %s (modified=%s)", file_path, modified)
            skipped += 1
            continue
        try:
            file_path.unlink()
            deleted += 1
        except OSError as exc:  # pragma: no cover - filesystem race
            LOGGER.warning("Failed to delete %s: %s", file_path, exc)
            skipped += 1
    LOGGER.info(
        "Retention sweep complete base=%s deleted=%s skipped=%s cutoff=%s",
        resolved,
        deleted,
        skipped,
        cutoff,
    )
    return {"deleted": deleted, "skipped": skipped}


class RetentionSweeper(threading.Thread):
    """Daemon thread: sweep once immediately, then every ``interval_s``."""

    def __init__(
        self,
        *,
        base: str | Path | None = None,
        max_age: Optional[timedelta] = None,
        interval_s: float = RETENTION_INTERVAL_SECONDS,
    ) -> None:
        super().__init__(daemon=True, name="retention-sweeper")
        self.base = base
        self.max_age = max_age
        self.interval_s = interval_s
        self.stop_event = threading.Event()
        self.sweeps = 0

    def run(self) -> None:
        while not self.stop_event.is_set():
            try:
                prune_directory(base=self.base, max_age=self.max_age)
            except OSError as exc:
                LOGGER.warning("Retention sweep failed: %s", exc)
            self.sweeps += 1
            self.stop_event.wait(self.interval_s)

    def stop(self, timeout: float | None = None) -> None:
        self.stop_event.set()
        if self.is_alive():
            self.join(timeout)


_sweeper: Optional[RetentionSweeper] = None
_sweeper_lock = threading.Lock()


def ensure_retention_sweeper(
    *,
    base: str | Path | None = None,
    max_age: Optional[timedelta] = None,
    interval_s: float = RETENTION_INTERVAL_SECONDS,
) -> RetentionSweeper:
    """Start the process-wide sweeper unless one is already running."""

    global _sweeper
    with _sweeper_lock:
        if _sweeper is None or not _sweeper.is_alive():
            _sweeper = RetentionSweeper(
                base=base, max_age=max_age, interval_s=interval_s
            )
            _sweeper.start()
            LOGGER.debug("Retention sweeper started (interval %.0fs)", interval_s)
        return _sweeper


def stop_retention_sweeper(timeout: float | None = 5.0) -> None:
    global _sweeper
    with _sweeper_lock:
        if _sweeper is not None:
            _sweeper.stop(timeout)
        _sweeper = None


def _parse_duration(spec: str) -> timedelta:
    """Parse strings such as ``30d``/``12h``/``90m``/``3600`` into a timedelta."""

    spec = spec.strip().lower()
    if not spec:
        raise ValueError("empty duration spec")
    multipliers = {"d": 24 * 3600, "h": 3600, "m": 60, "s": 1}
    multiplier = 1
    if spec[-1] in multipliers:
        multiplier = multipliers[spec[-1]]
        spec = spec[:-1]
    seconds = float(spec) * multiplier
    if seconds <= 0:
        raise ValueError("duration must be positive")
    return timedelta(seconds=seconds)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Delete stale rendered videos")
    parser.add_argument("--path", help="Output directory (defaults to OUTPUT_DIR)")
    parser.add_argument(
        "--max-age",
        default=f"{RETENTION_MAX_AGE_HOURS:g}h",
        help="Delete files older than this duration (e.g. 24h, 2d, 90m, 3600)",
    )
    parser.add_argument(
        "--pattern", default="*", help="Glob of files to consider (default: *)"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log deletions without removing files",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.INFO, format="[%(asctime)s] %(levelname)s %(message)s"
        )
    try:
        window = _parse_duration(args.max_age)
    except ValueError as exc:
        LOGGER.error("Invalid --max-age value %s: %s", args.max_age, exc)
        raise SystemExit(2) from exc
    prune_directory(
        base=args.path, max_age=window, pattern=args.pattern, dry_run=args.dry_run
    )


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    main()
