"""Progress and ETA reporting for frame capture."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from time import perf_counter


def format_duration(seconds: float) -> str:
    """Return a compact human-readable duration string."""
    total_seconds = int(round(seconds))
    if total_seconds <= 0:
        return "<1s"
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds_remaining = divmod(remainder, 60)
    if hours:
        return f"{hours}h{minutes:02d}m{seconds_remaining:02d}s"
    if minutes:
        return f"{minutes}m{seconds_remaining:02d}s"
    return f"{seconds_remaining}s"


def eta_string(elapsed: float, completed: int, total: int) -> str:
    """Format an ETA string given elapsed time and progress counters."""
    if completed <= 0 or total <= 0 or completed > total or elapsed <= 0.0:
        return "ETA estimating"

    remaining = max(0.0, elapsed * total / completed - elapsed)
    finish_time = datetime.now() + timedelta(seconds=remaining)
    return f"ETA {format_duration(remaining)} (finish {finish_time.strftime('%H:%M:%S')})"


class CaptureProgress:
    """Log capture progress for one worker roughly every 5% of its frames."""

    def __init__(self, worker_index: int, total: int, *, logger: logging.Logger) -> None:
        self.worker_index = worker_index
        self.total = max(0, total)
        self.logger = logger
        self.completed = 0
        self.interval = max(1, self.total // 20)
        self._started = perf_counter()

    def advance(self) -> None:
        self.completed += 1
        if self.completed % self.interval != 0 and self.completed != self.total:
            return
        percent = (self.completed / self.total) * 100.0 if self.total else 100.0
        elapsed = perf_counter() - self._started
        self.logger.info(
            "Capture progress worker %s: %s/%s frames (%0.1f%%, %s)",
            self.worker_index,
            self.completed,
            self.total,
            percent,
            eta_string(elapsed, self.completed, self.total),
        )


class Stopwatch:
    """Measure wall time of a render run."""

    def __init__(self) -> None:
        self._started = perf_counter()

    def elapsed(self) -> float:
        return perf_counter() - self._started


__all__ = ["CaptureProgress", "Stopwatch", "eta_string", "format_duration"]
