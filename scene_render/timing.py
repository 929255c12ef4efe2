"""Conversion between scene timeline parameters and discrete frame indices."""

from __future__ import annotations

import math
from typing import List

from scene_render.models import AnimatorInfo, RecordOptions, RecordWindow

# Products such as 2.0 * 30 can land a hair above or below the integer.
_FRAME_PRECISION = 6


def total_play_time(animator: AnimatorInfo, iteration: int = 0) -> float:
    """Wall-clock length of the scene, delay included, honoring play speed.

    ``iteration`` overrides the scene's own iteration count when positive.
    """
    iterations = float(iteration) if iteration > 0 else animator.effective_iteration_count
    play_speed = animator.play_speed if animator.play_speed > 0 else 1.0
    return max(0.0, (animator.delay + animator.duration * iterations) / play_speed)


def compute_record_window(
    animator: AnimatorInfo,
    *,
    fps: int,
    start_time: float = 0.0,
    iteration: int = 0,
    duration: float = 0.0,
    multi: int = 1,
) -> RecordWindow:
    """Return the inclusive frame range to capture.

    ``multi`` is accepted for signature parity with the recorder call but
    never changes the bounds; see `stride_assignments`.
    """
    if fps <= 0:
        raise ValueError(f"fps must be positive, got {fps}")

    total = total_play_time(animator, iteration)
    window_start = max(0.0, start_time)
    window_end = total
    if duration > 0:
        window_end = min(window_start + duration, total)
    if window_end < window_start:
        window_end = window_start

    start_frame = math.floor(round(window_start * fps, _FRAME_PRECISION))
    end_frame = math.ceil(round(window_end * fps, _FRAME_PRECISION))
    if end_frame <= start_frame:
        end_frame = start_frame
        window_end = window_start

    return RecordWindow(
        start_frame=start_frame,
        end_frame=end_frame,
        start_time=window_start,
        end_time=window_end,
    )


def frame_time(frame: int, fps: int) -> float:
    return frame / fps


def scene_time_for_frame(
    frame: int,
    *,
    fps: int,
    play_speed: float,
    delay: float,
    end_time: float,
) -> float:
    """Time to seek the scene to so that it shows ``frame``.

    Frames past the window end are pinned to the last moment of the window.
    """
    wall_time = min(frame_time(frame, fps), end_time)
    return wall_time * play_speed - delay


def stride_assignments(window: RecordWindow, multi: int) -> List[RecordOptions]:
    """Split the window across ``multi`` workers by interleaved stride.

    Worker ``i`` of ``N`` gets ``start + i, start + i + N, ...``. Workers
    that would receive no frame are not assigned.
    """
    workers = max(1, multi)
    return [
        RecordOptions(
            worker_index=index,
            start_frame=window.start_frame,
            end_frame=window.end_frame,
            stride=workers,
        )
        for index in range(workers)
        if window.start_frame + index <= window.end_frame
    ]


__all__ = [
    "compute_record_window",
    "frame_time",
    "scene_time_for_frame",
    "stride_assignments",
    "total_play_time",
]
