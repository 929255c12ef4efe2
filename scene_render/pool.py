"""Fan-out/fan-in coordination of capture workers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Sequence

from scene_render.errors import CaptureError
from scene_render.models import CapturedFrameSet, ChildOptions, RecordWindow
from scene_render.page import BrowserSession
from scene_render.timing import stride_assignments
from scene_render.workers import BrowserCaptureWorker, CaptureWorker, PageCaptureWorker


def _first_error(results: Sequence[Any]) -> BaseException | None:
    for result in results:
        if isinstance(result, BaseException):
            return result
    return None


class WorkerPool:
    """Start, drive and tear down every capture worker of a run.

    The pool is the only owner of its workers: nothing else starts or
    disconnects them.
    """

    def __init__(
        self,
        workers: Sequence[CaptureWorker],
        options: ChildOptions,
        *,
        logger: logging.Logger,
    ) -> None:
        if not workers:
            raise ValueError("WorkerPool needs at least one worker")
        self.workers: List[CaptureWorker] = list(workers)
        self.options = options
        self.logger = logger

    @classmethod
    def create(
        cls,
        primary_page: Any,
        session: BrowserSession,
        options: ChildOptions,
        multi: int,
        *,
        logger: logging.Logger,
    ) -> "WorkerPool":
        """Worker 0 reuses ``primary_page``; workers 1..multi-1 launch their own browser."""
        workers: List[CaptureWorker] = [PageCaptureWorker(primary_page, logger=logger)]
        for index in range(1, max(1, multi)):
            workers.append(BrowserCaptureWorker(index, session, logger=logger))
        return cls(workers, options, logger=logger)

    def __len__(self) -> int:
        return len(self.workers)

    async def start(self) -> None:
        results = await asyncio.gather(
            *(worker.start(self.options) for worker in self.workers),
            return_exceptions=True,
        )
        error = _first_error(results)
        if error is not None:
            raise error

    async def record(self, window: RecordWindow) -> CapturedFrameSet:
        assignments = stride_assignments(window, len(self.workers))
        results = await asyncio.gather(
            *(
                self.workers[assignment.worker_index].record(assignment)
                for assignment in assignments
            ),
            return_exceptions=True,
        )
        error = _first_error(results)
        if error is not None:
            raise error

        captured = sorted(frame for frames in results for frame in frames)
        if captured != list(window.frames()):
            raise CaptureError(
                f"Workers captured {len(captured)} frames, expected {window.frame_count} "
                f"covering {window.start_frame}..{window.end_frame}"
            )

        return CapturedFrameSet(
            folder=self.options.cache_folder,
            image_type=self.options.image_type,
            indices=tuple(frame - self.options.skip_frame for frame in captured),
        )

    async def disconnect(self) -> List[BaseException]:
        """Disconnect every worker once, returning the failures instead of stopping early."""
        results = await asyncio.gather(
            *(worker.disconnect() for worker in self.workers),
            return_exceptions=True,
        )
        failures: List[BaseException] = []
        for worker, result in zip(self.workers, results):
            if isinstance(result, BaseException):
                self.logger.error("Failed to disconnect worker %s: %s", worker.worker_index, result)
                failures.append(result)
        return failures

    async def run(self, window: RecordWindow) -> CapturedFrameSet:
        """Start all workers, capture the window, and always disconnect."""
        try:
            await self.start()
            frames = await self.record(window)
        except BaseException:
            await self.disconnect()
            raise

        failures = await self.disconnect()
        if failures:
            raise failures[0]
        return frames


__all__ = ["WorkerPool"]
