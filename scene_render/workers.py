"""Capture workers: each one drives a page and screenshots its share of frames."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional

from scene_render.errors import CaptureError
from scene_render.models import ChildOptions, RecordOptions
from scene_render.page import BrowserSession, PageOptions, open_page
from scene_render.progress import CaptureProgress
from scene_render.timing import scene_time_for_frame


class WorkerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    STARTED = "started"
    RECORDING = "recording"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


async def record_frames(
    page: Any,
    options: ChildOptions,
    record_options: RecordOptions,
    *,
    logger: logging.Logger,
) -> List[int]:
    """Seek the scene to every assigned frame and write a screenshot per frame.

    Files are named by frame index, so concurrent workers never write the
    same path.
    """
    frames = record_options.frames()
    progress = CaptureProgress(record_options.worker_index, len(frames), logger=logger)
    screenshot_kwargs: Dict[str, Any] = {"type": options.image_type}
    if options.image_type == "png":
        screenshot_kwargs["omit_background"] = options.alpha

    captured: List[int] = []
    for frame in frames:
        time = scene_time_for_frame(
            frame,
            fps=options.fps,
            play_speed=options.play_speed,
            delay=options.delay,
            end_time=options.end_time,
        )
        await page.evaluate(f"{options.target}.setTime({time!r}, true)")

        target_path = options.frame_path(frame)
        if options.buffer:
            data = await page.screenshot(**screenshot_kwargs)
            target_path.write_bytes(data)
        else:
            await page.screenshot(path=str(target_path), **screenshot_kwargs)

        captured.append(frame)
        progress.advance()
    return captured


class CaptureWorker(ABC):
    """One parallel capture stream with a start/record/disconnect lifecycle."""

    def __init__(self, worker_index: int, *, logger: logging.Logger) -> None:
        self.worker_index = worker_index
        self.logger = logger
        self.state = WorkerState.UNINITIALIZED
        self.options: Optional[ChildOptions] = None

    async def start(self, options: ChildOptions) -> None:
        self.options = options
        self.logger.info("Start Worker %s", self.worker_index)
        try:
            await self._open()
        except Exception as exc:
            self.state = WorkerState.FAILED
            raise CaptureError(
                f"Worker {self.worker_index} failed to start: {exc}",
                worker_index=self.worker_index,
            ) from exc
        self.state = WorkerState.STARTED

    async def record(self, record_options: RecordOptions) -> List[int]:
        if self.options is None or self.state is not WorkerState.STARTED:
            raise CaptureError(
                f"Worker {self.worker_index} cannot record in state {self.state.value}",
                worker_index=self.worker_index,
            )
        self.state = WorkerState.RECORDING
        try:
            captured = await record_frames(
                self._page(),
                self.options,
                record_options,
                logger=self.logger,
            )
        except Exception as exc:
            self.state = WorkerState.FAILED
            raise CaptureError(
                f"Worker {self.worker_index} failed to capture frames: {exc}",
                worker_index=self.worker_index,
            ) from exc
        self.state = WorkerState.STARTED
        return captured

    async def disconnect(self) -> None:
        if self.state is WorkerState.DISCONNECTED:
            return
        try:
            await self._close()
        finally:
            self.state = WorkerState.DISCONNECTED

    @abstractmethod
    async def _open(self) -> None:
        """Acquire the page this worker captures from."""

    @abstractmethod
    def _page(self) -> Any:
        """Return the page opened by `_open`."""

    @abstractmethod
    async def _close(self) -> None:
        """Release everything `_open` acquired."""


class PageCaptureWorker(CaptureWorker):
    """Worker 0: captures from the page the caller already opened."""

    def __init__(self, page: Any, *, logger: logging.Logger, worker_index: int = 0) -> None:
        super().__init__(worker_index, logger=logger)
        self.page = page

    async def _open(self) -> None:
        return None

    def _page(self) -> Any:
        return self.page

    async def _close(self) -> None:
        # The caller owns the page and its browser.
        return None


class BrowserCaptureWorker(CaptureWorker):
    """Worker with its own Chromium instance and page."""

    def __init__(
        self,
        worker_index: int,
        session: BrowserSession,
        *,
        logger: logging.Logger,
    ) -> None:
        super().__init__(worker_index, logger=logger)
        self.session = session
        self.browser: Any = None
        self.page: Any = None

    async def _open(self) -> None:
        assert self.options is not None
        self.browser = await self.session.launch()
        self.page = await open_page(
            self.browser,
            PageOptions(
                name=self.options.name,
                media=self.options.media,
                width=self.options.width,
                height=self.options.height,
                path=self.options.path,
                scale=self.options.scale,
                referer=self.options.referer,
            ),
        )

    def _page(self) -> Any:
        return self.page

    async def _close(self) -> None:
        browser, self.browser, self.page = self.browser, None, None
        if browser is not None:
            await browser.close()


__all__ = [
    "BrowserCaptureWorker",
    "CaptureWorker",
    "PageCaptureWorker",
    "WorkerState",
    "record_frames",
]
