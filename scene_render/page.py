"""Browser and page helpers used to drive the rendered scene."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from playwright.async_api import Browser, Error as PlaywrightError, Page, Playwright, async_playwright

from scene_render.errors import TimingEvaluationError
from scene_render.models import AnimatorInfo

BROWSER_ARGS = ("--no-sandbox", "--disable-setuid-sandbox")


@dataclass(frozen=True)
class PageOptions:
    """What `open_page` needs to load a scene at the requested resolution."""

    name: str
    media: str
    width: int
    height: int
    path: str
    scale: float = 1.0
    referer: Optional[str] = None


class BrowserSession:
    """Own the Playwright driver and launch Chromium instances on demand."""

    def __init__(self, *, headless: bool = True, logger: Optional[logging.Logger] = None) -> None:
        self.headless = headless
        self.logger = logger or logging.getLogger(__name__)
        self._playwright: Optional[Playwright] = None

    async def __aenter__(self) -> "BrowserSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def start(self) -> None:
        if self._playwright is None:
            self._playwright = await async_playwright().start()

    async def launch(self) -> Browser:
        if self._playwright is None:
            raise RuntimeError("BrowserSession.start() must be awaited before launch()")
        self.logger.debug("Launching Chromium (headless=%s)", self.headless)
        return await self._playwright.chromium.launch(
            headless=self.headless,
            args=list(BROWSER_ARGS),
        )

    async def close(self) -> None:
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


async def open_page(browser: Browser, options: PageOptions) -> Page:
    """Open the scene page with a viewport that screenshots at width x height."""
    context_kwargs: Dict[str, Any] = {
        "viewport": {
            "width": max(1, round(options.width / options.scale)),
            "height": max(1, round(options.height / options.scale)),
        },
        "device_scale_factor": options.scale,
    }
    if options.referer:
        context_kwargs["extra_http_headers"] = {"referer": options.referer}

    context = await browser.new_context(**context_kwargs)
    page = await context.new_page()
    await page.goto(options.path, wait_until="networkidle")
    return page


async def evaluate_animator(page: Any, name: str, iteration: int = 0) -> AnimatorInfo:
    """Read delay, duration, iteration count and play speed from the scene."""
    try:
        iteration_count = iteration or await page.evaluate(f"{name}.getIterationCount()")
        delay = await page.evaluate(f"{name}.getDelay()")
        play_speed = await page.evaluate(f"{name}.getPlaySpeed()")
        duration = await page.evaluate(f"{name}.getDuration()")
    except PlaywrightError as exc:
        raise TimingEvaluationError(f"Scene '{name}' did not report a timeline: {exc}") from exc

    if not isinstance(iteration_count, str):
        iteration_count = float(iteration_count or 1)
    return AnimatorInfo(
        delay=float(delay or 0),
        duration=float(duration or 0),
        iteration_count=iteration_count,
        play_speed=float(play_speed or 1),
    )


__all__ = ["BrowserSession", "PageOptions", "evaluate_animator", "open_page"]
