"""Orchestrate a full render: page evaluation, capture, audio and encoding."""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Any, Callable, Optional

from scene_render.cache import FrameCache, build_fingerprint
from scene_render.config import RenderParameters
from scene_render.errors import ConfigurationError, TimingEvaluationError
from scene_render.logging_setup import DEFAULT_LOGGER_NAME
from scene_render.media import MERGED_AUDIO_FILENAME, build_fetch_file, get_media_info
from scene_render.models import AnimatorInfo, ChildOptions, EncodeOptions
from scene_render.page import BrowserSession, PageOptions, evaluate_animator, open_page
from scene_render.pool import WorkerPool
from scene_render.progress import Stopwatch
from scene_render.recording import Recorder, create_recorder

CreatedHook = Callable[[Recorder], None]
RecorderFactory = Callable[[RenderParameters, logging.Logger], Recorder]


def _default_recorder_factory(params: RenderParameters, logger: logging.Logger) -> Recorder:
    return create_recorder(params.ffmpeg_path, logger=logger, log_output=params.ffmpeg_log)


def write_output(path: Path | str, data: bytes) -> Path:
    """Write ``data`` atomically so a failed run never leaves a partial file."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    temp_path = target.with_name(f".tmp_{uuid.uuid4().hex}_{target.name}")
    temp_path.write_bytes(data)
    temp_path.replace(target)
    return target


async def render(
    params: RenderParameters,
    *,
    logger: Optional[logging.Logger] = None,
    created: Optional[CreatedHook] = None,
    session: Optional[BrowserSession] = None,
    recorder_factory: RecorderFactory = _default_recorder_factory,
) -> Recorder:
    """Render ``params.input_path`` into the files named by ``params.output_path``.

    ``session`` supplies browsers; a headless Chromium session is created
    when omitted. ``created`` receives the recorder before ``init()``.
    """
    logger = logger or logging.getLogger(DEFAULT_LOGGER_NAME)
    stopwatch = Stopwatch()
    logger.info("Start Render")

    recorder = recorder_factory(params, logger)
    if created is not None:
        created(recorder)

    own_session = session is None
    browser_session = session or BrowserSession(logger=logger)
    try:
        recorder.init()
        await browser_session.start()
        browser = await browser_session.launch()
        try:
            await _render_with_browser(params, recorder, browser_session, browser, logger)
        finally:
            await browser.close()
    finally:
        try:
            if own_session:
                await browser_session.close()
        finally:
            recorder.destroy()

    logger.info("End Render (Rendering Time: %.2fs)", stopwatch.elapsed())
    return recorder


async def _render_with_browser(
    params: RenderParameters,
    recorder: Recorder,
    session: BrowserSession,
    browser: Any,
    logger: logging.Logger,
) -> None:
    path = params.resolved_path
    page = await open_page(
        browser,
        PageOptions(
            name=params.name,
            media=params.media,
            width=params.width,
            height=params.height,
            path=path,
            scale=params.scale,
            referer=params.referer,
        ),
    )

    media_info = await get_media_info(page, params.media, logger=logger)
    has_media = media_info is not None
    has_audio_source = media_info is not None and bool(media_info.clips)
    has_only_media = False

    if not params.has_video and (params.audio_output is None or not has_audio_source):
        raise ConfigurationError("Add Audio Input")

    try:
        animator = await evaluate_animator(page, params.name, params.iteration)
    except TimingEvaluationError:
        if media_info is None:
            raise
        logger.info("Only Media Scene")
        has_only_media = True
        animator = AnimatorInfo.for_media(media_info.duration)

    recorder.set_animator(animator)
    window = recorder.get_record_info(
        fps=params.fps,
        start_time=params.start_time,
        iteration=params.iteration,
        duration=params.duration,
        multi=params.multi,
    )

    if has_audio_source:
        recorder.set_fetch_file(build_fetch_file())
        await recorder.record_media(media_info, base_url=path)

    if not params.has_video:
        logger.info("No Video")
        assert params.audio_output is not None
        write_output(params.audio_output, recorder.get_audio_file())
        logger.info("Audio File is created")
        return

    frame_cache = FrameCache(params.cache_dir, enabled=params.cache, logger=logger)
    fingerprint = build_fingerprint(params.input_path, window, params.fps, params.image_type)
    is_cache = frame_cache.prepare(fingerprint)

    if recorder.has_audio:
        write_output(params.cache_dir / MERGED_AUDIO_FILENAME, recorder.get_audio_file())

    child_options = ChildOptions(
        name=params.name,
        media=params.media,
        path=path,
        width=params.width,
        height=params.height,
        scale=params.scale,
        delay=animator.delay,
        play_speed=animator.play_speed,
        fps=params.fps,
        end_time=window.end_time,
        skip_frame=window.start_frame,
        cache_folder=params.cache_dir,
        image_type=params.image_type,
        alpha=params.alpha,
        buffer=params.buffer,
        has_media=has_media,
        has_only_media=has_only_media,
        referer=params.referer,
    )

    pool: Optional[WorkerPool] = None
    if is_cache:
        logger.info(
            "Use Cache (startTime: %s, endTime: %s, fps: %s, startFrame: %s, endFrame: %s)",
            window.start_time,
            window.end_time,
            params.fps,
            window.start_frame,
            window.end_frame,
        )
    else:
        logger.info(
            "Start Workers (startTime: %s, endTime: %s, fps: %s, startFrame: %s, endFrame: %s, workers: %s)",
            window.start_time,
            window.end_time,
            params.fps,
            window.start_frame,
            window.end_frame,
            params.multi,
        )
        pool = WorkerPool.create(page, session, child_options, params.multi, logger=logger)

    recorder.set_render_capturing(params.image_type, pool, is_cache, params.cache_dir)
    extension = params.extension or "mp4"
    data = await recorder.record(
        EncodeOptions(
            ext=extension,
            fps=params.fps,
            start_time=window.start_time,
            duration=window.duration,
            bitrate=params.bitrate,
            codec=params.codec,
            cpu_used=params.cpu_used,
            alpha=params.alpha,
        )
    )

    # record() only returns after capture_end resolved and encoding succeeded.
    assert recorder.capture_end is not None
    await recorder.capture_end

    for video_output in params.video_outputs:
        write_output(video_output, data)
        logger.info("Created Video: %s", video_output)
    if params.audio_output and recorder.has_audio:
        write_output(params.audio_output, recorder.get_audio_file())
        logger.info("Audio File is created")

    frame_cache.persist(fingerprint)
    frame_cache.finalize()


def render_sync(params: RenderParameters, **kwargs: Any) -> Recorder:
    """Blocking wrapper around `render`."""
    return asyncio.run(render(params, **kwargs))


__all__ = ["render", "render_sync", "write_output"]
