"""
Command line interface for rendering a browser scene to video or audio.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv

from .config import load_parameters
from .errors import RenderError
from .logging_setup import configure_logging
from .render import render_sync


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scene-render",
        description="Capture a time-based scene from a web page and encode it to video.",
    )
    parser.add_argument("--config", type=Path, help="JSON file with render options.")
    parser.add_argument("-i", "--input", help="Page path or URL (default: ./index.html).")
    parser.add_argument(
        "-o",
        "--output",
        help="Comma separated outputs; .mp4/.webm encode video, .mp3 writes audio (default: output.mp4).",
    )
    parser.add_argument("-n", "--name", help="Global name of the scene object (default: scene).")
    parser.add_argument("-m", "--media", help="Global name of the media scene (default: mediaScene).")
    parser.add_argument("-r", "--fps", type=int, help="Frames per second (default: 60).")
    parser.add_argument("--width", type=int, help="Video width in pixels (default: 1920).")
    parser.add_argument("--height", type=int, help="Video height in pixels (default: 1080).")
    parser.add_argument("--start-time", dest="start_time", type=float, help="Start time in seconds.")
    parser.add_argument("--duration", type=float, help="Seconds to record (default: whole scene).")
    parser.add_argument("--iteration", type=int, help="Iteration count to record.")
    parser.add_argument("--scale", type=float, help="Device scale factor (default: 1).")
    parser.add_argument("--multi", type=int, help="Number of parallel capture workers (default: 1).")
    parser.add_argument("-b", "--bitrate", help="Video bitrate (default: 4096k).")
    parser.add_argument("--codec", help="Video codec (default: libx264 for mp4, libvpx-vp9 for webm).")
    parser.add_argument("--referer", help="Referer header sent when loading the page.")
    parser.add_argument("--image-type", dest="image_type", choices=("png", "jpeg", "jpg"))
    parser.add_argument("--alpha", action="store_true", default=None, help="Keep page transparency.")
    parser.add_argument("--cache", action="store_true", default=None, help="Reuse frames of an identical previous run.")
    parser.add_argument("--cache-folder", dest="cache_folder", help="Frame cache directory (default: .scene_cache).")
    parser.add_argument("--buffer", action="store_true", default=None, help="Capture screenshots into memory first.")
    parser.add_argument("--ffmpeg-path", dest="ffmpeg_path", help="Use this ffmpeg binary instead of the embedded encoder.")
    parser.add_argument("--ffmpeg-log", dest="ffmpeg_log", action="store_true", default=None, help="Log encoder output.")
    parser.add_argument("--cpu-used", dest="cpu_used", type=int, help="VP8/VP9 -cpu-used value (default: 1).")
    parser.add_argument("--no-log", dest="no_log", action="store_true", default=None, help="Only log warnings and errors.")
    parser.add_argument("--log-file", dest="log_file", help="Also write the log to this file.")
    parser.add_argument("-v", "--verbose", action="store_true", default=None, help="Enable debug logging.")
    return parser


def _overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    values = vars(args).copy()
    values.pop("config", None)
    return {key: value for key, value in values.items() if value is not None}


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        params = load_parameters(args.config, _overrides_from_args(args))
    except (OSError, ValueError) as exc:
        parser.error(str(exc))

    logger = configure_logging(
        verbose=params.verbose,
        enabled=not params.no_log,
        log_file=params.log_file,
    )
    logger.debug("Resolved render parameters: %s", params)

    try:
        render_sync(params, logger=logger)
    except RenderError as exc:
        logger.error("Render failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
