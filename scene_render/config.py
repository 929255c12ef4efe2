"""Render parameter dataclass and loading helpers for the scene render pipeline."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

VIDEO_EXTENSIONS = (".mp4", ".webm")
AUDIO_EXTENSIONS = (".mp3",)
IMAGE_TYPES = {"png": "png", "jpeg": "jpeg", "jpg": "jpeg"}

ENV_FFMPEG_PATH = "SCENE_RENDER_FFMPEG_PATH"
ENV_CACHE_FOLDER = "SCENE_RENDER_CACHE_FOLDER"

# Option names accepted in config files next to the dataclass field names.
_ALIASES = {
    "input": "input_path",
    "output": "output_path",
    "startTime": "start_time",
    "imageType": "image_type",
    "cacheFolder": "cache_folder",
    "ffmpegPath": "ffmpeg_path",
    "ffmpegLog": "ffmpeg_log",
    "cpuUsed": "cpu_used",
    "noLog": "no_log",
    "logFile": "log_file",
}


def _parse_bool(value: Any, default: bool) -> bool:
    """Parse truthy/falsy values from multiple input types."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(value, (int, float)):
        return value != 0
    return default


def _parse_positive_int(value: Any, default: int) -> int:
    """Parse a positive integer with fallback to default."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def _parse_positive_float(value: Any, default: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def _parse_non_negative_float(value: Any, default: float) -> float:
    """Parse a float that must be >= 0, falling back to default."""
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= 0 else default


def _parse_optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_image_type(value: Any, default: str = "png") -> str:
    if not isinstance(value, str):
        return default
    return IMAGE_TYPES.get(value.strip().lower(), default)


@dataclass(frozen=True)
class RenderParameters:
    """Immutable description of a single render run."""

    name: str = "scene"
    media: str = "mediaScene"
    fps: int = 60
    width: int = 1920
    height: int = 1080
    input_path: str = "./index.html"
    output_path: str = "output.mp4"
    start_time: float = 0.0
    duration: float = 0.0
    iteration: int = 0
    scale: float = 1.0
    multi: int = 1
    bitrate: str = "4096k"
    codec: Optional[str] = None
    referer: Optional[str] = None
    image_type: str = "png"
    alpha: bool = False
    cache: bool = False
    cache_folder: str = ".scene_cache"
    buffer: bool = False
    ffmpeg_path: Optional[str] = None
    ffmpeg_log: bool = False
    cpu_used: int = 1
    no_log: bool = False
    verbose: bool = False
    log_file: Optional[str] = None

    @property
    def outputs(self) -> Tuple[str, ...]:
        return tuple(
            entry.strip()
            for entry in self.output_path.split(",")
            if entry.strip()
        )

    @property
    def video_outputs(self) -> Tuple[str, ...]:
        return tuple(
            entry for entry in self.outputs if entry.lower().endswith(VIDEO_EXTENSIONS)
        )

    @property
    def audio_output(self) -> Optional[str]:
        for entry in self.outputs:
            if entry.lower().endswith(AUDIO_EXTENSIONS):
                return entry
        return None

    @property
    def has_video(self) -> bool:
        return bool(self.video_outputs)

    @property
    def extension(self) -> Optional[str]:
        """Container extension of the first video output, without the dot."""
        if not self.video_outputs:
            return None
        return Path(self.video_outputs[0]).suffix.lstrip(".").lower()

    @property
    def is_remote_input(self) -> bool:
        return self.input_path.startswith(("http://", "https://"))

    @property
    def resolved_path(self) -> str:
        """URL the browser should navigate to."""
        if self.is_remote_input or self.input_path.startswith("file://"):
            return self.input_path
        return (Path.cwd() / self.input_path).resolve().as_uri()

    @property
    def cache_dir(self) -> Path:
        return Path(self.cache_folder)


def parse_parameters(raw: Mapping[str, Any]) -> RenderParameters:
    """Build parameters from a loosely typed mapping (config file or CLI)."""
    data: Dict[str, Any] = {}
    for key, value in raw.items():
        if value is None:
            continue
        data[_ALIASES.get(key, key)] = value

    default = RenderParameters()
    known = {item.name for item in fields(RenderParameters)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown render options: {', '.join(unknown)}")

    return RenderParameters(
        name=str(data.get("name", default.name)).strip() or default.name,
        media=str(data.get("media", default.media)).strip(),
        fps=_parse_positive_int(data.get("fps"), default.fps),
        width=_parse_positive_int(data.get("width"), default.width),
        height=_parse_positive_int(data.get("height"), default.height),
        input_path=str(data.get("input_path", default.input_path)).strip() or default.input_path,
        output_path=str(data.get("output_path", default.output_path)).strip() or default.output_path,
        start_time=_parse_non_negative_float(data.get("start_time"), default.start_time),
        duration=_parse_non_negative_float(data.get("duration"), default.duration),
        iteration=max(0, int(_parse_non_negative_float(data.get("iteration"), 0))),
        scale=_parse_positive_float(data.get("scale"), default.scale),
        multi=_parse_positive_int(data.get("multi"), default.multi),
        bitrate=str(data.get("bitrate", default.bitrate)).strip() or default.bitrate,
        codec=_parse_optional_str(data.get("codec")),
        referer=_parse_optional_str(data.get("referer")),
        image_type=_parse_image_type(data.get("image_type"), default.image_type),
        alpha=_parse_bool(data.get("alpha"), default.alpha),
        cache=_parse_bool(data.get("cache"), default.cache),
        cache_folder=str(data.get("cache_folder", default.cache_folder)).strip() or default.cache_folder,
        buffer=_parse_bool(data.get("buffer"), default.buffer),
        ffmpeg_path=_parse_optional_str(data.get("ffmpeg_path")),
        ffmpeg_log=_parse_bool(data.get("ffmpeg_log"), default.ffmpeg_log),
        cpu_used=_parse_positive_int(data.get("cpu_used"), default.cpu_used),
        no_log=_parse_bool(data.get("no_log"), default.no_log),
        verbose=_parse_bool(data.get("verbose"), default.verbose),
        log_file=_parse_optional_str(data.get("log_file")),
    )


def _env_options(env: Mapping[str, str]) -> Dict[str, Any]:
    options: Dict[str, Any] = {}
    if env.get(ENV_FFMPEG_PATH):
        options["ffmpeg_path"] = env[ENV_FFMPEG_PATH]
    if env.get(ENV_CACHE_FOLDER):
        options["cache_folder"] = env[ENV_CACHE_FOLDER]
    return options


def load_parameters(
    config_path: Path | str | None = None,
    overrides: Mapping[str, Any] | None = None,
    env: Mapping[str, str] | None = None,
) -> RenderParameters:
    """Merge environment, JSON config file and explicit overrides, in that order."""
    source_env = env if env is not None else os.environ
    merged: Dict[str, Any] = _env_options(source_env)

    if config_path is not None:
        path = Path(config_path)
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        if not isinstance(data, Mapping):
            raise ValueError(f"Render config {path} must contain a JSON object")
        merged.update(data)

    if overrides:
        merged.update({key: value for key, value in overrides.items() if value is not None})

    return parse_parameters(merged)


def with_overrides(params: RenderParameters, **changes: Any) -> RenderParameters:
    """Return a copy of ``params`` with the given fields replaced."""
    return replace(params, **changes)


__all__ = [
    "AUDIO_EXTENSIONS",
    "ENV_CACHE_FOLDER",
    "ENV_FFMPEG_PATH",
    "RenderParameters",
    "VIDEO_EXTENSIONS",
    "load_parameters",
    "parse_parameters",
    "with_overrides",
]
