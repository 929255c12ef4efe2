"""Media scene discovery, payload fetching and audio merging."""

from __future__ import annotations

import asyncio
import logging
import subprocess
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urljoin, urlparse
from urllib.request import url2pathname

import requests
from playwright.async_api import Error as PlaywrightError

from scene_render.errors import MediaResolutionError
from scene_render.models import MediaClip, MediaInfo

LOGGER = logging.getLogger(__name__)

FetchFile = Callable[[str], Awaitable[bytes]]

MERGED_AUDIO_FILENAME = "merge.mp3"


def is_local_file(url: str) -> bool:
    return not url.startswith(("http://", "https://"))


def local_file_path(url: str) -> Path:
    if url.startswith("file:"):
        return Path(url2pathname(urlparse(url).path))
    return Path(url)


def resolve_media_url(url: str, base: Optional[str]) -> str:
    """Resolve ``url`` relative to the rendered page when it is not absolute."""
    if not base or urlparse(url).scheme:
        return url
    return urljoin(base, url)


def _parse_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_media_info(raw: Any) -> Optional[MediaInfo]:
    """Convert the page's ``getInfo()`` payload; anything malformed means no media."""
    if not isinstance(raw, Mapping):
        return None

    clips: List[MediaClip] = []
    for entry in raw.get("medias") or []:
        if not isinstance(entry, Mapping) or not entry.get("url"):
            continue
        seek = entry.get("seek") or (0, 0)
        try:
            seek_start, seek_end = (float(seek[0]), float(seek[1]))
        except (TypeError, ValueError, IndexError):
            seek_start, seek_end = 0.0, 0.0
        clips.append(
            MediaClip(
                url=str(entry["url"]),
                seek=(seek_start, seek_end),
                play_speed=_parse_float(entry.get("playSpeed"), 1.0) or 1.0,
                volume=_parse_float(entry.get("volume"), 1.0),
                delay=_parse_float(entry.get("delay"), 0.0),
            )
        )

    return MediaInfo(duration=_parse_float(raw.get("duration"), 0.0), clips=tuple(clips))


async def get_media_info(
    page: Any,
    media: str,
    *,
    logger: logging.Logger = LOGGER,
) -> Optional[MediaInfo]:
    """Return the media scene's timing, or None when the page has no such element."""
    if not media:
        return None
    try:
        raw = await page.evaluate(f"{media}.finish().getInfo()")
    except PlaywrightError as exc:
        logger.debug("No media scene '%s' on page: %s", media, exc)
        return None
    return parse_media_info(raw)


def _fetch_remote(url: str, timeout: int) -> bytes:
    response = requests.get(url, timeout=timeout)
    response.raise_for_status()
    return response.content


def build_fetch_file(*, http_timeout: int = 30) -> FetchFile:
    """Local paths and file URLs are read from disk; everything else over HTTP."""

    async def fetch_file(url: str) -> bytes:
        if is_local_file(url):
            return local_file_path(url).read_bytes()
        return await asyncio.to_thread(_fetch_remote, url, http_timeout)

    return fetch_file


def _atempo_chain(speed: float) -> List[str]:
    # atempo accepts 0.5..100 per instance.
    filters: List[str] = []
    remaining = speed if speed > 0 else 1.0
    while remaining < 0.5:
        filters.append("atempo=0.5")
        remaining /= 0.5
    while remaining > 100.0:
        filters.append("atempo=100")
        remaining /= 100.0
    if remaining != 1.0 or not filters:
        filters.append(f"atempo={remaining:g}")
    return filters


def build_filter_graph(clips: Sequence[MediaClip]) -> str:
    """Build an ffmpeg filter graph that trims, retimes, delays and mixes clips into [out]."""
    chains: List[str] = []
    for index, clip in enumerate(clips):
        seek_start, seek_end = clip.seek
        steps: List[str] = []
        if seek_end > seek_start:
            steps.append(f"atrim=start={seek_start:g}:end={seek_end:g}")
        elif seek_start > 0:
            steps.append(f"atrim=start={seek_start:g}")
        steps.append("asetpts=PTS-STARTPTS")
        steps.extend(_atempo_chain(clip.play_speed))
        delay_ms = int(round(max(0.0, clip.delay) * 1000))
        if delay_ms:
            steps.append(f"adelay={delay_ms}|{delay_ms}")
        steps.append(f"volume={clip.volume:g}")
        chains.append(f"[{index}:a]{','.join(steps)}[a{index}]")

    count = len(clips)
    labels = "".join(f"[a{index}]" for index in range(count))
    if count == 1:
        chains.append("[a0]anull[out]")
    else:
        # amix divides by the input count; scale back to unity.
        chains.append(
            f"{labels}amix=inputs={count}:duration=longest:dropout_transition=0,volume={count}[out]"
        )
    return ";".join(chains)


class AudioMerger:
    """Run ffmpeg to merge media clips and to cut audio to the record window."""

    def __init__(
        self,
        ffmpeg_exe: str,
        workdir: Path,
        *,
        logger: logging.Logger,
        log_output: bool = False,
    ) -> None:
        self.ffmpeg_exe = ffmpeg_exe
        self.workdir = Path(workdir)
        self.logger = logger
        self.log_output = log_output

    def _run(self, cmd: List[str]) -> None:
        result = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, check=False)
        if self.log_output and result.stderr:
            self.logger.debug("ffmpeg: %s", result.stderr.decode("utf-8", errors="replace"))
        if result.returncode != 0:
            raise MediaResolutionError(
                f"ffmpeg audio step failed with exit code {result.returncode}: "
                f"{result.stderr.decode('utf-8', errors='replace')[-500:]}"
            )

    def merge(self, inputs: Sequence[Tuple[MediaClip, bytes]], duration: float) -> bytes:
        """Write each payload to the work dir and mix them into one mp3 track."""
        if not inputs:
            raise MediaResolutionError("Media scene has no playable clips")

        self.workdir.mkdir(parents=True, exist_ok=True)
        cmd: List[str] = [self.ffmpeg_exe, "-y", "-loglevel", "error"]
        for index, (_, payload) in enumerate(inputs):
            source = self.workdir / f"media{index}"
            source.write_bytes(payload)
            cmd.extend(["-i", str(source)])

        output = self.workdir / MERGED_AUDIO_FILENAME
        cmd.extend(["-filter_complex", build_filter_graph([clip for clip, _ in inputs])])
        cmd.extend(["-map", "[out]"])
        if duration > 0:
            cmd.extend(["-t", f"{duration:g}"])
        cmd.extend(["-c:a", "libmp3lame", str(output)])

        self.logger.debug("Merging %s media clip(s) into %s", len(inputs), output)
        self._run(cmd)
        return output.read_bytes()

    def trim(self, source: Path, start_time: float, duration: float, target: Path) -> Path:
        """Cut ``source`` down to [start_time, start_time + duration]."""
        cmd = [self.ffmpeg_exe, "-y", "-loglevel", "error"]
        if start_time > 0:
            cmd.extend(["-ss", f"{start_time:g}"])
        cmd.extend(["-i", str(source)])
        if duration > 0:
            cmd.extend(["-t", f"{duration:g}"])
        cmd.extend(["-c:a", "libmp3lame", str(target)])
        self._run(cmd)
        return target


__all__ = [
    "AudioMerger",
    "FetchFile",
    "MERGED_AUDIO_FILENAME",
    "build_fetch_file",
    "build_filter_graph",
    "get_media_info",
    "is_local_file",
    "parse_media_info",
    "resolve_media_url",
]
