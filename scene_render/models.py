"""Data models used across the scene render pipeline."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Tuple, Union

IterationCount = Union[float, str]

FRAME_FILE_PATTERN = re.compile(r"^frame_(\d+)\.(png|jpeg)$")


def frame_filename(relative_index: int, image_type: str) -> str:
    return f"frame_{relative_index:06d}.{image_type}"


@dataclass(frozen=True)
class AnimatorInfo:
    """Timeline metadata reported by the rendered scene."""

    delay: float
    duration: float
    iteration_count: IterationCount
    play_speed: float

    @property
    def effective_iteration_count(self) -> float:
        """Iteration count usable in arithmetic; ``infinite`` renders once."""
        if isinstance(self.iteration_count, str):
            return 1.0
        return float(self.iteration_count) if self.iteration_count > 0 else 1.0

    @classmethod
    def for_media(cls, duration: float) -> "AnimatorInfo":
        """Synthesize a single-pass timeline for media-only scenes."""
        return cls(delay=0.0, duration=duration, iteration_count=1, play_speed=1.0)


@dataclass(frozen=True)
class RecordWindow:
    """Inclusive frame range and the matching wall-clock bounds."""

    start_frame: int
    end_frame: int
    start_time: float
    end_time: float

    @property
    def frame_count(self) -> int:
        return self.end_frame - self.start_frame + 1

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def frames(self) -> range:
        return range(self.start_frame, self.end_frame + 1)


@dataclass(frozen=True)
class MediaClip:
    """One audio/video source inside a media scene."""

    url: str
    seek: Tuple[float, float]
    play_speed: float = 1.0
    volume: float = 1.0
    delay: float = 0.0


@dataclass(frozen=True)
class MediaInfo:
    """Finalized timing information of a media scene."""

    duration: float
    clips: Tuple[MediaClip, ...]


@dataclass(frozen=True)
class ChildOptions:
    """Configuration shared by every capture worker of a run."""

    name: str
    media: str
    path: str
    width: int
    height: int
    scale: float
    delay: float
    play_speed: float
    fps: int
    end_time: float
    skip_frame: int
    cache_folder: Path
    image_type: str = "png"
    alpha: bool = False
    buffer: bool = False
    has_media: bool = False
    has_only_media: bool = False
    referer: Optional[str] = None

    @property
    def target(self) -> str:
        """Name of the page object whose time is driven during capture."""
        return self.media if self.has_only_media else self.name

    def frame_path(self, frame: int) -> Path:
        return self.cache_folder / frame_filename(frame - self.skip_frame, self.image_type)


@dataclass(frozen=True)
class RecordOptions:
    """Stride assignment for a single worker."""

    worker_index: int
    start_frame: int
    end_frame: int
    stride: int

    def frames(self) -> range:
        return range(self.start_frame + self.worker_index, self.end_frame + 1, self.stride)


@dataclass(frozen=True)
class CapturedFrameSet:
    """Frame images available in the cache folder, in ascending frame order."""

    folder: Path
    image_type: str
    indices: Tuple[int, ...]

    @classmethod
    def scan(cls, folder: Path, image_type: str) -> "CapturedFrameSet":
        indices = []
        if folder.exists():
            for entry in folder.iterdir():
                match = FRAME_FILE_PATTERN.match(entry.name)
                if match and match.group(2) == image_type:
                    indices.append(int(match.group(1)))
        return cls(folder=folder, image_type=image_type, indices=tuple(sorted(indices)))

    def __len__(self) -> int:
        return len(self.indices)

    def paths(self) -> Iterator[Path]:
        for index in self.indices:
            yield self.folder / frame_filename(index, self.image_type)

    def missing(self, frame_count: int) -> Tuple[int, ...]:
        present = set(self.indices)
        return tuple(index for index in range(frame_count) if index not in present)


@dataclass(frozen=True)
class EncodeOptions:
    """Parameters handed to the encoder for the final container."""

    ext: str
    fps: int
    start_time: float
    duration: float
    bitrate: str = "4096k"
    codec: Optional[str] = None
    cpu_used: int = 1
    alpha: bool = False


__all__ = [
    "AnimatorInfo",
    "CapturedFrameSet",
    "ChildOptions",
    "EncodeOptions",
    "IterationCount",
    "MediaClip",
    "MediaInfo",
    "RecordOptions",
    "RecordWindow",
    "frame_filename",
]
