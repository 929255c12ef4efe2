"""Frame cache keyed by a fingerprint of the capture parameters."""

from __future__ import annotations

import json
import logging
import shutil
import uuid
from pathlib import Path

from scene_render.models import RecordWindow

FINGERPRINT_FILENAME = "cache.txt"


def build_fingerprint(
    input_path: str,
    window: RecordWindow,
    fps: int,
    image_type: str,
) -> str:
    """Serialize the parameters that determine captured frames.

    The key order is fixed so identical runs produce identical strings.
    """
    return json.dumps(
        {
            "input_path": input_path,
            "start_time": window.start_time,
            "end_time": window.end_time,
            "fps": fps,
            "start_frame": window.start_frame,
            "end_frame": window.end_frame,
            "image_type": image_type,
        },
        separators=(",", ":"),
    )


class FrameCache:
    """Decide whether frames from the previous run can be reused."""

    def __init__(self, folder: Path, *, enabled: bool, logger: logging.Logger) -> None:
        self.folder = Path(folder)
        self.enabled = enabled
        self.logger = logger

    @property
    def fingerprint_path(self) -> Path:
        return self.folder / FINGERPRINT_FILENAME

    def read_fingerprint(self) -> str | None:
        try:
            return self.fingerprint_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            self.logger.debug("No usable cache fingerprint at %s: %s", self.fingerprint_path, exc)
            return None

    def should_use_cache(self, fingerprint: str) -> bool:
        if not self.enabled:
            return False
        return self.read_fingerprint() == fingerprint

    def prepare(self, fingerprint: str) -> bool:
        """Return True on a cache hit; otherwise wipe the folder and recreate it empty."""
        hit = self.should_use_cache(fingerprint)
        if not hit:
            self.wipe()
        self.folder.mkdir(parents=True, exist_ok=True)
        return hit

    def wipe(self) -> None:
        if self.folder.exists():
            shutil.rmtree(self.folder)

    def persist(self, fingerprint: str) -> None:
        """Record the fingerprint of a fully captured and encoded run."""
        if not self.enabled:
            return
        self.folder.mkdir(parents=True, exist_ok=True)
        temp_path = self.folder / f".tmp_{uuid.uuid4().hex}_{FINGERPRINT_FILENAME}"
        temp_path.write_text(fingerprint, encoding="utf-8")
        temp_path.replace(self.fingerprint_path)

    def finalize(self) -> None:
        """Drop the folder after a run that did not ask for caching."""
        if not self.enabled:
            self.wipe()


__all__ = ["FINGERPRINT_FILENAME", "FrameCache", "build_fingerprint"]
