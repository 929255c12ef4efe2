"""Exception hierarchy for the scene render pipeline."""

from __future__ import annotations

from typing import Optional, Sequence


class RenderError(RuntimeError):
    """Base class for fatal render failures."""


class ConfigurationError(RenderError):
    """Raised when the requested outputs cannot be produced from the inputs."""


class TimingEvaluationError(RenderError):
    """Raised when the page reports no timeline and no media fallback exists."""


class MediaResolutionError(RenderError):
    """Raised when a media payload cannot be fetched or merged."""


class CaptureError(RenderError):
    """Raised when a capture worker fails to start or record its frames."""

    def __init__(self, message: str, *, worker_index: Optional[int] = None) -> None:
        super().__init__(message)
        self.worker_index = worker_index


class EncoderError(RenderError):
    """Raised when the encoder exits unsuccessfully."""

    def __init__(
        self,
        message: str,
        *,
        returncode: Optional[int] = None,
        cmd: Optional[Sequence[str]] = None,
        stderr: bytes = b"",
    ) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.cmd = list(cmd) if cmd is not None else None
        self.stderr = stderr


__all__ = [
    "CaptureError",
    "ConfigurationError",
    "EncoderError",
    "MediaResolutionError",
    "RenderError",
    "TimingEvaluationError",
]
