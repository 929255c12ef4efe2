"""
Render time-based browser scenes into video and audio files.
"""

from .cache import FrameCache, build_fingerprint
from .config import RenderParameters, load_parameters
from .errors import (
    CaptureError,
    ConfigurationError,
    EncoderError,
    MediaResolutionError,
    RenderError,
    TimingEvaluationError,
)
from .models import AnimatorInfo, RecordWindow
from .pool import WorkerPool
from .recording import FfmpegRecorder, ImageioRecorder, Recorder
from .render import render, render_sync
from .timing import compute_record_window

__all__ = [
    "AnimatorInfo",
    "CaptureError",
    "ConfigurationError",
    "EncoderError",
    "FfmpegRecorder",
    "FrameCache",
    "ImageioRecorder",
    "MediaResolutionError",
    "RecordWindow",
    "Recorder",
    "RenderError",
    "RenderParameters",
    "TimingEvaluationError",
    "WorkerPool",
    "build_fingerprint",
    "compute_record_window",
    "load_parameters",
    "render",
    "render_sync",
]
