"""Recorders: turn captured frames and merged audio into a video container."""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
import tempfile
import threading
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

import cv2
import imageio.v2 as iio
import imageio_ffmpeg
import numpy as np
import requests

from scene_render.errors import CaptureError, ConfigurationError, EncoderError, MediaResolutionError
from scene_render.media import (
    MERGED_AUDIO_FILENAME,
    AudioMerger,
    FetchFile,
    build_fetch_file,
    resolve_media_url,
)
from scene_render.models import (
    AnimatorInfo,
    CapturedFrameSet,
    EncodeOptions,
    MediaClip,
    MediaInfo,
    RecordWindow,
)
from scene_render.pool import WorkerPool
from scene_render.timing import compute_record_window

DEFAULT_CODECS = {"mp4": "libx264", "webm": "libvpx-vp9"}
AUDIO_CODECS = {"mp4": "aac", "webm": "libopus"}
PIPE_CODECS = {"png": "png", "jpeg": "mjpeg"}
WINDOW_AUDIO_FILENAME = "audio_window.mp3"


def video_codec(options: EncodeOptions) -> str:
    return options.codec or DEFAULT_CODECS.get(options.ext, "libx264")


def pixel_format(options: EncodeOptions) -> str:
    return "yuva420p" if options.alpha and options.ext == "webm" else "yuv420p"


def codec_params(options: EncodeOptions) -> List[str]:
    codec = video_codec(options)
    if codec in ("libvpx", "libvpx-vp9"):
        return ["-cpu-used", str(options.cpu_used)]
    return []


class Recorder(ABC):
    """Common contract of both encoding strategies.

    Lifecycle: ``init()`` → ``set_animator()`` → ``get_record_info()`` →
    optional ``record_media()`` → ``set_render_capturing()`` → ``record()``
    → ``destroy()``. ``capture_end`` resolves exactly once, with the frame
    set, after capture is confirmed and before encoding starts.
    """

    def __init__(self, *, logger: logging.Logger, log_output: bool = False) -> None:
        self.logger = logger
        self.log_output = log_output
        self.workdir: Optional[Path] = None
        self.animator: Optional[AnimatorInfo] = None
        self.window: Optional[RecordWindow] = None
        self.capture_end: Optional[asyncio.Future] = None
        self._fetch_file: FetchFile = build_fetch_file()
        self._audio: Optional[bytes] = None
        self._pool: Optional[WorkerPool] = None
        self._image_type = "png"
        self._is_cache = False
        self._cache_folder: Optional[Path] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self) -> None:
        self._init_encoder()
        if self.workdir is None:
            self.workdir = Path(tempfile.mkdtemp(prefix="scene_render_"))

    def destroy(self) -> None:
        try:
            self._destroy_encoder()
        finally:
            if self.workdir is not None:
                shutil.rmtree(self.workdir, ignore_errors=True)
                self.workdir = None
            self._audio = None
            self._pool = None

    def _require_workdir(self) -> Path:
        if self.workdir is None:
            raise RuntimeError(f"{type(self).__name__}.init() must be called first")
        return self.workdir

    # ------------------------------------------------------------------
    # Timing
    # ------------------------------------------------------------------

    def set_animator(self, info: AnimatorInfo) -> None:
        self.animator = info

    def get_record_info(
        self,
        *,
        fps: int,
        start_time: float = 0.0,
        iteration: int = 0,
        duration: float = 0.0,
        multi: int = 1,
    ) -> RecordWindow:
        if self.animator is None:
            raise RuntimeError("set_animator() must be called before get_record_info()")
        self.window = compute_record_window(
            self.animator,
            fps=fps,
            start_time=start_time,
            iteration=iteration,
            duration=duration,
            multi=multi,
        )
        return self.window

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    def set_fetch_file(self, resolver: FetchFile) -> None:
        self._fetch_file = resolver

    async def record_media(self, media_info: MediaInfo, *, base_url: Optional[str] = None) -> bytes:
        """Fetch every clip of the media scene and merge them into one audio track."""
        payloads: List[Tuple[MediaClip, bytes]] = []
        for clip in media_info.clips:
            url = resolve_media_url(clip.url, base_url)
            try:
                payload = await self._fetch_file(url)
            except (OSError, requests.RequestException) as exc:
                raise MediaResolutionError(f"Failed to fetch media {url}: {exc}") from exc
            self.logger.debug("Fetched media %s (%s bytes)", url, len(payload))
            payloads.append((clip, payload))

        self._audio = await asyncio.to_thread(self._merge_audio, payloads, media_info.duration)
        return self._audio

    def get_audio_file(self) -> bytes:
        if self._audio is None:
            raise ConfigurationError("No audio has been recorded")
        return self._audio

    @property
    def has_audio(self) -> bool:
        return self._audio is not None

    def _audio_merger(self) -> AudioMerger:
        return AudioMerger(
            self._ffmpeg_executable(),
            self._require_workdir(),
            logger=self.logger,
            log_output=self.log_output,
        )

    def _merge_audio(self, payloads: Sequence[Tuple[MediaClip, bytes]], duration: float) -> bytes:
        return self._audio_merger().merge(payloads, duration)

    def _trim_audio(self, source: Path, start_time: float, duration: float, target: Path) -> Path:
        return self._audio_merger().trim(source, start_time, duration, target)

    def _window_audio(self, options: EncodeOptions) -> Optional[Path]:
        if self._audio is None:
            return None
        workdir = self._require_workdir()
        source = workdir / MERGED_AUDIO_FILENAME
        source.write_bytes(self._audio)
        return self._trim_audio(
            source,
            options.start_time,
            options.duration,
            workdir / WINDOW_AUDIO_FILENAME,
        )

    # ------------------------------------------------------------------
    # Capture and encode
    # ------------------------------------------------------------------

    def set_render_capturing(
        self,
        image_type: str,
        pool: Optional[WorkerPool],
        is_cache: bool,
        cache_folder: Path,
    ) -> None:
        """Bind where frames come from; must be called inside the running event loop."""
        self._image_type = image_type
        self._pool = pool
        self._is_cache = is_cache
        self._cache_folder = Path(cache_folder)
        self.capture_end = asyncio.get_running_loop().create_future()

    async def _capture(self) -> CapturedFrameSet:
        assert self.window is not None and self._cache_folder is not None
        if self._is_cache:
            return CapturedFrameSet.scan(self._cache_folder, self._image_type)
        if self._pool is None:
            raise CaptureError("No capture workers bound to the recorder")
        return await self._pool.run(self.window)

    def _emit_capture_end(self, frames: CapturedFrameSet) -> None:
        assert self.capture_end is not None
        if self.capture_end.done():
            raise RuntimeError("captureEnd has already been signalled")
        self.capture_end.set_result(frames)

    async def record(self, options: EncodeOptions) -> bytes:
        """Capture (unless cached), signal ``capture_end``, then encode."""
        if self.window is None or self.capture_end is None:
            raise RuntimeError("get_record_info() and set_render_capturing() must precede record()")

        frames = await self._capture()
        missing = frames.missing(self.window.frame_count)
        if missing:
            raise CaptureError(
                f"{len(missing)} frame(s) missing from {frames.folder} (first: {missing[0]})"
            )
        self._emit_capture_end(frames)

        audio_path = await asyncio.to_thread(self._window_audio, options)
        self.logger.info(
            "Encoding %s frames at %s fps (%s, %s)",
            len(frames),
            options.fps,
            options.ext,
            video_codec(options),
        )
        return await asyncio.to_thread(self._encode, frames, audio_path, options)

    # ------------------------------------------------------------------
    # Strategy hooks
    # ------------------------------------------------------------------

    def _init_encoder(self) -> None:
        return None

    def _destroy_encoder(self) -> None:
        return None

    @abstractmethod
    def _ffmpeg_executable(self) -> str:
        """Path of the ffmpeg binary used for audio steps."""

    @abstractmethod
    def _encode(
        self,
        frames: CapturedFrameSet,
        audio_path: Optional[Path],
        options: EncodeOptions,
    ) -> bytes:
        """Encode ``frames`` in ascending order and return the container bytes."""


class FfmpegRecorder(Recorder):
    """Encode by piping frames into an external ffmpeg process."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        *,
        logger: logging.Logger,
        log_output: bool = False,
    ) -> None:
        super().__init__(logger=logger, log_output=log_output)
        self.ffmpeg_path = ffmpeg_path
        self._resolved_path: Optional[str] = None

    def _init_encoder(self) -> None:
        resolved = shutil.which(self.ffmpeg_path)
        if resolved is None:
            raise ConfigurationError(
                f"ffmpeg not found at '{self.ffmpeg_path}'. Install ffmpeg or pass a valid path."
            )
        self._resolved_path = resolved

    def _ffmpeg_executable(self) -> str:
        return self._resolved_path or self.ffmpeg_path

    def build_command(
        self,
        frames: CapturedFrameSet,
        audio_path: Optional[Path],
        options: EncodeOptions,
        output_path: Path,
    ) -> List[str]:
        cmd = [
            self._ffmpeg_executable(),
            "-y",
            "-loglevel",
            "info" if self.log_output else "error",
            "-nostats",
            "-f",
            "image2pipe",
            "-vcodec",
            PIPE_CODECS.get(frames.image_type, "png"),
            "-framerate",
            str(options.fps),
            "-i",
            "-",
        ]
        if audio_path is not None:
            cmd.extend(["-i", str(audio_path)])
        cmd.extend(
            [
                "-c:v",
                video_codec(options),
                "-b:v",
                options.bitrate,
                *codec_params(options),
                "-pix_fmt",
                pixel_format(options),
            ]
        )
        if audio_path is not None:
            cmd.extend(["-map", "0:v", "-map", "1:a", "-c:a", AUDIO_CODECS.get(options.ext, "aac")])
        if options.ext == "mp4":
            cmd.extend(["-movflags", "+faststart"])
        cmd.append(str(output_path))
        return cmd

    def _encode(
        self,
        frames: CapturedFrameSet,
        audio_path: Optional[Path],
        options: EncodeOptions,
    ) -> bytes:
        workdir = self._require_workdir()
        output_path = workdir / f".tmp_{uuid.uuid4().hex}.{options.ext}"
        cmd = self.build_command(frames, audio_path, options, output_path)
        self.logger.debug("Running %s", " ".join(cmd))

        process = subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
        )
        assert process.stdin is not None and process.stderr is not None
        stderr_chunks: List[bytes] = []
        # ffmpeg keeps writing to stderr while it reads frames; drain it concurrently.
        stderr_reader = threading.Thread(
            target=lambda stream=process.stderr: stderr_chunks.append(stream.read()),
            daemon=True,
        )
        stderr_reader.start()
        try:
            for frame_path in frames.paths():
                process.stdin.write(frame_path.read_bytes())
        except BrokenPipeError:
            # ffmpeg exited early; its stderr below says why.
            pass
        finally:
            try:
                process.stdin.close()
            except OSError:
                pass

        return_code = process.wait()
        stderr_reader.join()
        process.stderr.close()
        stderr_bytes = b"".join(stderr_chunks)
        if self.log_output and stderr_bytes:
            self.logger.debug("ffmpeg: %s", stderr_bytes.decode("utf-8", errors="replace"))
        if return_code != 0:
            raise EncoderError(
                f"ffmpeg exited with code {return_code}",
                returncode=return_code,
                cmd=cmd,
                stderr=stderr_bytes,
            )

        try:
            return output_path.read_bytes()
        finally:
            output_path.unlink(missing_ok=True)


class ImageioRecorder(Recorder):
    """Encode in-process through imageio's ffmpeg writer."""

    def _ffmpeg_executable(self) -> str:
        return imageio_ffmpeg.get_ffmpeg_exe()

    def _iter_frames(self, frames: CapturedFrameSet, keep_alpha: bool) -> Iterator[np.ndarray]:
        for frame_path in frames.paths():
            image = cv2.imread(str(frame_path), cv2.IMREAD_UNCHANGED)
            if image is None:
                raise EncoderError(f"Failed to read captured frame {frame_path}")
            if image.ndim == 2:
                yield cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
            elif image.shape[2] == 4:
                code = cv2.COLOR_BGRA2RGBA if keep_alpha else cv2.COLOR_BGRA2RGB
                yield cv2.cvtColor(image, code)
            else:
                yield cv2.cvtColor(image, cv2.COLOR_BGR2RGB)

    def _encode(
        self,
        frames: CapturedFrameSet,
        audio_path: Optional[Path],
        options: EncodeOptions,
    ) -> bytes:
        workdir = self._require_workdir()
        output_path = workdir / f".tmp_{uuid.uuid4().hex}.{options.ext}"
        keep_alpha = pixel_format(options) == "yuva420p"

        writer_kwargs = {
            "format": "FFMPEG",
            "mode": "I",
            "fps": options.fps,
            "codec": video_codec(options),
            "bitrate": options.bitrate,
            "quality": None,
            "pixelformat": pixel_format(options),
            "macro_block_size": 1,
            "ffmpeg_log_level": "info" if self.log_output else "error",
            "ffmpeg_params": codec_params(options),
        }
        if audio_path is not None:
            writer_kwargs["audio_path"] = str(audio_path)
            writer_kwargs["audio_codec"] = AUDIO_CODECS.get(options.ext, "aac")

        try:
            writer = iio.get_writer(str(output_path), **writer_kwargs)
            try:
                for image in self._iter_frames(frames, keep_alpha):
                    writer.append_data(image)
            finally:
                writer.close()
        except EncoderError:
            raise
        except (OSError, RuntimeError, ValueError) as exc:
            raise EncoderError(f"Embedded encoder failed: {exc}") from exc

        try:
            return output_path.read_bytes()
        finally:
            output_path.unlink(missing_ok=True)


def create_recorder(
    ffmpeg_path: Optional[str],
    *,
    logger: logging.Logger,
    log_output: bool = False,
) -> Recorder:
    """An explicit ffmpeg path selects the external binary; otherwise encode in-process."""
    if ffmpeg_path:
        return FfmpegRecorder(ffmpeg_path, logger=logger, log_output=log_output)
    return ImageioRecorder(logger=logger, log_output=log_output)


__all__ = [
    "DEFAULT_CODECS",
    "FfmpegRecorder",
    "ImageioRecorder",
    "Recorder",
    "create_recorder",
]
