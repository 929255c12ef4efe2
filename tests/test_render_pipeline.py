import asyncio
import importlib
import logging
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fakes import FakeSession, StubRecorder, scene_values  # noqa: E402
from scene_render.cache import FINGERPRINT_FILENAME  # noqa: E402
from scene_render.config import RenderParameters, with_overrides  # noqa: E402
from scene_render.errors import CaptureError, ConfigurationError, TimingEvaluationError  # noqa: E402
from scene_render.recording import FfmpegRecorder  # noqa: E402
render_module = importlib.import_module("scene_render.render")  # noqa: E402
from scene_render.render import render  # noqa: E402

LOGGER = logging.getLogger("render-pipeline-tests")


def make_params(tmp_path: Path, **overrides) -> RenderParameters:
    values = dict(
        input_path="http://example.test/index.html",
        output_path=str(tmp_path / "out.mp4"),
        fps=30,
        width=640,
        height=480,
        duration=2.0,
        multi=1,
        cache_folder=str(tmp_path / ".scene_cache"),
    )
    values.update(overrides)
    return RenderParameters(**values)


def media_values(tmp_path: Path, duration: float = 2.0) -> dict:
    clip = tmp_path / "track.mp3"
    clip.write_bytes(b"ID3track")
    return {
        "mediaScene.finish().getInfo()": {
            "duration": duration,
            "medias": [{"url": clip.as_uri(), "seek": [0, duration], "playSpeed": 1, "volume": 1, "delay": 0}],
        }
    }


class Harness:
    """Run render() against fake browsers and a stub recorder."""

    def __init__(self, page_values: dict, recorder_cls=StubRecorder):
        self.session = FakeSession(page_values)
        self.recorders = []
        self.recorder_cls = recorder_cls
        self.created = []

    def factory(self, params, logger):
        recorder = self.recorder_cls(logger=logger)
        self.recorders.append(recorder)
        return recorder

    def run(self, params: RenderParameters):
        return asyncio.run(
            render(
                params,
                logger=LOGGER,
                created=self.created.append,
                session=self.session,
                recorder_factory=self.factory,
            )
        )

    @property
    def primary_page(self):
        return self.session.browsers[0].pages[0]


def test_scenario_a_single_worker_encodes_61_frames(tmp_path):
    harness = Harness(scene_values(duration=2.0))
    params = make_params(tmp_path)

    recorder = harness.run(params)

    assert harness.created == [recorder]
    assert recorder.window.start_frame == 0
    assert recorder.window.end_frame == 60
    assert len(recorder.encoded_frames) == 61
    assert recorder.encode_options.fps == 30
    assert recorder.encode_options.ext == "mp4"
    assert len(harness.primary_page.seek_times) == 61
    assert (tmp_path / "out.mp4").read_bytes().startswith(b"VIDEO:")
    assert len(harness.session.browsers) == 1
    assert harness.session.browsers[0].close_calls == 1
    # Caching disabled: the frame folder is removed after the run.
    assert not (tmp_path / ".scene_cache").exists()


def test_multiple_workers_split_capture_across_browsers(tmp_path):
    harness = Harness(scene_values(duration=2.0))

    recorder = harness.run(make_params(tmp_path, multi=3))

    seeks = [len(browser.pages[0].seek_times) for browser in harness.session.browsers]
    assert seeks == [21, 20, 20]
    assert len(recorder.encoded_frames) == 61
    assert all(browser.close_calls == 1 for browser in harness.session.browsers)


def test_page_is_opened_at_requested_resolution(tmp_path):
    harness = Harness(scene_values(duration=0.1))

    harness.run(make_params(tmp_path, scale=2.0, referer="http://ref.test/"))

    context = harness.session.browsers[0].contexts[0]
    assert context.kwargs["viewport"] == {"width": 320, "height": 240}
    assert context.kwargs["device_scale_factor"] == 2.0
    assert context.kwargs["extra_http_headers"] == {"referer": "http://ref.test/"}


def test_scenario_b_audio_only_output_skips_capture(tmp_path):
    harness = Harness({**scene_values(), **media_values(tmp_path)})
    params = make_params(tmp_path, output_path=str(tmp_path / "out.mp3"))

    recorder = harness.run(params)

    assert (tmp_path / "out.mp3").read_bytes() == b"AUDIO:ID3track"
    assert harness.primary_page.seek_times == []
    assert recorder.events == []
    assert len(harness.session.browsers) == 1


def test_scenario_c_video_and_audio_from_one_pass(tmp_path):
    harness = Harness({**scene_values(), **media_values(tmp_path)})
    params = make_params(tmp_path, output_path=f"{tmp_path / 'a.mp4'},{tmp_path / 'b.mp3'}")

    recorder = harness.run(params)

    assert (tmp_path / "a.mp4").read_bytes().startswith(b"VIDEO:")
    assert (tmp_path / "b.mp3").read_bytes() == b"AUDIO:ID3track"
    assert recorder.audio_path is not None
    assert recorder.events == ["capture_end", "encode"]


def test_media_only_scene_drives_media_timeline(tmp_path):
    harness = Harness(media_values(tmp_path, duration=1.0))

    recorder = harness.run(make_params(tmp_path, duration=0))

    assert recorder.animator.duration == 1.0
    assert recorder.window.end_frame == 30
    assert all(
        expression.startswith("mediaScene.")
        for expression in harness.primary_page.evaluated
        if "setTime" in expression
    )


def test_scenario_d_second_identical_run_reuses_cache(tmp_path, caplog):
    params = make_params(tmp_path, cache=True)
    first = Harness(scene_values(duration=2.0))
    first.run(params)
    fingerprint_path = tmp_path / ".scene_cache" / FINGERPRINT_FILENAME
    first_fingerprint = fingerprint_path.read_text(encoding="utf-8")
    first_video = (tmp_path / "out.mp4").read_bytes()

    second = Harness(scene_values(duration=2.0))
    with caplog.at_level(logging.INFO, logger=LOGGER.name):
        second.run(params)

    assert second.primary_page.seek_times == []
    assert fingerprint_path.read_text(encoding="utf-8") == first_fingerprint
    assert (tmp_path / "out.mp4").read_bytes() == first_video
    assert any(record.getMessage().startswith("Use Cache") for record in caplog.records)


def test_changed_fps_forces_recapture_and_wipes_old_frames(tmp_path):
    params = make_params(tmp_path, cache=True)
    Harness(scene_values(duration=2.0)).run(params)

    harness = Harness(scene_values(duration=2.0))
    recorder = harness.run(with_overrides(params, fps=10))

    cache_dir = tmp_path / ".scene_cache"
    frames = sorted(path.name for path in cache_dir.glob("frame_*"))
    assert len(harness.primary_page.seek_times) == 21
    assert len(frames) == 21
    assert len(recorder.encoded_frames) == 21


def test_no_video_and_no_media_is_a_configuration_error(tmp_path):
    harness = Harness(scene_values())
    params = make_params(tmp_path, output_path=str(tmp_path / "out.mp3"))

    with pytest.raises(ConfigurationError):
        harness.run(params)

    assert not (tmp_path / "out.mp3").exists()
    assert harness.session.browsers[0].close_calls == 1


def test_missing_timeline_without_media_is_fatal(tmp_path):
    harness = Harness({})

    with pytest.raises(TimingEvaluationError):
        harness.run(make_params(tmp_path))

    assert not (tmp_path / "out.mp4").exists()


def test_capture_failure_writes_nothing_and_keeps_cache_unpersisted(tmp_path):
    class FailingSession(FakeSession):
        async def launch(self):
            browser = await super().launch()
            if len(self.browsers) > 1:
                original = browser.new_context

                async def new_context(**kwargs):
                    context = await original(**kwargs)
                    page = await context.new_page()
                    page.fail_after = 2

                    async def new_page():
                        return page

                    context.new_page = new_page
                    return context

                browser.new_context = new_context
            return browser

    harness = Harness(scene_values(duration=2.0))
    harness.session = FailingSession(scene_values(duration=2.0))

    with pytest.raises(CaptureError):
        harness.run(make_params(tmp_path, multi=3, cache=True))

    assert not (tmp_path / "out.mp4").exists()
    assert not (tmp_path / ".scene_cache" / FINGERPRINT_FILENAME).exists()
    assert all(browser.close_calls == 1 for browser in harness.session.browsers)
    assert harness.recorders[0].events == []
    assert harness.recorders[0].workdir is None


def test_missing_encoder_binary_fails_before_any_browser_starts(tmp_path):
    harness = Harness(
        scene_values(),
        recorder_cls=lambda *, logger: FfmpegRecorder("/nonexistent/ffmpeg", logger=logger),
    )

    with pytest.raises(ConfigurationError):
        harness.run(make_params(tmp_path))

    assert harness.recorders[0].workdir is None
    assert harness.session.browsers == []


def test_media_scene_without_clips_renders_silent_video(tmp_path):
    values = {**scene_values(duration=1.0), "mediaScene.finish().getInfo()": {"duration": 1.0, "medias": []}}
    harness = Harness(values)

    recorder = harness.run(make_params(tmp_path, duration=0))

    assert (tmp_path / "out.mp4").read_bytes().startswith(b"VIDEO:")
    assert recorder.events == ["capture_end", "encode"]
    assert recorder.audio_path is None
    assert recorder.window.end_frame == 30


def test_media_scene_without_clips_cannot_satisfy_audio_output(tmp_path):
    values = {**scene_values(), "mediaScene.finish().getInfo()": {"duration": 1.0, "medias": []}}
    harness = Harness(values)

    with pytest.raises(ConfigurationError):
        harness.run(make_params(tmp_path, output_path=str(tmp_path / "out.mp3")))

    assert not (tmp_path / "out.mp3").exists()


def test_failed_output_write_leaves_no_cache_fingerprint(tmp_path, monkeypatch):
    def failing_write(path, data):
        raise OSError(f"cannot write {path}")

    monkeypatch.setattr(render_module, "write_output", failing_write)
    harness = Harness(scene_values(duration=0.5))

    with pytest.raises(OSError):
        harness.run(make_params(tmp_path, cache=True))

    assert harness.recorders[0].events == ["capture_end", "encode"]
    assert not (tmp_path / ".scene_cache" / FINGERPRINT_FILENAME).exists()
