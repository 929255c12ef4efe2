import asyncio
import logging
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fakes import FakePage  # noqa: E402
import scene_render.media as media_module  # noqa: E402
from scene_render.errors import MediaResolutionError  # noqa: E402
from scene_render.media import (  # noqa: E402
    AudioMerger,
    build_fetch_file,
    build_filter_graph,
    get_media_info,
    is_local_file,
    parse_media_info,
    resolve_media_url,
)
from scene_render.models import MediaClip, MediaInfo  # noqa: E402

RAW_INFO = {
    "duration": 4.5,
    "medias": [
        {"url": "./a.mp3", "seek": [1, 3], "playSpeed": 2, "volume": 0.5, "delay": 1.5},
        {"url": "https://cdn.example.test/b.mp3", "seek": [0, 4], "playSpeed": 1, "volume": 1, "delay": 0},
        {"seek": [0, 1]},
    ],
}


def test_parse_media_info_reads_clips_and_skips_entries_without_url():
    info = parse_media_info(RAW_INFO)

    assert info == MediaInfo(
        duration=4.5,
        clips=(
            MediaClip(url="./a.mp3", seek=(1.0, 3.0), play_speed=2.0, volume=0.5, delay=1.5),
            MediaClip(url="https://cdn.example.test/b.mp3", seek=(0.0, 4.0)),
        ),
    )
    assert parse_media_info(None) is None
    assert parse_media_info("oops") is None


def test_get_media_info_evaluates_finished_media_scene():
    page = FakePage({"mediaScene.finish().getInfo()": RAW_INFO})

    info = asyncio.run(get_media_info(page, "mediaScene"))

    assert info is not None and info.duration == 4.5
    assert page.evaluated == ["mediaScene.finish().getInfo()"]


def test_missing_media_element_is_not_an_error():
    page = FakePage()

    assert asyncio.run(get_media_info(page, "mediaScene")) is None
    assert asyncio.run(get_media_info(page, "")) is None
    assert page.evaluated == ["mediaScene.finish().getInfo()"]


def test_local_detection_and_url_resolution():
    assert is_local_file("/tmp/a.mp3")
    assert is_local_file("file:///tmp/a.mp3")
    assert not is_local_file("https://example.test/a.mp3")

    assert resolve_media_url("a.mp3", "file:///srv/scene/index.html") == "file:///srv/scene/a.mp3"
    assert resolve_media_url("../b.mp3", "http://example.test/x/index.html") == "http://example.test/b.mp3"
    assert resolve_media_url("https://cdn.test/c.mp3", "file:///srv/index.html") == "https://cdn.test/c.mp3"
    assert resolve_media_url("d.mp3", None) == "d.mp3"


def test_fetch_file_reads_local_paths_and_file_urls(tmp_path):
    audio = tmp_path / "a b.mp3"
    audio.write_bytes(b"ID3local")
    fetch_file = build_fetch_file()

    assert asyncio.run(fetch_file(str(audio))) == b"ID3local"
    assert asyncio.run(fetch_file(audio.as_uri())) == b"ID3local"


def test_fetch_file_uses_requests_for_remote_urls():
    response = MagicMock()
    response.content = b"ID3remote"
    fetch_file = build_fetch_file(http_timeout=7)

    with patch.object(media_module.requests, "get", return_value=response) as mock_get:
        data = asyncio.run(fetch_file("https://cdn.example.test/b.mp3"))

    assert data == b"ID3remote"
    mock_get.assert_called_once_with("https://cdn.example.test/b.mp3", timeout=7)
    response.raise_for_status.assert_called_once_with()


def test_fetch_file_propagates_http_errors():
    response = MagicMock()
    response.raise_for_status.side_effect = requests.HTTPError("404 Client Error")

    with patch.object(media_module.requests, "get", return_value=response):
        with pytest.raises(requests.HTTPError):
            asyncio.run(build_fetch_file()("https://cdn.example.test/missing.mp3"))


def test_filter_graph_trims_retimes_delays_and_mixes():
    clips = [
        MediaClip(url="a", seek=(1.0, 3.0), play_speed=2.0, volume=0.5, delay=1.5),
        MediaClip(url="b", seek=(0.0, 4.0), play_speed=0.25),
    ]

    graph = build_filter_graph(clips)

    assert graph.split(";") == [
        "[0:a]atrim=start=1:end=3,asetpts=PTS-STARTPTS,atempo=2,adelay=1500|1500,volume=0.5[a0]",
        "[1:a]atrim=start=0:end=4,asetpts=PTS-STARTPTS,atempo=0.5,atempo=0.5,volume=1[a1]",
        "[a0][a1]amix=inputs=2:duration=longest:dropout_transition=0,volume=2[out]",
    ]


def test_filter_graph_single_clip_passes_through():
    graph = build_filter_graph([MediaClip(url="a", seek=(0.0, 0.0))])

    assert graph == "[0:a]asetpts=PTS-STARTPTS,atempo=1,volume=1[a0];[a0]anull[out]"


def test_merge_reports_ffmpeg_failure(tmp_path):
    merger = AudioMerger("ffmpeg", tmp_path, logger=logging.getLogger("media-tests"))
    failed = MagicMock(returncode=1, stderr=b"Invalid data found when processing input")

    with patch.object(media_module.subprocess, "run", return_value=failed) as mock_run:
        with pytest.raises(MediaResolutionError, match="Invalid data"):
            merger.merge([(MediaClip(url="a", seek=(0.0, 1.0)), b"not audio")], 1.0)

    cmd = mock_run.call_args[0][0]
    assert cmd[:3] == ["ffmpeg", "-y", "-loglevel"]
    assert cmd[-1] == str(tmp_path / "merge.mp3")
    assert (tmp_path / "media0").read_bytes() == b"not audio"


def test_merge_requires_at_least_one_clip(tmp_path):
    merger = AudioMerger("ffmpeg", tmp_path, logger=logging.getLogger("media-tests"))

    with pytest.raises(MediaResolutionError):
        merger.merge([], 1.0)
