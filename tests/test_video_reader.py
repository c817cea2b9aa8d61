import asyncio
import json
import subprocess
from pathlib import Path
from typing import List, Optional, Tuple

import cv2
import numpy as np
import pytest

from unwatermark import video_reader
from unwatermark.errors import DecodeError
from unwatermark.models import MediaBlob
from unwatermark.pipeline import VideoPipeline
from unwatermark.video_reader import OpenCVFrameSource, probe_audio


class FakeCapture:
    def __init__(
        self,
        frames: List[np.ndarray],
        *,
        fps: float = 24.0,
        opened: bool = True,
        reported_count: Optional[int] = None,
    ) -> None:
        self.frames = frames
        self.reported_count = reported_count
        self.fps = fps
        self.opened = opened
        self.index = 0
        self.released = False
        self.sets: List[Tuple[int, float]] = []

    def isOpened(self) -> bool:  # noqa: N802 - mimics OpenCV API
        return self.opened

    def get(self, prop_id: int) -> float:  # noqa: N802 - mimics OpenCV API
        if prop_id == cv2.CAP_PROP_FPS:
            return self.fps
        if prop_id == cv2.CAP_PROP_FRAME_COUNT:
            return len(self.frames) if self.reported_count is None else self.reported_count
        if prop_id == cv2.CAP_PROP_FRAME_WIDTH:
            return self.frames[0].shape[1] if self.frames else 0
        if prop_id == cv2.CAP_PROP_FRAME_HEIGHT:
            return self.frames[0].shape[0] if self.frames else 0
        if prop_id == cv2.CAP_PROP_POS_MSEC:
            return (self.index - 1) * 1000.0 / self.fps
        return 0.0

    def set(self, prop_id: int, value: float) -> bool:
        self.sets.append((prop_id, value))
        if prop_id == cv2.CAP_PROP_POS_FRAMES:
            self.index = int(value)
        return True

    def grab(self) -> bool:
        if self.index >= len(self.frames):
            return False
        self.index += 1
        return True

    def read(self) -> Tuple[bool, np.ndarray]:
        if self.index >= len(self.frames):
            return False, np.empty((0, 0, 3), dtype=np.uint8)
        frame = self.frames[self.index]
        self.index += 1
        return True, frame

    def release(self) -> None:
        self.released = True


def numbered_frames(count: int) -> List[np.ndarray]:
    return [np.full((2, 3, 3), i, dtype=np.uint8) for i in range(count)]


@pytest.fixture
def video_path(tmp_path: Path) -> Path:
    path = tmp_path / "video.mp4"
    path.write_bytes(b"fake")
    return path


def install_capture(monkeypatch, capture: FakeCapture) -> None:
    monkeypatch.setattr("cv2.VideoCapture", lambda _: capture)


def test_info_reports_metadata(video_path, monkeypatch) -> None:
    install_capture(monkeypatch, FakeCapture(numbered_frames(48)))
    source = OpenCVFrameSource(video_path, has_audio=True)
    info = source.info()
    assert (info.width, info.height) == (3, 2)
    assert info.duration_s == pytest.approx(2.0)
    assert info.fps_hint == 24.0
    assert info.frame_count == 48
    assert info.has_audio
    assert source.path == video_path


def test_seek_returns_frame_at_timestamp(video_path, monkeypatch) -> None:
    capture = FakeCapture(numbered_frames(10), fps=10.0)
    install_capture(monkeypatch, capture)
    source = OpenCVFrameSource(video_path, has_audio=False)

    first = asyncio.run(source.seek(0.0))
    second = asyncio.run(source.seek(0.1))
    assert first[0, 0, 0] == 0
    assert second[0, 0, 0] == 1
    # sequential reads do not reposition the decoder
    assert capture.sets == []

    jumped = asyncio.run(source.seek(0.5))
    assert jumped[0, 0, 0] == 5
    assert capture.sets == [(cv2.CAP_PROP_POS_FRAMES, 5)]


def test_seek_past_end_clamps_to_last_frame(video_path, monkeypatch) -> None:
    install_capture(monkeypatch, FakeCapture(numbered_frames(10), fps=10.0))
    source = OpenCVFrameSource(video_path, has_audio=False)
    frame = asyncio.run(source.seek(1.0))
    again = asyncio.run(source.seek(1.0))
    assert frame[0, 0, 0] == 9
    np.testing.assert_array_equal(frame, again)


def test_playback_yields_frame_timestamps_and_rewinds(video_path, monkeypatch) -> None:
    capture = FakeCapture(numbered_frames(5), fps=25.0)
    install_capture(monkeypatch, capture)
    source = OpenCVFrameSource(video_path, has_audio=False)

    async def collect() -> List[float]:
        stamps = [ts async for ts in source.playback()]
        await source.stop_playback()
        return stamps

    stamps = asyncio.run(collect())
    assert stamps == pytest.approx([0.0, 0.04, 0.08, 0.12, 0.16])
    assert capture.index == 0
    frame = asyncio.run(source.seek(0.0))
    assert frame[0, 0, 0] == 0


def test_close_releases_capture(video_path, monkeypatch) -> None:
    capture = FakeCapture(numbered_frames(3))
    install_capture(monkeypatch, capture)
    source = OpenCVFrameSource(video_path, has_audio=False)
    source.close()
    source.close()
    assert capture.released
    with pytest.raises(DecodeError):
        asyncio.run(source.seek(0.0))


def test_unopenable_video_raises(video_path, monkeypatch) -> None:
    install_capture(monkeypatch, FakeCapture(numbered_frames(1), opened=False))
    with pytest.raises(DecodeError):
        OpenCVFrameSource(video_path, has_audio=False)


def test_missing_file_raises(tmp_path) -> None:
    with pytest.raises(DecodeError):
        OpenCVFrameSource(tmp_path / "missing.mp4", has_audio=False)


def test_probe_audio_without_ffprobe(video_path, monkeypatch) -> None:
    monkeypatch.setattr(video_reader.shutil, "which", lambda _: None)
    assert probe_audio(video_path) is False


def test_probe_audio_parses_streams(video_path, monkeypatch) -> None:
    monkeypatch.setattr(video_reader.shutil, "which", lambda name: f"/usr/bin/{name}")

    def fake_run(cmd, **kwargs):
        assert cmd[0] == "/usr/bin/ffprobe"
        assert cmd[-1] == str(video_path)
        payload = {"streams": [{"index": 1}]}
        return subprocess.CompletedProcess(cmd, 0, stdout=json.dumps(payload).encode(), stderr=b"")

    monkeypatch.setattr(video_reader.subprocess, "run", fake_run)
    assert probe_audio(video_path) is True


def test_probe_audio_failure_means_silent(video_path, monkeypatch) -> None:
    monkeypatch.setattr(video_reader.shutil, "which", lambda name: f"/usr/bin/{name}")

    def failing_run(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd)

    monkeypatch.setattr(video_reader.subprocess, "run", failing_run)
    assert probe_audio(video_path) is False


class FixedProbe:
    async def estimate(self, source) -> float:
        return source.info().fps_hint


class PassThroughRemover:
    def watermark_info(self, width: int, height: int):
        raise NotImplementedError

    def remove_watermark(self, frame_bgr: np.ndarray) -> np.ndarray:
        return frame_bgr


class CollectingEncoder:
    def __init__(self) -> None:
        self.timestamps: List[float] = []

    @property
    def mime_type(self) -> str:
        return "video/webm"

    async def start(self, width: int, height: int, fps: float) -> None:
        pass

    def attach_audio(self, source_path: Path) -> None:
        pass

    async def submit(self, frame_bgr: np.ndarray, ts_sec: float) -> None:
        self.timestamps.append(ts_sec)

    async def stop(self) -> MediaBlob:
        return MediaBlob(b"x", self.mime_type)

    def abort(self) -> None:
        pass


def test_missing_frame_count_is_measured_from_the_stream(video_path, monkeypatch) -> None:
    capture = FakeCapture(numbered_frames(250), fps=25.0, reported_count=0)
    install_capture(monkeypatch, capture)
    source = OpenCVFrameSource(video_path, has_audio=False)

    info = source.info()
    assert info.frame_count == 250
    assert info.duration_s == pytest.approx(10.0)
    assert capture.index == 0

    encoder = CollectingEncoder()
    asyncio.run(VideoPipeline(source, PassThroughRemover(), encoder, FixedProbe()).run())
    assert len(encoder.timestamps) == 251
    assert encoder.timestamps[-1] == pytest.approx(10.0)


def test_stream_without_frames_raises(video_path, monkeypatch) -> None:
    capture = FakeCapture([], fps=25.0, reported_count=0)
    install_capture(monkeypatch, capture)
    with pytest.raises(DecodeError):
        OpenCVFrameSource(video_path, has_audio=False)
    assert capture.released
