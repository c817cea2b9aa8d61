import asyncio
import subprocess
from pathlib import Path
from typing import List, Set, Tuple

import cv2
import numpy as np
import pytest

from unwatermark import encoders
from unwatermark.encoders import OpenCVVideoEncoder, is_codec_supported, negotiate_codec
from unwatermark.errors import EncodeError, UnsupportedCapabilityError


class FakeWriter:
    """Stand-in for :class:`cv2.VideoWriter` writing one byte per frame."""

    supported: Set[int] = set()
    instances: List["FakeWriter"] = []

    def __init__(self, path: str, fourcc: int, fps: float, size: Tuple[int, int]) -> None:
        self.path = Path(path)
        self.fourcc = fourcc
        self.fps = fps
        self.size = size
        self.frames: List[np.ndarray] = []
        self.released = False
        FakeWriter.instances.append(self)

    def isOpened(self) -> bool:  # noqa: N802 - mimics OpenCV API
        return self.fourcc in FakeWriter.supported

    def write(self, frame: np.ndarray) -> None:
        self.frames.append(frame)

    def release(self) -> None:
        if not self.released and self.frames:
            self.path.write_bytes(b"F" * len(self.frames))
        self.released = True


def fourcc(code: str) -> int:
    return cv2.VideoWriter_fourcc(*code)


@pytest.fixture(autouse=True)
def fake_writer(monkeypatch):
    FakeWriter.supported = {fourcc("VP90"), fourcc("VP80"), fourcc("mp4v")}
    FakeWriter.instances = []
    monkeypatch.setattr("cv2.VideoWriter", FakeWriter)
    is_codec_supported.cache_clear()
    yield
    is_codec_supported.cache_clear()


def frame(value: int = 0) -> np.ndarray:
    return np.full((4, 6, 3), value, dtype=np.uint8)


def test_negotiation_prefers_vp9() -> None:
    assert negotiate_codec().mime_type == "video/webm;codecs=vp9"


def test_negotiation_falls_back_in_order() -> None:
    FakeWriter.supported = {fourcc("VP80"), fourcc("mp4v")}
    assert negotiate_codec().mime_type == "video/webm;codecs=vp8"
    is_codec_supported.cache_clear()
    FakeWriter.supported = {fourcc("mp4v")}
    assert negotiate_codec().mime_type == "video/mp4"


def test_negotiation_fails_without_codecs() -> None:
    FakeWriter.supported = set()
    with pytest.raises(UnsupportedCapabilityError):
        negotiate_codec()


def test_unknown_mime_types_are_skipped() -> None:
    assert negotiate_codec(["video/x-unknown", "video/mp4"]).mime_type == "video/mp4"


def test_encoder_session_produces_blob() -> None:
    encoder = OpenCVVideoEncoder()

    async def session():
        await encoder.start(6, 4, 25.0)
        for idx in range(3):
            await encoder.submit(frame(idx), idx / 25.0)
        return await encoder.stop()

    blob = asyncio.run(session())
    assert blob.mime_type == "video/webm;codecs=vp9"
    assert blob.data == b"FFF"
    assert encoder.frames_written == 3
    writer = FakeWriter.instances[-1]
    assert writer.fps == 25.0
    assert writer.size == (6, 4)
    assert not writer.path.parent.exists()


def test_out_of_order_frame_is_rejected() -> None:
    encoder = OpenCVVideoEncoder()

    async def session():
        await encoder.start(6, 4, 25.0)
        await encoder.submit(frame(), 0.08)
        await encoder.submit(frame(), 0.04)

    with pytest.raises(EncodeError):
        asyncio.run(session())
    encoder.abort()


def test_frame_size_mismatch_is_rejected() -> None:
    encoder = OpenCVVideoEncoder()

    async def session():
        await encoder.start(6, 4, 25.0)
        await encoder.submit(np.zeros((8, 8, 3), dtype=np.uint8), 0.0)

    with pytest.raises(EncodeError):
        asyncio.run(session())
    encoder.abort()


def test_stop_without_frames_fails_and_cleans_up() -> None:
    encoder = OpenCVVideoEncoder()

    async def session():
        await encoder.start(6, 4, 25.0)
        return await encoder.stop()

    with pytest.raises(EncodeError):
        asyncio.run(session())
    assert not FakeWriter.instances[-1].path.parent.exists()


def test_abort_discards_partial_output() -> None:
    encoder = OpenCVVideoEncoder()

    async def session():
        await encoder.start(6, 4, 25.0)
        await encoder.submit(frame(), 0.0)

    asyncio.run(session())
    encoder.abort()
    writer = FakeWriter.instances[-1]
    assert writer.released
    assert not writer.path.parent.exists()


def test_audio_must_be_attached_before_frames(tmp_path) -> None:
    encoder = OpenCVVideoEncoder()

    async def session():
        await encoder.start(6, 4, 25.0)
        await encoder.submit(frame(), 0.0)
        encoder.attach_audio(tmp_path / "clip.mp4")

    with pytest.raises(EncodeError):
        asyncio.run(session())
    encoder.abort()


def test_audio_is_remuxed_with_ffmpeg(tmp_path, monkeypatch) -> None:
    commands: List[List[str]] = []
    monkeypatch.setattr(encoders.shutil, "which", lambda name: f"/usr/bin/{name}")

    def fake_run(cmd, **kwargs):
        commands.append(cmd)
        Path(cmd[-1]).write_bytes(b"muxed")
        return subprocess.CompletedProcess(cmd, 0, stdout=b"", stderr=b"")

    monkeypatch.setattr(encoders.subprocess, "run", fake_run)
    encoder = OpenCVVideoEncoder()

    async def session():
        await encoder.start(6, 4, 25.0)
        encoder.attach_audio(tmp_path / "clip.mp4")
        await encoder.submit(frame(), 0.0)
        return await encoder.stop()

    blob = asyncio.run(session())
    assert blob.data == b"muxed"
    assert commands[0][0] == "/usr/bin/ffmpeg"
    assert "libopus" in commands[0]
    assert str(tmp_path / "clip.mp4") in commands[0]


def test_failed_remux_delivers_silent_video(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(encoders.shutil, "which", lambda name: f"/usr/bin/{name}")

    def failing_run(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd)

    monkeypatch.setattr(encoders.subprocess, "run", failing_run)
    encoder = OpenCVVideoEncoder()

    async def session():
        await encoder.start(6, 4, 25.0)
        encoder.attach_audio(tmp_path / "clip.mp4")
        await encoder.submit(frame(), 0.0)
        return await encoder.stop()

    assert asyncio.run(session()).data == b"F"
