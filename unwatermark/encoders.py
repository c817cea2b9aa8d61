"""Video encoder implementations."""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

import cv2
import numpy as np

from .config import DEFAULT_VIDEO_MIME_TYPES
from .errors import EncodeError, UnsupportedCapabilityError
from .interfaces import IVideoEncoder
from .models import MediaBlob

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CodecChoice:
    """Mapping from an output mime type to an OpenCV fourcc and container."""

    mime_type: str
    fourcc: str
    suffix: str
    audio_codec: str


CODECS: Dict[str, CodecChoice] = {
    "video/webm;codecs=vp9": CodecChoice("video/webm;codecs=vp9", "VP90", ".webm", "libopus"),
    "video/webm;codecs=vp8": CodecChoice("video/webm;codecs=vp8", "VP80", ".webm", "libopus"),
    # Plain webm leaves the codec to the container default (VP8).
    "video/webm": CodecChoice("video/webm", "VP80", ".webm", "libopus"),
    "video/mp4": CodecChoice("video/mp4", "mp4v", ".mp4", "aac"),
}


@lru_cache(maxsize=None)
def is_codec_supported(mime_type: str) -> bool:
    """Return True when OpenCV can open a writer for ``mime_type`` here."""

    choice = CODECS.get(mime_type)
    if choice is None:
        return False
    with tempfile.TemporaryDirectory(prefix="unwatermark-codec-") as tmp:
        probe_path = Path(tmp) / f"probe{choice.suffix}"
        writer = cv2.VideoWriter(
            str(probe_path), cv2.VideoWriter_fourcc(*choice.fourcc), 30.0, (16, 16)
        )
        try:
            return bool(writer.isOpened())
        finally:
            writer.release()


def negotiate_codec(mime_types: Sequence[str] = DEFAULT_VIDEO_MIME_TYPES) -> CodecChoice:
    """Pick the first supported codec from ``mime_types`` in order of preference."""

    for mime_type in mime_types:
        if mime_type not in CODECS:
            logger.warning("Ignoring unknown output mime type %s", mime_type)
            continue
        if is_codec_supported(mime_type):
            return CODECS[mime_type]
        logger.debug("Codec %s not supported by this OpenCV build", mime_type)
    raise UnsupportedCapabilityError(
        f"No supported video codec among: {', '.join(mime_types)}"
    )


class OpenCVVideoEncoder(IVideoEncoder):
    """Encode frames with :class:`cv2.VideoWriter` into a temporary file.

    The writer consumes frames as they are submitted. An attached audio track
    is remuxed into the output with ffmpeg when the session stops; without
    ffmpeg the video is delivered silent.
    """

    def __init__(
        self,
        mime_types: Sequence[str] = DEFAULT_VIDEO_MIME_TYPES,
        ffmpeg_binary: str = "ffmpeg",
    ) -> None:
        self._mime_types = tuple(mime_types)
        self._ffmpeg_binary = ffmpeg_binary
        self._codec: Optional[CodecChoice] = None
        self._writer: Optional[cv2.VideoWriter] = None
        self._workdir: Optional[Path] = None
        self._video_path: Optional[Path] = None
        self._audio_source: Optional[Path] = None
        self._size: Optional[Tuple[int, int]] = None
        self._frames_written = 0
        self._last_ts: Optional[float] = None

    @property
    def mime_type(self) -> str:
        return self._codec.mime_type if self._codec is not None else ""

    @property
    def frames_written(self) -> int:
        return self._frames_written

    async def start(self, width: int, height: int, fps: float) -> None:
        if self._writer is not None:
            raise EncodeError("Encoder session already started")
        if width <= 0 or height <= 0:
            raise EncodeError(f"Invalid frame size {width}x{height}")
        self._codec = await asyncio.to_thread(negotiate_codec, self._mime_types)
        self._workdir = Path(tempfile.mkdtemp(prefix="unwatermark-enc-"))
        self._video_path = self._workdir / f"video{self._codec.suffix}"
        writer = cv2.VideoWriter(
            str(self._video_path),
            cv2.VideoWriter_fourcc(*self._codec.fourcc),
            float(fps),
            (width, height),
        )
        if not writer.isOpened():
            writer.release()
            self.abort()
            raise EncodeError(f"Failed to open {self._codec.mime_type} writer")
        self._writer = writer
        self._size = (width, height)
        logger.info(
            "Encoder started: %s %dx%d @ %.3f fps", self._codec.mime_type, width, height, fps
        )

    def attach_audio(self, source_path: Path) -> None:
        if self._frames_written:
            raise EncodeError("Audio must be attached before the first frame")
        if self._audio_source is not None:
            raise EncodeError("Audio track already attached")
        self._audio_source = source_path

    def _write(self, frame_bgr: np.ndarray) -> None:
        assert self._writer is not None
        try:
            self._writer.write(frame_bgr)
        except cv2.error as exc:
            raise EncodeError(f"Frame write failed: {exc}") from exc

    async def submit(self, frame_bgr: np.ndarray, ts_sec: float) -> None:
        if self._writer is None or self._size is None:
            raise EncodeError("Encoder session not started")
        if self._last_ts is not None and ts_sec <= self._last_ts:
            raise EncodeError(
                f"Frames must be submitted in increasing order ({ts_sec} after {self._last_ts})"
            )
        height, width = frame_bgr.shape[:2]
        if (width, height) != self._size:
            raise EncodeError(
                f"Frame size {width}x{height} does not match session {self._size[0]}x{self._size[1]}"
            )
        await asyncio.to_thread(self._write, frame_bgr)
        self._frames_written += 1
        self._last_ts = ts_sec

    def _remux_audio(self, video_path: Path, audio_source: Path, codec: CodecChoice) -> Path:
        ffmpeg_bin = shutil.which(self._ffmpeg_binary)
        if ffmpeg_bin is None:
            logger.warning("ffmpeg not available; delivering video without audio.")
            return video_path
        output_path = video_path.with_name(f"muxed{codec.suffix}")
        remux_cmd = [
            ffmpeg_bin,
            "-y",
            "-hide_banner",
            "-loglevel",
            "error",
            "-i",
            str(video_path),
            "-i",
            str(audio_source),
            "-map",
            "0:v:0",
            "-map",
            "1:a:0?",
            "-c:v",
            "copy",
            "-c:a",
            codec.audio_codec,
            "-shortest",
            str(output_path),
        ]
        try:
            subprocess.run(remux_cmd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except subprocess.CalledProcessError as exc:
            logger.warning("Audio remux failed (%s); delivering video without audio.", exc)
            return video_path
        return output_path

    async def stop(self) -> MediaBlob:
        if self._writer is None or self._codec is None or self._video_path is None:
            raise EncodeError("Encoder session not started")
        codec = self._codec
        try:
            await asyncio.to_thread(self._writer.release)
            self._writer = None
            if self._frames_written == 0:
                raise EncodeError("No frames were submitted")
            final_path = self._video_path
            if self._audio_source is not None:
                final_path = await asyncio.to_thread(
                    self._remux_audio, self._video_path, self._audio_source, codec
                )
            try:
                data = final_path.read_bytes() if final_path.exists() else b""
            except OSError as exc:
                raise EncodeError(f"Failed to read encoded output: {exc}") from exc
            if not data:
                raise EncodeError("Encoder produced no output")
        finally:
            self.abort()
        logger.info("Encoder stopped: %d frames, %d bytes", self._frames_written, len(data))
        return MediaBlob(data=data, mime_type=codec.mime_type)

    def abort(self) -> None:
        if self._writer is not None:
            self._writer.release()
            self._writer = None
        if self._workdir is not None:
            shutil.rmtree(self._workdir, ignore_errors=True)
            self._workdir = None
