"""Video reader implementations."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import subprocess
import threading
from pathlib import Path
from typing import AsyncIterator, Optional

import cv2
import numpy as np

from .errors import DecodeError
from .interfaces import IFrameSource
from .models import VideoInfo

logger = logging.getLogger(__name__)


def probe_audio(path: Path, ffprobe_binary: str = "ffprobe") -> bool:
    """Return True when ``path`` carries at least one audio stream."""

    binary = shutil.which(ffprobe_binary)
    if binary is None:
        logger.debug("%s not found; assuming %s has no audio.", ffprobe_binary, path.name)
        return False
    cmd = [
        binary,
        "-v",
        "error",
        "-select_streams",
        "a",
        "-show_entries",
        "stream=index",
        "-of",
        "json",
        str(path),
    ]
    try:
        result = subprocess.run(cmd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        payload = json.loads(result.stdout.decode("utf-8") or "{}")
    except (subprocess.CalledProcessError, json.JSONDecodeError) as exc:
        logger.warning("Audio probe failed for %s (%s); continuing without audio.", path.name, exc)
        return False
    return bool(payload.get("streams"))


class OpenCVFrameSource(IFrameSource):
    """Seekable frame source based on :mod:`cv2`."""

    def __init__(
        self,
        path: Path,
        *,
        has_audio: Optional[bool] = None,
        ffprobe_binary: str = "ffprobe",
    ) -> None:
        if not path.exists():
            raise DecodeError(f"Video not found: {path}")
        self._path = path
        self._cap = cv2.VideoCapture(str(path))
        if not self._cap.isOpened():
            raise DecodeError(f"Failed to open video: {path.name}")
        self._fps = float(self._cap.get(cv2.CAP_PROP_FPS) or 0.0)
        self._frame_count = int(self._cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
        self._width = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self._height = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        if self._fps > 0 and self._frame_count > 0:
            self._duration = self._frame_count / self._fps
        else:
            self._duration = self._measure_length()
        self._has_audio = probe_audio(path, ffprobe_binary) if has_audio is None else has_audio
        # Guards the capture; cancelled reads still finish on their worker thread.
        self._lock = threading.Lock()
        self._next_idx = 0
        self._last_idx: Optional[int] = None
        self._last_frame: Optional[np.ndarray] = None
        self._closed = False

    @property
    def path(self) -> Path:
        return self._path

    def _measure_length(self) -> float:
        """Walk the stream once when the container carries no frame count.

        Streamed webm and mkv files often report zero frames. The walk counts
        frames with ``grab()`` and rewinds; a stream with no decodable frame
        raises :class:`DecodeError`.
        """

        count = 0
        last_ts = 0.0
        while self._cap.grab():
            count += 1
            last_ts = float(self._cap.get(cv2.CAP_PROP_POS_MSEC)) / 1000.0
        self._cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
        if count == 0:
            self._cap.release()
            raise DecodeError(f"Could not determine the length of {self._path.name}")
        logger.info("%s reports no frame count; measured %d frames.", self._path.name, count)
        self._frame_count = count
        if self._fps > 0:
            return count / self._fps
        return last_ts

    def info(self) -> VideoInfo:
        return VideoInfo(
            width=self._width,
            height=self._height,
            duration_s=self._duration,
            fps_hint=self._fps,
            frame_count=self._frame_count,
            has_audio=self._has_audio,
        )

    def _frame_index(self, ts_sec: float) -> int:
        idx = int(round(ts_sec * self._fps))
        if self._frame_count > 0:
            idx = min(idx, self._frame_count - 1)
        return max(idx, 0)

    def _seek_sync(self, ts_sec: float) -> np.ndarray:
        with self._lock:
            if self._closed:
                raise DecodeError("Source already closed")
            if self._fps <= 0:
                self._cap.set(cv2.CAP_PROP_POS_MSEC, ts_sec * 1000.0)
                ok, frame = self._cap.read()
                if not ok or frame is None:
                    raise DecodeError(f"Failed to decode frame at {ts_sec:.3f}s")
                return frame
            idx = self._frame_index(ts_sec)
            if idx == self._last_idx and self._last_frame is not None:
                return self._last_frame.copy()
            if idx != self._next_idx:
                self._cap.set(cv2.CAP_PROP_POS_FRAMES, idx)
            ok, frame = self._cap.read()
            if not ok or frame is None:
                self._next_idx = -1
                raise DecodeError(f"Failed to decode frame {idx} at {ts_sec:.3f}s")
            self._last_idx = idx
            self._next_idx = idx + 1
            self._last_frame = frame
            return frame.copy()

    async def seek(self, ts_sec: float) -> np.ndarray:
        return await asyncio.to_thread(self._seek_sync, ts_sec)

    def _rewind_sync(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
            self._next_idx = 0
            self._last_idx = None
            self._last_frame = None

    def _grab_timestamp(self) -> Optional[float]:
        with self._lock:
            if self._closed or not self._cap.grab():
                return None
            self._next_idx = -1
            return float(self._cap.get(cv2.CAP_PROP_POS_MSEC)) / 1000.0

    async def playback(self) -> AsyncIterator[float]:
        await asyncio.to_thread(self._rewind_sync)
        while True:
            ts = await asyncio.to_thread(self._grab_timestamp)
            if ts is None:
                return
            yield ts

    async def stop_playback(self) -> None:
        await asyncio.to_thread(self._rewind_sync)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._cap.release()
            self._last_frame = None
