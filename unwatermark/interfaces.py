"""Core protocol interfaces used across the pipeline."""

from __future__ import annotations

from pathlib import Path
from typing import AsyncIterator, Awaitable, Optional, Protocol, Union

import numpy as np

from .models import Job, MediaBlob, VideoInfo, WatermarkInfo


class IFrameSource(Protocol):
    """A decodable video that can be seeked to arbitrary timestamps."""

    @property
    def path(self) -> Path:
        """Location of the underlying media."""

    def info(self) -> VideoInfo:
        """Return metadata such as width, height, duration and audio presence."""

    async def seek(self, ts_sec: float) -> np.ndarray:
        """Seek to ``ts_sec`` and return the decoded BGR frame shown there."""

    def playback(self) -> AsyncIterator[float]:
        """Play the video transiently, yielding one timestamp per delivered frame.

        Raises :class:`~unwatermark.errors.UnsupportedCapabilityError` when the
        source cannot play.
        """

    async def stop_playback(self) -> None:
        """Stop a transient playback and rewind."""

    def close(self) -> None:
        """Release the decoder and any temporary handles."""


class IWatermarkRemover(Protocol):
    """Opaque capability that removes the known overlay from a frame."""

    def remove_watermark(
        self, frame_bgr: np.ndarray
    ) -> Union[np.ndarray, Awaitable[np.ndarray]]:
        """Return the frame with the watermark removed (may be a coroutine)."""

    def watermark_info(self, width: int, height: int) -> WatermarkInfo:
        """Return the watermark bounding box for an image of the given size."""


class IFrameRateProbe(Protocol):
    """Estimates a video's frame rate."""

    async def estimate(self, source: IFrameSource) -> float:
        """Return frames per second."""


class IVideoEncoder(Protocol):
    """Accepts a live sequence of frames and produces one encoded blob."""

    @property
    def mime_type(self) -> str:
        """Negotiated mime type, available once the session started."""

    async def start(self, width: int, height: int, fps: float) -> None:
        """Negotiate a codec and open the session."""

    def attach_audio(self, source_path: Path) -> None:
        """Carry the audio track of ``source_path`` into the output."""

    async def submit(self, frame_bgr: np.ndarray, ts_sec: float) -> None:
        """Draw a frame and signal the session that it is ready."""

    async def stop(self) -> MediaBlob:
        """Flush buffered data and return the encoded output."""

    def abort(self) -> None:
        """Discard the session and any partial bytes."""


class IProgressSink(Protocol):
    """Receives per-video progress in whole percent."""

    def __call__(self, percent: int) -> None:
        """Report progress in the range 0..100."""


class IBatchObserver(Protocol):
    """Receives job and batch updates from the scheduler."""

    def job_updated(self, job: Job) -> None:
        """Called after every status or progress change of a job."""

    def batch_progress(self, processed: int, total: int) -> None:
        """Called after each job reaches a terminal state."""


class IPipelineFactory(Protocol):
    """Creates a video pipeline for one job."""

    def __call__(self, job: Job, path: Path) -> "IVideoPipeline":
        """Return a pipeline reading from ``path``."""


class IVideoPipeline(Protocol):
    async def run(self, progress: Optional[IProgressSink] = None) -> MediaBlob:
        """Process the whole video and return the encoded output."""
