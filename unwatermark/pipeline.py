"""Pipeline orchestration."""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
import time
from typing import Dict, Iterator, Optional, Tuple

import cv2
import numpy as np

from .errors import DecodeError, EncodeError, TransformError
from .interfaces import (
    IFrameRateProbe,
    IFrameSource,
    IProgressSink,
    IVideoEncoder,
    IWatermarkRemover,
)
from .models import FrameSample, MediaBlob, WatermarkInfo

logger = logging.getLogger(__name__)

PNG_MIME_TYPE = "image/png"


def sample_timestamps(duration_s: float, fps: float) -> Iterator[Tuple[int, float]]:
    """Yield ``(index, timestamp)`` pairs covering ``[0, duration_s]``.

    Timestamps are derived from the integer index rather than accumulated, so
    long videos do not drift, and the last one is exactly ``duration_s``.
    """

    if not math.isfinite(fps) or fps <= 0:
        raise ValueError(f"fps must be a positive number, got {fps}")
    if not math.isfinite(duration_s) or duration_s < 0:
        raise ValueError(f"duration must be a non-negative number, got {duration_s}")
    interval = 1.0 / fps
    # Rounding absorbs representation error such as 10 * 25 == 250.00000000000003.
    steps = math.ceil(round(duration_s * fps, 9))
    for idx in range(steps + 1):
        yield idx, duration_s if idx == steps else min(idx * interval, duration_s)


def progress_percent(ts_sec: float, duration_s: float) -> int:
    if duration_s <= 0:
        return 100
    return max(0, min(100, math.floor(ts_sec / duration_s * 100)))


async def _call_remover(
    remover: IWatermarkRemover, frame_bgr: np.ndarray, where: str = ""
) -> np.ndarray:
    try:
        result = remover.remove_watermark(frame_bgr)
        if inspect.isawaitable(result):
            result = await result
    except TransformError:
        raise
    except Exception as exc:
        raise TransformError(f"Watermark removal failed{where}: {exc}") from exc
    if not isinstance(result, np.ndarray):
        raise TransformError(f"Watermark remover returned {type(result).__name__}, not an image")
    return result


class VideoPipeline:
    """Coordinate seeking, watermark removal, and re-encoding of one video."""

    def __init__(
        self,
        source: IFrameSource,
        remover: IWatermarkRemover,
        encoder: IVideoEncoder,
        probe: IFrameRateProbe,
    ) -> None:
        self._source = source
        self._remover = remover
        self._encoder = encoder
        self._probe = probe
        self.stats: Dict[str, float] = {}

    async def _process_sample(self, sample: FrameSample) -> None:
        where = f" on frame {sample.index} ({sample.timestamp_s:.3f}s)"
        sample.transformed = await _call_remover(self._remover, sample.frame, where)
        await self._encoder.submit(sample.transformed, sample.timestamp_s)

    async def run(self, progress: Optional[IProgressSink] = None) -> MediaBlob:
        start = time.time()
        sampled = 0
        try:
            info = self._source.info()
            duration = info.duration_s
            if not math.isfinite(duration) or duration < 0:
                raise DecodeError(f"Unusable video duration: {duration}")
            fps = await self._probe.estimate(self._source)
            logger.debug("%s: %.3fs at %.3f fps", self._source.path.name, duration, fps)

            await self._encoder.start(info.width, info.height, fps)
            if info.has_audio:
                self._encoder.attach_audio(self._source.path)

            for idx, ts in sample_timestamps(duration, fps):
                frame = await self._source.seek(ts)
                await self._process_sample(FrameSample(idx, ts, frame))
                sampled += 1
                if progress is not None:
                    progress(progress_percent(ts, duration))

            blob = await self._encoder.stop()
        except BaseException:
            self._encoder.abort()
            raise
        finally:
            self._source.close()

        if progress is not None:
            progress(100)
        self.stats = {
            "frames_sampled": float(sampled),
            "fps": float(fps),
            "duration_s": float(duration),
            "elapsed_s": float(time.time() - start),
            "output_bytes": float(blob.size),
        }
        return blob


def _decode_image(data: bytes) -> np.ndarray:
    buffer = np.frombuffer(data, dtype=np.uint8)
    try:
        image = cv2.imdecode(buffer, cv2.IMREAD_COLOR) if buffer.size else None
    except cv2.error as exc:
        raise DecodeError(f"Failed to decode image: {exc}") from exc
    if image is None:
        raise DecodeError("Failed to decode image")
    return image


def _encode_png(image_bgr: np.ndarray) -> bytes:
    ok, encoded = cv2.imencode(".png", image_bgr)
    if not ok:
        raise EncodeError("Failed to encode PNG")
    return encoded.tobytes()


async def remove_watermark_from_image(
    data: bytes, remover: IWatermarkRemover
) -> Tuple[MediaBlob, WatermarkInfo]:
    """Decode an image once, remove the watermark once and re-encode as PNG."""

    image = await asyncio.to_thread(_decode_image, data)
    height, width = image.shape[:2]
    watermark = remover.watermark_info(width, height)
    result = await _call_remover(remover, image)
    try:
        encoded = await asyncio.to_thread(_encode_png, result)
    except cv2.error as exc:
        raise EncodeError(f"Failed to encode PNG: {exc}") from exc
    return MediaBlob(data=encoded, mime_type=PNG_MIME_TYPE), watermark

