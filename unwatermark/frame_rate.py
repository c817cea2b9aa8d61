"""Frame-rate discovery for sources with unknown native timing."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from .errors import DecodeError, UnsupportedCapabilityError
from .interfaces import IFrameRateProbe, IFrameSource

logger = logging.getLogger(__name__)

DEFAULT_FPS = 30.0


class FrameRateProbe(IFrameRateProbe):
    """Estimate fps from the first frame-delivery events of a transient playback.

    ``samples`` events are collected; the estimate is ``samples`` divided by
    the time between the first and the last event. Any shortfall (too few
    events, timeout, playback unsupported) returns ``default_fps``.
    """

    def __init__(
        self,
        samples: int = 10,
        timeout_s: float = 2.0,
        default_fps: float = DEFAULT_FPS,
    ) -> None:
        if samples < 2:
            raise ValueError("samples must be >= 2")
        if timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")
        self._samples = samples
        self._timeout_s = timeout_s
        self._default_fps = default_fps

    async def _sample(self, events: AsyncIterator[float]) -> float:
        first_ts = None
        count = 0
        async for ts in events:
            if first_ts is None:
                first_ts = ts
            count += 1
            if count >= self._samples:
                elapsed = ts - first_ts
                if elapsed <= 0:
                    logger.debug("Non-increasing frame timestamps; using default fps.")
                    return self._default_fps
                return count / elapsed
        logger.debug("Only %d frame events before end of stream; using default fps.", count)
        return self._default_fps

    async def estimate(self, source: IFrameSource) -> float:
        try:
            events = source.playback()
        except UnsupportedCapabilityError:
            logger.debug("Source cannot play; using default fps %.1f.", self._default_fps)
            return self._default_fps
        try:
            return await asyncio.wait_for(self._sample(events), timeout=self._timeout_s)
        except asyncio.TimeoutError:
            logger.debug("Frame-rate probe timed out after %.1fs.", self._timeout_s)
            return self._default_fps
        except (UnsupportedCapabilityError, DecodeError) as exc:
            logger.debug("Frame-rate probe playback failed (%s); using default fps.", exc)
            return self._default_fps
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()
            await source.stop_playback()


class ContainerFrameRateProbe(IFrameRateProbe):
    """Use the container's fps metadata and sample only when it is missing."""

    def __init__(self, fallback: FrameRateProbe) -> None:
        self._fallback = fallback

    async def estimate(self, source: IFrameSource) -> float:
        fps = source.info().fps_hint
        if fps and fps > 0:
            return float(fps)
        return await self._fallback.estimate(source)
