"""Factory helpers for assembling the scheduler from configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from .config import PipelineConfig, ProbeMode
from .encoders import OpenCVVideoEncoder
from .frame_rate import ContainerFrameRateProbe, FrameRateProbe
from .interfaces import IBatchObserver, IFrameRateProbe, IPipelineFactory, IWatermarkRemover
from .models import Job
from .pipeline import VideoPipeline
from .removers import InpaintWatermarkRemover
from .scheduler import BatchScheduler
from .video_reader import OpenCVFrameSource


def build_probe(cfg: PipelineConfig) -> IFrameRateProbe:
    """Instantiate the frame-rate probe."""

    sampling = FrameRateProbe(cfg.probe_samples, cfg.probe_timeout_s, cfg.default_fps)
    if cfg.probe_mode is ProbeMode.SAMPLING:
        return sampling
    return ContainerFrameRateProbe(sampling)


def build_pipeline_factory(cfg: PipelineConfig, remover: IWatermarkRemover) -> IPipelineFactory:
    """Return a callable creating one :class:`VideoPipeline` per video job."""

    def factory(job: Job, path: Path) -> VideoPipeline:
        source = OpenCVFrameSource(path, ffprobe_binary=cfg.ffprobe_binary)
        encoder = OpenCVVideoEncoder(cfg.video_mime_types, cfg.ffmpeg_binary)
        return VideoPipeline(source, remover, encoder, build_probe(cfg))

    return factory


def build_scheduler(
    cfg: PipelineConfig,
    remover: Optional[IWatermarkRemover] = None,
    observer: Optional[IBatchObserver] = None,
) -> BatchScheduler:
    """Assemble the full :class:`BatchScheduler`."""

    remover = remover or InpaintWatermarkRemover(cfg.inpaint_radius)
    return BatchScheduler(
        remover,
        build_pipeline_factory(cfg, remover),
        observer=observer,
        concurrency=cfg.concurrency,
    )
