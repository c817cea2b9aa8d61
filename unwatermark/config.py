"""Configuration models for the unwatermark tool."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Tuple


class ProbeMode(str, Enum):
    """Strategies used to discover a video's frame rate."""

    METADATA = "metadata"  # container fps, sampling as fallback
    SAMPLING = "sampling"


DEFAULT_VIDEO_MIME_TYPES: Tuple[str, ...] = (
    "video/webm;codecs=vp9",
    "video/webm;codecs=vp8",
    "video/webm",
    "video/mp4",
)


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable container with pipeline configuration options."""

    # IO
    inputs: Tuple[Path, ...]
    output_dir: Path

    # Scheduling
    concurrency: int = 3

    # Frame-rate discovery
    probe_mode: ProbeMode = ProbeMode.METADATA
    probe_samples: int = 10
    probe_timeout_s: float = 2.0
    default_fps: float = 30.0

    # Encoding
    video_mime_types: Tuple[str, ...] = field(default=DEFAULT_VIDEO_MIME_TYPES)
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"

    # Watermark removal
    inpaint_radius: int = 3

    # Export
    output_prefix: str = "unwatermarked"
    write_archive: bool = False
    write_report: bool = True

    # Logging
    log_level: str = "INFO"
    log_json: bool = False
