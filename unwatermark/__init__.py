"""Watermark removal for images and videos."""

from .config import PipelineConfig, ProbeMode
from .errors import (
    DecodeError,
    EncodeError,
    TransformError,
    UnsupportedCapabilityError,
    UnwatermarkError,
    ValidationError,
)
from .models import BatchState, Job, JobKind, JobStatus, MediaBlob, MediaSource
from .packaging import PackagingService
from .pipeline import VideoPipeline
from .scheduler import BatchScheduler
from .cli import main

__all__ = [
    "PipelineConfig",
    "ProbeMode",
    "UnwatermarkError",
    "ValidationError",
    "DecodeError",
    "TransformError",
    "EncodeError",
    "UnsupportedCapabilityError",
    "BatchState",
    "Job",
    "JobKind",
    "JobStatus",
    "MediaBlob",
    "MediaSource",
    "PackagingService",
    "VideoPipeline",
    "BatchScheduler",
    "main",
]
