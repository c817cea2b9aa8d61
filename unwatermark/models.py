"""Data model for jobs, batches and media payloads."""

from __future__ import annotations

import re
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Union

import numpy as np

from .errors import InvalidTransitionError, ValidationError

MAX_IMAGE_BYTES = 20 * 1024 * 1024
MAX_VIDEO_BYTES = 500 * 1024 * 1024

_IMAGE_MIME_RE = re.compile(r"^image/(jpeg|png|webp)$")
_VIDEO_MIME_RE = re.compile(r"^video/(mp4|webm|quicktime)$")
_VIDEO_SUFFIXES = {".mp4", ".webm", ".mov"}
_IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp"}


class JobKind(str, Enum):
    """Kind of media a job processes."""

    IMAGE = "image"
    VIDEO = "video"


class JobStatus(str, Enum):
    """Lifecycle state of a job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


@dataclass(frozen=True)
class MediaBlob:
    """Encoded output bytes tagged with their mime type."""

    data: bytes
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class JobError:
    """Error recorded on a failed job."""

    kind: str
    message: str

    @classmethod
    def from_exception(cls, exc: BaseException) -> "JobError":
        return cls(kind=type(exc).__name__, message=str(exc) or type(exc).__name__)


@dataclass(frozen=True)
class WatermarkPosition:
    x: int
    y: int


@dataclass(frozen=True)
class WatermarkInfo:
    """Bounding box of the watermark for a given image size."""

    size: int
    position: WatermarkPosition
    width: int
    height: int


@dataclass(frozen=True)
class VideoInfo:
    """Metadata about a decodable video."""

    width: int
    height: int
    duration_s: float
    fps_hint: float = 0.0
    frame_count: int = 0
    has_audio: bool = False


@dataclass
class FrameSample:
    """One pipeline iteration: a timestamp and its raw and processed frames."""

    index: int
    timestamp_s: float
    frame: np.ndarray
    transformed: Optional[np.ndarray] = None


@dataclass(frozen=True)
class MediaSource:
    """Original content handed to a job, held in memory or on disk."""

    name: str
    content: Union[bytes, Path]
    mime_type: Optional[str] = None

    @classmethod
    def from_path(cls, path: Path, mime_type: Optional[str] = None) -> "MediaSource":
        return cls(name=path.name, content=path, mime_type=mime_type)

    @property
    def base_name(self) -> str:
        """File name without its final extension."""

        return re.sub(r"\.[^.]+$", "", self.name)

    @property
    def size(self) -> int:
        if isinstance(self.content, Path):
            return self.content.stat().st_size
        return len(self.content)

    def read_bytes(self) -> bytes:
        if isinstance(self.content, Path):
            return self.content.read_bytes()
        return self.content


class TemporaryHandle:
    """A temporary file or directory derived from a job's source."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.released = False

    def release(self) -> None:
        if self.released:
            return
        if self.path.is_dir():
            shutil.rmtree(self.path, ignore_errors=True)
        else:
            self.path.unlink(missing_ok=True)
        self.released = True

    def __repr__(self) -> str:
        return f"TemporaryHandle({str(self.path)!r}, released={self.released})"


def classify(name: str, mime_type: Optional[str] = None) -> JobKind:
    """Return the job kind for an accepted file."""

    mime = (mime_type or "").lower()
    suffix = Path(name).suffix.lower()
    if mime.startswith("video/") or suffix in _VIDEO_SUFFIXES:
        return JobKind.VIDEO
    return JobKind.IMAGE


def validate(source: MediaSource) -> JobKind:
    """Check type and size limits of a source and return its kind.

    Raises :class:`ValidationError` for files the tool does not accept.
    """

    mime = (source.mime_type or "").lower()
    suffix = Path(source.name).suffix.lower()
    if _IMAGE_MIME_RE.match(mime) or (not mime and suffix in _IMAGE_SUFFIXES):
        if source.size > MAX_IMAGE_BYTES:
            raise ValidationError(f"{source.name}: image larger than 20MB")
        return JobKind.IMAGE
    if _VIDEO_MIME_RE.match(mime) or suffix in _VIDEO_SUFFIXES:
        if source.size > MAX_VIDEO_BYTES:
            raise ValidationError(f"{source.name}: video larger than 500MB")
        return JobKind.VIDEO
    raise ValidationError(f"{source.name}: unsupported file type")


class JobIdAllocator:
    """Hand out increasing integer ids derived from the millisecond clock."""

    def __init__(self) -> None:
        self._last = 0

    def next_id(self) -> int:
        now_ms = int(time.time() * 1000)
        self._last = max(self._last + 1, now_ms)
        return self._last


@dataclass
class Job:
    """One image or video unit of work."""

    id: int
    kind: JobKind
    source: MediaSource
    status: JobStatus = JobStatus.PENDING
    output: Optional[MediaBlob] = None
    error: Optional[JobError] = None
    progress_percent: int = 0
    watermark: Optional[WatermarkInfo] = None
    handles: List[TemporaryHandle] = field(default_factory=list, repr=False)

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    def _transition(self, target: JobStatus) -> None:
        if target not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Job {self.id}: {self.status.value} -> {target.value} is not allowed"
            )
        self.status = target

    def claim(self) -> bool:
        """Move a pending job to processing; return False if it is not pending."""

        if self.status is not JobStatus.PENDING:
            return False
        self._transition(JobStatus.PROCESSING)
        self.progress_percent = 0
        return True

    def complete(self, output: MediaBlob) -> None:
        self._transition(JobStatus.COMPLETED)
        self.output = output
        self.progress_percent = 100

    def fail(self, error: JobError) -> None:
        self._transition(JobStatus.FAILED)
        self.error = error

    def set_progress(self, percent: int) -> None:
        self.progress_percent = max(self.progress_percent, min(100, int(percent)))

    def local_path(self) -> Path:
        """Return a filesystem path to the source, materialising it if needed."""

        if isinstance(self.source.content, Path):
            return self.source.content
        suffix = Path(self.source.name).suffix
        fd, raw_path = tempfile.mkstemp(prefix=f"unwatermark-{self.id}-", suffix=suffix)
        path = Path(raw_path)
        with open(fd, "wb") as handle:
            handle.write(self.source.content)
        self.handles.append(TemporaryHandle(path))
        return path

    def release_handles(self) -> None:
        for handle in self.handles:
            handle.release()
        self.handles.clear()


@dataclass
class BatchState:
    """Jobs of one batch with their aggregate counters."""

    jobs: List[Job]
    total_count: int = 0
    processed_count: int = 0
    cursor: int = 0

    def __post_init__(self) -> None:
        self.total_count = len(self.jobs)

    def record_terminal(self) -> None:
        self.processed_count += 1

    def completed(self) -> List[Job]:
        return [job for job in self.jobs if job.status is JobStatus.COMPLETED]

    def failed(self) -> List[Job]:
        return [job for job in self.jobs if job.status is JobStatus.FAILED]

    def processing(self) -> List[Job]:
        return [job for job in self.jobs if job.status is JobStatus.PROCESSING]

    @property
    def finished(self) -> bool:
        return self.processed_count >= self.total_count

    def release(self) -> None:
        for job in self.jobs:
            job.release_handles()
