"""Export of completed job outputs as files or a single zip archive."""

from __future__ import annotations

import io
import logging
import time
import zipfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .models import BatchState, Job, JobKind, JobStatus

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "unwatermarked"
EXTENSIONS: Dict[JobKind, str] = {JobKind.IMAGE: "png", JobKind.VIDEO: "webm"}


def output_filename(job: Job, prefix: str = DEFAULT_PREFIX) -> str:
    """Return ``<prefix>_<baseName>.<ext>`` for a job's output."""

    return f"{prefix}_{job.source.base_name}.{EXTENSIONS[job.kind]}"


def _unique(name: str, used: Dict[str, int]) -> str:
    count = used.get(name, 0)
    used[name] = count + 1
    if count == 0:
        return name
    stem, dot, ext = name.rpartition(".")
    candidate = f"{stem}_{count + 1}{dot}{ext}"
    return _unique(candidate, used)


class PackagingService:
    """Bundle the outputs of completed jobs."""

    def __init__(self, prefix: str = DEFAULT_PREFIX) -> None:
        self._prefix = prefix

    def entries(self, state: BatchState) -> List[Tuple[str, Job]]:
        """Return ``(entry name, job)`` for every completed job, in batch order."""

        used: Dict[str, int] = {}
        entries: List[Tuple[str, Job]] = []
        for job in state.jobs:
            if job.status is not JobStatus.COMPLETED or job.output is None:
                continue
            entries.append((_unique(output_filename(job, self._prefix), used), job))
        return entries

    def archive_name(self, timestamp_ms: Optional[int] = None) -> str:
        stamp = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
        return f"{self._prefix}_{stamp}.zip"

    def build_archive(self, state: BatchState) -> bytes:
        """Return a zip archive with one entry per completed job."""

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            for name, job in self.entries(state):
                assert job.output is not None
                archive.writestr(name, job.output.data)
        return buffer.getvalue()

    def write_archive(self, state: BatchState, directory: Path, name: Optional[str] = None) -> Optional[Path]:
        """Write the archive into ``directory``; return None when nothing completed."""

        if not self.entries(state):
            logger.info("No completed jobs; skipping archive")
            return None
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / (name or self.archive_name())
        path.write_bytes(self.build_archive(state))
        logger.info("Wrote archive %s", path)
        return path

    def save_outputs(self, state: BatchState, directory: Path) -> List[Path]:
        """Write each completed output as its own file."""

        directory.mkdir(parents=True, exist_ok=True)
        written: List[Path] = []
        for name, job in self.entries(state):
            assert job.output is not None
            path = directory / name
            path.write_bytes(job.output.data)
            written.append(path)
        return written
