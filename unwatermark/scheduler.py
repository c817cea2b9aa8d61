"""Batch scheduling of image and video jobs under a concurrency ceiling."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from .interfaces import IBatchObserver, IPipelineFactory, IWatermarkRemover
from .models import (
    BatchState,
    Job,
    JobError,
    JobIdAllocator,
    JobKind,
    MediaBlob,
    MediaSource,
    WatermarkInfo,
    classify,
)
from .pipeline import remove_watermark_from_image

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 3


class LoggingBatchObserver(IBatchObserver):
    """Report job and batch progress through :mod:`logging`."""

    def job_updated(self, job: Job) -> None:
        logger.debug("Job %s %s: %s %d%%", job.id, job.name, job.status.value, job.progress_percent)

    def batch_progress(self, processed: int, total: int) -> None:
        logger.info("Progress: %d/%d", processed, total)


class BatchScheduler:
    """Own one batch of jobs and process it in fixed windows of ``concurrency``.

    Window ``k + 1`` starts only once every job of window ``k`` is terminal.
    A job is claimed only while pending, so overlapping calls to :meth:`run`
    or :meth:`dispatch_next` never process a job twice, and dispatch is
    serialised so no more than ``concurrency`` jobs are ever processing.
    """

    def __init__(
        self,
        remover: IWatermarkRemover,
        pipeline_factory: IPipelineFactory,
        observer: Optional[IBatchObserver] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        if concurrency <= 0:
            raise ValueError("concurrency must be >= 1")
        self._remover = remover
        self._pipeline_factory = pipeline_factory
        self._observer = observer or LoggingBatchObserver()
        self._concurrency = concurrency
        self._ids = JobIdAllocator()
        self._state = BatchState([])
        self._dispatch_lock = asyncio.Lock()

    @property
    def state(self) -> BatchState:
        return self._state

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def enqueue(self, sources: Iterable[MediaSource]) -> BatchState:
        """Replace the current batch with one pending job per source."""

        jobs = [
            Job(id=self._ids.next_id(), kind=classify(src.name, src.mime_type), source=src)
            for src in sources
        ]
        self._state.release()
        self._state = BatchState(jobs)
        logger.info("Enqueued %d job(s)", len(jobs))
        self._emit_batch_progress(self._state)
        return self._state

    def resubmit(self, jobs: Iterable[Job]) -> BatchState:
        """Start a new batch over the sources of ``jobs`` (e.g. the failed ones)."""

        return self.enqueue([job.source for job in jobs])

    def reset(self) -> None:
        """Discard the current batch; in-flight results are dropped when they land."""

        self._state.release()
        self._state = BatchState([])

    def summary(self) -> Dict[str, int]:
        state = self._state
        completed = len(state.completed())
        failed = len(state.failed())
        return {
            "total": state.total_count,
            "processed": state.processed_count,
            "completed": completed,
            "failed": failed,
            "pending": state.total_count - completed - failed - len(state.processing()),
        }

    async def dispatch_next(self) -> bool:
        """Process the next window of the current batch; False when none is left."""

        return await self._dispatch(self._state)

    async def run(self) -> BatchState:
        """Process every remaining window of the current batch."""

        state = self._state
        while await self._dispatch(state):
            pass
        return state

    async def _dispatch(self, state: BatchState) -> bool:
        async with self._dispatch_lock:
            if state is not self._state or state.cursor >= len(state.jobs):
                return False
            window: List[Job] = state.jobs[state.cursor : state.cursor + self._concurrency]
            state.cursor += len(window)
            await asyncio.gather(*(self._run_job(state, job) for job in window))
            return True

    def _is_current(self, state: BatchState) -> bool:
        return state is self._state

    async def _run_job(self, state: BatchState, job: Job) -> None:
        if not job.claim():
            return
        logger.info("Processing job %s (%s, %s)", job.id, job.kind.value, job.name)
        self._emit_job(job)
        try:
            output, watermark = await self._process(state, job)
        except Exception as exc:
            if not self._is_current(state):
                self._discard(job)
                return
            logger.error("Job %s (%s) failed: %s", job.id, job.name, exc, exc_info=True)
            job.fail(JobError.from_exception(exc))
        else:
            if not self._is_current(state):
                self._discard(job)
                return
            job.watermark = watermark
            job.complete(output)
            logger.info("Completed job %s (%d bytes, %s)", job.id, output.size, output.mime_type)
        state.record_terminal()
        self._emit_job(job)
        self._emit_batch_progress(state)

    async def _process(
        self, state: BatchState, job: Job
    ) -> Tuple[MediaBlob, Optional[WatermarkInfo]]:
        if job.kind is JobKind.VIDEO:
            path = job.local_path()
            pipeline = await asyncio.to_thread(self._pipeline_factory, job, path)

            def on_progress(percent: int) -> None:
                if not self._is_current(state):
                    return
                job.set_progress(percent)
                self._emit_job(job)

            return await pipeline.run(on_progress), None

        data = await asyncio.to_thread(job.source.read_bytes)
        return await remove_watermark_from_image(data, self._remover)

    def _discard(self, job: Job) -> None:
        logger.debug("Dropping result of job %s from a discarded batch", job.id)
        job.release_handles()

    def _emit_job(self, job: Job) -> None:
        try:
            self._observer.job_updated(job)
        except Exception:
            logger.exception("Batch observer failed on job %s", job.id)

    def _emit_batch_progress(self, state: BatchState) -> None:
        try:
            self._observer.batch_progress(state.processed_count, state.total_count)
        except Exception:
            logger.exception("Batch observer failed on batch progress")
