from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any, TypeVar

from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from ..errors import InvalidJobError, JobNotFoundError, JobStateError, StageTimeoutError, TransientProcessingError
from ..settings import settings
from .batching import batched
from .models import (
    STAGES,
    ItemError,
    JobCheckpoint,
    JobRequest,
    JobStatus,
    PipelineProgress,
    ProcessingError,
    ProcessingJob,
    ProcessingStage,
    QueueStats,
)
from .stages import StageHandler, default_stage_handlers

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

ProgressCallback = Callable[[PipelineProgress], None]


@dataclass
class QueueConfig:
    batch_size: int = settings.batch_size
    workers: int = settings.workers
    concurrency: int = settings.concurrency
    stage_timeout: float = settings.stage_timeout
    retry_attempts: int = settings.retry_attempts
    retry_delay: float = settings.retry_delay


class ProcessingQueue:
    """In-memory job queue with a fixed pool of asyncio workers.

    Jobs move pending -> in_progress -> completed | failed | cancelled.
    A job is mutated only by the worker running it, apart from `cancel`,
    which flips the status and lets the worker observe it at the next
    batch or stage boundary.

    Use as an async context manager, or call `start()` / `stop()`.
    """

    def __init__(
        self,
        config: QueueConfig | None = None,
        handlers: Mapping[ProcessingStage, StageHandler] | None = None,
    ):
        self.config = config or QueueConfig()
        self.handlers: dict[ProcessingStage, StageHandler] = (
            dict(handlers) if handlers is not None else default_stage_handlers()
        )
        self._jobs: dict[str, ProcessingJob] = {}
        self._done: dict[str, asyncio.Event] = {}
        self._callbacks: dict[str, list[ProgressCallback]] = {}
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._workers: list[asyncio.Task] = []

    async def __aenter__(self) -> ProcessingQueue:
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    # --- lifecycle ---

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._workers)

    def start(self) -> None:
        if self.running:
            return
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"taxonomy-worker-{n}") for n in range(self.config.workers)
        ]
        logger.debug("started %d workers", len(self._workers))

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

    # --- job control ---

    async def submit(self, request: JobRequest | Mapping[str, Any], *, start: bool = True) -> str:
        """Validate and enqueue a job; returns its id."""
        if not isinstance(request, JobRequest):
            try:
                request = JobRequest.model_validate(request)
            except ValidationError as exc:
                raise InvalidJobError(f"Invalid job: {exc}") from exc

        job = ProcessingJob(
            id=_new_job_id(),
            project_scope=request.project_scope,
            type=request.type,
            payload=list(request.payload),
            total_items=request.item_count,
            metadata=dict(request.metadata),
        )
        self._enqueue(job)
        logger.info("job %s submitted (%s, %d items)", job.id, job.type.value, job.total_items)
        if start:
            self.start()
        return job.id

    async def retry(self, job_id: str, *, resume: bool = False, start: bool = True) -> str:
        """Requeue a failed job as a new job.

        With `resume`, the new job keeps the finished stages, their outputs
        and the checkpoint, so it picks up where the failed one stopped.
        """
        old = self._require(job_id)
        if old.status != JobStatus.FAILED:
            raise JobStateError(f"Only failed jobs can be retried (job {job_id} is {old.status.value})")

        job = ProcessingJob(
            id=_new_job_id(),
            project_scope=old.project_scope,
            type=old.type,
            payload=list(old.payload),
            total_items=old.total_items,
            metadata=dict(old.metadata),
            retry_of=old.id,
        )
        if resume:
            job.completed_stages = list(old.completed_stages)
            job.checkpoint = job.resume_from = old.checkpoint
            job.artifacts = replace(
                old.artifacts,
                raw_nodes=list(old.artifacts.raw_nodes),
                gaps=list(old.artifacts.gaps),
                duplicates=list(old.artifacts.duplicates),
                clusters=list(old.artifacts.clusters),
                stage_results=dict(old.artifacts.stage_results),
                batch_results={k: list(v) for k, v in old.artifacts.batch_results.items()},
            )
            if old.checkpoint is not None:
                job.set_processed(old.checkpoint.index)
        self._enqueue(job)
        logger.info("job %s retried as %s (resume=%s)", old.id, job.id, resume)
        if start:
            self.start()
        return job.id

    def cancel(self, job_id: str) -> bool:
        job = self._jobs.get(job_id)
        if job is None or job.status.terminal:
            return False
        was_pending = job.status == JobStatus.PENDING
        job.status = JobStatus.CANCELLED
        job.completed_at = _now()
        if was_pending:
            self._done[job_id].set()
        logger.info("job %s cancelled (%s)", job_id, "pending" if was_pending else "in progress")
        self._notify(job)
        return True

    def get_job(self, job_id: str) -> ProcessingJob | None:
        return self._jobs.get(job_id)

    async def wait(self, job_id: str, timeout: float | None = None) -> ProcessingJob:
        job = self._require(job_id)
        await asyncio.wait_for(self._done[job_id].wait(), timeout)
        return job

    def stats(self) -> QueueStats:
        counts = {status: 0 for status in JobStatus}
        for job in self._jobs.values():
            counts[job.status] += 1
        return QueueStats(
            pending=counts[JobStatus.PENDING],
            active=counts[JobStatus.IN_PROGRESS],
            completed=counts[JobStatus.COMPLETED],
            failed=counts[JobStatus.FAILED],
            cancelled=counts[JobStatus.CANCELLED],
        )

    # --- progress ---

    def on_progress(self, job_id: str, callback: ProgressCallback) -> None:
        self._callbacks.setdefault(job_id, []).append(callback)

    def remove_progress_callback(self, job_id: str, callback: ProgressCallback | None = None) -> None:
        """Drop one callback, or all of them when `callback` is None."""
        if callback is None:
            self._callbacks.pop(job_id, None)
            return
        callbacks = self._callbacks.get(job_id, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def progress(self, job_id: str) -> PipelineProgress:
        job = self._require(job_id)
        throughput = eta = None
        if job.items_started_at is not None and job.processed_items > 0:
            elapsed = (_now() - job.items_started_at).total_seconds()
            if elapsed > 0:
                throughput = job.processed_items / elapsed
                eta = max(0, job.total_items - job.processed_items) / throughput
        return PipelineProgress(
            job_id=job.id,
            current_stage=job.stage,
            completed_stages=tuple(job.completed_stages),
            items_processed=job.processed_items,
            total_items=job.total_items,
            progress=job.progress,
            errors=len(job.item_errors) + (1 if job.error else 0),
            eta_seconds=eta,
            throughput=throughput,
        )

    def _notify(self, job: ProcessingJob) -> None:
        callbacks = self._callbacks.get(job.id)
        if not callbacks:
            return
        snapshot = self.progress(job.id)
        for callback in list(callbacks):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("progress callback failed for job %s", job.id)

    # --- batching ---

    async def process_in_batches(
        self,
        items: Sequence[T],
        operation: Callable[[T], Awaitable[R]],
        job_id: str,
    ) -> list[R | None]:
        """Run `operation` over `items` in fixed-size batches.

        At most `concurrency` operations are in flight. The returned list is
        aligned with `items`; positions that failed or were never reached
        because the job was cancelled hold None. On resume, positions before
        the checkpoint carry the results of the failed run.

        The processed counter restarts with each call. Results are kept in
        `job.artifacts.batch_results` as they arrive, so a stage that times
        out mid-way still leaves its finished items for a resuming retry.
        """
        job = self._require(job_id)
        cfg = self.config
        results: list[R | None] = [None] * len(items)
        job.total_items = max(job.total_items, len(items))

        start = 0
        if job.resume_from is not None and job.resume_from.stage == job.stage:
            start = min(job.resume_from.index, len(items))
            job.resume_from = None
            previous = job.artifacts.batch_results.get(job.stage.value, [])[:start]
            results[: len(previous)] = previous
            if start:
                logger.info("job %s resuming %s at item %d", job.id, job.stage.value, start)
        job.artifacts.batch_results[job.stage.value] = results
        processed = start
        job.set_processed(processed)
        if job.items_started_at is None:
            job.items_started_at = _now()

        semaphore = asyncio.Semaphore(cfg.concurrency)

        async def run_one(index: int, item: T) -> None:
            nonlocal processed
            async with semaphore:
                try:
                    results[index] = await self._attempt(operation, item)
                except Exception as exc:
                    job.item_errors.append(ItemError(index=index, message=str(exc), stage=job.stage))
                    logger.warning("job %s item %d failed: %s", job.id, index, exc)
            processed += 1
            job.set_processed(processed)
            self._notify(job)

        offset = start
        for batch in batched(items[start:], cfg.batch_size):
            if job.status == JobStatus.CANCELLED:
                logger.info("job %s cancelled at item %d", job.id, offset)
                break
            await asyncio.gather(*(run_one(offset + i, item) for i, item in enumerate(batch)))
            offset += len(batch)
            job.checkpoint = JobCheckpoint(stage=job.stage, index=offset)

        return results

    async def _attempt(self, operation: Callable[[T], Awaitable[R]], item: T) -> R:
        cfg = self.config
        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(cfg.retry_attempts),
            wait=wait_exponential_jitter(initial=cfg.retry_delay, max=cfg.retry_delay * 10),
            retry=retry_if_exception_type(TransientProcessingError),
        )
        return await retrying(operation, item)

    # --- workers ---

    async def _worker(self, n: int) -> None:
        while True:
            job_id = await self._queue.get()
            job = self._jobs.get(job_id)
            try:
                # cancelled while pending
                if job is not None and job.status == JobStatus.PENDING:
                    logger.debug("worker %d picked up job %s", n, job_id)
                    await self._execute(job)
            finally:
                self._queue.task_done()

    async def _execute(self, job: ProcessingJob) -> None:
        job.status = JobStatus.IN_PROGRESS
        job.started_at = _now()
        self._notify(job)
        try:
            for stage in STAGES:
                if job.status == JobStatus.CANCELLED:
                    return
                if stage in job.completed_stages:
                    continue
                job.stage = stage
                if not await self._run_stage(job, stage):
                    return
                if job.status == JobStatus.CANCELLED:
                    return
                job.completed_stages.append(stage)
                self._notify(job)

            job.status = JobStatus.COMPLETED
            job.stage = ProcessingStage.COMPLETE
            job.progress = 100.0
            job.completed_at = _now()
            logger.info("job %s completed", job.id)
            self._notify(job)
        except asyncio.CancelledError:
            # the worker was stopped mid-job
            if not job.status.terminal:
                job.status = JobStatus.CANCELLED
                job.completed_at = _now()
                logger.warning("job %s cancelled: worker stopped during %s", job.id, job.stage.value)
                self._notify(job)
            raise
        finally:
            self._done[job.id].set()

    async def _run_stage(self, job: ProcessingJob, stage: ProcessingStage) -> bool:
        handler = self.handlers.get(stage)
        if handler is None:
            return True
        timeout = self.config.stage_timeout
        logger.debug("job %s: %s", job.id, stage.value)
        deadline = asyncio.timeout(timeout)
        try:
            async with deadline:
                result = await handler(self, job)
        except TimeoutError as exc:
            if deadline.expired():
                self._fail(job, stage, StageTimeoutError(stage.value, timeout), "STAGE_TIMEOUT")
            else:
                # raised by the handler itself
                self._fail(job, stage, exc, "STAGE_FAILED")
            return False
        except Exception as exc:
            self._fail(job, stage, exc, "STAGE_FAILED")
            return False
        if result is not None:
            job.artifacts.stage_results[stage.value] = result
        return True

    def _fail(self, job: ProcessingJob, stage: ProcessingStage, exc: Exception, code: str) -> None:
        if job.status == JobStatus.CANCELLED:
            logger.info("job %s: %s ended after cancellation: %s", job.id, stage.value, exc)
            return
        job.status = JobStatus.FAILED
        job.completed_at = _now()
        job.error = ProcessingError(
            message=str(exc),
            code=code,
            stage=stage,
            details={"exception": type(exc).__name__},
        )
        logger.error("job %s failed in %s: %s", job.id, stage.value, exc)
        self._notify(job)

    # --- helpers ---

    def _enqueue(self, job: ProcessingJob) -> None:
        self._jobs[job.id] = job
        self._done[job.id] = asyncio.Event()
        self._queue.put_nowait(job.id)

    def _require(self, job_id: str) -> ProcessingJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job


def _new_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:12]}"


def _now() -> datetime:
    return datetime.now(UTC)
