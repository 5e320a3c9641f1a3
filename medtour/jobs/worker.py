"""
Content generation worker.

Dequeues jobs, runs the generator for the job's type, persists the output to
the content store and settles the job. Every dequeued job ends completed,
scheduled for retry, or dead; generator and content store errors never escape
process_job. Queue store errors (Redis) do propagate: a job that cannot be
settled stays processing until maintenance reclaims it.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Sequence

from pydantic import ValidationError
from redis.exceptions import RedisError

from medtour.config import config
from medtour.database.content import ContentStore
from medtour.generation.base import GenerationError, GenerationResult
from medtour.generation.router import GeneratorRouter
from medtour.queue.errors import BatchNotFoundError
from medtour.queue.job_queue import JobQueue, get_job_queue
from medtour.queue.models import QUEUE_NAMES, BatchUpdate, Job, JobType
from medtour.utils.logging import worker_logger as logger

ProgressEventType = Literal["job_started", "job_completed", "job_failed", "batch_completed"]


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _job_logger(job: Job):
    return logger.bind(job_id=job.id, batch_id=job.batch_id, queue=job.queue_name)


@dataclass
class ProgressEvent:
    type: ProgressEventType
    job_id: Optional[str] = None
    keyword: Optional[str] = None
    batch_id: Optional[str] = None
    completed: Optional[int] = None
    total: Optional[int] = None
    quality_score: Optional[int] = None
    error: Optional[str] = None
    timestamp: str = field(default_factory=_timestamp)


ProgressObserver = Callable[[ProgressEvent], Any]


@dataclass
class WorkerOptions:
    """
    Worker loop settings.

    max_jobs: stop after this many jobs (0 = unlimited)
    poll_interval: seconds to wait when every queue is empty
    stop_on_empty: exit instead of polling once no job is due
    inter_job_delay: seconds between jobs, for provider rate limits
    queue_types: queues to take work from, in order of preference
    """
    max_jobs: int = 0
    poll_interval: float = field(default_factory=lambda: config.WORKER_POLL_INTERVAL_SECONDS)
    stop_on_empty: bool = False
    inter_job_delay: float = field(default_factory=lambda: config.WORKER_INTER_JOB_DELAY_SECONDS)
    queue_types: Sequence[str] = QUEUE_NAMES


@dataclass
class WorkerResult:
    """Result of processing one job."""
    job_id: str
    success: bool
    outcome: Literal["completed", "retrying", "dead", "ignored"]
    result: Optional[Dict[str, Any]] = None
    quality_score: Optional[int] = None
    error: Optional[str] = None


class ContentWorker:
    """
    Usage:
        worker = ContentWorker(on_progress=print)
        stats = await worker.run(WorkerOptions(max_jobs=10))
    """

    def __init__(
        self,
        queue: Optional[JobQueue] = None,
        router: Optional[GeneratorRouter] = None,
        content_store: Optional[ContentStore] = None,
        on_progress: Optional[ProgressObserver] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.queue = queue or get_job_queue()
        self.content_store = content_store or ContentStore()
        self.router = router or GeneratorRouter(self.content_store)
        self.on_progress = on_progress
        self._sleep = sleep
        self._running = False
        self._current_job_id: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def current_job_id(self) -> Optional[str]:
        return self._current_job_id

    # =========================================================================
    # Progress
    # =========================================================================

    async def _emit(self, event: ProgressEvent):
        if self.on_progress is None:
            return
        try:
            outcome = self.on_progress(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning("Progress observer failed", event=event.type, error=str(e))

    async def _emit_batch_finished(self, update: Optional[BatchUpdate]):
        if update is None or not update.finished_now:
            return
        batch = update.batch
        await self._emit(ProgressEvent(
            type="batch_completed",
            batch_id=batch.id,
            completed=batch.completed,
            total=batch.total,
        ))

    # =========================================================================
    # Single job
    # =========================================================================

    async def _persist(self, job: Job, generation: GenerationResult) -> Dict[str, Any]:
        """Write generator output to the content store; returns the job result summary."""
        data = generation.data
        summary: Dict[str, Any] = generation.to_dict()

        match job.type:
            case JobType.CONTENT_GENERATION:
                payload = job.typed_payload()
                post = await self.content_store.save_generated_post(
                    payload, data["article"], data["quality"], generation.to_dict(), job.id
                )
                summary.update({
                    "blog_post_id": post["id"],
                    "slug": post.get("slug"),
                    "quality_score": data["quality"]["overall"],
                })
            case JobType.IMAGE_GENERATION:
                payload = job.typed_payload()
                url = await self.content_store.save_cover_image(
                    payload,
                    data["image_bytes"],
                    data.get("content_type", "image/png"),
                    {"prompt": data.get("prompt"), "model": generation.usage.model, "elapsed_ms": generation.elapsed_ms},
                )
                summary.update({"blog_post_id": payload.blog_post_id, "image_url": url})
            case JobType.TRANSLATION:
                rows = await self.content_store.save_translations(
                    data["source_post"], data["articles"], generation.to_dict()
                )
                summary.update({
                    "source_post_id": data["source_post"]["id"],
                    "translations": {row["locale"]: row["id"] for row in rows},
                })
            case JobType.SEO_OPTIMIZATION:
                payload = job.typed_payload()
                await self.content_store.update_seo_meta(
                    payload.blog_post_id, data["meta"], existing=data.get("existing_seo_meta")
                )
                summary.update({"blog_post_id": payload.blog_post_id, **data["meta"]})

        return summary

    async def _handle_failure(self, job: Job, exc: Exception) -> WorkerResult:
        log = _job_logger(job)
        if isinstance(exc, GenerationError):
            retryable = exc.retryable
        else:
            # Invalid payloads are permanent failures
            retryable = not isinstance(exc, ValidationError)
        message = str(exc) or type(exc).__name__

        outcome = await self.queue.fail(job.id, message, retryable=retryable)

        try:
            await self.content_store.record_failure(job, message)
        except Exception as e:
            log.warning("Could not record failure on content store", error=str(e))

        log.error(
            "Job failed",
            job_type=job.type.value,
            attempt=job.attempts,
            retrying=outcome.retrying,
            dead=outcome.moved_to_dlq,
            error=message,
        )

        await self._emit(ProgressEvent(
            type="job_failed",
            job_id=job.id,
            keyword=job.keyword,
            batch_id=job.batch_id,
            error=message,
        ))
        await self._emit_batch_finished(outcome.batch_update)

        if outcome.retrying:
            status = "retrying"
        elif outcome.moved_to_dlq:
            status = "dead"
        else:
            status = "ignored"
        return WorkerResult(job_id=job.id, success=False, outcome=status, error=message)

    async def process_job(self, job: Job) -> WorkerResult:
        """
        Run one dequeued job to a settled state.

        Raises:
            redis.exceptions.RedisError: If the queue store is unavailable
        """
        log = _job_logger(job)
        self._current_job_id = job.id
        log.info("Processing job", job_type=job.type.value, attempt=job.attempts, max_attempts=job.max_attempts)
        try:
            await self._emit(ProgressEvent(
                type="job_started",
                job_id=job.id,
                keyword=job.keyword,
                batch_id=job.batch_id,
            ))

            try:
                generation = await self.router.generate(job)
                summary = await self._persist(job, generation)
            except Exception as e:
                return await self._handle_failure(job, e)

            outcome = await self.queue.complete(job.id, summary)
            if outcome is None:
                log.warning("Job was settled elsewhere before completion")
                return WorkerResult(job_id=job.id, success=False, outcome="ignored", result=summary)

            quality_score = summary.get("quality_score")
            log.info("Job processed", quality_score=quality_score, elapsed_ms=summary.get("elapsed_ms"))
            await self._emit(ProgressEvent(
                type="job_completed",
                job_id=job.id,
                keyword=job.keyword,
                batch_id=job.batch_id,
                quality_score=quality_score,
            ))
            await self._emit_batch_finished(outcome.batch_update)

            return WorkerResult(
                job_id=job.id,
                success=True,
                outcome="completed",
                result=summary,
                quality_score=quality_score,
            )
        finally:
            self._current_job_id = None

    async def process_next_job(self, queue_types: Optional[Sequence[str]] = None) -> Optional[WorkerResult]:
        """Dequeue from the first queue with a due job and process it. None when all are empty."""
        for queue_name in queue_types or QUEUE_NAMES:
            job = await self.queue.dequeue(queue_name)
            if job is not None:
                return await self.process_job(job)
        return None

    # =========================================================================
    # Loops
    # =========================================================================

    async def process_batch(self, batch_id: str, inter_job_delay: Optional[float] = None) -> Dict[str, Any]:
        """
        Process content jobs until the batch reaches a terminal status or the
        content queue has nothing due.

        Raises:
            BatchNotFoundError: If the batch does not exist
        """
        delay = config.WORKER_INTER_JOB_DELAY_SECONDS if inter_job_delay is None else inter_job_delay
        batch = await self.queue.batches.get(batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)

        results: List[WorkerResult] = []
        while not batch.is_complete:
            result = await self.process_next_job([JobType.CONTENT_GENERATION.queue_name])
            if result is None:
                break
            results.append(result)

            batch = await self.queue.batches.get(batch_id)
            if batch is None or batch.is_complete:
                break
            await self._sleep(delay)

        return {
            "results": results,
            "completed": sum(1 for r in results if r.success),
            "failed": sum(1 for r in results if not r.success),
        }

    async def run(self, options: Optional[WorkerOptions] = None) -> Dict[str, int]:
        """
        Process jobs until max_jobs is reached, the queues run dry with
        stop_on_empty set, or stop() is called.

        Returns:
            Counts of processed, completed and failed jobs
        """
        options = options or WorkerOptions()
        self._running = True
        processed = completed = failed = 0

        logger.info(
            "Worker started",
            queues=list(options.queue_types),
            max_jobs=options.max_jobs,
            stop_on_empty=options.stop_on_empty,
        )

        def budget_left() -> bool:
            return options.max_jobs == 0 or processed < options.max_jobs

        while self._running and budget_left():
            try:
                result = await self.process_next_job(options.queue_types)
            except RedisError as e:
                logger.error("Queue store unavailable, backing off", error=str(e))
                await self._sleep(options.poll_interval)
                continue

            if result is None:
                if options.stop_on_empty:
                    break
                await self._sleep(options.poll_interval)
                continue

            processed += 1
            if result.success:
                completed += 1
            else:
                failed += 1

            if self._running and budget_left():
                await self._sleep(options.inter_job_delay)

        self._running = False
        logger.info("Worker stopped", processed=processed, completed=completed, failed=failed)
        return {"processed": processed, "completed": completed, "failed": failed}

    def stop(self):
        """Ask the loop to exit after the current job."""
        self._running = False
