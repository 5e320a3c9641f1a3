"""
Redis-backed priority job queue for content generation.

Pending jobs live in one sorted set per job type, scored so that reverse
range reads return the highest priority tier first and, within a tier, the
earliest scheduled job. In-flight jobs sit in a processing sorted set
scored by their timeout deadline; jobs that exhaust their retries move to a
dead-letter sorted set scored by failure time. Full job records are JSON
strings in a single hash keyed by job id.

Every contested transition is won through a single atomic Redis reply
(ZADD NX or ZREM returning 1, SADD returning 1), never through a
read-then-write check. A transition cut short after its winning reply leaves
the record disagreeing with the index structures; reclaim_stale_jobs in
medtour.queue.maintenance repairs those records.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel

from medtour.config import config
from medtour.queue.batches import BatchTracker
from medtour.queue.connection import QueueKeys
from medtour.queue.errors import BatchTooLargeError, EmptyBatchError
from medtour.queue.models import (
    QUEUE_NAMES,
    Batch,
    CompleteOutcome,
    FailOutcome,
    Job,
    JobPriority,
    JobStatus,
    JobType,
    QueueCounts,
    QueueStats,
    generate_batch_id,
    generate_job_id,
    now_ms,
    ready_score_range,
    validate_payload,
)
from medtour.queue.policy import RetentionPolicy, RetryPolicy
from medtour.queue.stats import QueueStatistics, day_key
from medtour.queue.store import KeyValueStore
from medtour.utils.logging import queue_logger as logger

# How many due entries a strict dequeue reads per tier before giving up on
# that tier. Losing a ZREM race just moves on to the next candidate.
CLAIM_CANDIDATES = 10

TIERS_HIGH_TO_LOW = (JobPriority.HIGH, JobPriority.NORMAL, JobPriority.LOW)


def _queue_name(queue: Union[str, JobType]) -> str:
    if isinstance(queue, JobType):
        return queue.queue_name
    if queue in QUEUE_NAMES:
        return queue
    # Accept job type values ("content_generation") as well as queue names
    return JobType(queue).queue_name


class JobQueue:
    """
    High-level interface for the content job queue.

    Usage:
        queue = JobQueue()

        # Producer
        job = await queue.enqueue(JobType.CONTENT_GENERATION, payload, priority="high")

        # Worker
        job = await queue.dequeue("content")
        if job:
            ...
            await queue.complete(job.id, result)
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        keys: Optional[QueueKeys] = None,
        retry_policy: Optional[RetryPolicy] = None,
        retention: Optional[RetentionPolicy] = None,
        strict_scheduling: Optional[bool] = None,
        max_batch_size: Optional[int] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store or KeyValueStore()
        self.keys = keys or QueueKeys(config.QUEUE_KEY_PREFIX)
        self.retry_policy = retry_policy or RetryPolicy.from_config()
        self.retention = retention or RetentionPolicy.from_config()
        self.strict_scheduling = config.STRICT_SCHEDULING if strict_scheduling is None else strict_scheduling
        self.max_batch_size = max_batch_size or config.MAX_BATCH_SIZE
        self.clock = clock

        self.stats = QueueStatistics(self.store, self.keys, self.retention.stats_ttl_seconds, clock)
        self.batches = BatchTracker(self.store, self.keys, self.retention.batch_ttl_seconds, clock)

    # =========================================================================
    # Producers
    # =========================================================================

    def _build_job(
        self,
        job_type: JobType,
        payload: Dict[str, Any],
        priority: JobPriority,
        now: int,
        scheduled_at: Optional[int] = None,
        batch_id: Optional[str] = None,
        requested_by: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        max_attempts: Optional[int] = None,
    ) -> Job:
        return Job(
            id=generate_job_id(now),
            type=job_type,
            payload=payload,
            priority=priority,
            status=JobStatus.PENDING,
            attempts=0,
            max_attempts=max_attempts or self.retry_policy.max_attempts,
            created_at=now,
            updated_at=now,
            scheduled_at=scheduled_at,
            batch_id=batch_id,
            requested_by=requested_by,
            metadata=metadata or {},
        )

    def _stage_insert(self, pipe, job: Job):
        # Record first, index second: a dequeuer never sees an id without a record
        pipe.hset(self.keys.jobs, job.id, job.to_json())
        pipe.zadd(self.keys.pending(job.queue_name), {job.id: job.score})

    async def enqueue(
        self,
        job_type: Union[str, JobType],
        payload: Union[Dict[str, Any], BaseModel],
        priority: Union[str, JobPriority] = JobPriority.NORMAL,
        scheduled_at: Optional[int] = None,
        *,
        batch_id: Optional[str] = None,
        requested_by: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        max_attempts: Optional[int] = None,
    ) -> Job:
        """
        Queue a single job.

        Args:
            job_type: Which generator runs the job
            payload: Type-specific payload, validated before anything is written
            priority: high, normal or low
            scheduled_at: Earliest run time in epoch ms (default: now)

        Returns:
            The stored pending Job

        Raises:
            pydantic.ValidationError: If the payload does not fit the job type
            redis.exceptions.RedisError: If the store is unavailable
        """
        job_type = JobType(job_type)
        priority = JobPriority(priority)
        normalized = validate_payload(job_type, payload)

        job = self._build_job(
            job_type,
            normalized,
            priority,
            self.clock(),
            scheduled_at=scheduled_at,
            batch_id=batch_id,
            requested_by=requested_by,
            metadata=metadata,
            max_attempts=max_attempts,
        )

        async with self.store.pipeline() as pipe:
            self._stage_insert(pipe, job)
            await pipe.execute()

        await self.stats.increment(job.queue_name, "enqueued")

        logger.info(
            "Job enqueued",
            job_id=job.id,
            queue=job.queue_name,
            batch_id=job.batch_id,
            job_type=job.type.value,
            priority=job.priority.value,
            scheduled_at=job.scheduled_at,
        )
        return job

    async def enqueue_batch(
        self,
        items: Sequence[Union[Dict[str, Any], BaseModel]],
        priority: Union[str, JobPriority] = JobPriority.NORMAL,
        *,
        requested_by: Optional[str] = None,
        auto_publish: bool = False,
        notify_email: Optional[str] = None,
    ) -> Tuple[Batch, List[Job]]:
        """
        Queue a batch of content generation jobs tracked together.

        The batch record and every member job are written in one MULTI/EXEC
        transaction. Members are independent jobs tagged with the batch id.

        Raises:
            EmptyBatchError: If items is empty
            BatchTooLargeError: If items exceeds the configured batch size
            pydantic.ValidationError: If any item is not a valid content payload
        """
        if not items:
            raise EmptyBatchError("A batch needs at least one item")
        if len(items) > self.max_batch_size:
            raise BatchTooLargeError(len(items), self.max_batch_size)

        priority = JobPriority(priority)
        payloads = [validate_payload(JobType.CONTENT_GENERATION, item) for item in items]
        if auto_publish:
            for payload in payloads:
                payload["auto_publish"] = True

        now = self.clock()
        batch_id = generate_batch_id(now)
        jobs = [
            self._build_job(
                JobType.CONTENT_GENERATION,
                payload,
                priority,
                now,
                batch_id=batch_id,
                requested_by=requested_by,
                metadata={"keyword": payload["keyword"], "locale": payload["locale"]},
            )
            for payload in payloads
        ]

        batch = Batch(
            id=batch_id,
            job_ids=[job.id for job in jobs],
            keyword_ids=[payload["keyword_id"] for payload in payloads],
            total=len(jobs),
            requested_by=requested_by,
            auto_publish=auto_publish,
            notify_email=notify_email,
            created_at=now,
        )

        async with self.store.pipeline() as pipe:
            self.batches.stage_create(pipe, batch)
            for job in jobs:
                self._stage_insert(pipe, job)
            await pipe.execute()

        await self.stats.increment(JobType.CONTENT_GENERATION.queue_name, "enqueued", len(jobs))

        logger.info(
            "Batch enqueued",
            batch_id=batch.id,
            total=batch.total,
            priority=priority.value,
            requested_by=requested_by,
        )
        return batch, jobs

    # =========================================================================
    # Workers
    # =========================================================================

    async def _claim(self, pending_key: str, job_id: str, deadline: int) -> bool:
        """
        Move one id from a pending queue to the processing set.

        The processing entry is written before the pending entry is removed,
        so an interrupted claim always leaves the id somewhere reclaim looks.
        ZADD NX decides between concurrent claimers; ZREM decides against
        cancel.
        """
        if not await self.store.zadd(self.keys.processing, {job_id: deadline}, nx=True):
            return False
        if await self.store.zrem(pending_key, job_id):
            return True
        await self.store.zrem(self.keys.processing, job_id)
        return False

    async def _candidates(self, key: str, now: int) -> List[str]:
        if not self.strict_scheduling:
            # Highest score first, due or not
            return await self.store.zrevrange(key, 0, CLAIM_CANDIDATES - 1)

        candidates = []
        for priority in TIERS_HIGH_TO_LOW:
            min_score, max_score = ready_score_range(priority, now)
            candidates.extend(await self.store.zrevrangebyscore(
                key, max_score, min_score, offset=0, count=CLAIM_CANDIDATES
            ))
        return candidates

    async def _claim_next_id(self, queue_name: str, now: int, deadline: int) -> Optional[str]:
        key = self.keys.pending(queue_name)
        for job_id in await self._candidates(key, now):
            if await self._claim(key, job_id, deadline):
                return job_id
        return None

    async def dequeue(self, queue: Union[str, JobType]) -> Optional[Job]:
        """
        Claim the next due job from a queue.

        Returns:
            The job, now in status processing, or None if nothing is due
        """
        queue_name = _queue_name(queue)
        now = self.clock()
        deadline = now + self.retry_policy.processing_timeout_ms

        job_id = await self._claim_next_id(queue_name, now, deadline)
        if job_id is None:
            return None

        job = await self.get_job(job_id)
        if job is None:
            await self.store.zrem(self.keys.processing, job_id)
            logger.warning("Dequeued id has no job record", job_id=job_id, queue=queue_name)
            return None

        job = job.model_copy(update={
            "status": JobStatus.PROCESSING,
            "started_at": now,
            "updated_at": now,
            "attempts": job.attempts + 1,
        })
        await self.store.hset(self.keys.jobs, job.id, job.to_json())

        await self.stats.increment(queue_name, "processing")
        if job.batch_id:
            await self.batches.mark_started(job.batch_id)

        logger.info(
            "Job dequeued",
            job_id=job.id,
            queue=queue_name,
            attempt=job.attempts,
            max_attempts=job.max_attempts,
        )
        return job

    async def _claim_processing(self, job_id: str) -> Optional[Job]:
        """Load a processing job and take it out of the processing set, or None if someone else did."""
        job = await self.get_job(job_id)
        if job is None or job.status != JobStatus.PROCESSING:
            return None
        if not await self.store.zrem(self.keys.processing, job_id):
            return None
        return job

    async def complete(self, job_id: str, result: Any = None) -> Optional[CompleteOutcome]:
        """
        Mark a processing job completed.

        Returns:
            CompleteOutcome, or None if the job was not processing (already
            settled, reclaimed, or unknown). Repeated calls never recount a batch.
        """
        job = await self._claim_processing(job_id)
        if job is None:
            logger.debug("Ignoring completion of job not in processing", job_id=job_id)
            return None

        now = self.clock()
        job = job.model_copy(update={
            "status": JobStatus.COMPLETED,
            "completed_at": now,
            "updated_at": now,
            "result": result,
            "error": None,
        })

        async with self.store.pipeline() as pipe:
            pipe.hset(self.keys.jobs, job.id, job.to_json())
            pipe.lpush(self.keys.completed, job.id)
            pipe.ltrim(self.keys.completed, 0, self.retention.completed_history_size - 1)
            await pipe.execute()

        await self.stats.increment(job.queue_name, "completed")

        batch_update = None
        if job.batch_id:
            batch_update = await self.batches.record_outcome(job.batch_id, job.id, "completed")

        logger.info(
            "Job completed",
            job_id=job.id,
            queue=job.queue_name,
            batch_id=job.batch_id,
            attempts=job.attempts,
            duration_ms=now - job.started_at if job.started_at else None,
        )
        return CompleteOutcome(job=job, batch_update=batch_update)

    async def fail(self, job_id: str, error: Union[str, BaseException], *, retryable: bool = True) -> FailOutcome:
        """
        Record a failed attempt.

        Retries with exponential backoff while attempts remain and the error
        is retryable; otherwise the job goes to the dead-letter set and its
        batch, if any, counts it as failed.
        """
        job = await self._claim_processing(job_id)
        if job is None:
            logger.debug("Ignoring failure of job not in processing", job_id=job_id)
            return FailOutcome(ignored=True)

        now = self.clock()
        message = str(error) or type(error).__name__

        if retryable and job.attempts < job.max_attempts:
            retry_at = now + self.retry_policy.retry_delay_ms(job.attempts)
            job = job.model_copy(update={
                "status": JobStatus.PENDING,
                "scheduled_at": retry_at,
                "updated_at": now,
                "error": message,
            })

            async with self.store.pipeline() as pipe:
                pipe.hset(self.keys.jobs, job.id, job.to_json())
                pipe.zadd(self.keys.pending(job.queue_name), {job.id: job.score})
                await pipe.execute()

            await self.stats.increment(job.queue_name, "retried")

            logger.warning(
                "Job failed, will retry",
                job_id=job.id,
                queue=job.queue_name,
                batch_id=job.batch_id,
                attempt=job.attempts,
                max_attempts=job.max_attempts,
                retry_in_ms=retry_at - now,
                error=message,
            )
            return FailOutcome(retrying=True, retry_at=retry_at, job=job)

        job = job.model_copy(update={
            "status": JobStatus.DEAD,
            "completed_at": now,
            "updated_at": now,
            "error": message,
        })

        async with self.store.pipeline() as pipe:
            pipe.hset(self.keys.jobs, job.id, job.to_json())
            pipe.zadd(self.keys.dead_letter, {job.id: now})
            await pipe.execute()

        await self.stats.increment(job.queue_name, "dead")

        batch_update = None
        if job.batch_id:
            batch_update = await self.batches.record_outcome(job.batch_id, job.id, "failed")

        logger.error(
            "Job moved to dead-letter",
            job_id=job.id,
            queue=job.queue_name,
            batch_id=job.batch_id,
            attempts=job.attempts,
            retryable=retryable,
            error=message,
        )
        return FailOutcome(moved_to_dlq=True, job=job, batch_update=batch_update)

    # =========================================================================
    # Operator actions
    # =========================================================================

    async def cancel(self, job_id: str) -> bool:
        """
        Cancel a pending job. Processing jobs cannot be cancelled.

        A cancelled batch member counts as a batch failure.
        """
        job = await self.get_job(job_id)
        if job is None or job.status != JobStatus.PENDING:
            return False

        # Losing this race means a worker dequeued it first
        if not await self.store.zrem(self.keys.pending(job.queue_name), job_id):
            return False

        await self.store.hdel(self.keys.jobs, job_id)
        await self.stats.increment(job.queue_name, "cancelled")

        if job.batch_id:
            await self.batches.record_outcome(job.batch_id, job.id, "failed")

        logger.info("Job cancelled", job_id=job_id, queue=job.queue_name)
        return True

    async def replay_dead(self, job_id: str) -> bool:
        """
        Re-queue a dead job as a fresh submission (attempts reset to 0).

        The job's batch keeps its original failed count.
        """
        job = await self.get_job(job_id)
        if job is None or job.status != JobStatus.DEAD:
            return False

        if not await self.store.zrem(self.keys.dead_letter, job_id):
            return False

        now = self.clock()
        job = job.model_copy(update={
            "status": JobStatus.PENDING,
            "attempts": 0,
            "error": None,
            "result": None,
            "scheduled_at": now,
            "started_at": None,
            "completed_at": None,
            "updated_at": now,
        })

        async with self.store.pipeline() as pipe:
            self._stage_insert(pipe, job)
            await pipe.execute()

        await self.stats.increment(job.queue_name, "replayed")

        logger.info("Dead job replayed", job_id=job_id, queue=job.queue_name)
        return True

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_job(self, job_id: str) -> Optional[Job]:
        raw = await self.store.hget(self.keys.jobs, job_id)
        return Job.from_json(raw) if raw else None

    async def get_jobs(self, job_ids: Iterable[str]) -> List[Job]:
        """Jobs for the given ids, in order, skipping ids with no record."""
        raw_jobs = await self.store.hmget(self.keys.jobs, list(job_ids))
        return [Job.from_json(raw) for raw in raw_jobs if raw]

    async def list_pending(self, queue: Union[str, JobType], limit: int = 50) -> List[Job]:
        """Pending jobs in dequeue order (not-yet-due retries included)."""
        ids = await self.store.zrevrange(self.keys.pending(_queue_name(queue)), 0, limit - 1)
        return await self.get_jobs(ids)

    async def list_processing(self, limit: int = 50) -> List[Job]:
        """In-flight jobs, earliest deadline first."""
        ids = await self.store.zrange(self.keys.processing, 0, limit - 1)
        return await self.get_jobs(ids)

    async def list_dead(self, limit: int = 50) -> List[Job]:
        """Dead-lettered jobs, most recent failure first."""
        ids = await self.store.zrevrange(self.keys.dead_letter, 0, limit - 1)
        return await self.get_jobs(ids)

    async def list_completed(self, limit: int = 50) -> List[Job]:
        ids = await self.store.lrange(self.keys.completed, 0, limit - 1)
        return await self.get_jobs(ids)

    async def get_queue_stats(self) -> QueueStats:
        """
        Current queue depths plus today's event counters.

        `pending` is the live queue length; the other per-queue counts are
        today's (UTC) totals from the statistics hash.
        """
        today = day_key(self.clock())
        counters = await self.stats.get_day(today)

        queues = {}
        for name in QUEUE_NAMES:
            queues[name] = QueueCounts(
                pending=await self.store.zcard(self.keys.pending(name)),
                processing=counters.get(f"{name}:processing", 0),
                completed=counters.get(f"{name}:completed", 0),
                retried=counters.get(f"{name}:retried", 0),
                dead=counters.get(f"{name}:dead", 0),
            )

        return QueueStats(
            queues=queues,
            processing_now=await self.store.zcard(self.keys.processing),
            dead_letter=await self.store.zcard(self.keys.dead_letter),
            date=today,
        )


# Singleton for the process
_job_queue: Optional[JobQueue] = None


def get_job_queue() -> JobQueue:
    """Get the process-wide JobQueue built from config."""
    global _job_queue
    if _job_queue is None:
        _job_queue = JobQueue()
    return _job_queue
