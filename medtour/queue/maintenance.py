"""
Queue maintenance: stale-job reclamation and retention purge.

Both routines are safe to run from several processes at once; every state
change goes through JobQueue.fail(), a single-member ZREM/HDEL or a ZADD NX.
"""

from typing import Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import ValidationError

from medtour.config import config
from medtour.queue.job_queue import JobQueue, get_job_queue
from medtour.queue.models import Job, JobStatus
from medtour.utils.logging import maintenance_logger as logger

PROCESSING_TIMEOUT_ERROR = "Processing timeout exceeded"

# HDEL in chunks so a large purge does not build one huge command
PURGE_CHUNK_SIZE = 500


async def restore_stranded_jobs(queue: Optional[JobQueue] = None) -> int:
    """
    Re-index job records whose transition was cut short.

    - pending records in neither their queue nor the processing set go back
      on their queue
    - processing records missing from the processing set get their deadline
      back, so the stale sweep settles them once it passes
    - dead records missing from the dead-letter set go back on it

    Returns:
        Number of pending or dead jobs put back
    """
    queue = queue or get_job_queue()
    timeout_ms = queue.retry_policy.processing_timeout_ms
    restored = 0

    async for job_id, raw in queue.store.hscan(queue.keys.jobs):
        try:
            job = Job.from_json(raw)
        except ValidationError as e:
            logger.debug("Skipping unreadable job record", job_id=job_id, error=str(e))
            continue

        if job.status == JobStatus.PENDING:
            if await queue.store.zscore(queue.keys.processing, job_id) is not None:
                continue
            if await queue.store.zadd(queue.keys.pending(job.queue_name), {job_id: job.score}, nx=True):
                restored += 1
                logger.warning("Re-queued pending job missing from its queue", job_id=job_id, queue=job.queue_name)

        elif job.status == JobStatus.PROCESSING:
            deadline = (job.started_at or job.updated_at) + timeout_ms
            if await queue.store.zadd(queue.keys.processing, {job_id: deadline}, nx=True):
                logger.warning("Restored deadline of processing job", job_id=job_id, deadline=deadline)

        elif job.status == JobStatus.DEAD:
            failed_at = job.completed_at or job.updated_at
            if await queue.store.zadd(queue.keys.dead_letter, {job_id: failed_at}, nx=True):
                restored += 1
                logger.warning("Restored dead-letter entry", job_id=job_id)

    return restored


async def reclaim_stale_jobs(queue: Optional[JobQueue] = None) -> int:
    """
    Fail every processing job whose deadline has passed.

    Jobs with attempts left go back to pending; exhausted jobs are
    dead-lettered. A stale entry whose record is still pending is a claim
    that never finished, and the job goes back on its queue untouched.
    Entries with no record, or with a settled record, are dropped. Runs
    restore_stranded_jobs first.

    Returns:
        Number of jobs retried, dead-lettered or put back
    """
    queue = queue or get_job_queue()
    reclaimed = await restore_stranded_jobs(queue)
    now = queue.clock()

    stale_ids = await queue.store.zrangebyscore(queue.keys.processing, "-inf", now)

    for job_id in stale_ids:
        job = await queue.get_job(job_id)
        if job is not None and job.status == JobStatus.PENDING:
            await queue.store.zadd(queue.keys.pending(job.queue_name), {job_id: job.score})
            if await queue.store.zrem(queue.keys.processing, job_id):
                reclaimed += 1
                logger.warning("Re-queued job from interrupted claim", job_id=job_id, queue=job.queue_name)
            continue

        if job is None or job.status != JobStatus.PROCESSING:
            if await queue.store.zrem(queue.keys.processing, job_id):
                logger.warning(
                    "Removed orphan processing entry",
                    job_id=job_id,
                    status=job.status.value if job else None,
                )
            continue

        outcome = await queue.fail(job_id, PROCESSING_TIMEOUT_ERROR)
        if outcome.settled:
            reclaimed += 1
            logger.warning(
                "Reclaimed stale job",
                job_id=job_id,
                attempts=job.attempts,
                retrying=outcome.retrying,
                dead=outcome.moved_to_dlq,
            )

    if reclaimed:
        logger.info(f"Reclaimed {reclaimed} stale job(s)")
    return reclaimed


def _is_expired(job: Job, now: int, completed_ttl_ms: int, dead_ttl_ms: int) -> bool:
    if job.status == JobStatus.COMPLETED:
        finished = job.completed_at or job.updated_at
        return finished <= now - completed_ttl_ms
    if job.status in (JobStatus.FAILED, JobStatus.DEAD):
        finished = job.completed_at or job.updated_at
        return finished <= now - dead_ttl_ms
    return False


async def purge_old_jobs(queue: Optional[JobQueue] = None) -> int:
    """
    Delete terminal job records past their retention window.

    Completed jobs are kept for COMPLETED_JOB_TTL_SECONDS, failed and dead
    jobs for DEAD_JOB_TTL_SECONDS. Purged dead jobs also leave the
    dead-letter set.

    Returns:
        Number of job records deleted
    """
    queue = queue or get_job_queue()
    now = queue.clock()
    completed_ttl_ms = queue.retention.completed_job_ttl_seconds * 1000
    dead_ttl_ms = queue.retention.dead_job_ttl_seconds * 1000

    expired: List[Job] = []
    async for job_id, raw in queue.store.hscan(queue.keys.jobs):
        try:
            job = Job.from_json(raw)
        except ValidationError as e:
            logger.warning("Skipping unreadable job record", job_id=job_id, error=str(e))
            continue
        if _is_expired(job, now, completed_ttl_ms, dead_ttl_ms):
            expired.append(job)

    if not expired:
        return 0

    dead_ids = [job.id for job in expired if job.status == JobStatus.DEAD]
    await queue.store.zrem(queue.keys.dead_letter, *dead_ids)

    purged = 0
    ids = [job.id for job in expired]
    for start in range(0, len(ids), PURGE_CHUNK_SIZE):
        purged += await queue.store.hdel(queue.keys.jobs, *ids[start:start + PURGE_CHUNK_SIZE])

    logger.info(f"Purged {purged} old job(s)", dead=len(dead_ids), completed=len(ids) - len(dead_ids))
    return purged


async def run_maintenance(queue: Optional[JobQueue] = None) -> Dict[str, int]:
    """Reclaim stale jobs, then purge expired records."""
    queue = queue or get_job_queue()
    reclaimed = await reclaim_stale_jobs(queue)
    purged = await purge_old_jobs(queue)
    return {"reclaimed": reclaimed, "purged": purged}


class MaintenanceScheduler:
    """
    Runs queue maintenance on a fixed interval.

    Usage:
        scheduler = MaintenanceScheduler()
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(self, queue: Optional[JobQueue] = None, interval_seconds: Optional[int] = None):
        self.queue = queue
        self.interval = interval_seconds or config.MAINTENANCE_INTERVAL_SECONDS

        self.scheduler = AsyncIOScheduler()
        self._is_running_tick = False
        self._running = False
        self.last_result: Optional[Dict[str, int]] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the scheduler."""
        if not config.redis_configured and self.queue is None:
            logger.error("REDIS_URL not configured - maintenance cannot start")
            return

        self.scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self.interval),
            id="queue_maintenance",
            name="Reclaim stale jobs and purge old records",
            replace_existing=True,
            max_instances=1,
        )

        self.scheduler.start()
        self._running = True
        logger.info("Maintenance scheduler started", interval=self.interval)

    async def stop(self):
        """Stop the scheduler gracefully."""
        self._running = False
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Maintenance scheduler stopped")

    async def tick(self):
        """One maintenance pass. Errors are logged; the next interval tries again."""
        if self._is_running_tick:
            return

        self._is_running_tick = True
        try:
            self.last_result = await run_maintenance(self.queue)
            if any(self.last_result.values()):
                logger.info("Maintenance pass finished", **self.last_result)
        except Exception as e:
            logger.error(f"Maintenance pass failed: {e}", error=str(e))
        finally:
            self._is_running_tick = False
