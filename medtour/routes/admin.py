"""
Admin Queue API Routes

Operator endpoints for the content job queue:
- Submit jobs and batches
- Batch progress
- Queue statistics
- Pending / processing / dead / completed job lists
- Cancel and dead-letter replay
- Maintenance trigger
- Log buffer and health
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, ValidationError

from medtour.config import config
from medtour.queue.connection import redis_health_check
from medtour.queue.errors import BatchTooLargeError, EmptyBatchError
from medtour.queue.job_queue import JobQueue, get_job_queue
from medtour.queue.maintenance import run_maintenance
from medtour.queue.models import JobPriority, JobStatus, JobType
from medtour.utils.logging import LogLevel, api_logger as logger, get_log_buffer

router = APIRouter(prefix="/api/admin/queue", tags=["admin-queue"])


def get_queue() -> JobQueue:
    """Queue dependency; overridden in tests."""
    if not config.redis_configured:
        raise HTTPException(status_code=503, detail="Redis not configured")
    return get_job_queue()


def _validation_detail(e: ValidationError) -> List[Dict[str, Any]]:
    return e.errors(include_url=False, include_context=False)


# ===== Request models =====

class SubmitJobRequest(BaseModel):
    type: JobType
    payload: Dict[str, Any]
    priority: JobPriority = JobPriority.NORMAL
    scheduled_at: Optional[int] = Field(None, description="Earliest run time, epoch milliseconds")
    requested_by: Optional[str] = None


class SubmitBatchRequest(BaseModel):
    items: List[Dict[str, Any]] = Field(..., min_length=1, description="Content generation payloads")
    priority: JobPriority = JobPriority.NORMAL
    requested_by: Optional[str] = None
    auto_publish: bool = False
    notify_email: Optional[str] = None


# ===== Submission =====

@router.post("/jobs", status_code=201)
async def submit_job(request: SubmitJobRequest, queue: JobQueue = Depends(get_queue)):
    """Queue a single job."""
    try:
        job = await queue.enqueue(
            request.type,
            request.payload,
            request.priority,
            request.scheduled_at,
            requested_by=request.requested_by,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=_validation_detail(e))

    return {"job": job}


@router.post("/batches", status_code=201)
async def submit_batch(request: SubmitBatchRequest, queue: JobQueue = Depends(get_queue)):
    """Queue a batch of content generation jobs."""
    try:
        batch, jobs = await queue.enqueue_batch(
            request.items,
            request.priority,
            requested_by=request.requested_by,
            auto_publish=request.auto_publish,
            notify_email=request.notify_email,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=_validation_detail(e))
    except (EmptyBatchError, BatchTooLargeError) as e:
        raise HTTPException(status_code=422, detail=str(e))

    return {"batch": batch, "job_ids": [job.id for job in jobs]}


@router.get("/batches/{batch_id}")
async def get_batch_progress(batch_id: str, queue: JobQueue = Depends(get_queue)):
    """Batch progress, including the member currently being processed."""
    progress = await queue.batches.get_progress(batch_id)
    if progress is None:
        raise HTTPException(status_code=404, detail="Batch not found")
    return progress


@router.get("/batches/{batch_id}/jobs")
async def get_batch_jobs(batch_id: str, queue: JobQueue = Depends(get_queue)):
    batch = await queue.batches.get(batch_id)
    if batch is None:
        raise HTTPException(status_code=404, detail="Batch not found")
    return {"batch": batch, "jobs": await queue.batches.get_jobs(batch_id)}


# ===== Statistics =====

@router.get("/stats")
async def get_queue_stats(queue: JobQueue = Depends(get_queue)):
    """Live queue depths plus today's counters."""
    return await queue.get_queue_stats()


@router.get("/stats/daily")
async def get_daily_stats(
    days: int = Query(7, ge=1, le=90),
    queue: JobQueue = Depends(get_queue),
):
    """Per-day event counters, oldest first."""
    return {"days": await queue.stats.get_range(days)}


# ===== Job lists =====

@router.get("/jobs/pending")
async def list_pending_jobs(
    queue_name: str = Query("content", alias="queue", description="content, image, translation or seo"),
    limit: int = Query(50, ge=1, le=500),
    queue: JobQueue = Depends(get_queue),
):
    try:
        jobs = await queue.list_pending(queue_name, limit)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown queue: {queue_name}")
    return {"queue": queue_name, "jobs": jobs}


@router.get("/jobs/processing")
async def list_processing_jobs(
    limit: int = Query(50, ge=1, le=500),
    queue: JobQueue = Depends(get_queue),
):
    return {"jobs": await queue.list_processing(limit)}


@router.get("/jobs/dead")
async def list_dead_jobs(
    limit: int = Query(50, ge=1, le=500),
    queue: JobQueue = Depends(get_queue),
):
    return {"jobs": await queue.list_dead(limit)}


@router.get("/jobs/completed")
async def list_completed_jobs(
    limit: int = Query(50, ge=1, le=100),
    queue: JobQueue = Depends(get_queue),
):
    return {"jobs": await queue.list_completed(limit)}


@router.get("/jobs/{job_id}")
async def get_job(job_id: str, queue: JobQueue = Depends(get_queue)):
    job = await queue.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return {"job": job}


# ===== Operator actions =====

@router.delete("/jobs/{job_id}")
async def cancel_job(job_id: str, queue: JobQueue = Depends(get_queue)):
    """Cancel a pending job."""
    job = await queue.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")

    if not await queue.cancel(job_id):
        current = await queue.get_job(job_id)
        status = current.status.value if current else job.status.value
        raise HTTPException(status_code=409, detail=f"Job is {status}; only pending jobs can be cancelled")

    logger.info("Job cancelled by admin", job_id=job_id)
    return {"status": "cancelled", "job_id": job_id}


@router.post("/jobs/{job_id}/replay")
async def replay_dead_job(job_id: str, queue: JobQueue = Depends(get_queue)):
    """Re-queue a dead job with its attempts reset."""
    job = await queue.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    if job.status != JobStatus.DEAD or not await queue.replay_dead(job_id):
        raise HTTPException(status_code=409, detail=f"Job is {job.status.value}; only dead jobs can be replayed")

    logger.info("Dead job replayed by admin", job_id=job_id)
    return {"status": "replayed", "job": await queue.get_job(job_id)}


@router.post("/maintenance")
async def trigger_maintenance(queue: JobQueue = Depends(get_queue)):
    """Reclaim stale jobs and purge expired records now."""
    result = await run_maintenance(queue)
    logger.info("Maintenance triggered by admin", **result)
    return result


# ===== Logs & health =====

@router.get("/logs")
async def get_logs(
    limit: int = Query(100, ge=1, le=500),
    level: Optional[str] = Query(None, description="Filter by level (debug, info, warning, error, critical)"),
    source: Optional[str] = Query(None, description="Filter by source"),
    job_id: Optional[str] = Query(None, description="Filter by job"),
    batch_id: Optional[str] = Query(None, description="Filter by batch"),
    queue: Optional[str] = Query(None, description="Filter by queue name"),
):
    """Get recent log entries from the in-memory buffer."""
    log_buffer = get_log_buffer()

    level_filter = None
    if level:
        try:
            level_filter = LogLevel(level.lower())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid log level: {level}")

    return {
        "logs": log_buffer.get_recent(
            limit=limit,
            level=level_filter,
            source=source,
            job_id=job_id,
            batch_id=batch_id,
            queue=queue,
        ),
        "stats": log_buffer.get_stats(),
    }


@router.get("/jobs/{job_id}/logs")
async def get_job_logs(job_id: str):
    """Buffered log trail of one job, oldest first."""
    return {"job_id": job_id, "logs": get_log_buffer().get_job_trail(job_id)}


@router.get("/health")
async def queue_health(queue: JobQueue = Depends(get_queue)):
    health = await redis_health_check(queue.store.client, queue.keys.prefix)
    if not health["connected"]:
        raise HTTPException(status_code=503, detail=health)
    return health
