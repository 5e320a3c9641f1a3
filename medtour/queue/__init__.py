"""
Redis job queue for content generation.

Priority queues per job type, retries with exponential backoff, a
dead-letter set, batch tracking and daily statistics.
"""

from .connection import get_redis_connection, close_redis_connection, redis_health_check, QueueKeys
from .errors import (
    QueueError,
    BatchNotFoundError,
    EmptyBatchError,
    BatchTooLargeError,
)
from .job_queue import JobQueue, get_job_queue
from .models import Job, JobType, JobPriority, JobStatus, Batch, BatchStatus

__all__ = [
    "get_redis_connection",
    "close_redis_connection",
    "redis_health_check",
    "QueueKeys",
    "QueueError",
    "BatchNotFoundError",
    "EmptyBatchError",
    "BatchTooLargeError",
    "JobQueue",
    "get_job_queue",
    "Job",
    "JobType",
    "JobPriority",
    "JobStatus",
    "Batch",
    "BatchStatus",
]
