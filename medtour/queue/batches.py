"""
Batch tracking.

A batch groups content jobs submitted together. Its counters live in a Redis
hash and only move through atomic HINCRBY calls; a per-batch "settled" set
makes sure each member is counted once, however many times completion or
failure is reported for it. Status is derived from the counters on every
read.
"""

import json
from typing import Callable, List, Literal, Optional

from redis.asyncio.client import Pipeline

from medtour.queue.connection import QueueKeys
from medtour.queue.models import (
    Batch,
    BatchProgress,
    BatchUpdate,
    CurrentJob,
    Job,
    JobStatus,
    derive_batch_status,
    now_ms,
)
from medtour.queue.store import KeyValueStore
from medtour.utils.logging import queue_logger as logger

BatchOutcome = Literal["completed", "failed"]

_RECORD_FIELDS = ("id", "job_ids", "keyword_ids", "requested_by", "auto_publish", "notify_email", "created_at")


class BatchTracker:

    def __init__(
        self,
        store: KeyValueStore,
        keys: QueueKeys,
        ttl_seconds: int = 7 * 24 * 60 * 60,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.keys = keys
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def stage_create(self, pipe: Pipeline, batch: Batch):
        """Queue the batch writes on `pipe` so they commit with the member jobs."""
        key = self.keys.batch(batch.id)
        record = batch.model_dump(mode="json", include=set(_RECORD_FIELDS))
        pipe.hset(key, mapping={
            "record": json.dumps(record),
            "total": batch.total,
            "completed": 0,
            "failed": 0,
        })
        pipe.expire(key, self.ttl_seconds)

    async def get(self, batch_id: str) -> Optional[Batch]:
        raw = await self.store.hgetall(self.keys.batch(batch_id))
        if not raw or "record" not in raw:
            return None

        record = json.loads(raw["record"])
        total = int(raw.get("total", 0))
        completed = int(raw.get("completed", 0))
        failed = int(raw.get("failed", 0))
        started_at = int(raw["started_at"]) if raw.get("started_at") else None
        completed_at = int(raw["completed_at"]) if raw.get("completed_at") else None

        return Batch(
            **record,
            total=total,
            completed=completed,
            failed=failed,
            status=derive_batch_status(total, completed, failed, started_at is not None),
            started_at=started_at,
            completed_at=completed_at,
        )

    async def mark_started(self, batch_id: str):
        key = self.keys.batch(batch_id)
        if await self.store.hget(key, "record") is None:
            return
        # Every write to the batch hash re-arms its TTL
        async with self.store.pipeline() as pipe:
            pipe.hsetnx(key, "started_at", self.clock())
            pipe.expire(key, self.ttl_seconds)
            await pipe.execute()

    async def record_outcome(self, batch_id: str, job_id: str, outcome: BatchOutcome) -> Optional[BatchUpdate]:
        """
        Count a member's terminal outcome into its batch.

        Returns None when the batch no longer exists (expired). A member that
        was already counted leaves the counters untouched.
        """
        key = self.keys.batch(batch_id)
        if await self.store.hget(key, "record") is None:
            logger.warning("Batch missing while recording outcome", batch_id=batch_id, job_id=job_id)
            return None

        settled_key = self.keys.batch_settled(batch_id)
        counted = bool(await self.store.sadd(settled_key, job_id))
        finished_now = False

        if counted:
            async with self.store.pipeline() as pipe:
                pipe.expire(settled_key, self.ttl_seconds)
                pipe.hincrby(key, outcome, 1)
                pipe.expire(key, self.ttl_seconds)
                await pipe.execute()

            values = await self.store.hmget(key, ["total", "completed", "failed"])
            total, completed, failed = (int(v or 0) for v in values)
            if total > 0 and completed + failed >= total:
                async with self.store.pipeline() as pipe:
                    pipe.hsetnx(key, "completed_at", self.clock())
                    pipe.expire(key, self.ttl_seconds)
                    first_finish, _ = await pipe.execute()
                finished_now = bool(first_finish)
        else:
            logger.debug("Batch member already counted", batch_id=batch_id, job_id=job_id)

        batch = await self.get(batch_id)
        if batch is None:
            return None

        if finished_now:
            logger.info(
                "Batch finished",
                batch_id=batch_id,
                status=batch.status.value,
                completed=batch.completed,
                failed=batch.failed,
                total=batch.total,
            )

        return BatchUpdate(batch=batch, counted=counted, finished_now=finished_now)

    async def get_jobs(self, batch_id: str) -> List[Job]:
        batch = await self.get(batch_id)
        if batch is None:
            return []
        raw_jobs = await self.store.hmget(self.keys.jobs, batch.job_ids)
        return [Job.from_json(raw) for raw in raw_jobs if raw]

    async def get_progress(self, batch_id: str) -> Optional[BatchProgress]:
        batch = await self.get(batch_id)
        if batch is None:
            return None

        jobs = await self.get_jobs(batch_id)
        processing = next((j for j in jobs if j.status == JobStatus.PROCESSING), None)

        return BatchProgress(
            batch_id=batch.id,
            total=batch.total,
            completed=batch.completed,
            failed=batch.failed,
            status=batch.status,
            current_job=CurrentJob(
                id=processing.id,
                keyword=processing.keyword,
                status=processing.status,
            ) if processing else None,
            is_complete=batch.is_complete,
            started_at=batch.started_at or batch.created_at,
            updated_at=self.clock(),
        )
