"""Batch accounting through the queue's complete / fail / cancel paths."""

from medtour.queue.models import BatchStatus, JobStatus

from .conftest import content_payload


async def _fail_until_dead(queue, clock, count):
    """Fail whatever is due until `count` jobs have exhausted their retries."""
    dead = 0
    while dead < count:
        claimed = await queue.dequeue("content")
        if claimed is None:
            clock.advance(queue.retry_policy.max_delay_ms)
            continue
        outcome = await queue.fail(claimed.id, "generator failed")
        if outcome.moved_to_dlq:
            dead += 1


class TestBatchOutcomes:

    async def test_mixed_outcomes_end_partial(self, queue, clock):
        batch, jobs = await queue.enqueue_batch([content_payload(f"kw {i}") for i in range(5)])

        for _ in range(3):
            claimed = await queue.dequeue("content")
            await queue.complete(claimed.id, {"ok": True})

            current = await queue.batches.get(batch.id)
            assert current.completed + current.failed <= current.total

        await _fail_until_dead(queue, clock, 2)

        final = await queue.batches.get(batch.id)
        assert final.status == BatchStatus.PARTIAL
        assert final.completed == 3
        assert final.failed == 2
        assert final.is_complete
        assert final.completed_at is not None

    async def test_all_completed(self, queue):
        batch, jobs = await queue.enqueue_batch([content_payload("a"), content_payload("b")])

        for _ in jobs:
            claimed = await queue.dequeue("content")
            outcome = await queue.complete(claimed.id)

        assert outcome.batch_update.finished_now
        final = await queue.batches.get(batch.id)
        assert final.status == BatchStatus.COMPLETED
        assert final.completed == 2

    async def test_all_failed(self, queue):
        batch, jobs = await queue.enqueue_batch([content_payload("a")])
        await queue.dequeue("content")
        await queue.fail(jobs[0].id, "bad", retryable=False)

        assert (await queue.batches.get(batch.id)).status == BatchStatus.FAILED

    async def test_retry_does_not_count(self, queue):
        batch, jobs = await queue.enqueue_batch([content_payload("a")])
        await queue.dequeue("content")
        outcome = await queue.fail(jobs[0].id, "transient")

        assert outcome.retrying
        assert outcome.batch_update is None
        current = await queue.batches.get(batch.id)
        assert current.failed == 0
        assert current.status == BatchStatus.PROCESSING

    async def test_finished_now_reported_once(self, queue):
        batch, jobs = await queue.enqueue_batch([content_payload("a")])
        await queue.dequeue("content")
        outcome = await queue.complete(jobs[0].id)
        assert outcome.batch_update.finished_now

        # A repeated settlement for the same member is not counted again
        update = await queue.batches.record_outcome(batch.id, jobs[0].id, "completed")
        assert update.counted is False
        assert update.finished_now is False
        assert update.batch.completed == 1


class TestIdempotentAccounting:

    async def test_double_completion_counts_once(self, queue):
        batch, jobs = await queue.enqueue_batch([content_payload("a"), content_payload("b")])
        claimed = await queue.dequeue("content")

        await queue.complete(claimed.id)
        await queue.complete(claimed.id)

        current = await queue.batches.get(batch.id)
        assert current.completed == 1
        assert current.status == BatchStatus.PROCESSING

    async def test_record_outcome_guarded_per_member(self, queue):
        batch, jobs = await queue.enqueue_batch([content_payload("a"), content_payload("b")])

        first = await queue.batches.record_outcome(batch.id, jobs[0].id, "completed")
        again = await queue.batches.record_outcome(batch.id, jobs[0].id, "failed")

        assert first.counted and not again.counted
        assert again.batch.completed == 1
        assert again.batch.failed == 0

    async def test_missing_batch_returns_none(self, queue):
        assert await queue.batches.record_outcome("batch_gone", "job_1", "completed") is None
        assert await queue.batches.get("batch_gone") is None


class TestCancelAndReplay:

    async def test_cancelled_member_counts_as_failed(self, queue):
        batch, jobs = await queue.enqueue_batch([content_payload("a"), content_payload("b")])

        claimed = await queue.dequeue("content")
        await queue.complete(claimed.id)
        other = next(job for job in jobs if job.id != claimed.id)
        assert await queue.cancel(other.id)

        final = await queue.batches.get(batch.id)
        assert final.completed == 1
        assert final.failed == 1
        assert final.status == BatchStatus.PARTIAL

    async def test_replay_keeps_batch_counters(self, queue, clock):
        batch, jobs = await queue.enqueue_batch([content_payload("a")])
        await queue.dequeue("content")
        await queue.fail(jobs[0].id, "bad", retryable=False)
        assert await queue.replay_dead(jobs[0].id)

        await queue.dequeue("content")
        outcome = await queue.complete(jobs[0].id)

        assert outcome.batch_update.counted is False
        final = await queue.batches.get(batch.id)
        assert final.failed == 1
        assert final.completed == 0
        assert final.status == BatchStatus.FAILED


class TestProgress:

    async def test_progress_shows_current_job(self, queue, clock):
        batch, jobs = await queue.enqueue_batch([content_payload("rhinoplasty"), content_payload("lasik")])
        clock.advance(500)
        claimed = await queue.dequeue("content")

        progress = await queue.batches.get_progress(batch.id)
        assert progress.batch_id == batch.id
        assert progress.total == 2
        assert progress.status == BatchStatus.PROCESSING
        assert progress.current_job.id == claimed.id
        assert progress.current_job.keyword == claimed.keyword
        assert progress.current_job.status == JobStatus.PROCESSING
        assert progress.is_complete is False
        assert progress.started_at == claimed.started_at
        assert progress.started_at == batch.created_at + 500
        assert progress.updated_at == clock.now

    async def test_progress_without_processing_member(self, queue):
        batch, _ = await queue.enqueue_batch([content_payload()])

        progress = await queue.batches.get_progress(batch.id)
        assert progress.current_job is None
        assert progress.status == BatchStatus.PENDING
        assert progress.started_at == batch.created_at

    async def test_unknown_batch_progress(self, queue):
        assert await queue.batches.get_progress("batch_unknown") is None
        assert await queue.batches.get_jobs("batch_unknown") == []

    async def test_batch_expires(self, queue, redis_client):
        batch, _ = await queue.enqueue_batch([content_payload()])
        ttl = await redis_client.ttl(queue.keys.batch(batch.id))
        assert 0 < ttl <= 7 * 24 * 60 * 60


class TestBatchKeyExpiry:

    async def test_start_after_expiry_leaves_no_unexpiring_key(self, queue, redis_client):
        batch, _ = await queue.enqueue_batch([content_payload()])
        key = queue.keys.batch(batch.id)
        await redis_client.delete(key)

        await queue.batches.mark_started(batch.id)
        assert await redis_client.exists(key) == 0

    async def test_writes_after_creation_keep_a_ttl(self, queue, redis_client):
        batch, _ = await queue.enqueue_batch([content_payload()])
        claimed = await queue.dequeue("content")
        await queue.complete(claimed.id)

        assert await redis_client.ttl(queue.keys.batch(batch.id)) > 0
        assert await redis_client.ttl(queue.keys.batch_settled(batch.id)) > 0

    async def test_started_stub_written_after_expiry_still_expires(self, queue, redis_client):
        batch, _ = await queue.enqueue_batch([content_payload()])
        key = queue.keys.batch(batch.id)
        real_hget = queue.store.hget

        async def expire_after_check(k, field):
            value = await real_hget(k, field)
            await redis_client.delete(key)
            return value

        queue.store.hget = expire_after_check
        await queue.batches.mark_started(batch.id)

        assert await redis_client.hgetall(key) != {}
        assert 0 < await redis_client.ttl(key) <= 7 * 24 * 60 * 60
        assert await queue.batches.get(batch.id) is None
