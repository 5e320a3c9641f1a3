"""
Worker tests.

The queue is real (fakeredis); generators and the content store are mocks.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from medtour.generation.base import GenerationError, GenerationResult, GenerationUsage, PermanentGenerationError
from medtour.jobs.worker import ContentWorker, WorkerOptions
from medtour.queue.errors import BatchNotFoundError
from medtour.queue.models import BatchStatus, JobStatus, JobType
from medtour.utils.logging import get_log_buffer

from .conftest import content_payload

ARTICLE = {"title": "Rhinoplasty in Korea", "content": "## Body", "tags": []}


def article_result(score=78):
    return GenerationResult(
        data={"article": ARTICLE, "quality": {"overall": score}},
        usage=GenerationUsage("claude-test", 100, 900),
        elapsed_ms=1200,
    )


@pytest.fixture
def router():
    router = MagicMock()
    router.generate = AsyncMock(return_value=article_result())
    return router


@pytest.fixture
def content_store():
    store = MagicMock()
    store.save_generated_post = AsyncMock(return_value={"id": "post-1", "slug": "rhinoplasty-in-korea"})
    store.save_cover_image = AsyncMock(return_value="https://cdn.example/cover.png")
    store.save_translations = AsyncMock(return_value=[{"id": "post-ko", "locale": "ko"}])
    store.update_seo_meta = AsyncMock(return_value={"id": "post-1"})
    store.record_failure = AsyncMock()
    return store


@pytest.fixture
def events():
    return []


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def worker(queue, router, content_store, events, sleep):
    return ContentWorker(
        queue=queue,
        router=router,
        content_store=content_store,
        on_progress=events.append,
        sleep=sleep,
    )


class TestProcessJob:

    async def test_successful_content_job(self, worker, queue, content_store, events):
        job = await queue.enqueue(JobType.CONTENT_GENERATION, content_payload())

        result = await worker.process_next_job()

        assert result.success
        assert result.outcome == "completed"
        assert result.quality_score == 78
        assert result.result["blog_post_id"] == "post-1"
        assert result.result["usage"]["output_tokens"] == 900

        stored = await queue.get_job(job.id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.result["slug"] == "rhinoplasty-in-korea"

        content_store.save_generated_post.assert_awaited_once()
        assert [e.type for e in events] == ["job_started", "job_completed"]
        assert events[1].quality_score == 78
        assert events[0].keyword == "rhinoplasty korea"

    async def test_image_job_persists_cover(self, worker, queue, router, content_store):
        router.generate.return_value = GenerationResult(
            data={"image_bytes": b"png", "content_type": "image/png", "prompt": "lobby"},
            usage=GenerationUsage("imagen"),
        )
        await queue.enqueue(JobType.IMAGE_GENERATION, {"blog_post_id": "post-1", "prompt": "lobby"})

        result = await worker.process_next_job(["image"])

        assert result.success
        assert result.result["image_url"] == "https://cdn.example/cover.png"
        assert "image_bytes" not in result.result
        content_store.save_cover_image.assert_awaited_once()

    async def test_translation_job_saves_rows(self, worker, queue, router, content_store):
        router.generate.return_value = GenerationResult(
            data={"source_post": {"id": "post-1"}, "articles": {"ko": ARTICLE}},
            usage=GenerationUsage("claude-test"),
        )
        await queue.enqueue(JobType.TRANSLATION, {"blog_post_id": "post-1", "source_locale": "en", "target_locales": ["ko"]})

        result = await worker.process_next_job(["translation"])

        assert result.result["translations"] == {"ko": "post-ko"}

    async def test_seo_job_updates_meta(self, worker, queue, router, content_store):
        meta = {"meta_title": "T", "meta_description": "D"}
        router.generate.return_value = GenerationResult(
            data={"meta": meta, "existing_seo_meta": {"faq": []}},
            usage=GenerationUsage("claude-test"),
        )
        await queue.enqueue(JobType.SEO_OPTIMIZATION, {"blog_post_id": "post-1", "locale": "en", "keyword": "k"})

        result = await worker.process_next_job(["seo"])

        assert result.result["meta_title"] == "T"
        content_store.update_seo_meta.assert_awaited_once_with("post-1", meta, existing={"faq": []})

    async def test_retryable_failure(self, worker, queue, router, content_store, events):
        router.generate.side_effect = GenerationError("rate limited")
        job = await queue.enqueue(JobType.CONTENT_GENERATION, content_payload())

        result = await worker.process_next_job()

        assert not result.success
        assert result.outcome == "retrying"
        assert result.error == "rate limited"
        assert (await queue.get_job(job.id)).status == JobStatus.PENDING
        content_store.record_failure.assert_awaited_once()
        assert [e.type for e in events] == ["job_started", "job_failed"]

    async def test_permanent_failure_goes_dead(self, worker, queue, router):
        router.generate.side_effect = PermanentGenerationError("ANTHROPIC_API_KEY is not configured")
        job = await queue.enqueue(JobType.CONTENT_GENERATION, content_payload())

        result = await worker.process_next_job()

        assert result.outcome == "dead"
        assert (await queue.get_job(job.id)).status == JobStatus.DEAD

    async def test_unexpected_error_is_retried(self, worker, queue, router):
        router.generate.side_effect = KeyError("article")
        await queue.enqueue(JobType.CONTENT_GENERATION, content_payload())

        result = await worker.process_next_job()

        assert result.outcome == "retrying"
        assert "article" in result.error

    async def test_persist_error_fails_job(self, worker, queue, content_store):
        content_store.save_generated_post.side_effect = RuntimeError("supabase 500")
        job = await queue.enqueue(JobType.CONTENT_GENERATION, content_payload())

        result = await worker.process_next_job()

        assert result.outcome == "retrying"
        assert (await queue.get_job(job.id)).error == "supabase 500"

    async def test_record_failure_error_is_swallowed(self, worker, queue, router, content_store):
        router.generate.side_effect = GenerationError("bad json")
        content_store.record_failure.side_effect = RuntimeError("supabase down")
        await queue.enqueue(JobType.CONTENT_GENERATION, content_payload())

        result = await worker.process_next_job()
        assert result.outcome == "retrying"

    async def test_observer_errors_do_not_break_processing(self, queue, router, content_store):
        def broken(event):
            raise RuntimeError("observer bug")

        worker = ContentWorker(queue=queue, router=router, content_store=content_store, on_progress=broken)
        await queue.enqueue(JobType.CONTENT_GENERATION, content_payload())

        assert (await worker.process_next_job()).success

    async def test_async_observer(self, queue, router, content_store):
        observer = AsyncMock()
        worker = ContentWorker(queue=queue, router=router, content_store=content_store, on_progress=observer)
        await queue.enqueue(JobType.CONTENT_GENERATION, content_payload())

        await worker.process_next_job()
        assert observer.await_count == 2

    async def test_job_settled_elsewhere_is_ignored(self, worker, queue, router):
        job = await queue.enqueue(JobType.CONTENT_GENERATION, content_payload())

        async def reclaimed_during_generation(j):
            await queue.fail(j.id, "Processing timeout exceeded")
            return article_result()

        router.generate.side_effect = reclaimed_during_generation

        result = await worker.process_next_job()
        assert result.outcome == "ignored"
        assert (await queue.get_job(job.id)).status == JobStatus.PENDING

    async def test_job_log_trail(self, worker, queue, router):
        router.generate.side_effect = GenerationError("rate limited")
        job = await queue.enqueue(JobType.CONTENT_GENERATION, content_payload())

        await worker.process_next_job()

        trail = get_log_buffer().get_job_trail(job.id)
        messages = [e["message"] for e in trail]
        assert messages.index("Processing job") < messages.index("Job failed")
        failed = trail[messages.index("Job failed")]
        assert failed["source"] == "worker"
        assert failed["queue"] == "content"
        assert failed["metadata"]["retrying"] is True

    async def test_nothing_due(self, worker):
        assert await worker.process_next_job() is None


class TestBatchEvents:

    async def test_batch_completed_emitted_once(self, worker, queue, events):
        batch, _ = await queue.enqueue_batch([content_payload("a"), content_payload("b")])

        summary = await worker.process_batch(batch.id)

        assert summary["completed"] == 2
        assert summary["failed"] == 0
        finished = [e for e in events if e.type == "batch_completed"]
        assert len(finished) == 1
        assert finished[0].batch_id == batch.id
        assert finished[0].completed == 2
        assert finished[0].total == 2
        assert (await queue.batches.get(batch.id)).status == BatchStatus.COMPLETED

    async def test_process_batch_sleeps_between_jobs(self, worker, queue, sleep):
        batch, _ = await queue.enqueue_batch([content_payload("a"), content_payload("b")])

        await worker.process_batch(batch.id, inter_job_delay=2.0)
        sleep.assert_awaited_once_with(2.0)

    async def test_process_batch_stops_when_queue_dry(self, worker, queue, router, clock):
        router.generate.side_effect = GenerationError("transient")
        batch, _ = await queue.enqueue_batch([content_payload("a")])

        summary = await worker.process_batch(batch.id, inter_job_delay=0)

        assert summary["failed"] == 1
        assert (await queue.batches.get(batch.id)).status == BatchStatus.PROCESSING

    async def test_unknown_batch(self, worker):
        with pytest.raises(BatchNotFoundError):
            await worker.process_batch("batch_missing")

    async def test_partial_batch_event(self, worker, queue, router, events):
        router.generate.side_effect = [article_result(), PermanentGenerationError("bad payload")]
        batch, _ = await queue.enqueue_batch([content_payload("a"), content_payload("b")])

        await worker.process_batch(batch.id, inter_job_delay=0)

        assert (await queue.batches.get(batch.id)).status == BatchStatus.PARTIAL
        assert [e.type for e in events].count("batch_completed") == 1


class TestRunLoop:

    async def test_bounded_run(self, worker, queue, clock, sleep):
        for i in range(3):
            await queue.enqueue(JobType.CONTENT_GENERATION, content_payload(f"kw {i}"))
            clock.advance(1)

        stats = await worker.run(WorkerOptions(max_jobs=2, inter_job_delay=1.5, poll_interval=1))

        assert stats == {"processed": 2, "completed": 2, "failed": 0}
        assert await queue.store.zcard(queue.keys.pending("content")) == 1
        sleep.assert_awaited_once_with(1.5)
        assert not worker.running

    async def test_burst_run_stops_on_empty(self, worker, queue, router, clock):
        router.generate.side_effect = [article_result(), PermanentGenerationError("nope")]
        await queue.enqueue(JobType.CONTENT_GENERATION, content_payload("a"))
        clock.advance(1)
        await queue.enqueue(JobType.CONTENT_GENERATION, content_payload("b"))

        stats = await worker.run(WorkerOptions(stop_on_empty=True, inter_job_delay=0, poll_interval=1))

        assert stats == {"processed": 2, "completed": 1, "failed": 1}

    async def test_idle_polls_until_stopped(self, worker, sleep):
        polls = []

        async def fake_sleep(seconds):
            polls.append(seconds)
            if len(polls) == 3:
                worker.stop()

        worker._sleep = fake_sleep
        stats = await worker.run(WorkerOptions(poll_interval=5, inter_job_delay=0))

        assert polls == [5, 5, 5]
        assert stats["processed"] == 0

    async def test_store_errors_back_off(self, worker, queue, content_store):
        calls = {"n": 0}
        real_dequeue = queue.dequeue

        async def flaky_dequeue(name):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RedisConnectionError("connection reset")
            return await real_dequeue(name)

        queue.dequeue = flaky_dequeue
        await queue.enqueue(JobType.CONTENT_GENERATION, content_payload())

        stats = await worker.run(WorkerOptions(max_jobs=1, poll_interval=3, inter_job_delay=0))

        assert stats["completed"] == 1
        worker._sleep.assert_awaited_once_with(3)

    async def test_only_listed_queues(self, worker, queue):
        await queue.enqueue(JobType.IMAGE_GENERATION, {"blog_post_id": "p", "prompt": "x"})

        stats = await worker.run(WorkerOptions(stop_on_empty=True, queue_types=["content"], inter_job_delay=0))

        assert stats["processed"] == 0
        assert await queue.store.zcard(queue.keys.pending("image")) == 1
