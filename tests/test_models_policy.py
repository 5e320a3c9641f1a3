"""Pure model and policy rules: scores, backoff, payload validation, batch status."""

import pytest
from pydantic import ValidationError

from medtour.queue.models import (
    MAX_TIMESTAMP_MS,
    BatchStatus,
    Job,
    JobPriority,
    JobType,
    TranslationPayload,
    derive_batch_status,
    job_type_for_queue,
    queue_score,
    ready_score_range,
    validate_payload,
)
from medtour.queue.policy import RetentionPolicy, RetryPolicy


class TestQueueScore:

    def test_higher_tier_always_wins(self):
        assert queue_score(JobPriority.HIGH, MAX_TIMESTAMP_MS) > queue_score(JobPriority.NORMAL, 0)
        assert queue_score(JobPriority.NORMAL, MAX_TIMESTAMP_MS) > queue_score(JobPriority.LOW, 0)

    def test_earlier_schedule_scores_higher(self):
        assert queue_score(JobPriority.NORMAL, 1000) > queue_score(JobPriority.NORMAL, 2000)

    def test_scores_are_exact_doubles(self):
        assert queue_score(JobPriority.HIGH, 0) < 2 ** 53

    def test_ready_range_bounds_due_entries(self):
        now = 1_700_000_000_000
        low, high = ready_score_range(JobPriority.NORMAL, now)
        assert low <= queue_score(JobPriority.NORMAL, now) <= high
        assert low <= queue_score(JobPriority.NORMAL, now - 1) <= high
        assert queue_score(JobPriority.NORMAL, now + 1) < low
        assert queue_score(JobPriority.HIGH, now) > high


class TestRetryPolicy:

    @pytest.mark.parametrize("attempts,expected", [(1, 5000), (2, 10000), (3, 20000), (10, 300000)])
    def test_exponential_backoff_capped(self, attempts, expected):
        assert RetryPolicy().retry_delay_ms(attempts) == expected

    def test_zero_attempts_uses_initial_delay(self):
        assert RetryPolicy().retry_delay_ms(0) == 5000

    def test_from_config(self):
        policy = RetryPolicy.from_config()
        assert policy.max_attempts == 3
        assert policy.processing_timeout_ms == 30 * 60 * 1000

    def test_retention_from_config(self):
        retention = RetentionPolicy.from_config()
        assert retention.completed_job_ttl_seconds == 24 * 60 * 60
        assert retention.dead_job_ttl_seconds == 30 * 24 * 60 * 60


class TestPayloads:

    def test_translation_drops_source_locale(self):
        payload = TranslationPayload(blog_post_id="p1", source_locale="en", target_locales=["ko", "en", "ja", "ko"])
        assert payload.target_locales == ["ko", "ja"]

    def test_translation_needs_another_locale(self):
        with pytest.raises(ValidationError):
            TranslationPayload(blog_post_id="p1", source_locale="en", target_locales=["en"])

    def test_unsupported_locale_rejected(self):
        with pytest.raises(ValidationError):
            validate_payload(JobType.CONTENT_GENERATION, {"keyword_id": "k", "keyword": "x", "locale": "fr"})

    def test_validate_ignores_unknown_fields(self):
        payload = validate_payload(JobType.SEO_OPTIMIZATION, {
            "blog_post_id": "p1", "locale": "ko", "keyword": "코 성형", "legacy": True,
        })
        assert "legacy" not in payload

    def test_job_type_for_queue(self):
        assert job_type_for_queue("image") == JobType.IMAGE_GENERATION
        with pytest.raises(ValueError):
            job_type_for_queue("video")

    def test_job_round_trips_through_json(self):
        job = Job(
            id="job_1_abc",
            type=JobType.TRANSLATION,
            payload={"blog_post_id": "p1", "source_locale": "en", "target_locales": ["th"]},
            priority=JobPriority.LOW,
            created_at=1,
            updated_at=1,
        )
        restored = Job.from_json(job.to_json())
        assert restored == job
        assert restored.queue_name == "translation"
        assert restored.typed_payload().target_locales == ["th"]

    def test_job_keyword_falls_back_to_metadata(self):
        job = Job(
            id="job_1_abc",
            type=JobType.IMAGE_GENERATION,
            payload={"blog_post_id": "p1", "prompt": "clinic"},
            metadata={"keyword": "dental implants"},
            created_at=1,
            updated_at=1,
        )
        assert job.keyword == "dental implants"


class TestBatchStatus:

    @pytest.mark.parametrize("completed,failed,started,expected", [
        (0, 0, False, BatchStatus.PENDING),
        (0, 0, True, BatchStatus.PROCESSING),
        (1, 0, False, BatchStatus.PROCESSING),
        (3, 0, True, BatchStatus.COMPLETED),
        (2, 1, True, BatchStatus.PARTIAL),
        (0, 3, True, BatchStatus.FAILED),
    ])
    def test_derived_status(self, completed, failed, started, expected):
        assert derive_batch_status(3, completed, failed, started) == expected

    def test_terminal_statuses(self):
        assert BatchStatus.PARTIAL.is_terminal
        assert not BatchStatus.PROCESSING.is_terminal
