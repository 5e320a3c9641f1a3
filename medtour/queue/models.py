"""
Job, batch and payload models for the content generation queue.

Everything here is persisted as a JSON string inside a Redis hash field,
so records are self-describing and need no schema migration.
"""

from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator

Locale = Literal["en", "ko", "zh-TW", "zh-CN", "ja", "th", "mn", "ru"]

SUPPORTED_LOCALES: tuple[str, ...] = ("en", "ko", "zh-TW", "zh-CN", "ja", "th", "mn", "ru")

# Score layout: tier in the high-order digits, reverse scheduled time below it.
# 4 * 10**13 stays under 2**53, so Redis double scores remain exact.
MAX_TIMESTAMP_MS = 9_999_999_999_999
TIER_WEIGHT = 10_000_000_000_000


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def _random_suffix(length: int = 9) -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "".join(random.choices(alphabet, k=length))


def generate_job_id(timestamp_ms: Optional[int] = None) -> str:
    return f"job_{timestamp_ms or now_ms()}_{_random_suffix()}"


def generate_batch_id(timestamp_ms: Optional[int] = None) -> str:
    return f"batch_{timestamp_ms or now_ms()}_{_random_suffix()}"


class JobType(str, Enum):
    """Closed set of work categories. Each maps to its own pending queue."""
    CONTENT_GENERATION = "content_generation"
    IMAGE_GENERATION = "image_generation"
    TRANSLATION = "translation"
    SEO_OPTIMIZATION = "seo_optimization"

    @property
    def queue_name(self) -> str:
        return _QUEUE_NAMES[self]


_QUEUE_NAMES = {
    JobType.CONTENT_GENERATION: "content",
    JobType.IMAGE_GENERATION: "image",
    JobType.TRANSLATION: "translation",
    JobType.SEO_OPTIMIZATION: "seo",
}

QUEUE_NAMES: tuple[str, ...] = tuple(_QUEUE_NAMES.values())


def job_type_for_queue(queue_name: str) -> JobType:
    for job_type, name in _QUEUE_NAMES.items():
        if name == queue_name:
            return job_type
    raise ValueError(f"Unknown queue: {queue_name}")


class JobPriority(str, Enum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def tier(self) -> int:
        return _PRIORITY_TIERS[self]


_PRIORITY_TIERS = {
    JobPriority.HIGH: 3,
    JobPriority.NORMAL: 2,
    JobPriority.LOW: 1,
}


class JobStatus(str, Enum):
    """Status values for queued jobs"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD = "dead"


class BatchStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.COMPLETED, BatchStatus.PARTIAL, BatchStatus.FAILED)


def queue_score(priority: JobPriority, scheduled_at: int) -> int:
    """
    Sort score for a pending queue entry.

    Higher priority always sorts above lower priority; within a tier an
    earlier scheduled_at gives a higher score, so reverse range
    reads return the earliest-scheduled job of the highest tier first.
    """
    return priority.tier * TIER_WEIGHT + (MAX_TIMESTAMP_MS - scheduled_at)


def ready_score_range(priority: JobPriority, now: int) -> tuple[int, int]:
    """(min, max) scores of entries in `priority`'s tier that are due at `now`."""
    base = priority.tier * TIER_WEIGHT
    return base + (MAX_TIMESTAMP_MS - now), base + MAX_TIMESTAMP_MS


# =============================================================================
# Payloads
# =============================================================================

class ContentGenerationPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    keyword_id: str
    keyword: str = Field(min_length=1)
    locale: Locale = "en"
    category: str = "general"
    keyword_ko: Optional[str] = None
    target_word_count: int = Field(default=1500, ge=300, le=6000)
    auto_publish: bool = False


class ImageGenerationPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    blog_post_id: str
    prompt: str = Field(min_length=1)
    style: str = "photorealistic"
    aspect_ratio: str = "16:9"
    alt_text: Optional[str] = None


class TranslationPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    blog_post_id: str
    source_locale: Locale
    target_locales: List[Locale] = Field(min_length=1)

    @field_validator("target_locales")
    @classmethod
    def drop_source_locale(cls, v, info):
        source = info.data.get("source_locale")
        targets = [loc for loc in dict.fromkeys(v) if loc != source]
        if not targets:
            raise ValueError("target_locales must contain a locale other than source_locale")
        return targets


class SeoOptimizationPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    blog_post_id: str
    locale: Locale
    keyword: str = Field(min_length=1)


PAYLOAD_MODELS: Dict[JobType, Type[BaseModel]] = {
    JobType.CONTENT_GENERATION: ContentGenerationPayload,
    JobType.IMAGE_GENERATION: ImageGenerationPayload,
    JobType.TRANSLATION: TranslationPayload,
    JobType.SEO_OPTIMIZATION: SeoOptimizationPayload,
}


def validate_payload(job_type: JobType, payload: Dict[str, Any] | BaseModel) -> Dict[str, Any]:
    """Validate a raw payload against its job type and return the normalized dict."""
    model = PAYLOAD_MODELS[job_type]
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    return model.model_validate(payload).model_dump()


# =============================================================================
# Records
# =============================================================================

class Job(BaseModel):
    """The unit of asynchronous work."""

    id: str
    type: JobType
    payload: Dict[str, Any]
    priority: JobPriority = JobPriority.NORMAL
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3
    created_at: int
    updated_at: int
    scheduled_at: Optional[int] = None
    started_at: Optional[int] = None
    completed_at: Optional[int] = None
    error: Optional[str] = None
    result: Optional[Any] = None
    batch_id: Optional[str] = None
    requested_by: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def queue_name(self) -> str:
        return self.type.queue_name

    @property
    def score(self) -> int:
        return queue_score(self.priority, self.scheduled_at or self.created_at)

    @property
    def keyword(self) -> Optional[str]:
        return self.payload.get("keyword") or self.metadata.get("keyword")

    def typed_payload(self) -> BaseModel:
        return PAYLOAD_MODELS[self.type].model_validate(self.payload)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str) -> "Job":
        return cls.model_validate_json(raw)


class Batch(BaseModel):
    """A cohort of content jobs submitted together."""

    id: str
    job_ids: List[str] = Field(default_factory=list)
    keyword_ids: List[str] = Field(default_factory=list)
    total: int
    completed: int = 0
    failed: int = 0
    status: BatchStatus = BatchStatus.PENDING
    requested_by: Optional[str] = None
    auto_publish: bool = False
    notify_email: Optional[str] = None
    created_at: int
    started_at: Optional[int] = None
    completed_at: Optional[int] = None

    @property
    def processed(self) -> int:
        return self.completed + self.failed

    @property
    def is_complete(self) -> bool:
        return self.status.is_terminal


def derive_batch_status(total: int, completed: int, failed: int, started: bool) -> BatchStatus:
    """Batch status as a pure function of its counters."""
    if total > 0 and completed + failed >= total:
        if failed == 0:
            return BatchStatus.COMPLETED
        if completed == 0:
            return BatchStatus.FAILED
        return BatchStatus.PARTIAL
    if started or completed + failed > 0:
        return BatchStatus.PROCESSING
    return BatchStatus.PENDING


class CurrentJob(BaseModel):
    id: str
    keyword: Optional[str] = None
    status: JobStatus


class BatchProgress(BaseModel):
    batch_id: str
    total: int
    completed: int
    failed: int
    status: BatchStatus
    current_job: Optional[CurrentJob] = None
    is_complete: bool
    started_at: int
    updated_at: int


class QueueCounts(BaseModel):
    pending: int = 0
    processing: int = 0
    completed: int = 0
    retried: int = 0
    dead: int = 0


class QueueStats(BaseModel):
    queues: Dict[str, QueueCounts]
    processing_now: int
    dead_letter: int
    date: str


@dataclass(frozen=True)
class BatchUpdate:
    """Result of counting one member outcome into its batch."""
    batch: Batch
    counted: bool
    finished_now: bool


@dataclass(frozen=True)
class CompleteOutcome:
    job: Job
    batch_update: Optional[BatchUpdate] = None


@dataclass(frozen=True)
class FailOutcome:
    """What fail() did with a job."""
    retrying: bool = False
    moved_to_dlq: bool = False
    ignored: bool = False
    retry_at: Optional[int] = None
    job: Optional[Job] = None
    batch_update: Optional[BatchUpdate] = None

    @property
    def settled(self) -> bool:
        return self.retrying or self.moved_to_dlq
