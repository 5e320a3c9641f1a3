"""
Test configuration and shared fixtures.

Queue tests run against fakeredis with a controllable clock, so backoff,
deadlines and retention windows are exact.
"""

import os

# Set test environment before importing config
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from typing import Any, Dict, Set
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis, FakeServer

from medtour.queue.connection import QueueKeys
from medtour.queue.job_queue import JobQueue
from medtour.queue.models import Job
from medtour.queue.policy import RetentionPolicy, RetryPolicy
from medtour.queue.store import KeyValueStore
from medtour.utils.logging import get_log_buffer

START_MS = 1_700_000_000_000  # 2023-11-14T22:13:20Z


class FakeClock:
    """Callable epoch-ms clock that only moves when told to."""

    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def redis_client():
    client = FakeAsyncRedis(server=FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def store(redis_client) -> KeyValueStore:
    return KeyValueStore(redis_client)


@pytest.fixture
def keys() -> QueueKeys:
    return QueueKeys("test")


@pytest.fixture
def queue(store, keys, clock) -> JobQueue:
    return JobQueue(
        store=store,
        keys=keys,
        retry_policy=RetryPolicy(),
        retention=RetentionPolicy(),
        strict_scheduling=True,
        max_batch_size=50,
        clock=clock,
    )


@pytest.fixture(autouse=True)
def clear_log_buffer():
    get_log_buffer().clear()
    yield


def content_payload(keyword: str = "rhinoplasty korea", **overrides) -> Dict[str, Any]:
    payload = {
        "keyword_id": f"kw-{keyword.replace(' ', '-')}",
        "keyword": keyword,
        "locale": "en",
        "category": "plastic-surgery",
    }
    payload.update(overrides)
    return payload


async def locations(queue: JobQueue, job: Job) -> Set[str]:
    """Which of the queue's index structures currently hold the job id."""
    found = set()
    if await queue.store.zscore(queue.keys.pending(job.queue_name), job.id) is not None:
        found.add("pending")
    if await queue.store.zscore(queue.keys.processing, job.id) is not None:
        found.add("processing")
    if await queue.store.zscore(queue.keys.dead_letter, job.id) is not None:
        found.add("dead")
    return found


def supabase_result(data):
    result = MagicMock()
    result.data = data
    return result
