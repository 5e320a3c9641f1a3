"""
Daily queue statistics.

One Redis hash per UTC day, field "<queue>:<event>" -> count. Counters are
approximate trend data; exact per-job accounting lives on the Job record.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from medtour.queue.connection import QueueKeys
from medtour.queue.models import now_ms
from medtour.queue.store import KeyValueStore

STAT_EVENTS = ("enqueued", "processing", "completed", "retried", "dead", "cancelled", "replayed")


def day_key(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")


class QueueStatistics:

    def __init__(
        self,
        store: KeyValueStore,
        keys: QueueKeys,
        ttl_seconds: int = 90 * 24 * 60 * 60,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.keys = keys
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    async def increment(self, queue_name: str, event: str, amount: int = 1):
        if event not in STAT_EVENTS:
            raise ValueError(f"Unknown stat event: {event}")
        stats_key = self.keys.stats(day_key(self.clock()))
        async with self.store.pipeline() as pipe:
            pipe.hincrby(stats_key, f"{queue_name}:{event}", amount)
            pipe.expire(stats_key, self.ttl_seconds)
            await pipe.execute()

    async def get_day(self, day: Optional[str] = None) -> Dict[str, int]:
        day = day or day_key(self.clock())
        raw = await self.store.hgetall(self.keys.stats(day))
        return {field: int(value) for field, value in raw.items()}

    async def get_range(self, days: int = 7) -> List[Dict[str, object]]:
        """Per-day counters for the last `days` days, oldest first."""
        today = datetime.fromtimestamp(self.clock() / 1000, tz=timezone.utc)
        result = []
        for offset in range(days - 1, -1, -1):
            day = (today - timedelta(days=offset)).strftime("%Y-%m-%d")
            result.append({"date": day, "counters": await self.get_day(day)})
        return result
