"""
Key-value store adapter.

A thin async handle over Redis exposing the structures the queue uses:
hashes, sorted sets, sets, lists, key TTLs and transactional pipelines.
Callers serialize their own records.
"""

from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Tuple

from redis.asyncio import Redis
from redis.asyncio.client import Pipeline

from medtour.queue.connection import get_redis_connection


class KeyValueStore:
    """
    Usage:
        store = KeyValueStore()
        async with store.pipeline() as pipe:
            pipe.hset("queue:jobs", job.id, job.to_json())
            pipe.zadd("queue:content", {job.id: job.score})
            await pipe.execute()

    Pipelines are MULTI/EXEC transactions: all commands apply together,
    but callers must not depend on per-command results.
    """

    def __init__(self, client: Optional[Redis] = None):
        self._client = client

    @property
    def client(self) -> Redis:
        if self._client is None:
            self._client = get_redis_connection()
        return self._client

    def pipeline(self, transaction: bool = True) -> Pipeline:
        return self.client.pipeline(transaction=transaction)

    # =========================================================================
    # Hashes
    # =========================================================================

    async def hget(self, key: str, field: str) -> Optional[str]:
        return await self.client.hget(key, field)

    async def hmget(self, key: str, fields: Sequence[str]) -> List[Optional[str]]:
        if not fields:
            return []
        return await self.client.hmget(key, list(fields))

    async def hset(self, key: str, field: Optional[str] = None, value: Any = None,
                   mapping: Optional[Mapping[str, Any]] = None) -> int:
        return await self.client.hset(key, field, value, mapping=mapping)

    async def hsetnx(self, key: str, field: str, value: Any) -> bool:
        return bool(await self.client.hsetnx(key, field, value))

    async def hdel(self, key: str, *fields: str) -> int:
        if not fields:
            return 0
        return await self.client.hdel(key, *fields)

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        return await self.client.hincrby(key, field, amount)

    async def hgetall(self, key: str) -> Dict[str, str]:
        return await self.client.hgetall(key)

    async def hscan(self, key: str, count: int = 500) -> AsyncIterator[Tuple[str, str]]:
        async for field, value in self.client.hscan_iter(key, count=count):
            yield field, value

    # =========================================================================
    # Sorted sets
    # =========================================================================

    async def zadd(self, key: str, mapping: Mapping[str, float], nx: bool = False) -> int:
        return await self.client.zadd(key, dict(mapping), nx=nx)

    async def zrem(self, key: str, *members: str) -> int:
        if not members:
            return 0
        return await self.client.zrem(key, *members)

    async def zrevrangebyscore(self, key: str, max_score: float, min_score: float,
                               offset: Optional[int] = None, count: Optional[int] = None) -> List[str]:
        return await self.client.zrevrangebyscore(key, max_score, min_score, start=offset, num=count)

    async def zrangebyscore(self, key: str, min_score: float, max_score: float,
                            offset: Optional[int] = None, count: Optional[int] = None) -> List[str]:
        return await self.client.zrangebyscore(key, min_score, max_score, start=offset, num=count)

    async def zrange(self, key: str, start: int, end: int) -> List[str]:
        return await self.client.zrange(key, start, end)

    async def zrevrange(self, key: str, start: int, end: int) -> List[str]:
        return await self.client.zrevrange(key, start, end)

    async def zcard(self, key: str) -> int:
        return await self.client.zcard(key)

    async def zscore(self, key: str, member: str) -> Optional[float]:
        return await self.client.zscore(key, member)

    # =========================================================================
    # Sets, lists, keys
    # =========================================================================

    async def sadd(self, key: str, *members: str) -> int:
        return await self.client.sadd(key, *members)

    async def lpush(self, key: str, *values: str) -> int:
        return await self.client.lpush(key, *values)

    async def ltrim(self, key: str, start: int, end: int) -> bool:
        return await self.client.ltrim(key, start, end)

    async def lrange(self, key: str, start: int, end: int) -> List[str]:
        return await self.client.lrange(key, start, end)

    async def llen(self, key: str) -> int:
        return await self.client.llen(key)

    async def expire(self, key: str, seconds: int) -> bool:
        return await self.client.expire(key, seconds)
