"""
Redis connection management for the content job queue.

Provides a singleton async Redis connection and the key layout shared by
producers, workers and maintenance.
"""

from typing import Optional

from redis.asyncio import Redis

from medtour.config import config
from medtour.queue.models import QUEUE_NAMES

# Singleton connection
_redis_connection: Optional[Redis] = None


class QueueKeys:
    """
    Namespaced Redis keys.

    {p}:<queue>              sorted set, pending jobs by priority/scheduled time
    {p}:processing           sorted set, in-flight job ids scored by deadline
    {p}:dead                 sorted set, dead-letter job ids scored by failure time
    {p}:jobs                 hash, job id -> job JSON
    {p}:batch:<id>           hash, batch record + counters
    {p}:batch:<id>:settled   set, member ids already counted into the batch
    {p}:completed            list, recently completed job ids
    {p}:stats:<YYYY-MM-DD>   hash, "<queue>:<event>" -> count
    """

    def __init__(self, prefix: str = "queue"):
        self.prefix = prefix
        self.processing = f"{prefix}:processing"
        self.dead_letter = f"{prefix}:dead"
        self.jobs = f"{prefix}:jobs"
        self.completed = f"{prefix}:completed"

    def pending(self, queue_name: str) -> str:
        if queue_name not in QUEUE_NAMES:
            raise ValueError(f"Unknown queue: {queue_name}")
        return f"{self.prefix}:{queue_name}"

    def batch(self, batch_id: str) -> str:
        return f"{self.prefix}:batch:{batch_id}"

    def batch_settled(self, batch_id: str) -> str:
        return f"{self.prefix}:batch:{batch_id}:settled"

    def stats(self, day: str) -> str:
        return f"{self.prefix}:stats:{day}"


def get_redis_connection() -> Redis:
    """
    Get the Redis connection singleton.

    Returns:
        Async Redis client (connections are opened lazily on first command)

    Raises:
        ValueError: If REDIS_URL is not configured
    """
    global _redis_connection

    if _redis_connection is None:
        redis_url = config.REDIS_URL
        if not redis_url:
            raise ValueError(
                "REDIS_URL environment variable is required for the job queue. "
                "Set up Upstash Redis or local Redis and configure REDIS_URL."
            )

        # Upstash uses rediss:// (TLS), local Redis uses redis://
        _redis_connection = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=10,
            socket_connect_timeout=10,
            retry_on_timeout=True,
            health_check_interval=30,
        )

    return _redis_connection


async def close_redis_connection():
    """Close the Redis connection (for cleanup)."""
    global _redis_connection
    if _redis_connection is not None:
        await _redis_connection.aclose()
        _redis_connection = None


async def redis_health_check(conn: Optional[Redis] = None, prefix: Optional[str] = None) -> dict:
    """
    Check Redis connection health.

    Returns:
        Dict with health status and queue depths
    """
    try:
        conn = conn or get_redis_connection()
        keys = QueueKeys(prefix or config.QUEUE_KEY_PREFIX)
        await conn.ping()

        return {
            "status": "healthy",
            "connected": True,
            "queues": {name: await conn.zcard(keys.pending(name)) for name in QUEUE_NAMES},
            "processing": await conn.zcard(keys.processing),
            "dead_letter": await conn.zcard(keys.dead_letter),
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "connected": False,
            "error": str(e)
        }
