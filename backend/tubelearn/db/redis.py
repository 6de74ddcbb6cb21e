"""
Redis Connection and Utilities

Provides Redis connection pooling and the job status read path.

Status snapshots are written here after every durable job update so that
polling clients never touch PostgreSQL on the hot path. The database stays
the source of truth: a missing or unreadable snapshot is simply rebuilt
from the job row.

Usage:
    from tubelearn.db.redis import get_redis, JobStatusStore

    # Get Redis connection
    redis = await get_redis()
    await redis.set("key", "value")

    # Job status snapshots
    store = JobStatusStore()
    await store.set(job_id, {"status": "running", "progress_percent": 22})
    snapshot = await store.get(job_id)
"""

import json
from typing import Any, Optional

import redis.asyncio as redis

from tubelearn.config import settings, yaml_config


# Get Redis configuration from yaml config
redis_config: dict[str, Any] = yaml_config.get("redis", {})
DEFAULT_STATUS_TTL: int = redis_config.get("status_ttl", 3600)
MAX_CONNECTIONS: int = redis_config.get("max_connections", 10)


# Connection pool (lazily initialized)
_redis_pool: Optional[redis.ConnectionPool] = None


async def get_redis_pool() -> redis.ConnectionPool:
    """Get or create the Redis connection pool."""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = redis.ConnectionPool.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            max_connections=MAX_CONNECTIONS,
        )
    return _redis_pool


async def get_redis() -> redis.Redis:
    """
    Get a Redis connection from the pool.

    Usage:
        redis = await get_redis()
        await redis.set("key", "value")
    """
    pool = await get_redis_pool()
    return redis.Redis(connection_pool=pool)


async def close_redis_pool() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.disconnect()
        _redis_pool = None


class JobStatusStore:
    """
    Redis-backed snapshots of job status for cheap polling.

    Keys are namespaced as "<prefix>:<job_id>" and expire after `ttl`
    seconds; an expired snapshot falls back to the database.
    """

    def __init__(self, prefix: str = "job_status", ttl: int = DEFAULT_STATUS_TTL) -> None:
        self.prefix = prefix
        self.ttl = ttl

    def _make_key(self, job_id: str) -> str:
        return f"{self.prefix}:{job_id}"

    async def get(self, job_id: str) -> Optional[dict[str, Any]]:
        """Return the stored snapshot, or None if absent."""
        r = await get_redis()
        value = await r.get(self._make_key(job_id))
        if value is None:
            return None
        return json.loads(value)

    async def set(self, job_id: str, snapshot: dict[str, Any]) -> None:
        """Store a snapshot, replacing any previous one."""
        r = await get_redis()
        await r.setex(self._make_key(job_id), self.ttl, json.dumps(snapshot, default=str))

    async def set_if_absent(self, job_id: str, snapshot: dict[str, Any]) -> bool:
        """
        Store a snapshot only if none is present.

        Used when warming the cache from a database read, so a snapshot
        written by a concurrent status update is never replaced by an
        older one.

        Returns:
            True if the snapshot was written
        """
        r = await get_redis()
        written = await r.set(
            self._make_key(job_id), json.dumps(snapshot, default=str), ex=self.ttl, nx=True
        )
        return bool(written)

    async def delete(self, job_id: str) -> None:
        """Drop a snapshot so the next read goes to the database."""
        r = await get_redis()
        await r.delete(self._make_key(job_id))
