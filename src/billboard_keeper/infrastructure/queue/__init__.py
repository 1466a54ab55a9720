"""Durable delayed-job queue backends.

    - sql:     scheduled_jobs table, transactional scheduling (default)
    - redis:   sorted set per job type, claim by ZREM
    - memory:  in-process, for tests and the simulation
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from billboard_keeper.infrastructure.queue.memory import InMemoryJobQueue
from billboard_keeper.infrastructure.queue.redis_queue import RedisJobQueue
from billboard_keeper.infrastructure.queue.sql import SqlJobQueue, SqlJobScheduler

if TYPE_CHECKING:
    import redis.asyncio as aioredis
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from billboard_keeper.config import Settings
    from billboard_keeper.domain.interfaces import JobQueue


def build_job_queue(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis: aioredis.Redis | None = None,
) -> JobQueue:
    """Create the queue backend selected by JOB_QUEUE_BACKEND."""
    backend = settings.job_queue_backend
    if backend == "sql":
        return SqlJobQueue(session_factory, settings.job_visibility_timeout_seconds)
    if backend == "redis":
        if redis is None:
            raise ValueError("The redis queue backend requires a Redis client")
        return RedisJobQueue(redis, settings.job_visibility_timeout_seconds)
    if backend == "memory":
        return InMemoryJobQueue()
    raise ValueError(f"Unknown job queue backend '{backend}'. Supported: sql, redis, memory")


__all__ = [
    "InMemoryJobQueue",
    "RedisJobQueue",
    "SqlJobQueue",
    "SqlJobScheduler",
    "build_job_queue",
]
