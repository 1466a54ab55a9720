"""Redis-backed job queue.

Layout (all keys carry the configured prefix):
    jobs:<type>          sorted set of job ids scored by run_at (epoch seconds)
    running:<type>       sorted set of claimed job ids scored by claim time
    job:<id>             JSON body of the job; SET NX makes scheduling idempotent
    agreement:<id>:jobs  set of job ids belonging to an agreement, for cancel

A job is claimed by the worker whose ZREM on jobs:<type> returns 1, so two
workers can never both receive it. Redis cannot join a database transaction;
bind() returns the queue itself.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from billboard_keeper.domain.enums import JobType
from billboard_keeper.domain.interfaces import ScheduledJob
from billboard_keeper.infrastructure.redis_client import make_key
from billboard_keeper.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

    import redis.asyncio as aioredis

logger = get_logger(__name__)

# Finished job bodies are kept this long so re-scheduling the same id stays a no-op.
_DONE_RETENTION_SECONDS = 7 * 24 * 3600


def _dump(job: ScheduledJob) -> str:
    return json.dumps(
        {
            "job_id": job.job_id,
            "job_type": job.job_type.value,
            "payload": job.payload,
            "run_at": job.run_at.isoformat(),
            "agreement_id": job.agreement_id,
        }
    )


def _load(raw: str) -> ScheduledJob:
    data = json.loads(raw)
    return ScheduledJob(
        job_id=data["job_id"],
        job_type=JobType(data["job_type"]),
        payload=data["payload"],
        run_at=datetime.fromisoformat(data["run_at"]),
        agreement_id=data.get("agreement_id"),
    )


class RedisJobQueue:
    """JobQueue + JobScheduler over Redis sorted sets."""

    def __init__(self, redis: aioredis.Redis, visibility_timeout_seconds: int = 600) -> None:
        self._redis = redis
        self._visibility = timedelta(seconds=visibility_timeout_seconds)

    def bind(self, session: Any) -> RedisJobQueue:
        return self

    async def schedule(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        run_at: datetime,
        job_id: str | None = None,
    ) -> str:
        job_id = job_id or f"{job_type.value}-{uuid.uuid4().hex}"
        job = ScheduledJob(
            job_id=job_id,
            job_type=job_type,
            payload=payload,
            run_at=run_at,
            agreement_id=payload.get("agreement_id"),
        )
        created = await self._redis.set(make_key("job", job_id), _dump(job), nx=True)
        if not created:
            logger.debug("queue.duplicate_ignored", job_id=job_id)
            return job_id

        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zadd(make_key("jobs", job_type.value), {job_id: run_at.timestamp()})
            if job.agreement_id:
                pipe.sadd(make_key("agreement", job.agreement_id, "jobs"), job_id)
            await pipe.execute()
        return job_id

    async def cancel(self, agreement_id: str, job_types: Iterable[JobType]) -> int:
        types = {t.value for t in job_types}
        count = 0
        for job_id in await self._redis.smembers(make_key("agreement", agreement_id, "jobs")):
            raw = await self._redis.get(make_key("job", job_id))
            if raw is None:
                continue
            job_type = json.loads(raw)["job_type"]
            if job_type in types:
                count += await self._redis.zrem(make_key("jobs", job_type), job_id)
        return count

    async def claim_due(self, job_type: JobType, now: datetime, limit: int) -> list[ScheduledJob]:
        queue_key = make_key("jobs", job_type.value)
        running_key = make_key("running", job_type.value)
        claimed: list[ScheduledJob] = []

        stale = await self._redis.zrangebyscore(
            running_key, "-inf", (now - self._visibility).timestamp(), start=0, num=limit
        )
        for job_id in stale:
            if await self._redis.zrem(running_key, job_id):
                logger.warning("queue.job_reclaimed", job_id=job_id)
                await self._redis.zadd(queue_key, {job_id: now.timestamp()})

        due = await self._redis.zrangebyscore(
            queue_key, "-inf", now.timestamp(), start=0, num=limit
        )
        for job_id in due:
            if not await self._redis.zrem(queue_key, job_id):
                continue
            raw = await self._redis.get(make_key("job", job_id))
            if raw is None:
                continue
            await self._redis.zadd(running_key, {job_id: now.timestamp()})
            claimed.append(_load(raw))
        return claimed

    async def complete(self, job: ScheduledJob) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zrem(make_key("running", job.job_type.value), job.job_id)
            if job.agreement_id:
                pipe.srem(make_key("agreement", job.agreement_id, "jobs"), job.job_id)
            pipe.expire(make_key("job", job.job_id), _DONE_RETENTION_SECONDS)
            await pipe.execute()
