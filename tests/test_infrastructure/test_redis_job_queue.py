"""Integration tests for the Redis job queue against a live server.

Uses REDIS_URL (default redis://localhost:6379/15). Run with:
    pytest tests/test_infrastructure/test_redis_job_queue.py -v

Marked with @pytest.mark.integration so CI can skip them with:
    pytest -m "not integration"
"""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest
import pytest_asyncio
import redis.asyncio as aioredis
from redis.exceptions import RedisError

from billboard_keeper.config import Settings
from billboard_keeper.domain.enums import JobType
from billboard_keeper.infrastructure.queue import build_job_queue
from billboard_keeper.infrastructure.queue.redis_queue import RedisJobQueue
from billboard_keeper.infrastructure.redis_client import make_key

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

pytestmark = pytest.mark.integration

REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/15")
T0 = datetime(2026, 1, 5, 12, 0, tzinfo=UTC)
AID = "7c9e6679-7425-40de-944b-e07fc1f90ae7"


async def _clear(client: aioredis.Redis) -> None:
    async for key in client.scan_iter(match=make_key("*")):
        await client.delete(key)


@pytest_asyncio.fixture
async def redis_client() -> AsyncIterator[aioredis.Redis]:
    client = aioredis.from_url(REDIS_URL, decode_responses=True)
    try:
        await client.ping()
    except (RedisError, OSError) as exc:
        await client.aclose()
        pytest.skip(f"Redis not reachable at {REDIS_URL}: {exc}")
    await _clear(client)
    yield client
    await _clear(client)
    await client.aclose()


class TestRedisJobQueue:
    @pytest.mark.asyncio
    async def test_claims_only_due_jobs(self, redis_client: aioredis.Redis) -> None:
        queue = RedisJobQueue(redis_client)
        await queue.schedule(JobType.EXPIRY, {"agreement_id": AID}, T0, job_id="due")
        await queue.schedule(
            JobType.EXPIRY, {"agreement_id": AID}, T0 + timedelta(hours=1), job_id="later"
        )

        claimed = await queue.claim_due(JobType.EXPIRY, T0, limit=10)
        assert [j.job_id for j in claimed] == ["due"]
        assert claimed[0].payload == {"agreement_id": AID}
        assert claimed[0].agreement_id == AID
        assert claimed[0].run_at == T0

    @pytest.mark.asyncio
    async def test_claims_only_requested_type(self, redis_client: aioredis.Redis) -> None:
        queue = RedisJobQueue(redis_client)
        await queue.schedule(JobType.KEEP_ALIVE, {"agreement_id": AID}, T0)
        assert await queue.claim_due(JobType.EXPIRY, T0, limit=10) == []

    @pytest.mark.asyncio
    async def test_same_job_id_is_scheduled_once(self, redis_client: aioredis.Redis) -> None:
        queue = RedisJobQueue(redis_client)
        for _ in range(3):
            await queue.schedule(JobType.EXPIRY, {"agreement_id": AID}, T0, job_id=f"expiry-{AID}")

        claimed = await queue.claim_due(JobType.EXPIRY, T0, limit=10)
        assert len(claimed) == 1

    @pytest.mark.asyncio
    async def test_claimed_job_is_not_delivered_twice(self, redis_client: aioredis.Redis) -> None:
        queue = RedisJobQueue(redis_client, visibility_timeout_seconds=600)
        await queue.schedule(JobType.EXPIRY, {"agreement_id": AID}, T0, job_id="once")

        assert len(await queue.claim_due(JobType.EXPIRY, T0, limit=10)) == 1
        assert await queue.claim_due(JobType.EXPIRY, T0 + timedelta(seconds=30), limit=10) == []

    @pytest.mark.asyncio
    async def test_stale_running_job_is_reclaimed(self, redis_client: aioredis.Redis) -> None:
        """A worker that dies mid-job does not strand it."""
        queue = RedisJobQueue(redis_client, visibility_timeout_seconds=600)
        await queue.schedule(JobType.EXPIRY, {"agreement_id": AID}, T0, job_id="crashy")
        await queue.claim_due(JobType.EXPIRY, T0, limit=10)

        later = T0 + timedelta(seconds=601)
        reclaimed = await queue.claim_due(JobType.EXPIRY, later, limit=10)
        assert [j.job_id for j in reclaimed] == ["crashy"]

    @pytest.mark.asyncio
    async def test_completed_job_is_never_reclaimed(self, redis_client: aioredis.Redis) -> None:
        queue = RedisJobQueue(redis_client, visibility_timeout_seconds=600)
        await queue.schedule(JobType.EXPIRY, {"agreement_id": AID}, T0, job_id="done")
        [job] = await queue.claim_due(JobType.EXPIRY, T0, limit=10)
        await queue.complete(job)

        assert await queue.claim_due(JobType.EXPIRY, T0 + timedelta(days=1), limit=10) == []
        assert await redis_client.smembers(make_key("agreement", AID, "jobs")) == set()
        assert await redis_client.ttl(make_key("job", "done")) > 0

    @pytest.mark.asyncio
    async def test_completed_id_stays_known(self, redis_client: aioredis.Redis) -> None:
        queue = RedisJobQueue(redis_client)
        await queue.schedule(JobType.EXPIRY, {"agreement_id": AID}, T0, job_id="x")
        [job] = await queue.claim_due(JobType.EXPIRY, T0, limit=10)
        await queue.complete(job)

        await queue.schedule(JobType.EXPIRY, {"agreement_id": AID}, T0, job_id="x")
        assert await queue.claim_due(JobType.EXPIRY, T0, limit=10) == []

    @pytest.mark.asyncio
    async def test_cancel_only_touches_pending_jobs_of_given_types(
        self, redis_client: aioredis.Redis
    ) -> None:
        queue = RedisJobQueue(redis_client)
        payload = {"agreement_id": AID}
        await queue.schedule(JobType.KEEP_ALIVE, payload, T0, job_id="k1")
        await queue.schedule(JobType.KEEP_ALIVE, payload, T0 + timedelta(hours=3), job_id="k2")
        await queue.schedule(JobType.EXPIRY, payload, T0 + timedelta(days=1), job_id="e")
        [running] = await queue.claim_due(JobType.KEEP_ALIVE, T0, limit=1)

        canceled = await queue.cancel(AID, [JobType.KEEP_ALIVE])
        assert canceled == 1
        await queue.complete(running)

        later = T0 + timedelta(days=2)
        assert await queue.claim_due(JobType.KEEP_ALIVE, later, limit=10) == []
        assert [j.job_id for j in await queue.claim_due(JobType.EXPIRY, later, limit=10)] == ["e"]

    @pytest.mark.asyncio
    async def test_generated_ids_carry_the_job_type(self, redis_client: aioredis.Redis) -> None:
        queue = RedisJobQueue(redis_client)
        job_id = await queue.schedule(JobType.VERIFY_INITIAL, {"agreement_id": AID}, T0)
        assert job_id.startswith("verify-initial-")

    @pytest.mark.asyncio
    async def test_bind_returns_the_queue(self, redis_client: aioredis.Redis) -> None:
        queue = RedisJobQueue(redis_client)
        assert queue.bind(object()) is queue


class TestBuildRedisJobQueue:
    @pytest.mark.asyncio
    async def test_redis_backend(
        self,
        redis_client: aioredis.Redis,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        settings = Settings(_env_file=None, job_queue_backend="redis")
        queue = build_job_queue(settings, session_factory, redis_client)
        assert isinstance(queue, RedisJobQueue)
