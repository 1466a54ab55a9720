"""Database-backed job queue.

Jobs live in the scheduled_jobs table and are polled for due timestamps.
Scheduling through a bound scheduler joins the caller's transaction, so a
LIVE transition and the keep-alive and expiry jobs it creates commit (or roll
back) together.

Claiming is a conditional PENDING -> RUNNING update. A job left RUNNING by a
crashed worker becomes claimable again after the visibility timeout; handlers
re-check agreement status, so a second delivery is harmless.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from billboard_keeper.domain.enums import JobType
from billboard_keeper.domain.interfaces import ScheduledJob
from billboard_keeper.infrastructure.database.repositories import ScheduledJobRepository
from billboard_keeper.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from billboard_keeper.infrastructure.database.orm_models import ScheduledJobRecord

logger = get_logger(__name__)


def _to_job(record: ScheduledJobRecord) -> ScheduledJob:
    return ScheduledJob(
        job_id=record.id,
        job_type=JobType(record.job_type),
        payload=dict(record.payload or {}),
        run_at=record.run_at,
        agreement_id=record.agreement_id,
    )


class SqlJobScheduler:
    """Scheduler writing into an existing session; the caller commits."""

    def __init__(self, session: AsyncSession) -> None:
        self._repo = ScheduledJobRepository(session)

    async def schedule(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        run_at: datetime,
        job_id: str | None = None,
    ) -> str:
        job_id = job_id or f"{job_type.value}-{uuid.uuid4().hex}"
        inserted = await self._repo.insert_if_absent(
            job_id=job_id,
            job_type=job_type.value,
            agreement_id=payload.get("agreement_id"),
            payload=payload,
            run_at=run_at,
        )
        if not inserted:
            logger.debug("queue.duplicate_ignored", job_id=job_id)
        return job_id

    async def cancel(self, agreement_id: str, job_types: Iterable[JobType]) -> int:
        return await self._repo.cancel_for_agreement(
            agreement_id, [t.value for t in job_types]
        )


class SqlJobQueue:
    """JobQueue over the scheduled_jobs table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        visibility_timeout_seconds: int = 600,
    ) -> None:
        self._session_factory = session_factory
        self._visibility = timedelta(seconds=visibility_timeout_seconds)

    def bind(self, session: AsyncSession) -> SqlJobScheduler:
        return SqlJobScheduler(session)

    async def schedule(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        run_at: datetime,
        job_id: str | None = None,
    ) -> str:
        """Schedule outside any unit of work (own session, committed immediately)."""
        async with self._session_factory() as session:
            job_id = await SqlJobScheduler(session).schedule(job_type, payload, run_at, job_id)
            await session.commit()
        return job_id

    async def cancel(self, agreement_id: str, job_types: Iterable[JobType]) -> int:
        async with self._session_factory() as session:
            count = await SqlJobScheduler(session).cancel(agreement_id, job_types)
            await session.commit()
        return count

    async def claim_due(self, job_type: JobType, now: datetime, limit: int) -> list[ScheduledJob]:
        stale_before = now - self._visibility
        claimed: list[ScheduledJob] = []
        async with self._session_factory() as session:
            repo = ScheduledJobRepository(session)
            for record in await repo.find_due(job_type.value, now, stale_before, limit):
                reclaimed = record.state == "RUNNING"
                if await repo.try_claim(record, now, stale_before):
                    if reclaimed:
                        logger.warning("queue.job_reclaimed", job_id=record.id)
                    claimed.append(_to_job(record))
            await session.commit()
        return claimed

    async def complete(self, job: ScheduledJob) -> None:
        async with self._session_factory() as session:
            await ScheduledJobRepository(session).mark_done(job.job_id)
            await session.commit()
