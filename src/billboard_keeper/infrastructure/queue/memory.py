"""In-process job queue for tests and the simulation.

Nothing survives a restart. The extra inspection helpers (pending, pop_next,
next_run_at) let a test or the simulation drive the schedule against a
manual clock instead of real time.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from billboard_keeper.domain.interfaces import ScheduledJob
from billboard_keeper.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from billboard_keeper.domain.enums import JobType

logger = get_logger(__name__)


class InMemoryJobQueue:
    """Dict-backed JobQueue + JobScheduler."""

    def __init__(self) -> None:
        self._pending: dict[str, ScheduledJob] = {}
        self._running: dict[str, ScheduledJob] = {}
        self._known: set[str] = set()
        self.completed: list[ScheduledJob] = []
        self.canceled: list[ScheduledJob] = []

    # --- JobScheduler ---

    async def schedule(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        run_at: datetime,
        job_id: str | None = None,
    ) -> str:
        job_id = job_id or f"{job_type.value}-{uuid.uuid4().hex}"
        if job_id in self._known:
            logger.debug("queue.duplicate_ignored", job_id=job_id)
            return job_id
        self._known.add(job_id)
        self._pending[job_id] = ScheduledJob(
            job_id=job_id,
            job_type=job_type,
            payload=dict(payload),
            run_at=run_at,
            agreement_id=payload.get("agreement_id"),
        )
        return job_id

    async def cancel(self, agreement_id: str, job_types: Iterable[JobType]) -> int:
        types = set(job_types)
        doomed = [
            job
            for job in self._pending.values()
            if job.agreement_id == agreement_id and job.job_type in types
        ]
        for job in doomed:
            del self._pending[job.job_id]
            self.canceled.append(job)
        return len(doomed)

    # --- JobQueue ---

    def bind(self, session: Any) -> InMemoryJobQueue:
        return self

    async def claim_due(self, job_type: JobType, now: datetime, limit: int) -> list[ScheduledJob]:
        due = sorted(
            (j for j in self._pending.values() if j.job_type == job_type and j.run_at <= now),
            key=lambda j: j.run_at,
        )[:limit]
        for job in due:
            del self._pending[job.job_id]
            self._running[job.job_id] = job
        return due

    async def complete(self, job: ScheduledJob) -> None:
        if self._running.pop(job.job_id, None) is not None:
            self.completed.append(job)

    # --- Inspection helpers ---

    def pending(
        self,
        job_type: JobType | None = None,
        agreement_id: str | None = None,
    ) -> list[ScheduledJob]:
        jobs = [
            j
            for j in self._pending.values()
            if (job_type is None or j.job_type == job_type)
            and (agreement_id is None or j.agreement_id == agreement_id)
        ]
        return sorted(jobs, key=lambda j: j.run_at)

    def next_run_at(self) -> datetime | None:
        jobs = self.pending()
        return jobs[0].run_at if jobs else None

    def pop_next(self, until: datetime | None = None) -> ScheduledJob | None:
        """Claim the earliest pending job (of any type) due at or before `until`."""
        jobs = self.pending()
        if not jobs or (until is not None and jobs[0].run_at > until):
            return None
        job = jobs[0]
        del self._pending[job.job_id]
        self._running[job.job_id] = job
        return job
