"""Job worker — consumes the delayed-job queue.

One polling loop per job type, each bounded by its own concurrency limit
(verify-initial 5, keep-alive 10, expiry 5 by default). Every job runs in
its own unit of work under a timeout. Ledger calls queued by the job are
sent after the commit, outside that timeout.

Failure handling:
    - A handler exception rolls back the job's transaction; a JOB_FAILED
      audit event is then written in a fresh session.
    - A crashed verify-initial poll is rescheduled as a non-match, so the
      agreement cannot be stranded in VERIFYING.
    - A crashed expiry job is retried after expiry_retry_seconds.
    - The job is completed either way; its follow-up (if any) is a new job.

Usage:
    worker = JobWorker(runtime)
    await worker.start()
    ...
    await worker.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from datetime import timedelta
from typing import TYPE_CHECKING

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from billboard_keeper.domain.enums import AgreementStatus, EventType, JobType
from billboard_keeper.infrastructure.database.repositories import (
    AgreementRepository,
    EventRepository,
)
from billboard_keeper.logging_config import bind_job_context, clear_job_context, get_logger
from billboard_keeper.services.expiry import ExpiryService
from billboard_keeper.services.initial_verification import InitialVerificationService
from billboard_keeper.services.keep_alive import KeepAliveService

if TYPE_CHECKING:
    from billboard_keeper.domain.interfaces import ScheduledJob
    from billboard_keeper.runtime import Runtime
    from billboard_keeper.services.mirror import PendingEscrowCall

logger = get_logger(__name__)

HANDLERS = {
    JobType.VERIFY_INITIAL: InitialVerificationService,
    JobType.KEEP_ALIVE: KeepAliveService,
    JobType.EXPIRY: ExpiryService,
}


class JobWorker:
    """Runs queue consumers for every job type."""

    def __init__(self, runtime: Runtime) -> None:
        self._runtime = runtime
        settings = runtime.settings
        self._limits = {
            JobType.VERIFY_INITIAL: settings.worker_concurrency_verify_initial,
            JobType.KEEP_ALIVE: settings.worker_concurrency_keep_alive,
            JobType.EXPIRY: settings.worker_concurrency_expiry,
        }
        self._semaphores = {t: asyncio.Semaphore(n) for t, n in self._limits.items()}
        self._in_flight: dict[JobType, set[asyncio.Task]] = {t: set() for t in JobType}
        self._loops: list[asyncio.Task] = []
        self._stopping = asyncio.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._stopping.clear()
        for job_type in JobType:
            self._loops.append(
                asyncio.create_task(self._consume(job_type), name=f"worker-{job_type.value}")
            )
        logger.info("worker.started", concurrency={t.value: n for t, n in self._limits.items()})

    async def stop(self) -> None:
        """Stop polling and wait for in-flight jobs to finish."""
        self._stopping.set()
        for task in self._loops:
            task.cancel()
        await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops.clear()
        pending = [t for tasks in self._in_flight.values() for t in tasks]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("worker.stopped")

    # ------------------------------------------------------------------
    # Consumption
    # ------------------------------------------------------------------

    async def _consume(self, job_type: JobType) -> None:
        semaphore = self._semaphores[job_type]
        interval = self._runtime.settings.worker_poll_interval_seconds

        while not self._stopping.is_set():
            in_flight = self._in_flight[job_type]
            free = self._limits[job_type] - len(in_flight)
            if free > 0:
                try:
                    jobs = await self._claim(job_type, free)
                except (SQLAlchemyError, RedisError, OSError) as exc:
                    logger.error("worker.claim_failed", job_type=job_type.value, error=str(exc))
                    jobs = []
                for job in jobs:
                    await semaphore.acquire()
                    task = asyncio.create_task(self._run_slot(job, semaphore))
                    in_flight.add(task)
                    task.add_done_callback(in_flight.discard)
                if jobs:
                    continue

            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)

    @retry(
        retry=retry_if_exception_type((SQLAlchemyError, RedisError, OSError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _claim(self, job_type: JobType, limit: int) -> list[ScheduledJob]:
        return await self._runtime.queue.claim_due(job_type, self._runtime.clock.now(), limit)

    async def _run_slot(self, job: ScheduledJob, semaphore: asyncio.Semaphore) -> None:
        try:
            await self.process_job(job)
        finally:
            semaphore.release()

    async def run_once(self) -> int:
        """Claim and process every job due now, oldest first. Returns the count."""
        now = self._runtime.clock.now()
        jobs: list[ScheduledJob] = []
        for job_type in JobType:
            jobs.extend(await self._claim(job_type, self._limits[job_type]))
        for job in sorted(jobs, key=lambda j: j.run_at):
            await self.process_job(job)
        logger.debug("worker.run_once", processed=len(jobs), now=now.isoformat())
        return len(jobs)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def process_job(self, job: ScheduledJob) -> AgreementStatus | None:
        """Run one claimed job to completion. Never raises.

        Only the database work runs under job_timeout_seconds. Ledger calls the
        job queued are sent after its transaction has committed, so a slow
        ledger cannot roll the transition back and a committed transition is
        never mirrored twice.
        """
        bind_job_context(job.job_id, job.job_type.value, job.agreement_id)
        result: AgreementStatus | None = None
        try:
            result, escrow_calls = await asyncio.wait_for(
                self._execute(job),
                timeout=self._runtime.settings.job_timeout_seconds,
            )
        except Exception as exc:
            logger.error(
                "worker.job_failed",
                error=str(exc) or type(exc).__name__,
                exc_info=True,
            )
            await self._handle_failure(job, exc)
        else:
            await self._runtime.dispatch_escrow(escrow_calls)
        finally:
            try:
                await self._runtime.queue.complete(job)
            except Exception as exc:
                logger.error("worker.complete_failed", error=str(exc))
            clear_job_context()
        return result

    async def _execute(
        self, job: ScheduledJob
    ) -> tuple[AgreementStatus | None, list[PendingEscrowCall]]:
        handler_class = HANDLERS[job.job_type]
        async with self._runtime.unit_of_work(dispatch_escrow=False) as ctx:
            result = await handler_class(ctx).run(job.payload)
        return result, ctx.escrow_calls

    async def _handle_failure(self, job: ScheduledJob, exc: Exception) -> None:
        error = str(exc) or type(exc).__name__
        try:
            async with self._runtime.unit_of_work() as ctx:
                agreement = None
                if job.agreement_id:
                    agreement = await AgreementRepository(ctx.session).get_by_id(
                        uuid.UUID(job.agreement_id)
                    )
                if agreement is None:
                    return

                status = AgreementStatus(agreement.status)
                await EventRepository(ctx.session).record(
                    agreement_id=agreement.id,
                    event_type=EventType.JOB_FAILED,
                    old_status=status,
                    new_status=status,
                    metadata={
                        "job_id": job.job_id,
                        "job_type": job.job_type.value,
                        "error": error,
                    },
                )

                if job.job_type is JobType.VERIFY_INITIAL:
                    await InitialVerificationService(ctx).reschedule_after_crash(job.payload, error)
                elif job.job_type is JobType.EXPIRY and status is AgreementStatus.LIVE:
                    retry_at = ctx.clock.now() + timedelta(
                        seconds=self._runtime.settings.expiry_retry_seconds
                    )
                    await ExpiryService(ctx).schedule(agreement, run_at=retry_at)
                    logger.warning("expiry.retry_scheduled", retry_at=retry_at.isoformat())
        except Exception as record_exc:
            logger.error("worker.failure_record_failed", error=str(record_exc))
