"""Initial Verification — the VERIFYING poll loop.

Each poll is one durable job. The loop's progress (attempt number, consecutive
match counter, time of the first poll) travels in the job payload, so a
restart between polls loses nothing.

Per poll:
    1. Guard: no-op unless the agreement is still VERIFYING.
    2. Evaluate the live profile and append a log entry.
    3. Counter +1 on a match, reset to 0 on ANY non-match (a failed snapshot
       fetch included).
    4. Threshold reached        -> LIVE, schedule keep-alive + expiry, notify.
       Deadline since 1st poll  -> FAILED_VERIFICATION, notify.
       Otherwise                -> enqueue the next poll at now + interval.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from billboard_keeper.domain.enums import AgreementStatus, CheckPhase, EventType
from billboard_keeper.infrastructure.database.repositories import (
    AgreementRepository,
    VerificationLogRepository,
)
from billboard_keeper.logging_config import get_logger
from billboard_keeper.services.compliance import ComplianceEvaluator
from billboard_keeper.services.expiry import ExpiryService
from billboard_keeper.services.keep_alive import KeepAliveService
from billboard_keeper.services.lifecycle import LifecycleService, schedule_verification_poll
from billboard_keeper.services.mirror import EscrowMirror, Notifier

if TYPE_CHECKING:
    from billboard_keeper.infrastructure.database.orm_models import Agreement
    from billboard_keeper.services.context import ServiceContext

logger = get_logger(__name__)


def _parse_started_at(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


class InitialVerificationService:
    """Handles verify-initial jobs."""

    def __init__(self, ctx: ServiceContext) -> None:
        self._ctx = ctx
        self._settings = ctx.settings
        self._agreement_repo = AgreementRepository(ctx.session)
        self._log_repo = VerificationLogRepository(ctx.session)
        self._lifecycle = LifecycleService(ctx)
        self._evaluator = ComplianceEvaluator(ctx.snapshots, ctx.settings, ctx.http_client)
        self._mirror = EscrowMirror(ctx.escrow_calls)
        self._notifier = Notifier(ctx.sink)

    async def run(self, payload: dict[str, Any]) -> AgreementStatus | None:
        """Process one poll. Returns the agreement's status afterwards, or None if skipped."""
        agreement_id = uuid.UUID(payload["agreement_id"])
        attempt = int(payload.get("attempt", 1))
        consecutive = int(payload.get("consecutive_matches", 0))
        started_at = _parse_started_at(payload.get("started_at"))

        agreement = await self._agreement_repo.get_by_id(agreement_id)
        if agreement is None:
            logger.info("verify_initial.agreement_missing", agreement_id=str(agreement_id))
            return None
        if agreement.status != AgreementStatus.VERIFYING.value:
            logger.info(
                "verify_initial.skipped",
                agreement_id=str(agreement_id),
                status=agreement.status,
            )
            return None

        started_at = started_at or self._ctx.clock.now()
        outcome = await self._evaluator.evaluate(agreement)
        now = self._ctx.clock.now()

        await self._log_repo.append(
            agreement_id=agreement.id,
            phase=CheckPhase.INITIAL,
            attempt=attempt,
            matched=outcome.matched,
            distance=outcome.distance,
            notes=outcome.notes,
            raw_evidence={**outcome.evidence, "fetch_failed": outcome.fetch_failed},
            checked_at=now,
        )

        consecutive = consecutive + 1 if outcome.matched else 0
        await self._agreement_repo.update_fields(
            agreement,
            last_checked_at=now,
            verification_started_at=started_at,
            verification_attempts=attempt,
            consecutive_matches=consecutive,
        )

        logger.info(
            "verify_initial.poll",
            agreement_id=str(agreement_id),
            attempt=attempt,
            matched=outcome.matched,
            distance=outcome.distance,
            consecutive=consecutive,
        )

        if consecutive >= self._settings.verify_required_consecutive_matches:
            return await self._go_live(agreement, now, attempt)

        deadline = timedelta(seconds=self._settings.verify_max_duration_seconds)
        if now - started_at > deadline:
            return await self._fail(agreement, attempt, now - started_at)

        await schedule_verification_poll(
            self._ctx.scheduler,
            str(agreement.id),
            run_at=now + timedelta(seconds=self._settings.verify_poll_interval_seconds),
            attempt=attempt + 1,
            consecutive_matches=consecutive,
            started_at=started_at,
        )
        return AgreementStatus.VERIFYING

    async def reschedule_after_crash(self, payload: dict[str, Any], error: str) -> None:
        """Keep the loop alive after a crashed poll; the crash counts as a non-match."""
        agreement_id = payload["agreement_id"]
        agreement = await self._agreement_repo.get_by_id(uuid.UUID(agreement_id))
        if agreement is None or agreement.status != AgreementStatus.VERIFYING.value:
            return

        now = self._ctx.clock.now()
        await schedule_verification_poll(
            self._ctx.scheduler,
            agreement_id,
            run_at=now + timedelta(seconds=self._settings.verify_poll_interval_seconds),
            attempt=int(payload.get("attempt", 1)) + 1,
            consecutive_matches=0,
            started_at=_parse_started_at(payload.get("started_at")) or now,
        )
        logger.warning("verify_initial.rescheduled_after_crash", agreement_id=agreement_id, error=error)

    async def _go_live(self, agreement: Agreement, now: datetime, attempt: int) -> AgreementStatus | None:
        start_at = now
        end_at = now + timedelta(seconds=agreement.duration_seconds)

        moved = await self._lifecycle.transition(
            agreement,
            "verification_passed",
            event_type=EventType.AGREEMENT_LIVE,
            metadata={"attempt": attempt, "end_at": end_at.isoformat()},
            start_at=start_at,
            end_at=end_at,
        )
        if not moved:
            return None

        self._mirror.defer(agreement, "mark_live", start_at, end_at)
        checks = await KeepAliveService(self._ctx).plan_checks(agreement)
        await ExpiryService(self._ctx).schedule(agreement)
        await self._notifier.agreement_live(agreement)

        logger.info(
            "verify_initial.live",
            agreement_id=str(agreement.id),
            end_at=end_at.isoformat(),
            keep_alive_checks=len(checks),
        )
        return AgreementStatus.LIVE

    async def _fail(self, agreement: Agreement, attempt: int, elapsed: timedelta) -> AgreementStatus | None:
        moved = await self._lifecycle.transition(
            agreement,
            "verification_timed_out",
            event_type=EventType.VERIFICATION_FAILED,
            metadata={"attempts": attempt, "elapsed_seconds": int(elapsed.total_seconds())},
        )
        if not moved:
            return None

        await self._notifier.verification_failed(agreement)
        logger.info(
            "verify_initial.failed",
            agreement_id=str(agreement.id),
            attempts=attempt,
        )
        return AgreementStatus.FAILED_VERIFICATION
