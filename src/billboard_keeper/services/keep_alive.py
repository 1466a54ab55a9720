"""Keep-Alive — periodic compliance checks while an agreement is LIVE.

All checks are planned at the LIVE moment: checks_per_day per started day of
duration, check i at start_at + i * (1 day / checks_per_day) + jitter, jitter
uniform in [0, keepalive_jitter_seconds). Checks that would fire after end_at
are not scheduled. Job ids are deterministic (keepalive-<agreement>-<i>).

One strike: the first content mismatch hard-cancels the agreement, removes
every other pending keep-alive check and the expiry job, and refunds the
sponsor. A failure to fetch the snapshot itself is logged but is not a strike.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from billboard_keeper.domain.enums import (
    AgreementStatus,
    CheckPhase,
    EventType,
    JobType,
    SlotKind,
)
from billboard_keeper.domain.verifier_protocol import NO_DISTANCE
from billboard_keeper.infrastructure.database.repositories import (
    AgreementRepository,
    VerificationLogRepository,
)
from billboard_keeper.logging_config import get_logger
from billboard_keeper.services.compliance import ComplianceEvaluator
from billboard_keeper.services.lifecycle import LifecycleService
from billboard_keeper.services.mirror import EscrowMirror, Notifier

if TYPE_CHECKING:
    from datetime import datetime

    from billboard_keeper.domain.verifier_protocol import CheckOutcome
    from billboard_keeper.infrastructure.database.orm_models import Agreement
    from billboard_keeper.services.context import ServiceContext

logger = get_logger(__name__)


def keep_alive_job_id(agreement_id: str, check_number: int) -> str:
    return f"keepalive-{agreement_id}-{check_number}"


def hard_cancel_reason(
    slot_kind: str,
    check_number: int,
    outcome: CheckOutcome,
    max_distance: int,
    required_substring: str | None = None,
) -> str:
    """Human-readable reason stored on the agreement and sent to both parties."""
    if slot_kind == SlotKind.TEXT.value:
        return (
            f"Bio text mismatch detected at check #{check_number}. "
            f'Required text "{required_substring or ""}" not found in bio.'
        )
    if outcome.distance == NO_DISTANCE:
        return f"Header image mismatch detected at check #{check_number}. {outcome.notes}"
    return (
        f"Header image mismatch detected at check #{check_number}. "
        f"Fingerprint distance: {outcome.distance} (max allowed: {max_distance})"
    )


class KeepAliveService:
    """Plans and handles keep-alive checks."""

    def __init__(self, ctx: ServiceContext) -> None:
        self._ctx = ctx
        self._settings = ctx.settings
        self._agreement_repo = AgreementRepository(ctx.session)
        self._log_repo = VerificationLogRepository(ctx.session)

    async def plan_checks(self, agreement: Agreement) -> list[tuple[str, datetime]]:
        """Schedule every keep-alive check of a freshly LIVE agreement.

        Returns the (job_id, run_at) pairs that were scheduled.
        """
        start_at, end_at = agreement.start_at, agreement.end_at
        if start_at is None or end_at is None:
            raise ValueError(f"Agreement {agreement.id} has no active window")

        total = self._settings.keepalive_total_checks(agreement.duration_seconds)
        interval = self._settings.keepalive_interval_seconds
        jitter_max = self._settings.keepalive_jitter_seconds
        agreement_id = str(agreement.id)

        scheduled: list[tuple[str, datetime]] = []
        for check_number in range(1, total + 1):
            jitter = self._ctx.rng.random() * jitter_max
            run_at = start_at + timedelta(seconds=check_number * interval + jitter)
            if run_at > end_at:
                break
            job_id = await self._ctx.scheduler.schedule(
                JobType.KEEP_ALIVE,
                {
                    "agreement_id": agreement_id,
                    "check_number": check_number,
                    "total_checks": total,
                },
                run_at,
                job_id=keep_alive_job_id(agreement_id, check_number),
            )
            scheduled.append((job_id, run_at))

        logger.info(
            "keep_alive.planned",
            agreement_id=agreement_id,
            checks=len(scheduled),
            interval_seconds=round(interval, 1),
        )
        return scheduled

    async def run(self, payload: dict[str, Any]) -> AgreementStatus | None:
        """Process one check. Returns the status afterwards, or None if skipped."""
        agreement_id = uuid.UUID(payload["agreement_id"])
        check_number = int(payload.get("check_number", 0))

        agreement = await self._agreement_repo.get_by_id(agreement_id)
        if agreement is None or agreement.status != AgreementStatus.LIVE.value:
            logger.info(
                "keep_alive.skipped",
                agreement_id=str(agreement_id),
                status=agreement.status if agreement else None,
            )
            return None

        if agreement.end_at is not None and self._ctx.clock.now() >= agreement.end_at:
            logger.info("keep_alive.skipped_after_end", agreement_id=str(agreement_id))
            return None

        evaluator = ComplianceEvaluator(self._ctx.snapshots, self._settings, self._ctx.http_client)
        outcome = await evaluator.evaluate(agreement)
        now = self._ctx.clock.now()

        await self._log_repo.append(
            agreement_id=agreement.id,
            phase=CheckPhase.KEEP_ALIVE,
            attempt=check_number,
            matched=outcome.matched,
            distance=outcome.distance,
            notes=outcome.notes,
            raw_evidence={**outcome.evidence, "fetch_failed": outcome.fetch_failed},
            checked_at=now,
        )
        await self._agreement_repo.update_fields(agreement, last_checked_at=now)

        if outcome.matched:
            logger.info(
                "keep_alive.check_passed",
                agreement_id=str(agreement_id),
                check_number=check_number,
                distance=outcome.distance,
            )
            return AgreementStatus.LIVE

        if outcome.fetch_failed:
            logger.warning(
                "keep_alive.snapshot_unavailable",
                agreement_id=str(agreement_id),
                check_number=check_number,
                notes=outcome.notes,
            )
            return AgreementStatus.LIVE

        return await self._hard_cancel(agreement, check_number, outcome, now)

    async def _hard_cancel(
        self,
        agreement: Agreement,
        check_number: int,
        outcome: CheckOutcome,
        now: datetime,
    ) -> AgreementStatus | None:
        reason = hard_cancel_reason(
            agreement.slot_kind,
            check_number,
            outcome,
            self._settings.hash_max_distance,
            required_substring=agreement.required_substring,
        )
        moved = await LifecycleService(self._ctx).transition(
            agreement,
            "keep_alive_mismatch",
            event_type=EventType.HARD_CANCEL,
            metadata={
                "check_number": check_number,
                "distance": outcome.distance,
                "reason": reason,
            },
            hard_cancel_at=now,
            hard_cancel_reason=reason,
        )
        if not moved:
            return None

        canceled = await self._ctx.scheduler.cancel(
            str(agreement.id), [JobType.KEEP_ALIVE, JobType.EXPIRY]
        )
        EscrowMirror(self._ctx.escrow_calls).defer(agreement, "hard_cancel_and_refund")
        await Notifier(self._ctx.sink).hard_canceled(agreement, reason)

        logger.warning(
            "keep_alive.hard_cancel",
            agreement_id=str(agreement.id),
            check_number=check_number,
            reason=reason,
            canceled_jobs=canceled,
        )
        return AgreementStatus.CANCELED_HARD
