"""Expiry — LIVE -> EXPIRED once the agreement's duration has elapsed."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from billboard_keeper.domain.enums import AgreementStatus, EventType, JobType
from billboard_keeper.infrastructure.database.repositories import AgreementRepository
from billboard_keeper.logging_config import get_logger
from billboard_keeper.services.lifecycle import LifecycleService
from billboard_keeper.services.mirror import EscrowMirror, Notifier

if TYPE_CHECKING:
    from datetime import datetime

    from billboard_keeper.infrastructure.database.orm_models import Agreement
    from billboard_keeper.services.context import ServiceContext

logger = get_logger(__name__)


def expiry_job_id(agreement_id: str) -> str:
    return f"expiry-{agreement_id}"


class ExpiryService:
    """Schedules and handles the single expiry job of an agreement."""

    def __init__(self, ctx: ServiceContext) -> None:
        self._ctx = ctx
        self._agreement_repo = AgreementRepository(ctx.session)

    async def schedule(self, agreement: Agreement, run_at: datetime | None = None) -> str:
        """Schedule expiry at end_at (or run_at for a retry after a crash)."""
        agreement_id = str(agreement.id)
        if run_at is None:
            if agreement.end_at is None:
                raise ValueError(f"Agreement {agreement_id} has no end_at")
            return await self._ctx.scheduler.schedule(
                JobType.EXPIRY,
                {"agreement_id": agreement_id},
                agreement.end_at,
                job_id=expiry_job_id(agreement_id),
            )
        return await self._ctx.scheduler.schedule(
            JobType.EXPIRY, {"agreement_id": agreement_id}, run_at
        )

    async def run(self, payload: dict[str, Any]) -> AgreementStatus | None:
        """Expire the agreement if it is LIVE and past end_at; otherwise a no-op."""
        agreement_id = uuid.UUID(payload["agreement_id"])
        agreement = await self._agreement_repo.get_by_id(agreement_id)
        if agreement is None or agreement.status != AgreementStatus.LIVE.value:
            logger.info(
                "expiry.skipped",
                agreement_id=str(agreement_id),
                status=agreement.status if agreement else None,
            )
            return None

        now = self._ctx.clock.now()
        if agreement.end_at is None or now < agreement.end_at:
            logger.warning(
                "expiry.fired_early",
                agreement_id=str(agreement_id),
                end_at=agreement.end_at.isoformat() if agreement.end_at else None,
            )
            if agreement.end_at is not None:
                await self.schedule(agreement, run_at=agreement.end_at)
            return None

        moved = await LifecycleService(self._ctx).transition(
            agreement,
            "duration_elapsed",
            event_type=EventType.AGREEMENT_EXPIRED,
            metadata={"end_at": agreement.end_at.isoformat()},
        )
        if not moved:
            return None

        EscrowMirror(self._ctx.escrow_calls).defer(agreement, "mark_expired")
        await Notifier(self._ctx.sink).expired(agreement)

        logger.info("expiry.expired", agreement_id=str(agreement_id))
        return AgreementStatus.EXPIRED
