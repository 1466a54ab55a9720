"""Lifecycle Service — agreement transitions and the entry trigger.

This is the application layer that coordinates between:
    - Domain state machine (transition guard)
    - Repositories (data access, conditional status updates)
    - Event log (audit trail)

The job handlers, the REST routes and the simulation all change agreement
status through LifecycleService.transition(), so every transition is
validated against the state machine AND applied with a conditional update on
the expected prior status.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any

from statemachine.exceptions import TransitionNotAllowed

from billboard_keeper.domain.enums import AgreementStatus, EventType, JobType, SlotKind
from billboard_keeper.domain.exceptions import (
    AgreementNotFoundError,
    InvalidStateTransitionError,
    MissingRequirementError,
    RequirementMismatchError,
)
from billboard_keeper.domain.interfaces import normalize_handle
from billboard_keeper.domain.state_machine import allowed_events_for, validate_transition
from billboard_keeper.infrastructure.database.orm_models import Agreement
from billboard_keeper.infrastructure.database.repositories import (
    AgreementRepository,
    EventRepository,
    VerificationLogRepository,
)
from billboard_keeper.logging_config import get_logger
from billboard_keeper.services.mirror import EscrowMirror
from billboard_keeper.verifiers.fingerprint import Fingerprint

if TYPE_CHECKING:
    import uuid
    from datetime import datetime
    from decimal import Decimal

    from billboard_keeper.domain.interfaces import JobScheduler
    from billboard_keeper.infrastructure.database.orm_models import (
        AgreementEvent,
        VerificationLogEntry,
    )
    from billboard_keeper.services.context import ServiceContext

logger = get_logger(__name__)


def validate_requirement(
    slot_kind: str,
    expected_fingerprint: str | None,
    required_substring: str | None,
) -> tuple[str | None, str | None]:
    """Check that exactly one requirement is given and that it matches the slot.

    Returns the (expected_fingerprint, required_substring) pair with the
    fingerprint in canonical 16-char hex form.

    Raises:
        RequirementMismatchError: On a missing, extra or malformed requirement.
    """
    try:
        kind = SlotKind(slot_kind)
    except ValueError as err:
        raise RequirementMismatchError(str(slot_kind), "unknown slot kind") from err

    if kind is SlotKind.IMAGE:
        if required_substring:
            raise RequirementMismatchError(kind, "an IMAGE slot cannot carry a required substring")
        if not expected_fingerprint:
            raise RequirementMismatchError(kind, "an expected fingerprint is required")
        try:
            return Fingerprint.from_hex(expected_fingerprint).to_hex(), None
        except ValueError as err:
            raise RequirementMismatchError(kind, str(err)) from err

    if expected_fingerprint:
        raise RequirementMismatchError(kind, "a TEXT slot cannot carry an expected fingerprint")
    if not required_substring or not required_substring.strip():
        raise RequirementMismatchError(kind, "a required substring is required")
    return None, required_substring


def verification_payload(
    agreement_id: str,
    attempt: int,
    consecutive_matches: int,
    started_at: datetime | None,
) -> dict[str, Any]:
    return {
        "agreement_id": agreement_id,
        "attempt": attempt,
        "consecutive_matches": consecutive_matches,
        "started_at": started_at.isoformat() if started_at else None,
    }


async def schedule_verification_poll(
    scheduler: JobScheduler,
    agreement_id: str,
    run_at: datetime,
    attempt: int = 1,
    consecutive_matches: int = 0,
    started_at: datetime | None = None,
) -> str:
    """Enqueue one initial-verification poll carrying the loop's progress."""
    return await scheduler.schedule(
        JobType.VERIFY_INITIAL,
        verification_payload(agreement_id, attempt, consecutive_matches, started_at),
        run_at,
    )


class LifecycleService:
    """Manages the agreement lifecycle."""

    def __init__(self, ctx: ServiceContext) -> None:
        self._ctx = ctx
        self._agreement_repo = AgreementRepository(ctx.session)
        self._event_repo = EventRepository(ctx.session)
        self._log_repo = VerificationLogRepository(ctx.session)
        self._mirror = EscrowMirror(ctx.escrow_calls)

    # ------------------------------------------------------------------
    # Creation (agreements normally originate in the marketplace)
    # ------------------------------------------------------------------

    async def create_agreement(
        self,
        sponsor_wallet: str,
        creator_wallet: str,
        profile_handle: str,
        slot_kind: str,
        escrow_amount: Decimal,
        duration_seconds: int,
        expected_fingerprint: str | None = None,
        required_substring: str | None = None,
        expected_artifact_url: str | None = None,
        ledger_ref: str | None = None,
        status: AgreementStatus = AgreementStatus.APPROVAL_PENDING,
    ) -> Agreement:
        """Create an agreement after validating its requirement."""
        expected_fingerprint, required_substring = validate_requirement(
            slot_kind, expected_fingerprint, required_substring
        )
        if duration_seconds <= 0:
            raise ValueError("duration_seconds must be positive")

        agreement = Agreement(
            sponsor_wallet=sponsor_wallet,
            creator_wallet=creator_wallet,
            profile_handle=normalize_handle(profile_handle),
            slot_kind=SlotKind(slot_kind).value,
            expected_fingerprint=expected_fingerprint,
            required_substring=required_substring,
            expected_artifact_url=expected_artifact_url,
            ledger_ref=ledger_ref,
            escrow_amount=escrow_amount,
            duration_seconds=duration_seconds,
            status=status.value,
            created_at=self._ctx.clock.now(),
        )
        agreement = await self._agreement_repo.create(agreement)

        await self._event_repo.record(
            agreement_id=agreement.id,
            event_type=EventType.AGREEMENT_CREATED,
            old_status=None,
            new_status=status,
            actor=sponsor_wallet,
            metadata={"slot_kind": agreement.slot_kind, "handle": agreement.profile_handle},
        )

        logger.info(
            "agreement.created",
            agreement_id=str(agreement.id),
            slot_kind=agreement.slot_kind,
            duration_seconds=duration_seconds,
        )
        return agreement

    # ------------------------------------------------------------------
    # Entry trigger
    # ------------------------------------------------------------------

    async def mark_applied(self, agreement_id: uuid.UUID, actor: str = "SYSTEM") -> Agreement:
        """The creator reports the artifact as applied: enter VERIFYING.

        Requires APPROVAL_PENDING and an attached requirement. The first poll
        is enqueued to run immediately.
        """
        agreement = await self._get_agreement_or_raise(agreement_id)
        self._fire_transition(agreement, "artifact_applied")
        if not agreement.requirement_attached:
            raise MissingRequirementError(str(agreement_id), agreement.slot_kind)

        now = self._ctx.clock.now()
        moved = await self.transition(
            agreement,
            "artifact_applied",
            event_type=EventType.ARTIFACT_APPLIED,
            actor=actor,
            apply_deadline_at=now + timedelta(seconds=self._ctx.settings.verify_max_duration_seconds),
            verification_started_at=None,
            verification_attempts=0,
            consecutive_matches=0,
        )
        if not moved:
            raise InvalidStateTransitionError(agreement.status, "artifact_applied")

        self._mirror.defer(agreement, "mark_verifying")
        await schedule_verification_poll(self._ctx.scheduler, str(agreement.id), run_at=now)

        logger.info("agreement.applied", agreement_id=str(agreement_id), actor=actor)
        return agreement

    async def retry_verification(self, agreement_id: uuid.UUID, actor: str = "SYSTEM") -> Agreement:
        """Restart the poll loop of an agreement stuck in VERIFYING.

        The deadline and progress are reset and a fresh first poll is enqueued.
        The status does not change.
        """
        agreement = await self._get_agreement_or_raise(agreement_id)
        if agreement.status != AgreementStatus.VERIFYING.value:
            raise InvalidStateTransitionError(agreement.status, "retry_verification")
        if not agreement.requirement_attached:
            raise MissingRequirementError(str(agreement_id), agreement.slot_kind)

        now = self._ctx.clock.now()
        canceled = await self._ctx.scheduler.cancel(str(agreement.id), [JobType.VERIFY_INITIAL])
        await self._agreement_repo.update_fields(
            agreement,
            apply_deadline_at=now + timedelta(seconds=self._ctx.settings.verify_max_duration_seconds),
            verification_started_at=None,
            verification_attempts=0,
            consecutive_matches=0,
        )
        await self._event_repo.record(
            agreement_id=agreement.id,
            event_type=EventType.VERIFICATION_RESTARTED,
            old_status=AgreementStatus.VERIFYING,
            new_status=AgreementStatus.VERIFYING,
            actor=actor,
            metadata={"canceled_polls": canceled},
        )
        await schedule_verification_poll(self._ctx.scheduler, str(agreement.id), run_at=now)

        logger.info("agreement.verification_restarted", agreement_id=str(agreement_id))
        return agreement

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def transition(
        self,
        agreement: Agreement,
        event_name: str,
        *,
        event_type: EventType,
        actor: str = "SYSTEM",
        metadata: dict | None = None,
        **fields: Any,
    ) -> bool:
        """Validate and apply a transition, recording one audit event.

        Returns False (and changes nothing) when the agreement is no longer in
        the status it was read in, i.e. another job won the race.

        Raises:
            InvalidStateTransitionError: If the event is illegal from the
                                         agreement's current status.
        """
        old_status = AgreementStatus(agreement.status)
        new_status = self._fire_transition(agreement, event_name)

        applied = await self._agreement_repo.transition_status(
            agreement.id, old_status, new_status, **fields
        )
        if not applied:
            logger.info(
                "lifecycle.transition_lost",
                agreement_id=str(agreement.id),
                expected=old_status.value,
                attempted=new_status.value,
            )
            return False

        await self._event_repo.record(
            agreement_id=agreement.id,
            event_type=event_type,
            old_status=old_status,
            new_status=new_status,
            actor=actor,
            metadata=metadata,
        )
        logger.info(
            "lifecycle.transition",
            agreement_id=str(agreement.id),
            old_status=old_status.value,
            new_status=new_status.value,
            transition=event_name,
        )
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_agreement(self, agreement_id: uuid.UUID) -> Agreement:
        """Get an agreement by ID (raises AgreementNotFoundError)."""
        return await self._get_agreement_or_raise(agreement_id)

    async def get_status(self, agreement_id: uuid.UUID) -> dict:
        """Get agreement status with progress and allowed events."""
        agreement = await self._get_agreement_or_raise(agreement_id)
        return {
            "agreement_id": str(agreement.id),
            "status": agreement.status,
            "slot_kind": agreement.slot_kind,
            "verification_attempts": agreement.verification_attempts,
            "consecutive_matches": agreement.consecutive_matches,
            "start_at": agreement.start_at,
            "end_at": agreement.end_at,
            "last_checked_at": agreement.last_checked_at,
            "hard_cancel_reason": agreement.hard_cancel_reason,
            "allowed_events": allowed_events_for(agreement.status),
        }

    async def get_verification_logs(self, agreement_id: uuid.UUID) -> list[VerificationLogEntry]:
        await self._get_agreement_or_raise(agreement_id)
        return await self._log_repo.get_by_agreement(agreement_id)

    async def get_events(self, agreement_id: uuid.UUID) -> list[AgreementEvent]:
        """Get audit trail."""
        await self._get_agreement_or_raise(agreement_id)
        return await self._event_repo.get_by_agreement(agreement_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_agreement_or_raise(self, agreement_id: uuid.UUID) -> Agreement:
        agreement = await self._agreement_repo.get_by_id(agreement_id)
        if agreement is None:
            raise AgreementNotFoundError(str(agreement_id))
        return agreement

    def _fire_transition(self, agreement: Agreement, event_name: str) -> AgreementStatus:
        """Validate a state machine transition and return the target status.

        Raises InvalidStateTransitionError if the transition is illegal.
        """
        try:
            return AgreementStatus(validate_transition(agreement.status, event_name))
        except (TransitionNotAllowed, ValueError) as err:
            raise InvalidStateTransitionError(agreement.status, event_name) from err
