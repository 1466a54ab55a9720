"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, or_, select, update

from billboard_keeper.infrastructure.database.orm_models import (
    Agreement,
    AgreementEvent,
    Notification,
    ScheduledJobRecord,
    VerificationLogEntry,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from billboard_keeper.domain.enums import AgreementStatus, CheckPhase, EventType


class AgreementRepository:
    """Data access for agreements."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, agreement: Agreement) -> Agreement:
        """Insert a new agreement."""
        self._session.add(agreement)
        await self._session.flush()
        return agreement

    async def get_by_id(self, agreement_id: uuid.UUID) -> Agreement | None:
        """Fetch an agreement by its UUID."""
        result = await self._session.execute(
            select(Agreement).where(Agreement.id == agreement_id)
        )
        return result.scalar_one_or_none()

    async def transition_status(
        self,
        agreement_id: uuid.UUID,
        expected: AgreementStatus,
        new_status: AgreementStatus,
        **fields: Any,
    ) -> bool:
        """Move an agreement to new_status only if it is still in `expected`.

        Issued as a single conditional UPDATE, so two jobs racing on the same
        agreement cannot both apply a transition. Returns False when the row
        was not in the expected status (call AFTER state machine validation).
        """
        result = await self._session.execute(
            update(Agreement)
            .where(Agreement.id == agreement_id, Agreement.status == expected.value)
            .values(status=new_status.value, updated_at=datetime.now(UTC), **fields)
        )
        return result.rowcount == 1

    async def update_fields(self, agreement: Agreement, **fields: Any) -> Agreement:
        """Update non-status columns (progress counters, last_checked_at)."""
        for name, value in fields.items():
            setattr(agreement, name, value)
        await self._session.flush()
        return agreement


class VerificationLogRepository:
    """Data access for the append-only verification log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(
        self,
        agreement_id: uuid.UUID,
        phase: CheckPhase,
        attempt: int,
        matched: bool,
        distance: int,
        notes: str,
        raw_evidence: dict | None = None,
        checked_at: datetime | None = None,
    ) -> VerificationLogEntry:
        """Append a log entry. This is the ONLY write operation allowed."""
        entry = VerificationLogEntry(
            agreement_id=agreement_id,
            phase=phase.value,
            attempt=attempt,
            matched=matched,
            distance=distance,
            notes=notes,
            raw_evidence=raw_evidence,
            checked_at=checked_at or datetime.now(UTC),
        )
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def get_by_agreement(
        self,
        agreement_id: uuid.UUID,
        phase: CheckPhase | None = None,
    ) -> list[VerificationLogEntry]:
        """Fetch log entries for an agreement in chronological order."""
        stmt = select(VerificationLogEntry).where(
            VerificationLogEntry.agreement_id == agreement_id
        )
        if phase is not None:
            stmt = stmt.where(VerificationLogEntry.phase == phase.value)
        result = await self._session.execute(
            stmt.order_by(
                VerificationLogEntry.checked_at.asc(),
                VerificationLogEntry.attempt.asc(),
            )
        )
        return list(result.scalars().all())


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        agreement_id: uuid.UUID,
        event_type: EventType,
        old_status: AgreementStatus | None,
        new_status: AgreementStatus,
        actor: str = "SYSTEM",
        metadata: dict | None = None,
    ) -> AgreementEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = AgreementEvent(
            agreement_id=agreement_id,
            event_type=event_type.value,
            old_status=old_status.value if old_status else None,
            new_status=new_status.value,
            actor=actor,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_agreement(self, agreement_id: uuid.UUID) -> list[AgreementEvent]:
        """Fetch all events for an agreement in chronological order."""
        result = await self._session.execute(
            select(AgreementEvent)
            .where(AgreementEvent.agreement_id == agreement_id)
            .order_by(AgreementEvent.created_at.asc())
        )
        return list(result.scalars().all())


class NotificationRepository:
    """Data access for persisted notifications."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        party: str,
        kind: str,
        title: str,
        body: str,
        metadata: dict | None = None,
    ) -> Notification:
        notification = Notification(
            party=party,
            kind=kind,
            title=title,
            body=body,
            metadata_json=metadata,
        )
        self._session.add(notification)
        await self._session.flush()
        return notification


class ScheduledJobRepository:
    """Data access for the durable delayed-job table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def insert_if_absent(
        self,
        job_id: str,
        job_type: str,
        agreement_id: str | None,
        payload: dict,
        run_at: datetime,
    ) -> bool:
        """Insert a PENDING job unless one with the same id exists.

        Returns True if a row was inserted.
        """
        values = {
            "id": job_id,
            "job_type": job_type,
            "agreement_id": agreement_id,
            "payload": payload,
            "run_at": run_at,
            "state": "PENDING",
            "created_at": datetime.now(UTC),
        }
        dialect = self._session.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            if await self._session.get(ScheduledJobRecord, job_id) is not None:
                return False
            self._session.add(ScheduledJobRecord(**values))
            await self._session.flush()
            return True

        result = await self._session.execute(
            insert(ScheduledJobRecord)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["id"])
        )
        return result.rowcount == 1

    async def find_due(
        self,
        job_type: str,
        now: datetime,
        stale_before: datetime,
        limit: int,
    ) -> list[ScheduledJobRecord]:
        """PENDING jobs whose run_at has passed, plus RUNNING jobs claimed before stale_before."""
        result = await self._session.execute(
            select(ScheduledJobRecord)
            .where(
                ScheduledJobRecord.job_type == job_type,
                or_(
                    and_(
                        ScheduledJobRecord.state == "PENDING",
                        ScheduledJobRecord.run_at <= now,
                    ),
                    and_(
                        ScheduledJobRecord.state == "RUNNING",
                        ScheduledJobRecord.claimed_at <= stale_before,
                    ),
                ),
            )
            .order_by(ScheduledJobRecord.run_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def try_claim(
        self,
        record: ScheduledJobRecord,
        now: datetime,
        stale_before: datetime,
    ) -> bool:
        """Conditionally move a job to RUNNING. Returns False if another worker won."""
        if record.state == "PENDING":
            condition = ScheduledJobRecord.state == "PENDING"
        else:
            condition = and_(
                ScheduledJobRecord.state == "RUNNING",
                ScheduledJobRecord.claimed_at <= stale_before,
            )
        result = await self._session.execute(
            update(ScheduledJobRecord)
            .where(ScheduledJobRecord.id == record.id, condition)
            .values(state="RUNNING", claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_done(self, job_id: str) -> None:
        await self._session.execute(
            update(ScheduledJobRecord)
            .where(ScheduledJobRecord.id == job_id)
            .values(state="DONE")
            .execution_options(synchronize_session=False)
        )

    async def cancel_for_agreement(
        self,
        agreement_id: str,
        job_types: Iterable[str],
    ) -> int:
        """Cancel PENDING jobs of the given types for an agreement."""
        result = await self._session.execute(
            update(ScheduledJobRecord)
            .where(
                ScheduledJobRecord.agreement_id == agreement_id,
                ScheduledJobRecord.job_type.in_(list(job_types)),
                ScheduledJobRecord.state == "PENDING",
            )
            .values(state="CANCELED")
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def get_by_agreement(self, agreement_id: str) -> list[ScheduledJobRecord]:
        result = await self._session.execute(
            select(ScheduledJobRecord)
            .where(ScheduledJobRecord.agreement_id == agreement_id)
            .order_by(ScheduledJobRecord.run_at.asc())
        )
        return list(result.scalars().all())
