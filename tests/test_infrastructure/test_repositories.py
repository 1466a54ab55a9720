"""Tests for the repositories and the append-only tables."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import select

from billboard_keeper.domain.enums import AgreementStatus, CheckPhase, EventType
from billboard_keeper.infrastructure.database.orm_models import (
    Agreement,
    AppendOnlyViolationError,
    Notification,
)
from billboard_keeper.infrastructure.database.repositories import (
    AgreementRepository,
    EventRepository,
    NotificationRepository,
    VerificationLogRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

T0 = datetime(2026, 1, 5, 12, 0, tzinfo=UTC)


async def _agreement(session: AsyncSession, status: AgreementStatus) -> Agreement:
    return await AgreementRepository(session).create(
        Agreement(
            sponsor_wallet="0x" + "a" * 40,
            creator_wallet="0x" + "c" * 40,
            profile_handle="alice",
            slot_kind="TEXT",
            required_substring="Sponsored by Acme",
            escrow_amount=Decimal("100"),
            duration_seconds=3600,
            status=status.value,
        )
    )


class TestAgreementRepository:
    @pytest.mark.asyncio
    async def test_get_by_id(self, session: AsyncSession) -> None:
        agreement = await _agreement(session, AgreementStatus.APPROVAL_PENDING)
        fetched = await AgreementRepository(session).get_by_id(agreement.id)
        assert fetched is not None
        assert fetched.profile_handle == "alice"

    @pytest.mark.asyncio
    async def test_get_unknown_returns_none(self, session: AsyncSession) -> None:
        assert await AgreementRepository(session).get_by_id(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_transition_applies_from_expected_status(self, session: AsyncSession) -> None:
        agreement = await _agreement(session, AgreementStatus.LIVE)
        repo = AgreementRepository(session)

        moved = await repo.transition_status(
            agreement.id,
            AgreementStatus.LIVE,
            AgreementStatus.EXPIRED,
        )
        assert moved
        await session.refresh(agreement)
        assert agreement.status == "EXPIRED"

    @pytest.mark.asyncio
    async def test_transition_from_stale_status_is_rejected(self, session: AsyncSession) -> None:
        """Second of two racing jobs finds the row already moved."""
        agreement = await _agreement(session, AgreementStatus.LIVE)
        repo = AgreementRepository(session)

        assert await repo.transition_status(
            agreement.id, AgreementStatus.LIVE, AgreementStatus.CANCELED_HARD
        )
        assert not await repo.transition_status(
            agreement.id, AgreementStatus.LIVE, AgreementStatus.EXPIRED
        )
        await session.refresh(agreement)
        assert agreement.status == "CANCELED_HARD"

    @pytest.mark.asyncio
    async def test_timestamps_come_back_utc(self, session: AsyncSession) -> None:
        agreement = await _agreement(session, AgreementStatus.VERIFYING)
        agreement_id = agreement.id
        repo = AgreementRepository(session)
        await repo.update_fields(agreement, last_checked_at=T0)
        await session.commit()
        session.expire_all()

        fetched = await repo.get_by_id(agreement_id)
        assert fetched is not None
        assert fetched.last_checked_at == T0
        assert fetched.last_checked_at.tzinfo is not None


class TestVerificationLogRepository:
    @pytest.mark.asyncio
    async def test_entries_are_ordered_by_checked_at(self, session: AsyncSession) -> None:
        agreement = await _agreement(session, AgreementStatus.VERIFYING)
        repo = VerificationLogRepository(session)
        await repo.append(agreement.id, CheckPhase.INITIAL, 2, True, 0, "second",
                          checked_at=T0 + timedelta(seconds=60))
        await repo.append(agreement.id, CheckPhase.INITIAL, 1, False, -1, "first",
                          checked_at=T0)

        entries = await repo.get_by_agreement(agreement.id)
        assert [e.notes for e in entries] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_filter_by_phase(self, session: AsyncSession) -> None:
        agreement = await _agreement(session, AgreementStatus.LIVE)
        repo = VerificationLogRepository(session)
        await repo.append(agreement.id, CheckPhase.INITIAL, 1, True, 0, "poll", checked_at=T0)
        await repo.append(agreement.id, CheckPhase.KEEP_ALIVE, 1, True, 0, "check",
                          checked_at=T0 + timedelta(hours=3))

        entries = await repo.get_by_agreement(agreement.id, phase=CheckPhase.KEEP_ALIVE)
        assert [e.notes for e in entries] == ["check"]

    @pytest.mark.asyncio
    async def test_update_is_rejected(self, session: AsyncSession) -> None:
        agreement = await _agreement(session, AgreementStatus.VERIFYING)
        entry = await VerificationLogRepository(session).append(
            agreement.id, CheckPhase.INITIAL, 1, False, -1, "original", checked_at=T0
        )
        entry.notes = "rewritten"
        with pytest.raises(AppendOnlyViolationError):
            await session.flush()

    @pytest.mark.asyncio
    async def test_delete_is_rejected(self, session: AsyncSession) -> None:
        agreement = await _agreement(session, AgreementStatus.VERIFYING)
        entry = await VerificationLogRepository(session).append(
            agreement.id, CheckPhase.INITIAL, 1, False, -1, "original", checked_at=T0
        )
        await session.delete(entry)
        with pytest.raises(AppendOnlyViolationError):
            await session.flush()


class TestEventRepository:
    @pytest.mark.asyncio
    async def test_record_and_read_back(self, session: AsyncSession) -> None:
        agreement = await _agreement(session, AgreementStatus.LIVE)
        repo = EventRepository(session)
        await repo.record(
            agreement.id,
            EventType.AGREEMENT_EXPIRED,
            AgreementStatus.LIVE,
            AgreementStatus.EXPIRED,
            metadata={"end_at": T0.isoformat()},
        )

        events = await repo.get_by_agreement(agreement.id)
        assert len(events) == 1
        assert events[0].old_status == "LIVE"
        assert events[0].new_status == "EXPIRED"
        assert events[0].actor == "SYSTEM"
        assert events[0].metadata_json == {"end_at": T0.isoformat()}

    @pytest.mark.asyncio
    async def test_update_is_rejected(self, session: AsyncSession) -> None:
        agreement = await _agreement(session, AgreementStatus.LIVE)
        evt = await EventRepository(session).record(
            agreement.id, EventType.HARD_CANCEL, AgreementStatus.LIVE, AgreementStatus.CANCELED_HARD
        )
        evt.actor = "someone-else"
        with pytest.raises(AppendOnlyViolationError):
            await session.flush()


class TestNotificationRepository:
    @pytest.mark.asyncio
    async def test_create_per_party(self, session: AsyncSession) -> None:
        repo = NotificationRepository(session)
        await repo.create("0xsponsor", "AGREEMENT_LIVE", "Placement is Live!", "body")
        await repo.create("0xcreator", "AGREEMENT_LIVE", "Placement is Live!", "body")

        result = await session.execute(
            select(Notification).where(Notification.party == "0xsponsor")
        )
        sponsor = list(result.scalars().all())
        assert [n.title for n in sponsor] == ["Placement is Live!"]
        assert sponsor[0].read_at is None
