"""Tests for the VERIFYING poll loop."""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

import pytest

from billboard_keeper.domain.enums import AgreementStatus, JobType
from billboard_keeper.infrastructure.database.orm_models import Agreement, VerificationLogEntry
from billboard_keeper.infrastructure.escrow import SimulatedEscrowControl
from billboard_keeper.infrastructure.notifications import LoggingNotificationSink
from billboard_keeper.infrastructure.queue.memory import InMemoryJobQueue
from billboard_keeper.infrastructure.snapshot.simulated import SimulatedSnapshotProvider
from billboard_keeper.runtime import Runtime
from billboard_keeper.services.initial_verification import InitialVerificationService
from billboard_keeper.services.lifecycle import LifecycleService

MakeAgreement = Callable[..., Awaitable[uuid.UUID]]
Apply = Callable[[uuid.UUID], Awaitable[None]]
RunUntil = Callable[[datetime], Awaitable[int]]
RunFor = Callable[[float], Awaitable[int]]
GetStatus = Callable[[uuid.UUID], Awaitable[AgreementStatus]]

T0 = datetime(2026, 1, 5, 12, 0, tzinfo=UTC)
ONE_DAY = 24 * 60 * 60
ARTWORK_URL = "https://cdn.test/artwork.png"
REQUIRED_TEXT = "Sponsored by Acme"
SPONSOR_WALLET = "0x742d35Cc6634C0532925a3b844Bc9e7595f2bD18"
CREATOR_WALLET = "0x" + "c" * 40


def at(seconds: int) -> datetime:
    return T0 + timedelta(seconds=seconds)


async def _logs(runtime: Runtime, agreement_id: uuid.UUID) -> list[VerificationLogEntry]:
    async with runtime.unit_of_work() as ctx:
        return await LifecycleService(ctx).get_verification_logs(agreement_id)


async def _agreement(runtime: Runtime, agreement_id: uuid.UUID) -> Agreement:
    async with runtime.unit_of_work() as ctx:
        return await LifecycleService(ctx).get_agreement(agreement_id)


class TestReachingLive:
    @pytest.mark.asyncio
    async def test_two_consecutive_matches(
        self,
        runtime: Runtime,
        queue: InMemoryJobQueue,
        escrow: SimulatedEscrowControl,
        sink: LoggingNotificationSink,
        make_agreement: MakeAgreement,
        apply: Apply,
        run_until: RunUntil,
    ) -> None:
        """match@0s, match@60s => LIVE with end_at = now + duration."""
        agreement_id = await make_agreement()
        await apply(agreement_id)

        await run_until(at(0))
        assert (await _agreement(runtime, agreement_id)).consecutive_matches == 1

        await run_until(at(60))
        agreement = await _agreement(runtime, agreement_id)
        assert agreement.status == "LIVE"
        assert agreement.start_at == at(60)
        assert agreement.end_at == at(60) + timedelta(seconds=ONE_DAY)
        assert agreement.verification_attempts == 2

        assert [c.operation for c in escrow.calls] == ["mark_verifying", "mark_live"]
        assert {n.party for n in sink.sent} == {SPONSOR_WALLET, CREATOR_WALLET}
        assert {n.title for n in sink.sent} == {"Placement is Live!"}
        assert queue.pending(JobType.VERIFY_INITIAL) == []

    @pytest.mark.asyncio
    async def test_live_schedules_keep_alive_and_expiry(
        self,
        runtime: Runtime,
        queue: InMemoryJobQueue,
        go_live: MakeAgreement,
    ) -> None:
        agreement_id = await go_live()
        agreement = await _agreement(runtime, agreement_id)
        aid = str(agreement_id)

        checks = queue.pending(JobType.KEEP_ALIVE, aid)
        # 7 per day, the 7th lands past end_at once jitter is added
        assert [j.job_id for j in checks] == [f"keepalive-{aid}-{i}" for i in range(1, 7)]
        interval = timedelta(seconds=ONE_DAY / 7)
        for i, job in enumerate(checks, start=1):
            offset = job.run_at - (agreement.start_at + i * interval)
            assert timedelta(0) <= offset < timedelta(seconds=600)
            assert job.run_at <= agreement.end_at

        [expiry] = queue.pending(JobType.EXPIRY, aid)
        assert expiry.job_id == f"expiry-{aid}"
        assert expiry.run_at == agreement.end_at

    @pytest.mark.asyncio
    async def test_counter_resets_then_rebuilds(
        self,
        runtime: Runtime,
        profiles: SimulatedSnapshotProvider,
        make_agreement: MakeAgreement,
        apply: Apply,
        run_until: RunUntil,
        get_status: GetStatus,
    ) -> None:
        """match@0s, nonmatch@60s, match@120s, match@180s => LIVE."""
        agreement_id = await make_agreement()
        await apply(agreement_id)

        await run_until(at(0))
        profiles.update("alice", text="just vibes")
        await run_until(at(60))
        assert (await _agreement(runtime, agreement_id)).consecutive_matches == 0

        profiles.update("alice", text=f"gm. {REQUIRED_TEXT.upper()}")
        await run_until(at(120))
        assert await get_status(agreement_id) is AgreementStatus.VERIFYING
        await run_until(at(180))
        assert await get_status(agreement_id) is AgreementStatus.LIVE

        logs = await _logs(runtime, agreement_id)
        assert [e.matched for e in logs] == [True, False, True, True]
        assert [e.attempt for e in logs] == [1, 2, 3, 4]
        assert [e.checked_at for e in logs] == [at(0), at(60), at(120), at(180)]
        assert logs[1].distance == -1
        assert logs[1].notes.startswith('Bio missing required text: "Sponsored by Acme"')

    @pytest.mark.asyncio
    async def test_fetch_failure_resets_counter(
        self,
        runtime: Runtime,
        profiles: SimulatedSnapshotProvider,
        make_agreement: MakeAgreement,
        apply: Apply,
        run_until: RunUntil,
        get_status: GetStatus,
    ) -> None:
        agreement_id = await make_agreement()
        await apply(agreement_id)

        await run_until(at(0))
        profiles.fail_next("alice")
        await run_until(at(120))
        assert await get_status(agreement_id) is AgreementStatus.VERIFYING

        await run_until(at(180))
        assert await get_status(agreement_id) is AgreementStatus.LIVE

        logs = await _logs(runtime, agreement_id)
        assert [e.matched for e in logs] == [True, False, True, True]
        assert logs[1].raw_evidence["fetch_failed"] is True
        assert logs[1].notes.startswith("Snapshot unavailable for @alice")

    @pytest.mark.asyncio
    async def test_image_slot(
        self,
        runtime: Runtime,
        profiles: SimulatedSnapshotProvider,
        make_agreement: MakeAgreement,
        apply: Apply,
        run_until: RunUntil,
        get_status: GetStatus,
        artwork_fingerprint: str,
    ) -> None:
        agreement_id = await make_agreement(
            slot_kind="IMAGE",
            expected_fingerprint=artwork_fingerprint,
            required_substring=None,
            expected_artifact_url=ARTWORK_URL,
        )
        await apply(agreement_id)

        await run_until(at(0))
        profiles.update("alice", image_url=ARTWORK_URL)
        await run_until(at(120))
        assert await get_status(agreement_id) is AgreementStatus.LIVE

        logs = await _logs(runtime, agreement_id)
        assert [e.matched for e in logs] == [False, True, True]
        assert logs[0].notes.startswith("MISMATCH: distance")
        assert logs[1].notes == "Match: distance 0 <= 10"
        assert logs[1].raw_evidence["actual"] == artwork_fingerprint


class TestDeadline:
    @pytest.mark.asyncio
    async def test_all_nonmatches_fail_after_thirty_minutes(
        self,
        runtime: Runtime,
        queue: InMemoryJobQueue,
        escrow: SimulatedEscrowControl,
        sink: LoggingNotificationSink,
        profiles: SimulatedSnapshotProvider,
        make_agreement: MakeAgreement,
        apply: Apply,
        run_until: RunUntil,
        get_status: GetStatus,
    ) -> None:
        profiles.update("alice", text="no sponsor here")
        agreement_id = await make_agreement()
        await apply(agreement_id)

        await run_until(at(1800))
        assert await get_status(agreement_id) is AgreementStatus.VERIFYING

        await run_until(at(1860))
        assert await get_status(agreement_id) is AgreementStatus.FAILED_VERIFICATION

        logs = await _logs(runtime, agreement_id)
        assert len(logs) == 32
        assert not any(e.matched for e in logs)
        assert queue.pending(agreement_id=str(agreement_id)) == []
        assert [c.operation for c in escrow.calls] == ["mark_verifying"]
        assert [n.title for n in sink.sent] == ["Verification Failed", "Verification Failed"]

    @pytest.mark.asyncio
    async def test_threshold_is_checked_before_the_deadline(
        self,
        profiles: SimulatedSnapshotProvider,
        make_agreement: MakeAgreement,
        apply: Apply,
        run_until: RunUntil,
        get_status: GetStatus,
    ) -> None:
        """The second match arriving after 30 minutes still wins."""
        profiles.update("alice", text="no sponsor here")
        agreement_id = await make_agreement()
        await apply(agreement_id)

        await run_until(at(1740))
        profiles.update("alice", text=REQUIRED_TEXT)
        await run_until(at(1860))
        assert await get_status(agreement_id) is AgreementStatus.LIVE


class TestGuards:
    @pytest.mark.asyncio
    async def test_poll_for_agreement_not_verifying_is_a_noop(
        self, runtime: Runtime, make_agreement: MakeAgreement
    ) -> None:
        agreement_id = await make_agreement()
        async with runtime.unit_of_work() as ctx:
            result = await InitialVerificationService(ctx).run(
                {"agreement_id": str(agreement_id), "attempt": 1}
            )
        assert result is None
        assert await _logs(runtime, agreement_id) == []

    @pytest.mark.asyncio
    async def test_redelivered_poll_after_live_is_a_noop(
        self,
        runtime: Runtime,
        queue: InMemoryJobQueue,
        go_live: MakeAgreement,
    ) -> None:
        agreement_id = await go_live()
        last_poll = next(j for j in reversed(queue.completed) if j.job_type is JobType.VERIFY_INITIAL)

        async with runtime.unit_of_work() as ctx:
            assert await InitialVerificationService(ctx).run(last_poll.payload) is None
        assert len(await _logs(runtime, agreement_id)) == 2
        assert len(queue.pending(JobType.KEEP_ALIVE, str(agreement_id))) == 6

    @pytest.mark.asyncio
    async def test_unknown_agreement_is_skipped(self, runtime: Runtime) -> None:
        async with runtime.unit_of_work() as ctx:
            result = await InitialVerificationService(ctx).run({"agreement_id": str(uuid.uuid4())})
        assert result is None
