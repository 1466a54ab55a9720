"""Tests for expiry and for the transitions observed across whole runs."""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from datetime import timedelta

import pytest

from billboard_keeper.domain.enums import AgreementStatus, EventType, JobType
from billboard_keeper.domain.interfaces import ScheduledJob
from billboard_keeper.domain.state_machine import ALLOWED_EDGES
from billboard_keeper.infrastructure.escrow import SimulatedEscrowControl
from billboard_keeper.infrastructure.notifications import LoggingNotificationSink
from billboard_keeper.infrastructure.queue.memory import InMemoryJobQueue
from billboard_keeper.infrastructure.snapshot.simulated import SimulatedSnapshotProvider
from billboard_keeper.orchestration.worker import JobWorker
from billboard_keeper.runtime import Runtime
from billboard_keeper.services.lifecycle import LifecycleService

GoLive = Callable[..., Awaitable[uuid.UUID]]
MakeAgreement = Callable[..., Awaitable[uuid.UUID]]
Apply = Callable[[uuid.UUID], Awaitable[None]]
RunFor = Callable[[float], Awaitable[int]]
GetStatus = Callable[[uuid.UUID], Awaitable[AgreementStatus]]

ONE_DAY = 24 * 60 * 60
CREATOR_WALLET = "0x" + "c" * 40


async def _events(runtime: Runtime, agreement_id: uuid.UUID) -> list:
    async with runtime.unit_of_work() as ctx:
        return await LifecycleService(ctx).get_events(agreement_id)


class TestExpiry:
    @pytest.mark.asyncio
    async def test_full_run_expires(
        self,
        go_live: GoLive,
        run_for: RunFor,
        get_status: GetStatus,
        escrow: SimulatedEscrowControl,
        sink: LoggingNotificationSink,
    ) -> None:
        agreement_id = await go_live()
        await run_for(ONE_DAY)

        assert await get_status(agreement_id) is AgreementStatus.EXPIRED
        assert [c.operation for c in escrow.calls] == ["mark_verifying", "mark_live", "mark_expired"]
        last = sink.sent[-1]
        assert last.title == "Placement Completed!"
        assert last.party == CREATOR_WALLET
        assert sink.for_party(CREATOR_WALLET)[-1] is last

    @pytest.mark.asyncio
    async def test_duplicate_delivery_expires_once(
        self,
        runtime: Runtime,
        queue: InMemoryJobQueue,
        worker: JobWorker,
        escrow: SimulatedEscrowControl,
        go_live: GoLive,
        run_for: RunFor,
    ) -> None:
        agreement_id = await go_live()
        await run_for(ONE_DAY)
        [expiry] = [j for j in queue.completed if j.job_type is JobType.EXPIRY]

        assert await worker.process_job(expiry) is None

        assert len(escrow.calls_for("mark_expired")) == 1
        expired = [
            e for e in await _events(runtime, agreement_id)
            if e.event_type == EventType.AGREEMENT_EXPIRED
        ]
        assert len(expired) == 1

    @pytest.mark.asyncio
    async def test_early_fire_is_a_noop(
        self,
        runtime: Runtime,
        queue: InMemoryJobQueue,
        worker: JobWorker,
        escrow: SimulatedEscrowControl,
        go_live: GoLive,
        get_status: GetStatus,
    ) -> None:
        agreement_id = await go_live()
        async with runtime.unit_of_work() as ctx:
            end_at = (await LifecycleService(ctx).get_agreement(agreement_id)).end_at

        early = ScheduledJob(
            job_id="expiry-early",
            job_type=JobType.EXPIRY,
            payload={"agreement_id": str(agreement_id)},
            run_at=runtime.clock.now(),
            agreement_id=str(agreement_id),
        )
        assert await worker.process_job(early) is None

        assert await get_status(agreement_id) is AgreementStatus.LIVE
        assert escrow.calls_for("mark_expired") == []
        assert all(j.run_at == end_at for j in queue.pending(JobType.EXPIRY, str(agreement_id)))

    @pytest.mark.asyncio
    async def test_expiry_of_canceled_agreement_is_a_noop(
        self,
        runtime: Runtime,
        worker: JobWorker,
        make_agreement: MakeAgreement,
        get_status: GetStatus,
    ) -> None:
        agreement_id = await make_agreement()
        job = ScheduledJob(
            job_id="expiry-x",
            job_type=JobType.EXPIRY,
            payload={"agreement_id": str(agreement_id)},
            run_at=runtime.clock.now(),
            agreement_id=str(agreement_id),
        )
        assert await worker.process_job(job) is None
        assert await get_status(agreement_id) is AgreementStatus.APPROVAL_PENDING


class TestObservedTransitions:
    @pytest.mark.asyncio
    async def test_every_observed_transition_is_an_allowed_edge(
        self,
        runtime: Runtime,
        queue: InMemoryJobQueue,
        profiles: SimulatedSnapshotProvider,
        make_agreement: MakeAgreement,
        apply: Apply,
        go_live: GoLive,
        run_for: RunFor,
    ) -> None:
        profiles.update("bob", text="Sponsored by Acme")
        profiles.update("carol", text="nothing to see")

        expires = await go_live()
        canceled = await go_live(profile_handle="@bob")
        fails = await make_agreement(profile_handle="@carol")
        await apply(fails)

        first_bob_check = queue.pending(JobType.KEEP_ALIVE, str(canceled))[0]
        await run_for((first_bob_check.run_at - runtime.clock.now()).total_seconds() - 1)
        profiles.update("bob", text="changed my mind")
        await run_for(2 * ONE_DAY)

        observed = set()
        for agreement_id in (expires, canceled, fails):
            for evt in await _events(runtime, agreement_id):
                if evt.old_status is not None and evt.old_status != evt.new_status:
                    observed.add((AgreementStatus(evt.old_status), AgreementStatus(evt.new_status)))

        assert observed <= set(ALLOWED_EDGES)
        assert (AgreementStatus.LIVE, AgreementStatus.EXPIRED) in observed
        assert (AgreementStatus.LIVE, AgreementStatus.CANCELED_HARD) in observed
        assert (AgreementStatus.VERIFYING, AgreementStatus.FAILED_VERIFICATION) in observed


class TestEscrowMirrorFailure:
    @pytest.mark.asyncio
    async def test_failed_mirror_keeps_local_state(
        self,
        runtime: Runtime,
        escrow: SimulatedEscrowControl,
        go_live: GoLive,
    ) -> None:
        escrow.fail_operations.add("mark_live")
        agreement_id = await go_live()

        failures = [
            e for e in await _events(runtime, agreement_id)
            if e.event_type == EventType.ESCROW_MIRROR_FAILED
        ]
        assert len(failures) == 1
        assert failures[0].metadata_json["operation"] == "mark_live"
        assert failures[0].new_status == "LIVE"
        assert escrow.calls_for("mark_live") == []
