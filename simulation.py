#!/usr/bin/env python3
"""Billboard Keeper — End-to-End Simulation.

Runs four scenarios with SponsorBot and CreatorBot against a manual clock,
an in-memory job queue, the simulated profile provider and the simulated
escrow ledger:

    Scenario 1: Happy Path (IMAGE slot)
        - Sponsor registers an agreement for a header artwork
        - Creator sets the artwork as header and reports it applied
        - Two consecutive matching polls -> LIVE
        - Keep-alive checks pass for the whole day -> EXPIRED, escrow paid out

    Scenario 2: Flaky Verification (TEXT slot)
        - Provider fails once, the bio then matches twice -> LIVE

    Scenario 3: One Strike (TEXT slot)
        - Agreement goes LIVE
        - Creator edits the bio after the second keep-alive check
        - Next check sees the mismatch -> CANCELED_HARD, escrow refunded

    Scenario 4: Verification Timeout (TEXT slot)
        - Creator never updates the bio -> FAILED_VERIFICATION after 30 minutes

Usage:
    uv run python simulation.py
    uv run python simulation.py --scenario 3
    uv run python simulation.py --database-url postgresql+asyncpg://...
"""

from __future__ import annotations

import argparse
import asyncio
import io
import random
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

import httpx
from PIL import Image, ImageDraw

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from billboard_keeper.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from billboard_keeper.config import Settings  # noqa: E402
from billboard_keeper.domain.enums import AgreementStatus, JobType  # noqa: E402
from billboard_keeper.domain.interfaces import ManualClock  # noqa: E402
from billboard_keeper.infrastructure.database.engine import (  # noqa: E402
    build_engine,
    create_session_factory,
    create_tables,
)
from billboard_keeper.infrastructure.escrow import SimulatedEscrowControl  # noqa: E402
from billboard_keeper.infrastructure.notifications import LoggingNotificationSink  # noqa: E402
from billboard_keeper.infrastructure.queue.memory import InMemoryJobQueue  # noqa: E402
from billboard_keeper.infrastructure.snapshot.simulated import (  # noqa: E402
    SimulatedSnapshotProvider,
)
from billboard_keeper.orchestration.worker import JobWorker  # noqa: E402
from billboard_keeper.runtime import Runtime  # noqa: E402
from billboard_keeper.services.lifecycle import LifecycleService  # noqa: E402
from billboard_keeper.verifiers.fingerprint import compute_fingerprint, normalize_image  # noqa: E402

ARTWORK_URL = "https://cdn.example.test/artwork/launch-banner.png"
OTHER_HEADER_URL = "https://cdn.example.test/headers/sunset.png"
SIM_START = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Images served by the fake CDN
# ---------------------------------------------------------------------------
def render_artwork() -> bytes:
    """Sponsor artwork: diagonal stripes on a gradient, 1500x500."""
    img = Image.new("RGB", (1500, 500))
    draw = ImageDraw.Draw(img)
    for x in range(0, 1500, 10):
        draw.rectangle([x, 0, x + 10, 500], fill=(x * 255 // 1500, 40, 200))
    for offset in range(-500, 1500, 120):
        draw.line([(offset, 500), (offset + 500, 0)], fill=(255, 230, 0), width=30)
    return _png(img)


def render_other_header() -> bytes:
    """Unrelated header: horizontal bands."""
    img = Image.new("RGB", (1500, 500))
    draw = ImageDraw.Draw(img)
    for y in range(0, 500, 50):
        shade = 255 - y * 255 // 500
        draw.rectangle([0, y, 1500, y + 50], fill=(shade, shade // 2, 30))
    return _png(img)


def _png(img: Image.Image) -> bytes:
    out = io.BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()


def build_cdn_client() -> httpx.AsyncClient:
    images = {ARTWORK_URL: render_artwork(), OTHER_HEADER_URL: render_other_header()}

    def handler(request: httpx.Request) -> httpx.Response:
        body = images.get(str(request.url))
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, content=body, headers={"Content-Type": "image/png"})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Harness
# ---------------------------------------------------------------------------
@dataclass
class Harness:
    """Everything a scenario needs: runtime, worker and the simulated parts."""

    runtime: Runtime
    worker: JobWorker
    clock: ManualClock
    queue: InMemoryJobQueue
    profiles: SimulatedSnapshotProvider
    escrow: SimulatedEscrowControl
    sink: LoggingNotificationSink
    engine: AsyncEngine | None = None

    async def run_until(self, until: datetime) -> int:
        """Process every job due up to `until` in run_at order, moving the clock."""
        processed = 0
        while (job := self.queue.pop_next(until)) is not None:
            if job.run_at > self.clock.now():
                self.clock.set(job.run_at)
            await self.worker.process_job(job)
            processed += 1
        if until > self.clock.now():
            self.clock.set(until)
        return processed

    async def run_for(self, seconds: float) -> int:
        return await self.run_until(self.clock.now() + timedelta(seconds=seconds))

    async def close(self) -> None:
        await self.runtime.aclose()
        if self.engine is not None:
            await self.engine.dispose()


async def build_harness(database_url: str) -> Harness:
    settings = Settings(
        database_url=database_url,
        job_queue_backend="memory",
        snapshot_provider="simulated",
        escrow_backend="simulated",
    )
    engine = build_engine(database_url, settings)
    await create_tables(engine)

    clock = ManualClock(SIM_START)
    queue = InMemoryJobQueue()
    profiles = SimulatedSnapshotProvider()
    escrow = SimulatedEscrowControl()
    sink = LoggingNotificationSink()

    runtime = Runtime(
        settings=settings,
        session_factory=create_session_factory(engine),
        queue=queue,
        snapshots=profiles,
        escrow=escrow,
        clock=clock,
        http_client=build_cdn_client(),
        sink_factory=lambda _session: sink,
        rng=random.Random(7),
    )
    return Harness(
        runtime=runtime,
        worker=JobWorker(runtime),
        clock=clock,
        queue=queue,
        profiles=profiles,
        escrow=escrow,
        sink=sink,
        engine=engine,
    )


# ---------------------------------------------------------------------------
# Bot Agents
# ---------------------------------------------------------------------------
@dataclass
class SponsorBot:
    """Simulated sponsor that registers approved agreements."""

    wallet: str = "0x" + "5" * 40

    async def register(
        self,
        h: Harness,
        creator: CreatorBot,
        slot_kind: str,
        *,
        expected_fingerprint: str | None = None,
        required_substring: str | None = None,
        duration_seconds: int = 24 * 60 * 60,
        amount: Decimal = Decimal("250"),
    ) -> uuid.UUID:
        """Register an agreement in APPROVAL_PENDING. Returns its id."""
        async with h.runtime.unit_of_work() as ctx:
            agreement = await LifecycleService(ctx).create_agreement(
                sponsor_wallet=self.wallet,
                creator_wallet=creator.wallet,
                profile_handle=creator.handle,
                slot_kind=slot_kind,
                escrow_amount=amount,
                duration_seconds=duration_seconds,
                expected_fingerprint=expected_fingerprint,
                required_substring=required_substring,
                ledger_ref=f"ledger-{uuid.uuid4().hex[:12]}",
            )
        logger.info(
            "🔵 SPONSOR: Agreement registered",
            agreement_id=str(agreement.id),
            slot_kind=slot_kind,
            amount=str(amount),
        )
        return agreement.id

    async def check_status(self, h: Harness, agreement_id: uuid.UUID) -> dict:
        async with h.runtime.unit_of_work() as ctx:
            status = await LifecycleService(ctx).get_status(agreement_id)
        logger.info(
            "🔵 SPONSOR: Status check",
            agreement_id=str(agreement_id),
            status=status["status"],
            matches=status["consecutive_matches"],
        )
        return status


@dataclass
class CreatorBot:
    """Simulated creator who edits their profile and reports placements."""

    handle: str
    wallet: str = "0x" + "C" * 40
    bio: str = "Building things in public."
    header_url: str | None = OTHER_HEADER_URL
    edits: list[str] = field(default_factory=list)

    def publish(self, h: Harness) -> None:
        h.profiles.update(
            self.handle,
            text=self.bio,
            image_url=self.header_url,
            display_name=self.handle.title(),
        )

    def set_bio(self, h: Harness, bio: str) -> None:
        self.bio = bio
        self.edits.append(f"bio -> {bio!r}")
        self.publish(h)
        logger.info("🟢 CREATOR: Bio updated", handle=self.handle, bio=bio)

    def set_header(self, h: Harness, url: str) -> None:
        self.header_url = url
        self.edits.append(f"header -> {url}")
        self.publish(h)
        logger.info("🟢 CREATOR: Header updated", handle=self.handle, url=url)

    async def report_applied(self, h: Harness, agreement_id: uuid.UUID) -> None:
        async with h.runtime.unit_of_work() as ctx:
            await LifecycleService(ctx).mark_applied(agreement_id, actor=self.wallet)
        logger.info("🟢 CREATOR: Reported artifact applied", agreement_id=str(agreement_id))


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


STATUS_ICONS = {
    AgreementStatus.LIVE.value: "🟢",
    AgreementStatus.EXPIRED.value: "✅",
    AgreementStatus.CANCELED_HARD.value: "🛑",
    AgreementStatus.FAILED_VERIFICATION.value: "❌",
}


def print_status(status: dict) -> None:
    icon = STATUS_ICONS.get(status["status"], "⏳")
    print(f"  {icon} Status: {status['status']}")
    print(f"  Polls: {status['verification_attempts']}, consecutive matches: {status['consecutive_matches']}")
    if status.get("end_at"):
        print(f"  Window: {status['start_at']:%Y-%m-%d %H:%M} -> {status['end_at']:%Y-%m-%d %H:%M}")
    if status.get("hard_cancel_reason"):
        print(f"  Reason: {status['hard_cancel_reason']}")


async def print_audit_trail(h: Harness, agreement_id: uuid.UUID) -> None:
    """Print the audit trail and the verification log of an agreement."""
    async with h.runtime.unit_of_work() as ctx:
        svc = LifecycleService(ctx)
        events = await svc.get_events(agreement_id)
        checks = await svc.get_verification_logs(agreement_id)

    section("Audit Trail")
    for event in events:
        old = event.old_status or "-"
        print(f"  [{event.created_at:%m-%d %H:%M}] {event.event_type:<24} {old} -> {event.new_status}")

    section("Verification Log")
    for check in checks:
        icon = "✓" if check.matched else "✗"
        print(f"  [{check.checked_at:%m-%d %H:%M}] {check.phase:<10} #{check.attempt:<2} {icon} {check.notes}")

    calls = [c.operation for c in h.escrow.calls]
    section("Escrow Ledger")
    print(f"  Calls: {', '.join(calls) or '(none)'}")


# ===========================================================================
# Scenarios
# ===========================================================================
async def scenario_1_happy_path(h: Harness) -> None:
    banner("SCENARIO 1: Happy Path (IMAGE slot)")
    sponsor = SponsorBot()
    creator = CreatorBot(handle="alice")
    creator.publish(h)

    expected = compute_fingerprint(
        normalize_image(render_artwork(), h.runtime.settings.image_normalize_size)
    ).to_hex()
    section("Register + apply")
    agreement_id = await sponsor.register(h, creator, "IMAGE", expected_fingerprint=expected)
    creator.set_header(h, ARTWORK_URL)
    await creator.report_applied(h, agreement_id)

    section("Initial verification")
    await h.run_for(h.runtime.settings.verify_poll_interval_seconds * 2)
    print_status(await sponsor.check_status(h, agreement_id))

    section("Display window")
    await h.run_for(24 * 60 * 60 + 60)
    print_status(await sponsor.check_status(h, agreement_id))
    await print_audit_trail(h, agreement_id)


async def scenario_2_flaky_verification(h: Harness) -> None:
    banner("SCENARIO 2: Flaky Verification (TEXT slot)")
    sponsor = SponsorBot()
    creator = CreatorBot(handle="bob")
    creator.publish(h)

    required = "Sponsored by Acme Rockets"
    agreement_id = await sponsor.register(h, creator, "TEXT", required_substring=required)
    creator.set_bio(h, f"Maker of small tools. {required} 🚀")

    section("Provider fails once, then recovers")
    h.profiles.fail_next(creator.handle, 1)
    await creator.report_applied(h, agreement_id)
    await h.run_for(h.runtime.settings.verify_poll_interval_seconds * 3)
    print_status(await sponsor.check_status(h, agreement_id))

    pending = h.queue.pending(JobType.KEEP_ALIVE, str(agreement_id))
    print(f"  Keep-alive checks planned: {len(pending)}")
    await print_audit_trail(h, agreement_id)


async def scenario_3_one_strike(h: Harness) -> None:
    banner("SCENARIO 3: One Strike (TEXT slot)")
    sponsor = SponsorBot()
    creator = CreatorBot(handle="carol")
    creator.publish(h)

    required = "Ad: Nimbus Coffee"
    agreement_id = await sponsor.register(h, creator, "TEXT", required_substring=required)
    creator.set_bio(h, f"Coffee nerd. {required}")
    await creator.report_applied(h, agreement_id)
    await h.run_for(h.runtime.settings.verify_poll_interval_seconds * 2)
    print_status(await sponsor.check_status(h, agreement_id))

    section("Two keep-alive checks pass")
    checks = h.queue.pending(JobType.KEEP_ALIVE, str(agreement_id))
    await h.run_until(checks[1].run_at)

    section("Creator removes the sponsored text")
    creator.set_bio(h, "Coffee nerd. DMs open.")
    await h.run_until(checks[2].run_at)
    print_status(await sponsor.check_status(h, agreement_id))

    left = h.queue.pending(agreement_id=str(agreement_id))
    print(f"  Jobs still pending for this agreement: {len(left)}")
    await print_audit_trail(h, agreement_id)


async def scenario_4_verification_timeout(h: Harness) -> None:
    banner("SCENARIO 4: Verification Timeout (TEXT slot)")
    sponsor = SponsorBot()
    creator = CreatorBot(handle="dave")
    creator.publish(h)

    agreement_id = await sponsor.register(
        h, creator, "TEXT", required_substring="Powered by Orbital Cloud"
    )
    await creator.report_applied(h, agreement_id)

    section("Creator never updates the bio")
    await h.run_for(h.runtime.settings.verify_max_duration_seconds + 5 * 60)
    print_status(await sponsor.check_status(h, agreement_id))

    notified = [n.title for n in h.sink.for_party(creator.wallet)]
    print(f"  Creator notifications: {notified}")
    await print_audit_trail(h, agreement_id)


SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_flaky_verification,
    3: scenario_3_one_strike,
    4: scenario_4_verification_timeout,
}


# ===========================================================================
# Main
# ===========================================================================
async def run(scenarios: list[int], database_url: str) -> None:
    print("\n" + "🪧" * 35)
    print("  BILLBOARD KEEPER — SIMULATION")
    print(f"  Database: {database_url}")
    print("🪧" * 35 + "\n")

    for num in scenarios:
        h = await build_harness(database_url)
        try:
            await SCENARIOS[num](h)
        finally:
            await h.close()

    print("\n" + "=" * 70)
    print("  ✅ ALL SCENARIOS COMPLETED")
    print("=" * 70 + "\n")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Billboard Keeper Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        choices=[0, *SCENARIOS],
        help="Run a specific scenario (1-4). Default: run all.",
    )
    parser.add_argument(
        "--database-url",
        default="sqlite+aiosqlite:///:memory:",
        help="Database to run against (default: SQLite in-memory).",
    )
    args = parser.parse_args()

    selected = list(SCENARIOS) if args.scenario == 0 else [args.scenario]
    asyncio.run(run(selected, args.database_url))
