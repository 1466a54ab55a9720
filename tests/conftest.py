"""Shared test fixtures for the Billboard Keeper test suite.

Provides:
    - An in-memory SQLite database per test
    - A Runtime wired to simulated collaborators and a manual clock
    - Pillow-generated header images served through an httpx MockTransport
    - Factory helpers for agreements and for draining the job queue
"""

from __future__ import annotations

import io
import random
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import httpx
import pytest
import pytest_asyncio
from PIL import Image, ImageDraw

from billboard_keeper.config import Settings
from billboard_keeper.domain.enums import AgreementStatus
from billboard_keeper.domain.interfaces import ManualClock
from billboard_keeper.infrastructure.database.engine import (
    build_engine,
    create_session_factory,
    create_tables,
)
from billboard_keeper.infrastructure.escrow import SimulatedEscrowControl
from billboard_keeper.infrastructure.notifications import LoggingNotificationSink
from billboard_keeper.infrastructure.queue.memory import InMemoryJobQueue
from billboard_keeper.infrastructure.snapshot.simulated import (
    SimulatedProfile,
    SimulatedSnapshotProvider,
)
from billboard_keeper.orchestration.worker import JobWorker
from billboard_keeper.runtime import Runtime
from billboard_keeper.services.lifecycle import LifecycleService
from billboard_keeper.verifiers.fingerprint import compute_fingerprint, normalize_image

if TYPE_CHECKING:
    import uuid
    from collections.abc import AsyncIterator, Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

T0 = datetime(2026, 1, 5, 12, 0, tzinfo=UTC)
ONE_DAY = 24 * 60 * 60

SPONSOR_WALLET = "0x742d35Cc6634C0532925a3b844Bc9e7595f2bD18"
CREATOR_WALLET = "0x" + "c" * 40

ARTWORK_URL = "https://cdn.test/artwork.png"
OTHER_URL = "https://cdn.test/other.png"
REQUIRED_TEXT = "Sponsored by Acme"


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------
def _png(img: Image.Image) -> bytes:
    out = io.BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()


def render_artwork() -> bytes:
    """9x8 grid of flat cells, each row a shuffled ramp of grey levels, 1500x500.

    Neighbouring cells always differ by at least one ramp step, so every
    fingerprint bit is far from its threshold.
    """
    rng = random.Random(42)
    levels = [30 + 25 * i for i in range(9)]
    img = Image.new("RGB", (1500, 500))
    draw = ImageDraw.Draw(img)
    for row in range(8):
        rng.shuffle(levels)
        for col, level in enumerate(levels):
            x0, y0 = col * 1500 // 9, row * 500 // 8
            x1, y1 = (col + 1) * 1500 // 9, (row + 1) * 500 // 8
            draw.rectangle([x0, y0, x1, y1], fill=(level, level, 255 - level))
    return _png(img)


def render_other() -> bytes:
    """Horizontal bands, unrelated to the artwork."""
    img = Image.new("RGB", (1500, 500))
    draw = ImageDraw.Draw(img)
    for y in range(0, 500, 50):
        shade = 255 - y * 255 // 500
        draw.rectangle([0, y, 1500, y + 50], fill=(shade, shade // 2, 30))
    return _png(img)


@pytest.fixture(scope="session")
def artwork_bytes() -> bytes:
    return render_artwork()


@pytest.fixture(scope="session")
def other_bytes() -> bytes:
    return render_other()


@pytest.fixture(scope="session")
def artwork_fingerprint(artwork_bytes: bytes) -> str:
    """Expected fingerprint, computed the way headers are normalized at check time."""
    return compute_fingerprint(normalize_image(artwork_bytes, (1500, 500))).to_hex()


@pytest.fixture
def cdn(artwork_bytes: bytes, other_bytes: bytes) -> dict[str, bytes]:
    """URL -> body served by the fake CDN. Tests may add or remove entries."""
    return {ARTWORK_URL: artwork_bytes, OTHER_URL: other_bytes}


@pytest_asyncio.fixture
async def http_client(cdn: dict[str, bytes]) -> AsyncIterator[httpx.AsyncClient]:
    def handler(request: httpx.Request) -> httpx.Response:
        body = cdn.get(str(request.url))
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, content=body, headers={"Content-Type": "image/png"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        yield client


# ---------------------------------------------------------------------------
# Settings + database
# ---------------------------------------------------------------------------
@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        app_env="development",
        database_url="sqlite+aiosqlite:///:memory:",
        job_queue_backend="memory",
        snapshot_provider="simulated",
        escrow_backend="simulated",
        verify_poll_interval_seconds=60,
        verify_max_duration_seconds=30 * 60,
        verify_required_consecutive_matches=2,
        keepalive_checks_per_day=7,
        keepalive_jitter_seconds=600,
        hash_max_distance=10,
    )


@pytest_asyncio.fixture
async def engine(settings: Settings) -> AsyncIterator[AsyncEngine]:
    engine = build_engine(settings.database_url, settings)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Runtime with simulated collaborators
# ---------------------------------------------------------------------------
@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(T0)


@pytest.fixture
def queue() -> InMemoryJobQueue:
    return InMemoryJobQueue()


@pytest.fixture
def profiles() -> SimulatedSnapshotProvider:
    return SimulatedSnapshotProvider(
        {
            "alice": SimulatedProfile(
                image_url=OTHER_URL,
                text=f"Building in public. {REQUIRED_TEXT}!",
                display_name="Alice",
            ),
        }
    )


@pytest.fixture
def escrow() -> SimulatedEscrowControl:
    return SimulatedEscrowControl()


@pytest.fixture
def sink() -> LoggingNotificationSink:
    return LoggingNotificationSink()


@pytest.fixture
def runtime(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    queue: InMemoryJobQueue,
    profiles: SimulatedSnapshotProvider,
    escrow: SimulatedEscrowControl,
    clock: ManualClock,
    http_client: httpx.AsyncClient,
    sink: LoggingNotificationSink,
) -> Runtime:
    return Runtime(
        settings=settings,
        session_factory=session_factory,
        queue=queue,
        snapshots=profiles,
        escrow=escrow,
        clock=clock,
        http_client=http_client,
        sink_factory=lambda _session: sink,
        rng=random.Random(1234),
    )


@pytest.fixture
def worker(runtime: Runtime) -> JobWorker:
    return JobWorker(runtime)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------
@pytest.fixture
def make_agreement(runtime: Runtime) -> Callable[..., Awaitable[uuid.UUID]]:
    """Create an agreement in APPROVAL_PENDING (TEXT slot by default)."""

    async def _make(**overrides: Any) -> uuid.UUID:
        data: dict[str, Any] = {
            "sponsor_wallet": SPONSOR_WALLET,
            "creator_wallet": CREATOR_WALLET,
            "profile_handle": "@alice",
            "slot_kind": "TEXT",
            "escrow_amount": Decimal("250"),
            "duration_seconds": ONE_DAY,
            "required_substring": REQUIRED_TEXT,
            "ledger_ref": "ledger-001",
        }
        data.update(overrides)
        async with runtime.unit_of_work() as ctx:
            agreement = await LifecycleService(ctx).create_agreement(**data)
        return agreement.id

    return _make


@pytest.fixture
def apply(runtime: Runtime) -> Callable[[uuid.UUID], Awaitable[None]]:
    """Report an agreement's artifact as applied."""

    async def _apply(agreement_id: uuid.UUID) -> None:
        async with runtime.unit_of_work() as ctx:
            await LifecycleService(ctx).mark_applied(agreement_id, actor=CREATOR_WALLET)

    return _apply


@pytest.fixture
def run_until(
    queue: InMemoryJobQueue,
    clock: ManualClock,
    worker: JobWorker,
) -> Callable[[datetime], Awaitable[int]]:
    """Process every queued job due up to `until`, moving the clock to each run_at."""

    async def _run(until: datetime) -> int:
        processed = 0
        while (job := queue.pop_next(until)) is not None:
            if job.run_at > clock.now():
                clock.set(job.run_at)
            await worker.process_job(job)
            processed += 1
        if until > clock.now():
            clock.set(until)
        return processed

    return _run


@pytest.fixture
def run_for(
    clock: ManualClock,
    run_until: Callable[[datetime], Awaitable[int]],
) -> Callable[[float], Awaitable[int]]:
    async def _run(seconds: float) -> int:
        return await run_until(clock.now() + timedelta(seconds=seconds))

    return _run


@pytest.fixture
def get_status(runtime: Runtime) -> Callable[[uuid.UUID], Awaitable[AgreementStatus]]:
    async def _get(agreement_id: uuid.UUID) -> AgreementStatus:
        async with runtime.unit_of_work() as ctx:
            agreement = await LifecycleService(ctx).get_agreement(agreement_id)
        return AgreementStatus(agreement.status)

    return _get


@pytest.fixture
def go_live(
    settings: Settings,
    make_agreement: Callable[..., Awaitable[uuid.UUID]],
    apply: Callable[[uuid.UUID], Awaitable[None]],
    run_for: Callable[[float], Awaitable[int]],
    get_status: Callable[[uuid.UUID], Awaitable[AgreementStatus]],
) -> Callable[..., Awaitable[uuid.UUID]]:
    """Create, apply and poll an agreement until it is LIVE."""

    async def _go(**overrides: Any) -> uuid.UUID:
        agreement_id = await make_agreement(**overrides)
        await apply(agreement_id)
        polls = settings.verify_required_consecutive_matches - 1
        await run_for(polls * settings.verify_poll_interval_seconds)
        assert await get_status(agreement_id) is AgreementStatus.LIVE
        return agreement_id

    return _go
