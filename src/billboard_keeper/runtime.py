"""Runtime container — wires collaborators from settings.

A Runtime holds the long-lived pieces (session factory, queue, providers,
shared HTTP client) and hands out a ServiceContext per unit of work. The API,
the worker and the simulation each build one; tests build one by hand with
simulated collaborators.
"""

from __future__ import annotations

import random
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx

from billboard_keeper.config import get_settings
from billboard_keeper.domain.enums import EventType
from billboard_keeper.domain.interfaces import SystemClock
from billboard_keeper.infrastructure.database.engine import get_session_factory
from billboard_keeper.infrastructure.database.repositories import EventRepository
from billboard_keeper.infrastructure.escrow import build_escrow_control
from billboard_keeper.infrastructure.notifications import DatabaseNotificationSink
from billboard_keeper.infrastructure.queue import build_job_queue
from billboard_keeper.infrastructure.snapshot import build_snapshot_provider
from billboard_keeper.logging_config import get_logger
from billboard_keeper.services.context import ServiceContext

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    import redis.asyncio as aioredis
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from billboard_keeper.config import Settings
    from billboard_keeper.domain.interfaces import (
        Clock,
        EscrowControl,
        JobQueue,
        NotificationSink,
        SnapshotProvider,
    )
    from billboard_keeper.services.mirror import PendingEscrowCall

logger = get_logger(__name__)


@dataclass
class Runtime:
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    queue: JobQueue
    snapshots: SnapshotProvider
    escrow: EscrowControl
    clock: Clock = field(default_factory=SystemClock)
    http_client: httpx.AsyncClient | None = None
    sink_factory: Callable[[AsyncSession], NotificationSink] = DatabaseNotificationSink
    rng: random.Random = field(default_factory=random.Random)

    def context(self, session: AsyncSession) -> ServiceContext:
        return ServiceContext(
            session=session,
            settings=self.settings,
            clock=self.clock,
            snapshots=self.snapshots,
            scheduler=self.queue.bind(session),
            sink=self.sink_factory(session),
            http_client=self.http_client,
            rng=self.rng,
        )

    @asynccontextmanager
    async def unit_of_work(self, dispatch_escrow: bool = True) -> AsyncIterator[ServiceContext]:
        """Yield a context whose session commits on success and rolls back on error.

        Ledger calls queued during the unit of work are sent after the commit.
        Pass dispatch_escrow=False to send them yourself via dispatch_escrow().
        """
        async with self.session_factory() as session:
            ctx = self.context(session)
            try:
                yield ctx
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        if dispatch_escrow:
            await self.dispatch_escrow(ctx.escrow_calls)

    async def dispatch_escrow(self, calls: list[PendingEscrowCall]) -> None:
        """Send committed ledger calls in order. Never raises."""
        for call in calls:
            try:
                tx_hash = await getattr(self.escrow, call.operation)(call.ledger_ref, *call.args)
            except Exception as exc:
                logger.error(
                    "escrow.mirror_failed",
                    agreement_id=str(call.agreement_id),
                    operation=call.operation,
                    error=str(exc),
                )
                await self._record_mirror_failure(call, str(exc))
                continue
            logger.info(
                "escrow.mirrored",
                agreement_id=str(call.agreement_id),
                operation=call.operation,
                tx_hash=tx_hash,
            )

    async def _record_mirror_failure(self, call: PendingEscrowCall, error: str) -> None:
        try:
            async with self.session_factory() as session:
                await EventRepository(session).record(
                    agreement_id=call.agreement_id,
                    event_type=EventType.ESCROW_MIRROR_FAILED,
                    old_status=call.status,
                    new_status=call.status,
                    metadata={"operation": call.operation, "error": error},
                )
                await session.commit()
        except Exception as exc:
            logger.error(
                "escrow.failure_record_failed",
                agreement_id=str(call.agreement_id),
                error=str(exc),
            )

    async def aclose(self) -> None:
        if self.http_client is not None:
            await self.http_client.aclose()
            self.http_client = None


def build_runtime(
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    redis: aioredis.Redis | None = None,
) -> Runtime:
    """Build a Runtime from configuration."""
    settings = settings or get_settings()
    session_factory = session_factory or get_session_factory()
    http_client = httpx.AsyncClient(timeout=settings.image_download_timeout_seconds)

    runtime = Runtime(
        settings=settings,
        session_factory=session_factory,
        queue=build_job_queue(settings, session_factory, redis),
        snapshots=build_snapshot_provider(settings, http_client),
        escrow=build_escrow_control(settings, http_client),
        http_client=http_client,
    )
    logger.info(
        "runtime.built",
        queue_backend=settings.job_queue_backend,
        snapshot_provider=settings.snapshot_provider,
        escrow_backend=settings.escrow_backend,
    )
    return runtime
