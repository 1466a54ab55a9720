"""Collaborators shared by the services of one unit of work."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx
    from sqlalchemy.ext.asyncio import AsyncSession

    from billboard_keeper.config import Settings
    from billboard_keeper.domain.interfaces import (
        Clock,
        JobScheduler,
        NotificationSink,
        SnapshotProvider,
    )
    from billboard_keeper.services.mirror import PendingEscrowCall


@dataclass
class ServiceContext:
    """Everything a service needs for one request or one job.

    `session` is the unit of work; `scheduler` writes into the same unit of
    work where the queue backend supports it. `escrow_calls` collects the ledger
    calls to send once the unit of work has committed. The worker and the API
    build a fresh context per job / request.
    """

    session: AsyncSession
    settings: Settings
    clock: Clock
    snapshots: SnapshotProvider
    scheduler: JobScheduler
    sink: NotificationSink
    http_client: httpx.AsyncClient | None = None
    rng: random.Random = field(default_factory=random.Random)
    escrow_calls: list[PendingEscrowCall] = field(default_factory=list)
