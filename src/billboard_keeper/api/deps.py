"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject the runtime, a
per-request service context and the lifecycle service.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends, HTTPException, Request

from billboard_keeper.infrastructure.snapshot.simulated import SimulatedSnapshotProvider
from billboard_keeper.services.lifecycle import LifecycleService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from billboard_keeper.runtime import Runtime
    from billboard_keeper.services.context import ServiceContext


def get_runtime(request: Request) -> Runtime:
    """Provide the Runtime built during application startup."""
    return request.app.state.runtime


async def get_service_context(
    runtime: Runtime = Depends(get_runtime),
) -> AsyncGenerator[ServiceContext, None]:
    """Yield a service context whose session commits when the request succeeds."""
    async with runtime.unit_of_work() as ctx:
        yield ctx


async def get_lifecycle_service(
    ctx: ServiceContext = Depends(get_service_context),
) -> LifecycleService:
    """Provide a LifecycleService bound to the current unit of work."""
    return LifecycleService(ctx)


def get_simulated_provider(
    runtime: Runtime = Depends(get_runtime),
) -> SimulatedSnapshotProvider:
    """Provide the simulated snapshot provider, or 403 when another is active."""
    if not isinstance(runtime.snapshots, SimulatedSnapshotProvider):
        raise HTTPException(
            status_code=403,
            detail="Dev profile endpoints require the simulated snapshot provider",
        )
    return runtime.snapshots
