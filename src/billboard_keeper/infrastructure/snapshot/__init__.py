"""Profile snapshot providers."""

from __future__ import annotations

from typing import TYPE_CHECKING

from billboard_keeper.infrastructure.snapshot.rapidapi import RapidApiSnapshotProvider
from billboard_keeper.infrastructure.snapshot.simulated import (
    SimulatedProfile,
    SimulatedSnapshotProvider,
)

if TYPE_CHECKING:
    import httpx

    from billboard_keeper.config import Settings
    from billboard_keeper.domain.interfaces import SnapshotProvider


def build_snapshot_provider(
    settings: Settings,
    http_client: httpx.AsyncClient | None = None,
) -> SnapshotProvider:
    """Create the provider selected by SNAPSHOT_PROVIDER."""
    if settings.snapshot_provider == "rapidapi":
        return RapidApiSnapshotProvider(
            api_key=settings.rapidapi_key,
            api_host=settings.rapidapi_host,
            timeout_seconds=settings.snapshot_timeout_seconds,
            http_client=http_client,
        )
    return SimulatedSnapshotProvider()


__all__ = [
    "RapidApiSnapshotProvider",
    "SimulatedProfile",
    "SimulatedSnapshotProvider",
    "build_snapshot_provider",
]
