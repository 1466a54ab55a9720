"""Simulated snapshot provider with injectable, per-instance profile state.

Used by tests, the simulation and the dev API. Each provider instance owns its
profiles, so two tests (or two runtimes) never see each other's state.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from billboard_keeper.domain.interfaces import (
    ProfileSnapshot,
    SnapshotResult,
    normalize_handle,
)
from billboard_keeper.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SimulatedProfile:
    """Controllable state of one simulated profile.

    Attributes:
        image_url: Header image URL served in snapshots.
        text: Bio text.
        available: When False, fetches fail (simulates a provider outage).
        failure_reason: Error reported while unavailable.
    """

    image_url: str | None = None
    text: str = ""
    display_name: str | None = None
    avatar_url: str | None = None
    available: bool = True
    failure_reason: str = "Simulated provider outage"


class SimulatedSnapshotProvider:
    """In-memory SnapshotProvider."""

    def __init__(self, profiles: dict[str, SimulatedProfile] | None = None) -> None:
        self._profiles: dict[str, SimulatedProfile] = {
            normalize_handle(h): p for h, p in (profiles or {}).items()
        }
        self._failures_remaining: dict[str, int] = {}
        self.fetch_count = 0

    async def fetch_snapshot(self, handle: str) -> SnapshotResult:
        handle = normalize_handle(handle)
        self.fetch_count += 1

        remaining = self._failures_remaining.get(handle, 0)
        if remaining > 0:
            self._failures_remaining[handle] = remaining - 1
            return SnapshotResult.failure("Simulated transient failure")

        profile = self._profiles.get(handle)
        if profile is None:
            return SnapshotResult.failure(f"User @{handle} not found")
        if not profile.available:
            return SnapshotResult.failure(profile.failure_reason)

        return SnapshotResult.success(
            ProfileSnapshot(
                handle=handle,
                image_url=profile.image_url,
                text=profile.text,
                display_name=profile.display_name or handle,
                avatar_url=profile.avatar_url,
            )
        )

    # --- State control ---

    def set_profile(self, handle: str, profile: SimulatedProfile) -> SimulatedProfile:
        handle = normalize_handle(handle)
        self._profiles[handle] = profile
        logger.debug("snapshot.simulated_profile_set", handle=handle)
        return profile

    def update(self, handle: str, **changes: object) -> SimulatedProfile:
        """Change selected fields of a profile, creating it if needed."""
        handle = normalize_handle(handle)
        current = self._profiles.get(handle, SimulatedProfile(display_name=handle))
        return self.set_profile(handle, replace(current, **changes))

    def set_available(self, handle: str, available: bool, reason: str | None = None) -> None:
        changes: dict[str, object] = {"available": available}
        if reason:
            changes["failure_reason"] = reason
        self.update(handle, **changes)

    def fail_next(self, handle: str, count: int = 1) -> None:
        """Make the next `count` fetches for handle fail, then recover."""
        self._failures_remaining[normalize_handle(handle)] = count

    def get(self, handle: str) -> SimulatedProfile | None:
        return self._profiles.get(normalize_handle(handle))

    def handles(self) -> list[str]:
        return sorted(self._profiles)
