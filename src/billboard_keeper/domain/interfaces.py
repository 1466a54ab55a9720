"""Ports to the engine's external collaborators.

Each collaborator is a Protocol (structural subtyping), so simulated and live
implementations are swapped by injection rather than by module-level state:

    - SnapshotProvider:  current state of an external profile
    - EscrowControl:     one-way mirror of transitions into the external ledger
    - NotificationSink:  best-effort user alerts
    - JobScheduler:      durable delayed jobs (schedule / cancel)
    - JobQueue:          the worker side of the same queue (claim / complete)
    - Clock:             the current time, injectable for tests

The domain layer has ZERO imports from httpx, SQLAlchemy, Redis or Pillow.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterable

    from billboard_keeper.domain.enums import JobType, NotificationKind


# ---------------------------------------------------------------------------
# Profile snapshots
# ---------------------------------------------------------------------------
def normalize_handle(handle: str) -> str:
    """Profile handles are compared without the leading '@' and case-insensitively."""
    return handle.strip().lstrip("@").lower()


@dataclass(frozen=True)
class ProfileSnapshot:
    """Current public state of an external profile.

    Attributes:
        handle: Normalized profile handle.
        image_url: URL of the profile header image, or None if unset.
        text: Profile bio text ("" if empty).
        display_name: Optional display name, informational only.
        avatar_url: Optional avatar URL, informational only.
    """

    handle: str
    image_url: str | None
    text: str = ""
    display_name: str | None = None
    avatar_url: str | None = None


@dataclass(frozen=True)
class SnapshotResult:
    """Typed outcome of a snapshot fetch. Providers never raise."""

    snapshot: ProfileSnapshot | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.snapshot is not None

    @classmethod
    def success(cls, snapshot: ProfileSnapshot) -> SnapshotResult:
        return cls(snapshot=snapshot)

    @classmethod
    def failure(cls, error: str) -> SnapshotResult:
        return cls(error=error)


@runtime_checkable
class SnapshotProvider(Protocol):
    """Fetches the current state of an external profile.

    Concrete implementations:
        - infrastructure/snapshot/simulated.py  (in-memory, injectable state)
        - infrastructure/snapshot/rapidapi.py   (live third-party API)
    """

    async def fetch_snapshot(self, handle: str) -> SnapshotResult:
        """Return the profile snapshot, or a failure result. Must not raise."""
        ...


# ---------------------------------------------------------------------------
# Escrow control
# ---------------------------------------------------------------------------
@runtime_checkable
class EscrowControl(Protocol):
    """One-way mirror of local transitions into the external ledger.

    Local state is authoritative: callers log a failed call and move on.
    """

    async def mark_verifying(self, ledger_ref: str) -> str: ...

    async def mark_live(self, ledger_ref: str, start_at: datetime, end_at: datetime) -> str: ...

    async def mark_expired(self, ledger_ref: str) -> str: ...

    async def hard_cancel_and_refund(self, ledger_ref: str) -> str: ...


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------
@runtime_checkable
class NotificationSink(Protocol):
    """Best-effort, fire-and-forget user alerts."""

    async def notify(
        self,
        party: str,
        kind: NotificationKind,
        title: str,
        body: str,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...


# ---------------------------------------------------------------------------
# Durable delayed jobs
# ---------------------------------------------------------------------------
@dataclass
class ScheduledJob:
    """A delayed job as it travels through a queue backend."""

    job_id: str
    job_type: JobType
    payload: dict[str, Any]
    run_at: datetime
    agreement_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class JobScheduler(Protocol):
    """The producer side of the queue: the only capability handlers need."""

    async def schedule(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        run_at: datetime,
        job_id: str | None = None,
    ) -> str:
        """Schedule a job. Scheduling an already-known job_id is a no-op."""
        ...

    async def cancel(self, agreement_id: str, job_types: Iterable[JobType]) -> int:
        """Remove pending jobs of the given types for an agreement. Returns the count."""
        ...


@runtime_checkable
class JobQueue(Protocol):
    """The consumer side of the queue, used by the worker."""

    def bind(self, session: Any) -> JobScheduler:
        """Return a scheduler that writes within the given unit of work.

        Backends that cannot join a database transaction return themselves.
        """
        ...

    async def claim_due(self, job_type: JobType, now: datetime, limit: int) -> list[ScheduledJob]:
        """Atomically claim up to `limit` jobs whose run_at <= now."""
        ...

    async def complete(self, job: ScheduledJob) -> None:
        """Mark a claimed job as finished so it is never delivered again."""
        ...


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------
@runtime_checkable
class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class ManualClock:
    """Clock that only moves when told to; drives tests and the simulation."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime.now(UTC)

    def now(self) -> datetime:
        return self._now

    def set(self, when: datetime) -> None:
        self._now = when

    def advance(self, seconds: float) -> datetime:
        self._now += timedelta(seconds=seconds)
        return self._now
