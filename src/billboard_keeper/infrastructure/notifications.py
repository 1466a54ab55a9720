"""Notification sinks.

    - DatabaseNotificationSink: persists alerts to the notifications table
      within the caller's session.
    - LoggingNotificationSink: emits a structured log line (and keeps a copy
      in memory), for the simulation and tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from billboard_keeper.infrastructure.database.repositories import NotificationRepository
from billboard_keeper.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from billboard_keeper.domain.enums import NotificationKind

logger = get_logger(__name__)


class DatabaseNotificationSink:
    def __init__(self, session: AsyncSession) -> None:
        self._repo = NotificationRepository(session)

    async def notify(
        self,
        party: str,
        kind: NotificationKind,
        title: str,
        body: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self._repo.create(
            party=party,
            kind=kind.value,
            title=title,
            body=body,
            metadata=metadata,
        )


@dataclass
class SentNotification:
    party: str
    kind: NotificationKind
    title: str
    body: str
    metadata: dict[str, Any] = field(default_factory=dict)


class LoggingNotificationSink:
    def __init__(self) -> None:
        self.sent: list[SentNotification] = []

    async def notify(
        self,
        party: str,
        kind: NotificationKind,
        title: str,
        body: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.sent.append(SentNotification(party, kind, title, body, dict(metadata or {})))
        logger.info("notification.sent", party=party, kind=kind.value, title=title)

    def for_party(self, party: str) -> list[SentNotification]:
        return [n for n in self.sent if n.party == party]
