"""Best-effort wrappers around the external collaborators.

Ledger calls are never made inside a unit of work. EscrowMirror.defer() queues
the call on the service context; Runtime.dispatch_escrow() sends it once the
local transition is committed, so a slow or failing ledger can neither roll
back local state nor be repeated by a retried job. A failed call is logged and
recorded as an ESCROW_MIRROR_FAILED audit event.

Notifier never raises: a failed notification is logged and dropped.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from billboard_keeper.domain.enums import AgreementStatus, NotificationKind
from billboard_keeper.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from billboard_keeper.domain.interfaces import NotificationSink
    from billboard_keeper.infrastructure.database.orm_models import Agreement

logger = get_logger(__name__)


@dataclass(frozen=True)
class PendingEscrowCall:
    """A ledger operation waiting for its unit of work to commit."""

    agreement_id: uuid.UUID
    ledger_ref: str
    operation: str
    status: AgreementStatus
    args: tuple[Any, ...] = ()


class EscrowMirror:
    """Queues ledger calls that mirror local transitions."""

    def __init__(self, pending: list[PendingEscrowCall]) -> None:
        self._pending = pending

    def defer(
        self, agreement: Agreement, operation: str, *args: Any
    ) -> PendingEscrowCall | None:
        """Queue `operation` for after commit. Skipped when there is no ledger_ref."""
        if not agreement.ledger_ref:
            logger.info(
                "escrow.mirror_skipped", agreement_id=str(agreement.id), operation=operation
            )
            return None

        call = PendingEscrowCall(
            agreement_id=agreement.id,
            ledger_ref=agreement.ledger_ref,
            operation=operation,
            status=AgreementStatus(agreement.status),
            args=args,
        )
        self._pending.append(call)
        return call


class Notifier:
    """Sends the four lifecycle notifications through a NotificationSink."""

    def __init__(self, sink: NotificationSink) -> None:
        self._sink = sink

    async def agreement_live(self, agreement: Agreement) -> None:
        await self._send(
            agreement.sponsor_wallet,
            NotificationKind.AGREEMENT_LIVE,
            "Placement is Live!",
            "The artwork has been verified on the creator's profile and the placement is now live.",
            agreement,
        )
        await self._send(
            agreement.creator_wallet,
            NotificationKind.AGREEMENT_LIVE,
            "Placement is Live!",
            "Verification passed. Keep the artwork applied until the placement ends.",
            agreement,
        )

    async def verification_failed(self, agreement: Agreement) -> None:
        await self._send(
            agreement.sponsor_wallet,
            NotificationKind.VERIFICATION_FAILED,
            "Verification Failed",
            "The creator did not apply the artwork in time. You can request a refund.",
            agreement,
        )
        await self._send(
            agreement.creator_wallet,
            NotificationKind.VERIFICATION_FAILED,
            "Verification Failed",
            "Verification timed out. The placement has been canceled.",
            agreement,
        )

    async def hard_canceled(self, agreement: Agreement, reason: str) -> None:
        await self._send(
            agreement.sponsor_wallet,
            NotificationKind.AGREEMENT_HARD_CANCELED,
            "Placement Hard Canceled",
            f"Your placement has been canceled: {reason}. Funds will be refunded.",
            agreement,
        )
        await self._send(
            agreement.creator_wallet,
            NotificationKind.AGREEMENT_HARD_CANCELED,
            "Placement Hard Canceled",
            f"The placement has been canceled due to a failed compliance check: {reason}",
            agreement,
        )

    async def expired(self, agreement: Agreement) -> None:
        await self._send(
            agreement.creator_wallet,
            NotificationKind.AGREEMENT_EXPIRED,
            "Placement Completed!",
            "The placement has ended successfully. You can now claim your earnings.",
            agreement,
        )

    async def _send(
        self,
        party: str,
        kind: NotificationKind,
        title: str,
        body: str,
        agreement: Agreement,
    ) -> None:
        try:
            await self._sink.notify(
                party, kind, title, body, metadata={"agreement_id": str(agreement.id)}
            )
        except Exception as exc:
            logger.warning(
                "notification.failed",
                agreement_id=str(agreement.id),
                party=party,
                kind=kind.value,
                error=str(exc),
            )
