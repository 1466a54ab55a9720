"""Compliance evaluation: fetch a snapshot, then run the slot's verifier.

Both the initial-verification poll and the keep-alive check go through
ComplianceEvaluator.evaluate(), so the two schedulers can never disagree about
what "compliant" means.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from billboard_keeper.domain.enums import SlotKind
from billboard_keeper.domain.interfaces import SnapshotResult
from billboard_keeper.domain.verifier_protocol import CheckOutcome, ComplianceRequest
from billboard_keeper.logging_config import get_logger
from billboard_keeper.verifiers import VerifierFactory

if TYPE_CHECKING:
    import httpx

    from billboard_keeper.config import Settings
    from billboard_keeper.domain.interfaces import SnapshotProvider
    from billboard_keeper.infrastructure.database.orm_models import Agreement

logger = get_logger(__name__)


class ComplianceEvaluator:
    def __init__(
        self,
        snapshots: SnapshotProvider,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._snapshots = snapshots
        self._settings = settings
        self._http_client = http_client

    async def evaluate(self, agreement: Agreement) -> CheckOutcome:
        """Evaluate the agreement's live profile. Never raises on collaborator failure."""
        handle = agreement.profile_handle
        result = await self._fetch(handle)
        if not result.ok:
            logger.info(
                "compliance.snapshot_unavailable",
                agreement_id=str(agreement.id),
                handle=handle,
                error=result.error,
            )
            return CheckOutcome.unavailable(handle, result.error or "unknown error")

        verifier = VerifierFactory.create(
            agreement.slot_kind,
            http_client=self._http_client,
            settings=self._settings,
        )
        outcome = await verifier.verify(
            ComplianceRequest(
                agreement_id=str(agreement.id),
                slot_kind=SlotKind(agreement.slot_kind),
                snapshot=result.snapshot,
                expected_fingerprint=agreement.expected_fingerprint,
                required_substring=agreement.required_substring,
            )
        )
        logger.debug(
            "compliance.evaluated",
            agreement_id=str(agreement.id),
            matched=outcome.matched,
            distance=outcome.distance,
        )
        return outcome

    async def _fetch(self, handle: str) -> SnapshotResult:
        timeout = self._settings.snapshot_timeout_seconds
        try:
            return await asyncio.wait_for(self._snapshots.fetch_snapshot(handle), timeout=timeout)
        except TimeoutError:
            return SnapshotResult.failure(f"Snapshot fetch timed out after {timeout}s")
