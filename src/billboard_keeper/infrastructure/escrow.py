"""Escrow control — mirrors local transitions into the external ledger.

Two implementations:
    - SimulatedEscrowControl: fake transaction hashes, records every call.
    - HttpEscrowControl:      POSTs each operation to a ledger relayer.

Both raise EscrowControlError on failure. Services queue calls through
services.mirror.EscrowMirror; Runtime.dispatch_escrow() sends them after the
local transition commits and records failures without touching local state.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from billboard_keeper.domain.exceptions import EscrowControlError
from billboard_keeper.logging_config import get_logger

if TYPE_CHECKING:
    from datetime import datetime

    from billboard_keeper.config import Settings

logger = get_logger(__name__)


def _fake_tx_hash() -> str:
    return "0x" + uuid.uuid4().hex + uuid.uuid4().hex


@dataclass
class EscrowCall:
    operation: str
    ledger_ref: str
    args: dict[str, Any] = field(default_factory=dict)
    tx_hash: str = ""


class SimulatedEscrowControl:
    """EscrowControl that never touches a ledger."""

    def __init__(self, fail_operations: set[str] | None = None) -> None:
        """Initialize the simulated ledger.

        Args:
            fail_operations: Operation names (e.g. "mark_live") that should
                             raise EscrowControlError, to exercise failure paths.
        """
        self.calls: list[EscrowCall] = []
        self.fail_operations = set(fail_operations or ())

    async def _record(self, operation: str, ledger_ref: str, **args: Any) -> str:
        if operation in self.fail_operations:
            raise EscrowControlError(operation, "simulated ledger failure")
        tx_hash = _fake_tx_hash()
        self.calls.append(EscrowCall(operation, ledger_ref, args, tx_hash))
        logger.info(
            "escrow.call_simulated",
            operation=operation,
            ledger_ref=ledger_ref,
            tx_hash=tx_hash,
        )
        return tx_hash

    async def mark_verifying(self, ledger_ref: str) -> str:
        return await self._record("mark_verifying", ledger_ref)

    async def mark_live(self, ledger_ref: str, start_at: datetime, end_at: datetime) -> str:
        return await self._record(
            "mark_live",
            ledger_ref,
            start_at=start_at.isoformat(),
            end_at=end_at.isoformat(),
        )

    async def mark_expired(self, ledger_ref: str) -> str:
        return await self._record("mark_expired", ledger_ref)

    async def hard_cancel_and_refund(self, ledger_ref: str) -> str:
        return await self._record("hard_cancel_and_refund", ledger_ref)

    def calls_for(self, operation: str) -> list[EscrowCall]:
        return [c for c in self.calls if c.operation == operation]


class HttpEscrowControl:
    """EscrowControl that delegates to a ledger relayer over HTTP.

    Each operation is POST <base_url>/<operation> with a JSON body carrying
    the ledger reference; the relayer answers {"tx_hash": "0x..."}.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout_seconds: float = 20.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout_seconds
        self._client = http_client

    async def mark_verifying(self, ledger_ref: str) -> str:
        return await self._call("mark_verifying", {"ledger_ref": ledger_ref})

    async def mark_live(self, ledger_ref: str, start_at: datetime, end_at: datetime) -> str:
        return await self._call(
            "mark_live",
            {
                "ledger_ref": ledger_ref,
                "start_at": int(start_at.timestamp()),
                "end_at": int(end_at.timestamp()),
            },
        )

    async def mark_expired(self, ledger_ref: str) -> str:
        return await self._call("mark_expired", {"ledger_ref": ledger_ref})

    async def hard_cancel_and_refund(self, ledger_ref: str) -> str:
        return await self._call("hard_cancel_and_refund", {"ledger_ref": ledger_ref})

    async def _call(self, operation: str, body: dict[str, Any]) -> str:
        try:
            response = await self._post(operation, body)
        except httpx.HTTPError as exc:
            raise EscrowControlError(operation, str(exc)) from exc

        if response.status_code >= 400:
            raise EscrowControlError(
                operation, f"relayer returned {response.status_code}: {response.text[:200]}"
            )
        tx_hash = response.json().get("tx_hash", "")
        logger.info("escrow.call_sent", operation=operation, tx_hash=tx_hash, **body)
        return tx_hash

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _post(self, operation: str, body: dict[str, Any]) -> httpx.Response:
        url = f"{self._base_url}/{operation}"
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        if self._client is not None:
            return await self._client.post(url, json=body, headers=headers, timeout=self._timeout)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(url, json=body, headers=headers)


def build_escrow_control(
    settings: Settings,
    http_client: httpx.AsyncClient | None = None,
) -> SimulatedEscrowControl | HttpEscrowControl:
    """Create the implementation selected by ESCROW_BACKEND."""
    if settings.escrow_backend == "http":
        return HttpEscrowControl(
            base_url=settings.escrow_api_url,
            token=settings.escrow_api_token,
            timeout_seconds=settings.escrow_timeout_seconds,
            http_client=http_client,
        )
    return SimulatedEscrowControl()
