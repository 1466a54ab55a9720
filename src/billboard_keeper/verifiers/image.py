"""ImageVerifier — checks that the profile header shows the sponsored artwork.

Verification flow:
    1. Download the header image named in the snapshot (bounded by a timeout
       and a size cap).
    2. Fingerprint it in a worker thread under its own timeout, so a
       pathological image cannot stall the event loop or the worker pool.
    3. Match when the Hamming distance to the expected fingerprint is within
       the configured tolerance.

Every failure along the way (no header, unreachable URL, undecodable bytes,
timeout) is reported as a non-matching CheckOutcome, never raised.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import httpx

from billboard_keeper.config import get_settings
from billboard_keeper.domain.verifier_protocol import (
    NO_DISTANCE,
    CheckOutcome,
    ComplianceRequest,
)
from billboard_keeper.logging_config import get_logger
from billboard_keeper.verifiers.fingerprint import Fingerprint, compare_to_expected

if TYPE_CHECKING:
    from billboard_keeper.config import Settings

logger = get_logger(__name__)


class ImageVerifier:
    """Verifier that compares the live header image against a fingerprint."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize with an optional shared HTTP client (defaults come from config)."""
        self._client = http_client
        self._settings = settings or get_settings()

    async def verify(self, request: ComplianceRequest) -> CheckOutcome:
        settings = self._settings
        max_distance = settings.hash_max_distance
        image_url = request.snapshot.image_url

        if not request.expected_fingerprint:
            return CheckOutcome(matched=False, notes="No expected fingerprint attached")
        try:
            expected = Fingerprint.from_hex(request.expected_fingerprint)
        except ValueError as exc:
            return CheckOutcome(matched=False, notes=str(exc))

        evidence: dict = {"image_url": image_url, "expected": expected.to_hex()}

        if not image_url:
            return CheckOutcome(
                matched=False,
                notes="No header image URL on profile",
                evidence=evidence,
            )

        try:
            image_bytes = await self._download(image_url)
        except (httpx.HTTPError, ValueError) as exc:
            logger.info(
                "verifier.image.download_failed",
                agreement_id=request.agreement_id,
                url=image_url,
                error=str(exc),
            )
            return CheckOutcome(
                matched=False,
                notes=f"Error downloading header image: {exc}",
                evidence=evidence,
            )

        try:
            comparison = await asyncio.wait_for(
                asyncio.to_thread(
                    compare_to_expected,
                    expected,
                    image_bytes,
                    max_distance,
                    settings.image_normalize_size,
                ),
                timeout=settings.fingerprint_timeout_seconds,
            )
        except TimeoutError:
            logger.warning(
                "verifier.image.fingerprint_timeout",
                agreement_id=request.agreement_id,
                timeout=settings.fingerprint_timeout_seconds,
            )
            return CheckOutcome(
                matched=False,
                notes="Fingerprint computation timed out",
                evidence=evidence,
            )

        if comparison.actual is not None:
            evidence["actual"] = comparison.actual.to_hex()

        if comparison.error:
            notes = comparison.error
        elif comparison.match:
            notes = f"Match: distance {comparison.distance} <= {max_distance}"
        else:
            notes = f"MISMATCH: distance {comparison.distance} > {max_distance}"

        logger.debug(
            "verifier.image.result",
            agreement_id=request.agreement_id,
            match=comparison.match,
            distance=comparison.distance,
        )
        return CheckOutcome(
            matched=comparison.match,
            distance=comparison.distance if comparison.error is None else NO_DISTANCE,
            notes=notes,
            evidence=evidence,
        )

    async def _download(self, url: str) -> bytes:
        timeout = self._settings.image_download_timeout_seconds
        if self._client is not None:
            response = await self._client.get(url, timeout=timeout, follow_redirects=True)
        else:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.get(url, follow_redirects=True)
        response.raise_for_status()

        content = response.content
        if len(content) > self._settings.image_max_bytes:
            raise ValueError(
                f"Header image is {len(content)} bytes, "
                f"limit is {self._settings.image_max_bytes}"
            )
        return content
