"""Compliance verifier implementations and factory.

Two strategies, one per slot kind:
    - ImageVerifier:  perceptual fingerprint of the profile header
    - TextVerifier:   case-insensitive substring of the profile bio

The VerifierFactory creates the correct verifier from the agreement's
slot kind.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from billboard_keeper.domain.enums import SlotKind
from billboard_keeper.domain.verifier_protocol import (
    CheckOutcome,
    ComplianceRequest,
    ComplianceVerifier,
)
from billboard_keeper.verifiers.fingerprint import (
    Fingerprint,
    FingerprintComparison,
    compare_to_expected,
    compute_fingerprint,
    distance,
    normalize_image,
)
from billboard_keeper.verifiers.image import ImageVerifier
from billboard_keeper.verifiers.text import TextVerifier

if TYPE_CHECKING:
    import httpx

    from billboard_keeper.config import Settings


class VerifierFactory:
    """Factory that creates the correct verifier for a slot kind.

    Usage:
        verifier = VerifierFactory.create(SlotKind.TEXT)
        outcome = await verifier.verify(request)
    """

    _registry: dict[str, type] = {
        SlotKind.IMAGE.value: ImageVerifier,
        SlotKind.TEXT.value: TextVerifier,
    }

    @classmethod
    def create(
        cls,
        slot_kind: str,
        http_client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ) -> ComplianceVerifier:
        """Create a verifier instance for the given slot kind.

        Raises:
            ValueError: If the slot kind is unknown.
        """
        verifier_class = cls._registry.get(str(slot_kind))
        if verifier_class is None:
            supported = ", ".join(sorted(cls.get_supported_kinds()))
            raise ValueError(
                f"Unknown slot kind '{slot_kind}'. Supported: {supported}"
            )
        if verifier_class is ImageVerifier:
            return ImageVerifier(http_client=http_client, settings=settings)
        return verifier_class()

    @classmethod
    def get_supported_kinds(cls) -> list[str]:
        """Return the list of slot kinds that have a verifier."""
        return list(cls._registry.keys())


__all__ = [
    "CheckOutcome",
    "ComplianceRequest",
    "ComplianceVerifier",
    "Fingerprint",
    "FingerprintComparison",
    "ImageVerifier",
    "TextVerifier",
    "VerifierFactory",
    "compare_to_expected",
    "compute_fingerprint",
    "distance",
    "normalize_image",
]
