"""Compliance Verifier Protocol.

Defines the interface that both compliance rules implement. This is a
Protocol (structural subtyping) so concrete verifiers don't need to inherit
from a base class. They just need to match the shape.

Both the initial-verification poll and the keep-alive check evaluate a
snapshot through the same verifier, so the rule that promotes an agreement to
LIVE is exactly the rule that hard-cancels it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from billboard_keeper.domain.enums import SlotKind
    from billboard_keeper.domain.interfaces import ProfileSnapshot

# Distance recorded when no fingerprint distance could be measured
# (text slots, missing or undecodable images, failed fetches).
NO_DISTANCE = -1


@dataclass(frozen=True)
class ComplianceRequest:
    """Input to a verifier.

    Attributes:
        agreement_id: UUID of the agreement, for logging.
        slot_kind: IMAGE or TEXT.
        snapshot: The profile snapshot fetched for this poll.
        expected_fingerprint: 16-char hex fingerprint (IMAGE slots).
        required_substring: Text that must appear in the bio (TEXT slots).
    """

    agreement_id: str
    slot_kind: SlotKind
    snapshot: ProfileSnapshot
    expected_fingerprint: str | None = None
    required_substring: str | None = None


@dataclass(frozen=True)
class CheckOutcome:
    """Output of one compliance evaluation.

    Attributes:
        matched: Whether the artifact is present.
        distance: Fingerprint distance, or NO_DISTANCE.
        notes: Human-readable explanation stored in the verification log.
        evidence: Raw evidence (URLs, hashes, bio excerpt) stored with the log.
        fetch_failed: True when the snapshot itself could not be fetched.
    """

    matched: bool
    distance: int = NO_DISTANCE
    notes: str = ""
    evidence: dict[str, Any] = field(default_factory=dict)
    fetch_failed: bool = False

    @classmethod
    def unavailable(cls, handle: str, error: str) -> CheckOutcome:
        return cls(
            matched=False,
            notes=f"Snapshot unavailable for @{handle}: {error}",
            evidence={"handle": handle, "error": error},
            fetch_failed=True,
        )


@runtime_checkable
class ComplianceVerifier(Protocol):
    """Protocol that all compliance verifiers must satisfy.

    Concrete implementations:
        - verifiers/image.py  (perceptual fingerprint of the header image)
        - verifiers/text.py   (case-insensitive substring of the bio)
    """

    async def verify(self, request: ComplianceRequest) -> CheckOutcome:
        """Evaluate the snapshot. Must never raise."""
        ...
