"""TextVerifier — checks that the profile bio carries the sponsored text.

The rule is case-insensitive substring containment: required "HELLO" is
present in "say hello world".
"""

from __future__ import annotations

from billboard_keeper.domain.verifier_protocol import (
    NO_DISTANCE,
    CheckOutcome,
    ComplianceRequest,
)

# Length of the bio excerpt kept as raw evidence.
EVIDENCE_EXCERPT_CHARS = 280


def contains_required_text(text: str, required: str) -> bool:
    """Case-insensitive containment. An empty requirement never matches."""
    if not required:
        return False
    return required.lower() in text.lower()


class TextVerifier:
    """Verifier for TEXT slots."""

    async def verify(self, request: ComplianceRequest) -> CheckOutcome:
        required = request.required_substring or ""
        bio = request.snapshot.text or ""
        evidence = {
            "required": required,
            "bio_excerpt": bio[:EVIDENCE_EXCERPT_CHARS],
        }

        if not required:
            return CheckOutcome(
                matched=False,
                notes="No required text attached",
                evidence=evidence,
            )

        if contains_required_text(bio, required):
            return CheckOutcome(
                matched=True,
                distance=0,
                notes=f'Bio contains required text: "{required}"',
                evidence=evidence,
            )

        return CheckOutcome(
            matched=False,
            distance=NO_DISTANCE,
            notes=(
                f'Bio missing required text: "{required}". '
                f'Current bio: "{bio[:100]}"'
            ),
            evidence=evidence,
        )
