"""Domain enumerations for Billboard Keeper.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class AgreementStatus(enum.StrEnum):
    """Lifecycle states of a placement agreement.

    Only APPROVAL_PENDING, VERIFYING and LIVE are left by this engine; the
    transitions it drives are guarded by AgreementStateMachine
    (see domain/state_machine.py). The remaining values are reached through
    the marketplace and ledger and are stored here so the status column can
    hold any of them.
    """

    DRAFT = "DRAFT"
    DEPOSIT_PENDING = "DEPOSIT_PENDING"
    DEPOSITED = "DEPOSITED"
    APPROVAL_PENDING = "APPROVAL_PENDING"
    VERIFYING = "VERIFYING"
    LIVE = "LIVE"
    EXPIRED = "EXPIRED"
    FAILED_VERIFICATION = "FAILED_VERIFICATION"
    CANCELED_SOFT = "CANCELED_SOFT"
    CANCELED_HARD = "CANCELED_HARD"
    REFUNDED = "REFUNDED"
    CLAIMED = "CLAIMED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        AgreementStatus.EXPIRED,
        AgreementStatus.FAILED_VERIFICATION,
        AgreementStatus.CANCELED_SOFT,
        AgreementStatus.CANCELED_HARD,
        AgreementStatus.REFUNDED,
        AgreementStatus.CLAIMED,
    }
)


class SlotKind(enum.StrEnum):
    """Which part of the external profile carries the artifact."""

    IMAGE = "IMAGE"  # profile header, checked by perceptual fingerprint
    TEXT = "TEXT"  # profile bio, checked by case-insensitive substring


class CheckPhase(enum.StrEnum):
    """Which scheduler produced a verification log entry."""

    INITIAL = "INITIAL"
    KEEP_ALIVE = "KEEP_ALIVE"


class JobType(enum.StrEnum):
    """Delayed job types, each consumed under its own concurrency limit."""

    VERIFY_INITIAL = "verify-initial"
    KEEP_ALIVE = "keep-alive"
    EXPIRY = "expiry"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the agreement_events table.

    Every state transition MUST produce exactly one event. Failures that are
    swallowed to keep the worker alive are recorded here too.
    """

    # Lifecycle events
    AGREEMENT_CREATED = "AGREEMENT_CREATED"
    ARTIFACT_APPLIED = "ARTIFACT_APPLIED"
    VERIFICATION_RESTARTED = "VERIFICATION_RESTARTED"
    AGREEMENT_LIVE = "AGREEMENT_LIVE"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    HARD_CANCEL = "HARD_CANCEL"
    AGREEMENT_EXPIRED = "AGREEMENT_EXPIRED"

    # Failure events
    ESCROW_MIRROR_FAILED = "ESCROW_MIRROR_FAILED"
    JOB_FAILED = "JOB_FAILED"


class NotificationKind(enum.StrEnum):
    """Kinds of user-facing alerts. Only milestones and terminal outcomes notify."""

    AGREEMENT_LIVE = "AGREEMENT_LIVE"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    AGREEMENT_HARD_CANCELED = "AGREEMENT_HARD_CANCELED"
    AGREEMENT_EXPIRED = "AGREEMENT_EXPIRED"
