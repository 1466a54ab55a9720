"""Domain exceptions for Billboard Keeper.

These exceptions are framework-agnostic and represent business rule violations.
The API layer's middleware translates them to HTTP responses; scheduled jobs
never let them escape (see orchestration/worker.py).
"""


class BillboardError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "BILLBOARD_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- State Machine Errors ---


class InvalidStateTransitionError(BillboardError):
    """Raised when an attempted state transition is not allowed.

    Example: VERIFYING -> EXPIRED (an agreement must be LIVE before it expires)
    """

    def __init__(self, current_state: str, attempted_state: str) -> None:
        super().__init__(
            message=f"Invalid state transition: {current_state} -> {attempted_state}",
            code="INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.attempted_state = attempted_state


# --- Agreement Errors ---


class AgreementNotFoundError(BillboardError):
    """Raised when an agreement ID does not exist."""

    def __init__(self, agreement_id: str) -> None:
        super().__init__(
            message=f"Agreement not found: {agreement_id}",
            code="AGREEMENT_NOT_FOUND",
        )
        self.agreement_id = agreement_id


class RequirementMismatchError(BillboardError):
    """Raised when an agreement's requirement does not match its slot kind.

    An IMAGE slot carries exactly an expected fingerprint, a TEXT slot carries
    exactly a required substring.
    """

    def __init__(self, slot_kind: str, detail: str) -> None:
        super().__init__(
            message=f"Invalid requirement for {slot_kind} slot: {detail}",
            code="REQUIREMENT_MISMATCH",
        )
        self.slot_kind = slot_kind


class MissingRequirementError(BillboardError):
    """Raised when verification is requested before the requirement is attached."""

    def __init__(self, agreement_id: str, slot_kind: str) -> None:
        super().__init__(
            message=(
                f"Agreement {agreement_id} has no requirement attached "
                f"for its {slot_kind} slot"
            ),
            code="MISSING_REQUIREMENT",
        )
        self.agreement_id = agreement_id


# --- Collaborator Errors ---


class SnapshotFetchError(BillboardError):
    """Raised inside snapshot providers; converted to SnapshotResult.failure()."""

    def __init__(self, handle: str, reason: str) -> None:
        super().__init__(
            message=f"Could not fetch profile snapshot for @{handle}: {reason}",
            code="SNAPSHOT_FETCH_ERROR",
        )
        self.handle = handle
        self.reason = reason


class EscrowControlError(BillboardError):
    """Raised when a ledger mirror call fails."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(
            message=f"Escrow control '{operation}' failed: {message}",
            code="ESCROW_CONTROL_ERROR",
        )
        self.operation = operation
