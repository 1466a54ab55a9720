"""Agreement Lifecycle State Machine Guard.

Uses python-statemachine to enforce the transitions this engine is allowed to
drive. No matter which scheduler fires, an illegal transition
(e.g., VERIFYING -> EXPIRED) raises TransitionNotAllowed before the agreement
row is touched.

The guard only validates the edge. Whether the agreement is *still* in the
expected prior status when the row is written is decided by the conditional
update in AgreementRepository.transition_status().

Transition table:
    APPROVAL_PENDING -> VERIFYING            (artifact_applied)
    VERIFYING        -> LIVE                 (verification_passed)
    VERIFYING        -> FAILED_VERIFICATION  (verification_timed_out)
    LIVE             -> CANCELED_HARD        (keep_alive_mismatch)
    LIVE             -> EXPIRED              (duration_elapsed)
"""

from __future__ import annotations

from statemachine import State, StateMachine

from billboard_keeper.domain.enums import AgreementStatus


class AgreementStateMachine(StateMachine):
    """State machine that guards agreement lifecycle transitions.

    Usage:
        sm = AgreementStateMachine(current_status="VERIFYING")
        sm.verification_passed()  # transitions to LIVE
        sm.status                 # "LIVE"
    """

    # --- States ---
    APPROVAL_PENDING = State("APPROVAL_PENDING", initial=True)
    VERIFYING = State("VERIFYING")
    LIVE = State("LIVE")
    EXPIRED = State("EXPIRED", final=True)
    FAILED_VERIFICATION = State("FAILED_VERIFICATION", final=True)
    CANCELED_HARD = State("CANCELED_HARD", final=True)

    # --- Events / Transitions ---

    # Entry trigger
    artifact_applied = APPROVAL_PENDING.to(VERIFYING)

    # Initial verification outcomes
    verification_passed = VERIFYING.to(LIVE)
    verification_timed_out = VERIFYING.to(FAILED_VERIFICATION)

    # Active period outcomes
    keep_alive_mismatch = LIVE.to(CANCELED_HARD)
    duration_elapsed = LIVE.to(EXPIRED)

    def __init__(self, current_status: str = "APPROVAL_PENDING") -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current AgreementStatus value (e.g., "LIVE").
                           Statuses driven outside this engine are rejected.
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches AgreementStatus)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.name for event in self.allowed_events]


# Every edge the engine may produce, as (old, new) status pairs.
ALLOWED_EDGES: frozenset[tuple[AgreementStatus, AgreementStatus]] = frozenset(
    {
        (AgreementStatus.APPROVAL_PENDING, AgreementStatus.VERIFYING),
        (AgreementStatus.VERIFYING, AgreementStatus.LIVE),
        (AgreementStatus.VERIFYING, AgreementStatus.FAILED_VERIFICATION),
        (AgreementStatus.LIVE, AgreementStatus.CANCELED_HARD),
        (AgreementStatus.LIVE, AgreementStatus.EXPIRED),
    }
)


def allowed_events_for(current_status: str) -> list[str]:
    """Events the engine can fire from a status; empty for statuses it does not drive."""
    try:
        return AgreementStateMachine(current_status=current_status).get_allowed_events()
    except ValueError:
        return []


def validate_transition(current_status: str, event_name: str) -> str:
    """Validate a state transition and return the new status.

    Creates a temporary state machine, fires the named event, and returns the
    resulting status string.

    Args:
        current_status: Current AgreementStatus value.
        event_name: The event to fire (e.g., "keep_alive_mismatch").

    Returns:
        The new status string after the transition.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = AgreementStateMachine(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status
