"""Domain layer — pure business rules with zero framework dependencies."""

from billboard_keeper.domain.enums import (
    AgreementStatus,
    CheckPhase,
    EventType,
    JobType,
    NotificationKind,
    SlotKind,
)
from billboard_keeper.domain.exceptions import (
    AgreementNotFoundError,
    BillboardError,
    InvalidStateTransitionError,
    RequirementMismatchError,
)
from billboard_keeper.domain.interfaces import (
    Clock,
    EscrowControl,
    JobQueue,
    JobScheduler,
    ManualClock,
    NotificationSink,
    ProfileSnapshot,
    ScheduledJob,
    SnapshotProvider,
    SnapshotResult,
    SystemClock,
)
from billboard_keeper.domain.state_machine import (
    AgreementStateMachine,
    validate_transition,
)
from billboard_keeper.domain.verifier_protocol import (
    NO_DISTANCE,
    CheckOutcome,
    ComplianceRequest,
    ComplianceVerifier,
)

__all__ = [
    "AgreementStatus",
    "CheckPhase",
    "EventType",
    "JobType",
    "NotificationKind",
    "SlotKind",
    "AgreementNotFoundError",
    "BillboardError",
    "InvalidStateTransitionError",
    "RequirementMismatchError",
    "Clock",
    "EscrowControl",
    "JobQueue",
    "JobScheduler",
    "ManualClock",
    "NotificationSink",
    "ProfileSnapshot",
    "ScheduledJob",
    "SnapshotProvider",
    "SnapshotResult",
    "SystemClock",
    "AgreementStateMachine",
    "validate_transition",
    "NO_DISTANCE",
    "CheckOutcome",
    "ComplianceRequest",
    "ComplianceVerifier",
]
