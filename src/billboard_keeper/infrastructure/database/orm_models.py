"""SQLAlchemy 2.0 ORM models for Billboard Keeper.

Five tables:
    1. agreements         — Placement agreements between a sponsor and a creator.
    2. verification_logs  — Append-only record of every compliance check.
    3. agreement_events   — Append-only audit log of every state transition.
    4. notifications      — Alerts written by the database notification sink.
    5. scheduled_jobs     — Durable delayed jobs for the SQL queue backend.

Design decisions:
    - UUIDs as primary keys for agreements and log rows.
    - Decimal for escrow amounts (no floating point rounding errors).
    - JSON columns (JSONB on PostgreSQL) for evidence and event metadata.
    - CHECK constraints on status and on the slot/requirement pairing.
    - Timestamps are always timezone-aware UTC, on SQLite too.
    - verification_logs and agreement_events are append-only: the ORM rejects
      UPDATE and DELETE on them.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    Uuid,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from billboard_keeper.domain.enums import AgreementStatus

JsonType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """DateTime that always binds and returns timezone-aware UTC values.

    SQLite has no timezone support and hands back naive datetimes; those are
    read as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):  # noqa: ANN001, ANN201
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):  # noqa: ANN001, ANN201
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class AppendOnlyViolationError(Exception):
    """Raised when code attempts to modify or delete an append-only row."""


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# Helper: auto-set updated_at on flush
# ---------------------------------------------------------------------------
def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _utcnow()


def _reject_mutation(mapper, connection, target):  # noqa: ANN001
    raise AppendOnlyViolationError(
        f"{target.__tablename__} is append-only; rows cannot be modified or deleted"
    )


_STATUS_LIST = ", ".join(f"'{s.value}'" for s in AgreementStatus)


# ---------------------------------------------------------------------------
# 1. agreements
# ---------------------------------------------------------------------------
class Agreement(Base):
    """A paid placement agreement between a sponsor and a creator."""

    __tablename__ = "agreements"

    # --- Primary Key ---
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # --- Participants ---
    sponsor_wallet: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Wallet address of the paying party",
    )
    creator_wallet: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Wallet address of the party applying the artifact",
    )
    profile_handle: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Normalized handle of the external profile being checked",
    )

    # --- Requirement ---
    slot_kind: Mapped[str] = mapped_column(
        String(8),
        nullable=False,
        comment="IMAGE (profile header) or TEXT (profile bio)",
    )
    expected_fingerprint: Mapped[str | None] = mapped_column(
        String(16),
        nullable=True,
        default=None,
        comment="16-char hex fingerprint of the sponsored artwork (IMAGE)",
    )
    required_substring: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        default=None,
        comment="Text that must appear in the profile bio (TEXT)",
    )
    expected_artifact_url: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        default=None,
        comment="Reference to the artwork the fingerprint was computed from",
    )

    # --- Financials ---
    ledger_ref: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        default=None,
        comment="Identifier of this agreement on the external ledger",
    )
    escrow_amount: Mapped[Decimal] = mapped_column(
        Numeric(36, 18),
        nullable=False,
        comment="Escrowed amount held by the ledger",
    )
    duration_seconds: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="How long the artifact must stay applied once LIVE",
    )

    # --- Status (Enum-guarded) ---
    status: Mapped[str] = mapped_column(
        String(24),
        nullable=False,
        default=AgreementStatus.APPROVAL_PENDING.value,
        comment="Current lifecycle state (guarded by AgreementStateMachine)",
    )
    hard_cancel_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        default=None,
    )

    # --- Initial verification progress ---
    verification_started_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
        default=None,
        comment="Time of the first poll of the current verification round",
    )
    verification_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    consecutive_matches: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
    )
    apply_deadline_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    start_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    end_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_checked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    hard_cancel_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    # --- Table Constraints & Indexes ---
    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STATUS_LIST})",
            name="ck_agreement_valid_status",
        ),
        CheckConstraint(
            "slot_kind IN ('IMAGE', 'TEXT')",
            name="ck_agreement_valid_slot_kind",
        ),
        CheckConstraint(
            "(expected_fingerprint IS NULL OR slot_kind = 'IMAGE') "
            "AND (required_substring IS NULL OR slot_kind = 'TEXT')",
            name="ck_agreement_requirement_matches_slot",
        ),
        CheckConstraint(
            "duration_seconds > 0",
            name="ck_agreement_positive_duration",
        ),
        Index("idx_agreement_status", "status"),
        Index("idx_agreement_creator", "creator_wallet"),
        Index("idx_agreement_sponsor", "sponsor_wallet"),
    )

    @property
    def requirement_attached(self) -> bool:
        if self.slot_kind == "IMAGE":
            return bool(self.expected_fingerprint)
        return bool(self.required_substring)

    def __repr__(self) -> str:
        return (
            f"<Agreement id={self.id} status={self.status} "
            f"slot={self.slot_kind} handle=@{self.profile_handle}>"
        )


# ---------------------------------------------------------------------------
# 2. verification_logs (Append-Only)
# ---------------------------------------------------------------------------
class VerificationLogEntry(Base):
    """Immutable record of one compliance check against the live profile."""

    __tablename__ = "verification_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    agreement_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("agreements.id"),
        nullable=False,
    )
    checked_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
    )
    phase: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="INITIAL or KEEP_ALIVE",
    )
    attempt: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Poll number (INITIAL) or check number (KEEP_ALIVE)",
    )
    matched: Mapped[bool] = mapped_column(Boolean, nullable=False)
    distance: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=-1,
        comment="Fingerprint distance, -1 when not measurable",
    )
    raw_evidence: Mapped[dict | None] = mapped_column(
        JsonType,
        nullable=True,
        default=None,
    )
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    __table_args__ = (
        CheckConstraint(
            "phase IN ('INITIAL', 'KEEP_ALIVE')",
            name="ck_verification_log_valid_phase",
        ),
        Index("idx_verification_log_agreement", "agreement_id", "checked_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<VerificationLogEntry agreement={self.agreement_id} "
            f"{self.phase}#{self.attempt} matched={self.matched}>"
        )


# ---------------------------------------------------------------------------
# 3. agreement_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class AgreementEvent(Base):
    """Immutable audit record of every transition in an agreement's lifecycle.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level. Every row represents a single atomic event.
    """

    __tablename__ = "agreement_events"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    agreement_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("agreements.id"),
        nullable=False,
    )

    # --- Event Details ---
    event_type: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        comment="EventType enum value (e.g., AGREEMENT_LIVE, HARD_CANCEL)",
    )
    old_status: Mapped[str | None] = mapped_column(
        String(24),
        nullable=True,
        comment="Agreement status before this event (null for creation)",
    )
    new_status: Mapped[str] = mapped_column(
        String(24),
        nullable=False,
        comment="Agreement status after this event",
    )
    actor: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="SYSTEM",
        comment="Who triggered this event (wallet address or SYSTEM)",
    )
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JsonType,
        nullable=True,
        default=None,
        comment="Arbitrary context: tx hash, cancel reason, job error",
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        Index("idx_event_agreement", "agreement_id"),
        Index("idx_event_type", "event_type"),
        Index("idx_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<AgreementEvent id={self.id} type={self.event_type} "
            f"{self.old_status}->{self.new_status}>"
        )


# ---------------------------------------------------------------------------
# 4. notifications
# ---------------------------------------------------------------------------
class Notification(Base):
    """A user alert persisted by DatabaseNotificationSink."""

    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    party: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Wallet address of the recipient",
    )
    kind: Mapped[str] = mapped_column(String(40), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JsonType,
        nullable=True,
        default=None,
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
    )
    read_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (Index("idx_notification_party", "party", "created_at"),)


# ---------------------------------------------------------------------------
# 5. scheduled_jobs
# ---------------------------------------------------------------------------
class ScheduledJobRecord(Base):
    """A delayed job owned by SqlJobQueue.

    The primary key is the deterministic job id (e.g. "expiry-<agreement>"),
    so scheduling the same job twice inserts nothing.
    """

    __tablename__ = "scheduled_jobs"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    job_type: Mapped[str] = mapped_column(String(32), nullable=False)
    agreement_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    payload: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    run_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    state: Mapped[str] = mapped_column(
        String(12),
        nullable=False,
        default="PENDING",
        comment="PENDING, RUNNING, DONE or CANCELED",
    )
    claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        CheckConstraint(
            "state IN ('PENDING', 'RUNNING', 'DONE', 'CANCELED')",
            name="ck_scheduled_job_valid_state",
        ),
        Index("idx_scheduled_job_due", "job_type", "state", "run_at"),
        Index("idx_scheduled_job_agreement", "agreement_id"),
    )

    def __repr__(self) -> str:
        return f"<ScheduledJobRecord id={self.id} state={self.state} run_at={self.run_at}>"


# ---------------------------------------------------------------------------
# Register listeners
# ---------------------------------------------------------------------------
event.listen(Agreement, "before_update", _set_updated_at)

for _model in (VerificationLogEntry, AgreementEvent):
    event.listen(_model, "before_update", _reject_mutation)
    event.listen(_model, "before_delete", _reject_mutation)
