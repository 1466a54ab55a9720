"""Pydantic schemas for the Agreement API.

These schemas define the request/response shapes for the REST API. They are
separate from the ORM models to keep the API and database layers apart.
"""

from __future__ import annotations

import uuid  # noqa: TC003
from datetime import datetime  # noqa: TC003
from decimal import Decimal  # noqa: TC003
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateAgreementRequest(BaseModel):
    """Request body for registering an approved agreement."""

    sponsor_wallet: str = Field(
        ...,
        min_length=42,
        max_length=42,
        description="EVM wallet address of the sponsor (0x-prefixed, 42 chars)",
        examples=["0x742d35Cc6634C0532925a3b844Bc9e7595f2bD18"],
    )
    creator_wallet: str = Field(..., min_length=42, max_length=42)
    profile_handle: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="Social profile handle of the creator, with or without '@'",
        examples=["@alice"],
    )
    slot_kind: Literal["IMAGE", "TEXT"]
    escrow_amount: Decimal = Field(..., gt=0, examples=[250])
    duration_seconds: int = Field(..., gt=0, description="Paid display duration")
    expected_fingerprint: str | None = Field(
        default=None,
        description="16-hex-char perceptual fingerprint of the artwork (IMAGE slots)",
        examples=["f0e1d2c3b4a59687"],
    )
    required_substring: str | None = Field(
        default=None,
        max_length=160,
        description="Text that must appear in the bio (TEXT slots)",
    )
    expected_artifact_url: str | None = None
    ledger_ref: str | None = Field(
        default=None,
        description="Identifier of the on-chain escrow record, if any",
    )


class ActorRequest(BaseModel):
    """Optional body identifying who triggered an action."""

    actor: str = Field(default="SYSTEM", max_length=255)


class DevProfileUpdate(BaseModel):
    """Partial update of a simulated profile."""

    image_url: str | None = None
    text: str | None = None
    display_name: str | None = None
    available: bool | None = None
    failure_reason: str | None = None
    fail_next: int | None = Field(default=None, ge=0, le=100)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class AgreementResponse(BaseModel):
    """Full agreement details."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    sponsor_wallet: str
    creator_wallet: str
    profile_handle: str
    slot_kind: str
    expected_fingerprint: str | None
    required_substring: str | None
    expected_artifact_url: str | None
    ledger_ref: str | None
    escrow_amount: Decimal
    duration_seconds: int
    status: str
    hard_cancel_reason: str | None
    verification_attempts: int
    consecutive_matches: int
    verification_started_at: datetime | None
    apply_deadline_at: datetime | None
    start_at: datetime | None
    end_at: datetime | None
    last_checked_at: datetime | None
    hard_cancel_at: datetime | None
    created_at: datetime
    updated_at: datetime


class AgreementStatusResponse(BaseModel):
    """Lightweight status check response."""

    agreement_id: uuid.UUID
    status: str
    slot_kind: str
    verification_attempts: int
    consecutive_matches: int
    start_at: datetime | None
    end_at: datetime | None
    last_checked_at: datetime | None
    hard_cancel_reason: str | None
    allowed_events: list[str]


class VerificationLogResponse(BaseModel):
    """One compliance check."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    agreement_id: uuid.UUID
    checked_at: datetime
    phase: str
    attempt: int
    matched: bool
    distance: int
    notes: str | None
    raw_evidence: dict | None


class AgreementEventResponse(BaseModel):
    """Audit trail event."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    agreement_id: uuid.UUID
    event_type: str
    old_status: str | None
    new_status: str
    actor: str
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class DevProfileResponse(BaseModel):
    """State of one simulated profile."""

    model_config = ConfigDict(from_attributes=True)

    handle: str
    image_url: str | None
    text: str
    display_name: str | None
    available: bool
    failure_reason: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    redis: str
    queue_backend: str
