"""Agreement REST API routes.

Agreements are approved in the marketplace; these endpoints register them,
receive the creator's "applied" trigger and expose progress and history.

Routes:
    POST   /api/v1/agreements                        Register an approved agreement
    GET    /api/v1/agreements/{id}                   Get agreement details
    GET    /api/v1/agreements/{id}/status            Lightweight status check
    GET    /api/v1/agreements/{id}/verification-logs Compliance checks so far
    GET    /api/v1/agreements/{id}/events            Audit trail
    POST   /api/v1/agreements/{id}/applied           Creator reports the artifact applied
    POST   /api/v1/agreements/{id}/retry-verify      Restart initial verification
"""

from __future__ import annotations

import uuid  # noqa: TC003

from fastapi import APIRouter, Depends

from billboard_keeper.api.deps import get_lifecycle_service
from billboard_keeper.logging_config import get_logger
from billboard_keeper.schemas.agreement import (
    ActorRequest,
    AgreementEventResponse,
    AgreementResponse,
    AgreementStatusResponse,
    CreateAgreementRequest,
    VerificationLogResponse,
)
from billboard_keeper.services.lifecycle import LifecycleService  # noqa: TC001

router = APIRouter(prefix="/api/v1/agreements", tags=["Agreements"])
logger = get_logger(__name__)


def _actor(request: ActorRequest | None) -> str:
    return request.actor if request is not None else "SYSTEM"


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=AgreementResponse,
    status_code=201,
    summary="Register an approved agreement",
)
async def create_agreement(
    request: CreateAgreementRequest,
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> AgreementResponse:
    """Register an agreement in APPROVAL_PENDING."""
    agreement = await svc.create_agreement(**request.model_dump())
    return AgreementResponse.model_validate(agreement)


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


@router.post(
    "/{agreement_id}/applied",
    response_model=AgreementResponse,
    summary="Creator reports the artifact as applied",
)
async def mark_applied(
    agreement_id: uuid.UUID,
    request: ActorRequest | None = None,
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> AgreementResponse:
    """APPROVAL_PENDING -> VERIFYING; the first poll runs immediately."""
    agreement = await svc.mark_applied(agreement_id, actor=_actor(request))
    return AgreementResponse.model_validate(agreement)


@router.post(
    "/{agreement_id}/retry-verify",
    response_model=AgreementResponse,
    summary="Restart initial verification",
)
async def retry_verify(
    agreement_id: uuid.UUID,
    request: ActorRequest | None = None,
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> AgreementResponse:
    """Reset the deadline and progress of a VERIFYING agreement and poll again."""
    agreement = await svc.retry_verification(agreement_id, actor=_actor(request))
    return AgreementResponse.model_validate(agreement)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@router.get(
    "/{agreement_id}",
    response_model=AgreementResponse,
    summary="Get agreement details",
)
async def get_agreement(
    agreement_id: uuid.UUID,
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> AgreementResponse:
    agreement = await svc.get_agreement(agreement_id)
    return AgreementResponse.model_validate(agreement)


@router.get(
    "/{agreement_id}/status",
    response_model=AgreementStatusResponse,
    summary="Lightweight status check",
)
async def get_status(
    agreement_id: uuid.UUID,
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> AgreementStatusResponse:
    """Status, verification progress and the events allowed next."""
    return AgreementStatusResponse(**await svc.get_status(agreement_id))


@router.get(
    "/{agreement_id}/verification-logs",
    response_model=list[VerificationLogResponse],
    summary="Compliance checks",
)
async def get_verification_logs(
    agreement_id: uuid.UUID,
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> list[VerificationLogResponse]:
    entries = await svc.get_verification_logs(agreement_id)
    return [VerificationLogResponse.model_validate(e) for e in entries]


@router.get(
    "/{agreement_id}/events",
    response_model=list[AgreementEventResponse],
    summary="Audit trail",
)
async def get_events(
    agreement_id: uuid.UUID,
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> list[AgreementEventResponse]:
    """Chronological audit trail of the agreement."""
    events = await svc.get_events(agreement_id)
    return [AgreementEventResponse.model_validate(e) for e in events]
