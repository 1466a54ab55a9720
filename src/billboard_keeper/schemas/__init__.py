"""Pydantic API schemas."""

from billboard_keeper.schemas.agreement import (
    ActorRequest,
    AgreementEventResponse,
    AgreementResponse,
    AgreementStatusResponse,
    CreateAgreementRequest,
    DevProfileResponse,
    DevProfileUpdate,
    HealthResponse,
    VerificationLogResponse,
)

__all__ = [
    "ActorRequest",
    "AgreementEventResponse",
    "AgreementResponse",
    "AgreementStatusResponse",
    "CreateAgreementRequest",
    "DevProfileResponse",
    "DevProfileUpdate",
    "HealthResponse",
    "VerificationLogResponse",
]
