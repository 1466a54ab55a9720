"""Application services — business logic coordination layer."""

from billboard_keeper.services.compliance import ComplianceEvaluator
from billboard_keeper.services.context import ServiceContext
from billboard_keeper.services.expiry import ExpiryService
from billboard_keeper.services.initial_verification import InitialVerificationService
from billboard_keeper.services.keep_alive import KeepAliveService
from billboard_keeper.services.lifecycle import LifecycleService, validate_requirement
from billboard_keeper.services.mirror import EscrowMirror, Notifier, PendingEscrowCall

__all__ = [
    "ComplianceEvaluator",
    "EscrowMirror",
    "ExpiryService",
    "InitialVerificationService",
    "KeepAliveService",
    "LifecycleService",
    "Notifier",
    "PendingEscrowCall",
    "ServiceContext",
    "validate_requirement",
]
