"""Database infrastructure — engine, ORM models, and repositories."""

from billboard_keeper.infrastructure.database.engine import (
    build_engine,
    close_db,
    create_session_factory,
    create_tables,
    get_session_factory,
    init_db,
)
from billboard_keeper.infrastructure.database.orm_models import (
    Agreement,
    AgreementEvent,
    AppendOnlyViolationError,
    Base,
    Notification,
    ScheduledJobRecord,
    VerificationLogEntry,
)
from billboard_keeper.infrastructure.database.repositories import (
    AgreementRepository,
    EventRepository,
    NotificationRepository,
    ScheduledJobRepository,
    VerificationLogRepository,
)

__all__ = [
    "Base",
    "Agreement",
    "AgreementEvent",
    "AppendOnlyViolationError",
    "Notification",
    "ScheduledJobRecord",
    "VerificationLogEntry",
    "AgreementRepository",
    "EventRepository",
    "NotificationRepository",
    "ScheduledJobRepository",
    "VerificationLogRepository",
    "build_engine",
    "close_db",
    "create_session_factory",
    "create_tables",
    "get_session_factory",
    "init_db",
]
