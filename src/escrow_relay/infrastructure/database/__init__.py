"""Database infrastructure — engine, ORM models, and repositories."""

from escrow_relay.infrastructure.database.engine import (
    close_db,
    get_async_session,
    get_session_factory,
    init_db,
)
from escrow_relay.infrastructure.database.orm_models import (
    Base,
    EscrowEvent,
    EscrowRecord,
)
from escrow_relay.infrastructure.database.repositories import (
    EscrowRecordRepository,
    EventRepository,
)

__all__ = [
    "Base",
    "EscrowEvent",
    "EscrowRecord",
    "EscrowRecordRepository",
    "EventRepository",
    "get_async_session",
    "get_session_factory",
    "init_db",
    "close_db",
]
