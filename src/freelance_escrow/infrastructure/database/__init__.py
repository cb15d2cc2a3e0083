"""Database infrastructure: engine, ORM models, and repositories."""

from freelance_escrow.infrastructure.database.engine import (
    close_db,
    get_async_session,
    get_session_factory,
    init_db,
)
from freelance_escrow.infrastructure.database.orm_models import (
    Base,
    EngagementEventRecord,
    EngagementRecord,
    ProposalRecord,
)
from freelance_escrow.infrastructure.database.repositories import (
    EngagementRepository,
    EventRepository,
    ProposalRepository,
)

__all__ = [
    "Base",
    "EngagementEventRecord",
    "EngagementRecord",
    "ProposalRecord",
    "EngagementRepository",
    "EventRepository",
    "ProposalRepository",
    "get_async_session",
    "get_session_factory",
    "init_db",
    "close_db",
]
