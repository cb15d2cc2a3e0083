"""Repository classes for database access.

Repositories encapsulate all SQL queries and translate between ORM records
and domain snapshots. They accept an AsyncSession and never manage their own
transactions (that's the caller's responsibility).
"""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import or_, select, update

from freelance_escrow.domain.catalog_protocol import EngagementSeed
from freelance_escrow.domain.engagement import Engagement, check_cached_statuses
from freelance_escrow.domain.exceptions import ConcurrencyConflictError
from freelance_escrow.domain.milestone import Milestone
from freelance_escrow.domain.rating import RatingLedger
from freelance_escrow.infrastructure.database.orm_models import (
    EngagementEventRecord,
    EngagementRecord,
    ProposalRecord,
)

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from freelance_escrow.domain.enums import EngagementStatus, EventType


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands timezone-aware columns back as naive UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _columns(engagement: Engagement) -> dict:
    """Mutable columns of an engagement row."""
    return {
        "status": engagement.status.value,
        "escrow_status": engagement.escrow_status.value,
        "milestones": [m.to_dict() for m in engagement.milestones],
        "total_amount": engagement.total_amount,
        "amount_paid": engagement.amount_paid,
        "escrow_total_funded": engagement.escrow_total_funded,
        "expected_end_date": engagement.expected_end_date,
        "actual_end_date": engagement.actual_end_date,
        "rating": engagement.rating.to_dict(),
        "updated_at": engagement.updated_at,
    }


def to_domain(record: EngagementRecord) -> Engagement:
    """Rebuild the domain snapshot and verify the cached status columns."""
    engagement = Engagement(
        id=record.id,
        proposal_id=record.proposal_id,
        job_id=record.job_id,
        worker_id=record.worker_id,
        client_id=record.client_id,
        milestones=tuple(Milestone.from_dict(m) for m in record.milestones),
        total_amount=record.total_amount,
        expected_end_date=_aware(record.expected_end_date),
        start_date=_aware(record.start_date),
        amount_paid=record.amount_paid,
        escrow_total_funded=record.escrow_total_funded,
        actual_end_date=_aware(record.actual_end_date),
        rating=RatingLedger.from_dict(record.rating),
        version=record.version,
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
    )
    check_cached_statuses(engagement, record.status, record.escrow_status)
    return engagement


class EngagementRepository:
    """Data access for engagements."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, engagement: Engagement) -> Engagement:
        """Insert a brand new engagement at its initial version."""
        record = EngagementRecord(
            id=engagement.id,
            proposal_id=engagement.proposal_id,
            job_id=engagement.job_id,
            worker_id=engagement.worker_id,
            client_id=engagement.client_id,
            start_date=engagement.start_date,
            version=engagement.version,
            created_at=engagement.created_at,
            **_columns(engagement),
        )
        self._session.add(record)
        await self._session.flush()
        return engagement

    async def get_by_id(self, engagement_id: uuid.UUID) -> Engagement | None:
        """Fetch the committed snapshot of an engagement.

        populate_existing makes a re-read inside the same session see rows
        written by other sessions since the last load.
        """
        result = await self._session.execute(
            select(EngagementRecord)
            .where(EngagementRecord.id == engagement_id)
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()
        return to_domain(record) if record is not None else None

    async def get_by_proposal(self, proposal_id: str) -> Engagement | None:
        result = await self._session.execute(
            select(EngagementRecord)
            .where(EngagementRecord.proposal_id == proposal_id)
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()
        return to_domain(record) if record is not None else None

    async def list_for_party(self, party_id: str) -> list[Engagement]:
        """Fetch every engagement the id is the client or worker of, newest first."""
        result = await self._session.execute(
            select(EngagementRecord)
            .where(
                or_(
                    EngagementRecord.client_id == party_id,
                    EngagementRecord.worker_id == party_id,
                )
            )
            .order_by(EngagementRecord.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return [to_domain(record) for record in result.scalars().all()]

    async def save(self, engagement: Engagement, expected_version: int) -> Engagement:
        """Write a mutated snapshot if nobody committed in between.

        The UPDATE only matches the row while it is still at expected_version,
        and bumps the version in the same statement.

        Raises:
            ConcurrencyConflictError: If the row moved past expected_version.
        """
        new_version = expected_version + 1
        result = await self._session.execute(
            update(EngagementRecord)
            .where(
                EngagementRecord.id == engagement.id,
                EngagementRecord.version == expected_version,
            )
            .values(version=new_version, **_columns(engagement))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrencyConflictError(str(engagement.id), expected_version)
        return replace(engagement, version=new_version)


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        engagement_id: uuid.UUID,
        event_type: EventType,
        old_status: EngagementStatus | None,
        new_status: EngagementStatus,
        actor: str,
        version: int,
        milestone_index: int | None = None,
        metadata: dict | None = None,
    ) -> EngagementEventRecord:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = EngagementEventRecord(
            engagement_id=engagement_id,
            event_type=event_type.value,
            milestone_index=milestone_index,
            old_status=old_status.value if old_status else None,
            new_status=new_status.value,
            actor=actor,
            version=version,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_engagement(self, engagement_id: uuid.UUID) -> list[EngagementEventRecord]:
        """Fetch all events for an engagement in the order they were committed."""
        result = await self._session.execute(
            select(EngagementEventRecord)
            .where(EngagementEventRecord.engagement_id == engagement_id)
            .order_by(EngagementEventRecord.version.asc(), EngagementEventRecord.created_at.asc())
        )
        return list(result.scalars().all())


class ProposalRepository:
    """Read access to the proposals table; satisfies the ProposalCatalog protocol."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_accepted(self, proposal_id: str) -> EngagementSeed | None:
        result = await self._session.execute(
            select(ProposalRecord).where(
                ProposalRecord.id == proposal_id,
                ProposalRecord.status == "accepted",
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            return None
        return EngagementSeed(
            proposal_id=record.id,
            job_id=record.job_id,
            worker_id=record.worker_id,
            client_id=record.client_id,
        )

    async def add(self, proposal: ProposalRecord) -> ProposalRecord:
        """Insert a proposal (used by seeding scripts and tests)."""
        self._session.add(proposal)
        await self._session.flush()
        return proposal
