"""SQLAlchemy 2.0 ORM models for the engagement escrow service.

Three tables:
    1. engagements        - one durable record per engagement (milestones inline).
    2. engagement_events  - append-only audit log of every committed mutation.
    3. proposals          - accepted-proposal seeds, owned by the job catalog.

Design decisions:
    - One row per engagement: milestones and ratings are JSON columns so a
      snapshot is read and written as a unit.
    - status / escrow_status columns are a cache of values derived from the
      milestones; they exist for querying and are re-checked on every load.
    - version is the optimistic-concurrency token, bumped on every commit.
    - Numeric for money, CHECK constraint for amount_paid <= funded <= total.
    - Generic Uuid/JSON types so the schema also runs on SQLite in tests.
    - engagement_events is append-only: no UPDATE or DELETE at the application level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from freelance_escrow.domain.enums import AggregateEscrowStatus, EngagementStatus


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _in_clause(column: str, values: list[str]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


# ---------------------------------------------------------------------------
# 1. engagements
# ---------------------------------------------------------------------------
class EngagementRecord(Base):
    """Persisted engagement snapshot."""

    __tablename__ = "engagements"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Identity (immutable after creation) ---
    proposal_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment="Accepted proposal this engagement was seeded from (one per proposal)",
    )
    job_id: Mapped[str] = mapped_column(String(64), nullable=False)
    worker_id: Mapped[str] = mapped_column(String(64), nullable=False)
    client_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # --- Derived status cache ---
    status: Mapped[str] = mapped_column(
        String(24),
        nullable=False,
        default=EngagementStatus.IN_PROGRESS.value,
        comment="Cache of derive_status(milestones)",
    )
    escrow_status: Mapped[str] = mapped_column(
        String(24),
        nullable=False,
        default=AggregateEscrowStatus.PENDING_DEPOSIT.value,
        comment="Cache of derive_escrow_status(milestones)",
    )

    # --- Plan ---
    milestones: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        comment="Ordered list of milestone snapshots",
    )

    # --- Money ---
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    escrow_total_funded: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=0
    )

    # --- Schedule ---
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expected_end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    actual_end_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )

    # --- Ratings ---
    rating: Mapped[dict | None] = mapped_column(JSON, nullable=True, default=None)

    # --- Concurrency ---
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    events: Mapped[list[EngagementEventRecord]] = relationship(
        "EngagementEventRecord",
        back_populates="engagement",
        order_by="EngagementEventRecord.created_at.asc()",
        lazy="raise",
    )

    __table_args__ = (
        CheckConstraint(
            _in_clause("status", [s.value for s in EngagementStatus]),
            name="ck_engagement_valid_status",
        ),
        CheckConstraint(
            _in_clause("escrow_status", [s.value for s in AggregateEscrowStatus]),
            name="ck_engagement_valid_escrow_status",
        ),
        CheckConstraint(
            "amount_paid >= 0 AND amount_paid <= escrow_total_funded "
            "AND escrow_total_funded <= total_amount",
            name="ck_engagement_conservation",
        ),
        CheckConstraint("total_amount > 0", name="ck_engagement_positive_total"),
        CheckConstraint("version >= 1", name="ck_engagement_version"),
        Index("idx_engagement_client", "client_id"),
        Index("idx_engagement_worker", "worker_id"),
        Index("idx_engagement_status", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<EngagementRecord id={self.id} status={self.status} "
            f"paid={self.amount_paid}/{self.total_amount} v{self.version}>"
        )


# ---------------------------------------------------------------------------
# 2. engagement_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class EngagementEventRecord(Base):
    """Immutable audit record of one committed mutation."""

    __tablename__ = "engagement_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    engagement_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("engagements.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    milestone_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    old_status: Mapped[str | None] = mapped_column(
        String(24), nullable=True, comment="Engagement status before (null for creation)"
    )
    new_status: Mapped[str] = mapped_column(String(24), nullable=False)
    actor: Mapped[str] = mapped_column(String(64), nullable=False)
    version: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Engagement version this event produced"
    )
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata", JSON, nullable=True, default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    engagement: Mapped[EngagementRecord] = relationship(
        "EngagementRecord", back_populates="events"
    )

    __table_args__ = (
        Index("idx_event_engagement", "engagement_id"),
        Index("idx_event_type", "event_type"),
    )

    def __repr__(self) -> str:
        return (
            f"<EngagementEventRecord type={self.event_type} "
            f"{self.old_status}->{self.new_status} v{self.version}>"
        )


# ---------------------------------------------------------------------------
# 3. proposals (read-only from this service)
# ---------------------------------------------------------------------------
class ProposalRecord(Base):
    """A worker's proposal for a job, as published by the job catalog."""

    __tablename__ = "proposals"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    job_id: Mapped[str] = mapped_column(String(64), nullable=False)
    worker_id: Mapped[str] = mapped_column(String(64), nullable=False)
    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected')",
            name="ck_proposal_valid_status",
        ),
        Index("idx_proposal_job_worker", "job_id", "worker_id", unique=True),
    )

    def __repr__(self) -> str:
        return f"<ProposalRecord id={self.id} status={self.status}>"
