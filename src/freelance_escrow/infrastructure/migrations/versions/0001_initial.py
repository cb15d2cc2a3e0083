"""Create engagements, engagement_events and proposals tables

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

One row per engagement with its milestones inline (JSON), the append-only
audit log, and the read-only proposal catalog that seeds engagements.
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

_ENGAGEMENT_STATUSES = (
    "'in_progress', 'under_review', 'revision_requested', "
    "'payment_pending', 'completed', 'paid'"
)
_ESCROW_STATUSES = (
    "'pending_deposit', 'partially_funded', 'fully_funded', "
    "'partially_released', 'fully_released'"
)


def upgrade() -> None:
    op.create_table(
        "proposals",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("job_id", sa.String(length=64), nullable=False),
        sa.Column("worker_id", sa.String(length=64), nullable=False),
        sa.Column("client_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected')",
            name="ck_proposal_valid_status",
        ),
    )
    op.create_index(
        "idx_proposal_job_worker", "proposals", ["job_id", "worker_id"], unique=True
    )

    op.create_table(
        "engagements",
        sa.Column("id", sa.Uuid(), primary_key=True),
        # Identity
        sa.Column("proposal_id", sa.String(length=64), nullable=False, unique=True),
        sa.Column("job_id", sa.String(length=64), nullable=False),
        sa.Column("worker_id", sa.String(length=64), nullable=False),
        sa.Column("client_id", sa.String(length=64), nullable=False),
        # Derived status cache
        sa.Column("status", sa.String(length=24), nullable=False),
        sa.Column("escrow_status", sa.String(length=24), nullable=False),
        # Plan
        sa.Column("milestones", sa.JSON(), nullable=False),
        # Money
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("amount_paid", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("escrow_total_funded", sa.Numeric(14, 2), nullable=False,
                  server_default="0"),
        # Schedule
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expected_end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actual_end_date", sa.DateTime(timezone=True), nullable=True),
        # Ratings
        sa.Column("rating", sa.JSON(), nullable=True),
        # Concurrency
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.CheckConstraint(f"status IN ({_ENGAGEMENT_STATUSES})",
                           name="ck_engagement_valid_status"),
        sa.CheckConstraint(f"escrow_status IN ({_ESCROW_STATUSES})",
                           name="ck_engagement_valid_escrow_status"),
        sa.CheckConstraint(
            "amount_paid >= 0 AND amount_paid <= escrow_total_funded "
            "AND escrow_total_funded <= total_amount",
            name="ck_engagement_conservation",
        ),
        sa.CheckConstraint("total_amount > 0", name="ck_engagement_positive_total"),
        sa.CheckConstraint("version >= 1", name="ck_engagement_version"),
    )
    op.create_index("idx_engagement_client", "engagements", ["client_id"])
    op.create_index("idx_engagement_worker", "engagements", ["worker_id"])
    op.create_index("idx_engagement_status", "engagements", ["status"])

    op.create_table(
        "engagement_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "engagement_id",
            sa.Uuid(),
            sa.ForeignKey("engagements.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("event_type", sa.String(length=40), nullable=False),
        sa.Column("milestone_index", sa.Integer(), nullable=True),
        sa.Column("old_status", sa.String(length=24), nullable=True),
        sa.Column("new_status", sa.String(length=24), nullable=False),
        sa.Column("actor", sa.String(length=64), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
    )
    op.create_index("idx_event_engagement", "engagement_events", ["engagement_id"])
    op.create_index("idx_event_type", "engagement_events", ["event_type"])


def downgrade() -> None:
    op.drop_index("idx_event_type", table_name="engagement_events")
    op.drop_index("idx_event_engagement", table_name="engagement_events")
    op.drop_table("engagement_events")

    op.drop_index("idx_engagement_status", table_name="engagements")
    op.drop_index("idx_engagement_worker", table_name="engagements")
    op.drop_index("idx_engagement_client", table_name="engagements")
    op.drop_table("engagements")

    op.drop_index("idx_proposal_job_worker", table_name="proposals")
    op.drop_table("proposals")
