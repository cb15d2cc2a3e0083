"""Domain enumerations for the engagement escrow workflow.

Every status field in the system is one of these closed sets. They are
framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class WorkStatus(enum.StrEnum):
    """Work-side lifecycle of a single milestone.

    Transitions are guarded by MilestoneWorkMachine (domain/state_machine.py).
    PAID is only reachable through escrow release.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REVISION_REQUESTED = "revision_requested"
    PAID = "paid"


class MilestoneEscrowStatus(enum.StrEnum):
    """Escrow-side lifecycle of a single milestone: NOT_FUNDED -> FUNDED -> RELEASED."""

    NOT_FUNDED = "not_funded"
    FUNDED = "funded"
    RELEASED = "released"


class EngagementStatus(enum.StrEnum):
    """Engagement-level status, always derived from the milestone list."""

    IN_PROGRESS = "in_progress"
    UNDER_REVIEW = "under_review"
    REVISION_REQUESTED = "revision_requested"
    PAYMENT_PENDING = "payment_pending"
    COMPLETED = "completed"
    PAID = "paid"


class AggregateEscrowStatus(enum.StrEnum):
    """Engagement-level escrow status, always derived from the milestone list."""

    PENDING_DEPOSIT = "pending_deposit"
    PARTIALLY_FUNDED = "partially_funded"
    FULLY_FUNDED = "fully_funded"
    PARTIALLY_RELEASED = "partially_released"
    FULLY_RELEASED = "fully_released"


class Role(enum.StrEnum):
    """Role claimed by an authenticated principal."""

    CLIENT = "client"
    WORKER = "worker"


class Relation(enum.StrEnum):
    """How a principal relates to one particular engagement."""

    CLIENT = "client"
    WORKER = "worker"
    NONE = "none"


class Operation(enum.StrEnum):
    """Every operation the workflow engine exposes, for authorization."""

    CREATE = "create"
    VIEW = "view"
    START_WORK = "start_work"
    SUBMIT_WORK = "submit_work"
    REQUEST_REVISION = "request_revision"
    RESUME_WORK = "resume_work"
    FUND = "fund"
    FUND_ALL = "fund_all"
    RELEASE = "release"
    REPLACE_PLAN = "replace_plan"
    RESCHEDULE = "reschedule"
    RATE = "rate"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the engagement_events table.

    Every committed mutation produces at least one event.
    """

    ENGAGEMENT_CREATED = "ENGAGEMENT_CREATED"
    WORK_STARTED = "WORK_STARTED"
    WORK_SUBMITTED = "WORK_SUBMITTED"
    REVISION_REQUESTED = "REVISION_REQUESTED"
    WORK_RESUMED = "WORK_RESUMED"
    MILESTONE_FUNDED = "MILESTONE_FUNDED"
    MILESTONE_RELEASED = "MILESTONE_RELEASED"
    PLAN_REPLACED = "PLAN_REPLACED"
    SCHEDULE_UPDATED = "SCHEDULE_UPDATED"
    RATING_SUBMITTED = "RATING_SUBMITTED"


class GatewayOperation(enum.StrEnum):
    """Fund movements a PaymentGateway performs."""

    HOLD = "hold"
    RELEASE = "release"
    REFUND = "refund"
