"""Pydantic schemas for the Engagement API.

These schemas define the request/response shapes for the REST API. They are
separate from the domain dataclasses and the ORM models to keep clean
boundaries between the layers.

Amounts, titles and scores are deliberately left unconstrained here: the
workflow engine owns those rules and reports them as domain errors.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by pydantic
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - resolved at runtime by pydantic

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from freelance_escrow.domain.enums import (
    AggregateEscrowStatus,
    EngagementStatus,
    MilestoneEscrowStatus,
    WorkStatus,
)
from freelance_escrow.domain.milestone import MilestonePlanItem


def _assume_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class MilestonePlanItemRequest(BaseModel):
    """One milestone of a client-defined plan."""

    title: str = Field(..., max_length=200, examples=["Wireframes"])
    description: str = Field(default="", max_length=5000)
    due_date: datetime
    amount: Decimal = Field(
        ...,
        description="Milestone price; positive with at most two decimal places",
        examples=["500.00"],
    )

    @field_validator("due_date")
    @classmethod
    def due_date_in_utc(cls, value: datetime) -> datetime:
        return _assume_utc(value)

    def to_plan_item(self) -> MilestonePlanItem:
        return MilestonePlanItem(
            title=self.title,
            description=self.description,
            due_date=self.due_date,
            amount=self.amount,
        )


class CreateEngagementRequest(BaseModel):
    """Request body for opening an engagement on an accepted proposal."""

    proposal_id: str = Field(..., min_length=1, max_length=64)
    milestones: list[MilestonePlanItemRequest]
    expected_end_date: datetime

    @field_validator("expected_end_date")
    @classmethod
    def end_date_in_utc(cls, value: datetime) -> datetime:
        return _assume_utc(value)


class AdvanceMilestoneRequest(BaseModel):
    """Request body for moving a milestone's work status."""

    status: WorkStatus = Field(..., description="Target work status")
    submission_url: str | None = Field(
        default=None,
        max_length=2048,
        description="Required when submitting work (target 'completed')",
    )
    feedback: str | None = Field(
        default=None,
        max_length=5000,
        description="Required when requesting a revision",
    )


class FundMilestoneRequest(BaseModel):
    amount: Decimal = Field(..., description="Must equal the milestone amount exactly")


class FundAllRequest(BaseModel):
    amount: Decimal = Field(
        ..., description="Must equal the sum of all still-unfunded milestone amounts"
    )


class ReleaseMilestoneRequest(BaseModel):
    feedback: str | None = Field(default=None, max_length=5000)


class ReplacePlanRequest(BaseModel):
    milestones: list[MilestonePlanItemRequest]


class RescheduleRequest(BaseModel):
    expected_end_date: datetime

    @field_validator("expected_end_date")
    @classmethod
    def end_date_in_utc(cls, value: datetime) -> datetime:
        return _assume_utc(value)


class RatingRequest(BaseModel):
    score: int = Field(..., description="1 to 5")
    review: str = ""


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class MilestoneResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    title: str
    description: str
    due_date: datetime
    amount: Decimal
    work_status: WorkStatus
    escrow_status: MilestoneEscrowStatus
    submission_url: str | None
    feedback: str | None
    revision_count: int
    completed_at: datetime | None
    paid_at: datetime | None
    funded_at: datetime | None
    released_at: datetime | None
    hold_reference: str | None
    release_reference: str | None


class RatingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    score: int
    review: str
    created_at: datetime


class RatingLedgerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    from_client: RatingResponse | None
    from_worker: RatingResponse | None


class EngagementResponse(BaseModel):
    """The full engagement snapshot returned by every endpoint."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    proposal_id: str
    job_id: str
    worker_id: str
    client_id: str
    status: EngagementStatus
    escrow_status: AggregateEscrowStatus
    milestones: list[MilestoneResponse]
    total_amount: Decimal
    amount_paid: Decimal
    escrow_total_funded: Decimal
    start_date: datetime
    expected_end_date: datetime
    actual_end_date: datetime | None
    rating: RatingLedgerResponse
    version: int
    created_at: datetime
    updated_at: datetime


class EngagementEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    engagement_id: uuid.UUID
    event_type: str
    milestone_index: int | None
    old_status: str | None
    new_status: str
    actor: str
    version: int
    # Read from the ORM attribute, or from the dumped field when FastAPI re-validates.
    metadata: dict | None = Field(
        default=None, validation_alias=AliasChoices("metadata_json", "metadata")
    )
    created_at: datetime


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
