"""Pydantic API schemas."""

from freelance_escrow.schemas.engagement import (
    AdvanceMilestoneRequest,
    CreateEngagementRequest,
    EngagementEventResponse,
    EngagementResponse,
    FundAllRequest,
    FundMilestoneRequest,
    HealthResponse,
    MilestonePlanItemRequest,
    MilestoneResponse,
    RatingRequest,
    ReleaseMilestoneRequest,
    ReplacePlanRequest,
    RescheduleRequest,
)

__all__ = [
    "AdvanceMilestoneRequest",
    "CreateEngagementRequest",
    "EngagementEventResponse",
    "EngagementResponse",
    "FundAllRequest",
    "FundMilestoneRequest",
    "HealthResponse",
    "MilestonePlanItemRequest",
    "MilestoneResponse",
    "RatingRequest",
    "ReleaseMilestoneRequest",
    "ReplacePlanRequest",
    "RescheduleRequest",
]
