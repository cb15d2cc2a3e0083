"""Engagement REST API routes.

Every route authenticates the caller from the identity headers and hands the
request to EngagementWorkflow; every mutation answers with the full snapshot.

Routes:
    POST   /api/v1/engagements                              - Open an engagement
    GET    /api/v1/engagements                              - List my engagements
    GET    /api/v1/engagements/by-proposal/{proposal_id}    - Lookup by proposal
    GET    /api/v1/engagements/{id}                         - Get snapshot
    GET    /api/v1/engagements/{id}/events                  - Get audit trail
    PATCH  /api/v1/engagements/{id}/milestones/{i}          - Advance work status
    POST   /api/v1/engagements/{id}/milestones/{i}/fund     - Fund one milestone
    POST   /api/v1/engagements/{id}/milestones/{i}/release  - Release one milestone
    PUT    /api/v1/engagements/{id}/milestones              - Replace the plan
    POST   /api/v1/engagements/{id}/fund                    - Fund all milestones
    PATCH  /api/v1/engagements/{id}/schedule                - Move the end date
    POST   /api/v1/engagements/{id}/rating                  - Rate the engagement
"""

from __future__ import annotations

import uuid  # noqa: TC003 - FastAPI resolves path parameter types at runtime

from fastapi import APIRouter, Depends

from freelance_escrow.api.deps import get_principal, get_workflow
from freelance_escrow.domain.values import Principal  # noqa: TC001
from freelance_escrow.schemas.engagement import (
    AdvanceMilestoneRequest,
    CreateEngagementRequest,
    EngagementEventResponse,
    EngagementResponse,
    FundAllRequest,
    FundMilestoneRequest,
    RatingRequest,
    ReleaseMilestoneRequest,
    ReplacePlanRequest,
    RescheduleRequest,
)
from freelance_escrow.services.workflow_service import EngagementWorkflow  # noqa: TC001

router = APIRouter(prefix="/api/v1/engagements", tags=["Engagements"])


# ---------------------------------------------------------------------------
# Create & read
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=EngagementResponse,
    status_code=201,
    summary="Open an engagement for an accepted proposal",
)
async def create_engagement(
    request: CreateEngagementRequest,
    actor: Principal = Depends(get_principal),
    workflow: EngagementWorkflow = Depends(get_workflow),
) -> EngagementResponse:
    engagement = await workflow.create_engagement(
        proposal_id=request.proposal_id,
        plan=[item.to_plan_item() for item in request.milestones],
        expected_end_date=request.expected_end_date,
        actor=actor,
    )
    return EngagementResponse.model_validate(engagement)


@router.get(
    "",
    response_model=list[EngagementResponse],
    summary="List the caller's engagements",
)
async def list_engagements(
    actor: Principal = Depends(get_principal),
    workflow: EngagementWorkflow = Depends(get_workflow),
) -> list[EngagementResponse]:
    engagements = await workflow.list_engagements(actor)
    return [EngagementResponse.model_validate(e) for e in engagements]


@router.get(
    "/by-proposal/{proposal_id}",
    response_model=EngagementResponse,
    summary="Get the engagement opened for a proposal",
)
async def get_engagement_by_proposal(
    proposal_id: str,
    actor: Principal = Depends(get_principal),
    workflow: EngagementWorkflow = Depends(get_workflow),
) -> EngagementResponse:
    engagement = await workflow.get_engagement_by_proposal(proposal_id, actor)
    return EngagementResponse.model_validate(engagement)


@router.get(
    "/{engagement_id}",
    response_model=EngagementResponse,
    summary="Get an engagement snapshot",
)
async def get_engagement(
    engagement_id: uuid.UUID,
    actor: Principal = Depends(get_principal),
    workflow: EngagementWorkflow = Depends(get_workflow),
) -> EngagementResponse:
    engagement = await workflow.get_engagement(engagement_id, actor)
    return EngagementResponse.model_validate(engagement)


@router.get(
    "/{engagement_id}/events",
    response_model=list[EngagementEventResponse],
    summary="Get the audit trail",
)
async def get_events(
    engagement_id: uuid.UUID,
    actor: Principal = Depends(get_principal),
    workflow: EngagementWorkflow = Depends(get_workflow),
) -> list[EngagementEventResponse]:
    events = await workflow.get_events(engagement_id, actor)
    return [EngagementEventResponse.model_validate(e) for e in events]


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------


@router.patch(
    "/{engagement_id}/milestones/{index}",
    response_model=EngagementResponse,
    summary="Advance a milestone's work status",
)
async def advance_milestone(
    engagement_id: uuid.UUID,
    index: int,
    request: AdvanceMilestoneRequest,
    actor: Principal = Depends(get_principal),
    workflow: EngagementWorkflow = Depends(get_workflow),
) -> EngagementResponse:
    engagement = await workflow.advance_milestone(
        engagement_id,
        index,
        request.status,
        actor,
        submission_url=request.submission_url,
        feedback=request.feedback,
    )
    return EngagementResponse.model_validate(engagement)


@router.post(
    "/{engagement_id}/milestones/{index}/fund",
    response_model=EngagementResponse,
    summary="Hold a milestone's amount in escrow",
)
async def fund_milestone(
    engagement_id: uuid.UUID,
    index: int,
    request: FundMilestoneRequest,
    actor: Principal = Depends(get_principal),
    workflow: EngagementWorkflow = Depends(get_workflow),
) -> EngagementResponse:
    engagement = await workflow.fund_milestone(engagement_id, index, request.amount, actor)
    return EngagementResponse.model_validate(engagement)


@router.post(
    "/{engagement_id}/milestones/{index}/release",
    response_model=EngagementResponse,
    summary="Release a milestone's escrow to the worker",
)
async def release_milestone(
    engagement_id: uuid.UUID,
    index: int,
    request: ReleaseMilestoneRequest | None = None,
    actor: Principal = Depends(get_principal),
    workflow: EngagementWorkflow = Depends(get_workflow),
) -> EngagementResponse:
    feedback = request.feedback if request is not None else None
    engagement = await workflow.release_milestone(engagement_id, index, actor, feedback=feedback)
    return EngagementResponse.model_validate(engagement)


@router.put(
    "/{engagement_id}/milestones",
    response_model=EngagementResponse,
    summary="Replace the milestone plan",
)
async def replace_milestone_plan(
    engagement_id: uuid.UUID,
    request: ReplacePlanRequest,
    actor: Principal = Depends(get_principal),
    workflow: EngagementWorkflow = Depends(get_workflow),
) -> EngagementResponse:
    engagement = await workflow.replace_milestone_plan(
        engagement_id,
        [item.to_plan_item() for item in request.milestones],
        actor,
    )
    return EngagementResponse.model_validate(engagement)


# ---------------------------------------------------------------------------
# Engagement-wide
# ---------------------------------------------------------------------------


@router.post(
    "/{engagement_id}/fund",
    response_model=EngagementResponse,
    summary="Fund every unfunded milestone",
)
async def fund_all_milestones(
    engagement_id: uuid.UUID,
    request: FundAllRequest,
    actor: Principal = Depends(get_principal),
    workflow: EngagementWorkflow = Depends(get_workflow),
) -> EngagementResponse:
    engagement = await workflow.fund_all_milestones(engagement_id, request.amount, actor)
    return EngagementResponse.model_validate(engagement)


@router.patch(
    "/{engagement_id}/schedule",
    response_model=EngagementResponse,
    summary="Change the expected end date",
)
async def reschedule_engagement(
    engagement_id: uuid.UUID,
    request: RescheduleRequest,
    actor: Principal = Depends(get_principal),
    workflow: EngagementWorkflow = Depends(get_workflow),
) -> EngagementResponse:
    engagement = await workflow.reschedule_engagement(
        engagement_id, request.expected_end_date, actor
    )
    return EngagementResponse.model_validate(engagement)


@router.post(
    "/{engagement_id}/rating",
    response_model=EngagementResponse,
    summary="Rate a completed engagement",
)
async def submit_rating(
    engagement_id: uuid.UUID,
    request: RatingRequest,
    actor: Principal = Depends(get_principal),
    workflow: EngagementWorkflow = Depends(get_workflow),
) -> EngagementResponse:
    engagement = await workflow.submit_rating(
        engagement_id, request.score, request.review, actor
    )
    return EngagementResponse.model_validate(engagement)
