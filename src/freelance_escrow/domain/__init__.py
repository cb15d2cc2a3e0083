"""Domain layer: pure business logic with zero framework dependencies."""

from freelance_escrow.domain.catalog_protocol import EngagementSeed, ProposalCatalog
from freelance_escrow.domain.engagement import (
    Engagement,
    check_invariants,
    derive_escrow_status,
    derive_status,
)
from freelance_escrow.domain.enums import (
    AggregateEscrowStatus,
    EngagementStatus,
    EventType,
    GatewayOperation,
    MilestoneEscrowStatus,
    Operation,
    Relation,
    Role,
    WorkStatus,
)
from freelance_escrow.domain.exceptions import (
    EngagementError,
    EngagementNotFoundError,
    InvalidStateTransitionError,
)
from freelance_escrow.domain.gateway_protocol import GatewayReceipt, PaymentGateway
from freelance_escrow.domain.milestone import Milestone, MilestonePlanItem, build_plan
from freelance_escrow.domain.policy import AuthorizationPolicy, Decision
from freelance_escrow.domain.rating import Rating, RatingLedger
from freelance_escrow.domain.values import Principal

__all__ = [
    "AggregateEscrowStatus",
    "AuthorizationPolicy",
    "Decision",
    "Engagement",
    "EngagementError",
    "EngagementNotFoundError",
    "EngagementSeed",
    "EngagementStatus",
    "EventType",
    "GatewayOperation",
    "GatewayReceipt",
    "InvalidStateTransitionError",
    "Milestone",
    "MilestoneEscrowStatus",
    "MilestonePlanItem",
    "Operation",
    "PaymentGateway",
    "Principal",
    "ProposalCatalog",
    "Rating",
    "RatingLedger",
    "Relation",
    "Role",
    "WorkStatus",
    "build_plan",
    "check_invariants",
    "derive_escrow_status",
    "derive_status",
]
