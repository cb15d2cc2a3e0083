"""Application services: use case orchestration."""

from freelance_escrow.services.payment_service import (
    InMemoryIdempotencyLedger,
    RedisIdempotencyLedger,
    SimulatedPaymentGateway,
    build_payment_gateway,
)
from freelance_escrow.services.workflow_service import EngagementWorkflow

__all__ = [
    "EngagementWorkflow",
    "InMemoryIdempotencyLedger",
    "RedisIdempotencyLedger",
    "SimulatedPaymentGateway",
    "build_payment_gateway",
]
