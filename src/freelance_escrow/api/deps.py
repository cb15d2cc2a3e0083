"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
the payment gateway, the calling principal, and the workflow engine.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from freelance_escrow.domain.enums import Role
from freelance_escrow.domain.gateway_protocol import PaymentGateway
from freelance_escrow.domain.values import Principal
from freelance_escrow.infrastructure.database.engine import get_async_session
from freelance_escrow.services.workflow_service import EngagementWorkflow


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_payment_gateway(request: Request) -> PaymentGateway:
    """Provide the gateway the application was built with."""
    return request.app.state.payment_gateway


def get_principal(
    x_actor_id: str | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
) -> Principal:
    """Build the caller's principal from the identity layer's headers.

    Raises:
        HTTPException: 401 if either header is missing or the role is unknown.
    """
    if not x_actor_id or not x_actor_role:
        raise HTTPException(status_code=401, detail="Missing X-Actor-Id or X-Actor-Role")
    try:
        role = Role(x_actor_role.lower())
    except ValueError as err:
        raise HTTPException(
            status_code=401, detail=f"Unknown actor role: {x_actor_role}"
        ) from err
    return Principal(id=x_actor_id, role=role)


def get_workflow(
    session: AsyncSession = Depends(get_db_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> EngagementWorkflow:
    """Provide an EngagementWorkflow bound to the current session."""
    return EngagementWorkflow(session, gateway)
