"""Shared test fixtures for the Freelance Escrow test suite.

Provides:
    - An in-memory SQLite database (aiosqlite) with the full schema
    - Seeded proposals and the principals of both parties
    - The simulated payment gateway and a controllable gateway double
    - An httpx client wired to the FastAPI app
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from freelance_escrow.api.deps import get_db_session
from freelance_escrow.config import Settings
from freelance_escrow.domain.enums import GatewayOperation, Role
from freelance_escrow.domain.exceptions import PaymentGatewayError
from freelance_escrow.domain.milestone import MilestonePlanItem
from freelance_escrow.domain.values import Principal
from freelance_escrow.infrastructure.database.orm_models import Base, ProposalRecord
from freelance_escrow.main import create_app
from freelance_escrow.services.payment_service import SimulatedPaymentGateway
from freelance_escrow.services.workflow_service import EngagementWorkflow

CLIENT_ID = "client_1"
WORKER_ID = "worker_1"
PROPOSAL_ID = "prop_1"

CLIENT = Principal(CLIENT_ID, Role.CLIENT)
WORKER = Principal(WORKER_ID, Role.WORKER)
STRANGER = Principal("client_2", Role.CLIENT)

CLIENT_HEADERS = {"X-Actor-Id": CLIENT_ID, "X-Actor-Role": "client"}
WORKER_HEADERS = {"X-Actor-Id": WORKER_ID, "X-Actor-Role": "worker"}
STRANGER_HEADERS = {"X-Actor-Id": "client_2", "X-Actor-Role": "client"}

END_DATE = datetime(2030, 1, 31, tzinfo=UTC)


def make_plan(*amounts: str) -> list[MilestonePlanItem]:
    """Build a plan with one milestone per amount, due a week apart."""
    start = datetime(2030, 1, 1, tzinfo=UTC)
    return [
        MilestonePlanItem(
            title=f"Milestone {i + 1}",
            description="",
            due_date=start + timedelta(days=7 * (i + 1)),
            amount=Decimal(amount),
        )
        for i, amount in enumerate(amounts)
    ]


class FlakyGateway(SimulatedPaymentGateway):
    """Simulated gateway that can be told to fail or stall on demand.

    Attributes:
        fail_on: Operations that raise PaymentGatewayError.
        fail_after_holds: Fail every hold after this many have succeeded.
        fail_keys: Idempotency keys whose calls raise PaymentGatewayError.
        delay: Seconds to sleep before every call.
    """

    def __init__(self) -> None:
        super().__init__()
        self.fail_on: set[GatewayOperation] = set()
        self.fail_after_holds: int | None = None
        self.fail_keys: set[str] = set()
        self.delay = 0.0
        self.calls: list[tuple[GatewayOperation, str]] = []
        self._successful_holds = 0

    async def _move(self, operation, amount, idempotency_key):
        self.calls.append((operation, idempotency_key))
        if self.delay:
            await asyncio.sleep(self.delay)
        if operation in self.fail_on or idempotency_key in self.fail_keys:
            raise PaymentGatewayError(f"simulated {operation.value} failure")
        if operation is GatewayOperation.HOLD and self.fail_after_holds is not None:
            if self._successful_holds >= self.fail_after_holds:
                raise PaymentGatewayError("simulated card decline")
            self._successful_holds += 1
        return await super()._move(operation, amount, idempotency_key)


# ---------------------------------------------------------------------------
# Settings & Database
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        app_env="development",
        database_url="sqlite+aiosqlite:///:memory:",
        payment_gateway_timeout_seconds=0.5,
        max_conflict_retries=3,
    )


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def seeded(session_factory) -> None:
    """Accepted proposal prop_1 plus a still-pending proposal prop_pending."""
    async with session_factory() as session:
        session.add_all([
            ProposalRecord(
                id=PROPOSAL_ID,
                job_id="job_1",
                worker_id=WORKER_ID,
                client_id=CLIENT_ID,
                status="accepted",
            ),
            ProposalRecord(
                id="prop_pending",
                job_id="job_2",
                worker_id=WORKER_ID,
                client_id=CLIENT_ID,
                status="pending",
            ),
        ])
        await session.commit()


@pytest_asyncio.fixture
async def session(session_factory, seeded):
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


@pytest.fixture
def gateway() -> FlakyGateway:
    return FlakyGateway()


@pytest.fixture
def workflow(session, gateway, settings) -> EngagementWorkflow:
    return EngagementWorkflow(session, gateway, settings=settings)


@pytest_asyncio.fixture
async def engagement(workflow):
    """An engagement on prop_1 with milestones of 500 and 300."""
    return await workflow.create_engagement(
        PROPOSAL_ID, make_plan("500", "300"), END_DATE, CLIENT
    )


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def api_client(session_factory, seeded, gateway):
    app = create_app(gateway=gateway)

    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
