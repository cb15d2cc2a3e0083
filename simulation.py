#!/usr/bin/env python3
"""Freelance Escrow: End-to-End Simulation.

Walks one client and one worker through a two-milestone engagement
([500, 300]) and a second engagement that exercises the revision detour
and fund-all:

    Scenario A: Open the engagement       -> total 800, in_progress, pending_deposit
    Scenario B: Fund milestone 0 (500)    -> partially_funded
    Scenario C: Release milestone 0 early -> NOT_READY, nothing changes
    Scenario D: Start, submit, release 0  -> paid/released, partially_released
    Scenario E: Finish milestone 1, rate  -> paid, fully_released, one rating per side
    Scenario F: Fund all, revision detour, release everything

Usage:
    # Option A: Against the configured database (DATABASE_URL):
    python simulation.py

    # Option B: Without Docker (SQLite in-memory):
    python simulation.py --sqlite

    # Run a specific scenario group:
    python simulation.py --sqlite --scenario ae
    python simulation.py --sqlite --scenario f
"""

from __future__ import annotations

import argparse
import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from freelance_escrow.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from freelance_escrow.domain.enums import Role, WorkStatus  # noqa: E402
from freelance_escrow.domain.exceptions import EngagementError  # noqa: E402
from freelance_escrow.domain.milestone import MilestonePlanItem  # noqa: E402
from freelance_escrow.domain.values import Principal  # noqa: E402
from freelance_escrow.infrastructure.database.orm_models import (  # noqa: E402
    Base,
    ProposalRecord,
)
from freelance_escrow.services.payment_service import SimulatedPaymentGateway  # noqa: E402
from freelance_escrow.services.workflow_service import EngagementWorkflow  # noqa: E402

# Module-level state
_sqlite_engine = None
_sqlite_session_factory = None
_gateway = SimulatedPaymentGateway()


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False) -> None:
    """Initialize database engine and create tables."""
    global _sqlite_engine, _sqlite_session_factory

    if use_sqlite:
        from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
        from sqlalchemy.pool import StaticPool

        _sqlite_engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        _sqlite_session_factory = async_sessionmaker(
            bind=_sqlite_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        async with _sqlite_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.sqlite_initialized")
    else:
        from freelance_escrow.infrastructure.database.engine import init_db

        await init_db()


def get_session() -> Any:
    """Get a fresh database session."""
    if _sqlite_session_factory is not None:
        return _sqlite_session_factory()

    from freelance_escrow.infrastructure.database.engine import get_session_factory

    return get_session_factory()()


async def shutdown_database() -> None:
    global _sqlite_engine, _sqlite_session_factory

    if _sqlite_engine is not None:
        await _sqlite_engine.dispose()
        _sqlite_engine = None
        _sqlite_session_factory = None
    else:
        from freelance_escrow.infrastructure.database.engine import close_db

        await close_db()


async def seed_proposal(client_id: str, worker_id: str) -> str:
    """Publish an accepted proposal the client can open an engagement on."""
    proposal_id = f"prop_{uuid.uuid4().hex[:12]}"
    async with get_session() as session:
        session.add(
            ProposalRecord(
                id=proposal_id,
                job_id=f"job_{uuid.uuid4().hex[:12]}",
                worker_id=worker_id,
                client_id=client_id,
                status="accepted",
            )
        )
        await session.commit()
    return proposal_id


# ---------------------------------------------------------------------------
# Parties
# ---------------------------------------------------------------------------
@dataclass
class Party:
    principal: Principal
    label: str = field(default="")

    async def run(self, action: str, **kwargs: Any) -> Any:
        """Run one workflow operation on a fresh session, as a request would."""
        async with get_session() as session:
            workflow = EngagementWorkflow(session, _gateway)
            return await getattr(workflow, action)(actor=self.principal, **kwargs)

    async def attempt(self, action: str, **kwargs: Any) -> EngagementError | None:
        """Like run(), but report the expected domain error instead of raising it."""
        try:
            await self.run(action, **kwargs)
        except EngagementError as exc:
            print(f"  {self.label}: {action} rejected -> {exc.code}: {exc.message}")
            return exc
        return None


def client_bot() -> Party:
    return Party(Principal(id=f"client_{uuid.uuid4().hex[:8]}", role=Role.CLIENT), "CLIENT")


def worker_bot() -> Party:
    return Party(Principal(id=f"worker_{uuid.uuid4().hex[:8]}", role=Role.WORKER), "WORKER")


# ---------------------------------------------------------------------------
# Pretty-print helpers
# ---------------------------------------------------------------------------
def section(title: str) -> None:
    print(f"\n{'=' * 70}\n  {title}\n{'=' * 70}")


def print_snapshot(engagement: Any) -> None:
    print(
        f"  status={engagement.status.value} escrow={engagement.escrow_status.value} "
        f"total={engagement.total_amount} funded={engagement.escrow_total_funded} "
        f"paid={engagement.amount_paid} v{engagement.version}"
    )
    for index, m in enumerate(engagement.milestones):
        print(
            f"    [{index}] {m.title:<14} {m.amount:>8} "
            f"work={m.work_status.value:<18} escrow={m.escrow_status.value}"
        )


async def print_audit_trail(party: Party, engagement_id: uuid.UUID) -> None:
    section("Audit Trail")
    events = await party.run("get_events", engagement_id=engagement_id)
    for evt in events:
        index = "" if evt.milestone_index is None else f"[{evt.milestone_index}]"
        print(
            f"  v{evt.version:<3} {evt.event_type:<20}{index:<4} "
            f"{evt.old_status or '-'} -> {evt.new_status}  by {evt.actor}"
        )


def _plan(*amounts: str) -> list[MilestonePlanItem]:
    due = datetime.now(UTC) + timedelta(days=14)
    return [
        MilestonePlanItem(
            title=f"Milestone {i + 1}",
            description="Deliverable",
            due_date=due + timedelta(days=7 * i),
            amount=Decimal(amount),
        )
        for i, amount in enumerate(amounts)
    ]


# ===========================================================================
# Scenarios A-E: the reference walk-through
# ===========================================================================
async def scenarios_a_to_e() -> None:
    client, worker = client_bot(), worker_bot()
    proposal_id = await seed_proposal(client.principal.id, worker.principal.id)

    section("Scenario A: open engagement [500, 300]")
    engagement = await client.run(
        "create_engagement",
        proposal_id=proposal_id,
        plan=_plan("500", "300"),
        expected_end_date=datetime.now(UTC) + timedelta(days=30),
    )
    print_snapshot(engagement)
    eid = engagement.id

    section("Scenario B: fund milestone 0 with 500")
    engagement = await client.run(
        "fund_milestone", engagement_id=eid, index=0, amount=Decimal("500")
    )
    print_snapshot(engagement)

    section("Scenario C: release milestone 0 while work is pending")
    await client.attempt("release_milestone", engagement_id=eid, index=0)
    print_snapshot(await client.run("get_engagement", engagement_id=eid))

    section("Scenario D: worker delivers milestone 0, client releases it")
    await worker.run(
        "advance_milestone", engagement_id=eid, index=0, target=WorkStatus.IN_PROGRESS
    )
    await worker.run(
        "advance_milestone",
        engagement_id=eid,
        index=0,
        target=WorkStatus.COMPLETED,
        submission_url="https://example.com/deliverables/1",
    )
    engagement = await client.run(
        "release_milestone", engagement_id=eid, index=0, feedback="Great work"
    )
    print_snapshot(engagement)

    section("Scenario E: finish milestone 1, then rate")
    await client.run("fund_milestone", engagement_id=eid, index=1, amount=Decimal("300"))
    await worker.run(
        "advance_milestone", engagement_id=eid, index=1, target=WorkStatus.IN_PROGRESS
    )
    await worker.run(
        "advance_milestone",
        engagement_id=eid,
        index=1,
        target=WorkStatus.COMPLETED,
        submission_url="https://example.com/deliverables/2",
    )
    engagement = await client.run("release_milestone", engagement_id=eid, index=1)
    print_snapshot(engagement)

    await client.run("submit_rating", engagement_id=eid, score=5, review="On time, on budget")
    await client.attempt("submit_rating", engagement_id=eid, score=4, review="Again")
    engagement = await worker.run("submit_rating", engagement_id=eid, score=5, review="Clear brief")
    print(f"  ratings: client={engagement.rating.from_client.score} "
          f"worker={engagement.rating.from_worker.score}")

    await print_audit_trail(client, eid)


# ===========================================================================
# Scenario F: fund-all and the revision detour
# ===========================================================================
async def scenario_f_revision_detour() -> None:
    client, worker = client_bot(), worker_bot()
    proposal_id = await seed_proposal(client.principal.id, worker.principal.id)

    section("Scenario F: fund all, request a revision, pay out")
    engagement = await client.run(
        "create_engagement",
        proposal_id=proposal_id,
        plan=_plan("250.50", "749.50"),
        expected_end_date=datetime.now(UTC) + timedelta(days=21),
    )
    eid = engagement.id

    await client.attempt("fund_all_milestones", engagement_id=eid, amount=Decimal("999"))
    engagement = await client.run("fund_all_milestones", engagement_id=eid, amount=Decimal("1000"))
    print_snapshot(engagement)

    for index in range(len(engagement.milestones)):
        await worker.run(
            "advance_milestone", engagement_id=eid, index=index, target=WorkStatus.IN_PROGRESS
        )
        await worker.run(
            "advance_milestone",
            engagement_id=eid,
            index=index,
            target=WorkStatus.COMPLETED,
            submission_url=f"https://example.com/v1/{index}",
        )

    engagement = await client.run(
        "advance_milestone",
        engagement_id=eid,
        index=1,
        target=WorkStatus.REVISION_REQUESTED,
        feedback="Please tighten the copy",
    )
    print_snapshot(engagement)

    await worker.run(
        "advance_milestone", engagement_id=eid, index=1, target=WorkStatus.IN_PROGRESS
    )
    await worker.run(
        "advance_milestone",
        engagement_id=eid,
        index=1,
        target=WorkStatus.COMPLETED,
        submission_url="https://example.com/v2/1",
    )
    for index in range(len(engagement.milestones)):
        engagement = await client.run("release_milestone", engagement_id=eid, index=index)
    print_snapshot(engagement)

    await print_audit_trail(worker, eid)


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    "ae": scenarios_a_to_e,
    "f": scenario_f_revision_detour,
}


async def run(selected: list[str], use_sqlite: bool = False) -> None:
    await init_database(use_sqlite=use_sqlite)
    try:
        print("\n" + "#" * 70)
        print("  FREELANCE ESCROW - SIMULATION")
        print(f"  Database: {'SQLite (in-memory)' if use_sqlite else 'configured DATABASE_URL'}")
        print("#" * 70)

        for name in selected:
            await SCENARIOS[name]()

        print("\n" + "=" * 70)
        print("  ALL SCENARIOS COMPLETED SUCCESSFULLY")
        print("=" * 70 + "\n")
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Freelance Escrow Simulation")
    parser.add_argument(
        "--scenario",
        choices=sorted(SCENARIOS),
        default=None,
        help="Run one scenario group. Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use SQLite in-memory instead of the configured database.",
    )
    args = parser.parse_args()

    selected = [args.scenario] if args.scenario else list(SCENARIOS)
    asyncio.run(run(selected, use_sqlite=args.sqlite))
