"""Tests for same-engagement concurrency: the lock, the version check and retries."""

from __future__ import annotations

import asyncio
import random
from decimal import Decimal

import pytest
from conftest import CLIENT, END_DATE, PROPOSAL_ID, WORKER, make_plan
from sqlalchemy import select
from sqlalchemy.exc import InvalidRequestError

from freelance_escrow.domain.engagement import check_invariants
from freelance_escrow.domain.enums import (
    AggregateEscrowStatus,
    EventType,
    MilestoneEscrowStatus,
    WorkStatus,
)
from freelance_escrow.domain.exceptions import (
    ConcurrencyConflictError,
    EngagementError,
    InternalInvariantViolation,
)
from freelance_escrow.infrastructure.database.orm_models import EngagementRecord
from freelance_escrow.infrastructure.database.repositories import (
    EngagementRepository,
    EventRepository,
)
from freelance_escrow.services.workflow_service import EngagementWorkflow


async def _run_in_parallel(session_factory, gateway, settings, *calls):
    """Run each call on its own session and workflow, like separate requests."""
    sessions = [session_factory() for _ in calls]
    try:
        return await asyncio.gather(
            *(call(EngagementWorkflow(s, gateway, settings=settings))
              for s, call in zip(sessions, calls, strict=True)),
            return_exceptions=True,
        )
    finally:
        for s in sessions:
            await s.close()


class TestVersionCheck:
    @pytest.mark.asyncio
    async def test_stale_save_rejected(self, session, engagement) -> None:
        repo = EngagementRepository(session)
        snapshot = await repo.get_by_id(engagement.id)

        saved = await repo.save(snapshot, expected_version=snapshot.version)
        assert saved.version == 2

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            await repo.save(snapshot, expected_version=snapshot.version)
        assert exc_info.value.expected_version == 1
        await session.rollback()

    @pytest.mark.asyncio
    async def test_lost_race_is_retried(self, workflow, engagement, gateway, monkeypatch) -> None:
        real_save = EngagementRepository.save
        attempts = []

        async def save_losing_once(self, snapshot, expected_version):
            attempts.append(expected_version)
            if len(attempts) == 1:
                raise ConcurrencyConflictError(str(snapshot.id), expected_version)
            return await real_save(self, snapshot, expected_version)

        monkeypatch.setattr(EngagementRepository, "save", save_losing_once)

        funded = await workflow.fund_milestone(engagement.id, 0, Decimal("500"), CLIENT)

        assert attempts == [1, 1]
        assert funded.version == 2
        # Both attempts used the same idempotency key, so only one hold exists.
        assert len(gateway.outstanding_holds) == 1
        assert funded.milestones[0].hold_reference in gateway.outstanding_holds

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, workflow, engagement, monkeypatch) -> None:
        async def always_conflict(self, snapshot, expected_version):
            raise ConcurrencyConflictError(str(snapshot.id), expected_version)

        monkeypatch.setattr(EngagementRepository, "save", always_conflict)

        with pytest.raises(ConcurrencyConflictError):
            await workflow.advance_milestone(engagement.id, 0, WorkStatus.IN_PROGRESS, WORKER)

        monkeypatch.undo()
        current = await workflow.get_engagement(engagement.id, WORKER)
        assert current.version == 1

    @pytest.mark.asyncio
    async def test_audit_trail_is_never_loaded_implicitly(self, session, engagement) -> None:
        result = await session.execute(
            select(EngagementRecord).where(EngagementRecord.id == engagement.id)
        )
        record = result.scalar_one()
        with pytest.raises(InvalidRequestError):
            _ = record.events

        events = await EventRepository(session).get_by_engagement(engagement.id)
        assert [e.event_type for e in events] == [EventType.ENGAGEMENT_CREATED]


class TestConcurrentRequests:
    @pytest.mark.asyncio
    async def test_parallel_releases_both_land(
        self, session_factory, engagement, workflow, gateway, settings
    ) -> None:
        await workflow.fund_all_milestones(engagement.id, Decimal("800"), CLIENT)
        for index in (0, 1):
            await workflow.advance_milestone(engagement.id, index, WorkStatus.IN_PROGRESS, WORKER)
            await workflow.advance_milestone(
                engagement.id, index, WorkStatus.COMPLETED, WORKER, submission_url="https://x"
            )
        gateway.delay = 0.05

        results = await _run_in_parallel(
            session_factory, gateway, settings,
            lambda wf: wf.release_milestone(engagement.id, 0, CLIENT),
            lambda wf: wf.release_milestone(engagement.id, 1, CLIENT),
        )
        assert not any(isinstance(r, Exception) for r in results)

        final = await workflow.get_engagement(engagement.id, CLIENT)
        assert final.amount_paid == Decimal("800")
        assert final.escrow_status is AggregateEscrowStatus.FULLY_RELEASED
        assert final.version == 8

    @pytest.mark.asyncio
    async def test_parallel_double_fund_funds_once(
        self, session_factory, engagement, workflow, gateway, settings
    ) -> None:
        gateway.delay = 0.05
        fund = lambda wf: wf.fund_milestone(engagement.id, 0, Decimal("500"), CLIENT)  # noqa: E731
        results = await _run_in_parallel(session_factory, gateway, settings, fund, fund, fund)

        succeeded = [r for r in results if not isinstance(r, Exception)]
        assert len(succeeded) == 1
        assert all(isinstance(r, EngagementError) for r in results if r not in succeeded)

        final = await workflow.get_engagement(engagement.id, CLIENT)
        assert final.escrow_total_funded == Decimal("500")
        events = await workflow.get_events(engagement.id, CLIENT)
        funded = [e for e in events if e.event_type == EventType.MILESTONE_FUNDED]
        assert len(funded) == 1


class TestRandomWalk:
    """Random operation sequences never break the engagement's invariants."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", [1, 2, 3, 4, 5])
    async def test_invariants_hold(self, workflow, seed) -> None:
        rng = random.Random(seed)
        engagement = await workflow.create_engagement(
            PROPOSAL_ID, make_plan("120.50", "79.50", "300"), END_DATE, CLIENT
        )
        eid = engagement.id
        previous = engagement

        for _ in range(40):
            index = rng.randrange(-1, 4)
            amount = rng.choice([Decimal("120.50"), Decimal("79.50"), Decimal("300"), Decimal("1")])
            operation = rng.choice([
                lambda: workflow.advance_milestone(
                    eid, index, rng.choice(list(WorkStatus)), rng.choice([CLIENT, WORKER]),
                    submission_url=rng.choice([None, "https://x"]),
                    feedback=rng.choice([None, "again"]),
                ),
                lambda: workflow.fund_milestone(eid, index, amount, CLIENT),
                lambda: workflow.fund_all_milestones(eid, Decimal("500"), CLIENT),
                lambda: workflow.release_milestone(eid, index, CLIENT),
                lambda: workflow.submit_rating(eid, rng.randint(0, 6), "", WORKER),
            ])
            try:
                await operation()
            except InternalInvariantViolation:
                raise
            except EngagementError:
                pass

            # get_engagement re-derives both statuses and compares the cached columns.
            current = await workflow.get_engagement(eid, CLIENT)
            check_invariants(current)
            assert current.version >= previous.version
            assert current.amount_paid >= previous.amount_paid
            assert current.escrow_total_funded >= previous.escrow_total_funded
            for old, new in zip(previous.milestones, current.milestones, strict=True):
                if old.escrow_status is MilestoneEscrowStatus.RELEASED:
                    assert new.escrow_status is MilestoneEscrowStatus.RELEASED
                if old.work_status is WorkStatus.PAID:
                    assert new.work_status is WorkStatus.PAID
            previous = current
