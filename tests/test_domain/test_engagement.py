"""Tests for the Engagement aggregate: status derivation and invariant checks."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal

import pytest

from freelance_escrow.domain.engagement import (
    Engagement,
    check_cached_statuses,
    check_invariants,
    check_progression,
    derive_escrow_status,
    derive_status,
)
from freelance_escrow.domain.enums import (
    AggregateEscrowStatus,
    EngagementStatus,
    MilestoneEscrowStatus,
    WorkStatus,
)
from freelance_escrow.domain.exceptions import (
    InternalInvariantViolation,
    MilestoneOutOfRangeError,
)
from freelance_escrow.domain.milestone import Milestone
from freelance_escrow.domain.rating import Rating, RatingLedger

NOW = datetime(2030, 1, 10, tzinfo=UTC)

W = WorkStatus
E = MilestoneEscrowStatus


def _m(work: WorkStatus, escrow: MilestoneEscrowStatus, amount: str = "100") -> Milestone:
    return Milestone(
        title="m",
        description="",
        due_date=NOW,
        amount=Decimal(amount),
        work_status=work,
        escrow_status=escrow,
    )


def _engagement(*milestones: Milestone) -> Engagement:
    return Engagement.open(
        proposal_id="prop_1",
        job_id="job_1",
        worker_id="worker_1",
        client_id="client_1",
        milestones=milestones,
        expected_end_date=NOW,
        now=NOW,
    )


class TestDeriveStatus:
    @pytest.mark.parametrize(("milestones", "expected"), [
        ([_m(W.PENDING, E.NOT_FUNDED)], EngagementStatus.IN_PROGRESS),
        ([_m(W.PAID, E.RELEASED), _m(W.IN_PROGRESS, E.FUNDED)], EngagementStatus.IN_PROGRESS),
        ([_m(W.COMPLETED, E.FUNDED), _m(W.REVISION_REQUESTED, E.FUNDED)],
         EngagementStatus.REVISION_REQUESTED),
        ([_m(W.COMPLETED, E.FUNDED), _m(W.PAID, E.RELEASED)], EngagementStatus.UNDER_REVIEW),
        ([_m(W.COMPLETED, E.NOT_FUNDED), _m(W.COMPLETED, E.NOT_FUNDED)],
         EngagementStatus.PAYMENT_PENDING),
        ([_m(W.PAID, E.RELEASED), _m(W.COMPLETED, E.NOT_FUNDED)], EngagementStatus.COMPLETED),
        ([_m(W.PAID, E.RELEASED), _m(W.PAID, E.RELEASED)], EngagementStatus.PAID),
    ])
    def test_derivation(self, milestones, expected) -> None:
        assert derive_status(milestones) is expected

    def test_revision_outranks_in_progress(self) -> None:
        milestones = [_m(W.PENDING, E.NOT_FUNDED), _m(W.REVISION_REQUESTED, E.FUNDED)]
        assert derive_status(milestones) is EngagementStatus.REVISION_REQUESTED


class TestDeriveEscrowStatus:
    @pytest.mark.parametrize(("escrow", "expected"), [
        ([E.NOT_FUNDED, E.NOT_FUNDED], AggregateEscrowStatus.PENDING_DEPOSIT),
        ([E.FUNDED, E.NOT_FUNDED], AggregateEscrowStatus.PARTIALLY_FUNDED),
        ([E.FUNDED, E.FUNDED], AggregateEscrowStatus.FULLY_FUNDED),
        ([E.RELEASED, E.NOT_FUNDED], AggregateEscrowStatus.PARTIALLY_RELEASED),
        ([E.RELEASED, E.FUNDED], AggregateEscrowStatus.PARTIALLY_RELEASED),
        ([E.RELEASED, E.RELEASED], AggregateEscrowStatus.FULLY_RELEASED),
    ])
    def test_derivation(self, escrow, expected) -> None:
        milestones = [_m(W.PENDING, status) for status in escrow]
        assert derive_escrow_status(milestones) is expected


class TestAggregate:
    def test_open_sums_total(self) -> None:
        e = _engagement(_m(W.PENDING, E.NOT_FUNDED, "250.50"), _m(W.PENDING, E.NOT_FUNDED, "749.50"))
        assert e.total_amount == Decimal("1000.00")
        assert e.amount_paid == Decimal("0")
        assert e.version == 1
        assert not e.plan_locked

    def test_milestone_out_of_range(self) -> None:
        e = _engagement(_m(W.PENDING, E.NOT_FUNDED))
        with pytest.raises(MilestoneOutOfRangeError):
            e.milestone(1)
        with pytest.raises(MilestoneOutOfRangeError):
            e.milestone(-1)

    def test_record_funding_and_release(self) -> None:
        e = _engagement(_m(W.COMPLETED, E.NOT_FUNDED), _m(W.PENDING, E.NOT_FUNDED))
        funded = e.record_funding(0, e.milestones[0].fund("hold_1", NOW), NOW)
        assert funded.escrow_total_funded == Decimal("100")
        assert funded.plan_locked

        paid = funded.record_release(0, funded.milestones[0].release("p_1", None, NOW), NOW)
        assert paid.amount_paid == Decimal("100")
        assert paid.actual_end_date is None
        check_invariants(paid)

    def test_actual_end_date_set_when_paid(self) -> None:
        e = _engagement(_m(W.COMPLETED, E.NOT_FUNDED))
        funded = e.record_funding(0, e.milestones[0].fund("hold_1", NOW), NOW)
        paid = funded.record_release(0, funded.milestones[0].release("p_1", None, NOW), NOW)
        assert paid.status is EngagementStatus.PAID
        assert paid.actual_end_date == NOW


class TestInvariants:
    def test_fresh_engagement_is_consistent(self) -> None:
        check_invariants(_engagement(_m(W.PENDING, E.NOT_FUNDED)))

    def test_paid_above_funded(self) -> None:
        e = replace(_engagement(_m(W.PENDING, E.NOT_FUNDED)), amount_paid=Decimal("1"))
        with pytest.raises(InternalInvariantViolation) as exc_info:
            check_invariants(e)
        assert exc_info.value.invariant == "CONSERVATION"

    def test_released_but_not_paid(self) -> None:
        e = _engagement(_m(W.COMPLETED, E.RELEASED))
        e = replace(e, amount_paid=Decimal("100"), escrow_total_funded=Decimal("100"))
        with pytest.raises(InternalInvariantViolation) as exc_info:
            check_invariants(e)
        assert exc_info.value.invariant == "LOCK_STEP"

    def test_funded_counter_mismatch(self) -> None:
        e = _engagement(_m(W.PENDING, E.FUNDED))
        with pytest.raises(InternalInvariantViolation) as exc_info:
            check_invariants(e)
        assert exc_info.value.invariant == "FUNDED"

    def test_total_mismatch(self) -> None:
        e = replace(_engagement(_m(W.PENDING, E.NOT_FUNDED)), total_amount=Decimal("99"))
        with pytest.raises(InternalInvariantViolation) as exc_info:
            check_invariants(e)
        assert exc_info.value.invariant == "TOTAL"

    def test_rating_kept_after_status_moves_back(self) -> None:
        rating = RatingLedger(from_client=Rating(score=5, review="", created_at=NOW))
        e = replace(
            _engagement(_m(W.PAID, E.RELEASED), _m(W.COMPLETED, E.FUNDED, "50")),
            amount_paid=Decimal("100"),
            escrow_total_funded=Decimal("150"),
            rating=rating,
        )
        assert e.status is EngagementStatus.UNDER_REVIEW
        check_invariants(e)

    def test_cached_status_mismatch(self) -> None:
        e = _engagement(_m(W.PENDING, E.NOT_FUNDED))
        check_cached_statuses(e, "in_progress", "pending_deposit")
        with pytest.raises(InternalInvariantViolation) as exc_info:
            check_cached_statuses(e, "paid", "pending_deposit")
        assert exc_info.value.invariant == "STATUS_CACHE"


class TestProgression:
    def test_revision_detour_allowed(self) -> None:
        before = _engagement(_m(W.COMPLETED, E.FUNDED))
        after = replace(before, milestones=(_m(W.REVISION_REQUESTED, E.FUNDED),))
        check_progression(before, after)

    def test_work_regression_rejected(self) -> None:
        before = _engagement(_m(W.IN_PROGRESS, E.NOT_FUNDED))
        after = replace(before, milestones=(_m(W.PENDING, E.NOT_FUNDED),))
        with pytest.raises(InternalInvariantViolation, match="in_progress -> pending"):
            check_progression(before, after)

    def test_escrow_regression_rejected(self) -> None:
        before = _engagement(_m(W.PENDING, E.FUNDED))
        after = replace(before, milestones=(_m(W.PENDING, E.NOT_FUNDED),))
        with pytest.raises(InternalInvariantViolation):
            check_progression(before, after)

    def test_counter_decrease_rejected(self) -> None:
        before = replace(_engagement(_m(W.PENDING, E.FUNDED)), escrow_total_funded=Decimal("100"))
        after = replace(before, escrow_total_funded=Decimal("0"))
        with pytest.raises(InternalInvariantViolation):
            check_progression(before, after)
