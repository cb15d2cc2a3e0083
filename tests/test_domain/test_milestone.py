"""Tests for Milestone snapshots and plan validation."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from freelance_escrow.domain.enums import MilestoneEscrowStatus, WorkStatus
from freelance_escrow.domain.exceptions import (
    InvalidPlanError,
    InvalidStateTransitionError,
    MissingPayloadError,
    NotReadyError,
)
from freelance_escrow.domain.milestone import Milestone, MilestonePlanItem, build_plan

NOW = datetime(2030, 1, 10, tzinfo=UTC)


def _item(amount: str, title: str = "Design") -> MilestonePlanItem:
    return MilestonePlanItem(
        title=title,
        description="",
        due_date=datetime(2030, 1, 15, tzinfo=UTC),
        amount=Decimal(amount),
    )


def _milestone(**overrides) -> Milestone:
    return Milestone(
        title="Design",
        description="",
        due_date=datetime(2030, 1, 15, tzinfo=UTC),
        amount=Decimal("500"),
        **overrides,
    )


class TestBuildPlan:
    def test_fresh_milestones(self) -> None:
        milestones = build_plan([_item("250.50"), _item("749.50")])
        assert len(milestones) == 2
        assert all(m.is_untouched for m in milestones)
        assert milestones[0].amount == Decimal("250.50")

    def test_empty_plan_rejected(self) -> None:
        with pytest.raises(InvalidPlanError):
            build_plan([])

    @pytest.mark.parametrize("amount", ["0", "-10", "10.001", "NaN", "Infinity"])
    def test_bad_amounts_rejected(self, amount: str) -> None:
        with pytest.raises(InvalidPlanError):
            build_plan([_item("100"), _item(amount)])

    def test_blank_title_rejected(self) -> None:
        with pytest.raises(InvalidPlanError, match="title"):
            build_plan([_item("100", title="  ")])


class TestWorkSide:
    def test_start_work(self) -> None:
        started = _milestone().advance(WorkStatus.IN_PROGRESS, NOW)
        assert started.work_status is WorkStatus.IN_PROGRESS

    def test_submit_requires_url(self) -> None:
        m = _milestone(work_status=WorkStatus.IN_PROGRESS)
        with pytest.raises(MissingPayloadError) as exc_info:
            m.advance(WorkStatus.COMPLETED, NOW)
        assert exc_info.value.field == "submission_url"

    def test_submit_records_url_and_time(self) -> None:
        m = _milestone(work_status=WorkStatus.IN_PROGRESS)
        done = m.advance(WorkStatus.COMPLETED, NOW, submission_url="https://x/y")
        assert done.submission_url == "https://x/y"
        assert done.completed_at == NOW

    def test_revision_requires_feedback_and_counts(self) -> None:
        m = _milestone(work_status=WorkStatus.COMPLETED)
        with pytest.raises(MissingPayloadError):
            m.advance(WorkStatus.REVISION_REQUESTED, NOW)
        revised = m.advance(WorkStatus.REVISION_REQUESTED, NOW, feedback="fix x")
        assert revised.feedback == "fix x"
        assert revised.revision_count == 1

    def test_skipping_ahead_is_invalid(self) -> None:
        with pytest.raises(InvalidStateTransitionError):
            _milestone().advance(WorkStatus.COMPLETED, NOW, submission_url="u")

    def test_paid_cannot_be_requested(self) -> None:
        m = _milestone(work_status=WorkStatus.COMPLETED)
        with pytest.raises(InvalidStateTransitionError):
            m.advance(WorkStatus.PAID, NOW)

    def test_snapshot_is_unchanged(self) -> None:
        m = _milestone()
        m.advance(WorkStatus.IN_PROGRESS, NOW)
        assert m.work_status is WorkStatus.PENDING


class TestEscrowSide:
    def test_fund(self) -> None:
        funded = _milestone().fund("hold_1", NOW)
        assert funded.escrow_status is MilestoneEscrowStatus.FUNDED
        assert funded.hold_reference == "hold_1"
        assert funded.is_funded
        assert not funded.is_untouched

    def test_release_moves_both_sides(self) -> None:
        m = _milestone(
            work_status=WorkStatus.COMPLETED,
            escrow_status=MilestoneEscrowStatus.FUNDED,
            feedback="earlier",
        )
        released = m.release("payout_1", None, NOW)
        assert released.work_status is WorkStatus.PAID
        assert released.escrow_status is MilestoneEscrowStatus.RELEASED
        assert released.paid_at == released.released_at == NOW
        assert released.feedback == "earlier"

    def test_release_unfunded_not_ready(self) -> None:
        m = _milestone(work_status=WorkStatus.COMPLETED)
        with pytest.raises(NotReadyError, match="funded"):
            m.release("payout_1", None, NOW)

    def test_release_unfinished_not_ready(self) -> None:
        m = _milestone(
            work_status=WorkStatus.IN_PROGRESS,
            escrow_status=MilestoneEscrowStatus.FUNDED,
        )
        with pytest.raises(NotReadyError, match="completed"):
            m.release("payout_1", None, NOW)


class TestSerialization:
    def test_dict_round_trip_keeps_decimals_and_times(self) -> None:
        m = _milestone(
            work_status=WorkStatus.COMPLETED,
            escrow_status=MilestoneEscrowStatus.FUNDED,
            completed_at=NOW,
            funded_at=NOW,
            hold_reference="hold_1",
        )
        data = m.to_dict()
        assert data["amount"] == "500"
        assert Milestone.from_dict(data) == m
