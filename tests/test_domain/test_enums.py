"""Tests for domain enumerations."""

from __future__ import annotations

from freelance_escrow.domain.enums import (
    AggregateEscrowStatus,
    EngagementStatus,
    EventType,
    MilestoneEscrowStatus,
    Operation,
    WorkStatus,
)


class TestWorkStatus:
    def test_all_statuses_exist(self) -> None:
        expected = {"pending", "in_progress", "completed", "revision_requested", "paid"}
        assert {s.value for s in WorkStatus} == expected

    def test_status_is_str_enum(self) -> None:
        assert isinstance(WorkStatus.PENDING, str)
        assert WorkStatus.IN_PROGRESS == "in_progress"


class TestEscrowStatuses:
    def test_milestone_escrow_statuses(self) -> None:
        assert {s.value for s in MilestoneEscrowStatus} == {"not_funded", "funded", "released"}

    def test_aggregate_escrow_statuses(self) -> None:
        assert len(AggregateEscrowStatus) == 5
        assert AggregateEscrowStatus.PENDING_DEPOSIT == "pending_deposit"


class TestEngagementStatus:
    def test_all_statuses_exist(self) -> None:
        expected = {
            "in_progress", "under_review", "revision_requested",
            "payment_pending", "completed", "paid",
        }
        assert {s.value for s in EngagementStatus} == expected


class TestOperationsAndEvents:
    def test_every_operation_is_named(self) -> None:
        assert len(Operation) == 12

    def test_event_type_is_str_enum(self) -> None:
        assert isinstance(EventType.MILESTONE_FUNDED, str)
        assert EventType.ENGAGEMENT_CREATED == "ENGAGEMENT_CREATED"
