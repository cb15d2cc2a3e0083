"""Milestone: a priced unit of deliverable work inside one engagement.

Milestones are immutable snapshots. Every transition returns a new Milestone
and goes through the state machine guards, so the work and escrow sides can
only move along their documented edges.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any

from freelance_escrow.domain.enums import MilestoneEscrowStatus, WorkStatus
from freelance_escrow.domain.exceptions import (
    InvalidPlanError,
    MissingPayloadError,
    NotReadyError,
)
from freelance_escrow.domain.state_machine import (
    advance_escrow,
    advance_work,
    work_event_for,
)
from freelance_escrow.domain.values import is_valid_milestone_amount, parse_amount


@dataclass(frozen=True)
class MilestonePlanItem:
    """One row of a client-defined milestone plan, before it becomes a Milestone."""

    title: str
    description: str
    due_date: datetime
    amount: Decimal


@dataclass(frozen=True)
class Milestone:
    """A milestone snapshot.

    Attributes:
        work_status: pending -> in_progress -> completed -> paid, with the
            completed -> revision_requested -> in_progress detour.
        escrow_status: not_funded -> funded -> released.
        hold_reference: Gateway receipt of the escrow hold.
        release_reference: Gateway receipt of the payout to the worker.
    """

    title: str
    description: str
    due_date: datetime
    amount: Decimal
    work_status: WorkStatus = WorkStatus.PENDING
    escrow_status: MilestoneEscrowStatus = MilestoneEscrowStatus.NOT_FUNDED
    submission_url: str | None = None
    feedback: str | None = None
    revision_count: int = 0
    completed_at: datetime | None = None
    paid_at: datetime | None = None
    funded_at: datetime | None = None
    released_at: datetime | None = None
    hold_reference: str | None = None
    release_reference: str | None = None

    @classmethod
    def from_plan(cls, item: MilestonePlanItem) -> Milestone:
        return cls(
            title=item.title,
            description=item.description,
            due_date=item.due_date,
            amount=item.amount,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def is_untouched(self) -> bool:
        """True while the milestone is still purely aspirational."""
        return (
            self.work_status is WorkStatus.PENDING
            and self.escrow_status is MilestoneEscrowStatus.NOT_FUNDED
        )

    @property
    def is_funded(self) -> bool:
        return self.escrow_status in (
            MilestoneEscrowStatus.FUNDED,
            MilestoneEscrowStatus.RELEASED,
        )

    @property
    def is_delivered(self) -> bool:
        return self.work_status in (WorkStatus.COMPLETED, WorkStatus.PAID)

    # ------------------------------------------------------------------
    # Work side
    # ------------------------------------------------------------------

    def advance(
        self,
        target: WorkStatus,
        now: datetime,
        submission_url: str | None = None,
        feedback: str | None = None,
    ) -> Milestone:
        """Move the work status to target along a caller-facing edge.

        Raises:
            InvalidStateTransitionError: If target is not reachable from here.
            MissingPayloadError: If the edge requires a payload that is missing.
        """
        event_name = work_event_for(self.work_status, target)
        new_status = advance_work(self.work_status, event_name)

        if new_status is WorkStatus.COMPLETED:
            if not submission_url:
                raise MissingPayloadError("submission_url", new_status.value)
            return replace(
                self,
                work_status=new_status,
                submission_url=submission_url,
                completed_at=now,
            )
        if new_status is WorkStatus.REVISION_REQUESTED:
            if not feedback:
                raise MissingPayloadError("feedback", new_status.value)
            return replace(
                self,
                work_status=new_status,
                feedback=feedback,
                revision_count=self.revision_count + 1,
            )
        return replace(self, work_status=new_status)

    # ------------------------------------------------------------------
    # Escrow side
    # ------------------------------------------------------------------

    def fund(self, hold_reference: str, now: datetime) -> Milestone:
        return replace(
            self,
            escrow_status=advance_escrow(self.escrow_status, "hold"),
            funded_at=now,
            hold_reference=hold_reference,
        )

    def ensure_releasable(self) -> None:
        """Refuse to pay for unfinished or unfunded work.

        Raises:
            NotReadyError: Unless work is completed and escrow is funded.
        """
        if self.work_status is not WorkStatus.COMPLETED:
            raise NotReadyError(
                f"Milestone work must be completed before release (is {self.work_status})"
            )
        if self.escrow_status is not MilestoneEscrowStatus.FUNDED:
            raise NotReadyError(
                f"Milestone escrow must be funded before release (is {self.escrow_status})"
            )

    def release(self, release_reference: str, feedback: str | None, now: datetime) -> Milestone:
        """Release escrow and mark the work paid in one step (escrow and work move in lock-step)."""
        self.ensure_releasable()
        return replace(
            self,
            escrow_status=advance_escrow(self.escrow_status, "release"),
            work_status=advance_work(self.work_status, "release_payment"),
            released_at=now,
            paid_at=now,
            feedback=feedback if feedback is not None else self.feedback,
            release_reference=release_reference,
        )

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize for storage in the engagements.milestones JSON column."""
        return {
            "title": self.title,
            "description": self.description,
            "due_date": _iso(self.due_date),
            "amount": str(self.amount),
            "work_status": self.work_status.value,
            "escrow_status": self.escrow_status.value,
            "submission_url": self.submission_url,
            "feedback": self.feedback,
            "revision_count": self.revision_count,
            "completed_at": _iso(self.completed_at),
            "paid_at": _iso(self.paid_at),
            "funded_at": _iso(self.funded_at),
            "released_at": _iso(self.released_at),
            "hold_reference": self.hold_reference,
            "release_reference": self.release_reference,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Milestone:
        return cls(
            title=data["title"],
            description=data["description"],
            due_date=datetime.fromisoformat(data["due_date"]),
            amount=Decimal(data["amount"]),
            work_status=WorkStatus(data["work_status"]),
            escrow_status=MilestoneEscrowStatus(data["escrow_status"]),
            submission_url=data.get("submission_url"),
            feedback=data.get("feedback"),
            revision_count=data.get("revision_count", 0),
            completed_at=_parse_iso(data.get("completed_at")),
            paid_at=_parse_iso(data.get("paid_at")),
            funded_at=_parse_iso(data.get("funded_at")),
            released_at=_parse_iso(data.get("released_at")),
            hold_reference=data.get("hold_reference"),
            release_reference=data.get("release_reference"),
        )


def build_plan(items: Sequence[MilestonePlanItem]) -> tuple[Milestone, ...]:
    """Validate a client-defined plan and turn it into fresh milestones.

    Raises:
        InvalidPlanError: If the plan is empty, a title is blank, or an amount
            is not a positive value with at most two decimal places.
    """
    if not items:
        raise InvalidPlanError("plan must contain at least one milestone")

    milestones = []
    for position, item in enumerate(items):
        try:
            amount = parse_amount(item.amount)
        except ValueError as err:
            raise InvalidPlanError(f"milestone {position}: {err}") from err
        if not is_valid_milestone_amount(amount):
            raise InvalidPlanError(
                f"milestone {position}: amount must be positive with at most "
                f"two decimal places, got {amount}"
            )
        if not item.title.strip():
            raise InvalidPlanError(f"milestone {position}: title must not be blank")
        milestones.append(Milestone.from_plan(replace(item, amount=amount)))
    return tuple(milestones)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None
