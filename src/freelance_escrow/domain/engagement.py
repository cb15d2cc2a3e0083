"""Engagement aggregate root.

An Engagement owns an ordered tuple of milestones and the money counters that
track them. Its status and aggregate escrow status are never stored as primary
state: they are pure functions of the milestone list (see derive_status and
derive_escrow_status), and the persisted columns are only a cache that
check_cached_statuses compares against a fresh recomputation.

Money conservation:
    amount_paid <= escrow_total_funded <= total_amount
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal

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
from freelance_escrow.domain.rating import RatingLedger
from freelance_escrow.domain.values import total

ZERO = Decimal("0")


# ---------------------------------------------------------------------------
# Derivations
# ---------------------------------------------------------------------------


def derive_status(milestones: Sequence[Milestone]) -> EngagementStatus:
    """Compute the engagement status from its milestones (first match wins)."""
    work = [m.work_status for m in milestones]

    if all(s is WorkStatus.PAID for s in work):
        return EngagementStatus.PAID
    if any(s is WorkStatus.REVISION_REQUESTED for s in work):
        return EngagementStatus.REVISION_REQUESTED
    if any(s in (WorkStatus.PENDING, WorkStatus.IN_PROGRESS) for s in work):
        return EngagementStatus.IN_PROGRESS

    # Every milestone is delivered (completed or paid) from here on.
    awaiting = [m for m in milestones if m.work_status is WorkStatus.COMPLETED]
    if any(m.escrow_status is MilestoneEscrowStatus.FUNDED for m in awaiting):
        return EngagementStatus.UNDER_REVIEW
    if not any(s is WorkStatus.PAID for s in work):
        return EngagementStatus.PAYMENT_PENDING
    return EngagementStatus.COMPLETED


def derive_escrow_status(milestones: Sequence[Milestone]) -> AggregateEscrowStatus:
    """Compute the aggregate escrow status from its milestones."""
    escrow = [m.escrow_status for m in milestones]

    if all(s is MilestoneEscrowStatus.RELEASED for s in escrow):
        return AggregateEscrowStatus.FULLY_RELEASED
    if any(s is MilestoneEscrowStatus.RELEASED for s in escrow):
        return AggregateEscrowStatus.PARTIALLY_RELEASED
    if all(s is MilestoneEscrowStatus.FUNDED for s in escrow):
        return AggregateEscrowStatus.FULLY_FUNDED
    if any(s is MilestoneEscrowStatus.FUNDED for s in escrow):
        return AggregateEscrowStatus.PARTIALLY_FUNDED
    return AggregateEscrowStatus.PENDING_DEPOSIT


# ---------------------------------------------------------------------------
# Aggregate
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Engagement:
    """Immutable snapshot of one engagement.

    Identity fields never change after creation. Each mutation produces a
    new snapshot; the repository bumps ``version`` when it commits one.
    """

    id: uuid.UUID
    proposal_id: str
    job_id: str
    worker_id: str
    client_id: str
    milestones: tuple[Milestone, ...]
    total_amount: Decimal
    expected_end_date: datetime
    start_date: datetime = field(default_factory=_now)
    amount_paid: Decimal = ZERO
    escrow_total_funded: Decimal = ZERO
    actual_end_date: datetime | None = None
    rating: RatingLedger = field(default_factory=RatingLedger)
    version: int = 1
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @classmethod
    def open(
        cls,
        proposal_id: str,
        job_id: str,
        worker_id: str,
        client_id: str,
        milestones: tuple[Milestone, ...],
        expected_end_date: datetime,
        now: datetime | None = None,
    ) -> Engagement:
        """Start a new engagement from a validated plan."""
        now = now or _now()
        return cls(
            id=uuid.uuid4(),
            proposal_id=proposal_id,
            job_id=job_id,
            worker_id=worker_id,
            client_id=client_id,
            milestones=milestones,
            total_amount=total(m.amount for m in milestones),
            expected_end_date=expected_end_date,
            start_date=now,
            created_at=now,
            updated_at=now,
        )

    # --- Derived ---

    @property
    def status(self) -> EngagementStatus:
        return derive_status(self.milestones)

    @property
    def escrow_status(self) -> AggregateEscrowStatus:
        return derive_escrow_status(self.milestones)

    @property
    def plan_locked(self) -> bool:
        return not all(m.is_untouched for m in self.milestones)

    # --- Access ---

    def milestone(self, index: int) -> Milestone:
        if not 0 <= index < len(self.milestones):
            raise MilestoneOutOfRangeError(index, len(self.milestones))
        return self.milestones[index]

    # --- Transitions (each returns a new snapshot) ---

    def with_milestone(self, index: int, milestone: Milestone, now: datetime) -> Engagement:
        self.milestone(index)
        milestones = self.milestones[:index] + (milestone,) + self.milestones[index + 1:]
        return self._settled(replace(self, milestones=milestones, updated_at=now))

    def record_funding(self, index: int, funded: Milestone, now: datetime) -> Engagement:
        updated = self.with_milestone(index, funded, now)
        return replace(
            updated,
            escrow_total_funded=self.escrow_total_funded + funded.amount,
        )

    def record_release(self, index: int, released: Milestone, now: datetime) -> Engagement:
        updated = self.with_milestone(index, released, now)
        return replace(updated, amount_paid=self.amount_paid + released.amount)

    def with_plan(self, milestones: tuple[Milestone, ...], now: datetime) -> Engagement:
        return replace(
            self,
            milestones=milestones,
            total_amount=total(m.amount for m in milestones),
            updated_at=now,
        )

    def with_rating(self, rating: RatingLedger, now: datetime) -> Engagement:
        return replace(self, rating=rating, updated_at=now)

    def rescheduled(self, expected_end_date: datetime, now: datetime) -> Engagement:
        return replace(self, expected_end_date=expected_end_date, updated_at=now)

    @staticmethod
    def _settled(engagement: Engagement) -> Engagement:
        if engagement.actual_end_date is None and engagement.status is EngagementStatus.PAID:
            return replace(engagement, actual_end_date=engagement.updated_at)
        return engagement


# ---------------------------------------------------------------------------
# Invariant checking
# ---------------------------------------------------------------------------

_WORK_RANK = {
    WorkStatus.PENDING: 0,
    WorkStatus.IN_PROGRESS: 1,
    WorkStatus.REVISION_REQUESTED: 2,
    WorkStatus.COMPLETED: 2,
    WorkStatus.PAID: 3,
}
_ESCROW_RANK = {
    MilestoneEscrowStatus.NOT_FUNDED: 0,
    MilestoneEscrowStatus.FUNDED: 1,
    MilestoneEscrowStatus.RELEASED: 2,
}
_DETOUR = {
    (WorkStatus.COMPLETED, WorkStatus.REVISION_REQUESTED),
    (WorkStatus.REVISION_REQUESTED, WorkStatus.IN_PROGRESS),
}


def check_invariants(engagement: Engagement) -> None:
    """Verify conservation, lock-step and bookkeeping invariants.

    Rating readiness is checked when a rating is written, not here: a rated
    `completed` engagement can move back to `under_review` or
    `revision_requested` when a leftover milestone is funded or sent back.

    Raises:
        InternalInvariantViolation: On the first broken invariant.
    """
    eid = str(engagement.id)
    milestones = engagement.milestones

    if not milestones:
        raise InternalInvariantViolation("PLAN", f"engagement {eid} has no milestones")

    if not (ZERO <= engagement.amount_paid <= engagement.escrow_total_funded
            <= engagement.total_amount):
        raise InternalInvariantViolation(
            "CONSERVATION",
            f"engagement {eid}: paid={engagement.amount_paid} "
            f"funded={engagement.escrow_total_funded} total={engagement.total_amount}",
        )

    if engagement.total_amount != total(m.amount for m in milestones):
        raise InternalInvariantViolation("TOTAL", f"engagement {eid}: total != sum of amounts")

    released = total(
        m.amount for m in milestones if m.escrow_status is MilestoneEscrowStatus.RELEASED
    )
    if engagement.amount_paid != released:
        raise InternalInvariantViolation(
            "PAID", f"engagement {eid}: amount_paid {engagement.amount_paid} != {released}"
        )

    funded = total(m.amount for m in milestones if m.is_funded)
    if engagement.escrow_total_funded != funded:
        raise InternalInvariantViolation(
            "FUNDED",
            f"engagement {eid}: escrow_total_funded {engagement.escrow_total_funded} != {funded}",
        )

    for index, m in enumerate(milestones):
        is_released = m.escrow_status is MilestoneEscrowStatus.RELEASED
        is_paid = m.work_status is WorkStatus.PAID
        if is_released != is_paid:
            raise InternalInvariantViolation(
                "LOCK_STEP",
                f"engagement {eid} milestone {index}: "
                f"escrow={m.escrow_status} work={m.work_status}",
            )


def check_cached_statuses(
    engagement: Engagement,
    cached_status: str,
    cached_escrow_status: str,
) -> None:
    """Compare persisted status columns against a fresh derivation."""
    if cached_status != engagement.status.value:
        raise InternalInvariantViolation(
            "STATUS_CACHE", f"engagement {engagement.id}: cached status {cached_status} "
            f"!= derived {engagement.status}"
        )
    if cached_escrow_status != engagement.escrow_status.value:
        raise InternalInvariantViolation(
            "STATUS_CACHE", f"engagement {engagement.id}: cached escrow status {cached_escrow_status} "
            f"!= derived {engagement.escrow_status}"
        )


def check_progression(before: Engagement, after: Engagement) -> None:
    """Verify that no milestone moved backwards within one mutation.

    The only backwards work moves allowed are the revision detour edges.
    Only meaningful when the milestone list was not replaced wholesale.
    """
    if len(before.milestones) != len(after.milestones):
        raise InternalInvariantViolation(
            "MONOTONIC", f"engagement {after.id}: milestone count changed"
        )
    if after.amount_paid < before.amount_paid or (
        after.escrow_total_funded < before.escrow_total_funded
    ):
        raise InternalInvariantViolation(
            "MONOTONIC", f"engagement {after.id}: money counters decreased"
        )
    for index, (old, new) in enumerate(zip(before.milestones, after.milestones, strict=True)):
        if _ESCROW_RANK[new.escrow_status] < _ESCROW_RANK[old.escrow_status]:
            raise InternalInvariantViolation(
                "MONOTONIC", f"engagement {after.id} milestone {index}: escrow moved back"
            )
        moved_back = _WORK_RANK[new.work_status] < _WORK_RANK[old.work_status]
        if moved_back and (old.work_status, new.work_status) not in _DETOUR:
            raise InternalInvariantViolation(
                "MONOTONIC",
                f"engagement {after.id} milestone {index}: "
                f"{old.work_status} -> {new.work_status}",
            )
