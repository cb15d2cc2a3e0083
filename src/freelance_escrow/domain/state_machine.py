"""Milestone state machine guards.

Uses python-statemachine to enforce legal transitions of the two sub-state
machines every milestone carries. No matter what the API sends, an illegal
edge (e.g. pending -> completed) raises InvalidStateTransitionError.

Work side:
    pending            -> in_progress         (start_work, worker)
    in_progress        -> completed           (submit_work, worker)
    completed          -> revision_requested  (request_revision, client)
    revision_requested -> in_progress         (resume_work, worker)
    completed          -> paid                (release_payment, escrow release only)

Escrow side:
    not_funded -> funded    (hold)
    funded     -> released  (release)
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from freelance_escrow.domain.enums import MilestoneEscrowStatus, WorkStatus
from freelance_escrow.domain.exceptions import InvalidStateTransitionError


class MilestoneWorkMachine(StateMachine):
    """Guards the work-side lifecycle of one milestone.

    Usage:
        sm = MilestoneWorkMachine(current_status="in_progress")
        sm.submit_work()
        sm.status  # "completed"
    """

    pending = State("Pending", value=WorkStatus.PENDING.value, initial=True)
    in_progress = State("In progress", value=WorkStatus.IN_PROGRESS.value)
    completed = State("Completed", value=WorkStatus.COMPLETED.value)
    revision_requested = State(
        "Revision requested", value=WorkStatus.REVISION_REQUESTED.value
    )
    paid = State("Paid", value=WorkStatus.PAID.value, final=True)

    start_work = pending.to(in_progress)
    submit_work = in_progress.to(completed)
    request_revision = completed.to(revision_requested)
    resume_work = revision_requested.to(in_progress)
    release_payment = completed.to(paid)

    def __init__(self, current_status: str = WorkStatus.PENDING.value) -> None:
        _ensure_known(self, current_status)
        super().__init__(start_value=current_status)

    @property
    def status(self) -> WorkStatus:
        return WorkStatus(self.current_state.value)


class MilestoneEscrowMachine(StateMachine):
    """Guards the escrow-side lifecycle of one milestone."""

    not_funded = State(
        "Not funded", value=MilestoneEscrowStatus.NOT_FUNDED.value, initial=True
    )
    funded = State("Funded", value=MilestoneEscrowStatus.FUNDED.value)
    released = State("Released", value=MilestoneEscrowStatus.RELEASED.value, final=True)

    hold = not_funded.to(funded)
    release = funded.to(released)

    def __init__(self, current_status: str = MilestoneEscrowStatus.NOT_FUNDED.value) -> None:
        _ensure_known(self, current_status)
        super().__init__(start_value=current_status)

    @property
    def status(self) -> MilestoneEscrowStatus:
        return MilestoneEscrowStatus(self.current_state.value)


# Edge table for caller-facing work transitions, keyed by (source, target).
WORK_EDGES: dict[tuple[WorkStatus, WorkStatus], str] = {
    (WorkStatus.PENDING, WorkStatus.IN_PROGRESS): "start_work",
    (WorkStatus.IN_PROGRESS, WorkStatus.COMPLETED): "submit_work",
    (WorkStatus.COMPLETED, WorkStatus.REVISION_REQUESTED): "request_revision",
    (WorkStatus.REVISION_REQUESTED, WorkStatus.IN_PROGRESS): "resume_work",
}


def _ensure_known(machine: StateMachine, current_status: str) -> None:
    valid_values = {s.value for s in machine.states}
    if current_status not in valid_values:
        valid = ", ".join(sorted(valid_values))
        raise ValueError(f"Unknown status '{current_status}'. Valid states: {valid}")


def _fire(machine: StateMachine, event_name: str, attempted: str) -> str:
    current = str(machine.current_state.value)
    event_method = getattr(machine, event_name, None)
    if event_method is None or not callable(event_method):
        raise InvalidStateTransitionError(current, attempted)
    try:
        event_method()
    except TransitionNotAllowed as err:
        raise InvalidStateTransitionError(current, attempted) from err
    return str(machine.current_state.value)


def work_event_for(current: WorkStatus, target: WorkStatus) -> str:
    """Return the event that moves a milestone from current to target.

    Only caller-facing edges are listed; completed -> paid is deliberately
    absent because it happens solely as a side effect of escrow release.

    Raises:
        InvalidStateTransitionError: If (current, target) is not an edge.
    """
    event_name = WORK_EDGES.get((current, target))
    if event_name is None:
        raise InvalidStateTransitionError(current.value, target.value)
    return event_name


def advance_work(current: WorkStatus, event_name: str) -> WorkStatus:
    """Fire a work event and return the resulting status."""
    sm = MilestoneWorkMachine(current_status=current.value)
    return WorkStatus(_fire(sm, event_name, event_name))


def advance_escrow(current: MilestoneEscrowStatus, event_name: str) -> MilestoneEscrowStatus:
    """Fire an escrow event and return the resulting status."""
    sm = MilestoneEscrowMachine(current_status=current.value)
    return MilestoneEscrowStatus(_fire(sm, event_name, event_name))


def allowed_work_targets(current: WorkStatus) -> list[WorkStatus]:
    """Work statuses a caller may request from the current one."""
    return [target for (source, target) in WORK_EDGES if source == current]
