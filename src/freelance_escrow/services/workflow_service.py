"""Engagement Workflow: the single writer of engagement state.

This is the application layer that coordinates between:
    - AuthorizationPolicy (who may do what)
    - Domain aggregate and state machines (what may happen next)
    - PaymentGateway (money in and out of escrow)
    - Repositories (versioned snapshots and the audit trail)

Every mutation runs the same cycle under the engagement's lock:

    load -> authorize -> apply (may call the gateway) -> check invariants
         -> compare-and-swap on version -> append events -> commit

A failure anywhere before the commit rolls the session back, so an operation
either fully succeeds or leaves the engagement exactly as it was. A lost
version race re-runs the whole cycle on a fresh snapshot; gateway calls are
replayed through their idempotency keys.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from freelance_escrow.config import get_settings
from freelance_escrow.domain.engagement import (
    Engagement,
    check_invariants,
    check_progression,
)
from freelance_escrow.domain.enums import (
    EngagementStatus,
    EventType,
    GatewayOperation,
    MilestoneEscrowStatus,
    Operation,
    WorkStatus,
)
from freelance_escrow.domain.exceptions import (
    AlreadyFundedError,
    AmountMismatchError,
    ConcurrencyConflictError,
    EngagementExistsError,
    EngagementNotFoundError,
    NotReadyError,
    PaymentGatewayError,
    PlanLockedError,
    ProposalNotFoundError,
)
from freelance_escrow.domain.gateway_protocol import idempotency_key
from freelance_escrow.domain.milestone import build_plan
from freelance_escrow.domain.policy import AuthorizationPolicy
from freelance_escrow.domain.rating import Rating
from freelance_escrow.domain.values import parse_amount, total
from freelance_escrow.infrastructure.database.repositories import (
    EngagementRepository,
    EventRepository,
    ProposalRepository,
)
from freelance_escrow.logging_config import (
    bind_workflow_context,
    clear_workflow_context,
    get_logger,
)
from freelance_escrow.services.locking import engagement_lock

if TYPE_CHECKING:
    import uuid
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from freelance_escrow.config import Settings
    from freelance_escrow.domain.catalog_protocol import ProposalCatalog
    from freelance_escrow.domain.enums import Relation
    from freelance_escrow.domain.gateway_protocol import GatewayReceipt, PaymentGateway
    from freelance_escrow.domain.milestone import Milestone, MilestonePlanItem
    from freelance_escrow.domain.values import Principal
    from freelance_escrow.infrastructure.database.orm_models import EngagementEventRecord

logger = get_logger(__name__)

_LOG_NAMES = {
    EventType.ENGAGEMENT_CREATED: "engagement.created",
    EventType.WORK_STARTED: "milestone.work_started",
    EventType.WORK_SUBMITTED: "milestone.work_submitted",
    EventType.REVISION_REQUESTED: "milestone.revision_requested",
    EventType.WORK_RESUMED: "milestone.work_resumed",
    EventType.MILESTONE_FUNDED: "milestone.funded",
    EventType.MILESTONE_RELEASED: "milestone.released",
    EventType.PLAN_REPLACED: "engagement.plan_replaced",
    EventType.SCHEDULE_UPDATED: "engagement.rescheduled",
    EventType.RATING_SUBMITTED: "engagement.rated",
}

_ADVANCE_EVENTS = {
    Operation.START_WORK: EventType.WORK_STARTED,
    Operation.SUBMIT_WORK: EventType.WORK_SUBMITTED,
    Operation.REQUEST_REVISION: EventType.REVISION_REQUESTED,
    Operation.RESUME_WORK: EventType.WORK_RESUMED,
}


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class _Event:
    event_type: EventType
    milestone_index: int | None = None
    metadata: dict | None = None


@dataclass(frozen=True)
class _Change:
    """Result of applying one operation to a snapshot, not yet persisted."""

    engagement: Engagement
    events: tuple[_Event, ...]
    replaces_plan: bool = False


Apply = Callable[[Engagement, "Relation"], Awaitable[_Change]]


def _advance_operation(index: int, target: WorkStatus) -> Callable[[Engagement], Operation]:
    """Pick the operation a work transition is authorized as.

    Targets that are never caller-reachable (pending, paid) are authorized as
    a plain read so strangers still get NotAuthorized, and parties get the
    InvalidStateTransitionError raised by the milestone itself.
    """

    def resolve(engagement: Engagement) -> Operation:
        if target is WorkStatus.COMPLETED:
            return Operation.SUBMIT_WORK
        if target is WorkStatus.REVISION_REQUESTED:
            return Operation.REQUEST_REVISION
        if target is WorkStatus.IN_PROGRESS:
            in_range = 0 <= index < len(engagement.milestones)
            if in_range and engagement.milestones[index].work_status is (
                WorkStatus.REVISION_REQUESTED
            ):
                return Operation.RESUME_WORK
            return Operation.START_WORK
        return Operation.VIEW

    return resolve


class EngagementWorkflow:
    """Runs every engagement operation for one database session."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: PaymentGateway,
        catalog: ProposalCatalog | None = None,
        policy: AuthorizationPolicy | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._gateway = gateway
        self._engagements = EngagementRepository(session)
        self._events = EventRepository(session)
        self._catalog = catalog or ProposalRepository(session)
        self._policy = policy or AuthorizationPolicy()
        self._settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_engagement(
        self,
        proposal_id: str,
        plan: Sequence[MilestonePlanItem],
        expected_end_date: datetime,
        actor: Principal,
    ) -> Engagement:
        """Open an engagement for an accepted proposal (client only, one per proposal)."""
        seed = await self._catalog.get_accepted(proposal_id)
        if seed is None:
            raise ProposalNotFoundError(proposal_id)
        self._policy.enforce(actor, seed, Operation.CREATE)

        if await self._engagements.get_by_proposal(proposal_id) is not None:
            raise EngagementExistsError(proposal_id)

        engagement = Engagement.open(
            proposal_id=seed.proposal_id,
            job_id=seed.job_id,
            worker_id=seed.worker_id,
            client_id=seed.client_id,
            milestones=build_plan(plan),
            expected_end_date=expected_end_date,
        )
        check_invariants(engagement)

        try:
            await self._engagements.add(engagement)
            await self._events.record(
                engagement_id=engagement.id,
                event_type=EventType.ENGAGEMENT_CREATED,
                old_status=None,
                new_status=engagement.status,
                actor=actor.id,
                version=engagement.version,
                metadata={
                    "proposal_id": proposal_id,
                    "milestones": len(engagement.milestones),
                    "total_amount": str(engagement.total_amount),
                },
            )
            await self._session.commit()
        except IntegrityError as err:
            # Lost the race against another create for the same proposal.
            await self._session.rollback()
            raise EngagementExistsError(proposal_id) from err
        except Exception:
            await self._session.rollback()
            raise

        logger.info(
            "engagement.created",
            engagement_id=str(engagement.id),
            proposal_id=proposal_id,
            total_amount=engagement.total_amount,
        )
        return engagement

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_engagement(self, engagement_id: uuid.UUID, actor: Principal) -> Engagement:
        engagement = await self._get_or_raise(engagement_id)
        self._policy.enforce(actor, engagement, Operation.VIEW)
        return engagement

    async def get_engagement_by_proposal(
        self, proposal_id: str, actor: Principal
    ) -> Engagement:
        engagement = await self._engagements.get_by_proposal(proposal_id)
        if engagement is None:
            raise EngagementNotFoundError(f"proposal {proposal_id}")
        self._policy.enforce(actor, engagement, Operation.VIEW)
        return engagement

    async def list_engagements(self, actor: Principal) -> list[Engagement]:
        """Every engagement the actor takes part in, in the role they claim."""
        candidates = await self._engagements.list_for_party(actor.id)
        return [
            e for e in candidates
            if self._policy.decide(actor, e, Operation.VIEW).allowed
        ]

    async def get_events(
        self, engagement_id: uuid.UUID, actor: Principal
    ) -> list[EngagementEventRecord]:
        """Audit trail of an engagement, oldest first."""
        await self.get_engagement(engagement_id, actor)
        return await self._events.get_by_engagement(engagement_id)

    # ------------------------------------------------------------------
    # Work transitions
    # ------------------------------------------------------------------

    async def advance_milestone(
        self,
        engagement_id: uuid.UUID,
        index: int,
        target: WorkStatus,
        actor: Principal,
        submission_url: str | None = None,
        feedback: str | None = None,
    ) -> Engagement:
        """Move one milestone's work status along a caller-facing edge."""
        resolve = _advance_operation(index, target)

        async def apply(current: Engagement, relation: Relation) -> _Change:
            operation = resolve(current)
            now = _now()
            advanced = current.milestone(index).advance(
                target, now, submission_url=submission_url, feedback=feedback
            )
            metadata: dict = {"target": target.value}
            if submission_url and target is WorkStatus.COMPLETED:
                metadata["submission_url"] = submission_url
            if feedback and target is WorkStatus.REVISION_REQUESTED:
                metadata["feedback"] = feedback
            return _Change(
                engagement=current.with_milestone(index, advanced, now),
                events=(_Event(_ADVANCE_EVENTS[operation], index, metadata),),
            )

        return await self._mutate(engagement_id, actor, resolve, apply)

    # ------------------------------------------------------------------
    # Escrow
    # ------------------------------------------------------------------

    async def fund_milestone(
        self,
        engagement_id: uuid.UUID,
        index: int,
        amount: Decimal,
        actor: Principal,
    ) -> Engagement:
        """Hold exactly the milestone's amount in escrow."""

        async def apply(current: Engagement, relation: Relation) -> _Change:
            milestone = current.milestone(index)
            _ensure_amount(milestone.amount, amount)
            if milestone.escrow_status is not MilestoneEscrowStatus.NOT_FUNDED:
                raise AlreadyFundedError(str(current.id), index)

            receipt = await self._gateway_call(
                GatewayOperation.HOLD,
                self._gateway.hold(
                    milestone.amount,
                    payer_id=current.client_id,
                    idempotency_key=idempotency_key(
                        str(current.id), index, GatewayOperation.HOLD
                    ),
                ),
            )
            now = _now()
            funded = milestone.fund(receipt.reference, now)
            return _Change(
                engagement=current.record_funding(index, funded, now),
                events=(_funded_event(index, receipt),),
            )

        return await self._mutate(engagement_id, actor, Operation.FUND, apply)

    async def fund_all_milestones(
        self,
        engagement_id: uuid.UUID,
        amount: Decimal,
        actor: Principal,
    ) -> Engagement:
        """Fund every still-unfunded milestone in one call.

        Each milestone gets its own hold. If one hold fails, the holds already
        placed by this call are refunded before the error propagates.
        """

        async def apply(current: Engagement, relation: Relation) -> _Change:
            unfunded = [
                (i, m) for i, m in enumerate(current.milestones)
                if m.escrow_status is MilestoneEscrowStatus.NOT_FUNDED
            ]
            if not unfunded:
                raise AlreadyFundedError(str(current.id))
            _ensure_amount(total(m.amount for _, m in unfunded), amount)

            placed: list[tuple[int, Milestone, GatewayReceipt]] = []
            try:
                for index, milestone in unfunded:
                    receipt = await self._gateway_call(
                        GatewayOperation.HOLD,
                        self._gateway.hold(
                            milestone.amount,
                            payer_id=current.client_id,
                            idempotency_key=idempotency_key(
                                str(current.id), index, GatewayOperation.HOLD
                            ),
                        ),
                    )
                    placed.append((index, milestone, receipt))
            except PaymentGatewayError:
                await self._refund_holds(current, placed)
                raise

            now = _now()
            updated = current
            events = []
            for index, milestone, receipt in placed:
                updated = updated.record_funding(
                    index, milestone.fund(receipt.reference, now), now
                )
                events.append(_funded_event(index, receipt))
            return _Change(engagement=updated, events=tuple(events))

        return await self._mutate(engagement_id, actor, Operation.FUND_ALL, apply)

    async def release_milestone(
        self,
        engagement_id: uuid.UUID,
        index: int,
        actor: Principal,
        feedback: str | None = None,
    ) -> Engagement:
        """Pay a completed, funded milestone out to the worker."""

        async def apply(current: Engagement, relation: Relation) -> _Change:
            milestone = current.milestone(index)
            milestone.ensure_releasable()

            receipt = await self._gateway_call(
                GatewayOperation.RELEASE,
                self._gateway.release(
                    milestone.amount,
                    payee_id=current.worker_id,
                    hold_reference=milestone.hold_reference,
                    idempotency_key=idempotency_key(
                        str(current.id), index, GatewayOperation.RELEASE
                    ),
                ),
            )
            now = _now()
            released = milestone.release(receipt.reference, feedback, now)
            return _Change(
                engagement=current.record_release(index, released, now),
                events=(
                    _Event(
                        EventType.MILESTONE_RELEASED,
                        index,
                        {"amount": str(receipt.amount), "release_reference": receipt.reference},
                    ),
                ),
            )

        return await self._mutate(engagement_id, actor, Operation.RELEASE, apply)

    # ------------------------------------------------------------------
    # Plan, schedule and rating
    # ------------------------------------------------------------------

    async def replace_milestone_plan(
        self,
        engagement_id: uuid.UUID,
        plan: Sequence[MilestonePlanItem],
        actor: Principal,
    ) -> Engagement:
        """Swap the whole plan while nothing has been started or funded."""

        async def apply(current: Engagement, relation: Relation) -> _Change:
            if current.plan_locked:
                raise PlanLockedError(str(current.id))
            updated = current.with_plan(build_plan(plan), _now())
            return _Change(
                engagement=updated,
                events=(
                    _Event(
                        EventType.PLAN_REPLACED,
                        metadata={
                            "milestones": len(updated.milestones),
                            "total_amount": str(updated.total_amount),
                        },
                    ),
                ),
                replaces_plan=True,
            )

        return await self._mutate(engagement_id, actor, Operation.REPLACE_PLAN, apply)

    async def reschedule_engagement(
        self,
        engagement_id: uuid.UUID,
        expected_end_date: datetime,
        actor: Principal,
    ) -> Engagement:
        async def apply(current: Engagement, relation: Relation) -> _Change:
            if current.status is EngagementStatus.PAID:
                raise NotReadyError(
                    f"Engagement {current.id} is paid; its schedule can no longer change"
                )
            return _Change(
                engagement=current.rescheduled(expected_end_date, _now()),
                events=(
                    _Event(
                        EventType.SCHEDULE_UPDATED,
                        metadata={"expected_end_date": expected_end_date.isoformat()},
                    ),
                ),
            )

        return await self._mutate(engagement_id, actor, Operation.RESCHEDULE, apply)

    async def submit_rating(
        self,
        engagement_id: uuid.UUID,
        score: int,
        review: str,
        actor: Principal,
    ) -> Engagement:
        """Record the actor's one rating of a completed or paid engagement."""

        async def apply(current: Engagement, relation: Relation) -> _Change:
            now = _now()
            ledger = current.rating.record(
                str(current.id),
                current.status,
                relation,
                Rating(score=score, review=review, created_at=now),
            )
            return _Change(
                engagement=current.with_rating(ledger, now),
                events=(
                    _Event(
                        EventType.RATING_SUBMITTED,
                        metadata={"relation": relation.value, "score": score},
                    ),
                ),
            )

        return await self._mutate(engagement_id, actor, Operation.RATE, apply)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_or_raise(self, engagement_id: uuid.UUID) -> Engagement:
        engagement = await self._engagements.get_by_id(engagement_id)
        if engagement is None:
            raise EngagementNotFoundError(str(engagement_id))
        return engagement

    async def _mutate(
        self,
        engagement_id: uuid.UUID,
        actor: Principal,
        operation: Operation | Callable[[Engagement], Operation],
        apply: Apply,
    ) -> Engagement:
        """Run one read-modify-write cycle, retrying lost version races.

        Uses tenacity to re-run the whole cycle on a fresh snapshot when the
        version check fails; every other error is surfaced on the first attempt.
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(ConcurrencyConflictError),
            stop=stop_after_attempt(max(1, self._settings.max_conflict_retries)),
            wait=wait_exponential(multiplier=0.01, max=0.2),
            before_sleep=_log_conflict_retry,
            reraise=True,
        )

        async with engagement_lock(engagement_id):
            try:
                async for attempt in retrying:
                    with attempt:
                        try:
                            return await self._attempt(engagement_id, actor, operation, apply)
                        except Exception:
                            await self._session.rollback()
                            raise
                        finally:
                            clear_workflow_context()
            except ConcurrencyConflictError:
                logger.warning(
                    "engagement.conflict_exhausted",
                    engagement_id=str(engagement_id),
                    attempts=retrying.statistics.get("attempt_number"),
                )
                raise
        raise AssertionError("unreachable")

    async def _attempt(
        self,
        engagement_id: uuid.UUID,
        actor: Principal,
        operation: Operation | Callable[[Engagement], Operation],
        apply: Apply,
    ) -> Engagement:
        current = await self._get_or_raise(engagement_id)
        resolved = operation(current) if callable(operation) else operation
        bind_workflow_context(str(engagement_id), actor.id, resolved.value)

        relation = self._policy.enforce(actor, current, resolved)
        change = await apply(current, relation)

        updated = change.engagement
        check_invariants(updated)
        if not change.replaces_plan:
            check_progression(current, updated)

        saved = await self._engagements.save(updated, expected_version=current.version)
        for event in change.events:
            await self._events.record(
                engagement_id=saved.id,
                event_type=event.event_type,
                old_status=current.status,
                new_status=saved.status,
                actor=actor.id,
                version=saved.version,
                milestone_index=event.milestone_index,
                metadata=event.metadata,
            )
        await self._session.commit()

        for event in change.events:
            logger.info(
                _LOG_NAMES[event.event_type],
                milestone_index=event.milestone_index,
                status=saved.status.value,
                escrow_status=saved.escrow_status.value,
                version=saved.version,
            )
        return saved

    async def _gateway_call(
        self, operation: GatewayOperation, call: Awaitable[GatewayReceipt]
    ) -> GatewayReceipt:
        """Await a gateway call, turning a timeout into PaymentGatewayError."""
        timeout = self._settings.payment_gateway_timeout_seconds
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except TimeoutError as err:
            logger.warning("payment.timeout", operation=operation.value, timeout=timeout)
            raise PaymentGatewayError(
                f"Payment gateway timed out after {timeout}s during {operation.value}"
            ) from err

    async def _refund_holds(
        self,
        engagement: Engagement,
        placed: Sequence[tuple[int, Milestone, GatewayReceipt]],
    ) -> None:
        """Refund every hold in `placed`, continuing past individual failures.

        A hold whose refund fails stays placed at the gateway; it is logged at
        error level with its reference so it can be released by hand.
        """
        for index, milestone, receipt in placed:
            try:
                await self._gateway_call(
                    GatewayOperation.REFUND,
                    self._gateway.refund(
                        milestone.amount,
                        hold_reference=receipt.reference,
                        idempotency_key=idempotency_key(
                            str(engagement.id), index, GatewayOperation.REFUND
                        ),
                    ),
                )
            except PaymentGatewayError as err:
                logger.error(
                    "payment.compensation_failed",
                    engagement_id=str(engagement.id),
                    milestone_index=index,
                    hold_reference=receipt.reference,
                    amount=str(milestone.amount),
                    error=err.message,
                )
                continue
            logger.info(
                "payment.hold_compensated",
                milestone_index=index,
                hold_reference=receipt.reference,
            )


def _ensure_amount(expected: Decimal, received: Decimal) -> None:
    """Raise AmountMismatchError unless received equals expected exactly."""
    try:
        value = parse_amount(received)
    except ValueError as err:
        raise AmountMismatchError(str(expected), str(received)) from err
    if value != expected:
        raise AmountMismatchError(str(expected), str(value))


def _funded_event(index: int, receipt: GatewayReceipt) -> _Event:
    return _Event(
        EventType.MILESTONE_FUNDED,
        index,
        {"amount": str(receipt.amount), "hold_reference": receipt.reference},
    )


def _log_conflict_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.info(
        "engagement.conflict_retry",
        attempt=retry_state.attempt_number,
        expected_version=getattr(error, "expected_version", None),
    )
