"""Domain exceptions for the engagement escrow workflow.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.

Families:
    ValidationError           malformed input, fix and resubmit
    NotFoundError             unknown engagement or proposal
    AuthorizationError        wrong party or role, never retried
    StateConflictError        stale client view, re-fetch before retrying
    ConcurrencyConflictError  lost an optimistic-concurrency race, retry at once
    PaymentGatewayError       gateway failed, no local state changed
    InternalInvariantViolation  a bug in the engine itself
"""


class EngagementError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "ENGAGEMENT_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Validation ---


class ValidationError(EngagementError):
    """Malformed or out-of-range input."""


class InvalidPlanError(ValidationError):
    """Raised when a milestone plan is empty or contains a non-positive amount."""

    def __init__(self, reason: str) -> None:
        super().__init__(message=f"Invalid milestone plan: {reason}", code="INVALID_PLAN")


class AmountMismatchError(ValidationError):
    """Raised when a funding amount differs from the amount it must cover."""

    def __init__(self, expected: str, received: str) -> None:
        super().__init__(
            message=f"Amount mismatch: expected {expected}, received {received}",
            code="AMOUNT_MISMATCH",
        )
        self.expected = expected
        self.received = received


class MilestoneOutOfRangeError(ValidationError):
    """Raised when a milestone index does not address an existing milestone."""

    def __init__(self, index: int, count: int) -> None:
        super().__init__(
            message=f"Milestone index {index} out of range (engagement has {count})",
            code="OUT_OF_RANGE",
        )
        self.index = index


class InvalidStateTransitionError(ValidationError):
    """Raised when an attempted milestone transition is not an edge of its machine.

    Example: pending -> completed (work must be started first).
    """

    def __init__(self, current_state: str, attempted: str) -> None:
        super().__init__(
            message=f"Invalid state transition: {current_state} -> {attempted}",
            code="INVALID_TRANSITION",
        )
        self.current_state = current_state
        self.attempted_state = attempted


class MissingPayloadError(ValidationError):
    """Raised when a work transition lacks the payload its edge requires."""

    def __init__(self, field: str, target: str) -> None:
        super().__init__(
            message=f"{field} is required to move a milestone to {target}",
            code="MISSING_PAYLOAD",
        )
        self.field = field


class InvalidRatingError(ValidationError):
    def __init__(self, reason: str) -> None:
        super().__init__(message=f"Invalid rating: {reason}", code="INVALID_RATING")


# --- Lookup ---


class NotFoundError(EngagementError):
    """Base for unknown resources."""


class EngagementNotFoundError(NotFoundError):
    def __init__(self, engagement_id: str) -> None:
        super().__init__(
            message=f"Engagement not found: {engagement_id}",
            code="ENGAGEMENT_NOT_FOUND",
        )
        self.engagement_id = engagement_id


class ProposalNotFoundError(NotFoundError):
    """Raised when no accepted proposal exists with the given id."""

    def __init__(self, proposal_id: str) -> None:
        super().__init__(
            message=f"Accepted proposal not found: {proposal_id}",
            code="PROPOSAL_NOT_FOUND",
        )
        self.proposal_id = proposal_id


# --- Authorization ---


class AuthorizationError(EngagementError):
    """Base for requests made by the wrong party."""


class NotAuthorizedError(AuthorizationError):
    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(
            message=f"Not authorized to {operation}: {reason}",
            code="NOT_AUTHORIZED",
        )
        self.operation = operation
        self.reason = reason


# --- State conflicts ---


class StateConflictError(EngagementError):
    """Base for requests that are valid but not in the engagement's current state."""


class EngagementExistsError(StateConflictError):
    """Raised when the proposal already has an engagement (one per proposal)."""

    def __init__(self, proposal_id: str) -> None:
        super().__init__(
            message=f"Engagement already exists for proposal: {proposal_id}",
            code="ENGAGEMENT_EXISTS",
        )
        self.proposal_id = proposal_id


class AlreadyFundedError(StateConflictError):
    def __init__(self, engagement_id: str, index: int | None = None) -> None:
        target = "all milestones" if index is None else f"milestone {index}"
        super().__init__(
            message=f"Escrow already funded for {target} of engagement {engagement_id}",
            code="ALREADY_FUNDED",
        )


class NotReadyError(StateConflictError):
    """Raised when an operation's state precondition is unmet."""

    def __init__(self, reason: str) -> None:
        super().__init__(message=reason, code="NOT_READY")


class PlanLockedError(StateConflictError):
    def __init__(self, engagement_id: str) -> None:
        super().__init__(
            message=(
                f"Milestone plan of engagement {engagement_id} is locked: "
                "work or funding has already started"
            ),
            code="PLAN_LOCKED",
        )


class AlreadyRatedError(StateConflictError):
    def __init__(self, engagement_id: str, relation: str) -> None:
        super().__init__(
            message=f"The {relation} has already rated engagement {engagement_id}",
            code="ALREADY_RATED",
        )


# --- Concurrency ---


class ConcurrencyConflictError(EngagementError):
    """Raised when a write is based on a version that is no longer current."""

    def __init__(self, engagement_id: str, expected_version: int) -> None:
        super().__init__(
            message=(
                f"Engagement {engagement_id} changed concurrently "
                f"(expected version {expected_version})"
            ),
            code="CONCURRENCY_CONFLICT",
        )
        self.engagement_id = engagement_id
        self.expected_version = expected_version


# --- Payments ---


class PaymentGatewayError(EngagementError):
    """Raised when the payment gateway declines, fails or times out."""

    def __init__(self, message: str, reference: str | None = None) -> None:
        super().__init__(message=message, code="PAYMENT_GATEWAY_ERROR")
        self.reference = reference


# --- Internal ---


class InternalInvariantViolation(EngagementError):
    """Raised when an engagement snapshot breaks a core invariant. Never a caller error."""

    def __init__(self, invariant: str, detail: str) -> None:
        super().__init__(
            message=f"Invariant {invariant} violated: {detail}",
            code="INTERNAL_INVARIANT_VIOLATION",
        )
        self.invariant = invariant
        self.detail = detail
