"""Rating ledger: one rating per side, attached to a finished engagement."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from freelance_escrow.domain.enums import EngagementStatus, Relation
from freelance_escrow.domain.exceptions import (
    AlreadyRatedError,
    InvalidRatingError,
    NotReadyError,
)

MIN_SCORE = 1
MAX_SCORE = 5
MAX_REVIEW_LENGTH = 2000

RATEABLE_STATUSES = frozenset({EngagementStatus.COMPLETED, EngagementStatus.PAID})


@dataclass(frozen=True)
class Rating:
    score: int
    review: str
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "review": self.review,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Rating:
        return cls(
            score=data["score"],
            review=data["review"],
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass(frozen=True)
class RatingLedger:
    """The two rating slots of an engagement. Slots are written at most once."""

    from_client: Rating | None = None
    from_worker: Rating | None = None

    @property
    def is_empty(self) -> bool:
        return self.from_client is None and self.from_worker is None

    def slot(self, relation: Relation) -> Rating | None:
        if relation is Relation.CLIENT:
            return self.from_client
        if relation is Relation.WORKER:
            return self.from_worker
        raise ValueError(f"No rating slot for relation '{relation}'")

    def record(
        self,
        engagement_id: str,
        status: EngagementStatus,
        relation: Relation,
        rating: Rating,
    ) -> RatingLedger:
        """Return a ledger with the rating written into the relation's slot.

        Raises:
            NotReadyError: If the engagement is not completed or paid yet.
            AlreadyRatedError: If that side already rated.
            InvalidRatingError: If the score or review is out of bounds.
        """
        if status not in RATEABLE_STATUSES:
            raise NotReadyError(
                f"Engagement {engagement_id} cannot be rated while {status}"
            )
        if self.slot(relation) is not None:
            raise AlreadyRatedError(engagement_id, relation.value)
        validate_rating(rating.score, rating.review)

        if relation is Relation.CLIENT:
            return replace(self, from_client=rating)
        return replace(self, from_worker=rating)

    def to_dict(self) -> dict[str, Any] | None:
        if self.is_empty:
            return None
        return {
            "from_client": self.from_client.to_dict() if self.from_client else None,
            "from_worker": self.from_worker.to_dict() if self.from_worker else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RatingLedger:
        if not data:
            return cls()
        return cls(
            from_client=Rating.from_dict(data["from_client"]) if data.get("from_client") else None,
            from_worker=Rating.from_dict(data["from_worker"]) if data.get("from_worker") else None,
        )


def validate_rating(score: int, review: str) -> None:
    if isinstance(score, bool) or not isinstance(score, int):
        raise InvalidRatingError(f"score must be an integer, got {score!r}")
    if not MIN_SCORE <= score <= MAX_SCORE:
        raise InvalidRatingError(f"score must be between {MIN_SCORE} and {MAX_SCORE}")
    if len(review) > MAX_REVIEW_LENGTH:
        raise InvalidRatingError(f"review must be at most {MAX_REVIEW_LENGTH} characters")
