"""Tests for the two-slot rating ledger."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from freelance_escrow.domain.enums import EngagementStatus, Relation
from freelance_escrow.domain.exceptions import (
    AlreadyRatedError,
    InvalidRatingError,
    NotReadyError,
)
from freelance_escrow.domain.rating import Rating, RatingLedger, validate_rating

NOW = datetime(2030, 2, 1, tzinfo=UTC)


def _rating(score: int = 5, review: str = "great") -> Rating:
    return Rating(score=score, review=review, created_at=NOW)


class TestRecord:
    def test_each_side_rates_once(self) -> None:
        ledger = RatingLedger().record("e1", EngagementStatus.PAID, Relation.CLIENT, _rating())
        ledger = ledger.record("e1", EngagementStatus.PAID, Relation.WORKER, _rating(4))
        assert ledger.from_client.score == 5
        assert ledger.from_worker.score == 4

    def test_second_rating_rejected(self) -> None:
        ledger = RatingLedger().record("e1", EngagementStatus.COMPLETED, Relation.WORKER, _rating())
        with pytest.raises(AlreadyRatedError):
            ledger.record("e1", EngagementStatus.COMPLETED, Relation.WORKER, _rating(1))

    @pytest.mark.parametrize("status", [
        EngagementStatus.IN_PROGRESS,
        EngagementStatus.UNDER_REVIEW,
        EngagementStatus.REVISION_REQUESTED,
        EngagementStatus.PAYMENT_PENDING,
    ])
    def test_unfinished_engagement_not_ready(self, status) -> None:
        with pytest.raises(NotReadyError):
            RatingLedger().record("e1", status, Relation.CLIENT, _rating())

    def test_no_slot_for_strangers(self) -> None:
        with pytest.raises(ValueError):
            RatingLedger().slot(Relation.NONE)


class TestValidation:
    @pytest.mark.parametrize("score", [0, 6, -1])
    def test_score_bounds(self, score: int) -> None:
        with pytest.raises(InvalidRatingError):
            validate_rating(score, "")

    def test_bool_is_not_a_score(self) -> None:
        with pytest.raises(InvalidRatingError):
            validate_rating(True, "")

    def test_review_length(self) -> None:
        validate_rating(3, "x" * 2000)
        with pytest.raises(InvalidRatingError):
            validate_rating(3, "x" * 2001)


class TestSerialization:
    def test_empty_ledger_stores_null(self) -> None:
        assert RatingLedger().to_dict() is None
        assert RatingLedger.from_dict(None) == RatingLedger()

    def test_round_trip(self) -> None:
        ledger = RatingLedger(from_worker=_rating(2, "slow payer"))
        assert RatingLedger.from_dict(ledger.to_dict()) == ledger
