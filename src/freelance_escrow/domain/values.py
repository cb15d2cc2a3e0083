"""Value types shared by the aggregate, the policy and the engine."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from freelance_escrow.domain.enums import Role

CENT = Decimal("0.01")


@dataclass(frozen=True)
class Principal:
    """An authenticated caller as supplied by the identity layer."""

    id: str
    role: Role


def parse_amount(raw: object) -> Decimal:
    """Convert raw input into a Decimal, rejecting NaN and infinities.

    Raises:
        ValueError: If the value is not a finite decimal number.
    """
    if isinstance(raw, float):
        raw = str(raw)
    try:
        amount = Decimal(raw)  # type: ignore[arg-type]
    except (InvalidOperation, TypeError) as err:
        raise ValueError(f"not a decimal amount: {raw!r}") from err
    if not amount.is_finite():
        raise ValueError(f"amount must be finite: {raw!r}")
    return amount


def is_valid_milestone_amount(amount: Decimal) -> bool:
    """True for strictly positive amounts with at most two decimal places."""
    return amount > 0 and amount == amount.quantize(CENT)


def total(amounts: Iterable[Decimal]) -> Decimal:
    return sum(amounts, Decimal("0"))
