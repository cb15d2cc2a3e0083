"""Payment Gateway Protocol.

Defines the capability the workflow engine needs to move money in and out of
escrow. It is a Protocol (structural subtyping), so a simulated gateway, a
Stripe adapter and test doubles only need to match the shape.

Every call carries an idempotency key; a gateway that sees the same key twice
must return the original receipt instead of moving money again.

The domain layer has ZERO imports from any payment SDK.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol, runtime_checkable

from freelance_escrow.domain.enums import GatewayOperation


@dataclass(frozen=True)
class GatewayReceipt:
    """Proof that the gateway performed a fund movement.

    Attributes:
        reference: Opaque gateway-side identifier (hold id, transfer id, ...).
        operation: Which movement this receipt is for.
        amount: The amount moved.
    """

    reference: str
    operation: GatewayOperation
    amount: Decimal

    def to_dict(self) -> dict:
        return {
            "reference": self.reference,
            "operation": self.operation.value,
            "amount": str(self.amount),
        }

    @classmethod
    def from_dict(cls, data: dict) -> GatewayReceipt:
        return cls(
            reference=data["reference"],
            operation=GatewayOperation(data["operation"]),
            amount=Decimal(data["amount"]),
        )


def idempotency_key(engagement_id: str, milestone_index: int, operation: GatewayOperation) -> str:
    """Key that makes a fund/release retry safe: (engagement, milestone, operation)."""
    return f"{engagement_id}:{milestone_index}:{operation.value}"


@runtime_checkable
class PaymentGateway(Protocol):
    """Protocol that all payment gateway implementations must satisfy.

    Implementations raise PaymentGatewayError when the movement is declined
    or fails; they never partially apply a movement.
    """

    async def hold(
        self, amount: Decimal, *, payer_id: str, idempotency_key: str
    ) -> GatewayReceipt:
        """Take funds from the payer into escrow."""
        ...

    async def release(
        self,
        amount: Decimal,
        *,
        payee_id: str,
        hold_reference: str | None,
        idempotency_key: str,
    ) -> GatewayReceipt:
        """Pay held funds out to the payee."""
        ...

    async def refund(
        self, amount: Decimal, *, hold_reference: str, idempotency_key: str
    ) -> GatewayReceipt:
        """Return held funds to the payer."""
        ...
