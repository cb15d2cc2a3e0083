"""Payment Service: simulated escrow gateway and its idempotency ledger.

The simulated gateway is the development default. It moves no real money:
it mints references (hold_..., payout_..., refund_...) and logs each movement.
It honours idempotency keys exactly like a real PSP, so retried fund/release
calls replay the original receipt instead of moving money twice.

The ledger that remembers used keys lives in process memory or in Redis.
"""

from __future__ import annotations

import json
import uuid
from typing import TYPE_CHECKING, Protocol

from freelance_escrow.config import get_settings
from freelance_escrow.domain.enums import GatewayOperation
from freelance_escrow.domain.exceptions import PaymentGatewayError
from freelance_escrow.domain.gateway_protocol import GatewayReceipt, PaymentGateway
from freelance_escrow.infrastructure import redis_client
from freelance_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from decimal import Decimal

    from freelance_escrow.config import Settings

logger = get_logger(__name__)

_REFERENCE_PREFIX = {
    GatewayOperation.HOLD: "hold",
    GatewayOperation.RELEASE: "payout",
    GatewayOperation.REFUND: "refund",
}


class IdempotencyLedger(Protocol):
    async def get(self, key: str) -> GatewayReceipt | None: ...

    async def put(self, key: str, receipt: GatewayReceipt) -> GatewayReceipt:
        """Store the receipt unless the key is taken; return whichever is stored."""
        ...

    async def forget(self, key: str) -> None: ...


class InMemoryIdempotencyLedger:
    def __init__(self) -> None:
        self._receipts: dict[str, GatewayReceipt] = {}

    async def get(self, key: str) -> GatewayReceipt | None:
        return self._receipts.get(key)

    async def put(self, key: str, receipt: GatewayReceipt) -> GatewayReceipt:
        return self._receipts.setdefault(key, receipt)

    async def forget(self, key: str) -> None:
        self._receipts.pop(key, None)


class RedisIdempotencyLedger:
    """Ledger shared by every worker process through Redis (SET NX with TTL)."""

    async def get(self, key: str) -> GatewayReceipt | None:
        raw = await redis_client.get_idempotent_result(key)
        return GatewayReceipt.from_dict(json.loads(raw)) if raw else None

    async def put(self, key: str, receipt: GatewayReceipt) -> GatewayReceipt:
        stored = await redis_client.set_idempotent_result(key, json.dumps(receipt.to_dict()))
        if stored:
            return receipt
        existing = await self.get(key)
        return existing or receipt

    async def forget(self, key: str) -> None:
        await redis_client.clear_idempotent_result(key)


class SimulatedPaymentGateway:
    """PaymentGateway that records movements without contacting a PSP.

    Refunding a hold frees the hold's idempotency key, so the milestone can
    be funded again later under the same key.
    """

    def __init__(self, ledger: IdempotencyLedger | None = None) -> None:
        self._ledger = ledger or InMemoryIdempotencyLedger()
        self._holds: dict[str, Decimal] = {}
        self._hold_keys: dict[str, str] = {}

    async def hold(
        self, amount: Decimal, *, payer_id: str, idempotency_key: str
    ) -> GatewayReceipt:
        receipt = await self._move(GatewayOperation.HOLD, amount, idempotency_key)
        self._holds.setdefault(receipt.reference, amount)
        self._hold_keys[receipt.reference] = idempotency_key
        logger.info(
            "payment.hold_simulated",
            reference=receipt.reference,
            amount=amount,
            payer_id=payer_id,
        )
        return receipt

    async def release(
        self,
        amount: Decimal,
        *,
        payee_id: str,
        hold_reference: str | None,
        idempotency_key: str,
    ) -> GatewayReceipt:
        receipt = await self._move(GatewayOperation.RELEASE, amount, idempotency_key)
        logger.info(
            "payment.release_simulated",
            reference=receipt.reference,
            hold_reference=hold_reference,
            amount=amount,
            payee_id=payee_id,
        )
        return receipt

    async def refund(
        self, amount: Decimal, *, hold_reference: str, idempotency_key: str
    ) -> GatewayReceipt:
        receipt = await self._move(GatewayOperation.REFUND, amount, idempotency_key)
        self._holds.pop(hold_reference, None)
        hold_key = self._hold_keys.pop(hold_reference, None)
        if hold_key is not None:
            await self._ledger.forget(hold_key)
        # The refund key is spent too; a later refund of a new hold must not replay it.
        await self._ledger.forget(idempotency_key)
        logger.info(
            "payment.refund_simulated",
            reference=receipt.reference,
            hold_reference=hold_reference,
            amount=amount,
        )
        return receipt

    @property
    def outstanding_holds(self) -> dict[str, Decimal]:
        """Holds placed by this gateway instance and not refunded."""
        return dict(self._holds)

    async def _move(
        self, operation: GatewayOperation, amount: Decimal, idempotency_key: str
    ) -> GatewayReceipt:
        if amount <= 0:
            raise PaymentGatewayError(f"Refusing to {operation.value} a non-positive amount")

        previous = await self._ledger.get(idempotency_key)
        if previous is not None:
            logger.info(
                "payment.idempotent_replay",
                key=idempotency_key,
                reference=previous.reference,
            )
            return previous

        receipt = GatewayReceipt(
            reference=f"{_REFERENCE_PREFIX[operation]}_{uuid.uuid4().hex}",
            operation=operation,
            amount=amount,
        )
        return await self._ledger.put(idempotency_key, receipt)


def build_payment_gateway(settings: Settings | None = None) -> PaymentGateway:
    """Construct the gateway selected by PAYMENT_PROVIDER."""
    settings = settings or get_settings()

    if settings.payment_provider == "stripe":
        from freelance_escrow.services.psp_stripe import StripePaymentGateway

        return StripePaymentGateway(settings)

    ledger: IdempotencyLedger
    if settings.payment_ledger == "redis":
        ledger = RedisIdempotencyLedger()
    else:
        ledger = InMemoryIdempotencyLedger()
    logger.info("payment.gateway_ready", provider="simulated", ledger=settings.payment_ledger)
    return SimulatedPaymentGateway(ledger)
