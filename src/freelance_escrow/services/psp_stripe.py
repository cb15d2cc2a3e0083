"""Stripe adapter for the PaymentGateway protocol.

Escrow is modelled with manual-capture PaymentIntents:
    hold     PaymentIntent.create(capture_method="manual") on the payer's customer
    release  PaymentIntent.capture, then a Connect Transfer to the payee's account
    refund   PaymentIntent.cancel, which voids the authorization

Party ids are expected to be Stripe ids (customer for the client, connected
account for the worker). The SDK is synchronous, so calls run in a worker
thread; Stripe's own idempotency keys make retries safe.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import stripe

from freelance_escrow.domain.enums import GatewayOperation
from freelance_escrow.domain.exceptions import PaymentGatewayError
from freelance_escrow.domain.gateway_protocol import GatewayReceipt
from freelance_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from freelance_escrow.config import Settings

logger = get_logger(__name__)


def _to_cents(amount: Decimal) -> int:
    """Convert a decimal amount to the smallest currency unit expected by Stripe."""
    normalized = Decimal(str(amount)).quantize(Decimal("0.01"))
    return int((normalized * 100).to_integral_value())


class StripePaymentGateway:
    """PaymentGateway backed by the Stripe Python SDK."""

    def __init__(self, settings: Settings) -> None:
        if not settings.stripe_secret_key:
            raise RuntimeError("Stripe secret key is missing; configure STRIPE_SECRET_KEY.")
        self._currency = settings.payment_currency
        stripe.api_key = settings.stripe_secret_key

    async def hold(
        self, amount: Decimal, *, payer_id: str, idempotency_key: str
    ) -> GatewayReceipt:
        intent = await self._call(
            stripe.PaymentIntent.create,
            amount=_to_cents(amount),
            currency=self._currency,
            customer=payer_id,
            capture_method="manual",
            confirm=True,
            metadata={"escrow_key": idempotency_key},
            idempotency_key=idempotency_key,
        )
        logger.info("payment.hold_placed", reference=intent.id, amount=amount)
        return GatewayReceipt(reference=intent.id, operation=GatewayOperation.HOLD, amount=amount)

    async def release(
        self,
        amount: Decimal,
        *,
        payee_id: str,
        hold_reference: str | None,
        idempotency_key: str,
    ) -> GatewayReceipt:
        if hold_reference is None:
            raise PaymentGatewayError("Cannot release escrow without a hold reference")

        await self._call(
            stripe.PaymentIntent.capture,
            hold_reference,
            idempotency_key=f"{idempotency_key}:capture",
        )
        transfer = await self._call(
            stripe.Transfer.create,
            amount=_to_cents(amount),
            currency=self._currency,
            destination=payee_id,
            metadata={"escrow_key": idempotency_key, "hold_reference": hold_reference},
            idempotency_key=f"{idempotency_key}:transfer",
        )
        logger.info(
            "payment.released",
            reference=transfer.id,
            hold_reference=hold_reference,
            amount=amount,
        )
        return GatewayReceipt(
            reference=transfer.id, operation=GatewayOperation.RELEASE, amount=amount
        )

    async def refund(
        self, amount: Decimal, *, hold_reference: str, idempotency_key: str
    ) -> GatewayReceipt:
        intent = await self._call(
            stripe.PaymentIntent.cancel,
            hold_reference,
            idempotency_key=idempotency_key,
        )
        logger.info("payment.hold_cancelled", reference=intent.id, amount=amount)
        return GatewayReceipt(reference=intent.id, operation=GatewayOperation.REFUND, amount=amount)

    async def _call(self, fn: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except stripe.StripeError as exc:
            logger.warning(
                "payment.stripe_error",
                error=str(exc),
                code=getattr(exc, "code", None),
            )
            raise PaymentGatewayError(
                f"Stripe rejected the request: {exc.user_message or exc}",
                reference=getattr(exc, "request_id", None),
            ) from exc
