"""Tests for the Stripe PaymentGateway adapter with the SDK calls stubbed out."""

from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace

import pytest

stripe = pytest.importorskip("stripe")

from freelance_escrow.config import Settings  # noqa: E402
from freelance_escrow.domain.enums import GatewayOperation  # noqa: E402
from freelance_escrow.domain.exceptions import PaymentGatewayError  # noqa: E402
from freelance_escrow.services.psp_stripe import StripePaymentGateway, _to_cents  # noqa: E402


@pytest.fixture
def stripe_calls(monkeypatch) -> list[tuple[str, tuple, dict]]:
    calls: list[tuple[str, tuple, dict]] = []

    def recorder(name: str, object_id: str):
        def call(*args, **kwargs):
            calls.append((name, args, kwargs))
            return SimpleNamespace(id=object_id)
        return call

    monkeypatch.setattr(stripe.PaymentIntent, "create", recorder("intent.create", "pi_123"))
    monkeypatch.setattr(stripe.PaymentIntent, "capture", recorder("intent.capture", "pi_123"))
    monkeypatch.setattr(stripe.PaymentIntent, "cancel", recorder("intent.cancel", "pi_123"))
    monkeypatch.setattr(stripe.Transfer, "create", recorder("transfer.create", "tr_456"))
    return calls


@pytest.fixture
def gateway() -> StripePaymentGateway:
    return StripePaymentGateway(Settings(stripe_secret_key="sk_test_dummy", payment_currency="eur"))


def test_to_cents() -> None:
    assert _to_cents(Decimal("250.5")) == 25050
    assert _to_cents(Decimal("749.50")) == 74950
    assert _to_cents(Decimal("1")) == 100


class TestStripeGateway:
    @pytest.mark.asyncio
    async def test_hold_is_a_manual_capture_intent(self, gateway, stripe_calls) -> None:
        receipt = await gateway.hold(
            Decimal("500"), payer_id="cus_client", idempotency_key="eng:0:hold"
        )

        assert receipt.reference == "pi_123"
        assert receipt.operation is GatewayOperation.HOLD
        name, _, kwargs = stripe_calls[0]
        assert name == "intent.create"
        assert kwargs["amount"] == 50000
        assert kwargs["currency"] == "eur"
        assert kwargs["capture_method"] == "manual"
        assert kwargs["customer"] == "cus_client"
        assert kwargs["idempotency_key"] == "eng:0:hold"

    @pytest.mark.asyncio
    async def test_release_captures_then_transfers(self, gateway, stripe_calls) -> None:
        receipt = await gateway.release(
            Decimal("300"),
            payee_id="acct_worker",
            hold_reference="pi_123",
            idempotency_key="eng:1:release",
        )

        assert receipt.reference == "tr_456"
        assert [c[0] for c in stripe_calls] == ["intent.capture", "transfer.create"]
        assert stripe_calls[0][1] == ("pi_123",)
        assert stripe_calls[0][2]["idempotency_key"] == "eng:1:release:capture"
        assert stripe_calls[1][2]["destination"] == "acct_worker"
        assert stripe_calls[1][2]["idempotency_key"] == "eng:1:release:transfer"

    @pytest.mark.asyncio
    async def test_release_without_hold(self, gateway, stripe_calls) -> None:
        with pytest.raises(PaymentGatewayError):
            await gateway.release(
                Decimal("300"), payee_id="acct_worker", hold_reference=None, idempotency_key="k"
            )
        assert stripe_calls == []

    @pytest.mark.asyncio
    async def test_refund_cancels_intent(self, gateway, stripe_calls) -> None:
        receipt = await gateway.refund(
            Decimal("500"), hold_reference="pi_123", idempotency_key="eng:0:refund"
        )
        assert receipt.operation is GatewayOperation.REFUND
        assert stripe_calls[0][0] == "intent.cancel"

    @pytest.mark.asyncio
    async def test_stripe_errors_become_gateway_errors(self, gateway, monkeypatch) -> None:
        def decline(*args, **kwargs):
            raise stripe.CardError("Your card was declined.", "amount", "card_declined")

        monkeypatch.setattr(stripe.PaymentIntent, "create", decline)

        with pytest.raises(PaymentGatewayError, match="declined"):
            await gateway.hold(Decimal("500"), payer_id="cus_client", idempotency_key="k")


def test_missing_secret_key() -> None:
    with pytest.raises(RuntimeError):
        StripePaymentGateway(Settings(stripe_secret_key=""))
