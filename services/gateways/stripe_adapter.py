"""Stripe payment gateway adapter built on the stripe-python SDK.

Payments map onto PaymentIntents. A payment created without a
``payment_method`` comes back pending with a ``client_secret`` for
client-side confirmation; resuming it with ``payment_intent_id`` confirms
it. Intents created with ``capture_method="manual"`` stop at authorized
until resumed with ``capture=True``.
"""
from decimal import Decimal
from typing import Any

import stripe

from core.errors import ProcessorError
from models.enums import PaymentMethod, PaymentStatus
from models.payment import Payment
from services.gateways.port import AuditEntry, PaymentGateway, GatewayResult, to_minor_units

INTENT_STATUSES = {
    "succeeded": PaymentStatus.COMPLETED,
    "requires_capture": PaymentStatus.AUTHORIZED,
    "processing": PaymentStatus.PENDING_PAYMENT,
    "requires_action": PaymentStatus.PENDING_PAYMENT,
    "requires_confirmation": PaymentStatus.PENDING_PAYMENT,
    "requires_payment_method": PaymentStatus.PENDING_PAYMENT,
    "canceled": PaymentStatus.CANCELLED,
}


def _stripe_error_message(exc: stripe.StripeError) -> str:
    return getattr(exc, "user_message", None) or str(exc)


class StripeGateway(PaymentGateway):
    method = PaymentMethod.STRIPE

    def __init__(self, api_key: str) -> None:
        self.api_key = api_key

    def _require_key(self) -> None:
        if not self.api_key:
            raise ProcessorError("Stripe secret key is not configured", code="missing_credentials")

    def _intent_result(self, intent: Any) -> GatewayResult:
        status = INTENT_STATUSES.get(intent.status)
        audit = AuditEntry(
            detail_type="stripe_intent",
            key="payment_intent_id",
            value=intent.id,
            data={"status": intent.status},
        )
        if status is None or status == PaymentStatus.CANCELLED:
            return GatewayResult.failed(
                f"Stripe payment intent {intent.id} is {intent.status}",
                transaction_id=intent.id,
                details=(audit,),
            )
        client_data = {}
        if status == PaymentStatus.PENDING_PAYMENT and getattr(intent, "client_secret", None):
            client_data["client_secret"] = intent.client_secret
        return GatewayResult(
            success=True,
            status=status,
            transaction_id=intent.id,
            extra={"stripe_status": intent.status},
            details=(audit,),
            client_data=client_data,
        )

    def process(self, payment: Payment, data: dict[str, Any]) -> GatewayResult:
        self._require_key()
        try:
            intent_id = data.get("payment_intent_id") or (payment.transaction_id if data.get("capture") else None)
            if intent_id:
                intent = stripe.PaymentIntent.retrieve(intent_id, api_key=self.api_key)
                if intent.status == "requires_confirmation":
                    intent = intent.confirm()
                elif intent.status == "requires_capture" and data.get("capture"):
                    intent = intent.capture()
            else:
                params: dict[str, Any] = {
                    "amount": to_minor_units(payment.amount),
                    "currency": payment.currency.lower(),
                    "description": f"Payment {payment.payment_number}",
                    "metadata": {
                        "order_id": payment.order_id,
                        "payment_id": payment.id,
                        "payment_number": payment.payment_number,
                    },
                }
                if data.get("payment_method"):
                    params["payment_method"] = data["payment_method"]
                    params["confirm"] = True
                if data.get("capture_method") == "manual":
                    params["capture_method"] = "manual"
                intent = stripe.PaymentIntent.create(
                    api_key=self.api_key,
                    idempotency_key=payment.payment_number,
                    **params,
                )
        except stripe.StripeError as e:
            return GatewayResult.failed(_stripe_error_message(e))
        return self._intent_result(intent)

    def refund(self, payment: Payment, amount: Decimal) -> GatewayResult:
        self._require_key()
        if not payment.transaction_id:
            return GatewayResult.failed("Payment has no Stripe payment intent to refund")
        try:
            refund = stripe.Refund.create(
                payment_intent=payment.transaction_id,
                amount=to_minor_units(amount),
                api_key=self.api_key,
                idempotency_key=f"{payment.payment_number}-refund",
            )
        except stripe.StripeError as e:
            return GatewayResult.failed(_stripe_error_message(e))
        if refund.status in ("failed", "canceled"):
            return GatewayResult.failed(f"Stripe refund {refund.id} {refund.status}")
        return GatewayResult(
            success=True,
            extra={"refund_id": refund.id},
            details=(
                AuditEntry(
                    detail_type="stripe_refund",
                    key="refund_id",
                    value=refund.id,
                    data={"amount": str(amount), "status": refund.status},
                ),
            ),
        )

    def verify(self, payment: Payment) -> GatewayResult:
        if not payment.transaction_id:
            return GatewayResult.failed("Payment has no Stripe payment intent to verify")
        try:
            intent = stripe.PaymentIntent.retrieve(
                payment.transaction_id, api_key=self.api_key, expand=["latest_charge"]
            )
        except stripe.StripeError as e:
            return GatewayResult.failed(_stripe_error_message(e))
        status = INTENT_STATUSES.get(intent.status)
        # A fully refunded intent still reads "succeeded"; the charge carries the refund.
        charge = getattr(intent, "latest_charge", None)
        if status == PaymentStatus.COMPLETED and getattr(charge, "refunded", False):
            status = PaymentStatus.REFUNDED
        return GatewayResult(
            success=True,
            status=status,
            transaction_id=intent.id,
            extra={"stripe_status": intent.status, "amount": str(Decimal(intent.amount) / 100)},
        )
