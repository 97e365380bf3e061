"""Apple Pay and Google Pay adapters.

Wallet tokens are charged through the merchant's backing processor; this
layer only checks a token was supplied and records it in the audit trail.
"""
from decimal import Decimal
from typing import Any, Dict
from uuid import uuid4

from models.enums import PaymentMethod
from models.payment import Payment
from services.gateways.port import AuditEntry, GatewayResult, PaymentGateway


def _mask(token: str) -> str:
    return f"...{token[-6:]}" if len(token) > 6 else "..."


class WalletGateway(PaymentGateway):
    label: str
    slug: str
    reference_prefix: str

    def __init__(self, merchant_id: str = "") -> None:
        self.merchant_id = merchant_id

    def process(self, payment: Payment, data: Dict[str, Any]) -> GatewayResult:
        token = data.get("payment_token")
        if not token:
            return GatewayResult.failed(f"{self.label} token is required")
        recorded = {k: v for k, v in data.items() if k != "payment_token"}
        recorded["merchant_id"] = self.merchant_id
        return GatewayResult(
            success=True,
            transaction_id=f"{self.reference_prefix}-{uuid4().hex[:12].upper()}",
            details=(
                AuditEntry(
                    detail_type=f"{self.slug}_token",
                    key="payment_token",
                    value=_mask(str(token)),
                    data=recorded,
                ),
            ),
        )

    def refund(self, payment: Payment, amount: Decimal) -> GatewayResult:
        refund_id = f"{self.reference_prefix}REFUND-{uuid4().hex[:12].upper()}"
        return GatewayResult(
            success=True,
            extra={"refund_id": refund_id},
            details=(
                AuditEntry(
                    detail_type=f"{self.slug}_refund",
                    key="refund_amount",
                    value=f"{Decimal(amount):.2f}",
                    data={"amount": f"{Decimal(amount):.2f}", "refund_id": refund_id},
                ),
            ),
        )

    def verify(self, payment: Payment) -> GatewayResult:
        # No remote source of truth beyond the backing processor.
        return GatewayResult(success=True, status=payment.status)


class ApplePayGateway(WalletGateway):
    method = PaymentMethod.APPLE_PAY
    label = "Apple Pay"
    slug = "apple_pay"
    reference_prefix = "APPLEPAY"


class GooglePayGateway(WalletGateway):
    method = PaymentMethod.GOOGLE_PAY
    label = "Google Pay"
    slug = "google_pay"
    reference_prefix = "GOOGLEPAY"
