"""Manual check payments.

Records the check details. With ``require_approval`` the payment stays
pending until it is resumed with ``approved=True``.
"""
from decimal import Decimal
from typing import Any, Dict
from uuid import uuid4

from core.clock import Clock, utcnow
from models.enums import PaymentMethod, PaymentStatus
from models.payment import Payment
from services.gateways.port import AuditEntry, GatewayResult, PaymentGateway


class ManualCheckGateway(PaymentGateway):
    method = PaymentMethod.MANUAL_CHECK

    def __init__(self, require_approval: bool = False, clock: Clock = utcnow) -> None:
        self.require_approval = require_approval
        self._clock = clock

    def process(self, payment: Payment, data: Dict[str, Any]) -> GatewayResult:
        details = []
        check_number = data.get("check_number")
        if check_number or not payment.transaction_id:
            details.append(
                AuditEntry(
                    detail_type="manual_check",
                    key="check_number",
                    value=str(check_number or ""),
                    data={
                        "check_number": check_number or "",
                        "check_date": data.get("check_date") or self._clock().date().isoformat(),
                        "bank_name": data.get("bank_name", ""),
                        "notes": data.get("notes", ""),
                    },
                )
            )
        if data.get("approved"):
            details.append(
                AuditEntry(
                    detail_type="manual_check",
                    key="approved_by",
                    value=str(data.get("approved_by") or ""),
                    data={"approved_on": self._clock().isoformat()},
                )
            )
        elif self.require_approval:
            return GatewayResult(
                success=True,
                status=PaymentStatus.PENDING_PAYMENT,
                transaction_id=payment.transaction_id or self._reference(check_number),
                details=tuple(details),
            )
        return GatewayResult(
            success=True,
            status=PaymentStatus.COMPLETED,
            transaction_id=payment.transaction_id or self._reference(check_number),
            details=tuple(details),
        )

    def _reference(self, check_number: Any) -> str:
        return f"CHECK-{check_number or uuid4().hex[:12].upper()}"

    def refund(self, payment: Payment, amount: Decimal) -> GatewayResult:
        refund_id = f"CHECKREFUND-{uuid4().hex[:12].upper()}"
        return GatewayResult(
            success=True,
            extra={"refund_id": refund_id},
            details=(
                AuditEntry(
                    detail_type="manual_check_refund",
                    key="refund_amount",
                    value=f"{Decimal(amount):.2f}",
                    data={"amount": f"{Decimal(amount):.2f}", "refunded_on": self._clock().date().isoformat()},
                ),
            ),
        )

    def verify(self, payment: Payment) -> GatewayResult:
        # Checks are verified by hand; the ledger is the source of truth.
        return GatewayResult(success=True, status=payment.status)
