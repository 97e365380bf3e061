"""Payment orchestration: create orders, take payments, refund them.

Every gateway call happens outside any database transaction. The local
writes on either side are short: a claim before the call, and afterwards
one transaction that locks the order row, writes the payment status by
compare-and-swap and re-derives the order status from a fresh read of
all its payments.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from core.clock import Clock, utcnow
from core.db import SessionLocal, db_session
from core.errors import ProcessorError, ReconciliationDrift, ValidationError
from models.enums import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RESUMABLE_STATUSES,
    SUCCESSFUL_STATUSES,
)
from models.order import Order
from models.payment import Payment
from models.payment_detail import PaymentDetail
from schemas.payment import PaymentCreate, RefundRequest
from schemas.validation import parse_request
from services.gateways.port import GatewayResult
from services.gateways.registry import GatewayRegistry, normalize_method
from services.orders import OrderLedger
from services.payments import PaymentLedger

logger = structlog.get_logger(__name__)

DEFAULT_FAILURE_MESSAGE = "Payment processing failed"

STATUS_TIMESTAMPS = {
    PaymentStatus.AUTHORIZED: "authorized_at",
    PaymentStatus.CAPTURED: "captured_at",
    PaymentStatus.COMPLETED: "completed_at",
}


@dataclass(frozen=True)
class ReconciliationReport:
    payment_id: int
    payment_number: str
    local_status: PaymentStatus
    remote_status: PaymentStatus | None
    drift: bool
    error: str | None = None


class PaymentOrchestrator:
    def __init__(
        self,
        registry: GatewayRegistry,
        orders: OrderLedger,
        payments: PaymentLedger,
        session_factory: sessionmaker = SessionLocal,
        clock: Clock = utcnow,
        allow_refunds: bool = True,
    ):
        self.registry = registry
        self.orders = orders
        self.payments = payments
        self._session_factory = session_factory
        self._clock = clock
        self.allow_refunds = allow_refunds

    # Orders

    def create_order(self, user_id: int, line_items: Iterable[Any], options: Optional[Dict[str, Any]] = None) -> Order:
        return self.orders.create_order(user_id, line_items, options)

    def get_order(self, order_id: int) -> Order:
        return self.orders.get_order(order_id)

    def get_order_by_number(self, order_number: str) -> Order:
        return self.orders.get_order_by_number(order_number)

    def list_orders(self, user_id: int | None = None, status: OrderStatus | None = None) -> List[Order]:
        return self.orders.list_orders(user_id=user_id, status=status)

    def is_paid(self, order: Order | int) -> bool:
        return self.orders.is_paid(order)

    def remaining_balance(self, order: Order | int) -> Decimal:
        return self.orders.remaining_balance(order)

    def cancel_order(self, order_id: int) -> Order:
        """Cancel an unpaid order along with its open payment attempts."""
        with db_session(self._session_factory) as db:
            order = self.orders.cancel_order(db, order_id)
            cancelled = self.payments.cancel_open_payments(db, order.id)
        logger.info("order_cancelled", order_number=order.order_number, cancelled_payments=cancelled)
        return order

    # Payments

    def get_payment(self, payment_id: int) -> Payment:
        return self.payments.get_payment(payment_id)

    def list_payments(
        self,
        order_id: int | None = None,
        user_id: int | None = None,
        status: PaymentStatus | None = None,
        method: PaymentMethod | str | None = None,
    ) -> List[Payment]:
        if method is not None:
            method = normalize_method(method)
        return self.payments.list_payments(order_id=order_id, user_id=user_id, status=status, method=method)

    def payment_details(self, payment_id: int) -> List[PaymentDetail]:
        self.payments.get_payment(payment_id)
        return self.payments.details(payment_id)

    def process_payment(
        self,
        order: Order | int,
        method: PaymentMethod | str,
        amount: Decimal | float | str,
        gateway_data: Optional[Dict[str, Any]] = None,
    ) -> Payment:
        """Take one payment against an order.

        Gateway failures never raise: the payment comes back failed with the
        gateway's error message. Only a malformed request (ValidationError)
        or a missing order (NotFoundError) propagates.
        """
        order_id = order.id if isinstance(order, Order) else order
        token = method.value if isinstance(method, PaymentMethod) else method
        request = parse_request(
            PaymentCreate, order_id=order_id, method=token, amount=amount, gateway_data=gateway_data or {}
        )
        payment_method = normalize_method(request.method)

        order = self.orders.get_order(request.order_id)
        if order.status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            raise ValidationError(f"Order {order.order_number} is {order.status.value} and cannot take payments")

        gateway = self.registry.resolve(payment_method)
        payment = self.payments.create_payment(order, payment_method, request.amount, request.gateway_data)
        log = logger.bind(
            order_number=order.order_number,
            payment_number=payment.payment_number,
            method=payment_method.value,
        )
        log.info("payment_dispatched", amount=str(payment.amount), currency=payment.currency)

        result = self._call_gateway(log, gateway.process, payment, request.gateway_data)
        return self._apply_process_result(log, payment, payment.claim_token, result)

    def resume_payment(self, payment: Payment | int, gateway_data: Optional[Dict[str, Any]] = None) -> Payment:
        """Continue a pending or authorized payment with the gateway.

        Covers redirect approvals, capture after authorization, and manual
        check approval. When another caller holds the payment, or it is no
        longer resumable, the current record is returned unchanged.
        """
        payment_id = payment.id if isinstance(payment, Payment) else payment
        current = self.payments.get_payment(payment_id)
        log = logger.bind(payment_number=current.payment_number, method=current.method.value)

        token = self.payments.claim(payment_id, RESUMABLE_STATUSES)
        if token is None:
            log.info("payment_resume_skipped", status=current.status.value)
            return self.payments.get_payment(payment_id)

        current = self.payments.get_payment(payment_id)
        gateway = self.registry.resolve(current.method)
        log.info("payment_resumed", status=current.status.value)
        result = self._call_gateway(log, gateway.process, current, gateway_data or {})
        return self._apply_process_result(log, current, token, result)

    def refund_payment(self, payment: Payment | int, amount: Decimal | float | str | None = None) -> bool:
        """Refund a completed or captured payment.

        Returns False without touching anything when the payment is not
        refund-eligible, and False with no status change when the gateway
        declines the refund.
        """
        payment_id = payment.id if isinstance(payment, Payment) else payment
        request = parse_request(RefundRequest, payment_id=payment_id, amount=amount)
        current = self.payments.get_payment(request.payment_id)
        log = logger.bind(payment_number=current.payment_number, method=current.method.value)

        if not self.allow_refunds:
            log.info("refund_disabled")
            return False
        if not current.can_be_refunded():
            log.info("refund_not_eligible", status=current.status.value, refunded_at=current.refunded_at)
            return False

        refund_amount = request.amount if request.amount is not None else current.amount
        if refund_amount > current.amount:
            raise ValidationError(f"Refund amount {refund_amount} exceeds payment amount {current.amount}")

        token = self.payments.claim(current.id, SUCCESSFUL_STATUSES, require_unrefunded=True)
        if token is None:
            log.info("refund_claim_lost")
            return False

        current = self.payments.get_payment(current.id)
        gateway = self.registry.resolve(current.method)
        log.info("refund_dispatched", amount=str(refund_amount))
        result = self._call_gateway(log, gateway.refund, current, refund_amount)

        if not result.success:
            with db_session(self._session_factory) as db:
                self._record(db, current.id, "gateway_refund", result)
            self.payments.release(current.id, token)
            log.warning("refund_failed", error=result.error)
            return False

        try:
            with db_session(self._session_factory) as db:
                order = self.orders.lock(db, current.order_id)
                self._record(db, current.id, "gateway_refund", result)
                written = self.payments.transition(
                    db,
                    current.id,
                    token,
                    PaymentStatus.REFUNDED,
                    refunded_at=self._clock(),
                    refunded_amount=refund_amount,
                )
                if written:
                    self.orders.settle(db, order, refunded=True)
        except SQLAlchemyError:
            log.exception("refund_write_failed", transaction_id=result.transaction_id)
            self.payments.release(current.id, token)
            return False
        log.info("refund_recorded", amount=str(refund_amount), written=written)
        return written

    def reconcile_payment(self, payment: Payment | int, strict: bool = False) -> ReconciliationReport:
        """Compare a payment's local status with what its gateway reports.

        Drift is recorded and logged but never resolved here.
        """
        payment_id = payment.id if isinstance(payment, Payment) else payment
        current = self.payments.get_payment(payment_id)
        log = logger.bind(payment_number=current.payment_number, method=current.method.value)
        gateway = self.registry.resolve(current.method)
        result = self._call_gateway(log, gateway.verify, current)

        remote_status = result.status if result.success else None
        drift = remote_status is not None and remote_status != current.status
        with db_session(self._session_factory) as db:
            self._record(db, current.id, "reconciliation", result, local_status=current.status.value)

        report = ReconciliationReport(
            payment_id=current.id,
            payment_number=current.payment_number,
            local_status=current.status,
            remote_status=remote_status,
            drift=drift,
            error=None if result.success else result.error,
        )
        if drift:
            log.warning("reconciliation_drift", local=current.status.value, remote=remote_status.value)
            if strict:
                raise ReconciliationDrift(current.payment_number, current.status.value, remote_status.value)
        return report

    # Internals

    def _call_gateway(self, log, call: Callable[..., GatewayResult], *args) -> GatewayResult:
        try:
            result = call(*args)
        except ProcessorError as e:
            log.warning("gateway_rejected", error=str(e), code=e.code)
            return GatewayResult.failed(str(e), extra={"code": e.code} if e.code else {})
        except Exception as e:
            log.exception("gateway_error")
            return GatewayResult.failed(str(e) or e.__class__.__name__)
        if not isinstance(result, GatewayResult):
            log.error("gateway_bad_result", result_type=type(result).__name__)
            return GatewayResult.failed(f"Gateway returned {type(result).__name__} instead of a result")
        return result

    def _outcome(self, payment: Payment, result: GatewayResult) -> tuple[PaymentStatus, Dict[str, Any]]:
        if result.success:
            status = result.status or PaymentStatus.COMPLETED
            if payment.status.can_transition_to(status):
                fields: Dict[str, Any] = {"error_message": None}
                stamp = STATUS_TIMESTAMPS.get(status)
                if stamp:
                    fields[stamp] = self._clock()
                if result.transaction_id:
                    fields["transaction_id"] = result.transaction_id
                if result.authorization_code:
                    fields["authorization_code"] = result.authorization_code
                if result.extra:
                    fields["meta"] = {**(payment.meta or {}), **result.extra}
                return status, fields
            error = f"Gateway reported {status.value}, which cannot follow {payment.status.value}"
        else:
            error = result.error or DEFAULT_FAILURE_MESSAGE
        fields = {"error_message": error}
        if result.transaction_id:
            fields["transaction_id"] = result.transaction_id
        return PaymentStatus.FAILED, fields

    def _apply_process_result(self, log, payment: Payment, token: str, result: GatewayResult) -> Payment:
        status, fields = self._outcome(payment, result)
        try:
            with db_session(self._session_factory) as db:
                order = self.orders.lock(db, payment.order_id)
                self._record(db, payment.id, "gateway_process", result)
                written = self.payments.transition(db, payment.id, token, status, **fields)
                if written and status in SUCCESSFUL_STATUSES:
                    self.orders.settle(db, order)
        except SQLAlchemyError as e:
            log.exception("payment_write_failed", status=status.value, transaction_id=result.transaction_id)
            return self._fail_unrecorded(payment, token, result, e)

        if not written:
            log.warning("payment_write_lost", status=status.value)
        elif status == PaymentStatus.FAILED:
            log.warning("payment_failed", error=fields["error_message"])
        else:
            log.info("payment_recorded", status=status.value, transaction_id=fields.get("transaction_id"))
        recorded = self.payments.get_payment(payment.id)
        if written and status != PaymentStatus.FAILED:
            recorded.client_data = dict(result.client_data)
        return recorded

    def _fail_unrecorded(self, payment: Payment, token: str, result: GatewayResult, error: Exception) -> Payment:
        """Mark a payment failed when the gateway outcome could not be written."""
        fields: Dict[str, Any] = {"error_message": f"Gateway result could not be recorded: {error}"}
        if result.transaction_id:
            fields["transaction_id"] = result.transaction_id
        with db_session(self._session_factory) as db:
            self.payments.transition(db, payment.id, token, PaymentStatus.FAILED, **fields)
        return self.payments.get_payment(payment.id)

    def _record(self, db, payment_id: int, detail_type: str, result: GatewayResult, **data) -> None:
        """Append the gateway's own audit entries plus a summary of the call."""
        for entry in result.details:
            self.payments.append_detail(db, payment_id, entry.detail_type, entry.key, entry.value, entry.data)
        self.payments.append_detail(
            db,
            payment_id,
            detail_type,
            "result",
            result.status.value if result.status else ("success" if result.success else "failure"),
            {**result.summary(), **data},
        )
