"""Orders, their lines, and the totals/paid-in-full rules."""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from core.clock import Clock, utcnow
from core.config import settings
from core.db import SessionLocal, db_session
from core.errors import NotFoundError, NumberAllocationError, ValidationError
from models.enums import OrderStatus
from models.order import Order
from models.order_line import OrderLine
from schemas.filters import OrderFilter
from schemas.order import OrderCreate, OrderLineIn
from schemas.validation import parse_request
from services.numbers import NumberGenerator
from services.payments import has_successful_payments, json_safe, successful_total

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def _to_decimal(value: float | int | str | Decimal | None) -> Decimal:
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal


def compute_totals(
    lines: Iterable[OrderLine],
    shipping: Decimal = ZERO,
    order_tax: Decimal = ZERO,
    order_discount: Decimal = ZERO,
) -> Totals:
    """Order totals from its lines. A discount larger than the rest clamps the total to zero."""
    subtotal = tax = discount = ZERO
    for line in lines:
        subtotal += _to_decimal(line.quantity * _to_decimal(line.unit_price))
        tax += _to_decimal(line.tax)
        discount += _to_decimal(line.discount)
    tax += _to_decimal(order_tax)
    discount += _to_decimal(order_discount)
    shipping = _to_decimal(shipping)
    total = max(ZERO, subtotal + tax + shipping - discount)
    return Totals(subtotal=subtotal, tax=tax, shipping=shipping, discount=discount, total=total)


class OrderLedger:
    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        numbers: NumberGenerator | None = None,
        clock: Clock = utcnow,
        number_prefix: str = settings.ORDER_NUMBER_PREFIX,
        default_currency: str = settings.DEFAULT_CURRENCY,
    ):
        self._session_factory = session_factory
        self._clock = clock
        self.numbers = numbers or NumberGenerator(clock=clock, max_attempts=settings.NUMBER_MAX_ATTEMPTS)
        self.number_prefix = number_prefix
        self.default_currency = default_currency

    def create_order(
        self,
        user_id: int,
        line_items: Iterable[OrderLineIn | Dict[str, Any]],
        options: Optional[Dict[str, Any]] = None,
    ) -> Order:
        request = parse_request(OrderCreate, user_id=user_id, items=list(line_items or []), options=options or {})
        opts = request.options

        for attempt in range(1, self.numbers.max_attempts + 1):
            now = self._clock()
            number = None
            try:
                with db_session(self._session_factory) as db:
                    number = self.numbers.generate(self.number_prefix, lambda n: self._number_exists(db, n))
                    order = Order(
                        user_id=request.user_id,
                        order_number=number,
                        status=OrderStatus.PENDING,
                        currency=(opts.currency or self.default_currency).upper(),
                        shipping=_to_decimal(opts.shipping),
                        order_tax=_to_decimal(opts.tax),
                        order_discount=_to_decimal(opts.discount),
                        customer_notes=opts.customer_notes,
                        admin_notes=opts.admin_notes,
                        meta=json_safe(opts.meta),
                        created_at=now,
                        updated_at=now,
                    )
                    order.lines = [self._build_line(position, item) for position, item in enumerate(request.items)]
                    self.recompute_totals(order)
                    db.add(order)
            except IntegrityError:
                if not self._number_taken(number):
                    raise
                logger.info("order_number_conflict", attempt=attempt)
                continue
            logger.info(
                "order_created",
                order_number=order.order_number,
                user_id=order.user_id,
                lines=len(order.lines),
                total=str(order.total),
                currency=order.currency,
            )
            return order
        raise NumberAllocationError(self.number_prefix, self.numbers.max_attempts)

    def _number_exists(self, db: Session, number: str) -> bool:
        return db.scalar(select(exists().where(Order.order_number == number)))

    def _number_taken(self, number: str | None) -> bool:
        if number is None:
            return False
        with db_session(self._session_factory) as db:
            return self._number_exists(db, number)

    @staticmethod
    def _build_line(position: int, item: OrderLineIn) -> OrderLine:
        return OrderLine(
            position=position,
            item_type=item.item_type,
            item_id=item.item_id,
            item_name=item.item_name,
            item_description=item.item_description,
            sku=item.sku,
            quantity=item.quantity,
            unit_price=_to_decimal(item.unit_price),
            tax=_to_decimal(item.tax),
            discount=_to_decimal(item.discount),
            meta=json_safe(item.meta),
        )

    @staticmethod
    def recompute_totals(order: Order) -> Order:
        """Recompute line and order totals from the current lines. Idempotent."""
        for line in order.lines:
            line.subtotal = _to_decimal(line.quantity * _to_decimal(line.unit_price))
            line.total = max(ZERO, line.subtotal + _to_decimal(line.tax) - _to_decimal(line.discount))
        totals = compute_totals(order.lines, order.shipping, order.order_tax, order.order_discount)
        order.subtotal = totals.subtotal
        order.tax = totals.tax
        order.shipping = totals.shipping
        order.discount = totals.discount
        order.total = totals.total
        return order

    def lock(self, db: Session, order_id: int) -> Order:
        """Load an order with a row lock held until the transaction ends."""
        order = db.scalar(select(Order).where(Order.id == order_id).with_for_update())
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    def _pending_order(self, db: Session, order_id: int) -> Order:
        order = self.lock(db, order_id)
        if order.status != OrderStatus.PENDING:
            raise ValidationError(
                f"Order {order.order_number} is {order.status.value}; lines can only change while pending"
            )
        return order

    def add_line(self, order_id: int, line: OrderLineIn | Dict[str, Any]) -> Order:
        item = parse_request(OrderLineIn, **(line.model_dump() if isinstance(line, OrderLineIn) else line))
        with db_session(self._session_factory) as db:
            order = self._pending_order(db, order_id)
            position = max((existing.position for existing in order.lines), default=-1) + 1
            order.lines.append(self._build_line(position, item))
            self.recompute_totals(order)
            order.updated_at = self._clock()
        return order

    def remove_line(self, order_id: int, line_id: int) -> Order:
        with db_session(self._session_factory) as db:
            order = self._pending_order(db, order_id)
            line = next((existing for existing in order.lines if existing.id == line_id), None)
            if line is None:
                raise NotFoundError("OrderLine", line_id)
            if len(order.lines) == 1:
                raise ValidationError("An order must keep at least one line")
            order.lines.remove(line)
            self.recompute_totals(order)
            order.updated_at = self._clock()
        return order

    def settle(self, db: Session, order: Order, refunded: bool = False) -> OrderStatus:
        """Re-derive a locked order's status from its successful payments.

        Must run in the same transaction as the payment write that prompted it.
        """
        if order.status == OrderStatus.CANCELLED:
            return order.status
        paid = successful_total(db, order.id)
        if refunded and not has_successful_payments(db, order.id):
            status = OrderStatus.REFUNDED
        elif paid >= order.total:
            status = OrderStatus.COMPLETED
        elif paid > ZERO or refunded:
            status = OrderStatus.PROCESSING
        else:
            status = order.status
        if status != order.status:
            logger.info(
                "order_status_changed",
                order_number=order.order_number,
                previous=order.status.value,
                status=status.value,
                paid=str(paid),
                total=str(order.total),
            )
            order.status = status
            order.updated_at = self._clock()
        return status

    def cancel_order(self, db: Session, order_id: int) -> Order:
        order = self.lock(db, order_id)
        if order.status not in (OrderStatus.PENDING, OrderStatus.PROCESSING):
            raise ValidationError(f"Order {order.order_number} is {order.status.value} and cannot be cancelled")
        if has_successful_payments(db, order.id):
            raise ValidationError(f"Order {order.order_number} has successful payments; refund them first")
        order.status = OrderStatus.CANCELLED
        order.updated_at = self._clock()
        return order

    def get_order(self, order_id: int) -> Order:
        with db_session(self._session_factory) as db:
            order = db.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    def get_order_by_number(self, order_number: str) -> Order:
        with db_session(self._session_factory) as db:
            order = db.scalar(select(Order).where(Order.order_number == order_number))
        if order is None:
            raise NotFoundError("Order", order_number)
        return order

    def list_orders(self, user_id: int | None = None, status: OrderStatus | None = None) -> List[Order]:
        filters = parse_request(OrderFilter, user_id=user_id, status=status)
        stmt = select(Order)
        if filters.user_id is not None:
            stmt = stmt.where(Order.user_id == filters.user_id)
        if filters.status is not None:
            stmt = stmt.where(Order.status == filters.status)
        with db_session(self._session_factory) as db:
            return list(db.scalars(stmt.order_by(Order.created_at.desc(), Order.id.desc())).all())

    def paid_amount(self, order: Order | int) -> Decimal:
        order_id = order.id if isinstance(order, Order) else order
        with db_session(self._session_factory) as db:
            return successful_total(db, order_id)

    def is_paid(self, order: Order | int) -> bool:
        """True once completed and captured payments cover the order total."""
        order_id = order.id if isinstance(order, Order) else order
        with db_session(self._session_factory) as db:
            current = db.get(Order, order_id)
            if current is None:
                raise NotFoundError("Order", order_id)
            return successful_total(db, order_id) >= current.total

    def remaining_balance(self, order: Order | int) -> Decimal:
        order_id = order.id if isinstance(order, Order) else order
        with db_session(self._session_factory) as db:
            current = db.get(Order, order_id)
            if current is None:
                raise NotFoundError("Order", order_id)
            return max(ZERO, current.total - successful_total(db, order_id))
