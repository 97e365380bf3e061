import pytest
from decimal import Decimal
from types import SimpleNamespace

from core.db import db_session
from core.errors import NotFoundError, ValidationError
from models.enums import OrderStatus, PaymentMethod
from services.orders import OrderLedger, compute_totals


def line(quantity, unit_price, tax="0", discount="0"):
    return SimpleNamespace(
        quantity=quantity, unit_price=Decimal(unit_price), tax=Decimal(tax), discount=Decimal(discount)
    )


class TestComputeTotals:
    """Test order total arithmetic"""

    def test_basic_totals(self):
        """Test subtotal is quantity times unit price, plus tax and shipping"""
        totals = compute_totals([line(2, "10.00"), line(1, "5.00")], shipping=Decimal("4.00"), order_tax=Decimal("1.50"))
        assert totals.subtotal == Decimal("25.00")
        assert totals.tax == Decimal("1.50")
        assert totals.total == Decimal("30.50")

    def test_line_tax_and_discount_are_summed(self):
        """Test line-level tax and discount roll up with order-level ones"""
        totals = compute_totals(
            [line(1, "10.00", tax="1.00", discount="2.00"), line(3, "1.00", tax="0.30")],
            order_discount=Decimal("1.00"),
        )
        assert totals.tax == Decimal("1.30")
        assert totals.discount == Decimal("3.00")
        assert totals.total == Decimal("11.30")

    def test_total_clamps_at_zero(self):
        """Test a discount larger than the order never yields a negative total"""
        totals = compute_totals([line(1, "5.00")], order_discount=Decimal("50.00"))
        assert totals.total == Decimal("0.00")

    def test_rounds_half_up(self):
        """Test amounts are quantized to cents"""
        totals = compute_totals([line(3, "0.335")])
        assert totals.subtotal == Decimal("1.02")


class TestCreateOrder:
    """Test order creation"""

    def test_create_order(self, order):
        """Test a created order is pending with computed totals"""
        assert order.id is not None
        assert order.status == OrderStatus.PENDING
        assert order.order_number.startswith("ORD-20250124-")
        assert order.currency == "USD"
        assert order.subtotal == Decimal("25.00")
        assert order.tax == Decimal("1.50")
        assert order.total == Decimal("26.50")
        assert [l.position for l in order.lines] == [0, 1]
        assert order.lines[0].subtotal == Decimal("20.00")

    def test_options_are_applied(self, order_ledger):
        """Test currency, shipping, discount and notes come from options"""
        order = order_ledger.create_order(
            user_id=3,
            line_items=[{"quantity": 1, "unit_price": "40.00"}],
            options={"currency": "eur", "shipping": "5.00", "discount": "10.00", "customer_notes": "ring twice"},
        )
        assert order.currency == "EUR"
        assert order.total == Decimal("35.00")
        assert order.customer_notes == "ring twice"

    def test_order_numbers_are_distinct(self, order_ledger):
        """Test consecutive orders get different numbers"""
        items = [{"quantity": 1, "unit_price": "1.00"}]
        first = order_ledger.create_order(1, items)
        second = order_ledger.create_order(1, items)
        assert first.order_number != second.order_number

    @pytest.mark.parametrize(
        "items",
        [
            [],
            [{"quantity": 0, "unit_price": "1.00"}],
            [{"quantity": 1, "unit_price": "-1.00"}],
            [{"quantity": 1}],
        ],
    )
    def test_invalid_lines_rejected(self, order_ledger, session_factory, items):
        """Test malformed line items raise ValidationError and persist nothing"""
        with pytest.raises(ValidationError):
            order_ledger.create_order(1, items)
        assert order_ledger.list_orders() == []

    def test_validation_error_lists_fields(self, order_ledger):
        """Test the error carries per-field messages"""
        with pytest.raises(ValidationError) as exc_info:
            order_ledger.create_order(1, [{"quantity": -2, "unit_price": "1.00"}])
        assert any("quantity" in err["field"] for err in exc_info.value.errors)

    def test_number_conflict_retries(self, order_ledger, order):
        """Test a number taken between the check and the insert is retried"""
        fresh = "ORD-20250124-FRESH1"
        candidates = iter([order.order_number, fresh])
        order_ledger.numbers.generate = lambda prefix, exists_check: next(candidates)
        created = order_ledger.create_order(1, [{"quantity": 1, "unit_price": "1.00"}])
        assert created.order_number == fresh


class TestRecomputeTotals:
    """Test recomputation after edits"""

    def test_recompute_is_idempotent(self, order):
        """Test recomputing twice does not double-count order-level adjustments"""
        OrderLedger.recompute_totals(order)
        OrderLedger.recompute_totals(order)
        assert order.tax == Decimal("1.50")
        assert order.total == Decimal("26.50")

    def test_add_line(self, order_ledger, order):
        """Test adding a line updates totals and position"""
        updated = order_ledger.add_line(order.id, {"item_name": "Cable", "quantity": 3, "unit_price": "2.00"})
        assert updated.total == Decimal("32.50")
        assert [l.position for l in updated.lines] == [0, 1, 2]
        assert order_ledger.get_order(order.id).total == Decimal("32.50")

    def test_remove_line(self, order_ledger, order):
        """Test removing a line updates totals"""
        updated = order_ledger.remove_line(order.id, order.lines[1].id)
        assert updated.subtotal == Decimal("20.00")
        assert updated.total == Decimal("21.50")
        assert len(order_ledger.get_order(order.id).lines) == 1

    def test_remove_last_line_rejected(self, order_ledger):
        """Test an order keeps at least one line"""
        order = order_ledger.create_order(1, [{"quantity": 1, "unit_price": "1.00"}])
        with pytest.raises(ValidationError):
            order_ledger.remove_line(order.id, order.lines[0].id)

    def test_remove_unknown_line(self, order_ledger, order):
        """Test removing a missing line raises NotFoundError"""
        with pytest.raises(NotFoundError):
            order_ledger.remove_line(order.id, 9999)

    def test_lines_frozen_once_paid(self, orchestrator, order_ledger, order):
        """Test lines cannot change after the order leaves pending"""
        orchestrator.process_payment(order, PaymentMethod.MANUAL_CHECK, "10.00")
        with pytest.raises(ValidationError):
            order_ledger.add_line(order.id, {"quantity": 1, "unit_price": "1.00"})


class TestOrderQueries:
    """Test order reads"""

    def test_get_order_not_found(self, order_ledger):
        """Test a missing order raises NotFoundError"""
        with pytest.raises(NotFoundError):
            order_ledger.get_order(404)

    def test_get_by_number(self, order_ledger, order):
        """Test lookup by order number"""
        assert order_ledger.get_order_by_number(order.order_number).id == order.id

    def test_list_orders_filters(self, order_ledger, order):
        """Test listing by user and status"""
        other = order_ledger.create_order(8, [{"quantity": 1, "unit_price": "1.00"}])
        assert [o.id for o in order_ledger.list_orders(user_id=7)] == [order.id]
        assert {o.id for o in order_ledger.list_orders(status=OrderStatus.PENDING)} == {order.id, other.id}
        assert order_ledger.list_orders(status=OrderStatus.COMPLETED) == []
        assert {o.id for o in order_ledger.list_orders(status="pending")} == {order.id, other.id}

    def test_list_orders_bad_status(self, order_ledger):
        """Test an unknown status raises ValidationError"""
        with pytest.raises(ValidationError):
            order_ledger.list_orders(status="bogus")

    def test_unpaid_order_balance(self, order_ledger, order):
        """Test a fresh order is unpaid with the full balance due"""
        assert not order_ledger.is_paid(order)
        assert order_ledger.paid_amount(order) == Decimal("0.00")
        assert order_ledger.remaining_balance(order.id) == Decimal("26.50")

    def test_zero_total_order_is_paid(self, order_ledger):
        """Test an order discounted to zero counts as paid"""
        order = order_ledger.create_order(
            1, [{"quantity": 1, "unit_price": "5.00"}], options={"discount": "9.00"}
        )
        assert order.total == Decimal("0.00")
        assert order_ledger.is_paid(order)


class TestCancelOrder:
    """Test order cancellation rules"""

    def test_cancel_pending_order(self, order_ledger, session_factory, order):
        """Test an unpaid order can be cancelled"""
        with db_session(session_factory) as db:
            cancelled = order_ledger.cancel_order(db, order.id)
        assert cancelled.status == OrderStatus.CANCELLED

    def test_cancel_twice_rejected(self, order_ledger, session_factory, order):
        """Test a cancelled order cannot be cancelled again"""
        with db_session(session_factory) as db:
            order_ledger.cancel_order(db, order.id)
        with pytest.raises(ValidationError):
            with db_session(session_factory) as db:
                order_ledger.cancel_order(db, order.id)
