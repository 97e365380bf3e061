import pytest
from decimal import Decimal
from sqlalchemy.exc import IntegrityError

from core.db import db_session
from models import Order, OrderLine, Payment, PaymentDetail
from models.enums import OrderStatus, PaymentMethod, PaymentStatus


@pytest.fixture
def stored_order(session_factory, clock):
    with db_session(session_factory) as db:
        order = Order(
            user_id=1,
            order_number="ORD-20250124-AAAAAA",
            currency="USD",
            total=Decimal("12.00"),
            created_at=clock(),
            updated_at=clock(),
        )
        order.lines = [
            OrderLine(position=0, item_type="product", quantity=1, unit_price=Decimal("12.00")),
        ]
        db.add(order)
    return order


def make_payment(order, number="PAY-20250124-AAAAAA", status=PaymentStatus.COMPLETED, method=PaymentMethod.STRIPE):
    return Payment(
        order_id=order.id,
        payment_number=number,
        method=method,
        status=status,
        amount=Decimal("12.00"),
        currency="USD",
    )


class TestOrderModel:
    """Test cases for Order model"""

    def test_order_defaults(self, session_factory, stored_order):
        """Test status and money columns default sensibly"""
        with db_session(session_factory) as db:
            order = db.get(Order, stored_order.id)
            assert order.status == OrderStatus.PENDING
            assert order.subtotal == Decimal("0.00")
            assert order.order_discount == Decimal("0.00")
            assert [line.position for line in order.lines] == [0]

    def test_order_number_unique(self, session_factory, stored_order):
        """Test order numbers are unique at the database"""
        with pytest.raises(IntegrityError):
            with db_session(session_factory) as db:
                db.add(Order(user_id=2, order_number=stored_order.order_number, currency="USD"))

    def test_order_status_stored_as_value(self, engine, stored_order):
        """Test enum columns hold the lowercase value"""
        with engine.connect() as conn:
            raw = conn.exec_driver_sql("SELECT status FROM orders").scalar()
        assert raw == "pending"

    def test_order_repr(self, stored_order):
        """Test order repr"""
        assert "ORD-20250124-AAAAAA" in repr(stored_order)


class TestPaymentModel:
    """Test cases for Payment model"""

    def test_payment_defaults(self, session_factory, stored_order):
        """Test a new payment starts pending at version 1 and unclaimed"""
        with db_session(session_factory) as db:
            payment = Payment(
                order_id=stored_order.id,
                payment_number="PAY-20250124-DEFALT",
                method=PaymentMethod.MANUAL_CHECK,
                amount=Decimal("5.00"),
            )
            db.add(payment)
            db.flush()
            assert payment.status == PaymentStatus.PENDING_PAYMENT
            assert payment.version == 1
            assert payment.claim_token is None

    def test_payment_number_unique(self, session_factory, stored_order):
        """Test payment numbers are unique at the database"""
        with db_session(session_factory) as db:
            db.add(make_payment(stored_order))
        with pytest.raises(IntegrityError):
            with db_session(session_factory) as db:
                db.add(make_payment(stored_order))

    def test_can_be_refunded(self, stored_order, clock):
        """Test only successful, unrefunded payments can be refunded"""
        assert make_payment(stored_order, status=PaymentStatus.COMPLETED).can_be_refunded()
        assert make_payment(stored_order, status=PaymentStatus.CAPTURED).can_be_refunded()
        assert not make_payment(stored_order, status=PaymentStatus.PENDING_PAYMENT).can_be_refunded()
        assert not make_payment(stored_order, status=PaymentStatus.FAILED).can_be_refunded()
        refunded = make_payment(stored_order)
        refunded.refunded_at = clock()
        assert not refunded.can_be_refunded()

    def test_details_cascade_with_payment(self, session_factory, stored_order):
        """Test audit rows are removed with their payment"""
        with db_session(session_factory) as db:
            payment = make_payment(stored_order)
            payment.details = [PaymentDetail(detail_type="test", key="k", value="v", data={"a": 1})]
            db.add(payment)
        with db_session(session_factory) as db:
            db.delete(db.get(Payment, payment.id))
        with db_session(session_factory) as db:
            assert db.query(PaymentDetail).count() == 0


class TestStatusEnums:
    """Test status transitions and method codes"""

    def test_forward_transitions(self):
        """Test allowed transitions"""
        assert PaymentStatus.PENDING_PAYMENT.can_transition_to(PaymentStatus.COMPLETED)
        assert PaymentStatus.AUTHORIZED.can_transition_to(PaymentStatus.CAPTURED)
        assert PaymentStatus.CAPTURED.can_transition_to(PaymentStatus.REFUNDED)
        assert PaymentStatus.COMPLETED.can_transition_to(PaymentStatus.REFUNDED)

    def test_backward_transitions_rejected(self):
        """Test terminal and backward transitions are rejected"""
        assert not PaymentStatus.COMPLETED.can_transition_to(PaymentStatus.PENDING_PAYMENT)
        assert not PaymentStatus.FAILED.can_transition_to(PaymentStatus.COMPLETED)
        assert not PaymentStatus.REFUNDED.can_transition_to(PaymentStatus.COMPLETED)
        assert not PaymentStatus.CANCELLED.can_transition_to(PaymentStatus.PENDING_PAYMENT)
        assert not PaymentStatus.PENDING_PAYMENT.can_transition_to(PaymentStatus.REFUNDED)

    def test_method_codes(self):
        """Test two-letter method codes round trip"""
        assert PaymentMethod.STRIPE.code == "ST"
        assert PaymentMethod.from_code("mc") == PaymentMethod.MANUAL_CHECK
        assert PaymentMethod.from_code("ZZ") is None
