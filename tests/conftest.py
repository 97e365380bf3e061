"""
Shared fixtures: an isolated in-memory database per test, a fixed clock,
a seeded number generator and a configurable fake gateway.
"""
import random
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from core.db import build_engine, build_session_factory
from main import create_tables
from models.enums import PaymentMethod, PaymentStatus
from services.gateways.manual_check_adapter import ManualCheckGateway
from services.gateways.port import AuditEntry, GatewayResult, PaymentGateway
from services.gateways.registry import GatewayRegistry
from services.numbers import NumberGenerator
from services.orchestrator import PaymentOrchestrator
from services.orders import OrderLedger
from services.payments import PaymentLedger

FIXED_NOW = datetime(2025, 1, 24, 12, 0, 0)


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway that records every call."""

    method = PaymentMethod.STRIPE

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.status: PaymentStatus | None = None
        self.failure_reason: str = "Card declined"
        self.refund_succeeds: bool = True
        self.remote_status: PaymentStatus | None = None
        self.raise_error: Exception | None = None
        self.client_data: dict = {}
        self.calls: list[dict] = []

    def configure(
        self,
        should_succeed: bool = True,
        status: PaymentStatus | None = None,
        failure_reason: str = "Card declined",
    ) -> None:
        self.should_succeed = should_succeed
        self.status = status
        self.failure_reason = failure_reason

    def process(self, payment, data):
        self.calls.append({"method": "process", "payment_id": payment.id, "data": dict(data)})
        if self.raise_error is not None:
            raise self.raise_error
        if self.should_succeed:
            return GatewayResult(
                success=True,
                status=self.status,
                transaction_id=f"fake_txn_{uuid4().hex[:12]}",
                details=(AuditEntry(detail_type="fake_gateway", key="charge", value="ok"),),
                client_data=dict(self.client_data),
            )
        return GatewayResult.failed(self.failure_reason)

    def refund(self, payment, amount: Decimal):
        self.calls.append({"method": "refund", "payment_id": payment.id, "amount": amount})
        if self.refund_succeeds:
            return GatewayResult(success=True, extra={"refund_id": f"fake_ref_{uuid4().hex[:12]}"})
        return GatewayResult.failed("Refund declined")

    def verify(self, payment):
        self.calls.append({"method": "verify", "payment_id": payment.id})
        return GatewayResult(success=True, status=self.remote_status or payment.status)


@pytest.fixture
def clock():
    """A clock frozen at FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def engine():
    """Create a fresh in-memory database for each test."""
    engine = build_engine("sqlite:///:memory:")
    create_tables(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def numbers(clock):
    return NumberGenerator(clock=clock, rng=random.Random(42))


@pytest.fixture
def order_ledger(session_factory, numbers, clock):
    return OrderLedger(session_factory=session_factory, numbers=numbers, clock=clock)


@pytest.fixture
def payment_ledger(session_factory, numbers, clock):
    return PaymentLedger(session_factory=session_factory, numbers=numbers, clock=clock)


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def registry(fake_gateway, clock):
    registry = GatewayRegistry()
    registry.register(PaymentMethod.STRIPE, fake_gateway)
    registry.register(PaymentMethod.MANUAL_CHECK, ManualCheckGateway(clock=clock))
    return registry


@pytest.fixture
def orchestrator(registry, order_ledger, payment_ledger, session_factory, clock):
    return PaymentOrchestrator(
        registry=registry,
        orders=order_ledger,
        payments=payment_ledger,
        session_factory=session_factory,
        clock=clock,
    )


@pytest.fixture
def order(order_ledger):
    """Two lines plus 1.50 order tax: subtotal 25.00, total 26.50."""
    return order_ledger.create_order(
        user_id=7,
        line_items=[
            {"item_name": "Widget", "sku": "W-1", "quantity": 2, "unit_price": "10.00"},
            {"item_name": "Gadget", "sku": "G-1", "quantity": 1, "unit_price": "5.00"},
        ],
        options={"tax": "1.50"},
    )
