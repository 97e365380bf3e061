from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"

    def can_transition_to(self, target: "PaymentStatus") -> bool:
        return target in PAYMENT_TRANSITIONS[self]


# Statuses only move forward; captured/completed -> refunded is the one way back.
PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING_PAYMENT: frozenset({
        PaymentStatus.PENDING_PAYMENT,
        PaymentStatus.AUTHORIZED,
        PaymentStatus.CAPTURED,
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    }),
    PaymentStatus.AUTHORIZED: frozenset({
        PaymentStatus.AUTHORIZED,
        PaymentStatus.CAPTURED,
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    }),
    PaymentStatus.CAPTURED: frozenset({PaymentStatus.COMPLETED, PaymentStatus.REFUNDED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
}

SUCCESSFUL_STATUSES = (PaymentStatus.COMPLETED, PaymentStatus.CAPTURED)
RESUMABLE_STATUSES = (PaymentStatus.PENDING_PAYMENT, PaymentStatus.AUTHORIZED)


class PaymentMethod(str, Enum):
    STRIPE = "stripe"
    PAYPAL = "paypal"
    APPLE_PAY = "apple_pay"
    GOOGLE_PAY = "google_pay"
    MANUAL_CHECK = "manual_check"

    @property
    def code(self) -> str:
        return _PAYMENT_METHOD_CODES[self]

    @classmethod
    def from_code(cls, code: str) -> "PaymentMethod | None":
        return _METHODS_BY_CODE.get(code.upper())


_PAYMENT_METHOD_CODES = {
    PaymentMethod.STRIPE: "ST",
    PaymentMethod.PAYPAL: "PP",
    PaymentMethod.APPLE_PAY: "AP",
    PaymentMethod.GOOGLE_PAY: "GP",
    PaymentMethod.MANUAL_CHECK: "MC",
}
_METHODS_BY_CODE = {code: method for method, code in _PAYMENT_METHOD_CODES.items()}
