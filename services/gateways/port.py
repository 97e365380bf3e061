"""Payment gateway port (abstract interface).

Defines the contract every payment method adapter implements. The
orchestrator only ever talks to providers through ``process``, ``refund``
and ``verify``; adapters report provider failures as unsuccessful results
instead of raising.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from models.enums import PaymentMethod, PaymentStatus
from models.payment import Payment


@dataclass(frozen=True)
class AuditEntry:
    """A PaymentDetail row the adapter wants appended to the audit trail."""

    detail_type: str
    key: str
    value: str | None = None
    data: dict[str, Any] | None = None


@dataclass(frozen=True)
class GatewayResult:
    """Result of a process/refund/verify call."""

    success: bool
    status: PaymentStatus | None = None
    transaction_id: str | None = None
    authorization_code: str | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)
    details: tuple[AuditEntry, ...] = ()
    # Handed back to the caller only; never stored or audited
    client_data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failed(cls, error: str, **kwargs) -> "GatewayResult":
        return cls(success=False, error=error, **kwargs)

    def summary(self) -> dict[str, Any]:
        """View of the result for the audit trail, without ``client_data``."""
        return {
            "success": self.success,
            "status": self.status.value if self.status else None,
            "transaction_id": self.transaction_id,
            "authorization_code": self.authorization_code,
            "error": self.error,
            "extra": dict(self.extra),
            "details": [asdict(d) for d in self.details],
        }


def to_minor_units(amount: Decimal) -> int:
    """Convert a currency amount to cents."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    method: PaymentMethod

    @abstractmethod
    def process(self, payment: Payment, data: dict[str, Any]) -> GatewayResult:
        """Collect funds for a payment."""
        ...

    @abstractmethod
    def refund(self, payment: Payment, amount: Decimal) -> GatewayResult:
        """Return funds for a previously successful payment."""
        ...

    @abstractmethod
    def verify(self, payment: Payment) -> GatewayResult:
        """Ask the provider for the payment's current status."""
        ...
