from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.clock import utcnow
from core.db import Base
from models.enums import PaymentMethod, PaymentStatus, SUCCESSFUL_STATUSES
from models.types import Money, enum_column


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    payment_number: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    method: Mapped[PaymentMethod] = mapped_column(enum_column(PaymentMethod), index=True)
    status: Mapped[PaymentStatus] = mapped_column(
        enum_column(PaymentStatus), default=PaymentStatus.PENDING_PAYMENT, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Money)
    refunded_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    authorization_code: Mapped[str | None] = mapped_column(String(255), nullable=True)
    authorized_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    captured_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    # Bumped by every status write; claim_token marks an in-flight gateway call
    version: Mapped[int] = mapped_column(Integer, default=1)
    claim_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    # Gateway values for the caller, e.g. a Stripe client_secret. Not a column.
    client_data = None

    order = relationship("Order", back_populates="payments")
    details = relationship(
        "PaymentDetail",
        back_populates="payment",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PaymentDetail.id",
    )

    def is_successful(self) -> bool:
        return self.status in SUCCESSFUL_STATUSES

    def can_be_refunded(self) -> bool:
        return self.is_successful() and self.refunded_at is None

    def __repr__(self) -> str:
        return f"<Payment {self.payment_number} {self.method.value} {self.status.value} amount={self.amount}>"
