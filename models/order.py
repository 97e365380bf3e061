from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, DateTime, Integer, Text, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.clock import utcnow
from core.db import Base
from models.enums import OrderStatus
from models.types import Money, enum_column


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, index=True)
    order_number: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    status: Mapped[OrderStatus] = mapped_column(enum_column(OrderStatus), default=OrderStatus.PENDING, index=True)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    subtotal: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"))
    tax: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"))
    shipping: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"))
    discount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"))
    total: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"))
    # Order-level adjustments not attributed to a single line
    order_tax: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"))
    order_discount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"))
    customer_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    lines = relationship(
        "OrderLine",
        cascade="all, delete-orphan",
        back_populates="order",
        order_by="OrderLine.position",
        lazy="selectin",
    )
    payments = relationship("Payment", cascade="all, delete-orphan", back_populates="order", passive_deletes=True)

    def __repr__(self) -> str:
        return f"<Order {self.order_number} {self.status.value} total={self.total}>"
