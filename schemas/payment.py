from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class PaymentCreate(BaseModel):
    order_id: int
    method: str = Field(min_length=1)
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    gateway_data: Dict[str, Any] = Field(default_factory=dict)


class RefundRequest(BaseModel):
    payment_id: int
    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=12, decimal_places=2)
