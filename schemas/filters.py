from typing import Optional

from pydantic import BaseModel

from models.enums import OrderStatus, PaymentMethod, PaymentStatus


class OrderFilter(BaseModel):
    user_id: Optional[int] = None
    status: Optional[OrderStatus] = None


class PaymentFilter(BaseModel):
    order_id: Optional[int] = None
    user_id: Optional[int] = None
    status: Optional[PaymentStatus] = None
    method: Optional[PaymentMethod] = None
