from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class OrderLineIn(BaseModel):
    item_type: str = Field(default="product", min_length=1, max_length=50)
    item_id: Optional[int] = None
    item_name: Optional[str] = None
    item_description: Optional[str] = None
    sku: Optional[str] = None
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    tax: Decimal = Field(default=Decimal("0.00"), ge=0, max_digits=12, decimal_places=2)
    discount: Decimal = Field(default=Decimal("0.00"), ge=0, max_digits=12, decimal_places=2)
    meta: Optional[Dict[str, Any]] = None


class OrderOptions(BaseModel):
    currency: Optional[str] = Field(default=None, pattern=r"^[A-Za-z]{3}$")
    tax: Decimal = Field(default=Decimal("0.00"), ge=0, max_digits=12, decimal_places=2)
    shipping: Decimal = Field(default=Decimal("0.00"), ge=0, max_digits=12, decimal_places=2)
    discount: Decimal = Field(default=Decimal("0.00"), ge=0, max_digits=12, decimal_places=2)
    customer_notes: Optional[str] = None
    admin_notes: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None


class OrderCreate(BaseModel):
    user_id: int
    items: List[OrderLineIn] = Field(min_length=1)
    options: OrderOptions = Field(default_factory=OrderOptions)
