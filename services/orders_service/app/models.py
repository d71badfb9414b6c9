from datetime import datetime
from typing import Optional, List
from decimal import Decimal
from pydantic import BaseModel, Field

class OrderItemDB(BaseModel):
    # Snapshot of the catalog entry at checkout; never re-linked
    product_id: str
    name: str
    image: Optional[str] = None
    price: Decimal
    original_price: Decimal = Decimal(0)
    qty: int
    shipping_price: Decimal = Decimal(0)
    size: Optional[str] = None
    color: Optional[str] = None

class ShippingAddress(BaseModel):
    address: str
    city: str
    postal_code: str
    country: str

class PaymentResult(BaseModel):
    id: str
    gateway_order_id: Optional[str] = None
    status: str = "captured"

class OrderDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    order_items: List[OrderItemDB]
    shipping_address: ShippingAddress
    payment_method: str # Online, COD
    items_price: Decimal
    shipping_price: Decimal
    tax_price: Decimal = Decimal(0)
    total_price: Decimal
    coupon_code: Optional[str] = None
    coupon_discount: Decimal = Decimal(0)
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    payment_result: Optional[PaymentResult] = None
    gateway_order_id: Optional[str] = None
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None
    status: Optional[str] = None # admin override, see tracking.OrderStatus
    courier_name: Optional[str] = None
    tracking_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True
