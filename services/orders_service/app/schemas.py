from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from shared.security_config import sanitize_input
from services.orders_service.app.models import OrderItemDB, ShippingAddress, PaymentResult
from services.orders_service.app.pricing import PaymentMethod, normalize_payment_method
from services.orders_service.app.tracking import OrderStatus

class OrderItemCreate(BaseModel):
    # Prices sent by the client are ignored; the catalog is re-read at checkout
    product_id: str
    qty: int = Field(..., gt=0)
    size: Optional[str] = None
    color: Optional[str] = None

    @field_validator('product_id', 'size', 'color')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class ShippingAddressIn(ShippingAddress):
    @field_validator('address', 'city', 'postal_code', 'country')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class OrderCreate(BaseModel):
    order_items: List[OrderItemCreate] = Field(..., min_length=1)
    shipping_address: ShippingAddressIn
    payment_method: PaymentMethod = PaymentMethod.ONLINE
    coupon_code: Optional[str] = None

    @field_validator('payment_method', mode='before')
    def legacy_payment_method(cls, v):
        return normalize_payment_method(v)

    @field_validator('coupon_code')
    def sanitize_coupon(cls, v):
        v = sanitize_input(v)
        return v or None

class PaymentIntent(BaseModel):
    id: str
    amount: int # paise
    currency: str
    key_id: Optional[str] = None

class OrderResponse(BaseModel):
    id: str
    user_id: str
    order_items: List[OrderItemDB]
    shipping_address: ShippingAddress
    payment_method: str
    items_price: Decimal
    shipping_price: Decimal
    tax_price: Decimal
    total_price: Decimal
    coupon_code: Optional[str] = None
    coupon_discount: Decimal
    is_paid: bool
    paid_at: Optional[datetime] = None
    payment_result: Optional[PaymentResult] = None
    gateway_order_id: Optional[str] = None
    is_delivered: bool
    delivered_at: Optional[datetime] = None
    status: Optional[str] = None
    courier_name: Optional[str] = None
    tracking_id: Optional[str] = None
    tracking_stage: int
    tracking_label: str
    advance_amount: Decimal
    balance_on_delivery: Decimal
    created_at: datetime
    updated_at: Optional[datetime] = None

class OrderCreated(BaseModel):
    order: OrderResponse
    payment_required: bool
    payment_intent: Optional[PaymentIntent] = None

class TrackingUpdate(BaseModel):
    status: OrderStatus
    courier_name: Optional[str] = None
    tracking_id: Optional[str] = None

    @field_validator('courier_name', 'tracking_id')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class OrderPaid(BaseModel):
    payment_id: str
    gateway_order_id: Optional[str] = None
