from pydantic import BaseModel, Field, field_validator
from typing import Optional
from decimal import Decimal
from datetime import datetime
from shared.security_config import sanitize_input

class IntentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0) # rupees
    receipt: str

class IntentResponse(BaseModel):
    id: str
    amount: int # paise
    currency: str
    key_id: Optional[str] = None

class GatewayKey(BaseModel):
    key_id: str

class PaymentVerify(BaseModel):
    order_id: str
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str

    @field_validator('order_id', 'razorpay_order_id', 'razorpay_payment_id', 'razorpay_signature')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class PaymentVerified(BaseModel):
    order_id: str
    payment_id: str
    is_paid: bool = True

class PaymentResponse(BaseModel):
    id: str
    order_id: str
    user_id: str
    amount: Decimal
    gateway_order_id: str
    gateway_payment_id: str
    status: str
    created_at: datetime
