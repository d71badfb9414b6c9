from datetime import datetime
from typing import Optional
from decimal import Decimal
from pydantic import BaseModel, Field

class PaymentDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    order_id: str
    user_id: str
    amount: Decimal
    gateway_order_id: str
    gateway_payment_id: str
    status: str = "captured"
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True
