from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

class DiscountType(str, Enum):
    PERCENT = "percent"
    FIXED = "fixed"

class CouponDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    code: str # stored uppercase
    discount_type: DiscountType = DiscountType.PERCENT
    discount_value: Decimal
    min_order_amount: Decimal = Decimal(0)
    expiry_date: datetime
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True
        use_enum_values = True
