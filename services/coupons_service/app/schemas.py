from pydantic import BaseModel, Field, field_validator
from typing import Optional
from decimal import Decimal
from datetime import datetime
from shared.security_config import sanitize_input
from shared.utils import naive_utc
from services.coupons_service.app.models import DiscountType
from services.coupons_service.app.validator import normalize_code

class CouponCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=32)
    discount_type: DiscountType = DiscountType.PERCENT
    discount_value: Decimal = Field(..., gt=0)
    min_order_amount: Decimal = Field(Decimal(0), ge=0)
    expiry_date: datetime
    is_active: bool = True

    @field_validator('code')
    def clean_code(cls, v):
        return normalize_code(sanitize_input(v))

    @field_validator('expiry_date')
    def expiry_as_utc(cls, v):
        return naive_utc(v)

class CouponUpdate(BaseModel):
    is_active: Optional[bool] = None

class CouponResponse(BaseModel):
    id: str
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    min_order_amount: Decimal
    expiry_date: datetime
    is_active: bool
    created_at: datetime
    updated_at: Optional[datetime] = None

class CouponValidate(BaseModel):
    code: str = Field(..., min_length=1)
    total_amount: Decimal = Field(..., ge=0)

    @field_validator('code')
    def clean_code(cls, v):
        return normalize_code(sanitize_input(v))
