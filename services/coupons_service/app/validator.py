"""
Coupon validation.

Pure read-and-compute: given the stored coupon and the cart total before any
coupon (item discounts and shipping already applied), decide whether the
coupon applies and how much it takes off. Calling it again with another total
is always safe.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from shared.utils import NotFoundException, InvalidException, to_decimal, naive_utc
from services.coupons_service.app.models import DiscountType

class CouponNotFound(NotFoundException):
    def __init__(self):
        super().__init__(detail="Invalid coupon code")

class CouponInactive(InvalidException):
    def __init__(self):
        super().__init__(detail="Coupon is no longer active")

class CouponExpired(InvalidException):
    def __init__(self):
        super().__init__(detail="Coupon has expired")

class BelowMinimum(InvalidException):
    def __init__(self, min_order_amount: Decimal):
        super().__init__(
            detail=f"Minimum order amount of ₹{min_order_amount:.2f} required",
            details={"min_order_amount": str(min_order_amount)}
        )

class CouponValidation(BaseModel):
    code: str
    discount_amount: Decimal
    discount_type: DiscountType
    discount_value: Decimal

def normalize_code(code: str) -> str:
    return code.strip().upper()

def compute_discount(discount_type: str, discount_value: Decimal, total_amount: Decimal) -> Decimal:
    if discount_type == DiscountType.PERCENT:
        raw = total_amount * discount_value / 100
    else:
        raw = discount_value
    # A coupon can never make the payable amount negative
    return min(raw, total_amount)

def validate_coupon(coupon: Optional[dict], total_amount, now: Optional[datetime] = None) -> CouponValidation:
    if not coupon:
        raise CouponNotFound()
    if not coupon.get("is_active", True):
        raise CouponInactive()

    now = now or datetime.utcnow()
    if naive_utc(coupon["expiry_date"]) < naive_utc(now):
        raise CouponExpired()

    total_amount = to_decimal(total_amount)
    min_order_amount = to_decimal(coupon.get("min_order_amount"))
    if total_amount < min_order_amount:
        raise BelowMinimum(min_order_amount)

    discount_value = to_decimal(coupon["discount_value"])
    discount_type = coupon.get("discount_type", DiscountType.PERCENT.value)

    return CouponValidation(
        code=coupon["code"],
        discount_amount=compute_discount(discount_type, discount_value, total_amount),
        discount_type=discount_type,
        discount_value=discount_value
    )
