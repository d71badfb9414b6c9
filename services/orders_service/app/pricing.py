"""
Checkout pricing.

All amounts are Decimal rupees. `items_price` is the MRP-based subtotal shown to
the shopper, so the difference to the selling-price subtotal reads as "you
saved". Products without a real MRP get a synthetic one of price * 1.1.

COD orders pay a flat advance fee online to deter fake orders; the remaining
balance is collected at the door. COD is not offered at or above the order
limit.
"""
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel

from shared.utils import InvalidException, round_money, settings, to_decimal

class PaymentMethod(str, Enum):
    ONLINE = "Online"
    COD = "COD"

# Orders placed before the gateway-neutral name was introduced
LEGACY_METHODS = {"Razorpay": PaymentMethod.ONLINE}

class CodNotAvailable(InvalidException):
    def __init__(self, limit: Decimal):
        super().__init__(
            detail=f"Cash on Delivery is not available for orders of ₹{limit:.2f} or more",
            details={"cod_order_limit": str(limit)}
        )

class OrderPrices(BaseModel):
    items_price: Decimal
    item_discount: Decimal
    shipping_price: Decimal
    coupon_discount: Decimal
    tax_price: Decimal
    total_price: Decimal

def normalize_payment_method(value) -> PaymentMethod:
    if isinstance(value, str) and value in LEGACY_METHODS:
        return LEGACY_METHODS[value]
    return PaymentMethod(value)

def effective_mrp(price, original_price=None) -> Decimal:
    price = to_decimal(price)
    original_price = to_decimal(original_price)
    if original_price > price:
        return original_price
    return (price * settings.MRP_FALLBACK_MARKUP).quantize(Decimal("1"), rounding=ROUND_HALF_UP)

def items_mrp_total(items: Iterable) -> Decimal:
    return sum((item.qty * effective_mrp(item.price, item.original_price) for item in items), Decimal(0))

def selling_subtotal(items: Iterable) -> Decimal:
    return sum((item.qty * to_decimal(item.price) for item in items), Decimal(0))

def check_cod_available(method: PaymentMethod, subtotal: Decimal):
    if method == PaymentMethod.COD and subtotal >= settings.COD_ORDER_LIMIT:
        raise CodNotAvailable(settings.COD_ORDER_LIMIT)

def shipping_fee(method: PaymentMethod, subtotal: Decimal) -> Decimal:
    check_cod_available(method, subtotal)
    if method == PaymentMethod.ONLINE:
        return Decimal(0)
    return settings.COD_ADVANCE_FEE

def coupon_base(items: list, method: PaymentMethod) -> Decimal:
    """The total a coupon is validated against: selling subtotal plus shipping."""
    subtotal = selling_subtotal(items)
    return round_money(subtotal + shipping_fee(method, subtotal))

def calculate_prices(items: list, method: PaymentMethod, coupon_discount: Optional[Decimal] = None) -> OrderPrices:
    subtotal = selling_subtotal(items)
    shipping = shipping_fee(method, subtotal)
    items_price = items_mrp_total(items)
    coupon_discount = to_decimal(coupon_discount)

    total = subtotal - coupon_discount + shipping
    return OrderPrices(
        items_price=round_money(items_price),
        item_discount=round_money(items_price - subtotal),
        shipping_price=round_money(shipping),
        coupon_discount=round_money(coupon_discount),
        tax_price=round_money(Decimal(0)),
        total_price=round_money(max(total, Decimal(0)))
    )

def amount_to_charge(total_price, shipping_price, method: PaymentMethod) -> Decimal:
    """Online orders pay everything up front; COD orders pay only the advance fee.

    The advance never exceeds the order total, so a COD order a coupon makes
    free has nothing to charge.
    """
    if method == PaymentMethod.ONLINE:
        return to_decimal(total_price)
    return min(to_decimal(shipping_price), to_decimal(total_price))
