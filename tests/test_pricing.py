from decimal import Decimal

import pytest

from services.orders_service.app.models import OrderItemDB
from services.orders_service.app.pricing import (
    PaymentMethod, CodNotAvailable, calculate_prices, coupon_base, amount_to_charge,
    effective_mrp, normalize_payment_method
)

def item(price, qty=1, original_price=0):
    return OrderItemDB(product_id="p1", name="Item", price=price, original_price=original_price, qty=qty)

def test_online_order_has_no_shipping():
    prices = calculate_prices([item(800, original_price=1000)], PaymentMethod.ONLINE)
    assert prices.items_price == Decimal("1000.00")
    assert prices.item_discount == Decimal("200.00")
    assert prices.shipping_price == Decimal("0.00")
    assert prices.tax_price == Decimal("0.00")
    assert prices.total_price == Decimal("800.00")

def test_cod_charges_flat_advance_fee():
    prices = calculate_prices([item(300, qty=2)], PaymentMethod.COD)
    assert prices.shipping_price == Decimal("69.00")
    assert prices.total_price == Decimal("669.00")
    assert amount_to_charge(prices.total_price, prices.shipping_price, PaymentMethod.COD) == Decimal("69.00")

def test_cod_rejected_at_limit():
    with pytest.raises(CodNotAvailable) as exc:
        calculate_prices([item(1500)], PaymentMethod.COD)
    assert exc.value.status_code == 400

    with pytest.raises(CodNotAvailable):
        calculate_prices([item(600, qty=2)], PaymentMethod.COD)

def test_cod_limit_uses_selling_price_not_mrp():
    prices = calculate_prices([item(1100, original_price=2000)], PaymentMethod.COD)
    assert prices.items_price == Decimal("2000.00")
    assert prices.shipping_price == Decimal("69.00")

def test_fallback_mrp_when_no_real_mrp():
    assert effective_mrp(Decimal("499")) == Decimal("549")
    assert effective_mrp(Decimal("100"), Decimal("100")) == Decimal("110")
    # 45 * 1.1 = 49.5 rounds half up
    assert effective_mrp(Decimal("45")) == Decimal("50")
    assert effective_mrp(Decimal("100"), Decimal("150")) == Decimal("150")

def test_items_price_sums_quantities():
    prices = calculate_prices([item(200, qty=3), item(100, original_price=120)], PaymentMethod.ONLINE)
    assert prices.items_price == Decimal("780.00")
    assert prices.item_discount == Decimal("80.00")
    assert prices.total_price == Decimal("700.00")

def test_coupon_discount_reduces_total():
    prices = calculate_prices([item(500)], PaymentMethod.COD, Decimal("56.90"))
    assert prices.coupon_discount == Decimal("56.90")
    assert prices.total_price == Decimal("512.10")

def test_total_never_negative():
    prices = calculate_prices([item(100)], PaymentMethod.ONLINE, Decimal("250"))
    assert prices.total_price == Decimal("0.00")

def test_coupon_base_includes_shipping():
    assert coupon_base([item(500)], PaymentMethod.COD) == Decimal("569.00")
    assert coupon_base([item(500)], PaymentMethod.ONLINE) == Decimal("500.00")

def test_cod_advance_capped_at_total():
    prices = calculate_prices([item(100)], PaymentMethod.COD, Decimal("169"))
    assert prices.total_price == Decimal("0.00")
    assert amount_to_charge(prices.total_price, prices.shipping_price, PaymentMethod.COD) == Decimal("0.00")

    prices = calculate_prices([item(100)], PaymentMethod.COD, Decimal("120"))
    assert prices.total_price == Decimal("49.00")
    assert amount_to_charge(prices.total_price, prices.shipping_price, PaymentMethod.COD) == Decimal("49.00")

def test_online_charges_full_total():
    assert amount_to_charge(Decimal("812.50"), Decimal("0"), PaymentMethod.ONLINE) == Decimal("812.50")

def test_money_is_rounded_to_paise():
    prices = calculate_prices([item("33.335", qty=3)], PaymentMethod.ONLINE)
    assert prices.total_price == Decimal("100.01")

def test_legacy_payment_method():
    assert normalize_payment_method("Razorpay") == PaymentMethod.ONLINE
    assert normalize_payment_method("COD") == PaymentMethod.COD
    with pytest.raises(ValueError):
        normalize_payment_method("Cheque")
