#!/usr/bin/env python3
"""
Integration Test Suite for the Storefront

Usage:
    1. Ensure all services are running behind the API gateway on BASE_URL
    2. Install dependencies: pip install -e ".[test]"
    3. Run the script: SECRET_KEY=<services secret> python tests/integration_test.py

This script tests the full flow:
    - Catalog and mass discounts
    - Coupons
    - Order creation (zero-amount checkout, COD limit)
    - Order tracking
    - Security/Negative Tests

Output:
    - Console logs with pass/fail status
    - integration_test_results.json report
"""
import os
import requests
import json
import time
import sys
from datetime import datetime, timedelta
from typing import Dict, Any
from jose import jwt

# Configuration
BASE_URL = os.getenv("BASE_URL", "http://localhost:8000")
RESULTS_FILE = "integration_test_results.json"
SECRET_KEY = os.getenv("SECRET_KEY", "secret")
ALGORITHM = os.getenv("ALGORITHM", "HS256")

# Colors
class Colors:
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    WARNING = '\033[93m'
    FAIL = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'

class TestRunner:
    def __init__(self):
        self.results = []
        self.session = requests.Session()
        self.store: Dict[str, Any] = {}
        self.start_time = time.time()

    def log(self, message: str, color: str = Colors.ENDC):
        print(f"{color}{message}{Colors.ENDC}")

    def save_result(self, name: str, status: str, duration: float, error: str = None):
        self.results.append({
            "test_name": name,
            "status": status,
            "duration": duration,
            "error": error,
            "timestamp": datetime.utcnow().isoformat()
        })
        color = Colors.GREEN if status == "PASS" else Colors.FAIL
        self.log(f"[{status}] {name} ({duration:.4f}s)", color)
        if error:
            self.log(f"  Error: {error}", Colors.FAIL)

    def run_test(self, name: str, func, *args, **kwargs):
        start = time.time()
        try:
            func(*args, **kwargs)
            duration = time.time() - start
            self.save_result(name, "PASS", duration)
        except AssertionError as e:
            duration = time.time() - start
            self.save_result(name, "FAIL", duration, str(e))
        except Exception as e:
            duration = time.time() - start
            self.save_result(name, "ERROR", duration, str(e))

    def assert_status(self, response, expected: int):
        if response.status_code != expected:
            raise AssertionError(f"Expected status {expected}, got {response.status_code}. Body: {response.text}")

    def save_report(self):
        with open(RESULTS_FILE, "w") as f:
            json.dump({
                "summary": {
                    "total": len(self.results),
                    "passed": len([r for r in self.results if r["status"] == "PASS"]),
                    "failed": len([r for r in self.results if r["status"] != "PASS"]),
                    "total_duration": time.time() - self.start_time
                },
                "results": self.results
            }, f, indent=2)
        self.log(f"\nTest results saved to {RESULTS_FILE}", Colors.BLUE)

# --- Test Functions ---

def test_health_check(runner: TestRunner):
    resp = runner.session.get(f"{BASE_URL}/health")
    runner.assert_status(resp, 200)
    data = resp.json()
    if data["status"] != "healthy":
        raise AssertionError("System is not healthy")

# Phase 1: Tokens (issued by the identity provider in production; minted here with the shared secret)

def mint_tokens(runner: TestRunner):
    expires = datetime.utcnow() + timedelta(hours=1)
    runner.store["admin_token"] = jwt.encode(
        {"sub": "integration-admin", "role": "admin", "exp": expires}, SECRET_KEY, algorithm=ALGORITHM
    )
    runner.store["user_token"] = jwt.encode(
        {"sub": f"integration-user-{int(time.time())}", "role": "user", "exp": expires}, SECRET_KEY, algorithm=ALGORITHM
    )

def admin_headers(runner: TestRunner) -> dict:
    return {"Authorization": f"Bearer {runner.store['admin_token']}"}

def user_headers(runner: TestRunner) -> dict:
    return {"Authorization": f"Bearer {runner.store['user_token']}"}

# Phase 2: Catalog and mass discounts

def create_product(runner: TestRunner):
    product_data = {
        "name": f"Integration Test Headphones {int(time.time())}",
        "description": "Wireless, over-ear",
        "category": "Electronics",
        "price": 1000,
        "count_in_stock": 50
    }
    resp = runner.session.post(f"{BASE_URL}/api/products", json=product_data, headers=admin_headers(runner))
    runner.assert_status(resp, 201)
    runner.store["product_id"] = resp.json()["data"]["id"]

def apply_discount(runner: TestRunner):
    data = {"scope": "product", "target": runner.store["product_id"], "percentage": 25}
    resp = runner.session.post(f"{BASE_URL}/api/products/apply-discount", json=data, headers=admin_headers(runner))
    runner.assert_status(resp, 200)
    if resp.json()["data"]["updated_count"] != 1:
        raise AssertionError("Discount not applied to the product")

    resp = runner.session.get(f"{BASE_URL}/api/products/{runner.store['product_id']}")
    runner.assert_status(resp, 200)
    product = resp.json()["data"]
    if float(product["price"]) != 750 or float(product["original_price"]) != 1000:
        raise AssertionError(f"Unexpected sale prices: {product['price']} / {product['original_price']}")

def remove_discount(runner: TestRunner):
    data = {"scope": "product", "target": runner.store["product_id"]}
    resp = runner.session.post(f"{BASE_URL}/api/products/remove-discount", json=data, headers=admin_headers(runner))
    runner.assert_status(resp, 200)

    resp = runner.session.get(f"{BASE_URL}/api/products/{runner.store['product_id']}")
    if float(resp.json()["data"]["price"]) != 1000:
        raise AssertionError("Price not restored after removing discount")

# Phase 3: Coupons

def create_coupon(runner: TestRunner):
    code = f"FREE{int(time.time())}"
    data = {
        "code": code.lower(),
        "discount_type": "fixed",
        "discount_value": 5000,
        "expiry_date": (datetime.utcnow() + timedelta(days=7)).isoformat()
    }
    resp = runner.session.post(f"{BASE_URL}/api/coupons", json=data, headers=admin_headers(runner))
    runner.assert_status(resp, 201)
    if resp.json()["data"]["code"] != code:
        raise AssertionError("Coupon code not normalised to upper case")
    runner.store["coupon_code"] = code

def validate_coupon(runner: TestRunner):
    data = {"code": runner.store["coupon_code"], "total_amount": 1000}
    resp = runner.session.post(f"{BASE_URL}/api/coupons/validate", json=data, headers=user_headers(runner))
    runner.assert_status(resp, 200)
    if float(resp.json()["data"]["discount_amount"]) != 1000:
        raise AssertionError("Fixed discount not clamped to the order total")

# Phase 4: Orders

def order_payload(runner: TestRunner, **overrides) -> dict:
    data = {
        "order_items": [{"product_id": runner.store["product_id"], "qty": 1}],
        "shipping_address": {
            "address": "12 MG Road",
            "city": "Bengaluru",
            "postal_code": "560001",
            "country": "India"
        },
        "payment_method": "Online"
    }
    data.update(overrides)
    return data

def create_free_order(runner: TestRunner):
    # The coupon covers the whole total, so no gateway round trip is needed
    data = order_payload(runner, coupon_code=runner.store["coupon_code"])
    resp = runner.session.post(f"{BASE_URL}/api/orders", json=data, headers=user_headers(runner))
    runner.assert_status(resp, 201)
    created = resp.json()["data"]
    order = created["order"]
    runner.store["order_id"] = order["id"]
    if created["payment_required"]:
        raise AssertionError("Zero-amount order should not need a payment")
    if not order["is_paid"]:
        raise AssertionError("Zero-amount online order should be marked paid")
    if float(order["total_price"]) != 0:
        raise AssertionError(f"Expected total 0, got {order['total_price']}")

def reject_cod_over_limit(runner: TestRunner):
    data = order_payload(runner, payment_method="COD")
    data["order_items"][0]["qty"] = 2
    resp = runner.session.post(f"{BASE_URL}/api/orders", json=data, headers=user_headers(runner))
    runner.assert_status(resp, 400)

def list_my_orders(runner: TestRunner):
    resp = runner.session.get(f"{BASE_URL}/api/orders/mine", headers=user_headers(runner))
    runner.assert_status(resp, 200)
    if not any(o["id"] == runner.store["order_id"] for o in resp.json()["data"]):
        raise AssertionError("Created order not in the shopper's orders")

# Phase 5: Tracking

def update_tracking(runner: TestRunner):
    oid = runner.store["order_id"]
    data = {"status": "Shipped", "courier_name": "BlueDart", "tracking_id": "BD123"}
    resp = runner.session.put(f"{BASE_URL}/api/orders/{oid}/tracking", json=data, headers=admin_headers(runner))
    runner.assert_status(resp, 200)
    order = resp.json()["data"]
    if order["tracking_stage"] != 3 or order["tracking_label"] != "Shipped":
        raise AssertionError(f"Unexpected stage: {order['tracking_stage']} {order['tracking_label']}")

def mark_delivered(runner: TestRunner):
    oid = runner.store["order_id"]
    resp = runner.session.put(f"{BASE_URL}/api/orders/{oid}/deliver", headers=admin_headers(runner))
    runner.assert_status(resp, 200)
    order = resp.json()["data"]
    if not order["is_delivered"] or order["tracking_stage"] != 5:
        raise AssertionError("Order not delivered")

# Phase 6: Negative Tests

def negative_tests(runner: TestRunner):
    # Invalid Token
    resp = runner.session.get(f"{BASE_URL}/api/orders/mine", headers={"Authorization": "Bearer invalid_token"})
    if resp.status_code != 401:
        raise AssertionError(f"Expected 401 for invalid token, got {resp.status_code}")

    # Shopper cannot run admin operations
    data = {"scope": "all", "percentage": 10}
    resp = runner.session.post(f"{BASE_URL}/api/products/apply-discount", json=data, headers=user_headers(runner))
    if resp.status_code != 403:
        raise AssertionError(f"Expected 403 for non-admin discount, got {resp.status_code}")

    # Out of range percentage
    data = {"scope": "all", "percentage": 100}
    resp = runner.session.post(f"{BASE_URL}/api/products/apply-discount", json=data, headers=admin_headers(runner))
    if resp.status_code != 400:
        raise AssertionError(f"Expected 400 for 100% discount, got {resp.status_code}")

    # Unknown coupon
    data = {"code": "NOPE-NOT-A-COUPON", "total_amount": 100}
    resp = runner.session.post(f"{BASE_URL}/api/coupons/validate", json=data, headers=user_headers(runner))
    if resp.status_code != 404:
        raise AssertionError(f"Expected 404 for unknown coupon, got {resp.status_code}")

    # Internal endpoints are not reachable through the gateway
    resp = runner.session.put(
        f"{BASE_URL}/api/orders/{runner.store['order_id']}/pay",
        json={"payment_id": "pay_fake"},
        headers={"X-Internal-Key": "guess"}
    )
    if resp.status_code not in (401, 422):
        raise AssertionError(f"Expected internal endpoint to be refused, got {resp.status_code}")


def main():
    runner = TestRunner()
    runner.log("Starting Integration Tests...\n", Colors.HEADER)

    # 1. Health
    runner.run_test("Health Check", test_health_check, runner)

    # 2. Tokens
    runner.run_test("Mint Tokens", mint_tokens, runner)

    # 3. Catalog
    runner.run_test("Create Product", create_product, runner)
    runner.run_test("Apply Discount", apply_discount, runner)
    runner.run_test("Remove Discount", remove_discount, runner)

    # 4. Coupons
    runner.run_test("Create Coupon", create_coupon, runner)
    runner.run_test("Validate Coupon", validate_coupon, runner)

    # 5. Orders
    runner.run_test("Create Free Order", create_free_order, runner)
    runner.run_test("Reject COD Over Limit", reject_cod_over_limit, runner)
    runner.run_test("List My Orders", list_my_orders, runner)

    # 6. Tracking
    runner.run_test("Update Tracking", update_tracking, runner)
    runner.run_test("Mark Delivered", mark_delivered, runner)

    # 7. Negative
    runner.run_test("Negative Tests", negative_tests, runner)

    runner.save_report()

    # Exit code
    if any(r["status"] != "PASS" for r in runner.results):
        sys.exit(1)

if __name__ == "__main__":
    main()
