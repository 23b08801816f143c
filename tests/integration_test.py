#!/usr/bin/env python3
"""
Integration Test Suite for the Beauty Storefront

Usage:
    1. Ensure MongoDB and all services are running: python start_storefront.py
    2. Install dependencies: pip install -e ".[test]"
    3. Run the script: python tests/integration_test.py

This script tests the full flow against live services:
    - Authentication (Register/Login/Role)
    - Product Management (admin)
    - Favorites sync
    - Checkout (cash on delivery)
    - Order history and admin status changes
    - Security/Negative Tests

The admin account is promoted directly in MongoDB, since roles are only
ever granted out of band.

Output:
    - Console logs with pass/fail status
    - integration_test_results.json report
"""
import os
import requests
import json
import time
import sys
from datetime import datetime
from typing import Dict, Any

from pymongo import MongoClient

# Configuration
AUTH_URL = os.getenv("AUTH_SERVICE_URL", "http://localhost:8001")
CATALOG_URL = os.getenv("CATALOG_SERVICE_URL", "http://localhost:8002")
ORDERS_URL = os.getenv("ORDERS_SERVICE_URL", "http://localhost:8003")
MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "storefront_db")
RESULTS_FILE = "integration_test_results.json"

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

    def auth(self, who: str) -> dict:
        return {"Authorization": f"Bearer {self.store[who + '_token']}"}

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

# --- Checks ---

def check_health(runner: TestRunner):
    for url in (AUTH_URL, CATALOG_URL, ORDERS_URL):
        resp = runner.session.get(f"{url}/health")
        runner.assert_status(resp, 200)
        if resp.json()["status"] != "healthy":
            raise AssertionError(f"{url} is not healthy")

# Phase 1: Authentication

def register_users(runner: TestRunner):
    stamp = int(time.time())
    for who in ("admin", "user"):
        data = {
            "email": f"{who}_{stamp}@tienda.pe",
            "password": "Password123",
            "full_name": f"Prueba {who.title()}",
            "phone": "987654321"
        }
        resp = runner.session.post(f"{AUTH_URL}/register", json=data)
        runner.assert_status(resp, 200)
        runner.store[f"{who}_email"] = data["email"]
        runner.store[f"{who}_password"] = data["password"]
        runner.store[f"{who}_id"] = resp.json()["data"]["id"]

    client = MongoClient(MONGO_URL)
    try:
        client[MONGO_DB].users.update_one({"_id": runner.store["admin_id"]}, {"$set": {"role": "admin"}})
    finally:
        client.close()

def login_users(runner: TestRunner):
    for who in ("admin", "user"):
        resp = runner.session.post(f"{AUTH_URL}/login", json={
            "email": runner.store[f"{who}_email"],
            "password": runner.store[f"{who}_password"]
        })
        runner.assert_status(resp, 200)
        runner.store[f"{who}_token"] = resp.json()["data"]["access_token"]

def check_roles(runner: TestRunner):
    for who, expected in (("admin", "admin"), ("user", "customer")):
        resp = runner.session.post(f"{AUTH_URL}/rpc/get_user_role", headers=runner.auth(who))
        runner.assert_status(resp, 200)
        role = resp.json()["data"]["role"]
        if role != expected:
            raise AssertionError(f"Expected role {expected} for {who}, got {role}")

# Phase 2: Products

def create_product(runner: TestRunner):
    product_data = {
        "name": "Labial Mate Integración",
        "brand": "Esika",
        "description": "Acabado mate de larga duración",
        "price": 35.90,
        "stock": 3
    }
    resp = runner.session.post(f"{CATALOG_URL}/products", json=product_data, headers=runner.auth("admin"))
    runner.assert_status(resp, 200)
    runner.store["product_id"] = resp.json()["data"]["id"]

def list_products(runner: TestRunner):
    resp = runner.session.get(f"{CATALOG_URL}/products", params={"brand": "Esika", "limit": 100})
    runner.assert_status(resp, 200)
    products = resp.json()["data"]["products"]
    if not any(p["id"] == runner.store["product_id"] for p in products):
        raise AssertionError("Created product not found in list")

def sync_favorites(runner: TestRunner):
    data = {"product_ids": [runner.store["product_id"]]}
    resp = runner.session.post(f"{CATALOG_URL}/favorites/sync", json=data, headers=runner.auth("user"))
    runner.assert_status(resp, 200)
    if [p["id"] for p in resp.json()["data"]] != [runner.store["product_id"]]:
        raise AssertionError("Favorite not merged")

# Phase 3: Checkout

def checkout_payload(runner: TestRunner, quantity: int) -> dict:
    return {
        "items": [{
            "product_id": runner.store["product_id"],
            "name": "Labial Mate Integración",
            "brand": "Esika",
            "unit_price": "35.90",
            "quantity": quantity
        }],
        "shipping": {
            "full_name": "Prueba User",
            "phone": "987654321",
            "district": "Miraflores",
            "street_type": "Av.",
            "street_name": "Larco",
            "number": "123",
            "reference": "Frente al parque"
        },
        "payment_method": "cash_on_delivery"
    }

def checkout_insufficient_stock(runner: TestRunner):
    resp = runner.session.post(f"{ORDERS_URL}/checkout", json=checkout_payload(runner, 5), headers=runner.auth("user"))
    runner.assert_status(resp, 409)
    if resp.json()["detail"]["available"] != 3:
        raise AssertionError("Available stock not reported")

def create_order(runner: TestRunner):
    resp = runner.session.post(f"{ORDERS_URL}/checkout", json=checkout_payload(runner, 2), headers=runner.auth("user"))
    runner.assert_status(resp, 200)
    order = resp.json()["data"]
    runner.store["order_id"] = order["order_id"]
    if order["status"] != "pending":
        raise AssertionError("Order status should be pending")
    if order["total_amount"] != "76.80":
        raise AssertionError(f"Unexpected total {order['total_amount']}")

def verify_stock_decremented(runner: TestRunner):
    resp = runner.session.get(f"{CATALOG_URL}/products/{runner.store['product_id']}")
    runner.assert_status(resp, 200)
    if resp.json()["data"]["stock"] != 1:
        raise AssertionError("Stock not decremented")

# Phase 4: Orders

def verify_order_history(runner: TestRunner):
    oid = runner.store["order_id"]
    resp = runner.session.get(f"{ORDERS_URL}/orders/{oid}", headers=runner.auth("user"))
    runner.assert_status(resp, 200)
    order = resp.json()["data"]
    if order["items"][0]["price_at_purchase"] != "35.90":
        raise AssertionError("Item price not snapshotted")
    if order["shipping_address"]["address"] != "Av. Larco 123":
        raise AssertionError("Shipping snapshot mismatch")

def ship_order(runner: TestRunner):
    oid = runner.store["order_id"]
    resp = runner.session.put(f"{ORDERS_URL}/admin/orders/{oid}/status", json={"status": "shipped"}, headers=runner.auth("admin"))
    runner.assert_status(resp, 200)
    if resp.json()["data"]["status"] != "shipped":
        raise AssertionError("Order status not updated")

# Phase 5: Negative Tests

def negative_tests(runner: TestRunner):
    # Invalid Token
    resp = runner.session.get(f"{ORDERS_URL}/orders", headers={"Authorization": "Bearer invalid_token"})
    if resp.status_code != 401:
        raise AssertionError(f"Expected 401 for invalid token, got {resp.status_code}")

    # Customers can't reach the back-office
    resp = runner.session.get(f"{ORDERS_URL}/admin/stats", headers=runner.auth("user"))
    if resp.status_code != 403:
        raise AssertionError(f"Expected 403 for customer on admin route, got {resp.status_code}")

    # Bad Data (Product create with negative price)
    bad_product = {"name": "Bad", "brand": "Avon", "price": -10}
    resp = runner.session.post(f"{CATALOG_URL}/products", json=bad_product, headers=runner.auth("admin"))
    if resp.status_code != 422: # Pydantic validation error
        raise AssertionError(f"Expected 422 for negative price, got {resp.status_code}")


def main():
    runner = TestRunner()
    runner.log("Starting Integration Tests...\n", Colors.HEADER)

    # 1. Health
    runner.run_test("Health Check", check_health, runner)

    # 2. Auth
    runner.run_test("Register Users", register_users, runner)
    runner.run_test("Login Users", login_users, runner)
    runner.run_test("Resolve Roles", check_roles, runner)

    # 3. Products
    runner.run_test("Create Product", create_product, runner)
    runner.run_test("List Products", list_products, runner)
    runner.run_test("Sync Favorites", sync_favorites, runner)

    # 4. Checkout
    runner.run_test("Checkout Over Stock", checkout_insufficient_stock, runner)
    runner.run_test("Create Order", create_order, runner)
    runner.run_test("Verify Stock Decremented", verify_stock_decremented, runner)

    # 5. Orders
    runner.run_test("Verify Order History", verify_order_history, runner)
    runner.run_test("Ship Order", ship_order, runner)

    # 6. Negative
    runner.run_test("Negative Tests", negative_tests, runner)

    runner.save_report()

    # Exit code
    if any(r["status"] != "PASS" for r in runner.results):
        sys.exit(1)

if __name__ == "__main__":
    main()
