#!/usr/bin/env python3
"""
End-to-end smoke run against a storefront API.

Usage:
    1. Start the API with a seeded catalog: storefront
    2. Run: python -m storefront.smoke --base-url http://localhost:3000/api

This walks the full customer flow:
    - Health
    - Register/Login
    - Catalog
    - Cart
    - Checkout
    - Negative cases (bad token, wrong password)

Output:
    - Console lines with pass/fail status
    - Optional JSON report (--report)
"""
import argparse
import json
import sys
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from storefront.client import DEFAULT_BASE_URL, Session, StorefrontAPIError, StorefrontClient

PASSWORD = "Password123!"

# Colors
class Colors:
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    GREEN = '\033[92m'
    FAIL = '\033[91m'
    ENDC = '\033[0m'

class SmokeRunner:
    def __init__(self, client: StorefrontClient, verbose: bool = True):
        self.client = client
        self.verbose = verbose
        self.results: List[Dict[str, Any]] = []
        self.store: Dict[str, Any] = {}
        self.start_time = time.time()

    def log(self, message: str, color: str = Colors.ENDC):
        if self.verbose:
            print(f"{color}{message}{Colors.ENDC}")

    def save_result(self, name: str, status: str, duration: float, error: str = None):
        self.results.append({
            "test_name": name,
            "status": status,
            "duration": duration,
            "error": error,
            "timestamp": datetime.now(timezone.utc).isoformat()
        })
        color = Colors.GREEN if status == "PASS" else Colors.FAIL
        self.log(f"[{status}] {name} ({duration:.4f}s)", color)
        if error:
            self.log(f"  Error: {error}", Colors.FAIL)

    def run_step(self, name: str, func, *args, **kwargs):
        start = time.time()
        try:
            func(self, *args, **kwargs)
            self.save_result(name, "PASS", time.time() - start)
        except AssertionError as e:
            self.save_result(name, "FAIL", time.time() - start, str(e))
        except Exception as e:
            self.save_result(name, "ERROR", time.time() - start, str(e))

    @property
    def passed(self) -> bool:
        return all(r["status"] == "PASS" for r in self.results)

    def summary(self) -> dict:
        return {
            "total": len(self.results),
            "passed": len([r for r in self.results if r["status"] == "PASS"]),
            "failed": len([r for r in self.results if r["status"] != "PASS"]),
            "total_duration": time.time() - self.start_time
        }

    def save_report(self, path: str):
        with open(path, "w") as f:
            json.dump({"summary": self.summary(), "results": self.results}, f, indent=2)
        self.log(f"\nResults saved to {path}", Colors.BLUE)

# --- Steps ---

def check_health(runner: SmokeRunner):
    data = runner.client.health()
    if data["status"] != "healthy":
        raise AssertionError("API is not healthy")

def register_user(runner: SmokeRunner):
    email = f"smoke_{int(time.time())}_{uuid.uuid4().hex[:6]}@storefront.io"
    session = runner.client.register("Smoke Tester", email, "555-0100", "1 Test Street", PASSWORD)
    if "password_hash" in session.user or "password" in session.user:
        raise AssertionError("Credential leaked in registration response")
    runner.store["email"] = email

def login_user(runner: SmokeRunner):
    runner.client.logout()
    session = runner.client.login(runner.store["email"], PASSWORD)
    if session.user["email"] != runner.store["email"]:
        raise AssertionError("Logged in as the wrong user")

def list_products(runner: SmokeRunner):
    products = runner.client.get_products()
    if not products:
        raise AssertionError("Catalog is empty")
    runner.store["product"] = products[0]

def add_to_cart(runner: SmokeRunner):
    product_id = runner.store["product"]["id"]
    runner.client.add_to_cart(product_id, 1)
    runner.client.add_to_cart(product_id, 1)

def view_cart(runner: SmokeRunner):
    cart = runner.client.get_cart()
    if len(cart) != 1:
        raise AssertionError(f"Expected one cart line, got {len(cart)}")
    if cart[0]["quantity"] != 2:
        raise AssertionError("Repeat add did not accumulate quantity")

def create_order(runner: SmokeRunner):
    order = runner.client.create_order("credit_card")
    runner.store["order_id"] = order["order_id"]

def verify_cart_cleared(runner: SmokeRunner):
    if runner.client.get_cart():
        raise AssertionError("Cart not cleared after order")

def verify_order_listed(runner: SmokeRunner):
    orders = runner.client.get_orders()
    if not orders or orders[0]["id"] != runner.store["order_id"]:
        raise AssertionError("New order is not the most recent one")

def negative_tests(runner: SmokeRunner):
    session = runner.client.session

    runner.client.session = Session(
        token="invalid_token",
        issued_at=session.issued_at,
        expires_at=session.expires_at,
        user=session.user
    )
    try:
        runner.client.get_cart()
        raise AssertionError("Invalid token was accepted")
    except StorefrontAPIError as e:
        if e.status_code != 403:
            raise AssertionError(f"Expected 403 for invalid token, got {e.status_code}")
    finally:
        runner.client.session = session

    try:
        runner.client.login(runner.store["email"], "wrong-password")
        raise AssertionError("Wrong password was accepted")
    except StorefrontAPIError as e:
        if e.status_code != 401:
            raise AssertionError(f"Expected 401 for wrong password, got {e.status_code}")
    finally:
        runner.client.session = session


STEPS = [
    ("Health Check", check_health),
    ("Register User", register_user),
    ("Login User", login_user),
    ("List Products", list_products),
    ("Add to Cart", add_to_cart),
    ("View Cart", view_cart),
    ("Create Order", create_order),
    ("Verify Cart Cleared", verify_cart_cleared),
    ("Verify Order Listed", verify_order_listed),
    ("Negative Tests", negative_tests),
]

def run_smoke(client: StorefrontClient, report_path: Optional[str] = None, verbose: bool = True) -> SmokeRunner:
    runner = SmokeRunner(client, verbose=verbose)
    runner.log("Starting smoke run...\n", Colors.HEADER)
    for name, step in STEPS:
        runner.run_step(name, step)
    if report_path:
        runner.save_report(report_path)
    return runner

def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Storefront API smoke run")
    parser.add_argument("--base-url", default=DEFAULT_BASE_URL)
    parser.add_argument("--report", default=None, help="write a JSON report to this path")
    args = parser.parse_args(argv)

    with StorefrontClient(args.base_url) as client:
        runner = run_smoke(client, report_path=args.report)
    return 0 if runner.passed else 1

if __name__ == "__main__":
    sys.exit(main())
