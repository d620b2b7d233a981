#!/usr/bin/env python3
"""
Marketplace - E2E smoke tests against a running deployment

Run:
  python marketplace_e2e.py

Optional env:
  MARKETPLACE_BASE=http://localhost:5000
  ADMIN_EMAIL / ADMIN_PASSWORD   (enables the commission scenario)
  TIMEOUT_SECONDS=30
  DEBUG=1
"""

from __future__ import annotations

import os
import sys
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import requests


# =========================
# Simple CLI UI (ANSI)
# =========================

class Style:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    GRAY = "\033[90m"


def banner():
    title = " Marketplace E2E Smoke Tests "
    line = "─" * len(title)
    print()
    print(f"{Style.CYAN}┌{line}┐{Style.RESET}")
    print(f"{Style.CYAN}│{Style.RESET}{Style.BOLD}{title}{Style.RESET}{Style.CYAN}│{Style.RESET}")
    print(f"{Style.CYAN}└{line}┘{Style.RESET}")
    print()


def section_title(text: str):
    print(f"\n{Style.BLUE}{Style.BOLD}▶ {text}{Style.RESET}")


def info(msg: str):
    print(f"{Style.CYAN}ℹ {msg}{Style.RESET}")


def warn(msg: str):
    print(f"{Style.YELLOW}⚠ {msg}{Style.RESET}")


def ok(msg: str):
    print(f"{Style.GREEN}✔ {msg}{Style.RESET}")


def fail(msg: str):
    print(f"{Style.RED}✘ {msg}{Style.RESET}")


# =========================
# Config
# =========================

BASE = os.getenv("MARKETPLACE_BASE", "http://localhost:5000")
API = BASE + "/api/v1"
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")
TIMEOUT_SECONDS = int(os.getenv("TIMEOUT_SECONDS", "30"))
DEBUG = os.getenv("DEBUG", "0").strip() in {"1", "true", "True", "YES", "yes"}

PASSWORD = "e2e-password"
SHIPPING = {
    "shipping_name": "E2E Buyer",
    "shipping_phone": "+1 555 0199",
    "shipping_address": "42 Test Lane",
    "shipping_city": "Testville",
    "shipping_postal_code": "00042",
}


def debug(msg: str):
    if DEBUG:
        print(f"{Style.GRAY}… {msg}{Style.RESET}")


@dataclass
class TestResult:
    name: str
    success: bool
    details: str = ""
    scenario: str = ""


# =========================
# HTTP helpers
# =========================

def http(method: str, url: str, **kwargs) -> requests.Response:
    kwargs.setdefault("timeout", 8)
    debug(f"{method} {url}")
    return requests.request(method, url, **kwargs)


def wait_for_health(timeout: int = TIMEOUT_SECONDS) -> bool:
    start = time.time()
    while time.time() - start < timeout:
        try:
            if http("GET", BASE + "/").status_code == 200:
                ok("marketplace service is healthy.")
                return True
        except requests.exceptions.RequestException as e:
            debug(f"not ready: {e}")
        time.sleep(1)
    fail(f"marketplace service did not become healthy in {timeout} seconds.")
    return False


def assert_status(resp: requests.Response, expected: int, ctx: str):
    if resp.status_code != expected:
        raise AssertionError(f"{ctx}: expected HTTP {expected}, got {resp.status_code}, body={resp.text}")


def sign_in(email: str, password: str = PASSWORD) -> Dict[str, str]:
    resp = http("POST", f"{API}/auth/signin", json={"email": email, "password": password})
    assert_status(resp, 200, f"sign in {email}")
    return {"Authorization": f"Bearer {resp.json()['token']}"}


def new_account(role: str) -> Dict[str, str]:
    email = f"e2e-{role}-{uuid.uuid4().hex[:8]}@example.com"
    resp = http("POST", f"{API}/auth/signup", json={"email": email, "password": PASSWORD, "role": role})
    assert_status(resp, 201, f"sign up {role}")
    return sign_in(email)


def new_vendor_product(stock: int, price: str = "20.00") -> Tuple[Dict[str, str], Dict[str, Any], Dict[str, Any]]:
    headers = new_account("vendor")
    resp = http("POST", f"{API}/vendor/profile", json={"store_name": "E2E Store"}, headers=headers)
    assert_status(resp, 201, "open store")
    store = resp.json()
    resp = http(
        "POST",
        f"{API}/vendor/products",
        json={"name": "E2E Widget", "price": price, "stock_quantity": stock, "category": "e2e"},
        headers=headers,
    )
    assert_status(resp, 201, "create product")
    return headers, store, resp.json()


def product_stock(product_id: str) -> int:
    resp = http("GET", f"{API}/products/{product_id}")
    assert_status(resp, 200, "get product")
    return resp.json()["stock_quantity"]


def add_to_cart(headers: Dict[str, str], product_id: str, times: int = 1):
    for _ in range(times):
        assert_status(http("POST", f"{API}/cart/items", json={"product_id": product_id}, headers=headers), 200, "add to cart")


def checkout(headers: Dict[str, str], key: Optional[str] = None) -> requests.Response:
    payload = dict(SHIPPING, payment_method="cod", idempotency_key=key)
    return http("POST", f"{API}/orders/checkout", json=payload, headers=headers)


# =========================
# Scenarios
# =========================

def scenario_happy_path() -> List[TestResult]:
    scenario = "Scenario 1 - Happy Path"
    section_title(scenario)
    try:
        _, _, product = new_vendor_product(stock=10)
        buyer = new_account("buyer")
        add_to_cart(buyer, product["id"], times=2)
        resp = checkout(buyer)
        assert_status(resp, 201, "checkout")
        order = resp.json()["order"]
        item = order["items"][0]

        results = []
        total_ok = Decimal(order["total_amount"]) == Decimal("40.00")
        split_ok = Decimal(item["commission_amount"]) + Decimal(item["vendor_amount"]) == Decimal("40.00")
        stock = product_stock(product["id"])
        cart = http("GET", f"{API}/cart", headers=buyer).json()
        for name, success, details in (
            ("Order Total", total_ok, f"total={order['total_amount']}"),
            ("Commission Split", split_ok, f"commission={item['commission_amount']} vendor={item['vendor_amount']}"),
            ("Stock Decremented", stock == 8, f"expected 8, got {stock}"),
            ("Cart Cleared", cart["items"] == [], f"cart={cart}"),
        ):
            (ok if success else fail)(f"{name}: {details}")
            results.append(TestResult(name, success, details, scenario))
        return results
    except (AssertionError, requests.exceptions.RequestException) as e:
        fail(str(e))
        return [TestResult("Happy Path", False, str(e), scenario)]


def scenario_insufficient_stock() -> List[TestResult]:
    scenario = "Scenario 2 - Insufficient Stock"
    section_title(scenario)
    try:
        vendor, _, product = new_vendor_product(stock=1)
        buyer = new_account("buyer")
        add_to_cart(buyer, product["id"])
        resp = http("PUT", f"{API}/vendor/products/{product['id']}", json={"stock_quantity": 0}, headers=vendor)
        assert_status(resp, 200, "sell out")

        resp = checkout(buyer)
        rejected = resp.status_code == 409
        stock = product_stock(product["id"])
        details = f"HTTP {resp.status_code}, stock={stock}"
        success = rejected and stock == 0
        (ok if success else fail)(details)
        return [TestResult("Checkout Rejected Without Side Effects", success, details, scenario)]
    except (AssertionError, requests.exceptions.RequestException) as e:
        fail(str(e))
        return [TestResult("Insufficient Stock", False, str(e), scenario)]


def scenario_idempotent_replay() -> List[TestResult]:
    scenario = "Scenario 3 - Idempotent Replay"
    section_title(scenario)
    try:
        _, _, product = new_vendor_product(stock=5)
        buyer = new_account("buyer")
        add_to_cart(buyer, product["id"])
        key = f"e2e-{uuid.uuid4()}"
        first = checkout(buyer, key)
        second = checkout(buyer, key)
        assert_status(first, 201, "first checkout")
        same = second.status_code == 200 and second.json()["order"]["id"] == first.json()["order"]["id"]
        stock = product_stock(product["id"])
        details = f"replay HTTP {second.status_code}, stock={stock}"
        success = same and stock == 4
        (ok if success else fail)(details)
        return [TestResult("Double Submit Creates One Order", success, details, scenario)]
    except (AssertionError, requests.exceptions.RequestException) as e:
        fail(str(e))
        return [TestResult("Idempotent Replay", False, str(e), scenario)]


def scenario_commission_rate() -> List[TestResult]:
    scenario = "Scenario 4 - Vendor Commission Rate"
    section_title(scenario)
    if not (ADMIN_EMAIL and ADMIN_PASSWORD):
        warn("ADMIN_EMAIL / ADMIN_PASSWORD not set; skipping.")
        return []
    try:
        admin = sign_in(ADMIN_EMAIL, ADMIN_PASSWORD)
        _, store, product = new_vendor_product(stock=5)
        resp = http("PATCH", f"{API}/admin/vendors/{store['id']}/commission",
                     json={"commission_rate": "15"}, headers=admin)
        assert_status(resp, 200, "set commission")
        buyer = new_account("buyer")
        add_to_cart(buyer, product["id"], times=2)
        resp = checkout(buyer)
        assert_status(resp, 201, "checkout")
        item = resp.json()["order"]["items"][0]
        success = (Decimal(item["commission_amount"]), Decimal(item["vendor_amount"])) == (Decimal("6.00"), Decimal("34.00"))
        details = f"commission={item['commission_amount']} vendor={item['vendor_amount']}"
        (ok if success else fail)(details)

        bad = http("PATCH", f"{API}/admin/vendors/{store['id']}/commission",
                   json={"commission_rate": "150"}, headers=admin)
        clamp_ok = bad.status_code == 422
        (ok if clamp_ok else fail)(f"rate 150 → HTTP {bad.status_code}")
        return [
            TestResult("15% Split", success, details, scenario),
            TestResult("Rate Above 100 Rejected", clamp_ok, f"HTTP {bad.status_code}", scenario),
        ]
    except (AssertionError, requests.exceptions.RequestException) as e:
        fail(str(e))
        return [TestResult("Commission Rate", False, str(e), scenario)]


# =========================
# Summary
# =========================

def print_results(results: List[TestResult]) -> int:
    print(f"\n{Style.BOLD}================ TEST RESULTS ================ {Style.RESET}")
    passed = 0
    for r in results:
        color = Style.GREEN if r.success else Style.RED
        print(f"{color}{'✅' if r.success else '❌'} [{r.scenario}] {r.name}{Style.RESET}")
        if r.details:
            print(f"    {Style.DIM}{r.details}{Style.RESET}")
        passed += r.success

    failed = len(results) - passed
    print(f"{Style.BOLD}==============================================={Style.RESET}")
    print(f"Total tests: {len(results)}  |  Passed: {Style.GREEN}{passed}{Style.RESET}  |  Failed: {Style.RED}{failed}{Style.RESET}")
    return failed


def main():
    banner()
    info(f"Target: {BASE}")
    if not wait_for_health():
        sys.exit(1)

    all_results: List[TestResult] = []
    all_results.extend(scenario_happy_path())
    all_results.extend(scenario_insufficient_stock())
    all_results.extend(scenario_idempotent_replay())
    all_results.extend(scenario_commission_rate())

    sys.exit(1 if print_results(all_results) else 0)


if __name__ == "__main__":
    main()
