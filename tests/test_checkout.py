from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError
from conftest import (
    SHIPPING,
    RecordingPublisher,
    add_product,
    add_to_cart,
    money,
    open_store,
    register,
    set_commission,
)

from marketplace_service.app import checkout as checkout_flow
from marketplace_service.app.checkout import split_line
from marketplace_service.app.database import SessionLocal
from marketplace_service.app.errors import ConflictError
from marketplace_service.app.models import Order, OrderItem, Product, Profile, VendorProfile
from marketplace_service.app.schemas import CheckoutRequest


def checkout(client, headers, **overrides):
    payload = dict(SHIPPING, payment_method="cod")
    payload.update(overrides)
    return client.post("/api/v1/orders/checkout", json=payload, headers=headers)


def order_count():
    with SessionLocal() as s:
        return s.query(Order).count()


def stock_of(product_id):
    with SessionLocal() as s:
        return s.get(Product, product_id).stock_quantity


def test_commission_split_example(client, vendor, buyer_headers, admin_headers):
    set_commission(client, admin_headers, vendor["id"], 15)
    product = add_product(client, vendor["headers"], price="20.00", stock=5)
    add_to_cart(client, buyer_headers, product["id"], times=2)

    resp = checkout(client, buyer_headers)

    assert resp.status_code == 201, resp.text
    order = resp.json()["order"]
    assert money(order["total_amount"]) == Decimal("40.00")
    assert order["status"] == "pending"
    [item] = order["items"]
    assert money(item["price"]) == Decimal("20.00")
    assert item["quantity"] == 2
    assert money(item["commission_amount"]) == Decimal("6.00")
    assert money(item["vendor_amount"]) == Decimal("34.00")


def test_default_rate_gives_ten_on_hundred_dollar_line(client, vendor, buyer_headers):
    product = add_product(client, vendor["headers"], price="100.00", stock=1)
    add_to_cart(client, buyer_headers, product["id"])

    item = checkout(client, buyer_headers).json()["order"]["items"][0]

    assert money(item["commission_amount"]) == Decimal("10.00")
    assert money(item["vendor_amount"]) == Decimal("90.00")


def test_missing_commission_rate_falls_back_to_ten_percent(client, vendor, buyer_headers):
    with SessionLocal() as s:
        s.get(VendorProfile, vendor["id"]).commission_rate = None
        s.commit()
    product = add_product(client, vendor["headers"], price="50.00", stock=1)
    add_to_cart(client, buyer_headers, product["id"])

    item = checkout(client, buyer_headers).json()["order"]["items"][0]

    assert money(item["commission_amount"]) == Decimal("5.00")


def test_zero_commission_rate_is_honoured(client, vendor, buyer_headers, admin_headers):
    set_commission(client, admin_headers, vendor["id"], 0)
    product = add_product(client, vendor["headers"], price="12.50", stock=1)
    add_to_cart(client, buyer_headers, product["id"])

    item = checkout(client, buyer_headers).json()["order"]["items"][0]

    assert money(item["commission_amount"]) == Decimal("0.00")
    assert money(item["vendor_amount"]) == Decimal("12.50")


def test_split_is_penny_exact_when_commission_rounds():
    commission, vendor_amount = split_line(Decimal("0.33"), Decimal("15"))
    assert commission == Decimal("0.05")
    assert vendor_amount == Decimal("0.28")
    assert commission + vendor_amount == Decimal("0.33")

    commission, vendor_amount = split_line(Decimal("19.99") * 3, Decimal("12.5"))
    assert commission + vendor_amount == Decimal("59.97")


def test_multi_vendor_order_totals_and_cart_cleared(client, vendor, buyer_headers, admin_headers):
    other_headers = register(client, "second@example.com", role="vendor")
    other = open_store(client, other_headers, store_name="Second Store")
    set_commission(client, admin_headers, vendor["id"], 15)
    set_commission(client, admin_headers, other["id"], 7.5)
    first = add_product(client, vendor["headers"], price="19.99", stock=10, name="Lamp")
    second = add_product(client, other_headers, price="3.35", stock=4, name="Bulb")
    add_to_cart(client, buyer_headers, first["id"], times=3)
    add_to_cart(client, buyer_headers, second["id"], times=4)

    resp = checkout(client, buyer_headers)

    assert resp.status_code == 201, resp.text
    order = resp.json()["order"]
    lines = [money(i["price"]) * i["quantity"] for i in order["items"]]
    assert money(order["total_amount"]) == sum(lines) == Decimal("73.37")
    for item in order["items"]:
        assert money(item["commission_amount"]) + money(item["vendor_amount"]) == money(item["price"]) * item["quantity"]
    assert {i["vendor_id"] for i in order["items"]} == {vendor["id"], other["id"]}

    assert client.get("/api/v1/cart", headers=buyer_headers).json()["items"] == []
    assert stock_of(first["id"]) == 7
    assert stock_of(second["id"]) == 0


def test_vendor_total_sales_accumulate(client, vendor, buyer_headers):
    product = add_product(client, vendor["headers"], price="8.00", stock=5)
    add_to_cart(client, buyer_headers, product["id"], times=2)
    checkout(client, buyer_headers)

    with SessionLocal() as s:
        assert s.get(VendorProfile, vendor["id"]).total_sales == Decimal("16.00")


def test_empty_cart_creates_no_order(client, buyer_headers):
    resp = checkout(client, buyer_headers)

    assert resp.status_code == 400
    assert resp.json()["error"] == "empty_cart"
    assert order_count() == 0


def test_incomplete_shipping_is_rejected(client, vendor, buyer_headers):
    product = add_product(client, vendor["headers"], stock=3)
    add_to_cart(client, buyer_headers, product["id"])

    resp = checkout(client, buyer_headers, shipping_city="   ", shipping_phone="")

    assert resp.status_code == 422
    body = resp.json()
    assert body["error"] == "validation_failed"
    assert set(body["fields"]) == {"shipping_city", "shipping_phone"}
    assert order_count() == 0
    assert stock_of(product["id"]) == 3
    assert len(client.get("/api/v1/cart", headers=buyer_headers).json()["items"]) == 1


def test_payment_status_follows_method(client, vendor, buyer_headers):
    product = add_product(client, vendor["headers"], stock=5)

    add_to_cart(client, buyer_headers, product["id"])
    cod = checkout(client, buyer_headers, payment_method="cod").json()["order"]
    add_to_cart(client, buyer_headers, product["id"])
    card = checkout(client, buyer_headers, payment_method="card").json()["order"]

    assert (cod["payment_method"], cod["payment_status"]) == ("cod", "unpaid")
    assert (card["payment_method"], card["payment_status"]) == ("card", "paid")


def test_unknown_payment_method_is_rejected(client, vendor, buyer_headers):
    product = add_product(client, vendor["headers"], stock=5)
    add_to_cart(client, buyer_headers, product["id"])

    resp = checkout(client, buyer_headers, payment_method="bitcoin")

    assert resp.status_code == 422
    assert order_count() == 0


def test_insufficient_stock_rolls_back_everything(client, vendor, buyer_headers):
    plenty = add_product(client, vendor["headers"], stock=10, name="Plenty")
    scarce = add_product(client, vendor["headers"], stock=2, name="Scarce")
    add_to_cart(client, buyer_headers, plenty["id"])
    add_to_cart(client, buyer_headers, scarce["id"], times=2)
    # Someone else bought one in the meantime.
    client.put(f"/api/v1/vendor/products/{scarce['id']}", json={"stock_quantity": 1}, headers=vendor["headers"])

    resp = checkout(client, buyer_headers)

    assert resp.status_code == 409
    assert resp.json()["error"] == "insufficient_stock"
    assert resp.json()["product_id"] == scarce["id"]
    assert order_count() == 0
    with SessionLocal() as s:
        assert s.query(OrderItem).count() == 0
    assert stock_of(plenty["id"]) == 10
    assert stock_of(scarce["id"]) == 1
    assert len(client.get("/api/v1/cart", headers=buyer_headers).json()["items"]) == 2


def test_inactive_product_in_cart_blocks_checkout(client, vendor, buyer_headers):
    product = add_product(client, vendor["headers"], stock=4)
    add_to_cart(client, buyer_headers, product["id"])
    client.put(f"/api/v1/vendor/products/{product['id']}", json={"status": "draft"}, headers=vendor["headers"])

    resp = checkout(client, buyer_headers)

    assert resp.status_code == 422
    assert order_count() == 0


def test_idempotency_key_replays_existing_order(client, vendor, buyer_headers, events):
    product = add_product(client, vendor["headers"], stock=5)
    add_to_cart(client, buyer_headers, product["id"], times=2)

    first = checkout(client, buyer_headers, idempotency_key="req-123")
    second = checkout(client, buyer_headers, idempotency_key="req-123")

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["replayed"] is True
    assert second.json()["order"]["id"] == first.json()["order"]["id"]
    assert order_count() == 1
    assert stock_of(product["id"]) == 3
    assert [key for key, _ in events.events] == ["order.placed"]


def test_idempotency_key_from_header(client, vendor, buyer_headers):
    product = add_product(client, vendor["headers"], stock=5)
    add_to_cart(client, buyer_headers, product["id"])
    headers = dict(buyer_headers, **{"Idempotency-Key": "hdr-1"})

    first = checkout(client, headers)
    second = checkout(client, headers)

    assert first.status_code == 201
    assert second.status_code == 200
    assert order_count() == 1


def test_oversized_idempotency_key_is_rejected(client, vendor, buyer_headers):
    product = add_product(client, vendor["headers"], stock=5)
    add_to_cart(client, buyer_headers, product["id"])
    key = "k" * 300

    in_header = checkout(client, dict(buyer_headers, **{"Idempotency-Key": key}))
    in_body = checkout(client, buyer_headers, idempotency_key=key)

    assert in_header.status_code == 422
    assert in_body.status_code == 422
    assert order_count() == 0
    assert stock_of(product["id"]) == 5


def test_idempotency_key_of_another_buyer_conflicts(client, vendor, buyer_headers):
    product = add_product(client, vendor["headers"], stock=5)
    add_to_cart(client, buyer_headers, product["id"])
    checkout(client, buyer_headers, idempotency_key="shared")

    other = register(client, "other@example.com")
    add_to_cart(client, other, product["id"])
    resp = checkout(client, other, idempotency_key="shared")

    assert resp.status_code == 409
    assert order_count() == 1


def test_order_items_keep_price_snapshot(client, vendor, buyer_headers):
    product = add_product(client, vendor["headers"], price="20.00", stock=5)
    add_to_cart(client, buyer_headers, product["id"])
    order_id = checkout(client, buyer_headers).json()["order"]["id"]

    client.put(f"/api/v1/vendor/products/{product['id']}", json={"price": "99.00"}, headers=vendor["headers"])

    order = client.get(f"/api/v1/orders/{order_id}", headers=buyer_headers).json()
    assert money(order["items"][0]["price"]) == Decimal("20.00")
    assert money(order["total_amount"]) == Decimal("20.00")


def test_confirmation_view(client, vendor, buyer_headers, admin_headers, events):
    product = add_product(client, vendor["headers"], stock=5, name="Desk Lamp")
    add_to_cart(client, buyer_headers, product["id"])
    body = checkout(client, buyer_headers).json()
    order_id = body["order"]["id"]

    assert body["confirmation_path"] == f"/order/{order_id}/confirmation"
    mine = client.get(f"/api/v1/orders/{order_id}", headers=buyer_headers)
    assert mine.status_code == 200
    assert mine.json()["items"][0]["product_name"] == "Desk Lamp"
    assert mine.json()["shipping_city"] == SHIPPING["shipping_city"]

    stranger = register(client, "stranger@example.com")
    assert client.get(f"/api/v1/orders/{order_id}", headers=stranger).status_code == 404
    assert client.get(f"/api/v1/orders/{order_id}", headers=admin_headers).status_code == 200

    routing_key, message = events.events[-1]
    assert routing_key == "order.placed"
    assert message["order_id"] == order_id
    assert message["items"][0]["product_id"] == product["id"]


def test_buyer_order_history(client, vendor, buyer_headers):
    product = add_product(client, vendor["headers"], stock=5)
    for _ in range(2):
        add_to_cart(client, buyer_headers, product["id"])
        checkout(client, buyer_headers)

    orders = client.get("/api/v1/orders", headers=buyer_headers).json()

    assert len(orders) == 2
    assert all(o["buyer_id"] == orders[0]["buyer_id"] for o in orders)


def test_checkout_requires_sign_in(client):
    resp = client.post("/api/v1/orders/checkout", json=SHIPPING)
    assert resp.status_code == 401


def test_unrelated_integrity_error_becomes_conflict(client, vendor, buyer_headers, db, monkeypatch):
    product = add_product(client, vendor["headers"], stock=5)
    add_to_cart(client, buyer_headers, product["id"])
    buyer = db.query(Profile).filter(Profile.email == "buyer@example.com").one()

    def failing_commit():
        raise IntegrityError("INSERT INTO orders", {}, Exception("constraint failed"))

    monkeypatch.setattr(db, "commit", failing_commit)
    publisher = RecordingPublisher()

    with pytest.raises(ConflictError):
        checkout_flow.place_order(db, buyer, CheckoutRequest(payment_method="cod", **SHIPPING), publisher)

    assert publisher.events == []
    assert order_count() == 0
    assert stock_of(product["id"]) == 5
