import os

# Must be set before the app modules read their configuration.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["EVENTS_ENABLED"] = "0"
os.environ.pop("ADMIN_EMAIL", None)
os.environ.pop("ADMIN_PASSWORD", None)

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from marketplace_service.app import auth  # noqa: E402
from marketplace_service.app.database import Base, SessionLocal, engine  # noqa: E402
from marketplace_service.app.main import app  # noqa: E402
from marketplace_service.app.messaging.producer import get_event_publisher  # noqa: E402

PASSWORD = "secret-pw"

SHIPPING = {
    "shipping_name": "Ada Buyer",
    "shipping_phone": "+1 555 0100",
    "shipping_address": "1 Market Street",
    "shipping_city": "Springfield",
    "shipping_postal_code": "12345",
}


def money(value) -> Decimal:
    return Decimal(str(value))


class RecordingPublisher:
    def __init__(self):
        self.events = []

    def publish(self, routing_key, message):
        self.events.append((routing_key, message))
        return True


@pytest.fixture(autouse=True)
def fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def events():
    publisher = RecordingPublisher()
    app.dependency_overrides[get_event_publisher] = lambda: publisher
    yield publisher
    app.dependency_overrides.pop(get_event_publisher, None)


@pytest.fixture
def client(events):
    return TestClient(app)


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


def sign_in(client, email, password=PASSWORD):
    resp = client.post("/api/v1/auth/signin", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['token']}"}


def register(client, email, role="buyer", full_name=None):
    resp = client.post(
        "/api/v1/auth/signup",
        json={"email": email, "password": PASSWORD, "full_name": full_name or email.split("@")[0], "role": role},
    )
    assert resp.status_code == 201, resp.text
    return sign_in(client, email)


def open_store(client, headers, store_name="Acme Goods"):
    resp = client.post("/api/v1/vendor/profile", json={"store_name": store_name}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def add_product(client, headers, price="20.00", stock=10, name="Widget", category="tools", **extra):
    payload = {"name": name, "price": price, "stock_quantity": stock, "category": category}
    payload.update(extra)
    resp = client.post("/api/v1/vendor/products", json=payload, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.fixture
def admin_headers(client):
    db = SessionLocal()
    try:
        auth.seed_admin(db, "admin@example.com", PASSWORD)
    finally:
        db.close()
    return sign_in(client, "admin@example.com")


@pytest.fixture
def vendor(client):
    headers = register(client, "vendor@example.com", role="vendor")
    store = open_store(client, headers)
    return {"headers": headers, "id": store["id"]}


@pytest.fixture
def buyer_headers(client):
    return register(client, "buyer@example.com")


def set_commission(client, admin_headers, vendor_id, rate):
    resp = client.patch(
        f"/api/v1/admin/vendors/{vendor_id}/commission",
        json={"commission_rate": str(rate)},
        headers=admin_headers,
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


def add_to_cart(client, headers, product_id, times=1):
    for _ in range(times):
        resp = client.post("/api/v1/cart/items", json={"product_id": product_id}, headers=headers)
        assert resp.status_code == 200, resp.text
    return resp.json()
