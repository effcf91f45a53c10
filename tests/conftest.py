import mongomock
import pytest
from fastapi.testclient import TestClient

from database import Database
from errors import PaymentProviderError
from main import create_app
from settings import Settings

ADMIN_EMAIL = "admin@shop.com"
ADMIN_PASSWORD = "adminpass1"


class FakeCashfree:
    """In-memory stand-in for the Cashfree orders API."""

    def __init__(self):
        self.orders = {}
        self.payments = {}
        self.created = []
        self.reject_with = None

    def create_order(self, payload):
        self.created.append(payload)
        if self.reject_with:
            raise PaymentProviderError(self.reject_with)
        cf_order_id = 4000 + len(self.created)
        self.orders[payload["order_id"]] = {
            "order_id": payload["order_id"],
            "cf_order_id": cf_order_id,
            "order_status": "ACTIVE",
            "order_amount": payload["order_amount"],
            "order_currency": payload["order_currency"],
            "order_note": payload["order_note"],
        }
        return {
            "order_id": payload["order_id"],
            "cf_order_id": cf_order_id,
            "payment_session_id": "session_" + payload["order_id"],
        }

    def get_order(self, order_id):
        if order_id not in self.orders:
            raise PaymentProviderError("Order not found")
        return dict(self.orders[order_id])

    def get_payments(self, order_id):
        return list(self.payments.get(order_id, []))

    def mark_paid(self, order_id, cf_payment_id=5551, group="upi"):
        self.orders[order_id]["order_status"] = "PAID"
        self.payments[order_id] = [{
            "cf_payment_id": cf_payment_id,
            "payment_group": group,
            "payment_time": "2026-10-19T10:00:00+05:30",
        }]


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="test-secret",
        default_admin_email=ADMIN_EMAIL,
        default_admin_password=ADMIN_PASSWORD,
        frontend_url="https://shop.com",
    )


@pytest.fixture
def db():
    return Database(mongomock.MongoClient()["marketplace_test"])


@pytest.fixture
def provider():
    return FakeCashfree()


@pytest.fixture
def app(settings, db, provider):
    return create_app(settings, db, provider)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def register(client):
    def _register(email, password="secret1", **extra):
        response = client.post("/api/auth/register", json={"email": email, "password": password, **extra})
        assert response.status_code == 201, response.text
        body = response.json()
        return bearer(body["access_token"]), body["user"]
    return _register


@pytest.fixture
def customer(register):
    headers, _ = register("buyer@shop.com")
    return headers


@pytest.fixture
def admin(client):
    response = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert response.status_code == 200, response.text
    return bearer(response.json()["access_token"])


@pytest.fixture
def product(client, admin):
    response = client.post(
        "/api/products",
        json={"name": "Shop Starter Kit", "price": 2499, "category": "templates"},
        headers=admin,
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]
