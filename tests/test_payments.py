import logging

import pytest
from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError

from main import create_app
from payments import customer_details, generate_order_number, new_order_number
from schemas import CurrentUser


def create_payment(client, headers, **body):
    return client.post("/api/payments/create-order", json=body, headers=headers)


def test_create_order_for_unknown_product_uses_requested_amount(client, db, provider, customer):
    response = create_payment(client, customer, product_id=5, amount=1999)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["order_amount"] == 1999
    assert data["payment_session_id"] == "session_" + data["order_id"]
    assert data["cf_order_id"] == provider.orders[data["order_id"]]["cf_order_id"]

    local = db["order"].find_one({"order_number": data["order_id"]})
    assert local["status"] == "pending"
    assert local["amount"] == 1999
    assert local["product_id"] == 5
    assert str(local["_id"]) == data["db_order_id"]


def test_create_order_sends_customer_and_return_url(client, provider, customer, product):
    client.patch("/api/auth/profile", json={"phone": "+91 98765-43210"}, headers=customer)
    data = create_payment(client, customer, product_id=product["id"]).json()["data"]

    sent = provider.created[-1]
    assert sent["order_id"] == data["order_id"]
    assert sent["order_amount"] == 2499
    assert sent["order_currency"] == "INR"
    assert sent["order_note"] == "Shop Starter Kit"
    assert sent["order_meta"]["return_url"] == "https://shop.com/payment/success?order_id={order_id}"
    assert sent["customer_details"]["customer_email"] == "buyer@shop.com"
    assert sent["customer_details"]["customer_phone"] == "9876543210"
    assert data["product_name"] == "Shop Starter Kit"


def test_create_order_requires_product_id(client, db, provider, customer):
    response = create_payment(client, customer, amount=100)
    assert response.status_code == 400
    assert response.json()["error"] == "product_id is required"
    assert provider.created == []


def test_create_order_without_any_amount(client, provider, customer):
    response = create_payment(client, customer, product_id=77)
    assert response.status_code == 400
    assert provider.created == []


def test_create_order_requires_authentication(client, provider):
    response = client.post("/api/payments/create-order", json={"product_id": 5, "amount": 1999})
    assert response.status_code == 401
    assert provider.created == []


def test_provider_rejection_persists_nothing(client, db, provider, customer):
    provider.reject_with = "order_amount : invalid value"
    response = create_payment(client, customer, product_id=5, amount=1999)
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "order_amount : invalid value"}
    assert db["order"].count_documents({}) == 0


def test_missing_session_handle_persists_nothing(client, db, provider, customer, monkeypatch):
    monkeypatch.setattr(provider, "create_order", lambda payload: {"cf_order_id": 1, "message": "no session"})
    response = create_payment(client, customer, product_id=5, amount=1999)
    assert response.status_code == 400
    assert response.json()["error"] == "no session"
    assert db["order"].count_documents({}) == 0


def test_local_insert_failure_still_returns_session(client, db, customer, monkeypatch, caplog):
    def broken(*args, **kwargs):
        raise PyMongoError("disk full")

    monkeypatch.setattr(db, "create_document", broken)
    with caplog.at_level(logging.ERROR, logger="payments"):
        response = create_payment(client, customer, product_id=5, amount=1999)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["payment_session_id"]
    assert data["db_order_id"] is None
    assert "payment.orphaned_provider_order" in caplog.text
    assert data["order_id"] in caplog.text


class UnavailableCollection:
    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise PyMongoError("db down")
        return fail


class PartlyDownHandle:
    def __init__(self, handle, down):
        self.handle = handle
        self.down = down

    def __getitem__(self, name):
        return UnavailableCollection() if name in self.down else self.handle[name]


def test_create_order_survives_order_and_product_storage_outage(client, db, provider, customer, monkeypatch):
    monkeypatch.setattr(db, "handle", PartlyDownHandle(db.handle, {"order", "product"}))
    response = create_payment(client, customer, product_id=5, amount=1999)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["payment_session_id"] == "session_" + data["order_id"]
    assert data["db_order_id"] is None
    assert len(provider.created) == 1


def test_verify_marks_paid_order_completed(client, db, provider, customer):
    order_id = create_payment(client, customer, product_id=5, amount=1999).json()["data"]["order_id"]
    provider.mark_paid(order_id, cf_payment_id=5551, group="upi")

    response = client.post("/api/payments/verify", json={"order_id": order_id}, headers=customer)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["is_paid"] is True
    assert data["order_status"] == "PAID"
    assert data["order_amount"] == 1999
    assert data["order_currency"] == "INR"
    assert data["payment_method"] == "upi"
    assert data["payment_time"] == "2026-10-19T10:00:00+05:30"
    assert data["db_order"]["status"] == "completed"
    assert data["db_order"]["payment_id"] == "5551"
    assert db["order"].find_one({"order_number": order_id})["status"] == "completed"


def test_verify_is_idempotent(client, db, provider, customer):
    order_id = create_payment(client, customer, product_id=5, amount=1999).json()["data"]["order_id"]
    provider.mark_paid(order_id, cf_payment_id=5551)
    first = client.post("/api/payments/verify", json={"order_id": order_id}, headers=customer).json()["data"]

    provider.payments[order_id].insert(0, {"cf_payment_id": 9999, "payment_group": "card"})
    second = client.post("/api/payments/verify", json={"order_id": order_id}, headers=customer).json()["data"]

    assert first["is_paid"] is second["is_paid"] is True
    stored = db["order"].find_one({"order_number": order_id})
    assert stored["status"] == "completed"
    assert stored["payment_id"] == "5551"
    assert second["db_order"]["payment_id"] == "5551"


def test_verify_unpaid_order_leaves_it_pending(client, db, customer):
    order_id = create_payment(client, customer, product_id=5, amount=1999).json()["data"]["order_id"]
    data = client.post("/api/payments/verify", json={"order_id": order_id}, headers=customer).json()["data"]
    assert data["is_paid"] is False
    assert data["payment_method"] == "online"
    assert data["payment_time"] is None
    assert db["order"].find_one({"order_number": order_id})["status"] == "pending"


def test_verify_falls_back_to_provider_order_id(client, db, provider, customer):
    order_id = create_payment(client, customer, product_id=5, amount=1999).json()["data"]["order_id"]
    provider.orders[order_id]["order_status"] = "PAID"
    client.post("/api/payments/verify", json={"order_id": order_id}, headers=customer)
    stored = db["order"].find_one({"order_number": order_id})
    assert stored["payment_id"] == str(provider.orders[order_id]["cf_order_id"])


def test_verify_without_local_order(client, provider, customer):
    provider.orders["MPEXTERNAL1"] = {"order_id": "MPEXTERNAL1", "cf_order_id": 1, "order_status": "PAID",
                                      "order_amount": 10, "order_note": "Elsewhere"}
    data = client.post("/api/payments/verify", json={"order_id": "MPEXTERNAL1"}, headers=customer).json()["data"]
    assert data["is_paid"] is True
    assert data["db_order"] is None
    assert data["product_name"] == "Elsewhere"


def test_verify_errors(client, customer):
    assert client.post("/api/payments/verify", json={}, headers=customer).status_code == 400
    response = client.post("/api/payments/verify", json={"order_id": "MPNOPE"}, headers=customer)
    assert response.status_code == 400
    assert response.json()["error"] == "Order not found"
    assert client.post("/api/payments/verify", json={"order_id": "MPNOPE"}).status_code == 401


def test_status_is_read_only(client, db, provider, customer):
    order_id = create_payment(client, customer, product_id=5, amount=1999).json()["data"]["order_id"]
    provider.mark_paid(order_id)
    data = client.get(f"/api/payments/status/{order_id}").json()["data"]
    assert data["is_paid"] is True
    assert data["db_order"]["status"] == "pending"
    assert db["order"].find_one({"order_number": order_id})["status"] == "pending"


@pytest.fixture
def strict_client(settings, db, provider):
    app = create_app(settings.model_copy(update={"enforce_amount_match": True}), db, provider)
    with TestClient(app) as c:
        yield c


def test_amount_mismatch_blocks_completion_when_enforced(strict_client, db, provider, caplog):
    response = strict_client.post("/api/auth/register", json={"email": "strict@shop.com", "password": "secret1"})
    headers = {"Authorization": "Bearer " + response.json()["access_token"]}
    order_id = create_payment(strict_client, headers, product_id=5, amount=1999).json()["data"]["order_id"]
    provider.mark_paid(order_id)
    provider.orders[order_id]["order_amount"] = 1

    with caplog.at_level(logging.ERROR, logger="payments"):
        data = strict_client.post("/api/payments/verify", json={"order_id": order_id}, headers=headers).json()["data"]
    assert data["is_paid"] is True
    assert db["order"].find_one({"order_number": order_id})["status"] == "pending"
    assert "payment.amount_mismatch" in caplog.text


def test_order_numbers():
    number = generate_order_number()
    assert number.startswith("MP")
    assert number == number.upper()
    assert len({generate_order_number() for _ in range(20)}) == 20


def test_order_number_regenerated_on_collision(db, monkeypatch):
    numbers = iter(["MPTAKEN", "MPFREE"])
    monkeypatch.setattr("payments.generate_order_number", lambda: next(numbers))
    db["order"].insert_one({"order_number": "MPTAKEN"})
    assert new_order_number(db) == "MPFREE"


def test_customer_details_fallbacks():
    user = CurrentUser(id="64b7f0c2a1b2c3d4e5f60718", email="x@shop.com", full_name="")
    details = customer_details(user)
    assert details["customer_id"] == "64b7f0c2a1b2c3d4e5f60718"
    assert details["customer_phone"] == "9999999999"
    assert details["customer_name"] == "x"


def test_order_number_issued_when_lookup_fails(db, monkeypatch):
    monkeypatch.setattr(db, "handle", PartlyDownHandle(db.handle, {"order"}))
    assert new_order_number(db).startswith("MP")
