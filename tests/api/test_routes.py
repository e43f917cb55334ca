import asyncio
import json
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient

from api.dependencies import get_checkout_service, get_payment_service
from application.services.checkout_service import CheckoutService
from application.services.payment_reconciler import PaymentReconciler
from application.services.payment_service import PaymentService
from core.config import settings
from infrastructure.cache.checkout_snapshot_store import CacheCheckoutSnapshotStore
from infrastructure.database import create_tables, drop_tables
from infrastructure.external.payments import get_payment_gateway
from infrastructure.external.payments.deuna_client import sign
from infrastructure.locks import LocalTransactionLocker
from infrastructure.unit_of_work import uow_factory
from main import app
from shared.codes.payment_codes import PaymentCode
from tests.factories import ADDRESS, CART, seed_catalog


def token(user_id="u1", **claims):
    payload = {"sub": user_id, "type": "access", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)}
    payload.update(claims)
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def auth(user_id="u1"):
    return {"Authorization": f"Bearer {token(user_id)}"}


@pytest.fixture
def tables():
    asyncio.run(drop_tables())
    asyncio.run(create_tables())
    asyncio.run(seed_catalog())
    yield
    asyncio.run(drop_tables())


@pytest.fixture
def client(tables, cache, clock, pricing_engine):
    store = CacheCheckoutSnapshotStore(cache, clock=clock)
    checkout = CheckoutService(uow_factory=uow_factory, snapshot_store=store, pricing_engine=pricing_engine, clock=clock)

    def payment_service():
        return PaymentService(
            gateway_factory=get_payment_gateway,
            uow_factory=uow_factory,
            reconciler=PaymentReconciler(
                uow_factory=uow_factory,
                snapshot_store=store,
                pricing_engine=pricing_engine,
                locker=LocalTransactionLocker(),
                clock=clock,
            ),
            checkout=checkout,
            dedupe_cache=cache,
            simulation_allowed=True,
        )

    app.dependency_overrides[get_checkout_service] = lambda: checkout
    app.dependency_overrides[get_payment_service] = payment_service
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "healthy"
    assert resp.headers.get("X-Request-ID")


def test_requires_token(client):
    resp = client.post("/api/v1/checkout/quote", json={"items": CART})
    assert resp.status_code == 401


def test_rejects_expired_token(client):
    expired = token(exp=datetime.now(timezone.utc) - timedelta(minutes=1))
    resp = client.post("/api/v1/checkout/quote", json={"items": CART}, headers={"Authorization": f"Bearer {expired}"})
    assert resp.status_code == 401


def test_quote(client):
    resp = client.post("/api/v1/checkout/quote", json={"items": CART}, headers=auth())
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["final_total"] == "198.20"
    assert data["shipping_breakdown"]["seller_amount"] == "4.00"


def test_quote_prices_from_catalog(client):
    tampered = [{**CART[0], "price": "0.01", "seller_id": "s9"}, {**CART[1], "price": "0.01"}]
    resp = client.post("/api/v1/checkout/quote", json={"items": tampered}, headers=auth())
    assert resp.status_code == 200
    assert resp.json()["data"]["final_total"] == "198.20"


def test_quote_rejects_unknown_product(client):
    resp = client.post("/api/v1/checkout/quote", json={"items": [{"product_id": "p404", "quantity": 1}]}, headers=auth())
    assert resp.status_code == 422
    assert resp.json()["code"] == PaymentCode.CHECKOUT_INVALID


def test_quote_rejects_bad_quantity(client):
    bad = [{**CART[0], "quantity": 0}]
    resp = client.post("/api/v1/checkout/quote", json={"items": bad}, headers=auth())
    assert resp.status_code == 422


def test_unknown_webhook_provider_is_acknowledged(client):
    resp = client.post("/api/v1/payments/webhooks/paypal", content=b"{}")
    assert resp.status_code == 200
    assert resp.json()["data"]["ack"] == "invalid_payload"


def test_webhook_with_bad_signature_is_acknowledged(client):
    body = json.dumps({"status": "SUCCESS", "amount": 1, "idTransaction": "X"}).encode()
    resp = client.post(
        "/api/v1/payments/webhooks/deuna", content=body, headers={"X-DeUna-Signature": "sha256=" + "0" * 64}
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["ack"] == "invalid_signature"


def test_signed_webhook_for_unknown_payment(client):
    body = json.dumps({"status": "SUCCESS", "amount": 1, "idTransaction": "DEUNA-404"}).encode()
    resp = client.post(
        "/api/v1/payments/webhooks/deuna", content=body, headers={"X-DeUna-Signature": sign(body, "whsec_deuna")}
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["ack"] == "no_user_found"


def test_simulated_checkout_flow(client):
    intent = client.post(
        "/api/v1/checkout/intents",
        json={"session_id": "sess_0001", "items": CART, "shipping_data": ADDRESS},
        headers=auth(),
    )
    assert intent.status_code == 200
    assert intent.json()["data"]["final_total"] == "198.20"

    snapshot = client.get("/api/v1/checkout/intents/sess_0001", headers=auth())
    assert "user_id" not in snapshot.json()["data"]
    assert client.get("/api/v1/checkout/intents/sess_0001", headers=auth("u2")).status_code == 410

    started = client.post(
        "/api/v1/payments/checkouts", json={"session_id": "sess_0001", "provider": "simulation"}, headers=auth()
    )
    assert started.status_code == 200
    txn = started.json()["data"]["transaction_id"]

    verified = client.post(
        "/api/v1/payments/verify", json={"transaction_id": txn, "simulate_success": True}, headers=auth()
    )
    assert verified.status_code == 200
    body = verified.json()["data"]
    assert body["success"] is True
    assert body["order_number"].startswith("ORD-")

    status = client.get(f"/api/v1/payments/{txn}", headers=auth())
    assert status.json()["data"]["status"] == "completed"
    assert client.get(f"/api/v1/payments/{txn}", headers=auth("u2")).status_code == 404


def test_rejected_payment_returns_transaction_id(client):
    client.post(
        "/api/v1/checkout/intents",
        json={"session_id": "sess_0002", "items": CART, "shipping_data": ADDRESS},
        headers=auth(),
    )
    started = client.post(
        "/api/v1/payments/checkouts", json={"session_id": "sess_0002", "provider": "simulation"}, headers=auth()
    )
    txn = started.json()["data"]["transaction_id"]

    resp = client.post("/api/v1/payments/verify", json={"transaction_id": txn, "simulate_success": False}, headers=auth())

    assert resp.status_code == 402
    payload = resp.json()
    assert payload["code"] == PaymentCode.PAYMENT_REJECTED
    assert payload["data"]["transaction_id"] == txn
    assert payload["error"]["retry_allowed"] is False


def test_verify_needs_a_confirmation(client):
    resp = client.post("/api/v1/payments/verify", json={"transaction_id": "ORDER_1_u1_X"}, headers=auth())
    assert resp.status_code == 422


def test_request_id_is_propagated(client):
    resp = client.get("/health", headers={"X-Request-ID": "gw-abc.123"})
    assert resp.headers["X-Request-ID"] == "gw-abc.123"
    assert resp.json()["data"]["database"] is True


def test_unsafe_request_id_is_replaced(client):
    resp = client.get("/health", headers={"X-Request-ID": "bad id<script>"})
    assert resp.headers["X-Request-ID"] != "bad id<script>"
    assert len(resp.headers["X-Request-ID"]) == 36


def test_correlation_id_used_when_request_id_missing(client):
    resp = client.get("/health", headers={"X-Correlation-ID": "deuna-77"})
    assert resp.headers["X-Request-ID"] == "deuna-77"
