import json
from decimal import Decimal

import httpx
import pytest

from application.dtos.payments import CreateGatewayCheckout, CustomerInfo
from domain.payment.verification import VerificationStatus
from infrastructure.external.payments.deuna_client import DeunaClient, short_reference, sign
from infrastructure.external.payments.exceptions import PaymentPayloadError, PaymentProviderError, PaymentSignatureError
from tests.factories import make_record


TXN = "ORDER_1792324800_u1_ABCD1234"


def client_for(handler=None):
    return DeunaClient(transport=httpx.MockTransport(handler or (lambda request: httpx.Response(500))))


def signed(payload: dict):
    body = json.dumps(payload).encode()
    return {"X-DeUna-Signature": f"sha256={sign(body, 'whsec_deuna')}"}, body


def test_short_reference_fits_gateway_limit():
    ref = short_reference(TXN)
    assert ref == "O1792324800ABCD1234"
    assert len(ref) <= 20
    assert short_reference("SHORT_REF") == "SHORT_REF"


@pytest.mark.asyncio
async def test_create_checkout():
    seen = {}

    def handler(request: httpx.Request):
        seen["payload"] = json.loads(request.content)
        seen["api_key"] = request.headers["x-api-key"]
        return httpx.Response(
            200,
            json={"transactionId": "DEUNA-77", "deeplink": "https://pay.deuna.app/x", "qr": "data:image/png;base64,AA"},
        )

    client = client_for(handler)
    checkout = await client.create_checkout(
        CreateGatewayCheckout(
            transaction_id=TXN, user_id="u1", amount=Decimal("178.88"), customer=CustomerInfo(given_name="Ana")
        )
    )

    assert seen["api_key"] == "deuna-key"
    assert seen["payload"]["pointOfSale"] == "4432"
    assert seen["payload"]["amount"] == 178.88
    assert seen["payload"]["internalTransactionReference"] == "O1792324800ABCD1234"
    assert checkout.checkout_id == "DEUNA-77"
    assert checkout.internal_reference == "O1792324800ABCD1234"
    assert checkout.qr_code.startswith("data:image")


def test_webhook_with_valid_signature():
    headers, body = signed({"status": "SUCCESS", "amount": 178.88, "idTransaction": "DEUNA-77", "transferNumber": "T1"})

    event = client_for().parse_webhook(headers, body)

    assert event.reference == "DEUNA-77"
    assert event.type == "payment.success"
    assert event.verification.status == VerificationStatus.SUCCEEDED
    assert event.verification.amount == Decimal("178.88")
    assert event.verification.provider_ref == "T1"


def test_webhook_with_bad_signature():
    _, body = signed({"status": "SUCCESS", "amount": 1, "idTransaction": "DEUNA-77"})
    with pytest.raises(PaymentSignatureError):
        client_for().parse_webhook({"x-deuna-signature": "sha256=deadbeef"}, body)
    with pytest.raises(PaymentSignatureError):
        client_for().parse_webhook({}, body)


def test_webhook_missing_fields():
    headers, body = signed({"status": "SUCCESS", "idTransaction": "DEUNA-77"})
    with pytest.raises(PaymentPayloadError) as exc_info:
        client_for().parse_webhook(headers, body)
    assert exc_info.value.details["missing"] == ["amount"]


@pytest.mark.parametrize(
    "status,expected,error_code",
    [
        ("APPROVED", VerificationStatus.SUCCEEDED, None),
        ("REJECTED", VerificationStatus.REJECTED, "DEUNA_REJECTED"),
        ("CANCELLED", VerificationStatus.REJECTED, "DEUNA_CANCELLED"),
        ("PENDING", VerificationStatus.PENDING, "PENDING"),
    ],
)
@pytest.mark.asyncio
async def test_verify_queries_payment_info(status, expected, error_code):
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["payload"] = json.loads(request.content)
        return httpx.Response(200, json={"status": status, "amount": 178.88, "transferNumber": "T1"})

    result = await client_for(handler).verify(make_record(provider="deuna", checkout_id="DEUNA-77"))

    assert seen["path"] == "/merchant/v1/payment/info"
    assert seen["payload"] == {"idTransacionReference": "DEUNA-77", "idType": "0"}
    assert result.status == expected
    assert result.error_code == error_code


@pytest.mark.asyncio
async def test_verify_without_checkout_id():
    result = await client_for().verify(make_record(provider="deuna"))
    assert result.error_code == "MISSING_CHECKOUT_ID"


@pytest.mark.asyncio
async def test_cancel_posts_pending_request():
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["payload"] = json.loads(request.content)
        return httpx.Response(200, json={"status": "CANCELLED"})

    await client_for(handler).cancel(make_record(provider="deuna", checkout_id="DEUNA-77"), "expired")

    assert seen["path"] == "/merchant/v1/payment/cancel"
    assert seen["payload"] == {"pointOfSale": "4432", "transactionId": "DEUNA-77", "reason": "expired"}


@pytest.mark.asyncio
async def test_cancel_refused_by_gateway():
    client = client_for(lambda request: httpx.Response(400, json={"message": "transaction already paid"}))
    with pytest.raises(PaymentProviderError):
        await client.cancel(make_record(provider="deuna", checkout_id="DEUNA-77"), "expired")
