from decimal import Decimal
from urllib.parse import parse_qs

import httpx
import pytest

from application.dtos.payments import CreateGatewayCheckout, CustomerInfo
from domain.payment.verification import VerificationStatus
from infrastructure.external.payments.datafast_client import DatafastClient, resource_path_of
from infrastructure.external.payments.exceptions import PaymentProviderError
from tests.factories import make_record


TXN = "ORDER_1792324800_u1_ABCD1234"


def client_for(handler):
    return DatafastClient(transport=httpx.MockTransport(handler))


def payment_payload(code, **extra):
    data = {
        "id": "8ac7a4a1",
        "paymentBrand": "VISA",
        "amount": "178.88",
        "merchantTransactionId": TXN,
        "result": {"code": code, "description": "desc"},
    }
    data.update(extra)
    return data


@pytest.mark.parametrize(
    "value,expected",
    [
        ("/v1/checkouts/abc/payment", "/v1/checkouts/abc/payment"),
        ("v1/checkouts/abc/payment", "/v1/checkouts/abc/payment"),
        ("https://attacker.example.com/v1/checkouts/abc/payment", "/v1/checkouts/abc/payment"),
    ],
)
def test_resource_path_of(value, expected):
    assert resource_path_of(value) == expected


@pytest.mark.asyncio
async def test_create_checkout_posts_form():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["form"] = parse_qs(request.content.decode())
        seen["auth"] = request.headers["authorization"]
        return httpx.Response(200, json={"id": "CHK123", "result": {"code": "000.200.100"}})

    client = client_for(handler)
    checkout = await client.create_checkout(
        CreateGatewayCheckout(
            transaction_id=TXN,
            user_id="u1",
            amount=Decimal("178.88"),
            customer=CustomerInfo.from_billing({"name": "Ana Torres", "email": "ana@example.com"}),
        )
    )
    await client.aclose()

    assert seen["url"].endswith("/v1/checkouts")
    assert seen["auth"] == "Bearer datafast-token"
    assert seen["form"]["amount"] == ["178.88"]
    assert seen["form"]["merchantTransactionId"] == [TXN]
    assert seen["form"]["customer.givenName"] == ["Ana"]
    assert seen["form"]["customer.surname"] == ["Torres"]
    assert checkout.checkout_id == "CHK123"
    assert checkout.redirect_url.endswith("paymentWidgets.js?checkoutId=CHK123")


@pytest.mark.asyncio
async def test_create_checkout_error_raises():
    client = client_for(lambda request: httpx.Response(200, json={"result": {"code": "200.300.404"}}))
    with pytest.raises(PaymentProviderError):
        await client.create_checkout(
            CreateGatewayCheckout(
                transaction_id=TXN,
                user_id="u1",
                amount=Decimal("10.00"),
                customer=CustomerInfo(given_name="Ana"),
            )
        )


@pytest.mark.asyncio
async def test_verify_only_talks_to_configured_host():
    seen = {}

    def handler(request: httpx.Request):
        seen["host"] = request.url.host
        seen["path"] = request.url.path
        seen["entity"] = request.url.params.get("entityId")
        return httpx.Response(200, json=payment_payload("000.100.112"))

    client = client_for(handler)
    result = await client.verify(
        make_record(provider="datafast"), resource_path="https://attacker.example.com/v1/checkouts/abc/payment"
    )

    assert seen == {"host": "eu-test.oppwa.com", "path": "/v1/checkouts/abc/payment", "entity": "8a829418test"}
    assert result.status == VerificationStatus.SUCCEEDED
    assert result.amount == Decimal("178.88")
    assert result.payment_method == "VISA"


@pytest.mark.parametrize(
    "code,status,error_code",
    [
        ("000.000.000", VerificationStatus.SUCCEEDED, None),
        ("200.300.404", VerificationStatus.ALREADY_PROCESSED, None),
        ("000.200.100", VerificationStatus.PENDING, "CHECKOUT_PENDING"),
        ("800.100.155", VerificationStatus.REJECTED, "INSUFFICIENT_FUNDS"),
        ("800.999.999", VerificationStatus.REJECTED, "PAYMENT_REJECTED"),
        ("100.400.500", VerificationStatus.REJECTED, "GATEWAY_ERROR"),
    ],
)
def test_classify(code, status, error_code):
    client = client_for(lambda request: httpx.Response(500))
    result = client.classify(TXN, payment_payload(code))
    assert result.status == status
    assert result.error_code == error_code


def test_success_for_other_transaction_is_rejected():
    client = client_for(lambda request: httpx.Response(500))
    result = client.classify(TXN, payment_payload("000.000.000", merchantTransactionId="ORDER_OTHER"))
    assert result.status == VerificationStatus.REJECTED
    assert result.error_code == "TRANSACTION_MISMATCH"


@pytest.mark.asyncio
async def test_gateway_outage_is_pending():
    client = client_for(lambda request: httpx.Response(503))
    result = await client.verify(make_record(provider="datafast", checkout_id="CHK123"))
    assert result.status == VerificationStatus.PENDING
    assert result.error_code == "GATEWAY_UNAVAILABLE"


@pytest.mark.asyncio
async def test_timeout_is_pending():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    client = client_for(handler)
    result = await client.verify(make_record(provider="datafast", checkout_id="CHK123"))
    assert result.status == VerificationStatus.PENDING
    assert result.error_code == "TIMEOUT"


@pytest.mark.asyncio
async def test_verify_without_resource_is_rejected():
    client = client_for(lambda request: httpx.Response(500))
    result = await client.verify(make_record(provider="datafast"))
    assert result.error_code == "MISSING_RESOURCE_PATH"
