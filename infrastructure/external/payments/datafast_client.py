"""
Datafast (OPPWA) card widget adapter.

Flow:
1. ``create_checkout`` POSTs form data to ``/v1/checkouts`` and hands the
   browser a widget URL for the returned checkout id.
2. After payment the shopper is redirected back with a ``resourcePath``;
   ``verify`` GETs it and classifies the ``result.code``.
"""
from __future__ import annotations

import re
from typing import Any, Optional
from urllib.parse import urlparse

from application.dtos.payments import CreateGatewayCheckout, GatewayCheckout, WebhookEvent
from core.settings import payment_settings
from domain.payment.entity import PaymentRecord
from domain.payment.verification import PaymentVerificationResult
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import PaymentPayloadError, PaymentProviderError
from shared.codes.payment_codes import PROVIDER_ERROR_TO_INTERNAL


SUCCESS_CODES = {"000.000.000", "000.100.110", "000.100.112"}
CHECKOUT_CREATED = re.compile(r"^000\.200")


def resource_path_of(value: str) -> str:
    """完整 URL 只保留 path 部分，防止请求被引向其他主机"""
    parsed = urlparse(value.strip())
    path = parsed.path if parsed.scheme or parsed.netloc else value.strip()
    if not path.startswith("/"):
        path = "/" + path
    return path


class DatafastClient(BasePaymentClient):
    provider = "datafast"

    def __init__(self, *, transport=None):
        super().__init__(
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
            transport=transport,
        )
        cfg = payment_settings.datafast
        if not (cfg.entity_id and cfg.access_token):
            raise RuntimeError("DATAFAST configuration incomplete (entity_id, access_token)")
        self._cfg = cfg
        self._base_url = cfg.base_url.rstrip("/")

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._cfg.access_token}"}

    def widget_url(self, checkout_id: str) -> str:
        return f"{self._base_url}/v1/paymentWidgets.js?checkoutId={checkout_id}"

    async def create_checkout(self, req: CreateGatewayCheckout) -> GatewayCheckout:
        form: dict[str, Any] = {
            "entityId": self._cfg.entity_id,
            "amount": f"{req.amount:.2f}",
            "currency": req.currency,
            "paymentType": "DB",
            "merchantTransactionId": req.transaction_id,
            "customer.givenName": req.customer.given_name,
            "customer.surname": req.customer.surname or req.customer.given_name,
            "customer.merchantCustomerId": req.user_id[:16],
        }
        if req.customer.email:
            form["customer.email"] = req.customer.email
        if req.customer.phone:
            form["customer.phone"] = req.customer.phone
        if req.customer.identification:
            form["customer.identificationDocType"] = "IDCARD"
            form["customer.identificationDocId"] = req.customer.identification
        if self._cfg.test_mode:
            form["testMode"] = self._cfg.test_mode

        resp = await self._send("POST", f"{self._base_url}/v1/checkouts", data=form, headers=self._headers)
        data = self._json(resp)
        result = data.get("result") or {}
        code = str(result.get("code") or "")
        if not CHECKOUT_CREATED.match(code) or not data.get("id"):
            raise PaymentProviderError(
                result.get("description") or "Datafast checkout creation failed",
                provider=self.provider,
                provider_code=code or None,
            )
        checkout_id = str(data["id"])
        self._log("payment_checkout_created", transaction_id=req.transaction_id, checkout_id=checkout_id)
        return GatewayCheckout(
            provider=self.provider,
            transaction_id=req.transaction_id,
            checkout_id=checkout_id,
            redirect_url=self.widget_url(checkout_id),
            raw=data,
        )

    async def _verify(self, record: PaymentRecord, *, resource_path: Optional[str] = None) -> PaymentVerificationResult:
        if resource_path:
            path = resource_path_of(resource_path)
        elif record.checkout_id:
            path = f"/v1/checkouts/{record.checkout_id}/payment"
        else:
            return PaymentVerificationResult.rejected(
                record.transaction_id, self.provider, "MISSING_RESOURCE_PATH", "No resource path to verify"
            )

        resp = await self._send(
            "GET", f"{self._base_url}{path}", params={"entityId": self._cfg.entity_id}, headers=self._headers
        )
        data = self._json(resp)
        return self.classify(record.transaction_id, data)

    def classify(self, transaction_id: str, data: dict[str, Any]) -> PaymentVerificationResult:
        result = data.get("result") or {}
        code = str(result.get("code") or "")
        description = result.get("description")
        amount = self._amount(data.get("amount"))
        extra = {
            "provider_ref": data.get("id"),
            "payment_method": data.get("paymentBrand") or "card",
            "metadata": {"result_code": code, "description": description},
        }

        if code in SUCCESS_CODES:
            merchant_txn = data.get("merchantTransactionId")
            if merchant_txn and merchant_txn != transaction_id:
                return PaymentVerificationResult.rejected(
                    transaction_id,
                    self.provider,
                    "TRANSACTION_MISMATCH",
                    "Gateway confirmation belongs to a different transaction",
                    **extra,
                )
            if amount is None:
                return PaymentVerificationResult.rejected(
                    transaction_id, self.provider, "GATEWAY_ERROR", "Gateway confirmation carries no amount", **extra
                )
            return PaymentVerificationResult.succeeded(transaction_id, self.provider, amount, **extra)

        if code in self._cfg.already_processed_codes:
            return PaymentVerificationResult.already_processed(transaction_id, self.provider, amount=amount, **extra)

        errors = PROVIDER_ERROR_TO_INTERNAL.get(self.provider, {})
        if self._map_status(code) == "pending":
            return PaymentVerificationResult.pending(
                transaction_id, self.provider, error_code=errors.get(code, "PENDING"), error_message=description, **extra
            )
        if code.startswith("800."):
            return PaymentVerificationResult.rejected(
                transaction_id, self.provider, errors.get(code, "PAYMENT_REJECTED"), description, **extra
            )
        return PaymentVerificationResult.rejected(
            transaction_id, self.provider, errors.get(code, "GATEWAY_ERROR"), description, **extra
        )

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:
        raise PaymentPayloadError("Datafast confirms payments through the redirect resource path", provider=self.provider)
