"""
Deuna (QR / deeplink transfer) adapter.

Deuna identifies a payment by its own ``transactionId``, stored on the
PaymentRecord as ``checkout_id``. Webhooks carry it as ``idTransaction`` and
are signed with ``X-DeUna-Signature: sha256=<hex hmac of the raw body>``.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import re
from typing import Any, Optional

from application.dtos.payments import CreateGatewayCheckout, GatewayCheckout, WebhookEvent
from core.settings import payment_settings
from domain.payment.entity import PaymentRecord
from domain.payment.verification import PaymentVerificationResult
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentPayloadError,
    PaymentProviderError,
    PaymentSignatureError,
)


SIGNATURE_HEADER = "x-deuna-signature"
SUCCESS_STATUSES = {"SUCCESS", "APPROVED"}
WEBHOOK_REQUIRED_FIELDS = ("status", "amount", "idTransaction")
MAX_REFERENCE_LENGTH = 20
MAX_DETAIL_LENGTH = 50


def short_reference(transaction_id: str) -> str:
    """
    Deuna 的 internalTransactionReference 最多 20 个字符

    ORDER_{ts}_{user}_{rand} -> O{ts后10位}{rand前9位}
    """
    if len(transaction_id) <= MAX_REFERENCE_LENGTH:
        return transaction_id
    match = re.match(r"^ORDER_(\d+)_[^_]+_([A-Za-z0-9]+)$", transaction_id)
    if match:
        ts, rand = match.groups()
        return f"O{ts[-10:]}{rand}"[:MAX_REFERENCE_LENGTH]
    return transaction_id[-MAX_REFERENCE_LENGTH:]


def sign(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class DeunaClient(BasePaymentClient):
    provider = "deuna"

    def __init__(self, *, transport=None):
        super().__init__(
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
            transport=transport,
        )
        cfg = payment_settings.deuna
        if not (cfg.api_key and cfg.api_secret and cfg.point_of_sale):
            raise RuntimeError("DEUNA configuration incomplete (api_key, api_secret, point_of_sale)")
        self._cfg = cfg
        self._base_url = cfg.base_url.rstrip("/")

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self._cfg.api_key or "",
            "x-api-secret": self._cfg.api_secret or "",
            "Accept": "application/json",
        }

    async def create_checkout(self, req: CreateGatewayCheckout) -> GatewayCheckout:
        reference = short_reference(req.transaction_id)
        payload = {
            "pointOfSale": self._cfg.point_of_sale,
            "qrType": self._cfg.qr_type,
            "amount": float(req.amount),
            "detail": (req.description or f"Pedido {reference}")[:MAX_DETAIL_LENGTH],
            "internalTransactionReference": reference,
            "format": self._cfg.format,
        }
        resp = await self._send(
            "POST", f"{self._base_url}/merchant/v1/payment/request", json=payload, headers=self._headers
        )
        data = self._json(resp)
        if resp.status_code >= 400 or not data.get("transactionId"):
            raise PaymentProviderError(
                str(data.get("message") or data.get("error") or "Deuna payment request failed"),
                provider=self.provider,
                provider_code=str(resp.status_code),
            )
        checkout_id = str(data["transactionId"])
        self._log(
            "payment_checkout_created",
            transaction_id=req.transaction_id,
            checkout_id=checkout_id,
            internal_reference=reference,
        )
        return GatewayCheckout(
            provider=self.provider,
            transaction_id=req.transaction_id,
            checkout_id=checkout_id,
            redirect_url=data.get("deeplink"),
            qr_code=data.get("qr"),
            numeric_code=data.get("numericCode"),
            internal_reference=reference,
            raw=data,
        )

    async def _verify(self, record: PaymentRecord, *, resource_path: Optional[str] = None) -> PaymentVerificationResult:
        if not record.checkout_id:
            return PaymentVerificationResult.rejected(
                record.transaction_id, self.provider, "MISSING_CHECKOUT_ID", "Payment has no Deuna transaction id"
            )
        payload = {"idTransacionReference": record.checkout_id, "idType": "0"}
        resp = await self._send("POST", f"{self._base_url}/merchant/v1/payment/info", json=payload, headers=self._headers)
        data = self._json(resp)
        if resp.status_code >= 400:
            raise PaymentProviderError(
                str(data.get("message") or "Deuna status query failed"),
                provider=self.provider,
                provider_code=str(resp.status_code),
            )
        return self.classify(record.transaction_id, data)

    async def cancel(self, record: PaymentRecord, reason: str) -> None:
        """撤销尚未支付的 QR 请求；已付款的请求会被网关拒绝，调用方据此保留本地记录"""
        if not record.checkout_id:
            return
        payload = {
            "pointOfSale": self._cfg.point_of_sale,
            "transactionId": record.checkout_id,
            "reason": reason,
        }
        resp = await self._send(
            "POST", f"{self._base_url}/merchant/v1/payment/cancel", json=payload, headers=self._headers
        )
        data = self._json(resp)
        if resp.status_code >= 400:
            raise PaymentProviderError(
                str(data.get("message") or "Deuna payment cancel failed"),
                provider=self.provider,
                provider_code=str(resp.status_code),
            )
        self._log("payment_gateway_cancelled", transaction_id=record.transaction_id, checkout_id=record.checkout_id)

    def classify(self, transaction_id: str, data: dict[str, Any]) -> PaymentVerificationResult:
        status = str(data.get("status") or "").upper()
        extra = {
            "provider_ref": data.get("transferNumber") or data.get("idTransaction") or data.get("transactionId"),
            "payment_method": "deuna",
            "metadata": {
                "status": status,
                "transfer_number": data.get("transferNumber"),
                "internal_reference": data.get("internalTransactionReference"),
            },
        }
        if status in SUCCESS_STATUSES:
            amount = self._amount(data.get("amount"))
            if amount is None:
                return PaymentVerificationResult.rejected(
                    transaction_id, self.provider, "GATEWAY_ERROR", "Deuna confirmation carries no amount", **extra
                )
            return PaymentVerificationResult.succeeded(transaction_id, self.provider, amount, **extra)
        mapped = self._map_status(status)
        if mapped in ("failed", "cancelled"):
            return PaymentVerificationResult.rejected(
                transaction_id, self.provider, f"DEUNA_{status}", data.get("description"), **extra
            )
        return PaymentVerificationResult.pending(transaction_id, self.provider, error_code="PENDING", **extra)

    def verify_signature(self, headers: dict[str, Any], body: bytes) -> None:
        secret = self._cfg.webhook_secret
        if not secret:
            raise PaymentSignatureError("Webhook secret not configured", provider=self.provider)
        lowered = {str(k).lower(): v for k, v in headers.items()}
        provided = str(lowered.get(SIGNATURE_HEADER) or "")
        if provided.startswith("sha256="):
            provided = provided[len("sha256="):]
        if not provided or not hmac.compare_digest(sign(body, secret), provided.strip()):
            raise PaymentSignatureError("Invalid webhook signature", provider=self.provider)

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:
        self.verify_signature(headers, body)
        try:
            data = json.loads(body or b"{}")
        except ValueError as exc:
            raise PaymentPayloadError("Webhook body is not valid JSON", provider=self.provider) from exc
        if not isinstance(data, dict):
            raise PaymentPayloadError("Webhook body must be an object", provider=self.provider)
        missing = [f for f in WEBHOOK_REQUIRED_FIELDS if data.get(f) in (None, "")]
        if missing:
            raise PaymentPayloadError(
                f"Webhook missing required fields: {', '.join(missing)}",
                provider=self.provider,
                details={"missing": missing},
            )
        reference = str(
            data.get("idTransaction") or data.get("internalTransactionReference") or data.get("transferNumber")
        )
        verification = self.classify(reference, data)
        return WebhookEvent(
            id=reference,
            type=f"payment.{str(data['status']).lower()}",
            provider=self.provider,
            reference=reference,
            verification=verification,
            data=data,
            raw_headers=dict(headers),
            raw_body=body,
        )
