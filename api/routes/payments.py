"""
Payments API routes.

Exposes checkout start, redirect verification, gateway webhooks and status
queries via the application service. Keep this thin: no gateway details here.
"""
from __future__ import annotations

import ipaddress

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.dependencies import get_current_user_id, get_payment_service
from application.dtos.payments import SUPPORTED_PROVIDERS, StartPayment, VerifyPayment
from application.services.payment_service import PaymentService
from core.exceptions import business_code_to_http_status
from core.logging_config import get_logger
from core.response import error_response, success_response
from core.settings import payment_settings
from shared.codes.payment_codes import PaymentCode


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)

# error_code of a reconcile outcome -> PaymentCode for the response envelope
_OUTCOME_CODES = {
    "PAYMENT_NOT_FOUND": PaymentCode.PAYMENT_NOT_FOUND,
    "AMOUNT_MISMATCH": PaymentCode.AMOUNT_MISMATCH,
    "CHECKOUT_EXPIRED": PaymentCode.CHECKOUT_EXPIRED,
    "CHECKOUT_MISMATCH": PaymentCode.CHECKOUT_INVALID,
    "ORDER_CREATION_FAILED": PaymentCode.ORDER_CREATION_FAILED,
    "COUPON_INVALID": PaymentCode.COUPON_INVALID,
    "COUPON_USED": PaymentCode.COUPON_USED,
    "COUPON_EXPIRED": PaymentCode.COUPON_EXPIRED,
    "COUPON_NOT_OWNER": PaymentCode.COUPON_NOT_OWNER,
    "COUPON_NOT_APPLICABLE": PaymentCode.COUPON_NOT_APPLICABLE,
    "PAYMENT_CANCELLED": PaymentCode.PAYMENT_ALREADY_FINAL,
    "PAYMENT_REFUNDED": PaymentCode.PAYMENT_ALREADY_FINAL,
}


def _ip_allowed(remote_ip: str | None) -> bool:
    allowlist = payment_settings.webhook.ip_allowlist or []
    if not allowlist:
        return True
    if not remote_ip:
        return False
    try:
        rip = ipaddress.ip_address(remote_ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            if "/" in entry:
                if rip in ipaddress.ip_network(entry, strict=False):
                    return True
            elif rip == ipaddress.ip_address(entry):
                return True
        except ValueError:
            logger.warning("webhook_allowlist_entry_invalid", entry=entry)
    return False


@router.post("/checkouts", summary="Start gateway checkout for a saved checkout session")
async def start_payment(
    payload: StartPayment,
    user_id: str = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
):
    checkout = await service.start_payment(user_id, payload)
    return success_response(data=checkout.model_dump(mode="json", exclude={"raw"}), message="Checkout created")


@router.post("/verify", summary="Confirm a payment after gateway redirect")
async def verify_payment(
    payload: VerifyPayment,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
):
    outcome = await service.verify(user_id, payload)
    result = outcome.to_dto()
    if outcome.success:
        return success_response(data=result.model_dump(mode="json"), message=outcome.message)

    # 非成功结果仍返回交易号，客户端据此联系客服或重试
    code = _OUTCOME_CODES.get(outcome.error_code or "", PaymentCode.PAYMENT_REJECTED)
    if outcome.retry_allowed and code == PaymentCode.PAYMENT_REJECTED:
        code = PaymentCode.PROVIDER_RECOVERABLE
    response = error_response(
        code=code,
        message=outcome.message,
        error_type=outcome.error_code or "PaymentFailed",
        details=outcome.details or None,
        request_id=getattr(request.state, "request_id", None),
        retry_allowed=outcome.retry_allowed,
        data=result.model_dump(mode="json"),
    )
    return JSONResponse(status_code=business_code_to_http_status(code), content=response.model_dump(mode="json"))


@router.post("/webhooks/{provider}", summary="Gateway webhook (always acknowledged with 200)")
async def payments_webhook(
    provider: str,
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    remote_ip = request.client.host if request.client else None
    if not _ip_allowed(remote_ip):
        logger.warning("webhook_ip_rejected", provider=provider, remote_ip=remote_ip)
        return success_response(data={"ack": "ip_not_allowed", "provider": provider}, message="Ignored")

    name = provider.lower()
    if name not in SUPPORTED_PROVIDERS:
        logger.warning("webhook_unknown_provider", provider=provider)
        return success_response(data={"ack": "invalid_payload", "provider": provider}, message="Ignored")

    raw_body = await request.body()
    headers = {k.lower(): v for k, v in request.headers.items()}
    ack = await service.handle_webhook(name, headers, raw_body)
    return success_response(data=ack.to_dict(), message="Received")


@router.get("/{transaction_id}", summary="Payment status")
async def payment_status(
    transaction_id: str,
    user_id: str = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
):
    view = await service.status(user_id, transaction_id)
    return success_response(data=view.model_dump(mode="json"))
