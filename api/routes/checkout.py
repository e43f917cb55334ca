"""
Checkout API routes.

Totals are always recomputed on the server. Cart lines carry only product_id,
quantity and attributes; prices come from the product catalog.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends

from api.dependencies import get_checkout_service, get_current_user_id
from application.dtos.checkout import CreateCheckoutIntent, QuoteRequest
from application.services.checkout_service import CheckoutService
from core.response import success_response


router = APIRouter(prefix="/checkout", tags=["Checkout"])


@router.post("/quote", summary="Price a cart without saving it")
async def quote(
    payload: QuoteRequest,
    user_id: str = Depends(get_current_user_id),
    service: CheckoutService = Depends(get_checkout_service),
):
    result = await service.quote(user_id, payload)
    return success_response(data=result.to_dict(), message="Quote computed")


@router.post("/intents", summary="Create checkout snapshot")
async def create_intent(
    payload: CreateCheckoutIntent,
    user_id: str = Depends(get_current_user_id),
    service: CheckoutService = Depends(get_checkout_service),
):
    result = await service.create_intent(user_id, payload)
    return success_response(data=result.model_dump(mode="json"), message="Checkout saved")


@router.get("/intents/{session_id}", summary="Get checkout snapshot")
async def get_intent(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    service: CheckoutService = Depends(get_checkout_service),
):
    snapshot = await service.get_snapshot(user_id, session_id)
    data = snapshot.to_dict()
    data.pop("user_id", None)
    return success_response(data=data)
