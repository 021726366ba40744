"""
Payments API routes.

Checkout opens a gateway payment intent for the caller's cart; the webhook
receives the gateway's events. Keep this thin: validation, signature checks,
idempotency and order creation live in the application services.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from api.dependencies import Caller, get_caller, get_checkout_service, webhook_service_for
from application.dto import CheckoutIntentCreateDTO, CheckoutIntentDTO
from application.dtos.payments import WebhookAck
from application.services.checkout_service import CheckoutApplicationService
from core.logging_config import get_logger
from core.response import Response as ApiResponse, success_response


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)

# Provider -> signature header
SIGNATURE_HEADERS = {
    "stripe": "Stripe-Signature",
}


@router.post("/webhooks/{provider}", summary="Gateway webhook", response_model=ApiResponse[WebhookAck])
async def payments_webhook(provider: str, request: Request):
    """
    Receive a gateway event.

    - 200 for processed, duplicate, ignored and given-up deliveries
    - 400 for a bad signature or malformed payload
    - 500 when processing failed and the gateway should deliver again
    """
    header = SIGNATURE_HEADERS.get(provider.lower())
    if header is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unsupported provider: {provider}")

    raw_body = await request.body()
    service = webhook_service_for(provider)
    ack = await service.ingest(raw_body, request.headers.get(header))

    if ack.duplicate:
        message = "Duplicate event ignored"
    elif ack.giving_up:
        message = "Retries exhausted"
    else:
        message = "Event received"
    return success_response(data=ack, message=message)


@router.post("/checkout", summary="Create payment intent", response_model=ApiResponse[CheckoutIntentDTO])
async def create_checkout_intent(
    body: CheckoutIntentCreateDTO,
    caller: Caller = Depends(get_caller),
    service: CheckoutApplicationService = Depends(get_checkout_service),
):
    """
    Re-validate the cart and open a payment intent for its total.

    - 409 when the cart is empty, unpriced in the currency or short on stock
    - 502/503 when the gateway rejects or cannot be reached
    """
    intent = await service.create_payment_intent(
        user_id=caller.user_id,
        anonymous_id=caller.anonymous_id,
        currency=body.currency,
        shipping_amount=body.shipping_amount,
        tax_amount=body.tax_amount,
        locale=body.locale,
        email=body.email,
    )
    return success_response(data=intent, message="Payment intent created")
