"""
Payments API Router - Razorpay checkout.

Flow:
1. POST /create-order - gateway order (intent) for an existing Order
2. Client pays with the gateway widget
3. POST /verify - client hands back the signed ids; payment completes
4. POST /webhook - gateway confirms out-of-band (captured/failed/refund)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, Field

from storefront.auth_middleware import get_current_admin, get_current_user
from storefront.models import Admin, User
from storefront.routers.dependencies import get_payment_service
from storefront.schemas import PaymentResponse, ok
from storefront.services.payments import PaymentService

router = APIRouter()


class CreateIntentRequest(BaseModel):
    order_id: str
    amount: Optional[float] = Field(None, gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    payment_method: Optional[str] = None


class VerifyRequest(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str
    payment_method: Optional[str] = None


@router.post("/create-order")
async def create_payment_order(
    payload: CreateIntentRequest,
    user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    intent = await service.create_intent(
        user,
        payload.order_id,
        amount=payload.amount,
        currency=payload.currency,
        sub_method=payload.payment_method,
    )
    return ok(intent)


@router.post("/verify")
async def verify_payment(
    payload: VerifyRequest,
    user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    payment = await service.verify(
        user,
        payload.razorpay_order_id,
        payload.razorpay_payment_id,
        payload.razorpay_signature,
        client_method=payload.payment_method,
    )
    return ok(PaymentResponse.model_validate(payment), message="Payment verified successfully")


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    signature: Optional[str] = Header(None, alias="X-Razorpay-Signature"),
    service: PaymentService = Depends(get_payment_service),
):
    """Gateway events; the signature over the raw body is checked before anything is parsed."""
    raw_body = await request.body()
    outcome = await service.handle_webhook(raw_body, signature)
    return ok(message=f"Webhook processed: {outcome}")


@router.get("/test-config")
async def test_config(
    admin: Admin = Depends(get_current_admin),
    service: PaymentService = Depends(get_payment_service),
):
    return ok(await service.check_configuration(), message="Gateway configuration is valid")
