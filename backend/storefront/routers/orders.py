"""
Orders API Router.

Checkout creates the Order (and, for online payment, its pending Payment) in
the request's transaction. Send an Idempotency-Key header to make retries of
POST /api/orders safe when Redis is configured.
"""

from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from storefront.auth_middleware import Caller, get_caller, get_current_admin, get_current_user
from storefront.middleware.idempotency import fingerprint, get_idempotency_middleware
from storefront.models import Admin, User
from storefront.routers.dependencies import get_order_service
from storefront.schemas import OrderResponse, ok, order_with_payment
from storefront.services.email import EmailService
from storefront.services.orders import OrderService

router = APIRouter()


class OrderItemIn(BaseModel):
    product_id: Optional[str] = None
    name: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    total_price: Optional[float] = Field(None, ge=0)
    image: Optional[str] = None
    variant: Optional[dict] = None


class PaymentInfo(BaseModel):
    method: str = "cod"
    currency: Optional[str] = None


class Discount(BaseModel):
    code: Optional[str] = None
    amount: float = Field(..., ge=0)
    type: Optional[str] = None


class OrderCreate(BaseModel):
    items: List[OrderItemIn] = Field(..., min_length=1)
    shipping_address: dict
    billing_address: Optional[dict] = None
    payment: PaymentInfo = PaymentInfo()
    selected_payment_method: Optional[str] = None
    subtotal: float = Field(..., ge=0)
    shipping_cost: float = Field(0, ge=0)
    tax: float = Field(0, ge=0)
    total: Optional[float] = None
    discounts: List[Discount] = []
    shipping_method: Optional[str] = None
    notes: Optional[str] = None
    metadata: Optional[dict] = None


class StatusUpdate(BaseModel):
    status: str


class PaymentStatusUpdate(BaseModel):
    status: str
    payment_method: Optional[str] = None


@router.post("", status_code=201)
async def create_order(
    payload: OrderCreate,
    background_tasks: BackgroundTasks,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    async def place():
        order, payment = await service.create_order(user, payload.model_dump())
        background_tasks.add_task(
            EmailService().send_order_confirmation,
            user.email, order.order_number, f"{order.total:.2f}", order.payment_currency,
        )
        return jsonable_encoder(ok(order_with_payment(order, payment), message="Order created successfully"))

    guard = get_idempotency_middleware()
    if guard and idempotency_key:
        return await guard.ensure_idempotent(
            key=idempotency_key,
            owner_id=user.id,
            endpoint="/orders",
            handler=place,
            request_fingerprint=fingerprint(payload.model_dump()),
            # Replays must only ever return an order that was committed
            before_store=service.db.commit,
        )
    return await place()


@router.get("/mine")
async def my_orders(
    user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    rows = await service.list_for_user(user)
    return ok([order_with_payment(order, payment) for order, payment in rows], count=len(rows))


@router.get("")
async def list_orders(
    status: Optional[str] = Query(None),
    page: Optional[int] = Query(None, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    admin: Admin = Depends(get_current_admin),
    service: OrderService = Depends(get_order_service),
):
    orders, total, page, limit = await service.list_all(status=status, page=page, limit=limit)
    return ok(
        [OrderResponse.model_validate(o) for o in orders],
        count=len(orders),
        total=total,
        pagination={"current_page": page, "limit": limit},
    )


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    caller: Caller = Depends(get_caller),
    service: OrderService = Depends(get_order_service),
):
    order, payment = await service.get_order_for(order_id, caller.id, caller.is_admin)
    return ok(order_with_payment(order, payment))


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    order = await service.cancel(user, order_id)
    return ok(OrderResponse.model_validate(order), message="Order cancelled")


@router.patch("/{order_id}/status")
async def update_order_status(
    order_id: str,
    payload: StatusUpdate,
    admin: Admin = Depends(get_current_admin),
    service: OrderService = Depends(get_order_service),
):
    order = await service.override_status(order_id, payload.status, actor=f"admin:{admin.id}")
    return ok(OrderResponse.model_validate(order))


@router.patch("/{order_id}/payment")
async def update_payment_status(
    order_id: str,
    payload: PaymentStatusUpdate,
    admin: Admin = Depends(get_current_admin),
    service: OrderService = Depends(get_order_service),
):
    order = await service.update_payment_status(
        order_id, payload.status, actor=f"admin:{admin.id}", payment_method=payload.payment_method,
    )
    return ok(OrderResponse.model_validate(order))
