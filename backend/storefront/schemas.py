"""
Response models shared across routers.

Money is stored as Decimal and rendered as float.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


def ok(data: Any = None, **extra) -> Dict[str, Any]:
    """Success envelope."""
    return {"success": True, "data": data, **extra}


class OrderItemResponse(BaseModel):
    id: str
    product_id: str
    name: str
    quantity: int
    price: float
    total_price: float
    image: Optional[str] = None
    variant: Optional[dict] = None

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: str
    user_id: str
    order_number: str
    status: str
    items: List[OrderItemResponse]
    shipping_address: Optional[dict] = None
    billing_address: Optional[dict] = None
    payment_method: str
    payment_status: str
    payment_amount: float
    payment_currency: Optional[str] = None
    payment_sub_method: Optional[str] = None
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    shipping: Optional[dict] = None
    discounts: Optional[list] = None
    subtotal: float
    shipping_cost: float
    tax: float
    total: float
    notes: Optional[str] = None
    status_history: Optional[list] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RefundResponse(BaseModel):
    id: str
    gateway_refund_id: Optional[str] = None
    amount: float
    status: str
    reason: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaymentResponse(BaseModel):
    id: str
    order_id: str
    user_id: str
    gateway_order_id: str
    gateway_payment_id: str
    amount: float
    currency: Optional[str] = None
    status: str
    payment_method: str
    payment_details: Optional[dict] = None
    refunds: List[RefundResponse] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserResponse(BaseModel):
    id: str
    external_id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None
    profile_image_url: Optional[str] = None
    email_verified: bool = False
    last_sign_in: Optional[datetime] = None
    phone_number: Optional[str] = None
    addresses: Optional[list] = None
    preferences: Optional[dict] = None
    total_orders: int = 0
    total_spent: float = 0.0
    last_order_date: Optional[datetime] = None
    payment_methods_used: Optional[list] = None
    total_refunds: int = 0
    total_refund_amount: float = 0.0
    payment_preferences: Optional[dict] = None
    wishlist: Optional[list] = None
    cart: Optional[list] = None
    metadata_json: Optional[dict] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AdminResponse(BaseModel):
    id: str
    username: str
    email: str
    role: str
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


def order_with_payment(order, payment) -> Dict[str, Any]:
    return {
        "order": OrderResponse.model_validate(order),
        "payment": PaymentResponse.model_validate(payment) if payment is not None else None,
    }
