"""
Order Service - order placement, retrieval and lifecycle operations.

Order creation writes the Order, its items, the initial Payment (online
orders) and the owner's history/statistics in one session; the request's
session commits them together.
"""

import logging
import secrets
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func, desc
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.adapters.base import PaymentGatewayAdapter
from storefront.config import get_settings
from storefront.exceptions import NotFound, PermissionDenied, ValidationFailed
from storefront.models import (
    Order, OrderItem, OrderStatus, PaymentChannel, Payment, PaymentStatus, PaymentMethod, User,
)
from storefront.models.base import new_id
from storefront.models.payment import PENDING_PLACEHOLDER
from storefront.services import order_lifecycle
from storefront.services.payments import PaymentService, SUB_METHODS
from storefront.services.statistics import StatisticsService
from storefront.services.users import page_window

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 5
TOTAL_TOLERANCE = Decimal("0.01")
CENT = Decimal("0.01")


def generate_order_number(now: Optional[datetime] = None) -> str:
    """ORD-YYMMDD-RRRR with a random four-digit suffix."""
    now = now or datetime.utcnow()
    return f"ORD-{now:%y%m%d}-{secrets.randbelow(10000):04d}"


def _money(value: Any, field: str) -> Decimal:
    try:
        amount = Decimal(str(value)).quantize(CENT)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationFailed(f"'{field}' must be a number")
    if amount < 0:
        raise ValidationFailed(f"'{field}' cannot be negative")
    return amount


def compute_total(subtotal: Decimal, shipping_cost: Decimal, tax: Decimal, discounts: List[dict]) -> Decimal:
    discount_total = sum((_money(d.get("amount", 0), "discount.amount") for d in discounts), Decimal("0"))
    return (subtotal + shipping_cost + tax - discount_total).quantize(CENT)


def _build_items(raw_items: List[dict]) -> List[OrderItem]:
    if not raw_items:
        raise ValidationFailed("Order must contain at least one item")

    items = []
    for index, raw in enumerate(raw_items):
        name = raw.get("name")
        if not name:
            raise ValidationFailed(f"Item {index + 1}: name is required")
        try:
            quantity = int(raw.get("quantity"))
        except (TypeError, ValueError):
            raise ValidationFailed(f"Item {index + 1}: quantity is required")
        if quantity < 1:
            raise ValidationFailed(f"Item {index + 1}: quantity must be at least 1")
        if raw.get("price") is None:
            raise ValidationFailed(f"Item {index + 1}: price is required")
        price = _money(raw["price"], "price")

        total_price = raw.get("total_price")
        items.append(OrderItem(
            id=new_id(),
            # Items without a catalog reference get a fresh identifier
            product_id=raw.get("product_id") or new_id(),
            name=name,
            quantity=quantity,
            price=price,
            total_price=_money(total_price, "total_price") if total_price is not None else (price * quantity).quantize(CENT),
            image=raw.get("image"),
            variant=raw.get("variant"),
        ))
    return items


class OrderService:

    def __init__(
        self,
        db: AsyncSession,
        gateway: Optional[PaymentGatewayAdapter] = None,
        statistics: Optional[StatisticsService] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.statistics = statistics or StatisticsService(db)

    async def _unique_order_number(self) -> str:
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            candidate = generate_order_number()
            exists = await self.db.execute(select(Order.id).where(Order.order_number == candidate))
            if exists.first() is None:
                return candidate
            logger.info(f"Order number collision on {candidate}, retrying")
        raise ValidationFailed("Could not allocate an order number, please retry")

    async def create_order(self, user: User, data: Dict[str, Any]) -> Tuple[Order, Optional[Payment]]:
        """
        Place an order for `user`.

        `data` carries items, shipping_address, billing_address, payment
        ({"method": "razorpay"|"cod"}), selected_payment_method, subtotal,
        shipping_cost, tax, total, discounts, shipping_method and notes.
        Everything is validated before the first write.
        """
        items = _build_items(data.get("items") or [])

        shipping_address = data.get("shipping_address")
        if not shipping_address:
            raise ValidationFailed("Shipping address is required")

        payment_info = data.get("payment") or {}
        method = payment_info.get("method") or PaymentChannel.COD.value
        if method not in (PaymentChannel.RAZORPAY.value, PaymentChannel.COD.value):
            raise ValidationFailed(f"Unsupported payment method '{method}'")

        selected = None
        if method == PaymentChannel.RAZORPAY.value:
            selected = data.get("selected_payment_method") or PaymentMethod.CARD.value
            if selected not in SUB_METHODS:
                raise ValidationFailed(f"Unsupported payment sub-method '{selected}'")

        discounts = list(data.get("discounts") or [])
        subtotal = _money(data.get("subtotal", 0), "subtotal")
        shipping_cost = _money(data.get("shipping_cost", 0), "shipping_cost")
        tax = _money(data.get("tax", 0), "tax")
        total = compute_total(subtotal, shipping_cost, tax, discounts)
        if total < 0:
            raise ValidationFailed("Discounts exceed the order amount")
        if data.get("total") is not None and abs(_money(data["total"], "total") - total) > TOTAL_TOLERANCE:
            raise ValidationFailed(
                f"Order total {data['total']} does not equal subtotal + shipping + tax - discounts ({total})"
            )

        order = Order(
            id=new_id(),
            user_id=user.id,
            order_number=await self._unique_order_number(),
            status=OrderStatus.PENDING.value,
            shipping_address=shipping_address,
            billing_address=data.get("billing_address") or shipping_address,
            payment_method=method,
            payment_status=PaymentStatus.PENDING.value,
            payment_amount=total,
            payment_currency=payment_info.get("currency") or get_settings().DEFAULT_CURRENCY,
            payment_sub_method=selected,
            shipping={"method": data.get("shipping_method") or "standard"},
            discounts=discounts,
            subtotal=subtotal,
            shipping_cost=shipping_cost,
            tax=tax,
            total=total,
            notes=data.get("notes"),
            metadata_json=dict(data.get("metadata") or {}),
            status_history=[],
            stats_applied=False,
            items=items,
        )
        self.db.add(order)
        await self.db.flush()

        payment = None
        if selected is not None:
            payment = Payment(
                id=new_id(),
                order_id=order.id,
                user_id=user.id,
                gateway_order_id=PENDING_PLACEHOLDER,
                gateway_payment_id=PENDING_PLACEHOLDER,
                gateway_signature=PENDING_PLACEHOLDER,
                amount=total,
                currency=order.payment_currency,
                status=PaymentStatus.PENDING.value,
                payment_method=selected,
                payment_details={},
                metadata_json={},
                refunds=[],
            )
            self.db.add(payment)
            logger.info(f"Created initial payment record with method: {selected}")

        await self.statistics.record_order_created(order, user)
        await self.db.flush()

        logger.info(f"Order {order.order_number} created for user {user.id} ({method}, total {total})")
        return order, payment

    # --- Reads ---

    async def get_order(self, order_id: str) -> Order:
        order = await self.db.get(Order, order_id)
        if order is None:
            raise NotFound("Order not found")
        return order

    async def get_order_for(self, order_id: str, caller_id: str, is_admin: bool) -> Tuple[Order, Optional[Payment]]:
        order = await self.get_order(order_id)
        if not is_admin and order.user_id != caller_id:
            raise PermissionDenied("Not authorized to view this order")
        payment = await PaymentService(self.db, self.gateway, self.statistics).get_for_order(order.id)
        return order, payment

    async def _payments_by_order(self, orders: List[Order]) -> Dict[str, Payment]:
        if not orders:
            return {}
        result = await self.db.execute(select(Payment).where(Payment.order_id.in_([o.id for o in orders])))
        return {p.order_id: p for p in result.scalars().all()}

    async def list_for_user(self, user: User) -> List[Tuple[Order, Optional[Payment]]]:
        result = await self.db.execute(
            select(Order).where(Order.user_id == user.id).order_by(desc(Order.created_at))
        )
        orders = list(result.scalars().all())
        payments = await self._payments_by_order(orders)
        return [(order, payments.get(order.id)) for order in orders]

    async def list_all(
        self,
        status: Optional[str] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Tuple[List[Order], int, int, int]:
        page, limit = page_window(page, limit, default_limit=20)
        query = select(Order)
        count_query = select(func.count(Order.id))
        if status:
            query = query.where(Order.status == status)
            count_query = count_query.where(Order.status == status)

        total = (await self.db.execute(count_query)).scalar() or 0
        result = await self.db.execute(
            query.order_by(desc(Order.created_at)).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total, page, limit

    # --- Lifecycle ---

    async def cancel(self, user: User, order_id: str) -> Order:
        order = await self.get_order(order_id)
        if order.user_id != user.id:
            raise PermissionDenied("Not authorized to cancel this order")
        if order.status not in order_lifecycle.USER_CANCELLABLE:
            raise ValidationFailed("Order cannot be cancelled at this stage")

        order_lifecycle.transition(order, OrderStatus.CANCELLED.value, actor=f"user:{user.id}")
        await self.statistics.revert_order(order, user)
        await self.statistics.sync_history_status(order)

        if order.payment_status == PaymentStatus.COMPLETED.value and self.gateway is not None:
            payments = PaymentService(self.db, self.gateway, self.statistics)
            payment = await payments.get_for_order(order.id)
            if payment is not None:
                await payments.request_refund(payment)

        await self.db.flush()
        logger.info(f"Order {order.order_number} cancelled by its owner")
        return order

    async def override_status(self, order_id: str, status: str, actor: str) -> Order:
        """Admin status change; any status is allowed and recorded as privileged."""
        order = await self.get_order(order_id)
        order_lifecycle.override(order, status, actor)

        if status == OrderStatus.CANCELLED.value:
            await self.statistics.revert_order(order)
        await self.statistics.sync_history_status(order)
        await self.db.flush()
        return order

    async def update_payment_status(
        self,
        order_id: str,
        status: str,
        actor: str,
        payment_method: Optional[str] = None,
    ) -> Order:
        """Admin update of the embedded payment (e.g. cash collected on delivery)."""
        valid = {s.value for s in PaymentStatus}
        if status not in valid:
            raise ValidationFailed(f"Unknown payment status '{status}'")
        if payment_method and payment_method not in SUB_METHODS:
            raise ValidationFailed(f"Unsupported payment sub-method '{payment_method}'")

        order = await self.get_order(order_id)
        logger.warning(f"Payment status of {order.order_number} set to {status} by {actor}")
        order.payment_status = status
        if payment_method:
            order.payment_sub_method = payment_method

        payment = await PaymentService(self.db, self.gateway, self.statistics).get_for_order(order.id)

        if status == PaymentStatus.COMPLETED.value:
            if payment is not None:
                payment.status = PaymentStatus.COMPLETED.value
                if payment_method:
                    payment.payment_method = payment_method
            order_lifecycle.confirm_if_pending(order, actor)
            await self.statistics.record_payment_completed(
                order, payment_method or order.payment_sub_method or order.payment_method
            )
        elif status == PaymentStatus.REFUNDED.value:
            if payment is not None:
                payment.status = PaymentStatus.REFUNDED.value
            order_lifecycle.cancel_after_refund(order, actor)
            await self.statistics.revert_order(order)
        elif payment is not None:
            payment.status = status

        await self.statistics.sync_history_status(order)
        await self.db.flush()
        return order
