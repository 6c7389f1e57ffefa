"""
User purchase statistics.

Statistics on the User are derived from Order and Payment records. When an
order is counted depends on USER_STATS_POLICY; the order's `stats_applied`
flag guarantees it is counted and uncounted at most once each.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import StatsPolicy, get_settings
from storefront.models import Order, User, UserOrderEntry, OrderStatus, PaymentChannel

logger = logging.getLogger(__name__)

UNCOUNTABLE_STATUSES = {OrderStatus.CANCELLED.value, OrderStatus.RETURNED.value}


class StatisticsService:

    def __init__(self, db: AsyncSession, policy: Optional[StatsPolicy] = None):
        self.db = db
        self.policy = policy or get_settings().USER_STATS_POLICY

    async def _owner(self, order: Order, user: Optional[User] = None) -> Optional[User]:
        if user is not None:
            return user
        return await self.db.get(User, order.user_id)

    def counts_at_creation(self, order: Order) -> bool:
        if self.policy == StatsPolicy.OPTIMISTIC:
            return True
        return order.payment_method == PaymentChannel.COD.value

    async def record_order_created(self, order: Order, user: User) -> None:
        """Add the order-history entry and count the order if the policy says so."""
        self.db.add(UserOrderEntry(
            user_id=user.id,
            order_id=order.id,
            status=order.status,
            total_amount=order.total,
            created_at=datetime.utcnow(),
        ))
        if self.counts_at_creation(order):
            await self.apply_order(order, user)

    async def apply_order(self, order: Order, user: Optional[User] = None) -> bool:
        if order.stats_applied or order.status in UNCOUNTABLE_STATUSES:
            return False
        user = await self._owner(order, user)
        if user is None:
            return False

        user.total_orders = (user.total_orders or 0) + 1
        user.total_spent = Decimal(user.total_spent or 0) + Decimal(order.total)
        user.last_order_date = datetime.utcnow()
        order.stats_applied = True
        return True

    async def revert_order(self, order: Order, user: Optional[User] = None) -> bool:
        if not order.stats_applied:
            return False
        user = await self._owner(order, user)
        if user is None:
            return False

        user.total_orders = max(0, (user.total_orders or 0) - 1)
        user.total_spent = max(Decimal("0"), Decimal(user.total_spent or 0) - Decimal(order.total))
        order.stats_applied = False
        logger.info(f"Order {order.order_number} removed from statistics of user {user.id}")
        return True

    async def record_payment_completed(self, order: Order, sub_method: str) -> None:
        user = await self._owner(order)
        if user is None:
            return

        # JSON columns only persist on reassignment
        now = datetime.utcnow().isoformat()
        methods = [dict(m) for m in (user.payment_methods_used or [])]
        for entry in methods:
            if entry.get("type") == sub_method:
                entry["last_used"] = now
                break
        else:
            methods.append({"type": sub_method, "last_used": now})
        user.payment_methods_used = methods

        if self.policy == StatsPolicy.CONFIRMED:
            await self.apply_order(order, user)

    async def record_refund(self, order: Order, amount: Decimal) -> None:
        user = await self._owner(order)
        if user is None:
            return
        user.total_refunds = (user.total_refunds or 0) + 1
        user.total_refund_amount = Decimal(user.total_refund_amount or 0) + Decimal(amount)

    async def sync_history_status(self, order: Order) -> None:
        """Mirror the order status onto the owner's order-history entry."""
        await self.db.execute(
            update(UserOrderEntry)
            .where(UserOrderEntry.user_id == order.user_id, UserOrderEntry.order_id == order.id)
            .values(status=order.status)
        )
