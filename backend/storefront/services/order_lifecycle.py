"""
Order lifecycle state machine.

    pending -> confirmed -> processing -> shipped -> delivered
    pending | confirmed -> cancelled
    shipped -> returned

Validated transitions go through `transition`. Admins may force any status
through `override`, which is recorded as privileged in the status history.
"""

import logging
from datetime import datetime

from storefront.exceptions import ValidationFailed
from storefront.models import Order, OrderStatus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING.value: {OrderStatus.CONFIRMED.value, OrderStatus.CANCELLED.value},
    OrderStatus.CONFIRMED.value: {OrderStatus.PROCESSING.value, OrderStatus.CANCELLED.value},
    OrderStatus.PROCESSING.value: {OrderStatus.SHIPPED.value},
    OrderStatus.SHIPPED.value: {OrderStatus.DELIVERED.value, OrderStatus.RETURNED.value},
    OrderStatus.DELIVERED.value: set(),
    OrderStatus.CANCELLED.value: set(),
    OrderStatus.RETURNED.value: set(),
}

TERMINAL_STATUSES = {
    OrderStatus.DELIVERED.value,
    OrderStatus.CANCELLED.value,
    OrderStatus.RETURNED.value,
}

USER_CANCELLABLE = {OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value}


class InvalidTransition(ValidationFailed):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Order cannot move from {current} to {target}")


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def _record(order: Order, target: str, actor: str, privileged: bool) -> None:
    entry = {
        "from": order.status,
        "to": target,
        "actor": actor,
        "privileged": privileged,
        "at": datetime.utcnow().isoformat(),
    }
    # Reassign so the JSON column is flagged dirty
    order.status_history = list(order.status_history or []) + [entry]
    order.status = target


def transition(order: Order, target: str, actor: str) -> None:
    """Apply a validated transition or raise InvalidTransition without mutating."""
    if not can_transition(order.status, target):
        raise InvalidTransition(order.status, target)
    _record(order, target, actor, privileged=False)


def confirm_if_pending(order: Order, actor: str) -> bool:
    """Payment completion confirms a pending order and leaves any other status alone."""
    if order.status != OrderStatus.PENDING.value:
        return False
    _record(order, OrderStatus.CONFIRMED.value, actor, privileged=False)
    return True


def override(order: Order, target: str, actor: str) -> None:
    """Privileged status change; bypasses the transition table."""
    valid = {s.value for s in OrderStatus}
    if target not in valid:
        raise ValidationFailed(f"Unknown order status '{target}'")
    if target == order.status:
        return
    logger.warning(f"Privileged status override on {order.order_number}: {order.status} -> {target} by {actor}")
    _record(order, target, actor, privileged=True)


def cancel_after_refund(order: Order, actor: str = "gateway") -> bool:
    """A full refund cancels the order whatever stage it reached."""
    if order.status == OrderStatus.CANCELLED.value:
        return False
    _record(order, OrderStatus.CANCELLED.value, actor, privileged=not can_transition(order.status, OrderStatus.CANCELLED.value))
    return True
