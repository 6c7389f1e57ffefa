"""
Payment Service - gateway intents, checkout verification and webhooks.

This is the reconciliation core. Payment (ledger), Order (embedded payment
view and lifecycle) and User (statistics) are updated together in the
caller's session and committed once.

Payment status precedence:
    pending < failed < completed < refunded
A status never moves to a lower rank, so replayed or out-of-order webhooks
cannot undo a capture or a refund.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.adapters.base import PaymentGatewayAdapter
from storefront.config import get_settings
from storefront.exceptions import NotFound, PermissionDenied, SignatureMismatch, UpstreamError, ValidationFailed
from storefront.models import Order, OrderStatus, Payment, PaymentRefund, PaymentStatus, PaymentMethod, PaymentChannel, User
from storefront.models.base import new_id
from storefront.models.payment import PENDING_PLACEHOLDER
from storefront.services import order_lifecycle
from storefront.services.statistics import StatisticsService

logger = logging.getLogger(__name__)

STATUS_RANK = {
    PaymentStatus.PENDING.value: 0,
    PaymentStatus.FAILED.value: 1,
    PaymentStatus.COMPLETED.value: 2,
    PaymentStatus.REFUNDED.value: 3,
}

GATEWAY_METHODS = {
    "upi": PaymentMethod.UPI.value,
    "upi_intent": PaymentMethod.UPI.value,
    "netbanking": PaymentMethod.NETBANKING.value,
    "wallet": PaymentMethod.WALLET.value,
    "emi": PaymentMethod.EMI.value,
    "card": PaymentMethod.CARD.value,
}

SUB_METHODS = {m.value for m in PaymentMethod} - {PaymentMethod.PENDING.value}

# No new intent once money has been taken or returned
SETTLED_STATUSES = {PaymentStatus.COMPLETED.value, PaymentStatus.REFUNDED.value}

UNKNOWN = "unknown"


def to_minor_units(amount) -> int:
    """Major units to paise, rounding half up."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value) -> Decimal:
    return (Decimal(str(value)) / 100).quantize(Decimal("0.01"))


def can_move(current: Optional[str], target: str) -> bool:
    return STATUS_RANK[target] >= STATUS_RANK.get(current or PaymentStatus.PENDING.value, 0)


def resolve_sub_method(gateway_method: Optional[str], fallback: Optional[str] = None) -> str:
    """Map the gateway's method name; unknown or missing values use the fallback (default card)."""
    if gateway_method in GATEWAY_METHODS:
        return GATEWAY_METHODS[gateway_method]
    if fallback in SUB_METHODS:
        return fallback
    return PaymentMethod.CARD.value


def _nested(entity: Dict[str, Any], section: str, key: str) -> Optional[str]:
    value = entity.get(section)
    if isinstance(value, dict):
        return value.get(key)
    return None


def build_method_details(entity: Dict[str, Any], method: str) -> Dict[str, Any]:
    """Instrument details for the resolved sub-method; missing fields become 'unknown'."""
    if method == PaymentMethod.UPI.value:
        vpa = entity.get("vpa") or _nested(entity, "upi", "vpa") or _nested(entity, "upi_intent", "vpa")
        return {"upi": {"vpa": vpa or UNKNOWN}}

    if method == PaymentMethod.NETBANKING.value:
        bank = entity.get("bank")
        name = bank if isinstance(bank, str) else _nested(entity, "bank", "name")
        return {"bank": {
            "name": name or _nested(entity, "netbanking", "bank_name") or UNKNOWN,
            "ifsc": entity.get("ifsc") or _nested(entity, "bank", "ifsc") or _nested(entity, "netbanking", "ifsc") or UNKNOWN,
        }}

    if method == PaymentMethod.WALLET.value:
        wallet = entity.get("wallet")
        name = wallet if isinstance(wallet, str) else _nested(entity, "wallet", "name")
        return {"wallet": {"name": name or UNKNOWN}}

    if method in (PaymentMethod.CARD.value, PaymentMethod.EMI.value):
        card = entity.get("card") if isinstance(entity.get("card"), dict) else {}
        return {"card": {
            "last4": card.get("last4") or card.get("last4_digits") or UNKNOWN,
            "network": card.get("network") or card.get("card_network") or UNKNOWN,
            "issuer": card.get("issuer") or card.get("issuer_name") or UNKNOWN,
        }}

    return {}


def _entity(payload: Dict[str, Any], name: str) -> Dict[str, Any]:
    """Webhook payloads wrap objects as {"payment": {"entity": {...}}}."""
    wrapper = payload.get(name) or {}
    return wrapper.get("entity", wrapper) if isinstance(wrapper, dict) else {}


class PaymentService:

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGatewayAdapter,
        statistics: Optional[StatisticsService] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.statistics = statistics or StatisticsService(db)

    async def get_for_order(self, order_id: str) -> Optional[Payment]:
        result = await self.db.execute(select(Payment).where(Payment.order_id == order_id))
        return result.scalar_one_or_none()

    async def _find_payment(self, gateway_payment_id: Optional[str], gateway_order_id: Optional[str]) -> Optional[Payment]:
        """Look up by gateway payment id, falling back to the gateway order id."""
        for column, value in ((Payment.gateway_payment_id, gateway_payment_id), (Payment.gateway_order_id, gateway_order_id)):
            if not value or value == PENDING_PLACEHOLDER:
                continue
            result = await self.db.execute(
                select(Payment).where(column == value).execution_options(populate_existing=True)
            )
            payment = result.scalars().first()
            if payment is not None:
                return payment
        return None

    async def _order_of(self, payment: Payment) -> Order:
        order = await self.db.get(Order, payment.order_id)
        if order is None:
            raise NotFound("Order not found")
        return order

    # --- Intent ---

    async def create_intent(
        self,
        user: User,
        order_id: str,
        amount=None,
        currency: Optional[str] = None,
        sub_method: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create (or re-issue) the gateway order a shopper pays against."""
        order = await self.db.get(Order, order_id)
        if order is None:
            raise NotFound("Order not found")
        if order.user_id != user.id:
            raise PermissionDenied("Not authorized to pay for this order")
        if order.status in order_lifecycle.TERMINAL_STATUSES:
            raise ValidationFailed(f"Cannot take payment for a {order.status} order")
        if order.payment_status in SETTLED_STATUSES:
            raise ValidationFailed(f"Order payment is already {order.payment_status}")

        amount = Decimal(str(amount)) if amount is not None else Decimal(order.total)
        if amount <= 0:
            raise ValidationFailed("Amount must be greater than zero")
        if abs(amount - Decimal(order.total)) > Decimal("0.01"):
            raise ValidationFailed("Amount does not match the order total")
        currency = currency or order.payment_currency or get_settings().DEFAULT_CURRENCY

        payment = await self.get_for_order(order.id)
        if payment is not None and payment.status in SETTLED_STATUSES:
            raise ValidationFailed(f"Order payment is already {payment.status}")

        gateway_order = await self.gateway.create_order(to_minor_units(amount), currency, receipt=order.id)

        if payment is not None:
            payment.gateway_order_id = gateway_order.id
            payment.amount = amount
            payment.currency = currency
            if sub_method and sub_method != PaymentChannel.RAZORPAY.value and sub_method in SUB_METHODS:
                payment.payment_method = sub_method
            if payment.status == PaymentStatus.FAILED.value:
                # A re-issued intent is a fresh attempt
                payment.status = PaymentStatus.PENDING.value
        else:
            payment = Payment(
                id=new_id(),
                order_id=order.id,
                user_id=user.id,
                gateway_order_id=gateway_order.id,
                gateway_payment_id=PENDING_PLACEHOLDER,
                gateway_signature=PENDING_PLACEHOLDER,
                amount=amount,
                currency=currency,
                status=PaymentStatus.PENDING.value,
                payment_method=sub_method if sub_method in SUB_METHODS else PaymentMethod.CARD.value,
                payment_details={},
                metadata_json={},
                refunds=[],
            )
            self.db.add(payment)

        order.gateway_order_id = gateway_order.id
        order.payment_amount = amount
        order.payment_currency = currency
        order.payment_method = PaymentChannel.RAZORPAY.value
        order.payment_status = PaymentStatus.PENDING.value
        await self.db.flush()

        logger.info(f"Payment intent {gateway_order.id} issued for order {order.order_number}")
        return {
            "id": gateway_order.id,
            "amount": gateway_order.amount,
            "currency": gateway_order.currency,
            "receipt": gateway_order.receipt,
            "payment_method": payment.payment_method,
        }

    # --- Completion ---

    async def _apply_completed(
        self,
        payment: Payment,
        order: Order,
        method: str,
        details: Dict[str, Any],
        actor: str,
        gateway_payment_id: Optional[str] = None,
        signature: Optional[str] = None,
    ) -> bool:
        if not can_move(payment.status, PaymentStatus.COMPLETED.value):
            logger.warning(f"Ignoring completion of payment {payment.id}: already {payment.status}")
            return False
        newly_completed = payment.status != PaymentStatus.COMPLETED.value

        if gateway_payment_id:
            payment.gateway_payment_id = gateway_payment_id
            order.gateway_payment_id = gateway_payment_id
        if signature:
            payment.gateway_signature = signature
            order.gateway_signature = signature
        payment.status = PaymentStatus.COMPLETED.value
        payment.payment_method = method
        payment.payment_details = details

        if can_move(order.payment_status, PaymentStatus.COMPLETED.value):
            order.payment_status = PaymentStatus.COMPLETED.value
        order.payment_method = PaymentChannel.RAZORPAY.value
        order.payment_sub_method = method
        order_lifecycle.confirm_if_pending(order, actor)

        await self.statistics.record_payment_completed(order, method)
        await self.statistics.sync_history_status(order)

        if newly_completed and order.status == OrderStatus.CANCELLED.value:
            # Captured against an intent issued before the order was cancelled
            logger.warning(f"Payment {payment.id} captured for cancelled order {order.order_number}; refunding")
            await self.request_refund(payment)
        return True

    async def verify(
        self,
        user: User,
        gateway_order_id: str,
        gateway_payment_id: str,
        signature: str,
        client_method: Optional[str] = None,
    ) -> Payment:
        """Confirm a checkout from the signature the gateway handed the client."""
        if not self.gateway.verify_payment_signature(gateway_order_id, gateway_payment_id, signature):
            logger.warning(f"Invalid payment signature for gateway order {gateway_order_id}")
            raise SignatureMismatch("Invalid payment signature")

        payment = await self._find_payment(None, gateway_order_id)
        if payment is None:
            logger.error(f"Payment record not found for gateway order {gateway_order_id}")
            raise NotFound("Payment not found")
        if payment.user_id != user.id:
            raise PermissionDenied("Not authorized to verify this payment")

        entity = await self.gateway.fetch_payment(gateway_payment_id)
        method = resolve_sub_method(entity.get("method"), client_method or PaymentMethod.CARD.value)
        details = build_method_details(entity, method)

        order = await self._order_of(payment)
        await self._apply_completed(
            payment, order, method, details,
            actor="checkout",
            gateway_payment_id=gateway_payment_id,
            signature=signature,
        )
        await self.db.flush()
        logger.info(f"Payment {gateway_payment_id} verified via {method} for order {order.order_number}")
        return payment

    # --- Webhooks ---

    async def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> str:
        """Verify, then dispatch one gateway event. Returns a short outcome label."""
        event = self.gateway.parse_webhook(raw_body, signature)
        logger.info(f"Processing gateway webhook event: {event.event_type}")

        if event.event_type == "payment.captured":
            outcome = await self._on_payment_captured(event.payload)
        elif event.event_type == "payment.failed":
            outcome = await self._on_payment_failed(event.payload)
        elif event.event_type == "refund.created":
            outcome = await self._on_refund_created(event.payload)
        else:
            logger.info(f"Unhandled gateway webhook event: {event.event_type}")
            return "ignored"

        await self.db.flush()
        return outcome

    async def _on_payment_captured(self, payload: Dict[str, Any]) -> str:
        entity = _entity(payload, "payment")
        payment = await self._find_payment(entity.get("id"), entity.get("order_id"))
        if payment is None:
            logger.info(f"Captured payment {entity.get('id')} has no local record")
            return "unknown_payment"

        fallback = payment.payment_method if payment.payment_method in SUB_METHODS else None
        method = resolve_sub_method(entity.get("method"), fallback)
        order = await self._order_of(payment)

        applied = await self._apply_completed(
            payment, order, method, build_method_details(entity, method),
            actor="gateway",
            gateway_payment_id=entity.get("id"),
        )
        return "completed" if applied else "unchanged"

    async def _on_payment_failed(self, payload: Dict[str, Any]) -> str:
        entity = _entity(payload, "payment")
        payment = await self._find_payment(entity.get("id"), entity.get("order_id"))
        if payment is None:
            logger.info(f"Failed payment {entity.get('id')} has no local record")
            return "unknown_payment"

        if not can_move(payment.status, PaymentStatus.FAILED.value):
            logger.warning(f"Ignoring failure of payment {payment.id}: already {payment.status}")
            return "unchanged"

        payment.status = PaymentStatus.FAILED.value
        if entity.get("id") and payment.gateway_payment_id == PENDING_PLACEHOLDER:
            payment.gateway_payment_id = entity["id"]

        order = await self._order_of(payment)
        if can_move(order.payment_status, PaymentStatus.FAILED.value):
            order.payment_status = PaymentStatus.FAILED.value
        return "failed"

    async def _on_refund_created(self, payload: Dict[str, Any]) -> str:
        refund = _entity(payload, "refund")
        payment_entity = _entity(payload, "payment")
        payment = await self._find_payment(refund.get("payment_id"), payment_entity.get("order_id"))
        if payment is None:
            logger.info(f"Refund {refund.get('id')} references unknown payment {refund.get('payment_id')}")
            return "unknown_payment"

        refund_id = refund.get("id")
        if refund_id and any(r.gateway_refund_id == refund_id for r in payment.refunds):
            logger.info(f"Refund {refund_id} already recorded")
            return "duplicate"

        amount = from_minor_units(refund.get("amount") or 0)
        notes = refund.get("notes") if isinstance(refund.get("notes"), dict) else {}
        payment.refunds.append(PaymentRefund(
            id=new_id(),
            gateway_refund_id=refund_id,
            amount=amount,
            status="processed",
            reason=refund.get("reason") or notes.get("reason") or "Customer request",
        ))

        order = await self._order_of(payment)
        await self.statistics.record_refund(order, amount)

        if payment.refunded_amount < Decimal(payment.amount):
            logger.info(f"Partial refund {refund_id} of {amount} on payment {payment.id}")
            return "partial_refund"

        payment.status = PaymentStatus.REFUNDED.value
        order.payment_status = PaymentStatus.REFUNDED.value
        order_lifecycle.cancel_after_refund(order)
        await self.statistics.revert_order(order)
        await self.statistics.sync_history_status(order)
        logger.info(f"Payment {payment.id} fully refunded; order {order.order_number} cancelled")
        return "refunded"

    # --- Refund requests ---

    async def request_refund(self, payment: Payment) -> Optional[Dict[str, Any]]:
        """Ask the gateway for a full refund. Best effort: the refund webhook records the outcome."""
        if payment.status != PaymentStatus.COMPLETED.value or payment.gateway_payment_id == PENDING_PLACEHOLDER:
            return None
        try:
            result = await self.gateway.create_refund(payment.gateway_payment_id)
        except UpstreamError as e:
            logger.error(f"Refund request for payment {payment.id} failed: {e.message}")
            return None
        logger.info(f"Refund {result.get('id')} requested for payment {payment.id}")
        return result

    async def check_configuration(self) -> Dict[str, Any]:
        """Create a minimal gateway order to prove the credentials work."""
        if not self.gateway.is_configured:
            raise UpstreamError(self.gateway.gateway_name, "API keys are not configured")
        test_order = await self.gateway.create_order(100, get_settings().DEFAULT_CURRENCY, receipt=f"test_{new_id()[:8]}")
        return {"gateway": self.gateway.gateway_name, "order_id": test_order.id, "status": test_order.status}
