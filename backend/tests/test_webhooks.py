"""
Tests for gateway webhook reconciliation.

Events are signed with the test webhook secret and fed through the real
Razorpay parser, so every test also exercises signature verification.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from storefront.exceptions import SignatureMismatch
from storefront.models import UserOrderEntry
from storefront.services.orders import OrderService
from storefront.services.payments import PaymentService

from conftest import checkout_signature, order_payload, sign_webhook


def payment_event(event, payment_id, gateway_order_id, method="card", **entity):
    return {
        "event": event,
        "payload": {"payment": {"entity": {
            "id": payment_id,
            "order_id": gateway_order_id,
            "method": method,
            **entity,
        }}},
    }


def refund_event(refund_id, payment_id, amount_minor):
    return {
        "event": "refund.created",
        "payload": {"refund": {"entity": {
            "id": refund_id,
            "payment_id": payment_id,
            "amount": amount_minor,
        }}},
    }


@pytest.fixture
def checkout(db, gateway, stats, make_user):
    """A razorpay order for 500 with an issued intent."""
    async def _checkout():
        user = await make_user()
        order, payment = await OrderService(db, gateway, stats).create_order(user, order_payload(total=500))
        service = PaymentService(db, gateway, stats)
        intent = await service.create_intent(user, order.id)
        return user, order, payment, service, intent["id"]
    return _checkout


async def deliver(service, body):
    raw, signature = sign_webhook(body)
    return await service.handle_webhook(raw, signature)


class TestSignature:

    @pytest.mark.asyncio
    async def test_tampered_body_is_rejected_without_mutation(self, checkout):
        user, order, payment, service, gateway_order_id = await checkout()
        raw, signature = sign_webhook(payment_event("payment.captured", "pay_1", gateway_order_id))
        tampered = raw.replace(b"pay_1", b"pay_2")

        with pytest.raises(SignatureMismatch):
            await service.handle_webhook(tampered, signature)

        assert payment.status == "pending"
        assert order.status == "pending"

    @pytest.mark.asyncio
    async def test_missing_signature_is_rejected(self, checkout):
        _, _, _, service, gateway_order_id = await checkout()
        raw, _ = sign_webhook(payment_event("payment.captured", "pay_1", gateway_order_id))

        with pytest.raises(SignatureMismatch):
            await service.handle_webhook(raw, None)

    @pytest.mark.asyncio
    async def test_unknown_event_is_acknowledged(self, checkout):
        _, _, _, service, _ = await checkout()
        assert await deliver(service, {"event": "order.paid", "payload": {}}) == "ignored"


class TestCaptured:

    @pytest.mark.asyncio
    async def test_capture_confirms_order(self, checkout):
        user, order, payment, service, gateway_order_id = await checkout()

        outcome = await deliver(service, payment_event(
            "payment.captured", "pay_1", gateway_order_id, method="wallet", wallet="phonepe",
        ))

        assert outcome == "completed"
        assert payment.status == "completed"
        assert payment.gateway_payment_id == "pay_1"
        assert payment.payment_method == "wallet"
        assert payment.payment_details == {"wallet": {"name": "phonepe"}}
        assert order.payment_status == "completed"
        assert order.status == "confirmed"

    @pytest.mark.asyncio
    async def test_same_capture_twice_equals_once(self, checkout):
        user, order, payment, service, gateway_order_id = await checkout()
        event = payment_event("payment.captured", "pay_1", gateway_order_id)

        await deliver(service, event)
        snapshot = (payment.status, payment.gateway_payment_id, order.status, order.payment_status, user.total_orders)
        await deliver(service, event)

        assert (payment.status, payment.gateway_payment_id, order.status, order.payment_status, user.total_orders) == snapshot
        assert len(order.status_history) == 1

    @pytest.mark.asyncio
    async def test_capture_on_cancelled_order_is_refunded(self, checkout):
        user, order, payment, service, gateway_order_id = await checkout()
        order.status = "cancelled"

        await deliver(service, payment_event("payment.captured", "pay_1", gateway_order_id))
        await deliver(service, payment_event("payment.captured", "pay_1", gateway_order_id))

        assert payment.status == "completed"
        assert order.status == "cancelled"
        assert service.gateway.refund_requests == [("pay_1", None)]

    @pytest.mark.asyncio
    async def test_unknown_payment(self, checkout):
        _, _, _, service, _ = await checkout()
        outcome = await deliver(service, payment_event("payment.captured", "pay_x", "order_unknown"))
        assert outcome == "unknown_payment"

    @pytest.mark.asyncio
    async def test_history_entry_follows_order_status(self, checkout, db):
        user, order, _, service, gateway_order_id = await checkout()
        await deliver(service, payment_event("payment.captured", "pay_1", gateway_order_id))

        entry = (await db.execute(
            select(UserOrderEntry).where(UserOrderEntry.order_id == order.id).execution_options(populate_existing=True)
        )).scalar_one()
        assert entry.status == "confirmed"


class TestFailed:

    @pytest.mark.asyncio
    async def test_failure_marks_payment_but_not_order_status(self, checkout):
        _, order, payment, service, gateway_order_id = await checkout()

        outcome = await deliver(service, payment_event("payment.failed", "pay_1", gateway_order_id))

        assert outcome == "failed"
        assert payment.status == "failed"
        assert order.payment_status == "failed"
        assert order.status == "pending"

    @pytest.mark.asyncio
    async def test_late_failure_cannot_revert_completed_payment(self, checkout):
        user, order, payment, service, gateway_order_id = await checkout()
        await service.verify(user, gateway_order_id, "pay_1", checkout_signature(gateway_order_id, "pay_1"))

        outcome = await deliver(service, payment_event("payment.failed", "pay_1", gateway_order_id))

        assert outcome == "unchanged"
        assert payment.status == "completed"
        assert order.payment_status == "completed"
        assert order.status == "confirmed"

    @pytest.mark.asyncio
    async def test_retry_after_failure_can_complete(self, checkout):
        user, order, payment, service, gateway_order_id = await checkout()
        await deliver(service, payment_event("payment.failed", "pay_1", gateway_order_id))
        await deliver(service, payment_event("payment.captured", "pay_2", gateway_order_id))

        assert payment.status == "completed"
        assert payment.gateway_payment_id == "pay_2"
        assert order.status == "confirmed"


class TestRefunds:

    async def _captured(self, checkout):
        user, order, payment, service, gateway_order_id = await checkout()
        await deliver(service, payment_event("payment.captured", "pay_1", gateway_order_id))
        return user, order, payment, service

    @pytest.mark.asyncio
    async def test_partial_refund_keeps_order(self, checkout):
        user, order, payment, service = await self._captured(checkout)

        outcome = await deliver(service, refund_event("rfnd_1", "pay_1", 20000))

        assert outcome == "partial_refund"
        assert payment.status == "completed"
        assert order.status == "confirmed"
        assert payment.refunded_amount == Decimal("200.00")
        assert payment.refunds[0].reason == "Customer request"
        assert payment.refunds[0].status == "processed"
        assert user.total_refunds == 1
        assert user.total_refund_amount == Decimal("200.00")

    @pytest.mark.asyncio
    async def test_full_refund_cancels_order_and_reverts_statistics(self, checkout):
        user, order, payment, service = await self._captured(checkout)
        assert user.total_orders == 1

        await deliver(service, refund_event("rfnd_1", "pay_1", 20000))
        outcome = await deliver(service, refund_event("rfnd_2", "pay_1", 30000))

        assert outcome == "refunded"
        assert payment.status == "refunded"
        assert order.payment_status == "refunded"
        assert order.status == "cancelled"
        assert user.total_orders == 0
        assert user.total_spent == Decimal("0")
        assert user.total_refunds == 2

    @pytest.mark.asyncio
    async def test_duplicate_refund_is_recorded_once(self, checkout):
        user, order, payment, service = await self._captured(checkout)
        event = refund_event("rfnd_1", "pay_1", 10000)

        await deliver(service, event)
        outcome = await deliver(service, event)

        assert outcome == "duplicate"
        assert len(payment.refunds) == 1
        assert user.total_refunds == 1

    @pytest.mark.asyncio
    async def test_capture_after_refund_does_not_resurrect(self, checkout):
        user, order, payment, service = await self._captured(checkout)
        await deliver(service, refund_event("rfnd_1", "pay_1", 50000))

        outcome = await deliver(service, payment_event("payment.captured", "pay_1", "order_test1"))

        assert outcome == "unchanged"
        assert payment.status == "refunded"
        assert order.status == "cancelled"
