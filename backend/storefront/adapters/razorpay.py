"""
RazorpayGatewayAdapter — Razorpay implementation of PaymentGatewayAdapter.

Talks to the Razorpay REST API with HTTP basic auth (key id / key secret).
Checkout signatures are keyed with the key secret; webhooks with the
separately configured webhook secret.
"""

import json
import logging
from typing import Dict, Optional, Any

import httpx

from storefront.adapters.base import PaymentGatewayAdapter, GatewayOrder, GatewayEvent
from storefront.adapters import signatures
from storefront.exceptions import SignatureMismatch, UpstreamError, ValidationFailed

logger = logging.getLogger(__name__)


class RazorpayGatewayAdapter(PaymentGatewayAdapter):

    def __init__(
        self,
        key_id: Optional[str],
        key_secret: Optional[str],
        webhook_secret: Optional[str],
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 15.0,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @property
    def gateway_name(self) -> str:
        return "razorpay"

    @property
    def is_configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    async def _request(self, method: str, path: str, payload: Optional[Dict] = None) -> Dict[str, Any]:
        if not self.is_configured:
            raise UpstreamError(self.gateway_name, "API keys are not configured")

        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(auth=(self.key_id, self.key_secret), timeout=self.timeout) as client:
                response = await client.request(method, url, json=payload)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Razorpay API error on {method} {path}: {e.response.status_code} - {e.response.text}")
            raise UpstreamError(self.gateway_name, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"Razorpay transport error on {method} {path}: {e}")
            raise UpstreamError(self.gateway_name, str(e)) from e

    # --- Orders & Payments ---

    async def create_order(self, amount: int, currency: str, receipt: str) -> GatewayOrder:
        data = await self._request("POST", "/orders", {
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
        })
        logger.info(f"Razorpay order {data.get('id')} created for receipt {receipt}")
        return GatewayOrder(
            id=data["id"],
            amount=int(data.get("amount", amount)),
            currency=data.get("currency", currency),
            receipt=data.get("receipt", receipt),
            status=data.get("status", "created"),
        )

    async def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/payments/{payment_id}")

    async def create_refund(self, payment_id: str, amount: Optional[int] = None) -> Dict[str, Any]:
        payload = {"amount": amount} if amount is not None else {}
        return await self._request("POST", f"/payments/{payment_id}/refund", payload)

    # --- Signatures ---

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not self.key_secret:
            raise UpstreamError(self.gateway_name, "key secret is not configured")
        return signatures.verify_payment_signature(order_id, payment_id, signature, self.key_secret)

    def parse_webhook(self, raw_body: bytes, signature: Optional[str]) -> GatewayEvent:
        if not self.webhook_secret:
            raise UpstreamError(self.gateway_name, "webhook secret is not configured")
        if not signatures.verify_webhook_signature(raw_body, signature, self.webhook_secret):
            logger.warning("Rejected Razorpay webhook with invalid signature")
            raise SignatureMismatch("Invalid webhook signature")

        try:
            body = json.loads(raw_body)
        except ValueError as e:
            raise ValidationFailed("Webhook body is not valid JSON") from e

        return GatewayEvent(
            event_type=body.get("event", ""),
            payload=body.get("payload") or {},
        )
